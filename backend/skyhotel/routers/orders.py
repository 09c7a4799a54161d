"""Orders router — admission, fulfillment actions and links for order groups and split items."""

import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.database import get_db
from skyhotel.dependencies import get_current_user, get_fulfillment_driver
from skyhotel.models.order import OrderGroup, OrderSplitItem
from skyhotel.models.user import SystemUser
from skyhotel.schemas.order import (
    CreateOrderRequest,
    GroupActionResponse,
    ItemActionResponse,
    ItemOutcomeResponse,
    LinkResponse,
    OrderGroupResponse,
    SplitItemResponse,
    UpdateOrderRequest,
    UpdateSplitItemRequest,
)
from skyhotel.services.fulfillment_driver import FulfillmentDriver, ItemOutcome
from skyhotel.services.order_service import can_access, order_service
from skyhotel.services.system_config_service import system_config_service

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_group(db: AsyncSession, group_id: uuid.UUID, user: SystemUser) -> OrderGroup:
    group = await order_service.get_group(db, group_id)
    if not group:
        raise HTTPException(status_code=404, detail="Order not found")
    if not can_access(user, group):
        raise HTTPException(status_code=403, detail="Not your order")
    return group


async def _get_item(db: AsyncSession, item_id: uuid.UUID, user: SystemUser) -> OrderSplitItem:
    item = await order_service.get_item(db, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Order item not found")
    await _get_group(db, item.group_id, user)
    return item


async def _group_response(db: AsyncSession, group_id: uuid.UUID, outcomes: list[ItemOutcome]) -> GroupActionResponse:
    group = await order_service.get_group(db, group_id)
    return GroupActionResponse(
        group=OrderGroupResponse.model_validate(group),
        outcomes=[ItemOutcomeResponse(**o.to_dict()) for o in outcomes],
    )


async def _item_response(db: AsyncSession, item_id: uuid.UUID, outcome: ItemOutcome) -> ItemActionResponse:
    item = await order_service.get_item(db, item_id)
    return ItemActionResponse(
        item=SplitItemResponse.model_validate(item),
        outcome=ItemOutcomeResponse(**outcome.to_dict()),
    )


@router.get("", response_model=list[OrderGroupResponse])
async def list_orders(
    status: str | None = Query(None),
    channel: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    groups = await order_service.list_orders(db, user, status=status, channel=channel, limit=limit, offset=offset)
    return [OrderGroupResponse.model_validate(g) for g in groups]


@router.post("", response_model=OrderGroupResponse, status_code=201)
async def create_order(
    req: CreateOrderRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
    driver: FulfillmentDriver = Depends(get_fulfillment_driver),
):
    """Admit a booking and persist its split items; queued items are submitted in the background."""
    config = await system_config_service.snapshot(db)
    group = await order_service.create_order(db, user, req, config)
    if req.submit_now:
        background_tasks.add_task(driver.process_group, group.id)
    return OrderGroupResponse.model_validate(group)


@router.get("/{group_id}", response_model=OrderGroupResponse)
async def get_order(
    group_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    group = await _get_group(db, group_id, user)
    return OrderGroupResponse.model_validate(group)


@router.patch("/{group_id}", response_model=OrderGroupResponse)
async def update_order(
    group_id: uuid.UUID,
    req: UpdateOrderRequest,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    """Edit customer name, contact phone or remark."""
    data = req.model_dump(exclude_unset=True)
    if not data:
        raise HTTPException(status_code=422, detail="Patch body cannot be empty")
    group = await _get_group(db, group_id, user)
    group = await order_service.update_group(db, group, data)
    return OrderGroupResponse.model_validate(group)


@router.post("/{group_id}/submit", response_model=GroupActionResponse)
async def submit_order(
    group_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
    driver: FulfillmentDriver = Depends(get_fulfillment_driver),
):
    """Submit every plan, queued or failed item of the order."""
    await _get_group(db, group_id, user)
    outcomes = await driver.submit_group(group_id)
    return await _group_response(db, group_id, outcomes)


@router.post("/{group_id}/cancel", response_model=GroupActionResponse)
async def cancel_order(
    group_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
    driver: FulfillmentDriver = Depends(get_fulfillment_driver),
):
    await _get_group(db, group_id, user)
    outcomes = await driver.cancel_group(group_id)
    return await _group_response(db, group_id, outcomes)


@router.post("/{group_id}/refresh-status", response_model=GroupActionResponse)
async def refresh_order(
    group_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
    driver: FulfillmentDriver = Depends(get_fulfillment_driver),
):
    await _get_group(db, group_id, user)
    outcomes = await driver.refresh_group(group_id)
    return await _group_response(db, group_id, outcomes)


@router.patch("/items/{item_id}", response_model=SplitItemResponse)
async def update_item(
    item_id: uuid.UUID,
    req: UpdateSplitItemRequest,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    """Mark a placed item paid or unpaid; the order's payment status follows."""
    item = await _get_item(db, item_id, user)
    item = await order_service.set_item_payment_status(db, item, req.payment_status)
    return SplitItemResponse.model_validate(item)


@router.post("/items/{item_id}/confirm-submit", response_model=ItemActionResponse)
async def confirm_submit_item(
    item_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
    driver: FulfillmentDriver = Depends(get_fulfillment_driver),
):
    """Submit a saved plan, or retry a failed item."""
    await _get_item(db, item_id, user)
    outcome = await driver.confirm_submit(item_id)
    return await _item_response(db, item_id, outcome)


@router.post("/items/{item_id}/refresh-status", response_model=ItemActionResponse)
async def refresh_item(
    item_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
    driver: FulfillmentDriver = Depends(get_fulfillment_driver),
):
    await _get_item(db, item_id, user)
    outcome = await driver.refresh_item(item_id)
    return await _item_response(db, item_id, outcome)


@router.post("/items/{item_id}/cancel", response_model=ItemActionResponse)
async def cancel_item(
    item_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
    driver: FulfillmentDriver = Depends(get_fulfillment_driver),
):
    await _get_item(db, item_id, user)
    outcome = await driver.cancel_item(item_id)
    return await _item_response(db, item_id, outcome)


@router.get("/items/{item_id}/payment-link", response_model=LinkResponse)
async def get_payment_link(
    item_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
    driver: FulfillmentDriver = Depends(get_fulfillment_driver),
):
    await _get_item(db, item_id, user)
    return LinkResponse(item_id=item_id, url=await driver.payment_link(item_id))


@router.get("/items/{item_id}/detail-link", response_model=LinkResponse)
async def get_detail_link(
    item_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
    driver: FulfillmentDriver = Depends(get_fulfillment_driver),
):
    await _get_item(db, item_id, user)
    return LinkResponse(item_id=item_id, url=await driver.detail_link(item_id))
