"""Price monitor router — watch a room until it is in stock at or below a target price."""

import logging
import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.database import get_db
from skyhotel.dependencies import get_current_user, get_provider
from skyhotel.models.monitor import PriceMonitorTask
from skyhotel.models.user import SystemUser
from skyhotel.services.price_watch_service import price_watch_service
from skyhotel.services.provider_client import HotelProviderClient

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateMonitorRequest(BaseModel):
    chain_id: str
    hotel_name: str
    room_type: str
    check_in: date
    check_out: date
    target_price: float = Field(gt=0)
    note: str | None = None


class UpdateMonitorRequest(BaseModel):
    hotel_name: str | None = None
    room_type: str | None = None
    check_in: date | None = None
    check_out: date | None = None
    target_price: float | None = Field(default=None, gt=0)
    note: str | None = None


async def _get_task(db: AsyncSession, task_id: uuid.UUID, user: SystemUser) -> PriceMonitorTask:
    task = await price_watch_service.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Price monitor not found")
    if not user.is_admin and task.user_id != user.id:
        raise HTTPException(status_code=403, detail="Not your price monitor")
    return task


@router.get("")
async def list_monitors(
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    tasks = await price_watch_service.list_tasks(db, user)
    return {"monitors": [price_watch_service.task_to_dict(t) for t in tasks], "count": len(tasks)}


@router.post("", status_code=201)
async def create_monitor(
    req: CreateMonitorRequest,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    task = await price_watch_service.create_task(db, user, req.model_dump())
    return price_watch_service.task_to_dict(task)


@router.get("/{task_id}")
async def get_monitor(
    task_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    task = await _get_task(db, task_id, user)
    return price_watch_service.task_to_dict(task)


@router.patch("/{task_id}")
async def update_monitor(
    task_id: uuid.UUID,
    req: UpdateMonitorRequest,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    task = await _get_task(db, task_id, user)
    task = await price_watch_service.update_task(db, task, req.model_dump(exclude_unset=True))
    return price_watch_service.task_to_dict(task)


@router.delete("/{task_id}")
async def delete_monitor(
    task_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    task = await _get_task(db, task_id, user)
    await price_watch_service.delete_task(db, task)
    return {"deleted": True}


@router.post("/{task_id}/pause")
async def pause_monitor(
    task_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    task = await _get_task(db, task_id, user)
    task = await price_watch_service.pause(db, task)
    return price_watch_service.task_to_dict(task)


@router.post("/{task_id}/resume")
async def resume_monitor(
    task_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    task = await _get_task(db, task_id, user)
    task = await price_watch_service.resume(db, task)
    return price_watch_service.task_to_dict(task)


@router.post("/{task_id}/check")
async def check_monitor(
    task_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
    provider: HotelProviderClient = Depends(get_provider),
):
    """Take a live price snapshot now (bypasses the search cache)."""
    await _get_task(db, task_id, user)
    task = await price_watch_service.check_task(db, task_id, provider)
    if not task:
        raise HTTPException(status_code=404, detail="Price monitor not found")
    return price_watch_service.task_to_dict(task)
