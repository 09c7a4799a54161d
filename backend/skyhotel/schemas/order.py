import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from skyhotel.models.enums import Channel


class CreateSplitItem(BaseModel):
    room_type: str
    room_count: int = Field(default=1, ge=1)
    rate_code: str | None = None
    account_id: uuid.UUID | None = None
    # Defaults to the group's dates
    check_in_date: date | None = None
    check_out_date: date | None = None
    amount: Decimal = Field(ge=0)


class CreateOrderRequest(BaseModel):
    chain_id: str
    hotel_name: str
    channel: Channel
    corporate_name: str | None = None
    customer_name: str
    contact_phone: str | None = None
    check_in_date: date
    check_out_date: date
    total_amount: Decimal | None = None
    currency: str = "CNY"
    remark: str | None = None
    # False saves the order as a plan (PLAN_PENDING) without submitting
    submit_now: bool = True
    items: list[CreateSplitItem] = Field(min_length=1)


class UpdateOrderRequest(BaseModel):
    """Descriptive fields only; status and execution state are never set directly."""

    customer_name: str | None = Field(default=None, min_length=1)
    contact_phone: str | None = None
    remark: str | None = None


class UpdateSplitItemRequest(BaseModel):
    # Manual bookkeeping for payments settled outside the provider link
    payment_status: Literal["UNPAID", "PAID"]


class SplitItemResponse(BaseModel):
    id: uuid.UUID
    group_id: uuid.UUID
    provider_order_id: str | None
    room_type: str
    room_count: int
    rate_code: str | None
    account_id: uuid.UUID | None
    account_phone: str | None
    check_in_date: date
    check_out_date: date
    amount: Decimal
    status: str
    payment_status: str
    execution_status: str
    split_index: int
    split_total: int
    payment_link: str | None
    detail_url: str | None
    failure_code: str | None
    failure_reason: str | None
    last_error: str | None
    submit_attempts: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class OrderGroupResponse(BaseModel):
    id: uuid.UUID
    biz_order_no: str
    chain_id: str
    hotel_name: str
    channel: str
    corporate_agreement_id: uuid.UUID | None
    customer_name: str
    contact_phone: str | None
    check_in_date: date
    check_out_date: date
    total_nights: int
    total_amount: Decimal
    currency: str
    status: str
    payment_status: str
    creator_id: uuid.UUID
    creator_name: str
    remark: str | None
    business_date: date
    split_count: int
    items: list[SplitItemResponse]
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class ItemOutcomeResponse(BaseModel):
    item_id: uuid.UUID
    outcome: str
    execution_status: str
    error_code: str | None = None
    message: str | None = None


class GroupActionResponse(BaseModel):
    group: OrderGroupResponse
    outcomes: list[ItemOutcomeResponse]


class ItemActionResponse(BaseModel):
    item: SplitItemResponse
    outcome: ItemOutcomeResponse


class LinkResponse(BaseModel):
    item_id: uuid.UUID
    url: str
