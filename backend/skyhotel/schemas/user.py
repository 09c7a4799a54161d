import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from skyhotel.models.enums import Channel, UserRole, UserStatus


class CreateUserRequest(BaseModel):
    username: str = Field(min_length=3, max_length=100)
    name: str
    password: str = Field(min_length=6)
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.ACTIVE


class UpdateUserRequest(BaseModel):
    name: str | None = None
    password: str | None = Field(default=None, min_length=6)
    role: UserRole | None = None
    status: UserStatus | None = None


class ChannelPermission(BaseModel):
    allowed: bool = False
    daily_limit: int = Field(default=0, ge=-1)
    quota_balance: int = Field(default=0, ge=-1)


class CorporateGrantRequest(BaseModel):
    name: str
    # None falls back to the CORPORATE channel values
    daily_limit: int | None = Field(default=None, ge=-1)
    quota_balance: int | None = Field(default=None, ge=-1)


class PermissionsRequest(BaseModel):
    channels: dict[Channel, ChannelPermission] = {}
    # Empty list = every corporate agreement is allowed
    corporate_grants: list[CorporateGrantRequest] = []


class QuotaCreditRequest(BaseModel):
    channel: Channel
    amount: int = Field(gt=0)
    corporate_name: str | None = None
    note: str | None = None


class QuotaLedgerEntryResponse(BaseModel):
    id: uuid.UUID
    channel: str
    agreement_id: uuid.UUID | None
    delta: int
    balance_after: int
    reason: str
    order_group_id: uuid.UUID | None
    actor_id: uuid.UUID | None
    note: str | None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
