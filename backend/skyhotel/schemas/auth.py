import uuid
from datetime import datetime

from pydantic import BaseModel


class LoginRequest(BaseModel):
    username: str
    password: str


class ChannelPermissionResponse(BaseModel):
    allowed: bool
    daily_limit: int
    quota_balance: int


class CorporateGrantResponse(BaseModel):
    name: str
    daily_limit: int | None = None
    quota_balance: int | None = None


class UserResponse(BaseModel):
    id: uuid.UUID
    username: str
    name: str
    role: str
    status: str
    last_login_at: datetime | None = None
    permissions: dict[str, ChannelPermissionResponse] = {}
    corporate_grants: list[CorporateGrantResponse] = []

    @classmethod
    def from_user(cls, user) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            name=user.name,
            role=user.role,
            status=user.status,
            last_login_at=user.last_login_at,
            permissions={
                q.channel: ChannelPermissionResponse(
                    allowed=q.allowed, daily_limit=q.daily_limit, quota_balance=q.quota_balance
                )
                for q in user.channel_quotas
            },
            corporate_grants=[
                CorporateGrantResponse(
                    name=g.agreement.name, daily_limit=g.daily_limit, quota_balance=g.quota_balance
                )
                for g in sorted(user.corporate_grants, key=lambda g: g.agreement.name)
            ],
        )


class AuthResponse(BaseModel):
    token: str
    user: UserResponse
