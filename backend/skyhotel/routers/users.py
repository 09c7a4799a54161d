"""User management router (admin) — agents, channel permissions and quota credits."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.database import get_db
from skyhotel.dependencies import require_admin
from skyhotel.models.user import SystemUser
from skyhotel.schemas.auth import UserResponse
from skyhotel.schemas.user import (
    CreateUserRequest,
    PermissionsRequest,
    QuotaCreditRequest,
    QuotaLedgerEntryResponse,
    UpdateUserRequest,
)
from skyhotel.services.quota_ledger import quota_ledger
from skyhotel.services.user_service import user_service

router = APIRouter()


async def _get_user(db: AsyncSession, user_id: uuid.UUID) -> SystemUser:
    user = await user_service.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("", response_model=list[UserResponse])
async def list_users(
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    users = await user_service.list_users(db)
    return [UserResponse.from_user(u) for u in users]


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(
    req: CreateUserRequest,
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    user = await user_service.create_user(db, req)
    return UserResponse.from_user(user)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: uuid.UUID,
    req: UpdateUserRequest,
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    user = await _get_user(db, user_id)
    user = await user_service.update_user(db, user, req)
    return UserResponse.from_user(user)


@router.put("/{user_id}/permissions", response_model=UserResponse)
async def set_permissions(
    user_id: uuid.UUID,
    req: PermissionsRequest,
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    """Replace the agent's channel permissions and corporate grants."""
    user = await _get_user(db, user_id)
    user = await user_service.set_permissions(db, user, req, admin)
    return UserResponse.from_user(user)


@router.post("/{user_id}/quota-credit")
async def credit_quota(
    user_id: uuid.UUID,
    req: QuotaCreditRequest,
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    user = await _get_user(db, user_id)
    balance = await user_service.credit_quota(db, user, req, admin)
    return {
        "user_id": str(user_id),
        "channel": req.channel.value,
        "corporate_name": req.corporate_name,
        "quota_balance": balance,
    }


@router.get("/{user_id}/quota-ledger", response_model=list[QuotaLedgerEntryResponse])
async def get_quota_ledger(
    user_id: uuid.UUID,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    await _get_user(db, user_id)
    entries = await quota_ledger.entries(db, user_id, limit=limit)
    return [QuotaLedgerEntryResponse.model_validate(e) for e in entries]
