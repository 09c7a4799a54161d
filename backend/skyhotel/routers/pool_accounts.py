"""Pool account router (admin) — the shared loyalty accounts orders are placed through."""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.database import get_db
from skyhotel.dependencies import require_admin
from skyhotel.models.pool import PoolAccount
from skyhotel.models.user import SystemUser
from skyhotel.services.pool_service import pool_service

router = APIRouter()


class PoolAccountRequest(BaseModel):
    phone: str | None = None
    remark: str | None = None
    is_online: bool | None = None
    is_new_user: bool | None = None
    is_platinum: bool | None = None
    corporate_agreements: list[str] | None = None
    points: int | None = Field(default=None, ge=0)
    breakfast_coupons: int | None = Field(default=None, ge=0)
    upgrade_coupons: int | None = Field(default=None, ge=0)
    late_checkout_coupons: int | None = Field(default=None, ge=0)
    slippers_coupons: int | None = Field(default=None, ge=0)
    daily_orders_left: int | None = Field(default=None, ge=0)


def _account_to_dict(account: PoolAccount) -> dict:
    return {
        "id": str(account.id),
        "phone": account.phone,
        "remark": account.remark,
        "tier": account.tier,
        "is_online": account.is_online,
        "is_new_user": account.is_new_user,
        "is_platinum": account.is_platinum,
        "corporate_agreements": [a.name for a in account.agreements],
        "points": account.points,
        "coupons": {
            "breakfast": account.breakfast_coupons,
            "upgrade": account.upgrade_coupons,
            "late_checkout": account.late_checkout_coupons,
            "slippers": account.slippers_coupons,
        },
        "daily_orders_left": account.daily_orders_left,
        "last_execution": account.last_execution or {},
        "last_result": account.last_result or {},
        "created_at": account.created_at.isoformat() if account.created_at else None,
        "updated_at": account.updated_at.isoformat() if account.updated_at else None,
    }


async def _get_account(db: AsyncSession, account_id: uuid.UUID) -> PoolAccount:
    account = await pool_service.get_account(db, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Pool account not found")
    return account


@router.get("")
async def list_accounts(
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    accounts = await pool_service.list_accounts(db)
    return {"accounts": [_account_to_dict(a) for a in accounts], "count": len(accounts)}


@router.post("", status_code=201)
async def create_account(
    req: PoolAccountRequest,
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    account = await pool_service.create_account(db, req.model_dump())
    return _account_to_dict(account)


@router.patch("/{account_id}")
async def update_account(
    account_id: uuid.UUID,
    req: PoolAccountRequest,
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    account = await _get_account(db, account_id)
    account = await pool_service.update_account(db, account, req.model_dump(exclude_unset=True))
    return _account_to_dict(account)


@router.delete("/{account_id}")
async def delete_account(
    account_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    account = await _get_account(db, account_id)
    await pool_service.delete_account(db, account)
    return {"deleted": True}
