"""Pool account service — account CRUD, eligibility and daily order slots."""

import logging
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.errors import InvariantViolation
from skyhotel.models.enums import Channel, ExecutionStatus
from skyhotel.models.order import OrderSplitItem
from skyhotel.models.pool import PoolAccount
from skyhotel.services.corporate_registry import corporate_registry

logger = logging.getLogger(__name__)

ACCOUNT_INELIGIBLE = "ACCOUNT_INELIGIBLE"
NO_ELIGIBLE_ACCOUNT = "NO_ELIGIBLE_ACCOUNT"

COUPON_FIELDS = ("breakfast_coupons", "upgrade_coupons", "late_checkout_coupons", "slippers_coupons")
EDITABLE_FIELDS = (
    "remark", "is_online", "is_new_user", "is_platinum", "points", "daily_orders_left", *COUPON_FIELDS,
)

# Items that still hold (or may still hold) a reservation on the account
_OPEN_STATES = [
    ExecutionStatus.PLAN_PENDING.value,
    ExecutionStatus.QUEUED.value,
    ExecutionStatus.SUBMITTING.value,
    ExecutionStatus.WAIT_CONFIRM.value,
    ExecutionStatus.ORDERED.value,
    ExecutionStatus.DONE.value,
]


def ineligibility_reason(account: PoolAccount, channel: Channel, agreement_id: uuid.UUID | None) -> str | None:
    """Why `account` cannot take a booking on `channel`, or None if it can."""
    if not account.is_online:
        return "account is offline"
    if not account.is_eligible_for(channel.value, agreement_id):
        return f"account tier {account.tier} does not serve {channel.value}"
    if account.daily_orders_left <= 0:
        return "account has no daily orders left"
    return None


class PoolService:

    async def list_accounts(self, db: AsyncSession) -> list[PoolAccount]:
        result = await db.execute(select(PoolAccount).order_by(PoolAccount.created_at.desc()))
        return list(result.scalars().all())

    async def get_account(self, db: AsyncSession, account_id: uuid.UUID) -> PoolAccount | None:
        result = await db.execute(
            select(PoolAccount)
            .where(PoolAccount.id == account_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_account(self, db: AsyncSession, data: dict) -> PoolAccount:
        phone = (data.get("phone") or "").strip()
        if not phone:
            raise InvariantViolation("Phone is required", code="INVALID_ACCOUNT")
        existing = await db.execute(select(PoolAccount.id).where(PoolAccount.phone == phone))
        if existing.scalar_one_or_none():
            raise InvariantViolation(f"Account {phone} already exists", code="DUPLICATE_ACCOUNT")

        account = PoolAccount(phone=phone)
        self._apply_fields(account, data)
        account.agreements = await corporate_registry.resolve_names(db, data.get("corporate_agreements") or [])
        db.add(account)
        await db.commit()
        logger.info(f"Pool account created: {phone} ({account.tier})")
        return account

    async def update_account(self, db: AsyncSession, account: PoolAccount, data: dict) -> PoolAccount:
        self._apply_fields(account, data)
        if data.get("corporate_agreements") is not None:
            account.agreements = await corporate_registry.resolve_names(db, data["corporate_agreements"])
        await db.commit()
        return account

    async def delete_account(self, db: AsyncSession, account: PoolAccount) -> None:
        result = await db.execute(
            select(func.count(OrderSplitItem.id)).where(
                OrderSplitItem.account_id == account.id,
                OrderSplitItem.execution_status.in_(_OPEN_STATES),
            )
        )
        open_items = result.scalar() or 0
        if open_items:
            raise InvariantViolation(
                f"Account {account.phone} is bound to {open_items} open order item(s)",
                code="ACCOUNT_IN_USE",
                details={"open_items": open_items},
            )
        await db.delete(account)
        await db.commit()
        logger.info(f"Pool account deleted: {account.phone}")

    @staticmethod
    def _apply_fields(account: PoolAccount, data: dict) -> None:
        for field in EDITABLE_FIELDS:
            if data.get(field) is None:
                continue
            value = data[field]
            if field in COUPON_FIELDS or field in ("points", "daily_orders_left"):
                if int(value) < 0:
                    raise InvariantViolation(f"{field} must not be negative", code="INVALID_ACCOUNT")
            setattr(account, field, value)

    async def candidates(
        self, db: AsyncSession, channel: Channel, agreement_id: uuid.UUID | None
    ) -> list[PoolAccount]:
        """Online accounts that can take `channel` today, best first."""
        result = await db.execute(
            select(PoolAccount)
            .where(PoolAccount.is_online == True, PoolAccount.daily_orders_left > 0)
            .order_by(PoolAccount.daily_orders_left.desc(), PoolAccount.points.desc())
            .execution_options(populate_existing=True)
        )
        return [
            a for a in result.scalars().all()
            if ineligibility_reason(a, channel, agreement_id) is None
        ]

    async def reserve_daily_slot(self, db: AsyncSession, account_id: uuid.UUID) -> bool:
        """Take one daily order slot if the account is online and has one left."""
        result = await db.execute(
            update(PoolAccount)
            .where(
                PoolAccount.id == account_id,
                PoolAccount.is_online == True,
                PoolAccount.daily_orders_left > 0,
            )
            .values(daily_orders_left=PoolAccount.daily_orders_left - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_daily_slot(self, db: AsyncSession, account_id: uuid.UUID) -> None:
        await db.execute(
            update(PoolAccount)
            .where(PoolAccount.id == account_id)
            .values(daily_orders_left=PoolAccount.daily_orders_left + 1)
            .execution_options(synchronize_session=False)
        )


pool_service = PoolService()
