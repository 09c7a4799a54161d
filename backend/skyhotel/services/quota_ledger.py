"""Quota ledger — daily counts, running balances and their atomic movements."""

import logging
import uuid
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from skyhotel.errors import AdmissionRejected, InvariantViolation, RejectReason
from skyhotel.models.enums import Channel, LedgerReason
from skyhotel.models.order import OrderGroup
from skyhotel.models.user import AgentChannelQuota, AgentCorporateGrant, QuotaLedgerEntry

logger = logging.getLogger(__name__)

UNLIMITED = -1


@dataclass(frozen=True)
class QuotaPlan:
    """The limit and balance a booking is checked and charged against."""

    channel_row: AgentChannelQuota
    grant: AgentCorporateGrant | None
    daily_limit: int
    daily_scoped_to_agreement: bool
    balance: int
    balance_on_grant: bool

    @property
    def agreement_id(self) -> uuid.UUID | None:
        return self.grant.agreement_id if self.grant else None


def plan_for(channel_row: AgentChannelQuota, grant: AgentCorporateGrant | None) -> QuotaPlan:
    """Pick the specific override where one exists, else the channel-level value."""
    daily_on_grant = grant is not None and grant.daily_limit is not None
    balance_on_grant = grant is not None and grant.quota_balance is not None
    return QuotaPlan(
        channel_row=channel_row,
        grant=grant,
        daily_limit=grant.daily_limit if daily_on_grant else channel_row.daily_limit,
        daily_scoped_to_agreement=daily_on_grant,
        balance=grant.quota_balance if balance_on_grant else channel_row.quota_balance,
        balance_on_grant=balance_on_grant,
    )


def has_daily_room(used_today: int, daily_limit: int) -> bool:
    return daily_limit == UNLIMITED or used_today < daily_limit


def has_balance(balance: int) -> bool:
    return balance == UNLIMITED or balance > 0


class QuotaLedger:
    """Reads and moves agent quotas. Callers own the transaction."""

    async def lock_channel_quota(
        self, db: AsyncSession, user_id: uuid.UUID, channel: Channel
    ) -> AgentChannelQuota | None:
        """Load the channel row with a row lock; serializes admissions per agent+channel."""
        result = await db.execute(
            select(AgentChannelQuota)
            .where(
                AgentChannelQuota.user_id == user_id,
                AgentChannelQuota.channel == channel.value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count_today(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        channel: Channel,
        today: date,
        agreement_id: uuid.UUID | None = None,
    ) -> int:
        query = select(func.count(OrderGroup.id)).where(
            OrderGroup.creator_id == user_id,
            OrderGroup.channel == channel.value,
            OrderGroup.business_date == today,
        )
        if agreement_id is not None:
            query = query.where(OrderGroup.corporate_agreement_id == agreement_id)
        result = await db.execute(query)
        return result.scalar() or 0

    async def consume(
        self,
        db: AsyncSession,
        plan: QuotaPlan,
        order_group_id: uuid.UUID,
        actor_id: uuid.UUID,
    ) -> int:
        """Take one unit from the consulted balance. Returns the balance after (-1 if unlimited)."""
        if plan.balance == UNLIMITED:
            return UNLIMITED

        if plan.balance_on_grant:
            model, row = AgentCorporateGrant, plan.grant
        else:
            model, row = AgentChannelQuota, plan.channel_row
        row_id = row.id

        # Compare-and-swap: only succeeds while the balance is still positive
        result = await db.execute(
            update(model)
            .where(model.id == row_id, model.quota_balance > 0)
            .values(quota_balance=model.quota_balance - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"Quota decrement lost for user {plan.channel_row.user_id} ({plan.channel_row.channel})")
            raise AdmissionRejected(RejectReason.QUOTA_EXHAUSTED)

        balance_after = await self._read_balance(db, model, row_id)
        set_committed_value(row, "quota_balance", balance_after)
        db.add(QuotaLedgerEntry(
            user_id=plan.channel_row.user_id,
            channel=plan.channel_row.channel,
            agreement_id=plan.agreement_id,
            delta=-1,
            balance_after=balance_after,
            reason=LedgerReason.ADMIT.value,
            order_group_id=order_group_id,
            actor_id=actor_id,
        ))
        return balance_after

    async def credit(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        channel: Channel,
        amount: int,
        actor_id: uuid.UUID,
        grant: AgentCorporateGrant | None = None,
        note: str | None = None,
    ) -> int:
        """Explicitly add `amount` units to a finite balance (channel row, or a grant override)."""
        if amount <= 0:
            raise InvariantViolation("Credit amount must be positive", code="INVALID_CREDIT")

        if grant is not None:
            if grant.quota_balance is None:
                raise InvariantViolation(
                    "Agreement has no specific quota; credit the channel instead",
                    code="INVALID_CREDIT",
                )
            model, target, current = AgentCorporateGrant, grant, grant.quota_balance
        else:
            row = await self.lock_channel_quota(db, user_id, channel)
            if row is None:
                raise InvariantViolation(f"No {channel.value} permission row for user", code="INVALID_CREDIT")
            model, target, current = AgentChannelQuota, row, row.quota_balance
        row_id = target.id

        if current == UNLIMITED:
            raise InvariantViolation("Cannot credit an unlimited quota", code="INVALID_CREDIT")

        await db.execute(
            update(model)
            .where(model.id == row_id, model.quota_balance >= 0)
            .values(quota_balance=model.quota_balance + amount)
            .execution_options(synchronize_session=False)
        )
        balance_after = await self._read_balance(db, model, row_id)
        set_committed_value(target, "quota_balance", balance_after)
        db.add(QuotaLedgerEntry(
            user_id=user_id,
            channel=channel.value,
            agreement_id=grant.agreement_id if grant else None,
            delta=amount,
            balance_after=balance_after,
            reason=LedgerReason.CREDIT.value,
            actor_id=actor_id,
            note=note,
        ))
        logger.info(f"Quota credit +{amount} for user {user_id} ({channel.value}) -> {balance_after}")
        return balance_after

    async def record_adjustment(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        channel: Channel,
        before: int | None,
        after: int,
        actor_id: uuid.UUID,
        agreement_id: uuid.UUID | None = None,
    ) -> None:
        """Ledger entry for an admin overwriting a balance. Unlimited sides record a zero delta."""
        if before == after:
            return
        finite = before is not None and before >= 0 and after >= 0
        db.add(QuotaLedgerEntry(
            user_id=user_id,
            channel=channel.value,
            agreement_id=agreement_id,
            delta=after - before if finite else 0,
            balance_after=after,
            reason=LedgerReason.ADJUST.value,
            actor_id=actor_id,
        ))
        logger.info(f"Quota set for user {user_id} ({channel.value}): {before} -> {after}")

    async def entries(self, db: AsyncSession, user_id: uuid.UUID, limit: int = 100) -> list[QuotaLedgerEntry]:
        result = await db.execute(
            select(QuotaLedgerEntry)
            .where(QuotaLedgerEntry.user_id == user_id)
            .order_by(QuotaLedgerEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def _read_balance(db: AsyncSession, model, row_id: uuid.UUID) -> int:
        result = await db.execute(select(model.quota_balance).where(model.id == row_id))
        balance = result.scalar_one()
        if balance < UNLIMITED:
            raise InvariantViolation("Quota balance went negative", code="NEGATIVE_QUOTA")
        return balance


quota_ledger = QuotaLedger()
