"""Admission gate — decides whether an agent may place a booking on a channel.

Checks run in a fixed order and short-circuit on the first failure:

    0. maintenance mode           -> MAINTENANCE_MODE
    1. global channel switch      -> CHANNEL_DISABLED
    2. agent channel permission   -> CHANNEL_FORBIDDEN
    3. corporate agreement access -> CORPORATE_NOT_ALLOWED
    4. today's booking count      -> DAILY_LIMIT_EXCEEDED
    5. running quota balance      -> QUOTA_EXHAUSTED

An admission is only final once `admit` has decremented the balance and the
caller's order group has been flushed in the same transaction.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.errors import AdmissionRejected, RejectReason
from skyhotel.models.corporate import CorporateAgreement
from skyhotel.models.enums import Channel
from skyhotel.models.order import OrderGroup
from skyhotel.models.system import SystemConfig
from skyhotel.models.user import SystemUser
from skyhotel.services.corporate_registry import corporate_registry, normalize_name
from skyhotel.services.quota_ledger import QuotaPlan, has_balance, has_daily_room, plan_for, quota_ledger
from skyhotel.utils import business_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelConfigSnapshot:
    """Immutable view of the admin switches, taken once per decision."""

    maintenance_mode: bool = False
    maintenance_message: str = ""
    enable_new_user: bool = True
    enable_platinum: bool = True
    enable_corporate: bool = True
    disabled_corporate_names: frozenset[str] = frozenset()

    @classmethod
    def from_config(cls, config: SystemConfig) -> "ChannelConfigSnapshot":
        return cls(
            maintenance_mode=bool(config.maintenance_mode),
            maintenance_message=config.maintenance_message or "",
            enable_new_user=bool(config.enable_new_user),
            enable_platinum=bool(config.enable_platinum),
            enable_corporate=bool(config.enable_corporate),
            disabled_corporate_names=frozenset(
                normalize_name(n) for n in (config.disabled_corporate_names or []) if normalize_name(n)
            ),
        )

    def channel_enabled(self, channel: Channel) -> bool:
        return {
            Channel.NEW_USER: self.enable_new_user,
            Channel.PLATINUM: self.enable_platinum,
            Channel.CORPORATE: self.enable_corporate,
        }[channel]

    def is_banned(self, corporate_name: str) -> bool:
        return normalize_name(corporate_name) in self.disabled_corporate_names


@dataclass(frozen=True)
class Admission:
    agent_id: uuid.UUID
    channel: Channel
    plan: QuotaPlan
    agreement: CorporateAgreement | None
    used_today: int
    requested_amount: Decimal

    @property
    def agreement_id(self) -> uuid.UUID | None:
        return self.agreement.id if self.agreement else None


class AdmissionGate:

    async def try_admit(
        self,
        db: AsyncSession,
        agent: SystemUser,
        channel: Channel,
        corporate_name: str | None,
        requested_amount: Decimal,
        config: ChannelConfigSnapshot,
    ) -> Admission:
        """Run checks 0-5. Raises AdmissionRejected; writes nothing.

        Locks the agent's channel row, so call it inside the transaction that
        will create the group.
        """
        try:
            admission = await self._check(db, agent, channel, corporate_name, requested_amount, config)
        except AdmissionRejected as e:
            logger.info(f"Admission rejected: user={agent.username} channel={channel.value} reason={e.code}")
            raise
        return admission

    async def _check(
        self,
        db: AsyncSession,
        agent: SystemUser,
        channel: Channel,
        corporate_name: str | None,
        requested_amount: Decimal,
        config: ChannelConfigSnapshot,
    ) -> Admission:
        if config.maintenance_mode:
            details = {"message": config.maintenance_message} if config.maintenance_message else None
            raise AdmissionRejected(RejectReason.MAINTENANCE_MODE, details=details)

        if not config.channel_enabled(channel):
            raise AdmissionRejected(RejectReason.CHANNEL_DISABLED, details={"channel": channel.value})

        channel_row = await quota_ledger.lock_channel_quota(db, agent.id, channel)
        if channel_row is None or not channel_row.allowed:
            raise AdmissionRejected(RejectReason.CHANNEL_FORBIDDEN, details={"channel": channel.value})

        agreement = None
        grant = None
        if channel == Channel.CORPORATE:
            name = normalize_name(corporate_name)
            if not name or config.is_banned(name):
                raise AdmissionRejected(RejectReason.CORPORATE_NOT_ALLOWED, details={"corporate_name": name})
            access = await corporate_registry.resolve_access(db, agent.id, name)
            if not access.allowed:
                raise AdmissionRejected(RejectReason.CORPORATE_NOT_ALLOWED, details={"corporate_name": name})
            agreement, grant = access.agreement, access.grant

        plan = plan_for(channel_row, grant)

        used_today = await quota_ledger.count_today(
            db,
            agent.id,
            channel,
            business_date(),
            agreement_id=plan.agreement_id if plan.daily_scoped_to_agreement else None,
        )
        if not has_daily_room(used_today, plan.daily_limit):
            raise AdmissionRejected(
                RejectReason.DAILY_LIMIT_EXCEEDED,
                details={"daily_limit": plan.daily_limit, "used_today": used_today},
            )

        if not has_balance(plan.balance):
            raise AdmissionRejected(RejectReason.QUOTA_EXHAUSTED, details={"quota_balance": plan.balance})

        return Admission(
            agent_id=agent.id,
            channel=channel,
            plan=plan,
            agreement=agreement,
            used_today=used_today,
            requested_amount=requested_amount,
        )

    async def admit(
        self,
        db: AsyncSession,
        agent: SystemUser,
        channel: Channel,
        corporate_name: str | None,
        requested_amount: Decimal,
        config: ChannelConfigSnapshot,
        create_group: Callable[[Admission], Awaitable[OrderGroup]],
    ) -> OrderGroup:
        """Check, create the group via `create_group`, decrement, and commit as one unit."""
        try:
            admission = await self.try_admit(db, agent, channel, corporate_name, requested_amount, config)
            group = await create_group(admission)
            await db.flush()
            balance_after = await quota_ledger.consume(db, admission.plan, group.id, agent.id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            f"Admitted {group.biz_order_no}: user={agent.username} channel={channel.value} "
            f"amount={requested_amount} balance_after={balance_after}"
        )
        return group


admission_gate = AdmissionGate()
