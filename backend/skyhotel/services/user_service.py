"""User service — agent accounts, channel permissions and corporate grants."""

import logging
import uuid

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.errors import InvariantViolation
from skyhotel.models.enums import Channel, UserStatus
from skyhotel.models.user import AgentChannelQuota, AgentCorporateGrant, SystemUser
from skyhotel.schemas.user import CreateUserRequest, PermissionsRequest, QuotaCreditRequest, UpdateUserRequest
from skyhotel.services.corporate_registry import corporate_registry
from skyhotel.services.quota_ledger import UNLIMITED, quota_ledger

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# New agents: NEW_USER open and unlimited, the other channels closed
DEFAULT_PERMISSIONS = {
    Channel.NEW_USER: (True, UNLIMITED, UNLIMITED),
    Channel.PLATINUM: (False, 0, 0),
    Channel.CORPORATE: (False, 0, 0),
}


def default_channel_quotas() -> list[AgentChannelQuota]:
    return [
        AgentChannelQuota(channel=channel.value, allowed=allowed, daily_limit=limit, quota_balance=balance)
        for channel, (allowed, limit, balance) in DEFAULT_PERMISSIONS.items()
    ]


class UserService:

    async def get_user(self, db: AsyncSession, user_id: uuid.UUID) -> SystemUser | None:
        result = await db.execute(
            select(SystemUser)
            .where(SystemUser.id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_username(self, db: AsyncSession, username: str) -> SystemUser | None:
        result = await db.execute(select(SystemUser).where(SystemUser.username == username.strip()))
        return result.scalar_one_or_none()

    async def list_users(self, db: AsyncSession) -> list[SystemUser]:
        result = await db.execute(select(SystemUser).order_by(SystemUser.created_at))
        return list(result.scalars().all())

    async def create_user(self, db: AsyncSession, req: CreateUserRequest) -> SystemUser:
        if await self.get_by_username(db, req.username):
            raise InvariantViolation(f"Username '{req.username}' is taken", code="DUPLICATE_USERNAME")
        user = SystemUser(
            username=req.username.strip(),
            name=req.name,
            password_hash=pwd_context.hash(req.password),
            role=req.role.value,
            status=req.status.value,
        )
        user.channel_quotas = default_channel_quotas()
        user.corporate_grants = []
        db.add(user)
        await db.commit()
        logger.info(f"User created: {user.username} ({user.role})")
        return await self.get_user(db, user.id)

    async def update_user(self, db: AsyncSession, user: SystemUser, req: UpdateUserRequest) -> SystemUser:
        if req.name is not None:
            user.name = req.name
        if req.password is not None:
            user.password_hash = pwd_context.hash(req.password)
        if req.role is not None:
            user.role = req.role.value
        if req.status is not None:
            user.status = req.status.value
        await db.commit()
        return await self.get_user(db, user.id)

    async def authenticate(self, db: AsyncSession, username: str, password: str) -> SystemUser | None:
        user = await self.get_by_username(db, username)
        if user is None or not pwd_context.verify(password, user.password_hash):
            return None
        return user

    async def set_permissions(
        self, db: AsyncSession, user: SystemUser, req: PermissionsRequest, actor: SystemUser
    ) -> SystemUser:
        """Replace channel rows and corporate grants. Balance overwrites are written to the ledger."""
        for channel, perm in req.channels.items():
            row = await quota_ledger.lock_channel_quota(db, user.id, channel)
            before = row.quota_balance if row else None
            if row is None:
                row = AgentChannelQuota(user_id=user.id, channel=channel.value)
                db.add(row)
            row.allowed = perm.allowed
            row.daily_limit = perm.daily_limit
            row.quota_balance = perm.quota_balance
            await quota_ledger.record_adjustment(db, user.id, channel, before, perm.quota_balance, actor.id)

        agreements = await corporate_registry.resolve_names(db, [g.name for g in req.corporate_grants])
        by_name = {a.name: a for a in agreements}
        existing = {g.agreement_id: g for g in await corporate_registry.grants_for(db, user.id)}

        wanted_ids = set()
        for grant_req in req.corporate_grants:
            agreement = by_name[grant_req.name.strip()]
            if agreement.id in wanted_ids:
                continue
            wanted_ids.add(agreement.id)
            grant = existing.get(agreement.id)
            before = grant.quota_balance if grant else None
            if grant is None:
                grant = AgentCorporateGrant(user_id=user.id, agreement_id=agreement.id)
                db.add(grant)
            grant.daily_limit = grant_req.daily_limit
            grant.quota_balance = grant_req.quota_balance
            if grant_req.quota_balance is not None:
                await quota_ledger.record_adjustment(
                    db, user.id, Channel.CORPORATE, before, grant_req.quota_balance, actor.id,
                    agreement_id=agreement.id,
                )

        for agreement_id, grant in existing.items():
            if agreement_id not in wanted_ids:
                await db.delete(grant)

        await db.commit()
        logger.info(
            f"Permissions updated for {user.username} by {actor.username}: "
            f"{len(req.channels)} channel(s), {len(wanted_ids)} corporate grant(s)"
        )
        return await self.get_user(db, user.id)

    async def credit_quota(
        self, db: AsyncSession, user: SystemUser, req: QuotaCreditRequest, actor: SystemUser
    ) -> int:
        grant = None
        if req.corporate_name:
            if req.channel != Channel.CORPORATE:
                raise InvariantViolation("Agreement credits apply to the CORPORATE channel", code="INVALID_CREDIT")
            agreement = await corporate_registry.get_by_name(db, req.corporate_name)
            grants = await corporate_registry.grants_for(db, user.id)
            grant = next((g for g in grants if agreement and g.agreement_id == agreement.id), None)
            if grant is None:
                raise InvariantViolation(
                    f"User has no grant for '{req.corporate_name}'",
                    code="INVALID_CREDIT",
                )
        try:
            balance = await quota_ledger.credit(
                db, user.id, req.channel, req.amount, actor.id, grant=grant, note=req.note
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return balance


def is_active(user: SystemUser) -> bool:
    return user.status == UserStatus.ACTIVE.value


user_service = UserService()
