"""Corporate agreement registry — resolves agreement names and agent grants."""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.errors import InvariantViolation
from skyhotel.models.corporate import CorporateAgreement
from skyhotel.models.user import AgentCorporateGrant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorporateAccess:
    """Outcome of resolving a corporate name for one agent."""

    agreement: CorporateAgreement | None
    grant: AgentCorporateGrant | None
    allowed: bool


def normalize_name(name: str | None) -> str:
    return (name or "").strip()


class CorporateAgreementRegistry:
    """Owns the corporate agreement catalogue and per-agent grants."""

    async def list_agreements(self, db: AsyncSession) -> list[CorporateAgreement]:
        result = await db.execute(select(CorporateAgreement).order_by(CorporateAgreement.name))
        return list(result.scalars().all())

    async def get_by_name(self, db: AsyncSession, name: str) -> CorporateAgreement | None:
        name = normalize_name(name)
        if not name:
            return None
        result = await db.execute(select(CorporateAgreement).where(CorporateAgreement.name == name))
        return result.scalar_one_or_none()

    async def resolve_names(self, db: AsyncSession, names: list[str]) -> list[CorporateAgreement]:
        """Resolve names to agreements; any unknown name is an error, never silently dropped."""
        wanted = []
        for raw in names:
            name = normalize_name(raw)
            if name and name not in wanted:
                wanted.append(name)
        if not wanted:
            return []

        result = await db.execute(select(CorporateAgreement).where(CorporateAgreement.name.in_(wanted)))
        found = {a.name: a for a in result.scalars().all()}
        missing = [n for n in wanted if n not in found]
        if missing:
            raise InvariantViolation(
                f"Unknown corporate agreement(s): {', '.join(missing)}",
                code="UNKNOWN_CORPORATE_AGREEMENT",
                details={"names": missing},
            )
        return [found[n] for n in wanted]

    async def create_agreement(self, db: AsyncSession, name: str, enabled: bool = True) -> CorporateAgreement:
        name = normalize_name(name)
        if not name:
            raise InvariantViolation("Agreement name must not be empty", code="INVALID_AGREEMENT")
        if await self.get_by_name(db, name):
            raise InvariantViolation(
                f"Corporate agreement '{name}' already exists",
                code="DUPLICATE_AGREEMENT",
            )
        agreement = CorporateAgreement(name=name, enabled=enabled)
        db.add(agreement)
        await db.flush()
        logger.info(f"Corporate agreement created: {name}")
        return agreement

    async def grants_for(self, db: AsyncSession, user_id: uuid.UUID) -> list[AgentCorporateGrant]:
        result = await db.execute(
            select(AgentCorporateGrant).where(AgentCorporateGrant.user_id == user_id)
        )
        return list(result.scalars().all())

    async def resolve_access(
        self, db: AsyncSession, user_id: uuid.UUID, corporate_name: str | None
    ) -> CorporateAccess:
        """Whether the agent may book under `corporate_name` (ban-list is checked by the gate)."""
        agreement = await self.get_by_name(db, corporate_name or "")
        if agreement is None or not agreement.enabled:
            return CorporateAccess(agreement=agreement, grant=None, allowed=False)

        grants = await self.grants_for(db, user_id)
        grant = next((g for g in grants if g.agreement_id == agreement.id), None)
        # No grants at all means every agreement is open to the agent
        allowed = not grants or grant is not None
        return CorporateAccess(agreement=agreement, grant=grant, allowed=allowed)


corporate_registry = CorporateAgreementRegistry()
