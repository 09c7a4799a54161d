import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from skyhotel.database import Base
from skyhotel.models.corporate import CorporateAgreement


class SystemUser(Base):
    __tablename__ = "system_users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="USER")
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE")
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    channel_quotas: Mapped[list["AgentChannelQuota"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", lazy="selectin"
    )
    corporate_grants: Mapped[list["AgentCorporateGrant"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


class AgentChannelQuota(Base):
    """Per-channel permission row: allowed flag, daily limit and running quota (-1 = unlimited)."""

    __tablename__ = "agent_channel_quotas"
    __table_args__ = (UniqueConstraint("user_id", "channel", name="uq_agent_channel"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("system_users.id", ondelete="CASCADE"), nullable=False
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    allowed: Mapped[bool] = mapped_column(Boolean, default=False)
    daily_limit: Mapped[int] = mapped_column(Integer, default=0)
    quota_balance: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped["SystemUser"] = relationship(back_populates="channel_quotas")


class AgentCorporateGrant(Base):
    """An agent's access to one corporate agreement, with optional overrides.

    NULL limit/quota falls back to the CORPORATE channel row.
    """

    __tablename__ = "agent_corporate_grants"
    __table_args__ = (UniqueConstraint("user_id", "agreement_id", name="uq_agent_agreement"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("system_users.id", ondelete="CASCADE"), nullable=False
    )
    agreement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("corporate_agreements.id", ondelete="CASCADE"), nullable=False
    )
    daily_limit: Mapped[int | None] = mapped_column(Integer)
    quota_balance: Mapped[int | None] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped["SystemUser"] = relationship(back_populates="corporate_grants")
    agreement: Mapped[CorporateAgreement] = relationship(lazy="selectin")


class QuotaLedgerEntry(Base):
    __tablename__ = "quota_ledger_entries"
    __table_args__ = (Index("idx_quota_ledger_user", "user_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("system_users.id", ondelete="CASCADE"), nullable=False
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    agreement_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("corporate_agreements.id"))
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    order_group_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("order_groups.id", ondelete="SET NULL")
    )
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("system_users.id"))
    note: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
