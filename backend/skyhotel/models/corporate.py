import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Table, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from skyhotel.database import Base

# Pool account <-> corporate agreement membership
pool_account_agreements = Table(
    "pool_account_agreements",
    Base.metadata,
    Column("pool_account_id", Uuid, ForeignKey("pool_accounts.id", ondelete="CASCADE"), primary_key=True),
    Column("agreement_id", Uuid, ForeignKey("corporate_agreements.id", ondelete="CASCADE"), primary_key=True),
)


class CorporateAgreement(Base):
    __tablename__ = "corporate_agreements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
