import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from skyhotel.database import Base, JSONType


class HotelBlacklistRecord(Base):
    """An agent's report against a hotel; advisory only, never blocks admission."""

    __tablename__ = "hotel_blacklist_records"
    __table_args__ = (
        Index("idx_blacklist_chain", "chain_id"),
        Index("idx_blacklist_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    chain_id: Mapped[str] = mapped_column(String(50), nullable=False)
    hotel_name: Mapped[str] = mapped_column(String(300), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[list] = mapped_column(JSONType, default=list)
    status: Mapped[str] = mapped_column(String(10), default="ACTIVE")
    reported_by: Mapped[str] = mapped_column(String(100), nullable=False)
    reporter_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("system_users.id", ondelete="SET NULL")
    )
    source: Mapped[str] = mapped_column(String(50), default="manual")
    reported_on: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
