import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from skyhotel.database import Base, JSONType


class PriceMonitorTask(Base):
    __tablename__ = "price_monitor_tasks"
    __table_args__ = (
        Index("idx_price_monitors_user", "user_id"),
        Index("idx_price_monitors_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("system_users.id", ondelete="CASCADE"), nullable=False
    )
    chain_id: Mapped[str] = mapped_column(String(50), nullable=False)
    hotel_name: Mapped[str] = mapped_column(String(300), nullable=False)
    room_type: Mapped[str] = mapped_column(String(200), nullable=False)
    check_in: Mapped[date] = mapped_column(Date, nullable=False)
    check_out: Mapped[date] = mapped_column(Date, nullable=False)
    target_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    current_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    has_inventory: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(20), default="MONITORING")
    # [{"date": "2026-10-17", "open": .., "close": .., "high": .., "low": ..}]
    history_daily: Mapped[list] = mapped_column(JSONType, default=list)
    # [{"time": iso-8601, "price": ..}]
    history_intraday: Mapped[list] = mapped_column(JSONType, default=list)
    # Running candle for the business day of the latest priced point
    day_candle: Mapped[dict | None] = mapped_column(JSONType)
    note: Mapped[str] = mapped_column(Text, default="")
    last_snapshot_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reached_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reached_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
