import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from skyhotel.database import Base


class OrderGroup(Base):
    __tablename__ = "order_groups"
    __table_args__ = (
        Index("idx_order_groups_daily", "creator_id", "channel", "business_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    biz_order_no: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    chain_id: Mapped[str] = mapped_column(String(50), nullable=False)
    hotel_name: Mapped[str] = mapped_column(String(300), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    corporate_agreement_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("corporate_agreements.id")
    )
    customer_name: Mapped[str] = mapped_column(String(100), nullable=False)
    contact_phone: Mapped[str | None] = mapped_column(String(30))
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_nights: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="CNY")
    status: Mapped[str] = mapped_column(String(20), default="PROCESSING")
    payment_status: Mapped[str] = mapped_column(String(20), default="UNPAID")
    creator_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("system_users.id"), nullable=False
    )
    creator_name: Mapped[str] = mapped_column(String(100), nullable=False)
    remark: Mapped[str | None] = mapped_column(Text)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    split_count: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    items: Mapped[list["OrderSplitItem"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="OrderSplitItem.split_index",
        lazy="selectin",
    )


class OrderSplitItem(Base):
    __tablename__ = "order_split_items"
    __table_args__ = (
        Index("idx_split_items_execution", "execution_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("order_groups.id", ondelete="CASCADE"), nullable=False
    )
    provider_order_id: Mapped[str | None] = mapped_column(String(100))
    room_type: Mapped[str] = mapped_column(String(200), nullable=False)
    room_count: Mapped[int] = mapped_column(Integer, default=1)
    rate_code: Mapped[str | None] = mapped_column(String(100))
    account_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("pool_accounts.id", ondelete="SET NULL"))
    account_phone: Mapped[str | None] = mapped_column(String(30))
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="PROCESSING")
    payment_status: Mapped[str] = mapped_column(String(20), default="UNPAID")
    execution_status: Mapped[str] = mapped_column(String(20), nullable=False)
    split_index: Mapped[int] = mapped_column(Integer, nullable=False)
    split_total: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_link: Mapped[str | None] = mapped_column(Text)
    detail_url: Mapped[str | None] = mapped_column(Text)
    failure_code: Mapped[str | None] = mapped_column(String(50))
    failure_reason: Mapped[str | None] = mapped_column(Text)
    last_error: Mapped[str | None] = mapped_column(Text)
    submit_attempts: Mapped[int] = mapped_column(Integer, default=0)
    submitting_since: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    daily_slot_reserved: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    group: Mapped["OrderGroup"] = relationship(back_populates="items")
