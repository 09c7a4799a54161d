import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from skyhotel.database import Base, JSONType
from skyhotel.models.corporate import CorporateAgreement, pool_account_agreements


class PoolAccount(Base):
    __tablename__ = "pool_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    phone: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    remark: Mapped[str | None] = mapped_column(Text)
    is_online: Mapped[bool] = mapped_column(Boolean, default=True)
    is_new_user: Mapped[bool] = mapped_column(Boolean, default=False)
    is_platinum: Mapped[bool] = mapped_column(Boolean, default=False)
    points: Mapped[int] = mapped_column(Integer, default=0)
    breakfast_coupons: Mapped[int] = mapped_column(Integer, default=0)
    upgrade_coupons: Mapped[int] = mapped_column(Integer, default=0)
    late_checkout_coupons: Mapped[int] = mapped_column(Integer, default=0)
    slippers_coupons: Mapped[int] = mapped_column(Integer, default=0)
    daily_orders_left: Mapped[int] = mapped_column(Integer, default=0)
    # {"check_in": iso, "lottery": iso, "scan": iso}
    last_execution: Mapped[dict] = mapped_column(JSONType, default=dict)
    # {"check_in": "signed in +50 points", ...}
    last_result: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    agreements: Mapped[list[CorporateAgreement]] = relationship(
        secondary=pool_account_agreements, lazy="selectin"
    )

    @property
    def tier(self) -> str:
        if self.agreements:
            return "CORPORATE"
        if self.is_platinum:
            return "PLATINUM"
        if self.is_new_user:
            return "NEW_USER"
        return "NORMAL"

    def is_eligible_for(self, channel: str, agreement_id: uuid.UUID | None = None) -> bool:
        """Tier check only; online status and daily slots are checked by the caller."""
        if channel == "NEW_USER":
            return self.is_new_user
        if channel == "PLATINUM":
            return self.is_platinum
        if channel == "CORPORATE":
            return any(a.id == agreement_id and a.enabled for a in self.agreements)
        return False
