from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from skyhotel.database import Base, JSONType


class SystemConfig(Base):
    """Single-row admin configuration (id = "default")."""

    __tablename__ = "system_config"

    id: Mapped[str] = mapped_column(String(20), primary_key=True, default="default")
    site_name: Mapped[str] = mapped_column(String(100), default="SkyHotel Agent Pro")
    support_contact: Mapped[str] = mapped_column(String(200), default="")
    maintenance_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    maintenance_message: Mapped[str] = mapped_column(Text, default="")
    enable_new_user: Mapped[bool] = mapped_column(Boolean, default=True)
    enable_platinum: Mapped[bool] = mapped_column(Boolean, default=True)
    enable_corporate: Mapped[bool] = mapped_column(Boolean, default=True)
    disabled_corporate_names: Mapped[list] = mapped_column(JSONType, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
