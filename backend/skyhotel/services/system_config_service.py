"""System config service — the single admin configuration row."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.models.system import SystemConfig
from skyhotel.services.admission_gate import ChannelConfigSnapshot
from skyhotel.services.corporate_registry import corporate_registry

logger = logging.getLogger(__name__)

CONFIG_ID = "default"
EDITABLE_FIELDS = (
    "site_name",
    "support_contact",
    "maintenance_mode",
    "maintenance_message",
    "enable_new_user",
    "enable_platinum",
    "enable_corporate",
)


class SystemConfigService:

    async def get_config(self, db: AsyncSession) -> SystemConfig:
        """Load the config row, creating it with defaults on first use."""
        config = await db.get(SystemConfig, CONFIG_ID, populate_existing=True)
        if config is None:
            config = SystemConfig(
                id=CONFIG_ID,
                site_name="SkyHotel Agent Pro",
                support_contact="",
                maintenance_mode=False,
                maintenance_message="",
                enable_new_user=True,
                enable_platinum=True,
                enable_corporate=True,
                disabled_corporate_names=[],
            )
            db.add(config)
            await db.commit()
        return config

    async def snapshot(self, db: AsyncSession) -> ChannelConfigSnapshot:
        return ChannelConfigSnapshot.from_config(await self.get_config(db))

    async def update_config(self, db: AsyncSession, data: dict) -> SystemConfig:
        config = await self.get_config(db)
        for field in EDITABLE_FIELDS:
            if data.get(field) is not None:
                setattr(config, field, data[field])
        if data.get("disabled_corporate_names") is not None:
            # Unknown names are rejected, never stored
            agreements = await corporate_registry.resolve_names(db, data["disabled_corporate_names"])
            config.disabled_corporate_names = [a.name for a in agreements]
        await db.commit()
        logger.info(
            f"System config updated: maintenance={config.maintenance_mode} "
            f"channels=({config.enable_new_user}, {config.enable_platinum}, {config.enable_corporate})"
        )
        return config


system_config_service = SystemConfigService()
