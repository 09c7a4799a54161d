"""System config router — channel switches, maintenance mode and the corporate ban-list."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.database import get_db
from skyhotel.dependencies import get_current_user, require_admin
from skyhotel.models.system import SystemConfig
from skyhotel.models.user import SystemUser
from skyhotel.services.system_config_service import system_config_service

router = APIRouter()


class UpdateConfigRequest(BaseModel):
    site_name: str | None = None
    support_contact: str | None = None
    maintenance_mode: bool | None = None
    maintenance_message: str | None = None
    enable_new_user: bool | None = None
    enable_platinum: bool | None = None
    enable_corporate: bool | None = None
    disabled_corporate_names: list[str] | None = None


def _config_to_dict(config: SystemConfig) -> dict:
    return {
        "site_name": config.site_name,
        "support_contact": config.support_contact,
        "maintenance_mode": config.maintenance_mode,
        "maintenance_message": config.maintenance_message,
        "channels": {
            "NEW_USER": config.enable_new_user,
            "PLATINUM": config.enable_platinum,
            "CORPORATE": config.enable_corporate,
        },
        "disabled_corporate_names": config.disabled_corporate_names or [],
        "updated_at": config.updated_at.isoformat() if config.updated_at else None,
    }


@router.get("/config")
async def get_config(
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    config = await system_config_service.get_config(db)
    return _config_to_dict(config)


@router.patch("/config")
async def update_config(
    req: UpdateConfigRequest,
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    config = await system_config_service.update_config(db, req.model_dump(exclude_unset=True))
    return _config_to_dict(config)
