from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.database import get_db
from skyhotel.dependencies import get_current_user, require_admin
from skyhotel.models.corporate import CorporateAgreement
from skyhotel.models.user import SystemUser
from skyhotel.services.corporate_registry import corporate_registry

router = APIRouter()


class CreateAgreementRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    enabled: bool = True


def _agreement_to_dict(agreement: CorporateAgreement) -> dict:
    return {
        "id": str(agreement.id),
        "name": agreement.name,
        "enabled": agreement.enabled,
        "created_at": agreement.created_at.isoformat() if agreement.created_at else None,
    }


@router.get("")
async def list_agreements(
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    agreements = await corporate_registry.list_agreements(db)
    return {"agreements": [_agreement_to_dict(a) for a in agreements], "count": len(agreements)}


@router.post("", status_code=201)
async def create_agreement(
    req: CreateAgreementRequest,
    db: AsyncSession = Depends(get_db),
    admin: SystemUser = Depends(require_admin),
):
    agreement = await corporate_registry.create_agreement(db, req.name, enabled=req.enabled)
    await db.commit()
    return _agreement_to_dict(agreement)
