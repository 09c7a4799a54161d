"""Blacklist router — hotel problem reports and the pre-booking hotel check."""

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.database import get_db
from skyhotel.dependencies import get_current_user
from skyhotel.models.blacklist import HotelBlacklistRecord
from skyhotel.models.enums import BlacklistSeverity, BlacklistStatus
from skyhotel.models.user import SystemUser
from skyhotel.services.blacklist_service import blacklist_service

router = APIRouter()


class CreateRecordRequest(BaseModel):
    chain_id: str = Field(min_length=1)
    hotel_name: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    severity: BlacklistSeverity
    tags: list[str] | str | None = None
    status: BlacklistStatus = BlacklistStatus.ACTIVE
    source: str | None = None
    reported_on: date | None = None

    model_config = {"use_enum_values": True}


class UpdateRecordRequest(BaseModel):
    chain_id: str | None = Field(default=None, min_length=1)
    hotel_name: str | None = Field(default=None, min_length=1)
    reason: str | None = Field(default=None, min_length=1)
    severity: BlacklistSeverity | None = None
    tags: list[str] | str | None = None
    status: BlacklistStatus | None = None
    source: str | None = None
    reported_on: date | None = None

    model_config = {"use_enum_values": True}


async def _get_record(db: AsyncSession, record_id: uuid.UUID) -> HotelBlacklistRecord:
    record = await blacklist_service.get_record(db, record_id)
    if not record:
        raise HTTPException(status_code=404, detail="Blacklist record not found")
    return record


def _check_owner(user: SystemUser, record: HotelBlacklistRecord) -> None:
    if not user.is_admin and record.reporter_id != user.id:
        raise HTTPException(status_code=403, detail="Only the reporter or an admin can change this record")


@router.get("/records")
async def list_records(
    search: str | None = Query(None),
    chain_id: str | None = Query(None),
    severity: BlacklistSeverity | None = Query(None),
    status: BlacklistStatus | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    records = await blacklist_service.list_records(
        db,
        search=search,
        chain_id=chain_id,
        severity=severity.value if severity else None,
        status=status.value if status else None,
    )
    return {"records": [blacklist_service.record_to_dict(r) for r in records], "count": len(records)}


@router.post("/records", status_code=201)
async def create_record(
    req: CreateRecordRequest,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    record = await blacklist_service.create_record(db, user, req.model_dump())
    return blacklist_service.record_to_dict(record)


@router.get("/records/{record_id}")
async def get_record(
    record_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    record = await _get_record(db, record_id)
    return blacklist_service.record_to_dict(record)


@router.patch("/records/{record_id}")
async def update_record(
    record_id: uuid.UUID,
    req: UpdateRecordRequest,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    data = req.model_dump(exclude_none=True)
    if not data:
        raise HTTPException(status_code=422, detail="Patch body cannot be empty")
    record = await _get_record(db, record_id)
    _check_owner(user, record)
    record = await blacklist_service.update_record(db, record, data)
    return blacklist_service.record_to_dict(record)


@router.delete("/records/{record_id}", status_code=204)
async def delete_record(
    record_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    record = await _get_record(db, record_id)
    _check_owner(user, record)
    await blacklist_service.delete_record(db, record)


@router.get("/hotels")
async def list_hotels(
    search: str | None = Query(None),
    chain_id: str | None = Query(None),
    severity: BlacklistSeverity | None = Query(None),
    status: BlacklistStatus | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    hotels = await blacklist_service.list_hotels(
        db,
        search=search,
        chain_id=chain_id,
        severity=severity.value if severity else None,
        status=status.value if status else None,
    )
    return {"hotels": hotels, "count": len(hotels)}


@router.get("/hotel-check")
async def check_hotel(
    chain_id: str | None = Query(None),
    hotel_name: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
):
    """Advisory: active reports for a hotel. Booking is never blocked by this."""
    if not (chain_id or "").strip() and not (hotel_name or "").strip():
        raise HTTPException(status_code=422, detail="chain_id or hotel_name is required")
    return await blacklist_service.check_hotel(db, chain_id, hotel_name)
