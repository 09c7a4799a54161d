"""Hotel blacklist service — agent-reported hotel problems and the advisory pre-booking check."""

import logging
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.models.blacklist import HotelBlacklistRecord
from skyhotel.models.enums import BlacklistSeverity, BlacklistStatus
from skyhotel.models.user import SystemUser
from skyhotel.utils import business_date

logger = logging.getLogger(__name__)

SEVERITY_WEIGHT = {
    BlacklistSeverity.HIGH.value: 3,
    BlacklistSeverity.MEDIUM.value: 2,
    BlacklistSeverity.LOW.value: 1,
}


def normalize_tags(tags) -> list[str]:
    """Accepts a list or a comma-separated string; trims, drops blanks and duplicates."""
    if not tags:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    cleaned = []
    for tag in tags:
        tag = str(tag).strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def _max_severity(records: list[HotelBlacklistRecord]) -> str:
    severity = BlacklistSeverity.LOW.value
    for record in records:
        if SEVERITY_WEIGHT[record.severity] > SEVERITY_WEIGHT[severity]:
            severity = record.severity
    return severity


class BlacklistService:

    @staticmethod
    def record_to_dict(record: HotelBlacklistRecord) -> dict:
        return {
            "id": str(record.id),
            "chain_id": record.chain_id,
            "hotel_name": record.hotel_name,
            "severity": record.severity,
            "reason": record.reason,
            "tags": record.tags or [],
            "status": record.status,
            "reported_by": record.reported_by,
            "reporter_id": str(record.reporter_id) if record.reporter_id else None,
            "source": record.source,
            "reported_on": record.reported_on.isoformat(),
            "created_at": record.created_at.isoformat() if record.created_at else None,
            "updated_at": record.updated_at.isoformat() if record.updated_at else None,
        }

    async def list_records(
        self,
        db: AsyncSession,
        search: str | None = None,
        chain_id: str | None = None,
        severity: str | None = None,
        status: str | None = None,
    ) -> list[HotelBlacklistRecord]:
        """Newest first. `search` matches hotel name, chain id, reason or any tag."""
        query = select(HotelBlacklistRecord).order_by(
            HotelBlacklistRecord.reported_on.desc(), HotelBlacklistRecord.created_at.desc()
        )
        if chain_id:
            query = query.where(func.lower(HotelBlacklistRecord.chain_id) == chain_id.strip().lower())
        if severity:
            query = query.where(HotelBlacklistRecord.severity == severity)
        if status:
            query = query.where(HotelBlacklistRecord.status == status)
        result = await db.execute(query)
        records = list(result.scalars().all())

        if search:
            keyword = search.strip().lower()
            records = [
                r for r in records
                if keyword in r.hotel_name.lower()
                or keyword in r.chain_id.lower()
                or keyword in r.reason.lower()
                or any(keyword in tag.lower() for tag in (r.tags or []))
            ]
        return records

    async def get_record(self, db: AsyncSession, record_id: uuid.UUID) -> HotelBlacklistRecord | None:
        result = await db.execute(
            select(HotelBlacklistRecord)
            .where(HotelBlacklistRecord.id == record_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_record(self, db: AsyncSession, reporter: SystemUser, data: dict) -> HotelBlacklistRecord:
        record = HotelBlacklistRecord(
            chain_id=data["chain_id"].strip(),
            hotel_name=data["hotel_name"].strip(),
            severity=data["severity"],
            reason=data["reason"].strip(),
            tags=normalize_tags(data.get("tags")),
            status=data.get("status") or BlacklistStatus.ACTIVE.value,
            reported_by=data.get("reported_by") or reporter.name,
            reporter_id=reporter.id,
            source=data.get("source") or "manual",
            reported_on=data.get("reported_on") or business_date(),
        )
        db.add(record)
        await db.commit()
        logger.info(f"Blacklist report on {record.hotel_name} ({record.severity}) by {reporter.username}")
        return record

    async def update_record(self, db: AsyncSession, record: HotelBlacklistRecord, data: dict) -> HotelBlacklistRecord:
        for field in ("chain_id", "hotel_name", "reason"):
            if data.get(field) is not None:
                setattr(record, field, data[field].strip())
        for field in ("severity", "status", "source", "reported_on"):
            if data.get(field) is not None:
                setattr(record, field, data[field])
        if data.get("tags") is not None:
            record.tags = normalize_tags(data["tags"])
        await db.commit()
        return record

    async def delete_record(self, db: AsyncSession, record: HotelBlacklistRecord) -> None:
        await db.delete(record)
        await db.commit()

    async def list_hotels(self, db: AsyncSession, **filters) -> list[dict]:
        """Records grouped per hotel, worst severity first, then most reported."""
        hotels: dict[tuple[str, str], dict] = {}
        for record in await self.list_records(db, **filters):
            entry = hotels.setdefault((record.chain_id, record.hotel_name), {
                "chain_id": record.chain_id,
                "hotel_name": record.hotel_name,
                "count": 0,
                "max_severity": BlacklistSeverity.LOW.value,
                "last_reported_on": None,
                "tags": [],
                "records": [],
            })
            entry["count"] += 1
            entry["records"].append(self.record_to_dict(record))
            for tag in record.tags or []:
                if tag not in entry["tags"]:
                    entry["tags"].append(tag)
            if SEVERITY_WEIGHT[record.severity] > SEVERITY_WEIGHT[entry["max_severity"]]:
                entry["max_severity"] = record.severity
            reported_on = record.reported_on.isoformat()
            if entry["last_reported_on"] is None or reported_on > entry["last_reported_on"]:
                entry["last_reported_on"] = reported_on

        return sorted(
            hotels.values(),
            key=lambda h: (SEVERITY_WEIGHT[h["max_severity"]], h["count"]),
            reverse=True,
        )

    async def active_records_for(
        self, db: AsyncSession, chain_id: str | None, hotel_name: str | None
    ) -> list[HotelBlacklistRecord]:
        conditions = []
        if chain_id and chain_id.strip():
            conditions.append(func.lower(HotelBlacklistRecord.chain_id) == chain_id.strip().lower())
        if hotel_name and hotel_name.strip():
            conditions.append(func.lower(HotelBlacklistRecord.hotel_name) == hotel_name.strip().lower())
        if not conditions:
            return []
        result = await db.execute(
            select(HotelBlacklistRecord).where(
                HotelBlacklistRecord.status == BlacklistStatus.ACTIVE.value,
                or_(*conditions),
            )
        )
        return list(result.scalars().all())

    async def check_hotel(self, db: AsyncSession, chain_id: str | None, hotel_name: str | None) -> dict:
        """Advisory check before booking: active reports matching the chain id or hotel name."""
        records = await self.active_records_for(db, chain_id, hotel_name)
        return {
            "blacklisted": bool(records),
            "count": len(records),
            "max_severity": _max_severity(records),
            "records": [self.record_to_dict(r) for r in records],
        }


blacklist_service = BlacklistService()
