"""Hotel search router — room and rate lookup for booking."""

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.database import get_db
from skyhotel.dependencies import get_current_user, get_provider
from skyhotel.models.user import SystemUser
from skyhotel.services.blacklist_service import blacklist_service
from skyhotel.services.cache_service import cache_service
from skyhotel.services.provider_client import HotelProviderClient

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{chain_id}/rooms")
async def search_rooms(
    chain_id: str,
    check_in: date = Query(...),
    check_out: date = Query(...),
    db: AsyncSession = Depends(get_db),
    user: SystemUser = Depends(get_current_user),
    provider: HotelProviderClient = Depends(get_provider),
):
    """Rooms and rates for a stay, cheapest first. Served from cache when fresh.

    `blacklist` summarizes active reports against the hotel; it is always read live.
    """
    if (check_out - check_in).days < 1:
        raise HTTPException(status_code=422, detail="check_out must be after check_in")

    risk = await blacklist_service.check_hotel(db, chain_id, None)
    blacklist = {"count": risk["count"], "max_severity": risk["max_severity"] if risk["count"] else None}

    cached = await cache_service.get_rooms(chain_id, check_in, check_out)
    if cached is not None:
        return {"chain_id": chain_id, "rooms": cached, "cached": True, "blacklist": blacklist}

    rates = await provider.search(chain_id, check_in, check_out)
    rooms = [r.to_dict() for r in rates]
    await cache_service.set_rooms(chain_id, check_in, check_out, rooms)
    logger.info(f"Room search {chain_id} {check_in}..{check_out}: {len(rooms)} rates")
    return {"chain_id": chain_id, "rooms": rooms, "cached": False, "blacklist": blacklist}
