"""Price watch service — evaluates room price snapshots and manages monitor tasks."""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.config import settings
from skyhotel.errors import InvariantViolation
from skyhotel.models.enums import MonitorStatus
from skyhotel.models.monitor import PriceMonitorTask
from skyhotel.models.user import SystemUser
from skyhotel.services.provider_client import HotelProviderClient
from skyhotel.utils import business_date, ensure_utc, now_utc

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class PriceSnapshot:
    taken_at: datetime
    has_inventory: bool
    price: Decimal


def _point_day(point: dict) -> date:
    return business_date(datetime.fromisoformat(point["time"]))


def extend_candle(candle: dict | None, day: date, price: float) -> dict:
    """Fold one priced point into the running candle for `day`; a new day starts a fresh candle."""
    if candle is None or candle["date"] != day.isoformat():
        return {"date": day.isoformat(), "open": price, "close": price, "high": price, "low": price}
    return {
        "date": candle["date"],
        "open": candle["open"],
        "close": price,
        "high": max(candle["high"], price),
        "low": min(candle["low"], price),
    }


class PriceWatchEngine:
    """Applies snapshots to a task: history, inventory/price and status."""

    def __init__(self, intraday_window: int | None = None, daily_window: int | None = None):
        self.intraday_window = intraday_window or settings.price_watch_intraday_window
        self.daily_window = daily_window or settings.price_watch_daily_window

    def evaluate(self, task: PriceMonitorTask, snapshot: PriceSnapshot) -> bool:
        """Apply `snapshot` to `task`. Returns False if it is older than the last one applied."""
        taken_at = ensure_utc(snapshot.taken_at)
        last = ensure_utc(task.last_snapshot_at)
        if last is not None and taken_at < last:
            logger.debug(f"Monitor {task.id}: ignoring snapshot from {taken_at.isoformat()} (last {last.isoformat()})")
            return False

        price = snapshot.price if snapshot.has_inventory else ZERO
        today = business_date(taken_at)
        intraday = [p for p in (task.history_intraday or []) if _point_day(p) >= today]
        daily = list(task.history_daily or [])

        # The running candle covers every priced point of its day, including
        # points already trimmed from the intraday buffer
        candle = task.day_candle
        if candle and candle["date"] < today.isoformat():
            daily = [c for c in daily if c["date"] != candle["date"]] + [candle]
            candle = None
        if price > 0:
            candle = extend_candle(candle, today, float(price))

        intraday.append({"time": taken_at.isoformat(), "price": float(price)})

        # Reassign so the JSON columns are flagged dirty
        task.history_intraday = intraday[-self.intraday_window:]
        task.history_daily = daily[-self.daily_window:]
        task.day_candle = candle
        task.has_inventory = snapshot.has_inventory
        task.current_price = price
        task.last_snapshot_at = taken_at

        if task.status != MonitorStatus.PAUSED.value:
            self.apply_status(task, taken_at)
        return True

    @staticmethod
    def apply_status(task: PriceMonitorTask, moment: datetime | None = None) -> None:
        """REACHED iff in stock at or below target; otherwise MONITORING."""
        reached = bool(task.has_inventory) and Decimal(task.current_price) <= Decimal(task.target_price)
        if not reached:
            task.status = MonitorStatus.MONITORING.value
            return
        if task.status != MonitorStatus.REACHED.value:
            task.status = MonitorStatus.REACHED.value
            task.reached_at = moment or now_utc()
            task.reached_count = (task.reached_count or 0) + 1
            logger.info(f"Monitor {task.id} reached target {task.target_price} at {task.current_price}")


class PriceWatchService:

    def __init__(self, engine: PriceWatchEngine | None = None):
        self.engine = engine or PriceWatchEngine()

    @staticmethod
    def task_to_dict(task: PriceMonitorTask) -> dict:
        return {
            "id": str(task.id),
            "user_id": str(task.user_id),
            "chain_id": task.chain_id,
            "hotel_name": task.hotel_name,
            "room_type": task.room_type,
            "check_in": task.check_in.isoformat(),
            "check_out": task.check_out.isoformat(),
            "target_price": float(task.target_price),
            "current_price": float(task.current_price or 0),
            "has_inventory": bool(task.has_inventory),
            "status": task.status,
            "history_daily": task.history_daily or [],
            "history_intraday": task.history_intraday or [],
            "day_candle": task.day_candle,
            "note": task.note or "",
            "last_snapshot_at": task.last_snapshot_at.isoformat() if task.last_snapshot_at else None,
            "reached_at": task.reached_at.isoformat() if task.reached_at else None,
            "reached_count": task.reached_count or 0,
            "created_at": task.created_at.isoformat() if task.created_at else None,
            "last_updated": task.last_updated.isoformat() if task.last_updated else None,
        }

    async def create_task(self, db: AsyncSession, user: SystemUser, data: dict) -> PriceMonitorTask:
        self._validate(data["check_in"], data["check_out"], data["target_price"])
        task = PriceMonitorTask(
            user_id=user.id,
            chain_id=data["chain_id"],
            hotel_name=data["hotel_name"],
            room_type=data["room_type"],
            check_in=data["check_in"],
            check_out=data["check_out"],
            target_price=Decimal(str(data["target_price"])),
            current_price=ZERO,
            has_inventory=False,
            status=MonitorStatus.MONITORING.value,
            history_daily=[],
            history_intraday=[],
            note=data.get("note") or "",
            reached_count=0,
        )
        db.add(task)
        await db.commit()
        logger.info(f"Monitor created for {task.hotel_name} / {task.room_type} by {user.username}")
        return task

    @staticmethod
    def _validate(check_in: date, check_out: date, target_price) -> None:
        if (check_out - check_in).days < 1:
            raise InvariantViolation("Check-out must be after check-in", code="INVALID_DATES")
        if Decimal(str(target_price)) <= 0:
            raise InvariantViolation("Target price must be positive", code="INVALID_TARGET_PRICE")

    async def list_tasks(self, db: AsyncSession, user: SystemUser) -> list[PriceMonitorTask]:
        query = select(PriceMonitorTask).order_by(PriceMonitorTask.created_at.desc())
        if not user.is_admin:
            query = query.where(PriceMonitorTask.user_id == user.id)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_task(self, db: AsyncSession, task_id: uuid.UUID, lock: bool = False) -> PriceMonitorTask | None:
        query = select(PriceMonitorTask).where(PriceMonitorTask.id == task_id)
        if lock:
            query = query.with_for_update()
        result = await db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def update_task(self, db: AsyncSession, task: PriceMonitorTask, data: dict) -> PriceMonitorTask:
        watched = (task.room_type, task.check_in, task.check_out)
        for field in ("hotel_name", "room_type", "check_in", "check_out", "note"):
            if data.get(field) is not None:
                setattr(task, field, data[field])
        if data.get("target_price") is not None:
            task.target_price = Decimal(str(data["target_price"]))
        self._validate(task.check_in, task.check_out, task.target_price)
        if (task.room_type, task.check_in, task.check_out) != watched:
            self._reset_observations(task)
        if task.status != MonitorStatus.PAUSED.value:
            self.engine.apply_status(task)
        await db.commit()
        return task

    @staticmethod
    def _reset_observations(task: PriceMonitorTask) -> None:
        """A different room or stay starts over: prior prices belong to the old one."""
        task.current_price = ZERO
        task.has_inventory = False
        task.history_daily = []
        task.history_intraday = []
        task.day_candle = None
        task.last_snapshot_at = None
        logger.info(f"Monitor {task.id} now watches {task.room_type} {task.check_in}..{task.check_out}; history reset")

    async def delete_task(self, db: AsyncSession, task: PriceMonitorTask) -> None:
        await db.delete(task)
        await db.commit()

    async def pause(self, db: AsyncSession, task: PriceMonitorTask) -> PriceMonitorTask:
        task.status = MonitorStatus.PAUSED.value
        await db.commit()
        return task

    async def resume(self, db: AsyncSession, task: PriceMonitorTask) -> PriceMonitorTask:
        if task.status == MonitorStatus.PAUSED.value:
            task.status = MonitorStatus.MONITORING.value
            self.engine.apply_status(task)
            await db.commit()
        return task

    async def fetch_snapshot(self, provider: HotelProviderClient, task: PriceMonitorTask) -> PriceSnapshot:
        """Live lookup (never cached): cheapest available rate for the task's room type."""
        rates = await provider.search(task.chain_id, task.check_in, task.check_out)
        wanted = task.room_type.strip().lower()
        prices = [r.price for r in rates if r.available and r.price > 0 and r.room_type.strip().lower() == wanted]
        if not prices:
            return PriceSnapshot(taken_at=now_utc(), has_inventory=False, price=ZERO)
        return PriceSnapshot(taken_at=now_utc(), has_inventory=True, price=min(prices))

    async def check_task(
        self, db: AsyncSession, task_id: uuid.UUID, provider: HotelProviderClient
    ) -> PriceMonitorTask | None:
        task = await self.get_task(db, task_id)
        if task is None:
            return None
        snapshot = await self.fetch_snapshot(provider, task)
        await db.commit()

        # Evaluate under the row lock so concurrent checks apply in order
        task = await self.get_task(db, task_id, lock=True)
        if task is None:
            return None
        self.engine.evaluate(task, snapshot)
        await db.commit()
        return task

    async def check_all(self, db: AsyncSession, provider: HotelProviderClient) -> int:
        """Check every active monitor whose stay has not started yet. Called by scheduler."""
        result = await db.execute(
            select(PriceMonitorTask.id).where(
                PriceMonitorTask.status.in_([MonitorStatus.MONITORING.value, MonitorStatus.REACHED.value]),
                PriceMonitorTask.check_in >= business_date(),
            )
        )
        task_ids = [row[0] for row in result.all()]

        reached = 0
        for task_id in task_ids:
            try:
                task = await self.check_task(db, task_id, provider)
                if task and task.status == MonitorStatus.REACHED.value:
                    reached += 1
            except Exception as e:
                await db.rollback()
                logger.error(f"Price monitor check failed for {task_id}: {e}")
        return reached


price_watch_service = PriceWatchService()
