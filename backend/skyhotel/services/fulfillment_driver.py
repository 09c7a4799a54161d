"""Fulfillment driver — moves split items through their execution states against the provider.

Every state change is a compare-and-swap on the prior state, and no database
transaction is held open across a provider call:

    1. claim / validate in one short transaction
    2. call the provider (bounded by a semaphore and a timeout)
    3. record the outcome in a second short transaction

A provider timeout or network failure leaves the item where it was (in doubt)
with `last_error` set; `refresh_item` resolves it later.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import asdict, dataclass
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from skyhotel.config import settings
from skyhotel.database import async_session_factory
from skyhotel.errors import CancelFailed, InvariantViolation, ProviderError, ProviderRejected, ProviderTransient, SkyHotelError
from skyhotel.models.enums import Channel
from skyhotel.models.enums import ExecutionStatus as ES
from skyhotel.models.enums import PaymentStatus
from skyhotel.models.order import OrderGroup, OrderSplitItem
from skyhotel.models.pool import PoolAccount
from skyhotel.services.execution_state import (
    LOCAL_CANCELLABLE,
    PLACED,
    PROVIDER_CANCELLABLE,
    assert_transition,
    can_transition,
    item_business_status,
)
from skyhotel.services.order_service import order_service
from skyhotel.services.pool_service import ACCOUNT_INELIGIBLE, NO_ELIGIBLE_ACCOUNT, ineligibility_reason, pool_service
from skyhotel.services.provider_client import HotelProviderClient, SubmitRequest, SubmitResult, provider_client
from skyhotel.utils import ensure_utc, now_utc

logger = logging.getLogger(__name__)

PROVIDER_REJECTED = "PROVIDER_REJECTED"
PROVIDER_NO_RECORD = "PROVIDER_NO_RECORD"

REFRESHABLE = frozenset({ES.SUBMITTING, ES.WAIT_CONFIRM, ES.ORDERED, ES.DONE})


@dataclass
class ItemOutcome:
    item_id: uuid.UUID
    outcome: str  # submitted | queued | failed | in_doubt | refreshed | cancelled | no_op | error
    execution_status: str
    error_code: str | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _sanitize(text: str) -> str:
    return " ".join(str(text).split())[:200]


class FulfillmentDriver:

    def __init__(
        self,
        provider: HotelProviderClient | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        max_concurrency: int | None = None,
        timeout_seconds: float | None = None,
    ):
        self.provider = provider or provider_client
        self.session_factory = session_factory or async_session_factory
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.provider_timeout_seconds
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.fulfillment_max_concurrency)

    # --- Primitives ---

    async def _transition(
        self,
        db: AsyncSession,
        item_id: uuid.UUID,
        expected: Iterable[ES],
        target: ES,
        **values,
    ) -> bool:
        """Compare-and-swap the execution status. Returns False if the item was not in `expected`."""
        expected = list(expected)
        for current in expected:
            assert_transition(current.value, target.value)
        result = await db.execute(
            update(OrderSplitItem)
            .where(
                OrderSplitItem.id == item_id,
                OrderSplitItem.execution_status.in_([s.value for s in expected]),
            )
            .values(execution_status=target.value, status=item_business_status(target.value), **values)
            .execution_options(synchronize_session=False)
        )
        moved = result.rowcount == 1
        if moved:
            logger.info(f"Item {item_id}: {'|'.join(s.value for s in expected)} -> {target.value}")
        return moved

    async def _provider_call(self, coro: Awaitable):
        return await asyncio.wait_for(coro, timeout=self.timeout_seconds)

    async def _load(self, db: AsyncSession, item_id: uuid.UUID) -> OrderSplitItem:
        item = await order_service.get_item(db, item_id)
        if item is None:
            raise InvariantViolation(f"Order item {item_id} not found", code="ITEM_NOT_FOUND")
        return item

    async def _record_last_error(self, item_id: uuid.UUID, status: ES, message: str) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(OrderSplitItem)
                .where(OrderSplitItem.id == item_id, OrderSplitItem.execution_status == status.value)
                .values(last_error=_sanitize(message))
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    # --- Submission ---

    async def submit_item(self, item_id: uuid.UUID) -> ItemOutcome:
        """Claim a QUEUED item and place it with the provider. Anything else is a no-op."""
        async with self._semaphore:
            return await self._submit(item_id)

    async def _submit(self, item_id: uuid.UUID) -> ItemOutcome:
        async with self.session_factory() as db:
            item = await self._load(db, item_id)
            if item.execution_status != ES.QUEUED.value:
                return ItemOutcome(item_id, "no_op", item.execution_status, message="item is not queued")

            claimed = await self._transition(
                db,
                item_id,
                [ES.QUEUED],
                ES.SUBMITTING,
                submit_attempts=OrderSplitItem.submit_attempts + 1,
                submitting_since=now_utc(),
                last_error=None,
                failure_code=None,
                failure_reason=None,
            )
            if not claimed:
                await db.rollback()
                return ItemOutcome(item_id, "no_op", ES.SUBMITTING.value, message="already claimed")

            group = await db.get(OrderGroup, item.group_id)
            account, failure = await self._bind_account(db, item, group)
            if failure:
                code, reason = failure
                await self._transition(
                    db, item_id, [ES.SUBMITTING], ES.FAILED, failure_code=code, failure_reason=reason
                )
                await order_service.sync_group(db, group.id)
                await db.commit()
                logger.warning(f"Item {item_id} of {group.biz_order_no} failed: {code} ({reason})")
                return ItemOutcome(item_id, "failed", ES.FAILED.value, error_code=code, message=reason)

            await db.execute(
                update(OrderSplitItem)
                .where(OrderSplitItem.id == item_id)
                .values(account_id=account.id, account_phone=account.phone, daily_slot_reserved=True)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

            request = SubmitRequest(
                client_reference=str(item.id),
                chain_id=group.chain_id,
                room_type=item.room_type,
                room_count=item.room_count,
                rate_code=item.rate_code,
                check_in=item.check_in_date,
                check_out=item.check_out_date,
                amount=item.amount,
                customer_name=group.customer_name,
                contact_phone=group.contact_phone,
                account_phone=account.phone,
            )
            group_id, account_id = group.id, account.id

        try:
            result = await self._provider_call(self.provider.submit(request))
        except ProviderRejected as e:
            return await self._record_rejection(item_id, group_id, account_id, e.message)
        except (ProviderTransient, asyncio.TimeoutError) as e:
            message = e.message if isinstance(e, ProviderError) else "Provider call timed out"
            logger.warning(f"Item {item_id} submission in doubt: {message}")
            await self._record_last_error(item_id, ES.SUBMITTING, message)
            return ItemOutcome(item_id, "in_doubt", ES.SUBMITTING.value, error_code="PROVIDER_TRANSIENT", message=message)

        return await self._record_submitted(item_id, group_id, result)

    async def _bind_account(
        self, db: AsyncSession, item: OrderSplitItem, group: OrderGroup
    ) -> tuple[PoolAccount | None, tuple[str, str] | None]:
        """Validate the bound account (or pick one) and reserve one daily slot on it."""
        channel = Channel(group.channel)
        if item.account_id:
            account = await pool_service.get_account(db, item.account_id)
            if account is None:
                return None, (ACCOUNT_INELIGIBLE, "bound account no longer exists")
            reason = ineligibility_reason(account, channel, group.corporate_agreement_id)
            if reason:
                return None, (ACCOUNT_INELIGIBLE, reason)
            if not await pool_service.reserve_daily_slot(db, account.id):
                return None, (ACCOUNT_INELIGIBLE, "account has no daily orders left")
            return account, None

        for account in await pool_service.candidates(db, channel, group.corporate_agreement_id):
            if await pool_service.reserve_daily_slot(db, account.id):
                return account, None
        return None, (NO_ELIGIBLE_ACCOUNT, f"no online {channel.value} account with daily orders left")

    async def _record_submitted(self, item_id: uuid.UUID, group_id: uuid.UUID, result: SubmitResult) -> ItemOutcome:
        target = result.execution_status
        values = {"provider_order_id": result.provider_order_id, "last_error": None}
        if target in PLACED:
            values.update(payment_link=result.payment_link, detail_url=result.detail_url)

        async with self.session_factory() as db:
            moved = await self._transition(db, item_id, [ES.SUBMITTING], target, **values)
            if not moved:
                await db.rollback()
                item = await self._load(db, item_id)
                logger.warning(
                    f"Item {item_id} left SUBMITTING before provider order {result.provider_order_id} was recorded"
                )
                return ItemOutcome(item_id, "no_op", item.execution_status, message="item changed during submission")
            await order_service.sync_group(db, group_id)
            await db.commit()
        return ItemOutcome(item_id, "submitted", target.value)

    async def _record_rejection(
        self, item_id: uuid.UUID, group_id: uuid.UUID, account_id: uuid.UUID, message: str
    ) -> ItemOutcome:
        reason = _sanitize(message)
        async with self.session_factory() as db:
            moved = await self._transition(
                db,
                item_id,
                [ES.SUBMITTING],
                ES.FAILED,
                failure_code=PROVIDER_REJECTED,
                failure_reason=reason,
                daily_slot_reserved=False,
            )
            if moved:
                await pool_service.release_daily_slot(db, account_id)
                await order_service.sync_group(db, group_id)
            await db.commit()
        logger.warning(f"Item {item_id} rejected by provider: {reason}")
        return ItemOutcome(item_id, "failed", ES.FAILED.value, error_code=PROVIDER_REJECTED, message=reason)

    async def confirm_submit(self, item_id: uuid.UUID) -> ItemOutcome:
        """Queue a plan or a failed item, then submit it."""
        async with self.session_factory() as db:
            item = await self._load(db, item_id)
            current = ES(item.execution_status)
            if current in (ES.PLAN_PENDING, ES.FAILED):
                queued = await self._transition(
                    db, item_id, [current], ES.QUEUED, failure_code=None, failure_reason=None, last_error=None
                )
                if queued:
                    await order_service.sync_group(db, item.group_id)
                    await db.commit()
            elif current != ES.QUEUED:
                return ItemOutcome(item_id, "no_op", current.value, message=f"item is {current.value}")

        return await self.submit_item(item_id)

    # --- Refresh ---

    async def refresh_item(self, item_id: uuid.UUID) -> ItemOutcome:
        """Re-read the provider's view of an item. Idempotent; read failures change nothing."""
        async with self._semaphore:
            return await self._refresh(item_id)

    async def _refresh(self, item_id: uuid.UUID) -> ItemOutcome:
        async with self.session_factory() as db:
            item = await self._load(db, item_id)
            current = ES(item.execution_status)
            provider_order_id = item.provider_order_id
            group_id = item.group_id
            in_doubt = bool(item.last_error) or self._is_stale(item)

        if current not in REFRESHABLE:
            return ItemOutcome(item_id, "no_op", current.value, message="nothing to refresh")

        if current == ES.SUBMITTING and not provider_order_id:
            if not in_doubt:
                return ItemOutcome(item_id, "no_op", current.value, message="submission in progress")
            try:
                provider_order_id = await self._provider_call(self.provider.find_order(str(item_id)))
            except (ProviderError, asyncio.TimeoutError) as e:
                return await self._refresh_failed(item_id, current, e)
            if provider_order_id is None:
                return await self._resolve_no_record(item_id, group_id)
            await self._adopt(item_id, provider_order_id)

        try:
            remote = await self._provider_call(self.provider.refresh_status(provider_order_id))
        except (ProviderError, asyncio.TimeoutError) as e:
            return await self._refresh_failed(item_id, current, e)

        async with self.session_factory() as db:
            item = await self._load(db, item_id)
            current = ES(item.execution_status)
            target = remote.execution_status
            payment_status = PaymentStatus.PAID.value if remote.paid else item.payment_status
            values = {"payment_status": payment_status, "last_error": None}

            if target != current and can_transition(current.value, target.value):
                if target == ES.FAILED:
                    values.update(
                        failure_code=PROVIDER_REJECTED,
                        failure_reason="Provider declined the reservation",
                        daily_slot_reserved=False,
                    )
                moved = await self._transition(db, item_id, [current], target, **values)
                if moved and target == ES.FAILED and item.daily_slot_reserved and item.account_id:
                    await pool_service.release_daily_slot(db, item.account_id)
            else:
                if target != current:
                    logger.warning(f"Item {item_id}: ignoring provider state {target.value} while {current.value}")
                await db.execute(
                    update(OrderSplitItem)
                    .where(OrderSplitItem.id == item_id, OrderSplitItem.execution_status == current.value)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            await order_service.sync_group(db, group_id)
            await db.commit()
            item = await self._load(db, item_id)
        return ItemOutcome(item_id, "refreshed", item.execution_status)

    @staticmethod
    def _is_stale(item: OrderSplitItem) -> bool:
        since = ensure_utc(item.submitting_since)
        if since is None:
            return True
        return now_utc() - since >= timedelta(minutes=settings.submit_in_doubt_after_minutes)

    async def _refresh_failed(self, item_id: uuid.UUID, current: ES, error: Exception) -> ItemOutcome:
        message = error.message if isinstance(error, SkyHotelError) else "Provider call timed out"
        logger.warning(f"Item {item_id} refresh failed: {message}")
        await self._record_last_error(item_id, current, message)
        return ItemOutcome(item_id, "in_doubt", current.value, error_code="PROVIDER_UNAVAILABLE", message=message)

    async def _adopt(self, item_id: uuid.UUID, provider_order_id: str) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(OrderSplitItem)
                .where(
                    OrderSplitItem.id == item_id,
                    OrderSplitItem.execution_status == ES.SUBMITTING.value,
                    OrderSplitItem.provider_order_id.is_(None),
                )
                .values(provider_order_id=provider_order_id)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        logger.info(f"Item {item_id} adopted provider order {provider_order_id}")

    async def _resolve_no_record(self, item_id: uuid.UUID, group_id: uuid.UUID) -> ItemOutcome:
        reason = "Provider has no record of this order"
        async with self.session_factory() as db:
            item = await self._load(db, item_id)
            moved = await self._transition(
                db,
                item_id,
                [ES.SUBMITTING],
                ES.FAILED,
                failure_code=PROVIDER_NO_RECORD,
                failure_reason=reason,
                daily_slot_reserved=False,
            )
            if moved and item.daily_slot_reserved and item.account_id:
                await pool_service.release_daily_slot(db, item.account_id)
            await order_service.sync_group(db, group_id)
            await db.commit()
        return ItemOutcome(item_id, "failed", ES.FAILED.value, error_code=PROVIDER_NO_RECORD, message=reason)

    # --- Cancellation ---

    async def cancel_item(self, item_id: uuid.UUID) -> ItemOutcome:
        """Cancel locally, or at the provider first when it may hold a reservation."""
        async with self.session_factory() as db:
            item = await self._load(db, item_id)
            current = ES(item.execution_status)

            if current == ES.CANCELLED:
                return ItemOutcome(item_id, "no_op", current.value, message="already cancelled")
            if current == ES.SUBMITTING:
                raise InvariantViolation(
                    "Item is being submitted; refresh it before cancelling",
                    code="SUBMISSION_IN_FLIGHT",
                    details={"item_id": str(item_id)},
                )
            if current in LOCAL_CANCELLABLE:
                moved = await self._transition(db, item_id, [current], ES.CANCELLED, daily_slot_reserved=False)
                if not moved:
                    await db.rollback()
                    item = await self._load(db, item_id)
                    return ItemOutcome(item_id, "no_op", item.execution_status, message="item changed; retry")
                if item.daily_slot_reserved and item.account_id:
                    await pool_service.release_daily_slot(db, item.account_id)
                await order_service.sync_group(db, item.group_id)
                await db.commit()
                return ItemOutcome(item_id, "cancelled", ES.CANCELLED.value)

            provider_order_id = item.provider_order_id
            group_id = item.group_id

        if current not in PROVIDER_CANCELLABLE or not provider_order_id:
            raise CancelFailed("Item has no provider order to cancel", details={"item_id": str(item_id)})

        async with self._semaphore:
            try:
                cancelled = await self._provider_call(self.provider.cancel(provider_order_id))
            except (ProviderError, asyncio.TimeoutError) as e:
                logger.warning(f"Provider cancel of {provider_order_id} failed: {e}")
                raise CancelFailed(
                    f"Provider could not cancel order {provider_order_id}",
                    details={"item_id": str(item_id), "execution_status": current.value},
                ) from e
        if not cancelled:
            raise CancelFailed(
                f"Provider refused to cancel order {provider_order_id}",
                details={"item_id": str(item_id), "execution_status": current.value},
            )

        async with self.session_factory() as db:
            # The account slot was spent on the provider order and is not returned
            moved = await self._transition(
                db, item_id, [*PROVIDER_CANCELLABLE, ES.FAILED], ES.CANCELLED, daily_slot_reserved=False
            )
            await order_service.sync_group(db, group_id)
            await db.commit()
            item = await self._load(db, item_id)
        if not moved:
            return ItemOutcome(item_id, "no_op", item.execution_status, message="item changed during cancel")
        return ItemOutcome(item_id, "cancelled", ES.CANCELLED.value)

    # --- Links ---

    async def payment_link(self, item_id: uuid.UUID) -> str:
        return await self._link(item_id, "payment_link", self.provider.payment_link)

    async def detail_link(self, item_id: uuid.UUID) -> str:
        return await self._link(item_id, "detail_url", self.provider.detail_link)

    async def _link(self, item_id: uuid.UUID, field: str, fetch: Callable[[str], Awaitable[str]]) -> str:
        async with self.session_factory() as db:
            item = await self._load(db, item_id)
            if ES(item.execution_status) not in PLACED or not item.provider_order_id:
                raise InvariantViolation(
                    "Links are available once the order is placed",
                    code="LINK_UNAVAILABLE",
                    details={"execution_status": item.execution_status},
                )
            if getattr(item, field):
                return getattr(item, field)
            provider_order_id = item.provider_order_id

        try:
            link = await self._provider_call(fetch(provider_order_id))
        except asyncio.TimeoutError as e:
            raise ProviderTransient("Provider link request timed out") from e

        async with self.session_factory() as db:
            await db.execute(
                update(OrderSplitItem)
                .where(OrderSplitItem.id == item_id)
                .values({field: link})
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return link

    # --- Whole-group operations ---

    async def _item_states(self, group_id: uuid.UUID) -> list[tuple[uuid.UUID, ES]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(OrderSplitItem.id, OrderSplitItem.execution_status)
                .where(OrderSplitItem.group_id == group_id)
                .order_by(OrderSplitItem.split_index)
            )
            return [(row[0], ES(row[1])) for row in result.all()]

    async def _run_each(
        self,
        action: Callable[[uuid.UUID], Awaitable[ItemOutcome]],
        targets: list[tuple[uuid.UUID, ES]],
    ) -> list[ItemOutcome]:
        async def guarded(item_id: uuid.UUID, status: ES) -> ItemOutcome:
            try:
                return await action(item_id)
            except SkyHotelError as e:
                return ItemOutcome(item_id, "error", status.value, error_code=e.code, message=e.message)
            except Exception:
                logger.exception(f"Unexpected failure on item {item_id}")
                return ItemOutcome(item_id, "error", status.value, error_code="INTERNAL_ERROR")

        return list(await asyncio.gather(*(guarded(item_id, status) for item_id, status in targets)))

    async def submit_group(self, group_id: uuid.UUID) -> list[ItemOutcome]:
        targets = [
            (i, s) for i, s in await self._item_states(group_id)
            if s in (ES.PLAN_PENDING, ES.QUEUED, ES.FAILED)
        ]
        return await self._run_each(self.confirm_submit, targets)

    async def cancel_group(self, group_id: uuid.UUID) -> list[ItemOutcome]:
        targets = [(i, s) for i, s in await self._item_states(group_id) if s != ES.CANCELLED]
        return await self._run_each(self.cancel_item, targets)

    async def refresh_group(self, group_id: uuid.UUID) -> list[ItemOutcome]:
        targets = [(i, s) for i, s in await self._item_states(group_id) if s in REFRESHABLE]
        return await self._run_each(self.refresh_item, targets)

    async def process_group(self, group_id: uuid.UUID) -> list[ItemOutcome]:
        """Submit the group's QUEUED items; run in the background after admission."""
        targets = [(i, s) for i, s in await self._item_states(group_id) if s == ES.QUEUED]
        outcomes = await self._run_each(self.submit_item, targets)
        if outcomes:
            summary = ", ".join(f"{o.outcome}={o.execution_status}" for o in outcomes)
            logger.info(f"Processed group {group_id}: {summary}")
        return outcomes

    # --- Scheduler sweeps ---

    async def sweep(self) -> dict[str, int]:
        """Submit stranded QUEUED items and refresh in-doubt / unconfirmed ones."""
        cutoff = now_utc() - timedelta(minutes=settings.submit_in_doubt_after_minutes)
        async with self.session_factory() as db:
            queued = await db.execute(
                select(OrderSplitItem.id).where(OrderSplitItem.execution_status == ES.QUEUED.value)
            )
            queued_ids = [(row[0], ES.QUEUED) for row in queued.all()]
            pending = await db.execute(
                select(OrderSplitItem.id, OrderSplitItem.execution_status).where(
                    (
                        (OrderSplitItem.execution_status == ES.SUBMITTING.value)
                        & (OrderSplitItem.submitting_since < cutoff)
                    )
                    | OrderSplitItem.execution_status.in_([ES.WAIT_CONFIRM.value, ES.ORDERED.value])
                )
            )
            pending_ids = [(row[0], ES(row[1])) for row in pending.all()]

        submitted = await self._run_each(self.submit_item, queued_ids)
        refreshed = await self._run_each(self.refresh_item, pending_ids)
        return {
            "submitted": sum(1 for o in submitted if o.outcome == "submitted"),
            "refreshed": sum(1 for o in refreshed if o.outcome == "refreshed"),
            "errors": sum(1 for o in submitted + refreshed if o.outcome == "error"),
        }


fulfillment_driver = FulfillmentDriver()
