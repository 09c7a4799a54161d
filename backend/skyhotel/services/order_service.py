"""Order service — creates order groups through the admission gate and keeps group status in sync."""

import logging
import uuid
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.errors import InvariantViolation
from skyhotel.models.enums import Channel, ExecutionStatus, OrderStatus, PaymentStatus
from skyhotel.models.order import OrderGroup, OrderSplitItem
from skyhotel.models.user import SystemUser
from skyhotel.schemas.order import CreateOrderRequest
from skyhotel.services.admission_gate import Admission, ChannelConfigSnapshot, admission_gate
from skyhotel.services.execution_state import PLACED, derive_group_payment_status, derive_group_status
from skyhotel.services.pool_service import pool_service
from skyhotel.utils import business_date

logger = logging.getLogger(__name__)


def _new_biz_order_no() -> str:
    return f"SH{business_date():%Y%m%d}{uuid.uuid4().hex[:8].upper()}"


class OrderService:

    async def create_order(
        self,
        db: AsyncSession,
        agent: SystemUser,
        req: CreateOrderRequest,
        config: ChannelConfigSnapshot,
    ) -> OrderGroup:
        """Validate the split plan, then admit and persist the group in one transaction."""
        nights = (req.check_out_date - req.check_in_date).days
        if nights < 1:
            raise InvariantViolation("Check-out must be at least one night after check-in", code="INVALID_DATES")

        item_total = Decimal("0")
        for index, item in enumerate(req.items, start=1):
            check_in = item.check_in_date or req.check_in_date
            check_out = item.check_out_date or req.check_out_date
            if check_in < req.check_in_date or check_out > req.check_out_date or (check_out - check_in).days < 1:
                raise InvariantViolation(
                    f"Item {index} dates must span at least one night within the order dates",
                    code="INVALID_ITEM_DATES",
                    details={"split_index": index},
                )
            item_total += item.amount

        if req.total_amount is not None and req.total_amount != item_total:
            raise InvariantViolation(
                "Split amounts do not add up to the order total",
                code="SPLIT_AMOUNT_MISMATCH",
                details={"total_amount": str(req.total_amount), "items_total": str(item_total)},
            )

        bound_phones: dict[uuid.UUID, str] = {}
        for item in req.items:
            if item.account_id and item.account_id not in bound_phones:
                account = await pool_service.get_account(db, item.account_id)
                if account is None:
                    raise InvariantViolation(
                        f"Pool account {item.account_id} not found",
                        code="UNKNOWN_ACCOUNT",
                    )
                bound_phones[account.id] = account.phone

        initial = ExecutionStatus.QUEUED if req.submit_now else ExecutionStatus.PLAN_PENDING
        split_total = len(req.items)

        async def create_group(admission: Admission) -> OrderGroup:
            group = OrderGroup(
                biz_order_no=_new_biz_order_no(),
                chain_id=req.chain_id,
                hotel_name=req.hotel_name,
                channel=admission.channel.value,
                corporate_agreement_id=admission.agreement_id,
                customer_name=req.customer_name,
                contact_phone=req.contact_phone,
                check_in_date=req.check_in_date,
                check_out_date=req.check_out_date,
                total_nights=nights,
                total_amount=item_total,
                currency=req.currency,
                status=OrderStatus.PROCESSING.value,
                payment_status=PaymentStatus.UNPAID.value,
                creator_id=agent.id,
                creator_name=agent.name,
                remark=req.remark,
                business_date=business_date(),
                split_count=split_total,
            )
            group.items = [
                OrderSplitItem(
                    room_type=item.room_type,
                    room_count=item.room_count,
                    rate_code=item.rate_code,
                    account_id=item.account_id,
                    account_phone=bound_phones.get(item.account_id),
                    check_in_date=item.check_in_date or req.check_in_date,
                    check_out_date=item.check_out_date or req.check_out_date,
                    amount=item.amount,
                    status=OrderStatus.PROCESSING.value,
                    payment_status=PaymentStatus.UNPAID.value,
                    execution_status=initial.value,
                    split_index=index,
                    split_total=split_total,
                )
                for index, item in enumerate(req.items, start=1)
            ]
            db.add(group)
            return group

        return await admission_gate.admit(
            db,
            agent,
            req.channel,
            req.corporate_name if req.channel == Channel.CORPORATE else None,
            item_total,
            config,
            create_group,
        )

    async def list_orders(
        self,
        db: AsyncSession,
        user: SystemUser,
        status: str | None = None,
        channel: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OrderGroup]:
        """Agents see their own orders; admins see everything."""
        query = select(OrderGroup).order_by(OrderGroup.created_at.desc())
        if not user.is_admin:
            query = query.where(OrderGroup.creator_id == user.id)
        if status:
            query = query.where(OrderGroup.status == status)
        if channel:
            query = query.where(OrderGroup.channel == channel)
        result = await db.execute(query.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def get_group(self, db: AsyncSession, group_id: uuid.UUID) -> OrderGroup | None:
        result = await db.execute(
            select(OrderGroup)
            .where(OrderGroup.id == group_id)
            .execution_options(populate_existing=True)
        )
        group = result.scalar_one_or_none()
        if group is not None:
            await self._reload_items(db, group)
        return group

    async def get_item(self, db: AsyncSession, item_id: uuid.UUID) -> OrderSplitItem | None:
        result = await db.execute(
            select(OrderSplitItem)
            .where(OrderSplitItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_group(self, db: AsyncSession, group: OrderGroup, data: dict) -> OrderGroup:
        """Edit customer, contact and remark. `data` holds only the fields the caller sent."""
        if data.get("customer_name"):
            group.customer_name = data["customer_name"].strip()
        for field in ("contact_phone", "remark"):
            if field in data:
                setattr(group, field, data[field])
        await self.sync_group(db, group.id)
        await db.commit()
        logger.info(f"Order {group.biz_order_no} details updated: {', '.join(sorted(data))}")
        return await self.get_group(db, group.id)

    async def set_item_payment_status(
        self, db: AsyncSession, item: OrderSplitItem, payment_status: str
    ) -> OrderSplitItem:
        """Record a payment settled outside the provider link. Only placed items carry a payment."""
        item_id, group_id = item.id, item.group_id
        result = await db.execute(
            update(OrderSplitItem)
            .where(
                OrderSplitItem.id == item_id,
                OrderSplitItem.execution_status.in_([s.value for s in PLACED]),
            )
            .values(payment_status=payment_status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise InvariantViolation(
                "Payment status can only change once the provider holds the order",
                code="ITEM_NOT_PLACED",
                details={"item_id": str(item_id)},
            )
        await self.sync_group(db, group_id)
        await db.commit()
        logger.info(f"Item {item_id} payment status set to {payment_status}")
        return await self.get_item(db, item_id)

    async def sync_group(self, db: AsyncSession, group_id: uuid.UUID) -> OrderGroup:
        """Recompute group status and payment status from its items. Caller commits."""
        result = await db.execute(
            select(OrderGroup)
            .where(OrderGroup.id == group_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        group = result.scalar_one()
        items = await self._reload_items(db, group)

        if len(items) != group.split_count or any(i.split_total != len(items) for i in items):
            raise InvariantViolation("Split count does not match the group's items", code="SPLIT_COUNT_MISMATCH")

        status = derive_group_status(i.execution_status for i in items)
        payment_status = derive_group_payment_status((i.execution_status, i.payment_status) for i in items)
        if status != group.status or payment_status != group.payment_status:
            logger.info(f"Order {group.biz_order_no}: {group.status}/{group.payment_status} -> {status}/{payment_status}")
            group.status = status
            group.payment_status = payment_status
        return group

    @staticmethod
    async def _reload_items(db: AsyncSession, group: OrderGroup) -> list[OrderSplitItem]:
        result = await db.execute(
            select(OrderSplitItem)
            .where(OrderSplitItem.group_id == group.id)
            .order_by(OrderSplitItem.split_index)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())


def can_access(user: SystemUser, group: OrderGroup) -> bool:
    return user.is_admin or group.creator_id == user.id


order_service = OrderService()
