"""Execution state machine for split items and the group status derived from it."""

from collections.abc import Iterable

from skyhotel.errors import InvariantViolation
from skyhotel.models.enums import ExecutionStatus as ES
from skyhotel.models.enums import OrderStatus, PaymentStatus

TRANSITIONS: dict[ES, frozenset[ES]] = {
    ES.PLAN_PENDING: frozenset({ES.QUEUED, ES.CANCELLED}),
    ES.QUEUED: frozenset({ES.SUBMITTING, ES.CANCELLED}),
    ES.SUBMITTING: frozenset({ES.ORDERED, ES.DONE, ES.WAIT_CONFIRM, ES.FAILED}),
    ES.WAIT_CONFIRM: frozenset({ES.ORDERED, ES.DONE, ES.FAILED, ES.CANCELLED}),
    ES.ORDERED: frozenset({ES.DONE, ES.CANCELLED}),
    ES.DONE: frozenset({ES.CANCELLED}),
    ES.FAILED: frozenset({ES.QUEUED, ES.CANCELLED}),
    ES.CANCELLED: frozenset(),
}

PENDING = frozenset({ES.PLAN_PENDING, ES.QUEUED, ES.SUBMITTING, ES.WAIT_CONFIRM})
PLACED = frozenset({ES.ORDERED, ES.DONE})

# States that can be cancelled without asking the provider
LOCAL_CANCELLABLE = frozenset({ES.PLAN_PENDING, ES.QUEUED, ES.FAILED})
# States where the provider may hold a live reservation
PROVIDER_CANCELLABLE = frozenset({ES.WAIT_CONFIRM, ES.ORDERED, ES.DONE})

ITEM_BUSINESS_STATUS = {
    ES.PLAN_PENDING: OrderStatus.PROCESSING,
    ES.QUEUED: OrderStatus.PROCESSING,
    ES.SUBMITTING: OrderStatus.PROCESSING,
    ES.WAIT_CONFIRM: OrderStatus.PROCESSING,
    ES.ORDERED: OrderStatus.CONFIRMED,
    ES.DONE: OrderStatus.COMPLETED,
    ES.FAILED: OrderStatus.FAILED,
    ES.CANCELLED: OrderStatus.CANCELLED,
}


def can_transition(current: str, target: str) -> bool:
    return ES(target) in TRANSITIONS[ES(current)]


def assert_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvariantViolation(
            f"Illegal execution transition {current} -> {target}",
            code="ILLEGAL_TRANSITION",
            details={"from": current, "to": target},
        )


def item_business_status(execution_status: str) -> str:
    return ITEM_BUSINESS_STATUS[ES(execution_status)].value


def derive_group_status(execution_statuses: Iterable[str]) -> str:
    statuses = [ES(s) for s in execution_statuses]
    if not statuses:
        raise InvariantViolation("An order group must have at least one item", code="EMPTY_GROUP")

    if all(s == ES.CANCELLED for s in statuses):
        return OrderStatus.CANCELLED.value
    if all(s in PLACED for s in statuses):
        return OrderStatus.COMPLETED.value
    if any(s == ES.FAILED for s in statuses) and not any(s in PENDING for s in statuses):
        return OrderStatus.FAILED.value
    return OrderStatus.PROCESSING.value


def derive_group_payment_status(items: Iterable[tuple[str, str]]) -> str:
    """items: (execution_status, payment_status) pairs; cancelled items are ignored."""
    live = [pay for status, pay in items if status != ES.CANCELLED.value]
    paid = sum(1 for pay in live if pay == PaymentStatus.PAID.value)
    if live and paid == len(live):
        return PaymentStatus.PAID.value
    if paid:
        return PaymentStatus.PARTIAL.value
    return PaymentStatus.UNPAID.value
