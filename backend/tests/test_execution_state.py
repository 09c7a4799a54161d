from itertools import product

import pytest

from skyhotel.errors import InvariantViolation
from skyhotel.models.enums import ExecutionStatus as ES
from skyhotel.services.execution_state import (
    PENDING,
    PLACED,
    TRANSITIONS,
    assert_transition,
    can_transition,
    derive_group_payment_status,
    derive_group_status,
    item_business_status,
)

ALLOWED = {
    (ES.PLAN_PENDING, ES.QUEUED),
    (ES.PLAN_PENDING, ES.CANCELLED),
    (ES.QUEUED, ES.SUBMITTING),
    (ES.QUEUED, ES.CANCELLED),
    (ES.SUBMITTING, ES.ORDERED),
    (ES.SUBMITTING, ES.DONE),
    (ES.SUBMITTING, ES.WAIT_CONFIRM),
    (ES.SUBMITTING, ES.FAILED),
    (ES.WAIT_CONFIRM, ES.ORDERED),
    (ES.WAIT_CONFIRM, ES.DONE),
    (ES.WAIT_CONFIRM, ES.FAILED),
    (ES.WAIT_CONFIRM, ES.CANCELLED),
    (ES.ORDERED, ES.DONE),
    (ES.ORDERED, ES.CANCELLED),
    (ES.DONE, ES.CANCELLED),
    (ES.FAILED, ES.QUEUED),
    (ES.FAILED, ES.CANCELLED),
}


def test_transition_table_is_exactly_the_enumerated_edges():
    for current, target in product(ES, ES):
        assert can_transition(current.value, target.value) == ((current, target) in ALLOWED)


def test_cancelled_is_terminal():
    assert TRANSITIONS[ES.CANCELLED] == frozenset()


@pytest.mark.parametrize("current,target", [
    (ES.PLAN_PENDING, ES.SUBMITTING),
    (ES.DONE, ES.QUEUED),
    (ES.CANCELLED, ES.QUEUED),
    (ES.SUBMITTING, ES.CANCELLED),
])
def test_illegal_transition_raises(current, target):
    with pytest.raises(InvariantViolation) as exc:
        assert_transition(current.value, target.value)
    assert exc.value.code == "ILLEGAL_TRANSITION"
    assert exc.value.details == {"from": current.value, "to": target.value}


def test_item_business_status_mirrors_execution():
    assert item_business_status("QUEUED") == "PROCESSING"
    assert item_business_status("WAIT_CONFIRM") == "PROCESSING"
    assert item_business_status("ORDERED") == "CONFIRMED"
    assert item_business_status("DONE") == "COMPLETED"
    assert item_business_status("FAILED") == "FAILED"
    assert item_business_status("CANCELLED") == "CANCELLED"


@pytest.mark.parametrize("size", [1, 2, 3])
def test_group_status_over_every_combination(size):
    for combo in product(ES, repeat=size):
        status = derive_group_status(s.value for s in combo)
        if all(s == ES.CANCELLED for s in combo):
            expected = "CANCELLED"
        elif all(s in PLACED for s in combo):
            expected = "COMPLETED"
        elif any(s == ES.FAILED for s in combo) and not any(s in PENDING for s in combo):
            expected = "FAILED"
        else:
            expected = "PROCESSING"
        assert status == expected, combo


def test_group_status_examples():
    assert derive_group_status(["DONE", "SUBMITTING"]) == "PROCESSING"
    assert derive_group_status(["DONE", "ORDERED"]) == "COMPLETED"
    assert derive_group_status(["FAILED", "DONE"]) == "FAILED"
    assert derive_group_status(["FAILED", "QUEUED"]) == "PROCESSING"
    assert derive_group_status(["DONE", "CANCELLED"]) == "PROCESSING"


def test_empty_group_is_an_invariant_violation():
    with pytest.raises(InvariantViolation) as exc:
        derive_group_status([])
    assert exc.value.code == "EMPTY_GROUP"


def test_group_payment_status():
    assert derive_group_payment_status([("DONE", "PAID"), ("DONE", "PAID")]) == "PAID"
    assert derive_group_payment_status([("DONE", "PAID"), ("ORDERED", "UNPAID")]) == "PARTIAL"
    assert derive_group_payment_status([("ORDERED", "UNPAID")]) == "UNPAID"
    # Cancelled items do not count against full payment
    assert derive_group_payment_status([("DONE", "PAID"), ("CANCELLED", "UNPAID")]) == "PAID"
    assert derive_group_payment_status([("CANCELLED", "UNPAID")]) == "UNPAID"
