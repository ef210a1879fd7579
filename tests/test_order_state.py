import pytest

from app.services.errors import BusinessRuleError, ValidationError
from app.services.order_state import (
    OrderState,
    OrderStatus,
    PaymentStatus,
    TRANSITIONS,
    can_transition,
    ensure_transition,
    next_state,
    triggers_payment,
    validate_status,
)

S = OrderStatus
P = PaymentStatus


def test_every_status_has_transition_rules():
    assert set(TRANSITIONS) == set(S.ALL)


def test_terminal_statuses_have_no_exits():
    for status in S.TERMINAL:
        assert not any(can_transition(status, target) for target in S.ALL)


@pytest.mark.parametrize("status", [
    S.PENDING_PICKUP, S.PICKED_UP, S.WEIGHED_OR_COUNTED, S.QUOTED,
    S.APPROVED, S.IN_PROGRESS, S.READY,
])
def test_cancellation_is_reachable_from_pre_payment_statuses(status):
    assert can_transition(status, S.CANCELLED)


@pytest.mark.parametrize("status", [S.CHARGE_ATTEMPTED, S.PAYMENT_FAILED, S.PAID, S.DELIVERED])
def test_cancellation_is_not_reachable_after_charging(status):
    assert not can_transition(status, S.CANCELLED)


def test_payment_failed_is_recoverable_toward_paid():
    assert can_transition(S.READY, S.PAYMENT_FAILED)
    assert can_transition(S.CHARGE_ATTEMPTED, S.PAYMENT_FAILED)
    assert can_transition(S.PAYMENT_FAILED, S.CHARGE_ATTEMPTED)
    assert can_transition(S.PAYMENT_FAILED, S.PAID)


def test_ensure_transition_rejects_illegal_jump():
    with pytest.raises(BusinessRuleError):
        ensure_transition(S.PENDING_PICKUP, S.READY)


def test_ensure_transition_allows_same_status():
    ensure_transition(S.READY, S.READY)


def test_unknown_status_is_a_validation_error():
    with pytest.raises(ValidationError):
        validate_status("Lost")
    with pytest.raises(ValidationError):
        OrderState(S.READY, "Maybe")


def test_order_state_rejects_invalid_combination():
    with pytest.raises(BusinessRuleError):
        OrderState(S.PENDING_PICKUP, P.PAID)
    with pytest.raises(BusinessRuleError):
        OrderState(S.QUOTED, P.APPROVED)


def test_order_state_of_reads_dict_without_validating():
    state = OrderState.of({"status": S.PAID, "payment_status": P.NO_PAYMENT_METHOD})

    assert state.to_dict() == {"status": S.PAID, "payment_status": P.NO_PAYMENT_METHOD}


def test_next_state_keeps_valid_payment_status():
    state = next_state(OrderState(S.IN_PROGRESS, P.PAYMENT_METHOD_ON_FILE), S.READY)

    assert state == OrderState(S.READY, P.PAYMENT_METHOD_ON_FILE)


def test_next_state_falls_back_to_default_payment_status():
    state = next_state(OrderState(S.QUOTED, P.APPROVAL_REQUIRED), S.APPROVED)

    assert state == OrderState(S.APPROVED, P.APPROVED)


def test_next_state_rejects_explicit_invalid_payment_status():
    with pytest.raises(BusinessRuleError):
        next_state(OrderState(S.APPROVED, P.APPROVED), S.IN_PROGRESS, P.PAID)


@pytest.mark.parametrize("payment_status", [P.PAYMENT_METHOD_ON_FILE, P.APPROVED])
def test_entering_ready_with_method_or_approval_triggers_payment(payment_status):
    assert triggers_payment(OrderState(S.READY, payment_status))


def test_other_states_do_not_trigger_payment():
    assert not triggers_payment(OrderState(S.IN_PROGRESS, P.APPROVED))
    assert not triggers_payment(OrderState(S.DELIVERED, P.APPROVED))
