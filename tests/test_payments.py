from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from app.db import db
from app.models import Invoice, PaymentAttempt
from app.services.card_gateway import ChargeResult, FAILED, PROCESSING, SUCCEEDED
from app.services.errors import (
    BusinessRuleError,
    MaxPaymentAttemptsReached,
    PaymentInProgress,
    ServiceUnavailable,
    ValidationError,
)
from app.services.payments import idempotency_key
from app.services.quote_calculator import QuoteInput

from conftest import CARD

NOW = datetime(2026, 6, 3, 12, 0)


def _attempts(order_id):
    return PaymentAttempt.query.filter_by(order_id=order_id).order_by(PaymentAttempt.attempt_number).all()


def test_idempotency_key_is_stable_per_order_amount_and_attempt():
    assert idempotency_key(12, 4000) == "order-12-amount-4000"
    assert idempotency_key(12, 4000, 1) == "order-12-amount-4000"
    assert idempotency_key(12, 4000, 2) == "order-12-amount-4000-retry-2"


def test_quote_that_needs_approval_creates_draft_invoice(services, make_order):
    order = make_order()
    services.store.update_status(order.id, "WeighedOrCounted")

    order, invoice, result = services.payments.quote_order(
        order.id, QuoteInput.from_payload({"wash_weight_lbs": 25})
    )

    assert result.requires_approval is True
    assert (order.status, order.payment_status) == ("Quoted", "ApprovalRequired")
    assert order.quote_amount_cents == 5000
    assert order.approved_at is None
    assert invoice.status == "draft"
    assert float(invoice.total) == 50.0


def test_small_quote_is_auto_approved(services, make_order):
    order = make_order()
    services.store.update_status(order.id, "PickedUp")

    order, _, result = services.payments.quote_order(
        order.id, QuoteInput.from_payload({"wash_weight_lbs": 10})
    )

    assert result.requires_approval is False
    assert (order.status, order.payment_status) == ("Approved", "Approved")
    assert order.approved_at is not None


def test_quote_is_rejected_before_pickup_and_when_empty(services, make_order):
    order = make_order()
    with pytest.raises(BusinessRuleError):
        services.payments.quote_order(order.id, QuoteInput.from_payload({"wash_weight_lbs": 10}))

    services.store.update_status(order.id, "PickedUp")
    with pytest.raises(ValidationError):
        services.payments.quote_order(order.id, QuoteInput.from_payload({}))


def test_generate_invoice_is_idempotent(services, ready_order):
    order = ready_order()

    first = services.payments.generate_invoice(order.id)
    second = services.payments.generate_invoice(order.id)

    assert first.id == second.id
    assert Invoice.query.filter_by(order_id=order.id).count() == 1


def test_generate_invoice_requires_quote(services, make_order):
    order = make_order()

    with pytest.raises(BusinessRuleError):
        services.payments.generate_invoice(order.id)


def test_save_payment_method_requires_terms_and_valid_card(services, make_order):
    order = make_order()

    with pytest.raises(ValidationError):
        services.payments.save_payment_method(order.id, {**CARD, "terms_accepted": False})
    with pytest.raises(ValidationError):
        services.payments.save_payment_method(order.id, {**CARD, "card_last4": "42"})
    with pytest.raises(BusinessRuleError):
        services.payments.save_payment_method(order.id, CARD, replace=True)

    order, method = services.payments.save_payment_method(order.id, CARD)

    assert order.payment_status == "PaymentMethodOnFile"
    assert order.terms_accepted is True
    assert method.is_default is True
    assert "card_token" not in method.to_dict()


def test_successful_charge_marks_order_paid_and_enqueues_receipt(services, ready_order):
    order = ready_order()

    outcome = services.payments.attempt_payment(order.id)

    order = services.store.get(order.id)
    assert outcome.status == "success"
    assert outcome.transaction_id == f"sim_order-{order.id}-amount-4000"
    assert (order.status, order.payment_status) == ("Paid", "Paid")
    assert order.invoice.status == "final"

    job = services.queue.next()
    assert job.job_type == "receipt"
    assert job.order_id == order.id
    assert job.amount == 40.0
    assert job.transaction_id == outcome.transaction_id


def test_paid_order_cannot_be_charged_again(services, ready_order):
    order = ready_order()
    services.payments.attempt_payment(order.id)

    with pytest.raises(BusinessRuleError):
        services.payments.attempt_payment(order.id)
    assert len(_attempts(order.id)) == 1


def test_charge_requires_ready_order(services, make_order):
    order = make_order()

    with pytest.raises(BusinessRuleError):
        services.payments.attempt_payment(order.id)


def test_declines_schedule_retries_and_fourth_attempt_is_rejected(services, ready_order):
    services.payments.clock = lambda: NOW
    order = ready_order(card_token="tok_decline")

    first = services.payments.attempt_payment(order.id)
    second = services.payments.retry_payment(order.id)
    third = services.payments.retry_payment(order.id)

    assert [o.status for o in (first, second, third)] == ["failed"] * 3
    assert first.failure_reason == "Your card was declined."
    assert first.next_retry_at == NOW + timedelta(hours=6)
    assert second.next_retry_at == NOW + timedelta(hours=24)
    assert third.next_retry_at is None

    before = [a.to_dict() for a in _attempts(order.id)]
    with pytest.raises(MaxPaymentAttemptsReached):
        services.payments.retry_payment(order.id)

    assert [a.to_dict() for a in _attempts(order.id)] == before
    order = services.store.get(order.id)
    assert (order.status, order.payment_status) == ("PaymentFailed", "PaymentFailed")
    assert order.invoice.status == "draft"


def test_retry_uses_new_idempotency_key_per_attempt(services, ready_order):
    order = ready_order(card_token="tok_decline")
    services.payments.attempt_payment(order.id)
    services.payments.retry_payment(order.id)

    keys = [a.transaction_id for a in _attempts(order.id)]

    assert keys == [
        f"sim_order-{order.id}-amount-4000",
        f"sim_order-{order.id}-amount-4000-retry-2",
    ]


def test_retry_after_replacing_card_succeeds(services, ready_order):
    order = ready_order(card_token="tok_decline")
    services.payments.attempt_payment(order.id)

    services.payments.save_payment_method(order.id, {**CARD, "card_token": "tok_visa"}, replace=True)
    order = services.store.get(order.id)
    assert order.payment_status == "PaymentMethodOnFile"

    outcome = services.payments.retry_payment(order.id)

    assert outcome.status == "success"
    assert outcome.attempt_number == 2
    assert services.store.get(order.id).status == "Paid"


def test_retry_is_rejected_unless_previous_charge_failed(services, ready_order):
    order = ready_order()

    with pytest.raises(BusinessRuleError):
        services.payments.retry_payment(order.id)


def test_locked_invoice_reports_payment_in_progress(services, ready_order):
    order = ready_order()
    invoice = services.payments.generate_invoice(order.id)
    invoice.status = "locked"
    db.session.commit()

    with pytest.raises(PaymentInProgress):
        services.payments.attempt_payment(order.id)
    assert _attempts(order.id) == []


def test_gateway_error_unlocks_invoice(services, ready_order):
    order = ready_order()
    services.payments.card_gateway = Mock(charge=Mock(side_effect=ServiceUnavailable("Stripe caído")))

    with pytest.raises(ServiceUnavailable):
        services.payments.attempt_payment(order.id)

    assert services.payments.get_invoice(order.id).status == "draft"
    assert _attempts(order.id) == []


def test_action_required_leaves_pending_attempt(services, ready_order):
    order = ready_order(card_token="tok_action")

    outcome = services.payments.attempt_payment(order.id)

    order = services.store.get(order.id)
    assert outcome.status == "pending"
    assert (order.status, order.payment_status) == ("ChargeAttempted", "PaymentActionRequired")
    assert order.invoice.status == "draft"
    assert services.queue.depth() == 0


def test_processing_keeps_invoice_locked(services, ready_order):
    order = ready_order()
    services.payments.card_gateway = Mock(charge=Mock(return_value=ChargeResult(PROCESSING, "pi_1")))

    services.payments.attempt_payment(order.id)

    order = services.store.get(order.id)
    assert (order.status, order.payment_status) == ("ChargeAttempted", "ChargeAttempted")
    assert order.payment_intent_id == "pi_1"
    assert order.invoice.status == "locked"


def _event(event_type, order_id, intent_id="pi_1", message=None):
    intent = {"id": intent_id, "metadata": {"orderId": str(order_id)}}
    if message:
        intent["last_payment_error"] = {"message": message}
    return {"type": event_type, "data": {"object": intent}}


def test_webhook_success_resolves_pending_attempt(services, ready_order):
    order = ready_order()
    services.payments.card_gateway = Mock(charge=Mock(return_value=ChargeResult(PROCESSING, "pi_1")))
    services.payments.attempt_payment(order.id)

    services.payments.handle_webhook_event(_event("payment_intent.succeeded", order.id))

    order = services.store.get(order.id)
    assert (order.status, order.payment_status) == ("Paid", "Paid")
    assert order.invoice.status == "final"
    assert [a.status for a in _attempts(order.id)] == ["success"]
    assert services.queue.depth() == 1


def test_webhook_is_idempotent(services, ready_order):
    order = ready_order()
    services.payments.card_gateway = Mock(charge=Mock(return_value=ChargeResult(PROCESSING, "pi_1")))
    services.payments.attempt_payment(order.id)

    event = _event("payment_intent.succeeded", order.id)
    services.payments.handle_webhook_event(event)
    services.payments.handle_webhook_event(event)

    assert services.queue.depth() == 1
    assert len(_attempts(order.id)) == 1


def test_webhook_failure_records_reason_and_unlocks(services, ready_order):
    services.payments.clock = lambda: NOW
    order = ready_order()
    services.payments.card_gateway = Mock(charge=Mock(return_value=ChargeResult(PROCESSING, "pi_1")))
    services.payments.attempt_payment(order.id)

    services.payments.handle_webhook_event(
        _event("payment_intent.payment_failed", order.id, message="Insufficient funds")
    )

    order = services.store.get(order.id)
    attempt = _attempts(order.id)[0]
    assert (order.status, order.payment_status) == ("PaymentFailed", "PaymentFailed")
    assert attempt.status == "failed"
    assert attempt.failure_reason == "Insufficient funds"
    assert attempt.next_retry_at == NOW + timedelta(hours=6)
    assert order.invoice.status == "draft"


def test_webhook_action_required_unlocks_invoice_for_retry(services, ready_order):
    order = ready_order()
    services.payments.card_gateway = Mock(charge=Mock(return_value=ChargeResult(PROCESSING, "pi_1")))
    services.payments.attempt_payment(order.id)

    services.payments.handle_webhook_event(_event("payment_intent.requires_action", order.id))

    order = services.store.get(order.id)
    assert (order.status, order.payment_status) == ("ChargeAttempted", "PaymentActionRequired")
    assert order.invoice.status == "draft"

    services.payments.card_gateway = Mock(charge=Mock(return_value=ChargeResult(SUCCEEDED, "pi_2")))
    services.payments.retry_payment(order.id)

    order = services.store.get(order.id)
    assert (order.status, order.payment_status) == ("Paid", "Paid")
    assert [a.attempt_number for a in _attempts(order.id)] == [1, 2]


def test_webhook_for_unknown_order_or_event_is_ignored(services):
    assert services.payments.handle_webhook_event(_event("payment_intent.succeeded", 999)) is None
    assert services.payments.handle_webhook_event({"type": "charge.refunded"}) is None


def test_webhook_does_not_apply_illegal_transition(services, make_order):
    order = make_order()

    services.payments.handle_webhook_event(_event("payment_intent.succeeded", order.id))

    assert services.store.get(order.id).status == "PendingPickup"


def test_receipt_failure_does_not_undo_payment(services, ready_order):
    order = ready_order()
    services.payments.job_producer = Mock(enqueue_receipt=Mock(side_effect=RuntimeError("cola llena")))

    outcome = services.payments.attempt_payment(order.id)

    assert outcome.status == "success"
    assert services.store.get(order.id).status == "Paid"


def test_declined_result_from_gateway_without_reason(services, ready_order):
    order = ready_order()
    services.payments.card_gateway = Mock(charge=Mock(return_value=ChargeResult(FAILED)))

    outcome = services.payments.attempt_payment(order.id)

    assert outcome.failure_reason == "Card declined"
