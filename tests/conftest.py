"""
Fixtures compartidas de la suite de LUMA Laundry.

La app de pruebas usa sqlite en memoria, la pasarela de tarjetas simulada
y un servicio remoto de pedidos que siempre está caído, así el portal
trabaja contra el almacén local salvo que la prueba inyecte otro cliente.
"""
import hashlib
import hmac
import json
import os
import time
from unittest.mock import create_autospec

os.environ["FLASK_ENV"] = "testing"

import pytest

from app.config import TestingConfig
from app.db import db
from app.extensions import get_services
from app.services.card_gateway import SimulatedCardGateway
from app.services.errors import ServiceUnavailable
from app.services.job_queue import JobClient
from app.services.order_service_client import OrderServiceClient
from app.services.quote_calculator import QuoteInput
from wsgi import create_app

REMOTE_METHODS = (
    "create_order", "get_order", "list_by_user", "list_admin", "update_status",
    "update_payment_status", "update_admin_notes", "delete_order", "quote",
    "generate_invoice", "get_invoice", "attempt_payment", "retry_payment",
    "save_payment_method", "payment_history",
)

ORDER_PAYLOAD = {
    "user_email": "ana@example.com",
    "service_type": "Pickup",
    "pricing_type": "Personal",
    "scheduled_at": "2026-06-01T09:30:00",
    "address_line1": "123 Main St",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62704",
    "notes": "Dejar en portería",
}

CARD = {
    "card_token": "tok_visa",
    "card_last4": "4242",
    "card_brand": "Visa",
    "expiry_month": "12",
    "expiry_year": "2030",
    "terms_accepted": True,
}


def unavailable_client():
    """Cliente remoto cuyo servicio nunca responde"""
    client = create_autospec(OrderServiceClient, instance=True)
    for name in REMOTE_METHODS:
        getattr(client, name).side_effect = ServiceUnavailable("sin conexión")
    return client


def stripe_signature(payload, secret="whsec_test", timestamp=None):
    """Header Stripe-Signature válido para un payload"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def webhook_event(event_type, order_id, intent_id="pi_test_123", error_message=None):
    intent = {"id": intent_id, "object": "payment_intent", "metadata": {"orderId": str(order_id)}}
    if error_message:
        intent["last_payment_error"] = {"message": error_message}
    return json.dumps({"id": "evt_test", "type": event_type, "data": {"object": intent}})


@pytest.fixture
def portal_jobs():
    return create_autospec(JobClient, instance=True)


@pytest.fixture
def order_client():
    return unavailable_client()


@pytest.fixture
def app(order_client, portal_jobs):
    app = create_app(
        TestingConfig,
        card_gateway=SimulatedCardGateway(),
        order_client=order_client,
        portal_job_producer=portal_jobs,
    )
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return get_services()


@pytest.fixture
def make_order(services):
    """Crea pedidos en el almacén local"""
    def factory(**overrides):
        return services.store.create({**ORDER_PAYLOAD, **overrides})
    return factory


@pytest.fixture
def ready_order(services, make_order):
    """
    Pedido cotizado (10 lb, $40.00 sin aprobación), con tarjeta y en Ready.
    El token de la tarjeta decide qué responde la pasarela simulada.
    """
    def factory(card_token="tok_visa"):
        order = make_order()
        services.store.update_status(order.id, "PickedUp")
        services.payments.quote_order(order.id, QuoteInput.from_payload({"wash_weight_lbs": 10}))
        services.payments.save_payment_method(order.id, {**CARD, "card_token": card_token})
        services.store.update_status(order.id, "InProgress")
        return services.store.update_status(order.id, "Ready")
    return factory