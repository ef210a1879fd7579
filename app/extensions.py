"""
Servicios compartidos
Se construyen una vez en create_app y se guardan en app.extensions["laundry"].
"""
from dataclasses import dataclass

from flask import current_app

from .services.audit import AuditTrail, default_trail
from .services.card_gateway import card_gateway_from_config
from .services.job_queue import JobClient, LocalJobProducer, NotificationQueue
from .services.order_gateway import OrderGateway
from .services.order_service_client import OrderServiceClient
from .services.order_store import OrderStore
from .services.order_workflow import OrderWorkflow
from .services.payments import PaymentOrchestrator

EXTENSION_KEY = "laundry"


@dataclass
class LaundryServices:
    store: OrderStore
    queue: NotificationQueue
    payments: PaymentOrchestrator
    gateway: OrderGateway
    workflow: OrderWorkflow
    audit: AuditTrail


def build_services(config, card_gateway=None, order_client=None, portal_job_producer=None):
    """
    Arma el servicio de pedidos (almacén, cola, cobros) y el portal
    (workflow -> gateway -> cliente HTTP con respaldo local).
    """
    audit = default_trail()
    store = OrderStore()
    queue = NotificationQueue(visibility_timeout=config.get("JOB_VISIBILITY_TIMEOUT", 300))

    payments = PaymentOrchestrator(
        card_gateway or card_gateway_from_config(config),
        job_producer=LocalJobProducer(queue),
        audit=audit,
        max_attempts=config.get("MAX_PAYMENT_ATTEMPTS", 3),
        first_retry_delay_hours=config.get("FIRST_RETRY_DELAY_HOURS", 6),
        retry_delay_hours=config.get("RETRY_DELAY_HOURS", 24),
    )

    timeout = config.get("ORDER_SERVICE_TIMEOUT", 8)
    gateway = OrderGateway(
        order_client or OrderServiceClient(config["ORDER_SERVICE_URL"], timeout=timeout),
        store,
        payments,
        remote_only=config.get("REMOTE_ONLY_MODE", False),
        prefer_local_when_remote_empty=config.get("PREFER_LOCAL_WHEN_REMOTE_EMPTY", False),
    )
    workflow = OrderWorkflow(
        gateway,
        job_producer=portal_job_producer or JobClient(config["ORDER_SERVICE_URL"], timeout=timeout),
        audit=audit,
    )
    return LaundryServices(store, queue, payments, gateway, workflow, audit)


def get_services() -> LaundryServices:
    return current_app.extensions[EXTENSION_KEY]
