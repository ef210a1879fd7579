"""
Servicio: Pasarelas de tarjeta
StripeCardGateway cobra con un PaymentIntent off-session; sin credenciales
se usa SimulatedCardGateway.
"""
import logging
from dataclasses import dataclass

import stripe

from .errors import ServiceUnavailable

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
PROCESSING = "processing"
REQUIRES_ACTION = "requires_action"
FAILED = "failed"


@dataclass(frozen=True)
class ChargeResult:
    status: str
    transaction_id: str = ""
    failure_reason: str = ""


class StripeCardGateway:
    name = "stripe"

    def __init__(self, secret_key, timeout=8):
        self.secret_key = secret_key
        self.timeout = timeout

    def charge(self, amount_cents, currency, card_token, order_id, idempotency_key):
        """Crea y confirma el PaymentIntent; la clave de idempotencia evita doble cobro"""
        stripe.api_key = self.secret_key
        stripe.max_network_retries = 0
        if not isinstance(stripe.default_http_client, stripe.RequestsClient):
            stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency or "usd",
                payment_method=card_token,
                off_session=True,
                confirm=True,
                description=f"Laundry Order {order_id}",
                metadata={"orderId": str(order_id)},
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as e:
            code = getattr(e, "code", None)
            intent_id = ""
            error = getattr(e, "error", None)
            if error is not None and getattr(error, "payment_intent", None):
                intent_id = error.payment_intent.get("id", "")
            if code == "authentication_required":
                return ChargeResult(REQUIRES_ACTION, intent_id, e.user_message or "")
            logger.warning(f"💳 Stripe rechazó el cobro del pedido #{order_id}: {e.user_message}")
            return ChargeResult(FAILED, intent_id, e.user_message or "Card declined")
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise ServiceUnavailable(f"Stripe no disponible: {e}")
        except stripe.StripeError as e:
            logger.error(f"❌ Error de Stripe cobrando pedido #{order_id}: {e}")
            raise ServiceUnavailable(f"Error de Stripe: {e}")

        status = intent.status
        if status == SUCCEEDED:
            return ChargeResult(SUCCEEDED, intent.id)
        if status == PROCESSING:
            return ChargeResult(PROCESSING, intent.id)
        if status in ("requires_action", "requires_confirmation"):
            return ChargeResult(REQUIRES_ACTION, intent.id)
        return ChargeResult(FAILED, intent.id, f"Estado de PaymentIntent: {status}")


class SimulatedCardGateway:
    """Aprueba todo salvo tokens con 'decline' (rechazo) o 'action' (requiere acción)"""
    name = "simulated"

    def charge(self, amount_cents, currency, card_token, order_id, idempotency_key):
        token = (card_token or "").lower()
        transaction_id = f"sim_{idempotency_key}"
        if "decline" in token:
            return ChargeResult(FAILED, transaction_id, "Your card was declined.")
        if "action" in token:
            return ChargeResult(REQUIRES_ACTION, transaction_id)
        return ChargeResult(SUCCEEDED, transaction_id)


def card_gateway_from_config(config):
    secret_key = config.get("STRIPE_SECRET_KEY")
    if secret_key:
        logger.info("💳 Pasarela de tarjetas: Stripe")
        return StripeCardGateway(secret_key, timeout=config.get("CARD_GATEWAY_TIMEOUT", 8))
    logger.info("💳 Pasarela de tarjetas: simulada (sin STRIPE_SECRET_KEY)")
    return SimulatedCardGateway()
