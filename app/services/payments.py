"""
Servicio: Orquestador de cobros
Cotización con factura, medios de pago, intentos/reintentos de cobro y
webhooks de la pasarela.

Reglas:
- Máximo MAX_PAYMENT_ATTEMPTS intentos por pedido; el siguiente se rechaza.
- La factura pasa draft|final -> locked con un compare-and-swap; si otro
  cobro ya la bloqueó se responde PaymentInProgress.
- La clave de idempotencia es estable por pedido, monto e intento, así un
  reintento de red no cobra dos veces.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from ..db import db
from ..models import Invoice, LaundryOrder, PaymentAttempt, PaymentMethod
from ..utils.money import from_cents, to_cents
from . import card_gateway as gateway_status
from .errors import (
    BusinessRuleError,
    MaxPaymentAttemptsReached,
    OrderNotFound,
    PaymentInProgress,
    ValidationError,
)
from .order_state import (
    OrderState,
    OrderStatus,
    PaymentStatus,
    VALID_PAYMENT_STATUSES,
    can_transition,
    ensure_transition,
)
from .quote_calculator import QuoteInput, calculate

logger = logging.getLogger(__name__)

S = OrderStatus
P = PaymentStatus

QUOTABLE_STATUSES = (S.PICKED_UP, S.WEIGHED_OR_COUNTED)
CHARGEABLE_STATUSES = (S.READY, S.CHARGE_ATTEMPTED, S.PAYMENT_FAILED, S.DELIVERED)
RETRYABLE_PAYMENT_STATUSES = (P.PAYMENT_FAILED, P.PAYMENT_ACTION_REQUIRED)
LOCKABLE_INVOICE_STATUSES = ("draft", "final")

# Estados de cobro desde los que guardar una tarjeta deja "PaymentMethodOnFile"
REPLACEABLE_PAYMENT_STATUSES = (P.NO_PAYMENT_METHOD, P.PAYMENT_FAILED, P.PAYMENT_ACTION_REQUIRED)

WEBHOOK_EVENTS = {
    "payment_intent.succeeded": gateway_status.SUCCEEDED,
    "payment_intent.payment_failed": gateway_status.FAILED,
    "payment_intent.processing": gateway_status.PROCESSING,
    "payment_intent.requires_action": gateway_status.REQUIRES_ACTION,
}


def idempotency_key(order_id, amount_cents, attempt_number=1):
    """'order-12-amount-4000'; los reintentos llevan sufijo '-retry-N'"""
    key = f"order-{order_id}-amount-{amount_cents}"
    if attempt_number and attempt_number > 1:
        key = f"{key}-retry-{attempt_number}"
    return key


@dataclass(frozen=True)
class PaymentOutcome:
    status: str
    amount: float
    transaction_id: str
    attempt_number: int
    failure_reason: str = ""
    next_retry_at: Optional[datetime] = None

    def to_dict(self):
        return {
            "status": self.status,
            "amount": self.amount,
            "transaction_id": self.transaction_id,
            "attempt_number": self.attempt_number,
            "failure_reason": self.failure_reason,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
        }


class PaymentOrchestrator:

    def __init__(self, card_gateway, job_producer=None, audit=None, max_attempts=3,
                 first_retry_delay_hours=6, retry_delay_hours=24, clock=datetime.utcnow):
        self.card_gateway = card_gateway
        self.job_producer = job_producer
        self.audit = audit
        self.max_attempts = max_attempts
        self.first_retry_delay = timedelta(hours=first_retry_delay_hours)
        self.retry_delay = timedelta(hours=retry_delay_hours)
        self.clock = clock

    # ------------------------------------------------------------------
    # Lectura
    # ------------------------------------------------------------------

    def _load(self, order_id):
        order = db.session.get(LaundryOrder, int(order_id))
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def get_invoice(self, order_id):
        return self._load(order_id).invoice

    def payment_history(self, order_id):
        return list(self._load(order_id).payment_attempts)

    def _record(self, action, order, old_status, details=""):
        if self.audit is None:
            return
        self.audit.record(
            action,
            order_id=order.id,
            old_status=old_status,
            new_status=order.status,
            details=details,
        )

    # ------------------------------------------------------------------
    # Cotización y factura
    # ------------------------------------------------------------------

    def quote_order(self, order_id, quote_input: QuoteInput):
        """
        Cotiza un pedido retirado/pesado y crea su factura en borrador.

        Si la cotización requiere aprobación el pedido queda en
        Quoted/ApprovalRequired; si no, se aprueba solo (Approved/Approved).
        """
        order = self._load(order_id)

        if order.status not in QUOTABLE_STATUSES:
            raise BusinessRuleError(
                f"Solo se cotizan pedidos en {' o '.join(QUOTABLE_STATUSES)} (actual: {order.status})",
                status=order.status,
            )
        if order.invoice is not None:
            raise BusinessRuleError("El pedido ya tiene factura; la cotización no se puede cambiar")

        result = calculate(quote_input)
        if result.total_cents <= 0:
            raise ValidationError("La cotización está vacía: indica peso de lavado o prendas")

        if result.requires_approval:
            target = OrderState(S.QUOTED, P.APPROVAL_REQUIRED)
        else:
            target = OrderState(S.APPROVED, P.APPROVED)
        ensure_transition(order.status, target.status)

        now = self.clock()

        order.pricing_type = quote_input.pricing_type
        order.bag_weight_lbs = quote_input.wash_weight_lbs
        order.items_json = json.dumps(quote_input.items_to_list())
        order.quote_amount_cents = result.total_cents
        order.final_amount_cents = result.total_cents
        order.quote_requires_approval = result.requires_approval
        order.currency = order.currency or "usd"
        order.status = target.status
        order.payment_status = target.payment_status
        if target.status == S.APPROVED:
            order.approved_at = now
        order.last_updated_at = now

        invoice = Invoice(
            order=order,
            status="draft",
            subtotal=result.total,
            total=result.total,
            line_items=result.line_items_json(),
            created_at=now,
        )
        db.session.add(invoice)
        db.session.commit()

        logger.info(
            f"🧾 Pedido #{order.id} cotizado en ${result.total} "
            f"({'requiere aprobación' if result.requires_approval else 'auto-aprobado'})"
        )
        return order, invoice, result

    def generate_invoice(self, order_id):
        """Idempotente: si la factura ya existe la devuelve"""
        order = self._load(order_id)
        if order.invoice is not None:
            return order.invoice
        return self._create_invoice(order)

    def _create_invoice(self, order):
        amount_cents = order.final_amount_cents or order.quote_amount_cents
        if not amount_cents:
            raise BusinessRuleError("El pedido no tiene cotización; no se puede facturar")

        total = from_cents(amount_cents)
        invoice = Invoice(
            order=order,
            status="draft",
            subtotal=total,
            total=total,
            line_items=_recalculated_lines(order),
            created_at=self.clock(),
        )
        db.session.add(invoice)
        db.session.commit()
        logger.info(f"🧾 Factura #{invoice.id} generada para pedido #{order.id}")
        return invoice

    # ------------------------------------------------------------------
    # Medios de pago
    # ------------------------------------------------------------------

    def save_payment_method(self, order_id, data, replace=False):
        """
        Guarda una tarjeta tokenizada y la asocia al pedido.

        La primera vez exige aceptar los términos; replace=True reemplaza la
        tarjeta actual (por ejemplo tras un rechazo).
        """
        order = self._load(order_id)
        if not isinstance(data, dict):
            raise ValidationError("El medio de pago debe ser un objeto JSON")

        if order.status in S.TERMINAL or order.payment_status == P.PAID:
            raise BusinessRuleError("El pedido ya está cerrado o pagado")

        card_token = (data.get("card_token") or "").strip()
        card_last4 = (data.get("card_last4") or "").strip()
        if not card_token:
            raise ValidationError("card_token es requerido", field="card_token")
        if len(card_last4) != 4 or not card_last4.isdigit():
            raise ValidationError("card_last4 debe tener 4 dígitos", field="card_last4")

        if replace and order.payment_method_id is None:
            raise BusinessRuleError("El pedido no tiene un medio de pago que reemplazar")
        if not replace and not data.get("terms_accepted"):
            raise ValidationError("Debes aceptar los términos para guardar la tarjeta",
                                  field="terms_accepted")

        now = self.clock()
        has_default = PaymentMethod.query.filter_by(
            user_email=order.user_email, is_default=True
        ).first() is not None

        method = PaymentMethod(
            user_email=order.user_email,
            card_token=card_token,
            card_last4=card_last4,
            card_brand=(data.get("card_brand") or "").strip(),
            expiry_month=str(data.get("expiry_month") or "").strip(),
            expiry_year=str(data.get("expiry_year") or "").strip(),
            is_default=not has_default,
            created_at=now,
        )
        db.session.add(method)

        order.payment_method = method
        if not replace:
            order.terms_accepted = True
            order.terms_accepted_at = now
        if (order.payment_status in REPLACEABLE_PAYMENT_STATUSES
                and P.PAYMENT_METHOD_ON_FILE in VALID_PAYMENT_STATUSES[order.status]):
            order.payment_status = P.PAYMENT_METHOD_ON_FILE
        order.last_updated_at = now
        db.session.commit()

        logger.info(f"💳 Medio de pago {method.display_name()} guardado para pedido #{order.id}")
        return order, method

    # ------------------------------------------------------------------
    # Cobros
    # ------------------------------------------------------------------

    def attempt_payment(self, order_id):
        return self._charge(order_id)

    def retry_payment(self, order_id):
        """Reintento tras un rechazo; el tope de intentos aplica igual"""
        order = self._load(order_id)
        if order.status != S.PAYMENT_FAILED and order.payment_status not in RETRYABLE_PAYMENT_STATUSES:
            raise BusinessRuleError(
                "Solo se puede reintentar un cobro fallido o que requiere acción",
                status=order.status,
                payment_status=order.payment_status,
            )
        return self._charge(order_id)

    def _last_attempt_number(self, order_id):
        last = (
            db.session.query(db.func.max(PaymentAttempt.attempt_number))
            .filter(PaymentAttempt.order_id == order_id)
            .scalar()
        )
        return last or 0

    def _check_chargeable(self, order):
        if order.payment_status == P.PAID or order.status in (S.PAID, S.COMPLETED):
            raise BusinessRuleError("El pedido ya está pagado")
        if order.status not in CHARGEABLE_STATUSES:
            raise BusinessRuleError(
                f"El pedido no está listo para cobrar (estado: {order.status})",
                status=order.status,
            )
        if order.approved_at is None:
            raise BusinessRuleError("El pedido no ha sido aprobado; no se puede cobrar")
        if order.payment_method is None:
            raise BusinessRuleError("El pedido no tiene medio de pago")

    def _ensure_attempts_left(self, order_id):
        attempt_number = self._last_attempt_number(order_id) + 1
        if attempt_number > self.max_attempts:
            raise MaxPaymentAttemptsReached(
                f"Se alcanzó el máximo de {self.max_attempts} intentos de cobro",
                order_id=order_id,
                attempts=attempt_number - 1,
            )
        return attempt_number

    def _lock_invoice(self, invoice):
        """compare-and-swap draft|final -> locked"""
        updated = (
            Invoice.query
            .filter(Invoice.id == invoice.id, Invoice.status.in_(LOCKABLE_INVOICE_STATUSES))
            .update({Invoice.status: "locked", Invoice.locked_at: self.clock()},
                    synchronize_session=False)
        )
        db.session.commit()
        if not updated:
            raise PaymentInProgress(
                f"Ya hay un cobro en curso para el pedido #{invoice.order_id}",
                order_id=invoice.order_id,
            )

    def _unlock_invoice(self, invoice_id):
        Invoice.query.filter(Invoice.id == invoice_id, Invoice.status == "locked").update(
            {Invoice.status: "draft", Invoice.locked_at: None}, synchronize_session=False
        )
        db.session.commit()

    def _charge(self, order_id):
        order = self._load(order_id)
        self._check_chargeable(order)
        invoice = order.invoice or self._create_invoice(order)
        self._ensure_attempts_left(order.id)

        self._lock_invoice(invoice)
        invoice_id = invoice.id
        try:
            # Se recalcula con la factura bloqueada
            attempt_number = self._ensure_attempts_left(order.id)
            order = self._load(order_id)
            amount_cents = order.final_amount_cents or to_cents(order.invoice.total)
            key = idempotency_key(order.id, amount_cents, attempt_number)
            result = self.card_gateway.charge(
                amount_cents, order.currency, order.payment_method.card_token, order.id, key
            )
        except Exception:
            self._unlock_invoice(invoice_id)
            raise

        return self._apply_result(order, attempt_number, amount_cents, result)

    def _next_retry_at(self, attempt_number, now):
        if attempt_number == 1:
            return now + self.first_retry_delay
        if attempt_number < self.max_attempts:
            return now + self.retry_delay
        return None

    def _apply_result(self, order, attempt_number, amount_cents, result):
        now = self.clock()
        invoice = order.invoice
        amount = from_cents(amount_cents)

        attempt = PaymentAttempt(
            order_id=order.id,
            invoice_id=invoice.id,
            attempt_number=attempt_number,
            amount=amount,
            transaction_id=result.transaction_id or "",
            created_at=now,
        )

        if result.status == gateway_status.SUCCEEDED:
            attempt.status = "success"
            target = OrderState(S.PAID, P.PAID)
            invoice.status = "final"
            invoice.finalized_at = now
        elif result.status == gateway_status.PROCESSING:
            attempt.status = "pending"
            target = OrderState(S.CHARGE_ATTEMPTED, P.CHARGE_ATTEMPTED)
        elif result.status == gateway_status.REQUIRES_ACTION:
            attempt.status = "pending"
            target = OrderState(S.CHARGE_ATTEMPTED, P.PAYMENT_ACTION_REQUIRED)
            invoice.status = "draft"
            invoice.locked_at = None
        else:
            attempt.status = "failed"
            attempt.failure_reason = result.failure_reason or "Card declined"
            attempt.next_retry_at = self._next_retry_at(attempt_number, now)
            target = OrderState(S.PAYMENT_FAILED, P.PAYMENT_FAILED)
            invoice.status = "draft"
            invoice.locked_at = None

        ensure_transition(order.status, target.status)
        order.status = target.status
        order.payment_status = target.payment_status
        if result.transaction_id:
            order.payment_intent_id = result.transaction_id
        order.last_updated_at = now

        db.session.add(attempt)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            self._unlock_invoice(invoice.id)
            raise PaymentInProgress(
                f"El intento #{attempt_number} del pedido #{order.id} ya fue registrado",
                order_id=order.id,
            )

        outcome = PaymentOutcome(
            status=attempt.status,
            amount=float(amount),
            transaction_id=attempt.transaction_id,
            attempt_number=attempt_number,
            failure_reason=attempt.failure_reason,
            next_retry_at=attempt.next_retry_at,
        )

        if attempt.status == "failed":
            logger.warning(
                f"💳 Cobro #{attempt_number} del pedido #{order.id} rechazado: {attempt.failure_reason}"
            )
        else:
            logger.info(f"💳 Cobro #{attempt_number} del pedido #{order.id}: {result.status}")

        if attempt.status == "success":
            self._enqueue_receipt(order, invoice.to_dict(), attempt.to_dict())
        return outcome

    def _enqueue_receipt(self, order, invoice, attempt):
        if self.job_producer is None:
            return
        try:
            self.job_producer.enqueue_receipt(order.to_dict(), invoice, attempt)
        except Exception as e:
            logger.warning(f"⚠️ No se pudo encolar el recibo del pedido #{order.id}: {e}")

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def find_order_for_intent(self, intent):
        """Primero por payment_intent_id guardado, luego por metadata.orderId"""
        intent_id = intent.get("id")
        if intent_id:
            order = LaundryOrder.query.filter_by(payment_intent_id=intent_id).first()
            if order is not None:
                return order

        metadata = intent.get("metadata") or {}
        try:
            order_id = int(metadata.get("orderId"))
        except (TypeError, ValueError):
            return None
        return db.session.get(LaundryOrder, order_id)

    def handle_webhook_event(self, event):
        """
        Aplica un evento de la pasarela. Es idempotente: repetir un evento
        no cambia un pedido que ya refleja ese resultado.
        """
        outcome = WEBHOOK_EVENTS.get(event.get("type"))
        if outcome is None:
            logger.info(f"ℹ️ Evento de webhook ignorado: {event.get('type')}")
            return None

        intent = (event.get("data") or {}).get("object") or {}
        order = self.find_order_for_intent(intent)
        if order is None:
            logger.warning(f"⚠️ Webhook {event.get('type')} sin pedido asociado ({intent.get('id')})")
            return None

        if order.payment_status == P.PAID:
            logger.info(f"ℹ️ Pedido #{order.id} ya pagado; webhook {event.get('type')} sin efecto")
            return order

        now = self.clock()
        old_status = order.status
        pending = (
            PaymentAttempt.query
            .filter_by(order_id=order.id, status="pending")
            .order_by(PaymentAttempt.attempt_number.desc())
            .first()
        )

        if outcome == gateway_status.SUCCEEDED:
            target = OrderState(S.PAID, P.PAID)
        elif outcome == gateway_status.FAILED:
            target = OrderState(S.PAYMENT_FAILED, P.PAYMENT_FAILED)
        elif outcome == gateway_status.PROCESSING:
            target = OrderState(S.CHARGE_ATTEMPTED, P.CHARGE_ATTEMPTED)
        else:
            target = OrderState(S.CHARGE_ATTEMPTED, P.PAYMENT_ACTION_REQUIRED)

        if order.status != target.status and not can_transition(order.status, target.status):
            logger.warning(
                f"⚠️ Webhook {event.get('type')} no aplica a pedido #{order.id} en {order.status}"
            )
            return order

        if intent.get("id"):
            order.payment_intent_id = intent["id"]
        order.status = target.status
        order.payment_status = target.payment_status
        order.last_updated_at = now

        invoice = order.invoice
        if outcome == gateway_status.SUCCEEDED:
            if pending is not None:
                pending.status = "success"
            if invoice is not None:
                invoice.status = "final"
                invoice.finalized_at = now
        elif outcome == gateway_status.FAILED:
            reason = ((intent.get("last_payment_error") or {}).get("message")) or "Card declined"
            if pending is not None:
                pending.status = "failed"
                pending.failure_reason = reason
                pending.next_retry_at = self._next_retry_at(pending.attempt_number, now)

        # fallo o acción requerida: la factura vuelve a quedar disponible para reintentar
        if outcome in (gateway_status.FAILED, gateway_status.REQUIRES_ACTION):
            if invoice is not None and invoice.status == "locked":
                invoice.status = "draft"
                invoice.locked_at = None

        db.session.commit()
        logger.info(f"🔔 Webhook {event.get('type')} aplicado a pedido #{order.id}")
        self._record("payment_webhook", order, old_status, event.get("type"))

        if outcome == gateway_status.SUCCEEDED:
            attempt = pending.to_dict() if pending is not None else {"transaction_id": intent.get("id") or ""}
            self._enqueue_receipt(order, invoice.to_dict() if invoice is not None else None, attempt)
        return order


def _recalculated_lines(order):
    """Líneas de la factura recalculadas con los datos guardados en el pedido"""
    quote_input = QuoteInput.from_payload({
        "pricing_type": order.pricing_type,
        "wash_weight_lbs": order.bag_weight_lbs,
        "items": order.items,
    })
    return calculate(quote_input).line_items_json()
