"""
Servicio: Flujo de pedidos
Punto de entrada de las acciones de clientes y personal. Aplica la máquina
de estados, llama al gateway resiliente y emite un evento de auditoría por
cada transición.

Efectos secundarios (correo de confirmación, cobro al pasar a Ready) nunca
impiden que la transición principal se complete.
"""
import logging
import uuid

from ..models.order import normalize_email
from .errors import BusinessRuleError, OrderNotFound
from .order_state import (
    OrderState,
    OrderStatus,
    PaymentStatus,
    next_state,
    triggers_payment,
    validate_payment_status,
    validate_status,
)

logger = logging.getLogger(__name__)

S = OrderStatus
P = PaymentStatus

CUSTOMER_CANCELLABLE = (S.PENDING_PICKUP,)
PRE_QUOTE_STATUSES = (S.PENDING_PICKUP, S.PICKED_UP, S.WEIGHED_OR_COUNTED)


class OrderWorkflow:

    def __init__(self, gateway, job_producer=None, audit=None):
        self.gateway = gateway
        self.job_producer = job_producer
        self.audit = audit

    def _record(self, action, order_id, old_status=None, new_status=None, actor=None, details=""):
        if self.audit is not None:
            self.audit.record(action, order_id=order_id, old_status=old_status,
                              new_status=new_status, actor=actor, details=details)

    # ------------------------------------------------------------------
    # Lectura
    # ------------------------------------------------------------------

    def get(self, order_id, user_email=None):
        """Pedido por id; con user_email solo lo devuelve si pertenece a ese cliente"""
        result = self.gateway.require(order_id)
        if user_email is not None and result.data["user_email"] != normalize_email(user_email):
            raise OrderNotFound(order_id)
        return result

    def list_by_user(self, user_email):
        return self.gateway.list_by_user(normalize_email(user_email))

    def list_admin(self, status=None, search=None):
        return self.gateway.list_admin(status, search)

    def get_invoice(self, order_id, user_email=None):
        self.get(order_id, user_email)
        return self.gateway.get_invoice(order_id)

    def payment_history(self, order_id, user_email=None):
        self.get(order_id, user_email)
        return self.gateway.payment_history(order_id)

    # ------------------------------------------------------------------
    # Cliente
    # ------------------------------------------------------------------

    def schedule(self, data, idempotency_key=None):
        """Agenda un retiro: PendingPickup / NoPaymentMethod + correo de confirmación"""
        key = idempotency_key or uuid.uuid4().hex
        result = self.gateway.create(data, idempotency_key=key)
        order = result.data

        self._record("order_created", order["id"], None, order["status"], order["user_email"])
        self._enqueue_order_created(order)
        return result

    def _enqueue_order_created(self, order):
        if self.job_producer is None:
            return
        try:
            self.job_producer.enqueue_order_created(order)
        except Exception as e:
            logger.warning(f"⚠️ No se pudo encolar la confirmación del pedido #{order['id']}: {e}")

    def approve_quote(self, order_id, user_email):
        order = self.get(order_id, user_email).data
        if order["status"] != S.QUOTED:
            raise BusinessRuleError("La cotización no está pendiente de aprobación",
                                    status=order["status"])

        target = next_state(OrderState.of(order), S.APPROVED)
        result = self.gateway.update_status(order_id, target.status, target.payment_status)
        self._record("quote_approved", order_id, order["status"], target.status, normalize_email(user_email))
        return result

    def cancel(self, order_id, user_email):
        """El cliente solo puede cancelar mientras el pedido espera el retiro"""
        order = self.get(order_id, user_email).data
        if order["status"] not in CUSTOMER_CANCELLABLE:
            raise BusinessRuleError(
                "Solo puedes cancelar un pedido que aún no ha sido retirado",
                status=order["status"],
            )

        target = next_state(OrderState.of(order), S.CANCELLED)
        result = self.gateway.update_status(order_id, target.status, target.payment_status)
        self._record("order_cancelled", order_id, order["status"], target.status, normalize_email(user_email))
        return result

    def save_payment_method(self, order_id, data, user_email=None, replace=False):
        order = self.get(order_id, user_email).data
        result = self.gateway.save_payment_method(order_id, data, replace=replace)
        new_order = result.data.get("order") or {}
        self._record(
            "payment_method_updated" if replace else "payment_method_saved",
            order_id, order["payment_status"], new_order.get("payment_status"),
            normalize_email(user_email) if user_email else None,
        )
        return result

    def retry_payment(self, order_id, user_email=None, actor=None):
        order = self.get(order_id, user_email).data
        result = self.gateway.retry_payment(order_id)
        self._record_payment("payment_retried", order, result, actor or user_email)
        return result

    def _record_payment(self, action, order, result, actor):
        payment = result.data.get("payment") or {}
        new_order = result.data.get("order") or {}
        details = f"Intento #{payment.get('attempt_number')}: {payment.get('status')}"
        if payment.get("failure_reason"):
            details = f"{details} ({payment['failure_reason']})"
        self._record(action, order["id"], order["status"], new_order.get("status"), actor, details)

    # ------------------------------------------------------------------
    # Personal
    # ------------------------------------------------------------------

    def quote(self, order_id, payload, actor=None):
        order = self.gateway.require(order_id).data
        result = self.gateway.quote(order_id, payload)
        quote = result.data.get("quote") or {}
        self._record("order_quoted", order_id, order["status"], result.data["order"]["status"],
                     actor, f"Cotización ${quote.get('total')}")
        return result

    def generate_invoice(self, order_id):
        return self.gateway.generate_invoice(order_id)

    def attempt_payment(self, order_id, actor=None):
        order = self.gateway.require(order_id).data
        result = self.gateway.attempt_payment(order_id)
        self._record_payment("payment_attempted", order, result, actor)
        return result

    def update_status(self, order_id, new_status, actor=None):
        """
        Cambio de estado por el personal.

        - Mismo estado: no hace nada.
        - Quoted/Approved desde antes de cotizar exige una cotización
          calculada; si requiere aprobación queda en Quoted.
        - Completed exige el pedido pagado.
        - Ready con tarjeta o aprobación dispara el cobro.
        """
        validate_status(new_status)
        result = self.gateway.require(order_id)
        order = result.data
        current = OrderState.of(order)

        if new_status == current.status:
            return result

        if new_status in (S.QUOTED, S.APPROVED) and current.status in PRE_QUOTE_STATUSES:
            if not order.get("quote_amount_cents"):
                raise BusinessRuleError(
                    "Se requiere una cotización calculada antes de cotizar o aprobar el pedido"
                )
            new_status = S.QUOTED if order.get("quote_requires_approval") else S.APPROVED

        if new_status == S.COMPLETED and current.payment_status != P.PAID:
            raise BusinessRuleError("El pedido debe estar pagado antes de cerrarse")

        target = next_state(current, new_status)
        if (target.payment_status in P.CHARGED and not order.get("approved_at")
                and target.status != S.APPROVED):
            raise BusinessRuleError("El pedido no pasó por aprobación; no puede quedar cobrado")

        result = self.gateway.update_status(order_id, target.status, target.payment_status)
        self._record("status_changed", order_id, current.status, target.status, actor)

        if triggers_payment(target):
            self._trigger_payment(order_id, actor)
            result = self.gateway.require(order_id)
        return result

    def _trigger_payment(self, order_id, actor):
        """Cobro automático al pasar a Ready; un fallo queda en auditoría, no corta la transición"""
        try:
            result = self.gateway.attempt_payment(order_id)
        except Exception as e:
            logger.warning(f"⚠️ Cobro automático del pedido #{order_id} falló: {e}")
            self._record("payment_trigger_failed", order_id, S.READY, None, actor, str(e))
            return None

        self._record_payment("payment_attempted", {"id": order_id, "status": S.READY}, result, actor)
        return result

    def update_payment_status(self, order_id, payment_status, actor=None):
        validate_payment_status(payment_status)
        result = self.gateway.require(order_id)
        order = result.data

        if payment_status == order["payment_status"]:
            return result

        OrderState(order["status"], payment_status)
        if payment_status in P.CHARGED and not order.get("approved_at"):
            raise BusinessRuleError("El pedido no pasó por aprobación; no puede quedar cobrado")

        result = self.gateway.update_payment_status(order_id, payment_status)
        self._record("payment_status_changed", order_id, order["payment_status"], payment_status, actor)
        return result

    def update_notes(self, order_id, admin_notes, actor=None):
        result = self.gateway.update_notes(order_id, admin_notes)
        self._record("admin_notes_updated", order_id, actor=actor)
        return result

    def delete(self, order_id, actor=None):
        result = self.gateway.delete(order_id)
        if not result.data:
            raise OrderNotFound(order_id)
        self._record("order_deleted", order_id, actor=actor)
        return result
