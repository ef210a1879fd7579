"""
Servicio: Gateway resiliente de pedidos
Una sola API de pedidos sobre el servicio remoto, con el almacén local como
respaldo.

- Primero se llama al servicio remoto. Si responde ServiceUnavailable se
  usa el almacén local y el resultado queda marcado como degradado.
- En modo solo-remoto (REMOTE_ONLY_MODE) no hay respaldo: la
  indisponibilidad llega al usuario como error.
- Las escrituras remotas exitosas se reflejan en el almacén local; si eso
  falla solo se registra una advertencia.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from ..db import db
from .errors import OrderNotFound, ServiceUnavailable
from .quote_calculator import QuoteInput

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "El servicio de pedidos no está disponible. Intenta nuevamente en unos minutos."


@dataclass(frozen=True)
class GatewayResult:
    data: Any
    degraded: bool = False


class OrderGateway:

    def __init__(self, client, store, payments, remote_only=False,
                 prefer_local_when_remote_empty=False):
        self.client = client
        self.store = store
        self.payments = payments
        self.remote_only = remote_only
        self.prefer_local_when_remote_empty = prefer_local_when_remote_empty

    def _call(self, operation, remote, local):
        try:
            return GatewayResult(remote(), degraded=False)
        except ServiceUnavailable as e:
            if self.remote_only:
                logger.error(f"❌ {operation}: servicio de pedidos no disponible (modo solo-remoto): {e}")
                raise ServiceUnavailable(UNAVAILABLE_MESSAGE, operation=operation)
            logger.warning(f"⚠️ {operation}: servicio de pedidos no disponible, usando almacén local ({e})")
            return GatewayResult(local(), degraded=True)

    def _mirror(self, order, operation):
        """Refleja en local un pedido devuelto por el servicio remoto"""
        if not order:
            return
        try:
            self.store.mirror(order)
        except Exception as e:
            db.session.rollback()
            logger.warning(f"⚠️ {operation}: no se pudo reflejar el pedido #{order.get('id')} en local: {e}")

    # ------------------------------------------------------------------
    # Pedidos
    # ------------------------------------------------------------------

    def create(self, data, idempotency_key=None):
        """
        Crea el pedido. La misma clave de idempotencia viaja al servicio
        remoto y al almacén local, así reintentar no duplica el pedido.
        """
        key = idempotency_key or uuid.uuid4().hex

        def remote():
            order = self.client.create_order(data, idempotency_key=key)
            self._mirror(order, "create")
            return order

        return self._call(
            "create", remote,
            lambda: self.store.create(data, idempotency_key=key).to_dict(),
        )

    def get(self, order_id):
        def local():
            order = self.store.get(order_id)
            return order.to_dict() if order else None

        result = self._call("get", lambda: self.client.get_order(order_id), local)
        if result.data is None and not result.degraded and not self.remote_only:
            # Pedidos creados en local mientras el remoto estaba caído
            order = local()
            if order is not None:
                return GatewayResult(order, degraded=True)
        return result

    def require(self, order_id):
        result = self.get(order_id)
        if result.data is None:
            raise OrderNotFound(order_id)
        return result

    def list_by_user(self, user_email):
        def local():
            return [o.to_dict() for o in self.store.list_by_user(user_email)]

        result = self._call("list_by_user", lambda: self.client.list_by_user(user_email), local)
        return self._prefer_local_if_empty(result, local)

    def list_admin(self, status=None, search=None):
        def local():
            return [o.to_dict() for o in self.store.list_admin(status, search)]

        result = self._call("list_admin", lambda: self.client.list_admin(status, search), local)
        if (status or "All") == "All" and not (search or "").strip():
            return self._prefer_local_if_empty(result, local)
        return result

    def _prefer_local_if_empty(self, result, local):
        """Heurística antigua: lista remota vacía + local con datos -> local. Solo si se activa."""
        if result.degraded or result.data or not self.prefer_local_when_remote_empty or self.remote_only:
            return result
        local_orders = local()
        if local_orders:
            logger.warning("⚠️ Lista remota vacía y almacén local con datos; usando local")
            return GatewayResult(local_orders, degraded=True)
        return result

    def update_status(self, order_id, status, payment_status=None):
        def remote():
            order = self.client.update_status(order_id, status, payment_status)
            self._mirror(order, "update_status")
            return order

        return self._call(
            "update_status", remote,
            lambda: self.store.update_status(order_id, status, payment_status).to_dict(),
        )

    def update_payment_status(self, order_id, payment_status):
        def remote():
            order = self.client.update_payment_status(order_id, payment_status)
            self._mirror(order, "update_payment_status")
            return order

        return self._call(
            "update_payment_status", remote,
            lambda: self.store.update_payment_status(order_id, payment_status).to_dict(),
        )

    def update_notes(self, order_id, admin_notes):
        def remote():
            order = self.client.update_admin_notes(order_id, admin_notes)
            self._mirror(order, "update_notes")
            return order

        return self._call(
            "update_notes", remote,
            lambda: self.store.update_notes(order_id, admin_notes).to_dict(),
        )

    def delete(self, order_id):
        def remote():
            deleted = self.client.delete_order(order_id)
            try:
                deleted_locally = self.store.delete(order_id)
            except Exception as e:
                db.session.rollback()
                logger.warning(f"⚠️ delete: no se pudo borrar la copia local del pedido #{order_id}: {e}")
                deleted_locally = False
            # Un pedido creado en local durante una caída no existe en el remoto
            return deleted or deleted_locally

        return self._call("delete", remote, lambda: self.store.delete(order_id))

    # ------------------------------------------------------------------
    # Cotización, factura y cobros
    # ------------------------------------------------------------------

    def quote(self, order_id, payload):
        def remote():
            response = self.client.quote(order_id, payload)
            self._mirror(response.get("order"), "quote")
            return response

        def local():
            order, invoice, quote = self.payments.quote_order(order_id, QuoteInput.from_payload(payload))
            return {"order": order.to_dict(), "invoice": invoice.to_dict(), "quote": quote.to_dict()}

        return self._call("quote", remote, local)

    def generate_invoice(self, order_id):
        return self._call(
            "generate_invoice",
            lambda: self.client.generate_invoice(order_id),
            lambda: self.payments.generate_invoice(order_id).to_dict(),
        )

    def get_invoice(self, order_id):
        def local():
            invoice = self.payments.get_invoice(order_id)
            return invoice.to_dict() if invoice else None

        return self._call("get_invoice", lambda: self.client.get_invoice(order_id), local)

    def _payment(self, operation, remote_call, local_call, order_id):
        def remote():
            response = remote_call(order_id)
            self._mirror(response.get("order"), operation)
            return response

        def local():
            outcome = local_call(order_id)
            return {"order": self.store.require(order_id).to_dict(), "payment": outcome.to_dict()}

        return self._call(operation, remote, local)

    def attempt_payment(self, order_id):
        return self._payment("attempt_payment", self.client.attempt_payment,
                             self.payments.attempt_payment, order_id)

    def retry_payment(self, order_id):
        return self._payment("retry_payment", self.client.retry_payment,
                             self.payments.retry_payment, order_id)

    def save_payment_method(self, order_id, data, replace=False):
        operation = "update_payment_method" if replace else "save_payment_method"

        def remote():
            response = self.client.save_payment_method(order_id, data, replace=replace)
            self._mirror(response.get("order"), operation)
            return response

        def local():
            order, method = self.payments.save_payment_method(order_id, data, replace=replace)
            return {"order": order.to_dict(), "payment_method": method.to_dict()}

        return self._call(operation, remote, local)

    def payment_history(self, order_id):
        return self._call(
            "payment_history",
            lambda: self.client.payment_history(order_id),
            lambda: [a.to_dict() for a in self.payments.payment_history(order_id)],
        )
