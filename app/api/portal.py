"""
API: Portal de clientes y personal
Entrada de las acciones (agendar, aprobar, cancelar, cotizar, cambiar
estado, cobrar). Todo pasa por OrderWorkflow; las respuestas indican si se
usó el almacén local (degraded).

El cliente se identifica con user_email (body, query o X-User-Email) y el
personal con X-Actor; la autenticación la resuelve la capa externa.
"""
from flask import Blueprint, request, jsonify

from ..extensions import get_services
from ..services.errors import ValidationError

bp = Blueprint("portal", __name__)


def _json_body():
    return request.get_json(silent=True) or {}


def _user_email(data=None):
    email = (
        (data or {}).get("user_email")
        or request.args.get("userEmail")
        or request.args.get("user_email")
        or request.headers.get("X-User-Email")
    )
    if not email:
        raise ValidationError("user_email es requerido", field="user_email")
    return email


def _actor():
    return request.headers.get("X-Actor") or "staff"


def _respond(result, key="order", status=200):
    if isinstance(result.data, dict) and key is None:
        body = dict(result.data)
    else:
        body = {key: result.data}
    body["degraded"] = result.degraded
    return jsonify(body), status


def _workflow():
    return get_services().workflow


# ---------------------------------------------------------------------------
# Cliente
# ---------------------------------------------------------------------------

@bp.route("/orders", methods=["POST"])
def schedule_order():
    """Agenda un retiro"""
    result = _workflow().schedule(_json_body(), idempotency_key=request.headers.get("Idempotency-Key"))
    return _respond(result, status=201)


@bp.route("/orders", methods=["GET"])
def my_orders():
    return _respond(_workflow().list_by_user(_user_email()), key="orders")


@bp.route("/orders/<int:id>", methods=["GET"])
def my_order(id):
    return _respond(_workflow().get(id, _user_email()))


@bp.route("/orders/<int:id>/approve", methods=["POST"])
def approve_quote(id):
    return _respond(_workflow().approve_quote(id, _user_email(_json_body())))


@bp.route("/orders/<int:id>/cancel", methods=["POST"])
def cancel_order(id):
    return _respond(_workflow().cancel(id, _user_email(_json_body())))


@bp.route("/orders/<int:id>/payment-method", methods=["POST"])
def save_payment_method(id):
    data = _json_body()
    result = _workflow().save_payment_method(id, data, user_email=_user_email(data))
    return _respond(result, key=None, status=201)


@bp.route("/orders/<int:id>/payment-method/update", methods=["POST"])
def update_payment_method(id):
    data = _json_body()
    result = _workflow().save_payment_method(id, data, user_email=_user_email(data), replace=True)
    return _respond(result, key=None)


@bp.route("/orders/<int:id>/payment/retry", methods=["POST"])
def retry_payment(id):
    email = _user_email(_json_body())
    return _respond(_workflow().retry_payment(id, user_email=email, actor=email), key=None)


@bp.route("/orders/<int:id>/invoice", methods=["GET"])
def my_invoice(id):
    result = _workflow().get_invoice(id, _user_email())
    if result.data is None:
        return jsonify({"error": f"El pedido #{id} no tiene factura", "code": "not_found"}), 404
    return _respond(result, key="invoice")


# ---------------------------------------------------------------------------
# Personal
# ---------------------------------------------------------------------------

@bp.route("/admin/orders", methods=["GET"])
def admin_orders():
    result = _workflow().list_admin(request.args.get("status"), request.args.get("search"))
    return _respond(result, key="orders")


@bp.route("/admin/orders/<int:id>", methods=["GET"])
def admin_order(id):
    return _respond(_workflow().get(id))


@bp.route("/admin/orders/<int:id>/status", methods=["POST"])
def admin_update_status(id):
    data = _json_body()
    if not data.get("status"):
        raise ValidationError("status es requerido", field="status")
    return _respond(_workflow().update_status(id, data["status"], actor=_actor()))


@bp.route("/admin/orders/<int:id>/payment-status", methods=["POST"])
def admin_update_payment_status(id):
    data = _json_body()
    if not data.get("payment_status"):
        raise ValidationError("payment_status es requerido", field="payment_status")
    return _respond(_workflow().update_payment_status(id, data["payment_status"], actor=_actor()))


@bp.route("/admin/orders/<int:id>/admin-notes", methods=["POST"])
def admin_update_notes(id):
    data = _json_body()
    return _respond(_workflow().update_notes(id, data.get("admin_notes", ""), actor=_actor()))


@bp.route("/admin/orders/<int:id>/quote", methods=["POST"])
def admin_quote(id):
    return _respond(_workflow().quote(id, _json_body(), actor=_actor()), key=None)


@bp.route("/admin/orders/<int:id>/invoice/generate", methods=["POST"])
def admin_generate_invoice(id):
    return _respond(_workflow().generate_invoice(id), key="invoice")


@bp.route("/admin/orders/<int:id>/payment/attempt", methods=["POST"])
def admin_attempt_payment(id):
    return _respond(_workflow().attempt_payment(id, actor=_actor()), key=None)


@bp.route("/admin/orders/<int:id>/payment/retry", methods=["POST"])
def admin_retry_payment(id):
    return _respond(_workflow().retry_payment(id, actor=_actor()), key=None)


@bp.route("/admin/orders/<int:id>/payments", methods=["GET"])
def admin_payment_history(id):
    return _respond(_workflow().payment_history(id), key="payments")


@bp.route("/admin/orders/<int:id>", methods=["DELETE"])
def admin_delete_order(id):
    _workflow().delete(id, actor=_actor())
    return jsonify({"deleted": True, "order_id": id})
