"""
API: Pedidos (servicio de pedidos)
Contrato que consume el gateway: creación, consulta, cotización, factura,
medios de pago y cobros
"""
from flask import Blueprint, request, jsonify

from ..extensions import get_services
from ..services.quote_calculator import QuoteInput

bp = Blueprint("orders", __name__)


def _json_body():
    return request.get_json(silent=True) or {}


@bp.route("", methods=["GET"])
def list_orders():
    """Pedidos de un cliente (?userEmail=)"""
    user_email = request.args.get("userEmail") or request.args.get("user_email")
    orders = get_services().store.list_by_user(user_email)
    return jsonify([o.to_dict() for o in orders])


@bp.route("", methods=["POST"])
def create_order():
    """Crea un pedido; el header Idempotency-Key evita duplicados al reintentar"""
    order = get_services().store.create(
        _json_body(), idempotency_key=request.headers.get("Idempotency-Key")
    )
    return jsonify(order.to_dict()), 201


@bp.route("/<int:id>", methods=["GET"])
def get_order(id):
    order = get_services().store.require(id)
    return jsonify(order.to_dict())


@bp.route("/<int:id>/quote", methods=["POST"])
def quote_order(id):
    """Calcula la cotización, la guarda y crea la factura"""
    order, invoice, quote = get_services().payments.quote_order(id, QuoteInput.from_payload(_json_body()))
    return jsonify({
        "order": order.to_dict(),
        "invoice": invoice.to_dict(),
        "quote": quote.to_dict(),
    })


@bp.route("/<int:id>/invoice/generate", methods=["POST"])
def generate_invoice(id):
    invoice = get_services().payments.generate_invoice(id)
    return jsonify({"invoice_id": invoice.id, "invoice": invoice.to_dict()})


@bp.route("/<int:id>/invoice", methods=["GET"])
def get_invoice(id):
    invoice = get_services().payments.get_invoice(id)
    if invoice is None:
        return jsonify({"error": f"El pedido #{id} no tiene factura", "code": "not_found"}), 404
    return jsonify(invoice.to_dict())


def _payment_response(id, outcome):
    order = get_services().store.require(id)
    return jsonify({"order": order.to_dict(), "payment": outcome.to_dict()})


@bp.route("/<int:id>/payment/attempt", methods=["POST"])
def attempt_payment(id):
    outcome = get_services().payments.attempt_payment(id)
    return _payment_response(id, outcome)


@bp.route("/<int:id>/payment/retry", methods=["POST"])
def retry_payment(id):
    outcome = get_services().payments.retry_payment(id)
    return _payment_response(id, outcome)


@bp.route("/<int:id>/payment-method", methods=["POST"])
def save_payment_method(id):
    order, method = get_services().payments.save_payment_method(id, _json_body())
    return jsonify({"order": order.to_dict(), "payment_method": method.to_dict()}), 201


@bp.route("/<int:id>/payment-method/update", methods=["POST"])
def update_payment_method(id):
    order, method = get_services().payments.save_payment_method(id, _json_body(), replace=True)
    return jsonify({"order": order.to_dict(), "payment_method": method.to_dict()})


@bp.route("/<int:id>/payments", methods=["GET"])
def payment_history(id):
    attempts = get_services().payments.payment_history(id)
    return jsonify([a.to_dict() for a in attempts])
