"""
API: Administración de pedidos (servicio de pedidos)
Escrituras directas sobre el almacén; las reglas de transición las aplica
el flujo de pedidos antes de llamar aquí
"""
from flask import Blueprint, request, jsonify

from ..extensions import get_services
from ..services.errors import OrderNotFound, ValidationError

bp = Blueprint("admin", __name__)


@bp.route("/orders", methods=["GET"])
def list_orders():
    """Listado admin (?status=&search=)"""
    orders = get_services().store.list_admin(
        status=request.args.get("status"), search=request.args.get("search")
    )
    return jsonify([o.to_dict() for o in orders])


@bp.route("/orders/<int:id>/status", methods=["POST"])
def update_status(id):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        raise ValidationError("status es requerido", field="status")

    order = get_services().store.update_status(id, data["status"], data.get("payment_status"))
    return jsonify(order.to_dict())


@bp.route("/orders/<int:id>/payment-status", methods=["POST"])
def update_payment_status(id):
    data = request.get_json(silent=True) or {}
    if not data.get("payment_status"):
        raise ValidationError("payment_status es requerido", field="payment_status")

    order = get_services().store.update_payment_status(id, data["payment_status"])
    return jsonify(order.to_dict())


@bp.route("/orders/<int:id>/admin-notes", methods=["POST"])
def update_admin_notes(id):
    data = request.get_json(silent=True) or {}
    order = get_services().store.update_notes(id, data.get("admin_notes", ""))
    return jsonify(order.to_dict())


@bp.route("/orders/<int:id>", methods=["DELETE"])
def delete_order(id):
    if not get_services().store.delete(id):
        raise OrderNotFound(id)
    return jsonify({"deleted": True, "order_id": id})
