"""
Servicio: Almacén local de pedidos
Registro durable por pedido, con búsqueda por cliente y listado admin.

No aplica reglas de negocio: solo valida la forma de los datos. Las
transiciones las decide OrderWorkflow.
"""
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..db import db
from ..models import LaundryOrder
from ..models.order import normalize_email
from .errors import OrderNotFound, ValidationError
from .order_state import OrderStatus, PaymentStatus, validate_payment_status, validate_status
from .quote_calculator import PRICING_TYPES, PERSONAL

logger = logging.getLogger(__name__)

SERVICE_TYPES = ("Pickup", "Drop-off", "Both")
ALL_STATUSES = "All"

ADDRESS_FIELDS = ("address_line1", "address_line2", "city", "state", "zip_code")


def parse_datetime(value, name="fecha"):
    """ISO 8601 a datetime naive en UTC (así se guarda en la base)"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{name} debe ser una fecha ISO 8601", field=name)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _clean(value):
    return str(value).strip() if value is not None else ""


class OrderStore:
    """Acceso a la tabla de pedidos vía Flask-SQLAlchemy"""

    def get(self, order_id):
        return db.session.get(LaundryOrder, int(order_id))

    def require(self, order_id):
        order = self.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def create(self, data, idempotency_key=None):
        """
        Crea un pedido en PendingPickup / NoPaymentMethod.

        Si llega una clave de idempotencia ya usada, devuelve el pedido
        existente en vez de crear otro.
        """
        if idempotency_key:
            existing = LaundryOrder.query.filter_by(idempotency_key=idempotency_key).first()
            if existing:
                logger.info(f"♻️ Pedido #{existing.id} ya existía para la clave {idempotency_key}")
                return existing

        fields = self._validate_new_order(data)
        order = LaundryOrder(
            idempotency_key=idempotency_key or None,
            status=OrderStatus.PENDING_PICKUP,
            payment_status=PaymentStatus.NO_PAYMENT_METHOD,
            **fields,
        )
        db.session.add(order)
        try:
            db.session.commit()
        except IntegrityError:
            # Otra solicitud con la misma clave ganó la carrera
            db.session.rollback()
            existing = LaundryOrder.query.filter_by(idempotency_key=idempotency_key).first()
            if existing is None:
                raise
            return existing

        logger.info(f"🧺 Pedido #{order.id} creado para {order.user_email}")
        return order

    def _validate_new_order(self, data):
        if not isinstance(data, dict):
            raise ValidationError("El pedido debe ser un objeto JSON")

        user_email = normalize_email(data.get("user_email") or data.get("userEmail"))
        if not user_email or "@" not in user_email:
            raise ValidationError("user_email es requerido", field="user_email")

        service_type = _clean(data.get("service_type"))
        matched = [s for s in SERVICE_TYPES if s.lower() == service_type.lower()]
        if not matched:
            raise ValidationError(
                f"service_type debe ser uno de: {', '.join(SERVICE_TYPES)}", field="service_type"
            )

        pricing_type = _clean(data.get("pricing_type")) or PERSONAL
        pricing = [p for p in PRICING_TYPES if p.lower() == pricing_type.lower()]
        if not pricing:
            raise ValidationError(
                f"pricing_type debe ser uno de: {', '.join(PRICING_TYPES)}", field="pricing_type"
            )

        scheduled_at = parse_datetime(data.get("scheduled_at"), "scheduled_at")
        if scheduled_at is None:
            raise ValidationError("scheduled_at es requerido", field="scheduled_at")

        address = {name: _clean(data.get(name)) for name in ADDRESS_FIELDS}
        flat_address = _clean(data.get("address"))
        if not address["address_line1"] and not flat_address:
            raise ValidationError("La dirección es requerida", field="address_line1")

        return {
            "user_email": user_email,
            "service_type": matched[0],
            "pricing_type": pricing[0],
            "scheduled_at": scheduled_at,
            "address": flat_address,
            "notes": _clean(data.get("notes")),
            **address,
        }

    def mirror(self, remote):
        """
        Copia (upsert) un pedido del servicio remoto con el mismo id.

        Los pedidos creados en local durante una caída usan su propia
        secuencia de ids: si la fila existente no es una copia previa ni
        comparte la clave de idempotencia, es otro pedido y no se pisa.
        Devuelve None cuando se omite la copia.
        """
        order = self.get(remote["id"])
        if order is None:
            order = LaundryOrder(id=remote["id"])
            db.session.add(order)
        elif order.mirrored_at is None and order.idempotency_key != remote.get("idempotency_key"):
            logger.warning(
                f"⚠️ Pedido remoto #{remote['id']} choca con un pedido local distinto "
                f"({order.user_email}); no se refleja"
            )
            return None

        for name in ("user_email", "service_type", "pricing_type", "address", "notes",
                     "admin_notes", "status", "payment_status", "currency",
                     "payment_intent_id", "quote_amount_cents", "final_amount_cents",
                     "quote_requires_approval", *ADDRESS_FIELDS):
            if name in remote and remote[name] is not None:
                setattr(order, name, remote[name])

        if remote.get("idempotency_key"):
            order.idempotency_key = remote["idempotency_key"]
        if "items" in remote:
            order.items_json = json.dumps(remote.get("items") or [])
        if remote.get("bag_weight_lbs") is not None:
            order.bag_weight_lbs = Decimal(str(remote["bag_weight_lbs"]))
        for name in ("scheduled_at", "approved_at", "created_at", "last_updated_at", "closed_at"):
            if remote.get(name):
                setattr(order, name, parse_datetime(remote[name], name))

        order.mirrored_at = datetime.utcnow()
        db.session.commit()
        return order

    def list_by_user(self, user_email):
        email = normalize_email(user_email)
        if not email:
            return []
        return (
            LaundryOrder.query.filter_by(user_email=email)
            .order_by(LaundryOrder.created_at.desc(), LaundryOrder.id.desc())
            .all()
        )

    def list_admin(self, status=None, search=None):
        """Listado admin; status vacío o 'All' no filtra, search busca email, id y dirección"""
        query = LaundryOrder.query

        if status and status != ALL_STATUSES:
            query = query.filter(LaundryOrder.status == status)

        term = (search or "").strip()
        if term:
            like = f"%{term}%"
            conditions = [
                LaundryOrder.user_email.ilike(like),
                LaundryOrder.address.ilike(like),
                LaundryOrder.address_line1.ilike(like),
                LaundryOrder.address_line2.ilike(like),
                LaundryOrder.city.ilike(like),
                LaundryOrder.state.ilike(like),
                LaundryOrder.zip_code.ilike(like),
            ]
            digits = term.lstrip("#")
            if digits.isdigit():
                conditions.append(LaundryOrder.id == int(digits))
            query = query.filter(or_(*conditions))

        return query.order_by(LaundryOrder.created_at.desc(), LaundryOrder.id.desc()).all()

    def update_status(self, order_id, status, payment_status=None):
        """Escribe el estado tal cual; marca approved_at y closed_at al pasar por ellos"""
        validate_status(status)
        if payment_status is not None:
            validate_payment_status(payment_status)

        order = self.require(order_id)
        order.status = status
        if payment_status is not None:
            order.payment_status = payment_status

        now = datetime.utcnow()
        if status == OrderStatus.APPROVED and order.approved_at is None:
            order.approved_at = now
        if status == OrderStatus.COMPLETED and order.closed_at is None:
            order.closed_at = now
        if status == OrderStatus.CANCELLED and order.invoice and order.invoice.status == "draft":
            order.invoice.status = "void"
            order.invoice.voided_at = now
        order.touch()

        db.session.commit()
        return order

    def update_payment_status(self, order_id, payment_status):
        validate_payment_status(payment_status)
        order = self.require(order_id)
        order.payment_status = payment_status
        order.touch()
        db.session.commit()
        return order

    def update_notes(self, order_id, admin_notes):
        order = self.require(order_id)
        order.admin_notes = (admin_notes or "").strip()
        order.touch()
        db.session.commit()
        return order

    def delete(self, order_id):
        order = self.get(order_id)
        if order is None:
            return False
        db.session.delete(order)
        db.session.commit()
        logger.info(f"🗑️ Pedido #{order_id} eliminado")
        return True
