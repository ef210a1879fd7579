"""
Modelo: Pedido de lavandería
Retiro programado, cotización y estado de cobro
"""
import json
import unicodedata
from datetime import datetime
from ..db import db


def normalize_email(value):
    """Quita espacios, caracteres de control/formato y pasa a minúsculas"""
    if not value:
        return ""
    cleaned = "".join(
        c for c in value.strip()
        if not c.isspace() and unicodedata.category(c) not in ("Cc", "Cf")
    )
    return cleaned.lower()


def build_display_address(line1, line2, city, state, zip_code):
    """'123 Main St, Apt 4, Springfield, IL 62704'"""
    first = ", ".join(p.strip() for p in (line1, line2) if p and p.strip())

    second = ", ".join(p.strip() for p in (city, state) if p and p.strip())
    if zip_code and zip_code.strip():
        second = f"{second} {zip_code.strip()}" if second else zip_code.strip()

    return ", ".join(p for p in (first, second) if p)


class LaundryOrder(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    idempotency_key = db.Column(db.String(64), unique=True, nullable=True)

    user_email = db.Column(db.String(255), nullable=False, index=True)
    service_type = db.Column(db.String(40), nullable=False)
    # Pickup | Drop-off | Both
    pricing_type = db.Column(db.String(20), nullable=False, default="Personal")
    # Personal | Request
    scheduled_at = db.Column(db.DateTime, nullable=False)

    # Dirección estructurada + texto plano heredado
    address = db.Column(db.String(255), nullable=False, default="")
    address_line1 = db.Column(db.String(255), nullable=False, default="")
    address_line2 = db.Column(db.String(255), nullable=False, default="")
    city = db.Column(db.String(120), nullable=False, default="")
    state = db.Column(db.String(40), nullable=False, default="")
    zip_code = db.Column(db.String(20), nullable=False, default="")

    notes = db.Column(db.Text, nullable=False, default="")
    admin_notes = db.Column(db.Text, nullable=False, default="")

    status = db.Column(db.String(30), nullable=False, default="PendingPickup", index=True)
    payment_status = db.Column(db.String(30), nullable=False, default="NoPaymentMethod")

    # Cobro
    bag_weight_lbs = db.Column(db.Numeric(10, 2), nullable=True)
    items_json = db.Column(db.Text, nullable=False, default="[]")
    quote_amount_cents = db.Column(db.Integer, nullable=True)
    quote_requires_approval = db.Column(db.Boolean, default=False)
    final_amount_cents = db.Column(db.Integer, nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    payment_intent_id = db.Column(db.String(120), nullable=True, index=True)

    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=True)
    terms_accepted = db.Column(db.Boolean, default=False)
    terms_accepted_at = db.Column(db.DateTime, nullable=True)

    approved_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_updated_at = db.Column(db.DateTime, default=datetime.utcnow)
    closed_at = db.Column(db.DateTime, nullable=True)
    # Copia de un pedido del servicio remoto (ver OrderStore.mirror)
    mirrored_at = db.Column(db.DateTime, nullable=True)

    # Relaciones
    payment_method = db.relationship("PaymentMethod")
    invoice = db.relationship("Invoice", back_populates="order", uselist=False,
                              cascade="all, delete-orphan")
    payment_attempts = db.relationship("PaymentAttempt", back_populates="order",
                                       cascade="all, delete-orphan",
                                       order_by="PaymentAttempt.attempt_number")

    def display_address(self):
        structured = build_display_address(
            self.address_line1, self.address_line2, self.city, self.state, self.zip_code
        )
        return structured or (self.address or "")

    def touch(self):
        self.last_updated_at = datetime.utcnow()

    @property
    def items(self):
        try:
            return json.loads(self.items_json or "[]")
        except ValueError:
            return []

    def to_dict(self):
        return {
            "id": self.id,
            "idempotency_key": self.idempotency_key,
            "user_email": self.user_email,
            "service_type": self.service_type,
            "pricing_type": self.pricing_type,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "address": self.display_address(),
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "notes": self.notes,
            "admin_notes": self.admin_notes,
            "status": self.status,
            "payment_status": self.payment_status,
            "bag_weight_lbs": float(self.bag_weight_lbs) if self.bag_weight_lbs is not None else None,
            "items": self.items,
            "quote_amount_cents": self.quote_amount_cents,
            "quote_requires_approval": bool(self.quote_requires_approval),
            "final_amount_cents": self.final_amount_cents,
            "currency": self.currency,
            "payment_intent_id": self.payment_intent_id,
            "payment_method_id": self.payment_method_id,
            "invoice_id": self.invoice.id if self.invoice else None,
            "terms_accepted": bool(self.terms_accepted),
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_updated_at": self.last_updated_at.isoformat() if self.last_updated_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }
