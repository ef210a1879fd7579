"""
Modelo: Medio de pago
Solo datos tokenizados, nunca el número completo de la tarjeta
"""
from datetime import datetime
from ..db import db


class PaymentMethod(db.Model):
    __tablename__ = "payment_methods"

    id = db.Column(db.Integer, primary_key=True)
    user_email = db.Column(db.String(255), nullable=False, index=True)

    card_token = db.Column(db.String(255), nullable=False)
    card_last4 = db.Column(db.String(4), nullable=False)
    card_brand = db.Column(db.String(30), nullable=False, default="")
    expiry_month = db.Column(db.String(2), nullable=False, default="")
    expiry_year = db.Column(db.String(4), nullable=False, default="")

    is_default = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_used_at = db.Column(db.DateTime, nullable=True)

    def display_name(self):
        return f"{self.card_brand} ending in {self.card_last4}"

    def to_dict(self):
        return {
            "id": self.id,
            "user_email": self.user_email,
            "card_last4": self.card_last4,
            "card_brand": self.card_brand,
            "expiry_month": self.expiry_month,
            "expiry_year": self.expiry_year,
            "is_default": self.is_default,
            "display_name": self.display_name(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
