"""
Modelo: Factura
Una por pedido, se crea al cotizar
"""
import json
from datetime import datetime
from ..db import db


class Invoice(db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)

    status = db.Column(db.String(10), nullable=False, default="draft")
    # draft | locked | final | void

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    delivery_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tip = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    line_items = db.Column(db.Text, nullable=False, default="[]")

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    finalized_at = db.Column(db.DateTime, nullable=True)
    locked_at = db.Column(db.DateTime, nullable=True)
    voided_at = db.Column(db.DateTime, nullable=True)

    order = db.relationship("LaundryOrder", back_populates="invoice")

    def to_dict(self):
        try:
            lines = json.loads(self.line_items or "[]")
        except ValueError:
            lines = []
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "subtotal": float(self.subtotal or 0),
            "tax_amount": float(self.tax_amount or 0),
            "delivery_fee": float(self.delivery_fee or 0),
            "tip": float(self.tip or 0),
            "total": float(self.total or 0),
            "line_items": lines,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
        }
