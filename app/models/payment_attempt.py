"""
Modelo: Intento de cobro
Registro solo-anexar; nunca se modifica después de creado
"""
from datetime import datetime
from ..db import db


class PaymentAttempt(db.Model):
    __tablename__ = "payment_attempts"
    __table_args__ = (
        db.UniqueConstraint("order_id", "attempt_number", name="uq_payment_attempt_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)

    attempt_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(10), nullable=False, default="pending")
    # pending | success | failed

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    failure_reason = db.Column(db.String(255), nullable=False, default="")
    transaction_id = db.Column(db.String(120), nullable=False, default="")
    next_retry_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    order = db.relationship("LaundryOrder", back_populates="payment_attempts")

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "invoice_id": self.invoice_id,
            "attempt_number": self.attempt_number,
            "status": self.status,
            "amount": float(self.amount or 0),
            "failure_reason": self.failure_reason,
            "transaction_id": self.transaction_id,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
