"""
Modelo: Bitácora de auditoría
"""
from datetime import datetime
from ..db import db


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    actor = db.Column(db.String(255), nullable=False, default="system")
    action = db.Column(db.String(80), nullable=False)
    order_id = db.Column(db.Integer, nullable=True, index=True)
    old_status = db.Column(db.String(30), nullable=True)
    new_status = db.Column(db.String(30), nullable=True)
    details = db.Column(db.Text, nullable=False, default="")

    def to_dict(self):
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "actor": self.actor,
            "action": self.action,
            "order_id": self.order_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "details": self.details,
        }
