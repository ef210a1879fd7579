"""
Servicio: Auditoría
Cada transición emite un AuditEvent; los suscriptores (base de datos,
logger) lo consumen por separado de la lógica de negocio.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from ..db import db
from ..models import AuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    action: str
    order_id: Optional[int] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    actor: str = "system"
    details: str = ""
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self):
        return {
            "action": self.action,
            "order_id": self.order_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "actor": self.actor,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class AuditTrail:
    """Distribuye eventos a los suscriptores; un suscriptor que falla no corta la transición"""

    def __init__(self, subscribers=None):
        self.subscribers: List[Callable[[AuditEvent], None]] = list(subscribers or [])

    def subscribe(self, subscriber):
        self.subscribers.append(subscriber)
        return subscriber

    def emit(self, event: AuditEvent):
        for subscriber in self.subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception(f"❌ Suscriptor de auditoría falló para {event.action}")
        return event

    def record(self, action, order_id=None, old_status=None, new_status=None,
               actor="system", details=""):
        return self.emit(AuditEvent(
            action=action,
            order_id=order_id,
            old_status=old_status,
            new_status=new_status,
            actor=actor or "system",
            details=details or "",
        ))


def log_event(event: AuditEvent):
    change = f"{event.old_status} → {event.new_status}" if event.new_status else ""
    logger.info(f"📝 [{event.actor}] {event.action} #{event.order_id} {change} {event.details}".strip())


def save_event(event: AuditEvent):
    """Persiste el evento en audit_logs"""
    try:
        db.session.add(AuditLog(
            timestamp=event.timestamp,
            actor=event.actor,
            action=event.action,
            order_id=event.order_id,
            old_status=event.old_status,
            new_status=event.new_status,
            details=event.details,
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def default_trail():
    return AuditTrail([log_event, save_event])
