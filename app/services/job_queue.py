"""
Servicio: Cola de notificaciones
Cola FIFO en memoria de trabajos de correo, entrega al-menos-una-vez.

- next() mueve el trabajo a "en vuelo"; ack() lo elimina.
- requeue() devuelve una copia sin modificar al final de la cola.
- Los trabajos en vuelo que superan el visibility timeout vuelven a la
  cola, así un worker caído no pierde trabajos.
"""
import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Deque, Dict, Optional, Tuple

import requests

from .errors import ServiceUnavailable, ValidationError

logger = logging.getLogger(__name__)

ORDER_CREATED = "order-created"
RECEIPT = "receipt"
JOB_TYPES = (ORDER_CREATED, RECEIPT)


@dataclass(frozen=True)
class NotificationJob:
    job_id: str
    job_type: str
    to_email: str
    order_id: int
    service_type: str = ""
    scheduled_at: str = ""
    address: str = ""
    amount: Optional[float] = None
    transaction_id: str = ""
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    @classmethod
    def build(cls, job_type, data):
        """Nuevo trabajo desde el cuerpo de una solicitud de encolado"""
        if not isinstance(data, dict):
            raise ValidationError("El trabajo debe ser un objeto JSON")

        order_id = _positive_int(data.get("order_id"))
        to_email = (data.get("to_email") or "").strip()
        service_type = (data.get("service_type") or "").strip()

        if job_type == ORDER_CREATED and (not order_id or not to_email or not service_type):
            raise ValidationError("order_id, to_email y service_type son requeridos")
        if job_type == RECEIPT and (not order_id or not to_email):
            raise ValidationError("order_id y to_email son requeridos")

        amount = data.get("amount")
        return cls(
            job_id=str(uuid.uuid4()),
            job_type=job_type,
            to_email=to_email,
            order_id=order_id,
            service_type=service_type,
            scheduled_at=(data.get("scheduled_at") or "").strip(),
            address=(data.get("address") or "").strip(),
            amount=float(amount) if amount is not None else None,
            transaction_id=(data.get("transaction_id") or "").strip(),
        )

    @classmethod
    def from_dict(cls, data):
        """Trabajo existente (reencolado), se conserva tal cual"""
        if not isinstance(data, dict):
            raise ValidationError("Trabajo inválido")
        if not data.get("job_id") or not data.get("to_email") or data.get("job_type") not in JOB_TYPES:
            raise ValidationError("Trabajo inválido: job_id, job_type y to_email son requeridos")

        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        known["order_id"] = _positive_int(known.get("order_id"))
        if known.get("amount") is not None:
            known["amount"] = float(known["amount"])
        return cls(**known)

    def to_dict(self):
        return asdict(self)


def _positive_int(value):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


class NotificationQueue:
    """Cola thread-safe (RLock + Condition) con trabajos pendientes y en vuelo"""

    def __init__(self, visibility_timeout=300, clock=time.monotonic):
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._pending: Deque[NotificationJob] = deque()
        self._in_flight: Dict[str, Tuple[NotificationJob, float]] = {}
        self._lock = threading.RLock()
        self._not_empty = threading.Condition(self._lock)

    def enqueue(self, job: NotificationJob):
        with self._lock:
            self._pending.append(job)
            self._not_empty.notify()
        logger.info(f"📨 Trabajo {job.job_type} encolado para pedido #{job.order_id} ({job.job_id})")
        return job

    def next(self, wait=0):
        """
        Saca el siguiente trabajo y lo deja en vuelo.

        Con wait > 0 espera hasta `wait` segundos a que llegue uno
        (long-poll); devuelve None si no hay.
        """
        with self._lock:
            self._reclaim_expired()
            deadline = time.monotonic() + max(0.0, float(wait or 0))
            while not self._pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._not_empty.wait(remaining)
                self._reclaim_expired()

            job = self._pending.popleft()
            self._in_flight[job.job_id] = (job, self._clock())
            return job

    def ack(self, job_id):
        with self._lock:
            entry = self._in_flight.pop(str(job_id), None)
        if entry is None:
            logger.info(f"ℹ️ Ack de trabajo {job_id} que no estaba en vuelo")
            return False
        return True

    def requeue(self, job: NotificationJob):
        """Devuelve el trabajo al final de la cola, sin modificarlo"""
        with self._lock:
            self._in_flight.pop(job.job_id, None)
            if not any(pending.job_id == job.job_id for pending in self._pending):
                self._pending.append(job)
                self._not_empty.notify()
        logger.warning(f"🔁 Trabajo {job.job_id} ({job.job_type}) reencolado")
        return job

    def _reclaim_expired(self):
        if not self.visibility_timeout:
            return
        now = self._clock()
        expired = [
            job_id for job_id, (_, leased_at) in self._in_flight.items()
            if now - leased_at >= self.visibility_timeout
        ]
        for job_id in expired:
            job, _ = self._in_flight.pop(job_id)
            self._pending.append(job)
            logger.warning(f"⏰ Trabajo {job_id} recuperado tras vencer su visibility timeout")

    def depth(self):
        with self._lock:
            return len(self._pending)

    def in_flight_count(self):
        with self._lock:
            return len(self._in_flight)

    def stats(self):
        with self._lock:
            return {"depth": len(self._pending), "in_flight": len(self._in_flight)}


# ---------------------------------------------------------------------------
# Productores
# ---------------------------------------------------------------------------

def _format_schedule(value):
    """'2026-06-01T09:30:00' -> 'Monday, June 01, 2026 09:30 AM'"""
    if not value:
        return ""
    try:
        return datetime.fromisoformat(str(value)).strftime("%A, %B %d, %Y %I:%M %p")
    except ValueError:
        return str(value)


def order_created_payload(order):
    return {
        "order_id": order["id"],
        "to_email": order["user_email"],
        "service_type": order.get("service_type") or "",
        "scheduled_at": _format_schedule(order.get("scheduled_at")),
        "address": order.get("address") or "",
    }


def receipt_payload(order, invoice=None, attempt=None):
    amount = None
    if invoice is not None:
        amount = invoice.get("total")
    elif attempt is not None:
        amount = attempt.get("amount")
    return {
        "order_id": order["id"],
        "to_email": order["user_email"],
        "service_type": order.get("service_type") or "",
        "amount": amount,
        "transaction_id": (attempt or {}).get("transaction_id") or "",
        "address": order.get("address") or "",
    }


class LocalJobProducer:
    """Encola directo en la cola del proceso (lado servicio de pedidos)"""

    def __init__(self, queue: NotificationQueue):
        self.queue = queue

    def enqueue_order_created(self, order):
        return self.queue.enqueue(NotificationJob.build(ORDER_CREATED, order_created_payload(order)))

    def enqueue_receipt(self, order, invoice=None, attempt=None):
        return self.queue.enqueue(NotificationJob.build(RECEIPT, receipt_payload(order, invoice, attempt)))


class JobClient:
    """
    Cliente HTTP de la cola de trabajos.

    Los métodos enqueue_* nunca lanzan: un fallo al encolar solo se
    registra. next_job/ack/requeue (usados por el worker) lanzan
    ServiceUnavailable si la cola no responde.
    """

    def __init__(self, base_url, timeout=8, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, path):
        return f"{self.base_url}/api/jobs{path}"

    def _post_job(self, path, payload):
        try:
            response = self.session.post(self._url(path), json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"⚠️ Error encolando trabajo en {path}: {e}")
            return None
        if not response.ok:
            logger.warning(f"⚠️ No se pudo encolar trabajo en {path}. Status={response.status_code}")
            return None
        try:
            body = response.json()
        except ValueError:
            logger.warning(f"⚠️ Respuesta no JSON al encolar trabajo en {path}")
            return None
        return body.get("job_id") if isinstance(body, dict) else None

    def enqueue_order_created(self, order):
        return self._post_job("/email/order-created", order_created_payload(order))

    def enqueue_receipt(self, order, invoice=None, attempt=None):
        return self._post_job("/email/receipt", receipt_payload(order, invoice, attempt))

    def _call(self, method, path, extra_timeout=0, **kwargs):
        try:
            response = self.session.request(
                method, self._url(path), timeout=self.timeout + extra_timeout, **kwargs
            )
        except requests.RequestException as e:
            raise ServiceUnavailable(f"Cola de trabajos no disponible: {e}")
        if response.status_code >= 500:
            raise ServiceUnavailable(f"Cola de trabajos respondió {response.status_code}")
        return response

    def next_job(self, wait=0):
        params = {"wait": wait} if wait else None
        # El long-poll necesita más que el timeout normal
        response = self._call("GET", "/next", extra_timeout=float(wait or 0), params=params)
        if response.status_code == 204:
            return None
        response.raise_for_status()
        return NotificationJob.from_dict(response.json())

    def ack(self, job_id):
        response = self._call("POST", f"/{job_id}/ack")
        response.raise_for_status()
        return True

    def requeue(self, job: NotificationJob):
        response = self._call("POST", "/requeue", json=job.to_dict())
        response.raise_for_status()
        return True
