"""
Servicio: Máquina de estados de pedido y cobro

Dos vocabularios (estado del pedido y estado del cobro) que solo se
combinan a través de OrderState, que rechaza combinaciones inválidas.
Las reglas las aplica el orquestador, no la capa de almacenamiento.
"""
from dataclasses import dataclass

from .errors import BusinessRuleError, ValidationError


class OrderStatus:
    PENDING_PICKUP = "PendingPickup"
    PICKED_UP = "PickedUp"
    WEIGHED_OR_COUNTED = "WeighedOrCounted"
    QUOTED = "Quoted"
    APPROVED = "Approved"
    IN_PROGRESS = "InProgress"
    READY = "Ready"
    CHARGE_ATTEMPTED = "ChargeAttempted"
    PAYMENT_FAILED = "PaymentFailed"
    PAID = "Paid"
    DELIVERED = "Delivered"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    ALL = (
        PENDING_PICKUP, PICKED_UP, WEIGHED_OR_COUNTED, QUOTED, APPROVED,
        IN_PROGRESS, READY, CHARGE_ATTEMPTED, PAYMENT_FAILED, PAID,
        DELIVERED, COMPLETED, CANCELLED,
    )
    TERMINAL = (COMPLETED, CANCELLED)


class PaymentStatus:
    NO_PAYMENT_METHOD = "NoPaymentMethod"
    PAYMENT_METHOD_ON_FILE = "PaymentMethodOnFile"
    APPROVAL_REQUIRED = "ApprovalRequired"
    APPROVED = "Approved"
    CHARGE_ATTEMPTED = "ChargeAttempted"
    PAID = "Paid"
    PAYMENT_FAILED = "PaymentFailed"
    PAYMENT_ACTION_REQUIRED = "PaymentActionRequired"

    ALL = (
        NO_PAYMENT_METHOD, PAYMENT_METHOD_ON_FILE, APPROVAL_REQUIRED, APPROVED,
        CHARGE_ATTEMPTED, PAID, PAYMENT_FAILED, PAYMENT_ACTION_REQUIRED,
    )
    # Solo se llega a estos si el pedido pasó por aprobación
    CHARGED = (CHARGE_ATTEMPTED, PAID)


S = OrderStatus
P = PaymentStatus

TRANSITIONS = {
    S.PENDING_PICKUP: {S.PICKED_UP, S.CANCELLED},
    S.PICKED_UP: {S.WEIGHED_OR_COUNTED, S.QUOTED, S.APPROVED, S.CANCELLED},
    S.WEIGHED_OR_COUNTED: {S.QUOTED, S.APPROVED, S.CANCELLED},
    S.QUOTED: {S.APPROVED, S.CANCELLED},
    S.APPROVED: {S.IN_PROGRESS, S.CANCELLED},
    S.IN_PROGRESS: {S.READY, S.CANCELLED},
    S.READY: {S.CHARGE_ATTEMPTED, S.PAID, S.PAYMENT_FAILED, S.DELIVERED, S.CANCELLED},
    S.CHARGE_ATTEMPTED: {S.PAID, S.PAYMENT_FAILED},
    S.PAYMENT_FAILED: {S.CHARGE_ATTEMPTED, S.PAID},
    S.PAID: {S.DELIVERED, S.COMPLETED},
    S.DELIVERED: {S.CHARGE_ATTEMPTED, S.PAID, S.PAYMENT_FAILED, S.COMPLETED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

_BEFORE_QUOTE = {P.NO_PAYMENT_METHOD, P.PAYMENT_METHOD_ON_FILE}
_APPROVED = {P.APPROVED, P.PAYMENT_METHOD_ON_FILE}

VALID_PAYMENT_STATUSES = {
    S.PENDING_PICKUP: _BEFORE_QUOTE,
    S.PICKED_UP: _BEFORE_QUOTE,
    S.WEIGHED_OR_COUNTED: _BEFORE_QUOTE,
    S.QUOTED: {P.APPROVAL_REQUIRED},
    S.APPROVED: _APPROVED,
    S.IN_PROGRESS: _APPROVED,
    S.READY: _APPROVED,
    S.CHARGE_ATTEMPTED: {P.CHARGE_ATTEMPTED, P.PAYMENT_ACTION_REQUIRED},
    S.PAYMENT_FAILED: {P.PAYMENT_FAILED, P.PAYMENT_METHOD_ON_FILE, P.PAYMENT_ACTION_REQUIRED},
    S.PAID: {P.PAID},
    S.DELIVERED: {
        P.PAID, P.APPROVED, P.PAYMENT_METHOD_ON_FILE, P.CHARGE_ATTEMPTED,
        P.PAYMENT_FAILED, P.PAYMENT_ACTION_REQUIRED,
    },
    S.COMPLETED: {P.PAID},
    S.CANCELLED: {P.NO_PAYMENT_METHOD, P.PAYMENT_METHOD_ON_FILE, P.APPROVAL_REQUIRED, P.APPROVED},
}

# Estado de cobro que se asume al entrar a un estado si el actual no es válido
DEFAULT_PAYMENT_STATUS = {
    S.QUOTED: P.APPROVAL_REQUIRED,
    S.APPROVED: P.APPROVED,
    S.CHARGE_ATTEMPTED: P.CHARGE_ATTEMPTED,
    S.PAYMENT_FAILED: P.PAYMENT_FAILED,
    S.PAID: P.PAID,
}

# Cancelables por el personal: cualquier estado previo al cobro
PRE_PAYMENT = (
    S.PENDING_PICKUP, S.PICKED_UP, S.WEIGHED_OR_COUNTED, S.QUOTED,
    S.APPROVED, S.IN_PROGRESS, S.READY,
)

# Entrar a Ready con alguno de estos dispara el cobro
PAYMENT_TRIGGER_STATUSES = (P.PAYMENT_METHOD_ON_FILE, P.APPROVED)


def validate_status(status):
    if status not in OrderStatus.ALL:
        raise ValidationError(f"Estado desconocido: {status}", status=status)
    return status


def validate_payment_status(payment_status):
    if payment_status not in PaymentStatus.ALL:
        raise ValidationError(f"Estado de cobro desconocido: {payment_status}",
                              payment_status=payment_status)
    return payment_status


@dataclass(frozen=True)
class OrderState:
    """Combinación (estado del pedido, estado del cobro) siempre válida"""
    status: str
    payment_status: str

    def __post_init__(self):
        validate_status(self.status)
        validate_payment_status(self.payment_status)
        if self.payment_status not in VALID_PAYMENT_STATUSES[self.status]:
            raise BusinessRuleError(
                f"Un pedido en {self.status} no puede tener cobro {self.payment_status}",
                status=self.status,
                payment_status=self.payment_status,
            )

    @classmethod
    def of(cls, order):
        """Estado de un dict o modelo de pedido, sin validar la combinación"""
        if isinstance(order, dict):
            status, payment_status = order.get("status"), order.get("payment_status")
        else:
            status, payment_status = order.status, order.payment_status
        state = object.__new__(cls)
        object.__setattr__(state, "status", status)
        object.__setattr__(state, "payment_status", payment_status)
        return state

    def to_dict(self):
        return {"status": self.status, "payment_status": self.payment_status}


def can_transition(old_status, new_status):
    return new_status in TRANSITIONS.get(old_status, set())


def ensure_transition(old_status, new_status):
    validate_status(new_status)
    if old_status == new_status:
        return
    if not can_transition(old_status, new_status):
        raise BusinessRuleError(
            f"No se puede pasar de {old_status} a {new_status}",
            old_status=old_status,
            new_status=new_status,
        )


def next_state(current, new_status, payment_status=None):
    """
    Calcula el estado destino de una transición.

    Conserva el estado de cobro actual si sigue siendo válido; si no, usa
    el predeterminado del estado destino.
    """
    ensure_transition(current.status, new_status)

    if payment_status is None:
        allowed = VALID_PAYMENT_STATUSES[new_status]
        if current.payment_status in allowed:
            payment_status = current.payment_status
        else:
            payment_status = DEFAULT_PAYMENT_STATUS.get(new_status, current.payment_status)

    return OrderState(new_status, payment_status)


def triggers_payment(state):
    return state.status == S.READY and state.payment_status in PAYMENT_TRIGGER_STATUSES
