"""
Modelos de base de datos
Pedidos de lavandería, facturas, cobros y auditoría
"""
from .payment_method import PaymentMethod
from .order import LaundryOrder
from .invoice import Invoice
from .payment_attempt import PaymentAttempt
from .audit_log import AuditLog

__all__ = [
    "PaymentMethod",
    "LaundryOrder",
    "Invoice",
    "PaymentAttempt",
    "AuditLog",
]
