"""
APIs REST
Servicio de pedidos (orders, admin, jobs, webhooks) y portal
"""
from .orders import bp as orders_bp
from .admin import bp as admin_bp
from .jobs import bp as jobs_bp
from .webhooks import bp as webhooks_bp
from .portal import bp as portal_bp
from .errors import register_error_handlers

__all__ = [
    "orders_bp",
    "admin_bp",
    "jobs_bp",
    "webhooks_bp",
    "portal_bp",
    "register_error_handlers",
]
