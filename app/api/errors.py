"""
API: Manejo de errores
Todo OrderError se responde como {"error", "code"} con su status HTTP
"""
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from ..services.errors import OrderError

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    @app.errorhandler(OrderError)
    def handle_order_error(e):
        if e.status_code >= 500:
            logger.warning(f"⚠️ {e.code}: {e.message}")
        response = jsonify(e.to_dict())
        response.status_code = e.status_code
        return response

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        response = jsonify({"error": e.description, "code": e.name.lower().replace(" ", "_")})
        response.status_code = e.code
        return response
