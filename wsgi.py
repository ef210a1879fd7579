"""
LUMA Laundry - Aplicación Flask principal
Servicio de pedidos, cola de notificaciones y portal
"""
import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS

from app.config import configure_logging, get_config
from app.db import init_db
from app.extensions import EXTENSION_KEY, build_services


def create_app(config_object=None, **service_overrides):
    """
    Factory para crear la aplicación Flask

    service_overrides permite inyectar card_gateway, order_client o
    portal_job_producer (tests).
    """
    app = Flask(__name__)

    # Cargar configuración
    app.config.from_object(config_object or get_config())
    configure_logging(app.config.get("LOG_LEVEL", "INFO"))
    logger = logging.getLogger(__name__)

    logger.info(f"📍 Database URI: {app.config['SQLALCHEMY_DATABASE_URI']}")

    # Habilitar CORS
    allowed_origins = app.config.get("ALLOWED_ORIGINS", "*").split(",")
    if "*" in allowed_origins:
        CORS(app, resources={r"/api/*": {
            "origins": "*",
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "Idempotency-Key",
                              "X-User-Email", "X-Actor"]
        }})
    else:
        CORS(app, resources={r"/api/*": {
            "origins": allowed_origins,
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "Idempotency-Key",
                              "X-User-Email", "X-Actor"],
            "supports_credentials": True
        }})

    # Crear carpeta instance si la base es un archivo sqlite local
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") \
            and ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(os.path.join(os.path.dirname(os.path.abspath(__file__)), "instance"), exist_ok=True)

    # Inicializar base de datos
    init_db(app)

    services = build_services(app.config, **service_overrides)
    app.extensions[EXTENSION_KEY] = services

    # Registrar blueprints de APIs
    from app.api import (
        orders_bp, admin_bp, jobs_bp, webhooks_bp, portal_bp, register_error_handlers
    )

    app.register_blueprint(orders_bp, url_prefix="/api/orders")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(jobs_bp, url_prefix="/api/jobs")
    app.register_blueprint(webhooks_bp, url_prefix="/api/webhooks")
    app.register_blueprint(portal_bp, url_prefix="/api/portal")
    register_error_handlers(app)

    # Ruta de health check
    @app.route("/health")
    def health():
        stats = services.queue.stats()
        return jsonify({
            "status": "ok",
            "message": "LUMA Laundry is running! 🧺",
            "queue_depth": stats["depth"],
            "in_flight": stats["in_flight"],
        })

    return app


# Crear instancia de la app para gunicorn
app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5000)
