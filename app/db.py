"""
Configuración de base de datos
"""
import logging
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

logger = logging.getLogger(__name__)


def init_db(app):
    """Inicializa la base de datos con la app Flask"""
    db.init_app(app)

    with app.app_context():
        # Importar modelos para que create_all los conozca
        from app import models  # noqa: F401
        db.create_all()
        logger.info("✅ Base de datos inicializada")
