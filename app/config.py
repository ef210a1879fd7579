"""
Configuración de la aplicación
"""
import logging
import os
from pathlib import Path
from dotenv import load_dotenv

# Directorio base del proyecto
BASE_DIR = Path(__file__).resolve().parent.parent

# Cargar .env desde el directorio del proyecto
load_dotenv(BASE_DIR / '.env')


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Configuración base"""

    # Flask
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    FLASK_ENV = os.getenv("FLASK_ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*")

    # Database con path absoluto
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL") or f"sqlite:///{BASE_DIR}/instance/laundry.db"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # Servicio remoto de pedidos (sistema de registro)
    ORDER_SERVICE_URL = os.getenv("ORDER_SERVICE_URL", "http://localhost:5000")
    ORDER_SERVICE_TIMEOUT = float(os.getenv("ORDER_SERVICE_TIMEOUT", "8"))
    REMOTE_ONLY_MODE = _env_bool("REMOTE_ONLY_MODE")
    PREFER_LOCAL_WHEN_REMOTE_EMPTY = _env_bool("PREFER_LOCAL_WHEN_REMOTE_EMPTY")

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    CARD_GATEWAY_TIMEOUT = float(os.getenv("CARD_GATEWAY_TIMEOUT", "8"))

    # Cobros y reintentos
    MAX_PAYMENT_ATTEMPTS = int(os.getenv("MAX_PAYMENT_ATTEMPTS", "3"))
    FIRST_RETRY_DELAY_HOURS = int(os.getenv("FIRST_RETRY_DELAY_HOURS", "6"))
    RETRY_DELAY_HOURS = int(os.getenv("RETRY_DELAY_HOURS", "24"))

    # Cola de notificaciones
    JOB_POLL_INTERVAL = float(os.getenv("JOB_POLL_INTERVAL", "5"))
    JOB_VISIBILITY_TIMEOUT = float(os.getenv("JOB_VISIBILITY_TIMEOUT", "300"))
    JOB_LONG_POLL_MAX = float(os.getenv("JOB_LONG_POLL_MAX", "20"))

    # Correo (solo lo usa el worker)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", True)
    MAIL_FROM_ADDRESS = os.getenv("MAIL_FROM_ADDRESS")
    MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", "LUMA Laundry")


class DevelopmentConfig(Config):
    """Configuración de desarrollo"""
    DEBUG = True


class ProductionConfig(Config):
    """Configuración de producción"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Configuración para pytest"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    REMOTE_ONLY_MODE = False
    PREFER_LOCAL_WHEN_REMOTE_EMPTY = False
    STRIPE_SECRET_KEY = None
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    ORDER_SERVICE_URL = "http://order-service.test"
    ORDER_SERVICE_TIMEOUT = 1
    JOB_LONG_POLL_MAX = 1


# Mapeo de configuraciones
config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config():
    """Obtiene la configuración según el entorno"""
    env = os.getenv("FLASK_ENV", "development")
    return config_by_name.get(env, DevelopmentConfig)


def configure_logging(level="INFO"):
    """Logging de stdlib; se llama una vez al iniciar la app o el worker"""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
