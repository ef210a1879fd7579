"""
LUMA Laundry - Worker de notificaciones
Uso: python worker.py
"""
from app.config import configure_logging, get_config
from app.worker import NotificationWorker


def config_dict(config_class):
    return {name: getattr(config_class, name) for name in dir(config_class) if name.isupper()}


def main():
    config = config_dict(get_config())
    configure_logging(config.get("LOG_LEVEL", "INFO"))
    worker = NotificationWorker.from_config(config)
    try:
        worker.run_forever()
    except KeyboardInterrupt:
        worker.stop()


if __name__ == "__main__":
    main()
