import logging
from logging.config import dictConfig

from config.settings import settings


def configure_logging(level: str = None):
    level = (level or settings.LOG_LEVEL).upper()
    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(levelname)s: %(name)s: %(message)s"
            },
            "info": {
                "format": "%(asctime)s - %(levelname)s: %(name)s: %(message)s"
            },
            "error": {
                "format": "%(asctime)s - %(levelname)s: %(name)s: %(funcName)s: %(message)s"
            }
        },
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
            "info": {
                "formatter": "info",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "level": "INFO"
            },
            "error": {
                "formatter": "error",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "level": "ERROR"
            }
        },
        "loggers": {
            "uvicorn": {
                "handlers": ["default"],
                "level": "INFO"
            },
            "uvicorn.error": {
                "handlers": ["error"],
                "level": "ERROR"
            },
            "sqlalchemy": {
                "handlers": ["error"],
                "level": "ERROR",
                "propagate": False
            },
            "app": {  # Engine logger: stores, tracker, chain, lock, routes
                "handlers": ["info"],
                "level": level,
                "propagate": False
            },
            "services.recurring_task": {  # Generation scheduler
                "handlers": ["info"],
                "level": level,
                "propagate": False
            }
        },
        "root": {
            "handlers": ["default"],
            "level": "WARNING"
        }
    }
    dictConfig(log_config)
    logging.getLogger("app").debug(f"Logging configured at level {level}")
