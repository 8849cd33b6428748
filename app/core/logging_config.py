import logging.config
from pathlib import Path

from .config import Settings


def configure_logging(settings: Settings) -> None:
    """Console logging always; a rotating access.log when log_dir is set."""
    log_level = settings.log_level.upper()
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": log_level,
        },
    }
    if settings.log_dir:
        log_dir = Path(settings.log_dir).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "standard",
            "level": log_level,
            "filename": str(log_dir / "access.log"),
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
        }
    handler_names = list(handlers)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            }
        },
        "handlers": handlers,
        "root": {
            "handlers": handler_names,
            "level": log_level,
        },
        "loggers": {
            "uvicorn.access": {
                "handlers": handler_names,
                "level": log_level,
                "propagate": False,
            },
            "uvicorn.error": {
                "handlers": handler_names,
                "level": log_level,
                "propagate": False,
            },
        },
    })
