"""
app/core/logging.py

Logging Setup
- Colored console output via `colorlog`
- logs/app.log: rotating file with everything at LOG_LEVEL
- logs/error.log: ERROR and above, where reconciliation alerts land
- logs/payments.log: rotating audit trail of the payment and job loggers
  (charges, payouts, refunds, webhook outcomes)

Call `init_logging()` once, before the app object is created.
"""

import os
from logging.config import dictConfig
from typing import Any

from app.core.config import settings

LINE_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s] in %(module)s: %(message)s"
AUDIT_LOGGERS = ("app.payment", "app.job")


def _rotating(path: str, formatter: str, max_mb: int, backups: int) -> dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "filename": path,
        "maxBytes": max_mb * 1024 * 1024,
        "backupCount": backups,
        "formatter": formatter,
        "encoding": "utf-8",
    }


def build_logging_config(log_dir: str, level: str) -> dict[str, Any]:
    """dictConfig payload writing under `log_dir` at `level`."""
    level = level.upper()
    audit = _rotating(os.path.join(log_dir, "payments.log"), "default", 5, 10)
    audit["level"] = "INFO"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": LINE_FORMAT},
            "color": {
                "()": "colorlog.ColoredFormatter",
                "format": f"%(log_color)s{LINE_FORMAT}",
                "log_colors": {
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "bold_red",
                },
            },
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "color"},
            "file": _rotating(os.path.join(log_dir, "app.log"), "default", 1, 5),
            "error_file": {
                "class": "logging.FileHandler",
                "filename": os.path.join(log_dir, "error.log"),
                "level": "ERROR",
                "formatter": "default",
                "encoding": "utf-8",
            },
            "payments_audit": audit,
        },
        "loggers": {
            **{name: {"handlers": ["payments_audit"]} for name in AUDIT_LOGGERS},
            "uvicorn": {"level": "WARNING"},
            "sqlalchemy": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
        },
        "root": {"level": level, "handlers": ["console", "file", "error_file"]},
    }


def init_logging() -> None:
    os.makedirs(settings.LOG_DIR, exist_ok=True)
    dictConfig(build_logging_config(settings.LOG_DIR, settings.LOG_LEVEL))
