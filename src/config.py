"""Application configuration and logging setup."""

import logging
import os
import secrets
import sys
import tempfile

import structlog


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Flask settings, read from HOURS_RECON_* environment variables."""

    DATABASE_PATH = os.environ.get("HOURS_RECON_DB", ":memory:")
    EXPORT_FOLDER = os.environ.get(
        "HOURS_RECON_EXPORT_DIR",
        os.path.join(tempfile.gettempdir(), "hours_recon_exports"),
    )
    MAX_CONTENT_LENGTH = int(os.environ.get("HOURS_RECON_MAX_UPLOAD_MB", "16")) * 1024 * 1024
    DUAL_JOIN = os.environ.get("HOURS_RECON_DUAL_JOIN", "hha")
    LOG_LEVEL = os.environ.get("HOURS_RECON_LOG_LEVEL", "INFO")
    LOG_JSON = _env_bool("HOURS_RECON_LOG_JSON")
    SECRET_KEY = os.environ.get("HOURS_RECON_SECRET_KEY") or secrets.token_hex(16)


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Route structlog through stdlib logging with timestamps and levels."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, str(level).upper(), logging.INFO),
    )
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
