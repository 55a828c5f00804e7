"""Application logging with Loguru + Slack notifications.

Every module logs through ``get_logger(name)``; stdlib loggers (uvicorn,
sqlalchemy, alembic, httpx) are routed into the same sinks and keep their
own logger name in ``extra[name]``.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from roverfeed.core.config import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[name]}:{function}:{line} | {message}"

LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}

# Libraries that are chatty below WARNING (httpx logs every upstream request)
QUIET_LOGGERS: Dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
}

_logging_configured = False


class InterceptHandler(logging.Handler):
    """Redirect stdlib logs to Loguru, bound to the originating logger's name."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_name == "emit":
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).bind(name=record.name).log(level, record.getMessage())


def _slack_sink(message: Any) -> None:
    if not settings.SLACK_WEBHOOK_URL:
        return

    record = message.record
    name = record["extra"].get("name") or "roverfeed"
    text = f"[{settings.ENV}] [{record['level'].name}] {name}:{record['function']}:{record['line']}\n{record['message']}"
    try:
        httpx.post(settings.SLACK_WEBHOOK_URL, json={"text": text}, timeout=5.0)
    except httpx.HTTPError:
        # Never log from inside a sink: a failing webhook would recurse
        pass


def resolve_level(raw: Optional[str]) -> str:
    """Normalise a configured level name; anything loguru does not know becomes INFO."""
    level = (raw or "INFO").strip().upper()
    level = LEVEL_ALIASES.get(level, level)
    return level if level in LEVELS else "INFO"


def configure_logging() -> None:
    global _logging_configured

    if _logging_configured:
        return
    _logging_configured = True

    level = resolve_level(settings.effective_log_level)
    sink_options = {
        "level": level,
        "backtrace": False,
        "diagnose": False,
        "serialize": settings.LOG_JSON,
    }
    if not settings.LOG_JSON:
        sink_options["format"] = LOG_FORMAT

    logger.remove()
    logger.configure(extra={"name": "roverfeed"})
    logger.add(sys.stdout, **sink_options)

    if settings.LOG_DIR:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "roverfeed.log",
            rotation="10 MB",
            retention="14 days",
            enqueue=True,
            **sink_options,
        )

    if settings.SLACK_WEBHOOK_URL:
        logger.add(_slack_sink, level="ERROR", enqueue=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # uvicorn installs its own handlers; replace them to avoid duplicates
    for logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        logging.getLogger(logger_name).handlers = [InterceptHandler()]
        logging.getLogger(logger_name).propagate = False

    for logger_name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(quiet_level)


def get_logger(name: str) -> logger.__class__:
    return logger.bind(name=name)


configure_logging()
