from __future__ import annotations

import json
import logging
import sys
from logging import LogRecord
from typing import Any, Dict

from loguru import logger


_RESERVED_LOG_RECORD_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
}


class InterceptHandler(logging.Handler):
    """Bridge standard logging records (httpx, asyncio) into Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover - safety against malformed format strings
            message = record.msg if isinstance(record.msg, str) else str(record.msg)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS
        }

        safe_message = message.replace("{", "{{").replace("}", "}}")

        bound_logger = logger.bind(**extra) if extra else logger
        bound_logger.opt(depth=6, exception=record.exc_info).log(level, safe_message)


def _serialize_log(message: "logger.Message", metadata: Dict[str, Any]) -> None:
    record = message.record

    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        "service": metadata.get("service_name", "unknown"),
        "environment": metadata.get("environment", "unknown"),
        "version": metadata.get("version", "unknown"),
    }
    if record["exception"] is not None:
        payload["exception"] = repr(record["exception"].value)

    if record["extra"]:
        payload.update(record["extra"])

    serialized = json.dumps(payload, default=str)
    print(serialized, file=sys.stderr)


def configure_logging(
    *,
    service_name: str = "cafe-cards",
    environment: str | None = None,
    version: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Configure Loguru + stdlib logging.

    JSON lines are emitted when ``json_output`` is true (the default taken
    from settings); otherwise Loguru's coloured console format is used.
    """

    from cafe_cards.core.settings import settings

    logger.remove()
    metadata = {
        "service_name": service_name,
        "environment": environment or settings.environment,
        "version": version or settings.version,
    }
    use_json = settings.log_json if json_output is None else json_output
    if use_json:
        logger.add(lambda message: _serialize_log(message, metadata), backtrace=False, diagnose=False)
    else:
        logger.add(sys.stderr, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
