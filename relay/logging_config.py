"""Structured logging for the relay.

Every record is one JSON line on stdout. Conversation identifiers passed as
context are promoted to top-level keys so log queries can filter on them
directly; any remaining context stays nested under "context".
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

LOGGER_NAMESPACE = "relay"
PROMOTED_KEYS = ("conversation_sid", "chat_service_sid", "bot_id")
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = dict(getattr(record, "context", None) or {})
        for key in PROMOTED_KEYS:
            if key in context:
                entry[key] = context.pop(key)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Send relay logs to stdout as JSON, replacing existing root handlers."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


class ConversationLogger(logging.LoggerAdapter):
    """Logger bound to one conversation; `context=` kwargs extend the binding per call."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = {**(self.extra or {}), **(kwargs.pop("context", None) or {})}
        if context:
            kwargs["extra"] = {**kwargs.get("extra", {}), "context": context}
        return msg, kwargs
