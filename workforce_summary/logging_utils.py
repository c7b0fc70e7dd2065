from __future__ import annotations

import enum
import json
import logging
from datetime import date, datetime, timezone
from typing import Any

from pydantic import BaseModel

from workforce_summary.settings import Settings, get_settings

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_STANDARD_RECORD_FIELDS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _json_key(key: Any) -> str:
    if isinstance(key, tuple):
        # (year, month) cache keys read as "2025-03".
        if len(key) == 2 and all(isinstance(part, int) for part in key):
            return f"{key[0]}-{key[1]:02d}"
        return ":".join(str(part) for part in key)
    if isinstance(key, (date, datetime)):
        return key.isoformat()
    return str(key)


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {_json_key(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((to_jsonable(item) for item in value), key=str)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per record: the event name plus its ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_FIELDS or key.startswith("_"):
                continue
            payload[key] = to_jsonable(value)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=True)


def configure_logging(settings: Settings | None = None) -> logging.Handler:
    """Install the engine's log handler on the root logger and return it."""
    settings = settings or get_settings()
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if settings.log_json else logging.Formatter(PLAIN_FORMAT))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level.upper())
    # httpx logs every request at INFO; the time-tracking client logs its own retries.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return handler
