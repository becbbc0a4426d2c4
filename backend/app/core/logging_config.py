from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)

# Attributes every LogRecord carries; anything else came in through `extra=`.
_STANDARD_RECORD_KEYS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "request_id"}


class RequestIdFilter(logging.Filter):
    """Attach request_id from contextvars to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        record.request_id = request_id_ctx_var.get() or "-"
        return True


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    return str(value)


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: _json_safe(value)
        for key, value in vars(record).items()
        if key not in _STANDARD_RECORD_KEYS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line; `extra` fields are flattened into the payload."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }
        for key, value in _record_extras(record).items():
            payload.setdefault(key, value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class KeyValueFormatter(logging.Formatter):
    """Human-readable format that still shows the structured `extra` fields."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _record_extras(record)
        if not extras:
            return line
        rendered = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        head, sep, tail = line.partition("\n")
        return f"{head} {rendered}{sep}{tail}"


def configure_logging(json_logs: bool = False) -> None:
    """Configure root logger with request-id aware formatter."""
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(JsonFormatter() if json_logs else KeyValueFormatter())
    logging.basicConfig(level=logging.INFO, handlers=[handler], force=True)
