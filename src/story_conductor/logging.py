"""JSON logging for conductor runs.

Every record is one JSON object on stdout. Structured context passed through
``extra={...}`` (run_id, step, wave, attempt, status, elapsed) is nested under
an ``extra`` key so log shippers can index it without parsing messages.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

PACKAGE_LOGGER = "story_conductor"

# Attributes every LogRecord carries; anything else came from `extra`.
_STANDARD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

_NOISY_LOGGERS = ("openai", "httpx", "httpcore")


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=_jsonable)


def configure_logging(level: str, *, debug: bool = False) -> None:
    """Send all logging to stdout as JSON, replacing existing root handlers.

    With ``debug`` the package logger runs at DEBUG whatever the root level is.
    HTTP client loggers never go below INFO.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    root.setLevel(level.upper())

    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if debug else logging.NOTSET)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))
