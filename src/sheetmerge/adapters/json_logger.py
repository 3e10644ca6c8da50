"""Structured logging utilities."""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from typing import Any, TextIO

ROOT_LOGGER = "sheetmerge"
_RUN_ID = str(uuid.uuid4())
_FORMAT = {"value": "json"}


def configure_logging(
    *,
    level: int = logging.INFO,
    fmt: str = "json",
    stream: TextIO | None = None,
    file: str | None = None,
) -> None:
    """Install the single handler used by every :class:`JsonLogger`."""

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    handler: logging.Handler
    if file is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    else:
        handler = logging.FileHandler(file)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.handlers = [handler]
    logger.propagate = False
    _FORMAT["value"] = fmt


class JsonLogger:
    """Emit structured log events with a lightweight API."""

    def __init__(self, name: str = ROOT_LOGGER, **fields: Any) -> None:
        self._logger = logging.getLogger(name)
        self._name = name
        self._fields = fields

    def bind(self, **fields: Any) -> "JsonLogger":
        return JsonLogger(self._name, **{**self._fields, **fields})

    def _serialize(self, payload: dict[str, Any]) -> str:
        if _FORMAT["value"] == "text":
            keys = sorted(k for k in payload if k not in {"event", "ts", "run_id", "level"})
            parts = " ".join(f"{key}={payload[key]}" for key in keys)
            return f"[{payload['level']}] {payload['event']} {parts}".rstrip()
        return json.dumps(payload, default=str, ensure_ascii=False)

    def _emit(self, event: str, *, level: str, **kwargs: Any) -> None:
        level_value = getattr(logging, level.upper(), logging.INFO)
        if not self._logger.isEnabledFor(level_value):
            return
        payload: dict[str, Any] = {
            "event": event,
            "ts": round(time.time(), 3),
            "run_id": _RUN_ID,
            "level": level,
        }
        payload.update(self._fields)
        payload.update(kwargs)
        self._logger.log(level_value, self._serialize(payload))

    def debug(self, event: str, **kwargs: Any) -> None:
        self._emit(event, level="DEBUG", **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._emit(event, level="INFO", **kwargs)

    def warn(self, event: str, **kwargs: Any) -> None:
        self._emit(event, level="WARNING", **kwargs)

    warning = warn

    def error(self, event: str, **kwargs: Any) -> None:
        self._emit(event, level="ERROR", **kwargs)
