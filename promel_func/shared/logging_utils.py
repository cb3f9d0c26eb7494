# promel_func/shared/logging_utils.py

"""Structured JSON logging for the ProMEL function app."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict

import numpy as np
import pandas as pd

LOG_LEVEL_ENV = "PROMEL_LOG_LEVEL"
ROOT_LOGGER_NAME = "promel"

# Attributes every LogRecord has; anything else arrived through ``extra=``.
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def _json_safe(obj: Any) -> Any:
    """
    Convert common non-JSON-serializable types to JSON-safe representations.
    Used by JsonFormatter so logging never crashes on a payload.
    """
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        f = float(obj)
        return f if np.isfinite(f) else str(obj)
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        # short preview instead of the whole body
        return {"__bytes__": True, "len": len(obj)}
    if isinstance(obj, (set, frozenset)):
        return [_json_safe(x) for x in obj]

    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, pd.Timestamp):
        return obj.isoformat()
    if isinstance(obj, pd.Series):
        return {"__pandas_series__": True, "shape": [int(obj.shape[0])]}
    if isinstance(obj, pd.DataFrame):
        return {
            "__pandas_dataframe__": True,
            "shape": [int(obj.shape[0]), int(obj.shape[1])],
            "columns_sample": [str(c) for c in list(obj.columns[:10])],
        }

    if isinstance(obj, dict):
        return {str(k): _json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_json_safe(x) for x in obj]
    if isinstance(obj, (str, int, float, bool)) or obj is None:
        return obj
    return str(obj)


def _json_dumps(payload: Dict[str, Any]) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False, default=_json_safe)
    except (TypeError, ValueError) as exc:  # pragma: no cover
        return json.dumps(
            {
                "timestamp": payload.get("timestamp"),
                "level": payload.get("level", "INFO"),
                "message": f"[logging-fallback] {payload.get('message', '')}",
                "logger": payload.get("logger", ROOT_LOGGER_NAME),
                "fallback_error": str(exc),
            },
            ensure_ascii=False,
        )


class JsonFormatter(logging.Formatter):
    """Formats log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat(timespec="milliseconds") + "Z",
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = _json_safe(value)

        return _json_dumps(payload)


def _build_handler() -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())
    return handler


def get_json_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Return a logger configured for JSON output (configured once per name)."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(_build_handler())
        level_name = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
        logger.setLevel(getattr(logging, level_name, logging.INFO))
        logger.propagate = False
    return logger


def log_exception(logger: logging.Logger, message: str, **context: Any) -> None:
    """Log the active exception with structured context."""
    extra = dict(context.pop("extra", {}) or {})
    extra.setdefault("event", "exception")
    logger.exception(message, extra=extra, **context)
