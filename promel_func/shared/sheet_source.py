"""Fetch published spreadsheet CSV exports over HTTP."""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Tuple

import requests
from requests import RequestException

from .logging_utils import get_json_logger

LOGGER = get_json_logger("promel.sheet_source")

FETCH_TIMEOUT_ENV = "PROMEL_FETCH_TIMEOUT"
DEFAULT_FETCH_TIMEOUT = 20.0


class SheetFetchError(RuntimeError):
    """Raised when a sheet export cannot be downloaded."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


def _resolve_timeout() -> float:
    raw = os.environ.get(FETCH_TIMEOUT_ENV)
    try:
        value = float(raw) if raw else DEFAULT_FETCH_TIMEOUT
    except ValueError:
        value = DEFAULT_FETCH_TIMEOUT
    return value if value > 0 else DEFAULT_FETCH_TIMEOUT


def fetch_sheet_text(url: str, *, timeout: Optional[float] = None) -> str:
    """Return the raw CSV text at ``url``; any failure raises SheetFetchError."""
    timeout = timeout or _resolve_timeout()
    LOGGER.info("Fetching sheet", extra={"event": "sheet_fetch_start", "url": url, "timeout": timeout})
    try:
        response = requests.get(url, timeout=timeout)
    except RequestException as exc:
        LOGGER.error("Sheet fetch failed", extra={"event": "sheet_fetch_error", "url": url, "error": str(exc)})
        raise SheetFetchError(url, f"Failed to fetch sheet: {exc}") from exc

    if not response.ok:
        LOGGER.error(
            "Sheet fetch returned non-success status",
            extra={"event": "sheet_fetch_status", "url": url, "status_code": response.status_code},
        )
        raise SheetFetchError(
            url,
            f"Sheet source returned HTTP {response.status_code}",
            status_code=response.status_code,
        )

    # published sheets are UTF-8 even when the header omits the charset
    text = response.content.decode("utf-8-sig", errors="replace")
    LOGGER.info("Sheet fetched", extra={"event": "sheet_fetch_ok", "url": url, "chars": len(text)})
    return text


def fetch_sheet_pair(monitoring_url: str, evaluation_url: str) -> Tuple[str, str]:
    """Download both sheets concurrently; fails if either download fails."""
    with ThreadPoolExecutor(max_workers=2) as executor:
        future_monitoring = executor.submit(fetch_sheet_text, monitoring_url)
        future_evaluation = executor.submit(fetch_sheet_text, evaluation_url)
        monitoring_text = future_monitoring.result()
        evaluation_text = future_evaluation.result()
    return monitoring_text, evaluation_text
