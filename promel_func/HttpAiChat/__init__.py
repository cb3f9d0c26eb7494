"""HTTP-triggered Azure Function that answers ProMEL dashboard chat requests."""

from __future__ import annotations

import json
from typing import Any, Dict

import azure.functions as func

from .. import narrate
from ..intents import resolve_intent
from ..shared import (
    SheetFetchError,
    ValidationError,
    ensure_sheet_source_env,
    fetch_sheet_pair,
    generate_summary_artifacts,
    get_json_logger,
    log_exception,
    parse_chat_request,
    read_json_body,
)

LOGGER = get_json_logger("promel.HttpAiChat")


def _ensure_json_response(payload: Dict[str, Any], status: int) -> func.HttpResponse:
    return func.HttpResponse(body=json.dumps(payload), status_code=status, mimetype="application/json")


def _error_response(error: str, status: int, message: str | None = None) -> func.HttpResponse:
    payload: Dict[str, Any] = {"success": False, "error": error}
    if message:
        payload["message"] = message
    return _ensure_json_response(payload, status)


def main(req: func.HttpRequest) -> func.HttpResponse:
    LOGGER.info("HttpAiChat triggered", extra={"event": "start"})

    try:
        chat = parse_chat_request(read_json_body(req))
    except ValidationError as exc:
        LOGGER.warning("Invalid request payload", extra={"event": "request_invalid", "error": str(exc)})
        return _error_response(str(exc), 400)

    log_context = {
        "conversation_id": chat.conversation_id,
        "mode": chat.mode,
        "used_filters": chat.filters,
    }
    LOGGER.info(
        "Request received",
        extra={
            "event": "request_received",
            "prompt_chars": len(chat.message),
            "history_turns": len(chat.history),
            **log_context,
        },
    )

    try:
        urls = ensure_sheet_source_env()
    except RuntimeError as exc:
        LOGGER.error("Sheet source configuration missing", extra={"event": "env_missing", "error": str(exc), **log_context})
        return _error_response(str(exc), 500)

    try:
        monitoring_text, evaluation_text = fetch_sheet_pair(urls["monitoring"], urls["evaluation"])
        LOGGER.info(
            "Sheets fetched",
            extra={
                "event": "sheets_fetched",
                "monitoring_chars": len(monitoring_text),
                "evaluation_chars": len(evaluation_text),
                **log_context,
            },
        )

        summary = generate_summary_artifacts(monitoring_text, evaluation_text, chat.filters)

        intent = resolve_intent(chat.message, chat.mode)
        LOGGER.info("Intent resolved", extra={"event": "intent_resolved", "intent": intent.value, **log_context})

        payload = narrate.generate_reply(chat, summary, intent)
        LOGGER.info(
            "Request complete",
            extra={
                "event": "done",
                "intent": intent.value,
                "parse_fallback": "note" in payload,
                "reply_chars": len(payload["reply"]),
                **log_context,
            },
        )
        return _ensure_json_response(payload, 200)

    except SheetFetchError as exc:
        LOGGER.error(
            "Sheet source unavailable",
            extra={"event": "sheet_fetch_failed", "url": exc.url, "status_code": exc.status_code, **log_context},
        )
        return _error_response("Failed to fetch dashboard sheets.", 502, str(exc))
    except narrate.ModelCallError as exc:
        LOGGER.error(
            "Language model call failed",
            extra={"event": "model_call_failed", "status_code": exc.status_code, "error": exc.message, **log_context},
        )
        return _error_response("Language model request failed.", exc.status_code, exc.message)
    except Exception as exc:  # pragma: no cover - runtime error path
        log_exception(LOGGER, "Pipeline execution failed", extra=log_context)
        return _error_response("ProMEL AI backend error (exception)", 500, str(exc))
