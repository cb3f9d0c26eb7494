"""HTTP-triggered Azure Function that exports a ProMEL report as a Word document."""

from __future__ import annotations

import json
from typing import Any, Dict

import azure.functions as func

from ..shared import (
    WORD_MIMETYPE,
    ValidationError,
    export_filename,
    get_json_logger,
    log_exception,
    parse_export_request,
    read_json_body,
    render_word_document,
)

LOGGER = get_json_logger("promel.HttpExportWord")


def _ensure_json_response(payload: Dict[str, Any], status: int) -> func.HttpResponse:
    return func.HttpResponse(body=json.dumps(payload), status_code=status, mimetype="application/json")


def main(req: func.HttpRequest) -> func.HttpResponse:
    LOGGER.info("HttpExportWord triggered", extra={"event": "start"})

    try:
        export = parse_export_request(read_json_body(req))
    except ValidationError as exc:
        LOGGER.warning("Invalid export payload", extra={"event": "request_invalid", "error": str(exc)})
        return _ensure_json_response({"success": False, "error": str(exc)}, 400)

    try:
        document = render_word_document(
            export.title,
            export.body,
            key_findings=export.key_findings,
            recommendations=export.recommendations,
        )
    except Exception as exc:  # pragma: no cover - runtime error path
        log_exception(LOGGER, "Word export failed", extra={"title": export.title})
        return _ensure_json_response(
            {"success": False, "error": "Word export failed.", "message": str(exc)},
            500,
        )

    filename = export_filename(export.title)
    LOGGER.info(
        "Word document rendered",
        extra={"event": "export_done", "doc_filename": filename, "html_len": len(document)},
    )
    return func.HttpResponse(
        body=document.encode("utf-8"),
        status_code=200,
        mimetype=WORD_MIMETYPE,
        charset="utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
