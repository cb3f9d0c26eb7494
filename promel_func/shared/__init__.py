"""Shared utilities for the Azure Function app."""

from .logging_utils import get_json_logger, log_exception
from .sheet_source import SheetFetchError, fetch_sheet_pair, fetch_sheet_text
from .summarize_bridge import generate_summary_artifacts
from .html_renderer import WORD_MIMETYPE, export_filename, render_word_document
from .validators import (
    ChatRequest,
    ExportRequest,
    ValidationError,
    ensure_sheet_source_env,
    parse_chat_request,
    parse_export_request,
    read_json_body,
)

__all__ = [
    "get_json_logger",
    "log_exception",
    "SheetFetchError",
    "fetch_sheet_pair",
    "fetch_sheet_text",
    "generate_summary_artifacts",
    "WORD_MIMETYPE",
    "export_filename",
    "render_word_document",
    "ChatRequest",
    "ExportRequest",
    "ValidationError",
    "ensure_sheet_source_env",
    "parse_chat_request",
    "parse_export_request",
    "read_json_body",
]
