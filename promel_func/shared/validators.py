"""Validation helpers for the ProMEL HTTP request pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import azure.functions as func
from dotenv import load_dotenv

from ..summarize import normalize_criteria

MONITORING_URL_ENV = "PROMEL_MONITORING_CSV_URL"
EVALUATION_URL_ENV = "PROMEL_EVALUATION_CSV_URL"
OPENAI_KEY_ENV = "OPENAI_API_KEY"

MAX_HISTORY_TURNS = 10
MAX_HISTORY_CHARS = 400

# local runs read a .env file; in Azure the app settings are already in os.environ
load_dotenv()


class ValidationError(ValueError):
    """Raised when the HTTP request payload is invalid."""


@dataclass
class ChatRequest:
    message: str
    mode: str = "custom"
    include_filters: bool = True
    filters: Dict[str, str] = field(default_factory=dict)
    history: List[Dict[str, str]] = field(default_factory=list)
    conversation_id: Optional[Any] = None


@dataclass
class ExportRequest:
    title: str
    body: str
    key_findings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


def read_json_body(req: func.HttpRequest) -> Dict[str, Any]:
    try:
        data = req.get_json()
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON.") from exc
    if not isinstance(data, dict):
        raise ValidationError("Request JSON must be an object.")
    return data


def _normalize_history(raw: Any) -> List[Dict[str, str]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("'history' must be a list of {role, content} objects.")
    turns: List[Dict[str, str]] = []
    for item in raw[-MAX_HISTORY_TURNS:]:
        if not isinstance(item, dict):
            continue
        role = str(item.get("role") or "user").strip() or "user"
        content = str(item.get("content") or "")[:MAX_HISTORY_CHARS]
        turns.append({"role": role, "content": content})
    return turns


def parse_chat_request(data: Dict[str, Any]) -> ChatRequest:
    """Validate and return the normalized chat payload (old and new field names)."""

    message = str(data.get("user_prompt") or "").strip() or str(data.get("message") or "").strip()
    if not message:
        raise ValidationError("'user_prompt' (or 'message') is required.")

    filters = data.get("filters")
    if filters is not None and not isinstance(filters, dict):
        raise ValidationError("'filters' must be an object.")

    include_filters = data.get("include_filters", True)
    if isinstance(include_filters, str):
        include_filters = include_filters.strip().lower() not in ("false", "0", "no", "")

    return ChatRequest(
        message=message,
        mode=str(data.get("mode") or "custom").strip() or "custom",
        include_filters=bool(include_filters),
        filters=normalize_criteria(filters),
        history=_normalize_history(data.get("history")),
        conversation_id=data.get("conversation_id"),
    )


def parse_export_request(data: Dict[str, Any]) -> ExportRequest:
    body = str(data.get("report_markdown") or data.get("content") or data.get("reply") or "").strip()
    if not body:
        raise ValidationError("'report_markdown' (or 'content') is required.")
    title = str(data.get("title") or data.get("report_title") or "").strip() or "ProMEL AI Report"
    return ExportRequest(
        title=title,
        body=body,
        key_findings=_string_list(data.get("key_findings"), "key_findings"),
        recommendations=_string_list(data.get("recommendations"), "recommendations"),
    )


def _string_list(raw: Any, name: str) -> List[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(f"'{name}' must be a list of strings.")
    return [str(item).strip() for item in raw if str(item).strip()]


def ensure_sheet_source_env() -> Dict[str, str]:
    """Ensure the published sheet URLs and model credentials are configured."""

    required_envs = {
        "monitoring": MONITORING_URL_ENV,
        "evaluation": EVALUATION_URL_ENV,
    }

    resolved: Dict[str, str] = {}
    missing: List[str] = []
    for key, env_name in required_envs.items():
        value = os.environ.get(env_name)
        if not value:
            missing.append(env_name)
            continue
        override = os.environ.get(f"{env_name}_OVERRIDE")
        resolved[key] = override or value

    if not os.environ.get(OPENAI_KEY_ENV):
        missing.append(OPENAI_KEY_ENV)

    if missing:
        raise RuntimeError(
            "Server misconfigured; missing environment variables: " + ", ".join(sorted(missing))
        )

    return resolved
