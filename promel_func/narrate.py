#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
narrate.py
Builds the model prompt for a chat request, calls the chat model, and reconciles
whatever text comes back into the dashboard response contract.

Key behaviors:
- Only DASHBOARD_ANALYSIS and REPORT prompts carry the live sheet summaries; every
  other intent is told to answer from general MEL knowledge.
- One strategy for the model call: strict JSON-schema structured output first; if
  the service rejects the structured-output request (HTTP 400), one free-text call
  with the schema spelled out, parsed locally. Nothing else is retried.
- Lenient parsing: code fences stripped, direct parse, then the first "{" to the
  last "}" span. Unparseable text is surfaced as the narrative body, never raised.
- Visuals are NEVER taken from the model: the locally computed values win.
- key_findings / recommendations are never empty and report_markdown is never blank.
"""

import json
import os
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from openai import APIConnectionError, APIStatusError, OpenAI

from .intents import GENERAL_KNOWLEDGE_NOTICE, Intent, intent_instructions, intent_uses_data
from .shared.logging_utils import get_json_logger
from .shared.validators import OPENAI_KEY_ENV, ChatRequest
from .summarize import DatasetSummary, Visuals

LOGGER = get_json_logger("promel.narrate")

DEFAULT_MODEL_ENV = "PROMEL_DEFAULT_MODEL"
DEFAULT_MODEL = "gpt-4o-mini"
TEMPERATURE_ENV = "PROMEL_MODEL_TEMPERATURE"
DEFAULT_TEMPERATURE = 0.4
SCHEMA_NAME = "promel_report"

DEFAULT_REPORT_TITLE = "ProMEL AI Monitoring & Evaluation Summary"

DEFAULT_KEY_FINDINGS = [
    "Monitoring and evaluation data should be reviewed regularly to confirm that activities stay on track.",
    "Ratings below 3 on the 1-5 scale point to areas that need management attention.",
    "Consistent, complete data entry makes trends easier to interpret across reporting periods.",
]

DEFAULT_RECOMMENDATIONS = [
    "Hold a short review with the project team to discuss the latest monitoring results.",
    "Agree on follow-up actions, owners and timelines for any low-rated areas.",
    "Keep the monitoring and evaluation sheets up to date before the next reporting period.",
]

EMPTY_REPLY_TEXT = "No reply was generated by the language model."
PARSE_FALLBACK_NOTE = (
    "The AI response could not be read as structured data, so the raw narrative is shown "
    "with dashboard visuals computed directly from the sheets."
)

BASE_SYSTEM_PROMPT = (
    "You are ProMEL AI, a Monitoring, Evaluation and Learning (MEL) assistant for development projects "
    "in Papua New Guinea. You help government agencies, NGOs and donors design logframes, M&E questionnaires, "
    "progress reports, summaries and learning notes. Be clear, practical and context-aware for the PNG public "
    "service and NGOs."
)

OUTPUT_CONTRACT = (
    "OUTPUT FORMAT:\n"
    "Return ONLY one JSON object (no code fences, no text outside it) with these keys:\n"
    '- "report_title": short title for the answer.\n'
    '- "report_markdown": the full answer in Markdown.\n'
    '- "key_findings": array of 2-6 short strings.\n'
    '- "recommendations": array of 2-6 short, actionable strings.\n'
    '- "visuals": object with "kpi_scores" (array of {"label", "percent"}), "distribution" '
    '({"good", "watch", "poor"}), "combined_score_percent", "combined_distribution" and '
    '"evaluation_distribution" (both shaped like "distribution"). '
    "When VISUALS are given in the data context, copy them exactly; otherwise use empty arrays and zeros."
)

_DISTRIBUTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "good": {"type": "integer"},
        "watch": {"type": "integer"},
        "poor": {"type": "integer"},
    },
    "required": ["good", "watch", "poor"],
    "additionalProperties": False,
}

REPORT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "report_title": {"type": "string"},
        "report_markdown": {"type": "string"},
        "key_findings": {"type": "array", "items": {"type": "string"}},
        "recommendations": {"type": "array", "items": {"type": "string"}},
        "visuals": {
            "type": "object",
            "properties": {
                "kpi_scores": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "label": {"type": "string"},
                            "percent": {"type": "number"},
                        },
                        "required": ["label", "percent"],
                        "additionalProperties": False,
                    },
                },
                "distribution": _DISTRIBUTION_SCHEMA,
                "combined_score_percent": {"type": "number"},
                "combined_distribution": _DISTRIBUTION_SCHEMA,
                "evaluation_distribution": _DISTRIBUTION_SCHEMA,
            },
            "required": [
                "kpi_scores",
                "distribution",
                "combined_score_percent",
                "combined_distribution",
                "evaluation_distribution",
            ],
            "additionalProperties": False,
        },
    },
    "required": ["report_title", "report_markdown", "key_findings", "recommendations", "visuals"],
    "additionalProperties": False,
}

_LEADING_FENCE_RE = re.compile(r"^```[\w+-]*[ \t]*\n?")
_TRAILING_FENCE_RE = re.compile(r"\n?[ \t]*```$")

_OPENAI: Optional[OpenAI] = None


class ModelCallError(RuntimeError):
    """Raised when the language-model service call fails."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass
class ReconciledResponse:
    report_title: str
    report_markdown: str
    key_findings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    visuals: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReconcileOutcome:
    response: ReconciledResponse
    parsed: bool
    note: Optional[str] = None

# ---------- model transport ----------

def _get_openai_client() -> Optional[OpenAI]:
    global _OPENAI  # pylint: disable=global-statement
    if _OPENAI is not None:
        return _OPENAI
    if not os.environ.get(OPENAI_KEY_ENV):
        return None
    _OPENAI = OpenAI()
    return _OPENAI


def resolve_model() -> str:
    return os.environ.get(DEFAULT_MODEL_ENV, "").strip() or DEFAULT_MODEL


def _resolve_temperature() -> float:
    raw = os.environ.get(TEMPERATURE_ENV)
    try:
        return float(raw) if raw else DEFAULT_TEMPERATURE
    except ValueError:
        return DEFAULT_TEMPERATURE


def _error_message(exc: Exception) -> str:
    message = getattr(exc, "message", None)
    return str(message or exc)


def _create_completion(client: OpenAI, body: Dict[str, Any]) -> Any:
    try:
        return client.chat.completions.create(**body)
    except APIStatusError as exc:
        raise ModelCallError(exc.status_code, _error_message(exc)) from exc
    except APIConnectionError as exc:
        raise ModelCallError(502, f"Language model service unreachable: {_error_message(exc)}") from exc


def _response_text(resp: Any) -> str:
    if not getattr(resp, "choices", None):
        return ""
    message = resp.choices[0].message
    if message is None:
        return ""
    return (message.content or "").strip()


def call_model(
    system_prompt: str,
    user_prompt: str,
    schema: Dict[str, Any],
    *,
    model: Optional[str] = None,
) -> str:
    """
    Single request/response exchange with the chat model; returns the raw text.

    Strict structured output is attempted first. A 400 from the service means the
    model/deployment does not accept it, so the schema is appended to the system
    prompt and one plain call is made instead.
    """
    client = _get_openai_client()
    if client is None:
        raise ModelCallError(500, f"Server misconfigured: {OPENAI_KEY_ENV} is missing.")

    model = model or resolve_model()
    base = {
        "model": model,
        "temperature": _resolve_temperature(),
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
    }
    LOGGER.info(
        "Model call start",
        extra={"event": "model_call_start", "model": model, "prompt_chars": len(system_prompt) + len(user_prompt)},
    )

    try:
        resp = _create_completion(
            client,
            {
                **base,
                "response_format": {
                    "type": "json_schema",
                    "json_schema": {"name": SCHEMA_NAME, "strict": True, "schema": schema},
                },
            },
        )
        strategy = "structured"
    except ModelCallError as exc:
        if exc.status_code != 400:
            LOGGER.error(
                "Model call failed",
                extra={"event": "model_call_error", "status_code": exc.status_code, "error": exc.message},
            )
            raise
        LOGGER.warning(
            "Structured output rejected; using free-text call",
            extra={"event": "model_structured_rejected", "error": exc.message},
        )
        free_text_system = (
            system_prompt + "\n\nJSON SCHEMA (the object must match it):\n" + json.dumps(schema, indent=2)
        )
        resp = _create_completion(
            client,
            {
                **base,
                "messages": [
                    {"role": "system", "content": free_text_system},
                    {"role": "user", "content": user_prompt},
                ],
            },
        )
        strategy = "free_text"

    content = _response_text(resp)
    LOGGER.info(
        "Model call done",
        extra={"event": "model_call_done", "strategy": strategy, "reply_chars": len(content)},
    )
    return content

# ---------- prompt assembly ----------

def build_system_prompt(intent: Intent) -> str:
    return "\n\n".join(
        [
            BASE_SYSTEM_PROMPT,
            "RESPONSE RULES FOR THIS REQUEST:\n" + intent_instructions(intent),
            OUTPUT_CONTRACT,
        ]
    )


def _filter_context(filters: Dict[str, str]) -> str:
    return (
        "FILTER CONTEXT:\n"
        f"- Project: {filters.get('project') or 'All projects'}\n"
        f"- Reporting Period: {filters.get('period') or 'All periods'}\n"
        f"- Location: {filters.get('location') or 'All locations'}"
    )


def _data_context(summary: DatasetSummary) -> str:
    visuals_json = json.dumps(summary.visuals.to_dict(), indent=2)
    return (
        "DATA CONTEXT (live dashboard sheets):\n\n"
        f"MONITORING SUMMARY:\n{summary.monitoring_summary}\n\n"
        f"EVALUATION SUMMARY:\n{summary.evaluation_summary}\n\n"
        "VISUALS (copy into the 'visuals' field exactly as given; do not recompute):\n"
        f"{visuals_json}"
    )


def _history_context(history: List[Dict[str, str]]) -> str:
    lines = ["CONVERSATION HISTORY (previous exchanges):"]
    for i, turn in enumerate(history, 1):
        lines.append(f"{i}. [{turn.get('role') or 'user'}] {turn.get('content') or ''}")
    return "\n".join(lines)


def build_user_prompt(chat: ChatRequest, intent: Intent, summary: DatasetSummary) -> str:
    blocks: List[str] = []
    if chat.include_filters:
        blocks.append(_filter_context(chat.filters))
    if intent_uses_data(intent):
        blocks.append(_data_context(summary))
    else:
        blocks.append(GENERAL_KNOWLEDGE_NOTICE)
    if chat.history:
        blocks.append(_history_context(chat.history))
    blocks.append("USER QUESTION / TASK:\n" + chat.message)
    return "\n\n".join(blocks)

# ---------- reconciliation ----------

def strip_code_fence(text: str) -> str:
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = _LEADING_FENCE_RE.sub("", cleaned, count=1)
        cleaned = _TRAILING_FENCE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def parse_model_json(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Best-effort JSON object from model text; None when nothing parses."""
    cleaned = strip_code_fence(text or "")
    if not cleaned:
        return None
    try:
        data = json.loads(cleaned)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _clean_strings(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    out = []
    for item in value:
        if isinstance(item, (str, int, float)) and not isinstance(item, bool):
            text = str(item).strip()
            if text:
                out.append(text)
    return out


def _merge_visuals(model_visuals: Any, local: Visuals) -> Dict[str, Any]:
    """Local visuals are authoritative; model echoes are only checked, never used."""
    merged = local.to_dict()
    if isinstance(model_visuals, dict):
        differing = sorted(k for k in merged if k in model_visuals and model_visuals[k] != merged[k])
        if differing:
            LOGGER.info(
                "Model visuals differ from computed values; computed values kept",
                extra={"event": "model_visuals_overridden", "fields": differing},
            )
    return merged


def synthesize_markdown(title: str, findings: List[str], recommendations: List[str]) -> str:
    lines = [f"# {title}", "", "## Key Findings"]
    lines.extend(f"- {f}" for f in findings)
    lines.extend(["", "## Recommendations"])
    lines.extend(f"- {r}" for r in recommendations)
    return "\n".join(lines)


def reconcile(raw_text: Optional[str], local_visuals: Visuals) -> ReconcileOutcome:
    """Turn raw model text into a ReconciledResponse that always satisfies the contract."""
    data = parse_model_json(raw_text)
    if data is None:
        LOGGER.warning(
            "Model output unparseable; returning raw narrative",
            extra={"event": "model_parse_fallback", "reply_chars": len(raw_text or "")},
        )
        response = ReconciledResponse(
            report_title=DEFAULT_REPORT_TITLE,
            report_markdown=(raw_text or "").strip() or EMPTY_REPLY_TEXT,
            key_findings=list(DEFAULT_KEY_FINDINGS),
            recommendations=list(DEFAULT_RECOMMENDATIONS),
            visuals=local_visuals.to_dict(),
        )
        return ReconcileOutcome(response=response, parsed=False, note=PARSE_FALLBACK_NOTE)

    title = data.get("report_title")
    title = title.strip() if isinstance(title, str) else ""
    title = title or DEFAULT_REPORT_TITLE

    findings = _clean_strings(data.get("key_findings")) or list(DEFAULT_KEY_FINDINGS)
    recommendations = _clean_strings(data.get("recommendations")) or list(DEFAULT_RECOMMENDATIONS)

    body = data.get("report_markdown")
    body = body.strip() if isinstance(body, str) else ""
    if not body:
        body = synthesize_markdown(title, findings, recommendations)

    response = ReconciledResponse(
        report_title=title,
        report_markdown=body,
        key_findings=findings,
        recommendations=recommendations,
        visuals=_merge_visuals(data.get("visuals"), local_visuals),
    )
    return ReconcileOutcome(response=response, parsed=True)

# ---------- payload building ----------

def build_chat_payload(
    outcome: ReconcileOutcome,
    summary: DatasetSummary,
    intent: Intent,
    conversation_id: Any = None,
) -> Dict[str, Any]:
    response = outcome.response
    payload: Dict[str, Any] = {
        "success": True,
        "reply": response.report_markdown,
        "report_title": response.report_title,
        "key_findings": response.key_findings,
        "recommendations": response.recommendations,
        "visuals": response.visuals,
        "used_filters": dict(summary.used_filters),
        "monitoring_records_used": len(summary.monitoring.data),
        "evaluation_records_used": len(summary.evaluation.data),
        "detected_intent": intent.value,
        "conversation_id": conversation_id,
    }
    if outcome.note:
        payload["note"] = outcome.note
    return payload


def generate_reply(
    chat: ChatRequest,
    summary: DatasetSummary,
    intent: Intent,
    model: Optional[str] = None,
) -> Dict[str, Any]:
    """Prompt, call and reconcile; ModelCallError propagates to the HTTP layer."""
    system_prompt = build_system_prompt(intent)
    user_prompt = build_user_prompt(chat, intent, summary)
    raw_text = call_model(system_prompt, user_prompt, REPORT_SCHEMA, model=model)
    outcome = reconcile(raw_text, summary.visuals)
    return build_chat_payload(outcome, summary, intent, chat.conversation_id)
