"""
Intent routing for ProMEL chat requests.

Each request is classified into EXACTLY ONE intent by ordered pattern rules; the
first matching rule wins and anything unmatched is HOW_TO. The intent decides the
output-shaping instructions and whether live sheet numbers go into the prompt.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Dict, List, Optional, Pattern, Tuple

from .shared.logging_utils import get_json_logger

LOGGER = get_json_logger("promel.intents")


class Intent(str, Enum):
    DEFINITION = "DEFINITION"
    TOOLS = "TOOLS"
    REPORT = "REPORT"
    DASHBOARD_ANALYSIS = "DASHBOARD_ANALYSIS"
    LEARNING = "LEARNING"
    HOW_TO = "HOW_TO"


# Priority order matters: definitional phrasing first, then tools/instruments,
# then explicit reports, then dashboard/trend language, then learning reflection.
INTENT_RULES: List[Tuple[Intent, List[str]]] = [
    (
        Intent.DEFINITION,
        [
            # bare concept questions only; anything about the project's own numbers falls through
            r"^(?:what\s+(?:is|are|does)|define|explain\s+what)\b"
            r"(?!.*\b(?:dashboards?|trends?|scores?|kpis?|charts?|our|my|this\s+(?:quarter|period|month|year))\b)",
            r"\bdefinition\s+of\b",
            r"\bmeaning\s+of\b",
            r"\bwhat\s+do\s+you\s+mean\s+by\b",
            r"\bdifference\s+between\b",
            r"\bstands?\s+for\b",
        ],
    ),
    (
        Intent.TOOLS,
        [
            r"\btools?\b",
            r"\btemplates?\b",
            r"\bquestionnaires?\b",
            r"\bchecklists?\b",
            r"\binstruments?\b",
            r"\blog\s*frames?\b",
            r"\bgoogle\s+forms?\b",
            r"\b(?:design|draft|create|develop)\b.*\b(?:questions?|indicators?|forms?)\b",
        ],
    ),
    (
        Intent.REPORT,
        [
            r"\breports?\b",
            r"\breporting\s+narrative\b",
        ],
    ),
    (
        Intent.DASHBOARD_ANALYSIS,
        [
            r"\bdashboards?\b",
            r"\btrends?\b",
            r"\binterpret\w*",
            r"\banaly[sz]\w*",
            r"\bkpis?\b",
            r"\bcharts?\b",
            r"\bscores?\b",
            r"\b(?:our|this|project|overall|current)\s+performance\b",
            r"\bperformance\s+(?:scores?|ratings?)\b",
            r"\bdistribution\b",
            r"\b(?:our|this|latest|current|dashboard|sheet)\s+data\b",
            r"\bfigures?\b",
        ],
    ),
    (
        Intent.LEARNING,
        [
            r"\blessons?\b",
            r"\blearn(?:ed|ing|t)?\b",
            r"\breflect\w*",
            r"\bwhat\s+worked\b",
            r"\bwent\s+well\b",
            r"\bdo\s+differently\b",
        ],
    ),
]

_COMPILED_RULES: List[Tuple[Intent, List[Pattern[str]]]] = [
    (intent, [re.compile(p, re.IGNORECASE) for p in patterns]) for intent, patterns in INTENT_RULES
]

# Request "mode" values sent by older dashboard builds.
MODE_TO_INTENT: Dict[str, Intent] = {
    "explain_trends": Intent.DASHBOARD_ANALYSIS,
    "draft_report": Intent.REPORT,
    "learning_summary": Intent.LEARNING,
    "design_questions": Intent.TOOLS,
}

DATA_INTENTS = frozenset({Intent.DASHBOARD_ANALYSIS, Intent.REPORT})

INTENT_INSTRUCTIONS: Dict[Intent, str] = {
    Intent.DEFINITION: (
        "The user wants a definition or explanation of a concept.\n"
        "- Give a clear, plain-language definition in 2-4 short paragraphs with one practical example from a PNG project setting.\n"
        "- Do NOT structure the answer as a narrative report (no Project Overview / Achievements / Challenges headings).\n"
        "- Do NOT reference dashboards, charts, KPI scores or any visuals.\n"
        "- key_findings: 2-4 key points about the concept. recommendations: 1-3 tips for applying it."
    ),
    Intent.TOOLS: (
        "The user wants a practical M&E tool, template or instrument.\n"
        "- Produce the tool itself in report_markdown: rating-based questions on a 1-5 scale plus a few open questions, "
        "or the requested template / checklist / logframe rows.\n"
        "- Cover activity implementation, outputs, outcomes, impact, risks / assumptions and sustainability where relevant.\n"
        "- Keep the wording easy for field staff in PNG to use in Google Forms.\n"
        "- key_findings: what the tool measures. recommendations: how to roll it out."
    ),
    Intent.REPORT: (
        "The user wants a short narrative Monitoring & Evaluation report.\n"
        "- Structure report_markdown with headings: 1. Project Overview, 2. Key Achievements this Period, "
        "3. Challenges / Risks, 4. Quantitative Performance (explain scores and beneficiary numbers in words), "
        "5. Recommendations and Next Steps.\n"
        "- Use ONLY the data context supplied; if a figure is not in the data, say it is not available.\n"
        "- Write in a professional style suitable for government, donors and NGOs in PNG."
    ),
    Intent.DASHBOARD_ANALYSIS: (
        "The user wants the dashboard interpreted.\n"
        "- Explain current trends, risks and performance for managers and decision makers.\n"
        "- Focus on activity implementation, budget utilisation, staff, community participation, coordination, "
        "outcomes and impact.\n"
        "- Use the data context and the given visuals as the evidence base; quote figures exactly as given.\n"
        "- Keep the tone practical and concise."
    ),
    Intent.LEARNING: (
        "The user wants a lessons-learned reflection.\n"
        "- Summarise key successes, what worked well and why, key problems / failures, what should be done "
        "differently next time, and practical recommendations for adaptation.\n"
        "- Use bullet points and short paragraphs.\n"
        "- Speak in general terms; do not invent project-specific results."
    ),
    Intent.HOW_TO: (
        "The user wants practical guidance on how to do something in Monitoring, Evaluation and Learning.\n"
        "- Give clear, numbered steps with short explanations and one PNG-relevant example.\n"
        "- Do not invent project-specific results or figures."
    ),
}

GENERAL_KNOWLEDGE_NOTICE = (
    "DATA CONTEXT: none supplied for this request. Answer from general Monitoring, Evaluation and Learning "
    "knowledge only. Do not claim or invent any project-specific figures, scores, beneficiary numbers or findings."
)


def classify_intent(text: Optional[str]) -> Intent:
    """Deterministic intent for ``text``; HOW_TO when no rule matches."""
    q = (text or "").strip().lower()
    if not q:
        return Intent.HOW_TO
    for intent, patterns in _COMPILED_RULES:
        for pat in patterns:
            if pat.search(q):
                LOGGER.info(
                    f"Intent detected: {intent.value}",
                    extra={"event": "intent_decision", "intent": intent.value, "pattern": pat.pattern},
                )
                return intent
    LOGGER.info(
        f"Intent detected: {Intent.HOW_TO.value}",
        extra={"event": "intent_decision", "intent": Intent.HOW_TO.value, "pattern": None},
    )
    return Intent.HOW_TO


def resolve_intent(text: Optional[str], mode: Optional[str] = None) -> Intent:
    """An explicit dashboard ``mode`` wins over text classification."""
    key = (mode or "").strip().lower()
    if key in MODE_TO_INTENT:
        return MODE_TO_INTENT[key]
    return classify_intent(text)


def intent_uses_data(intent: Intent) -> bool:
    return intent in DATA_INTENTS


def intent_instructions(intent: Intent) -> str:
    return INTENT_INSTRUCTIONS[intent]
