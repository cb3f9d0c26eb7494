"""HTML rendering helpers for the Word (.doc) export of ProMEL reports."""

from __future__ import annotations

import re
from datetime import datetime
from html import escape
from typing import List, Optional, Sequence

import markdown

WORD_MIMETYPE = "application/msword"
MARKDOWN_EXTENSIONS = ["extra", "sane_lists"]

CSS = """
<style>
  body { font-family: Calibri, Arial, sans-serif; font-size: 11pt; margin: 24px; color: #111; }
  h1 { font-size: 20pt; margin: 0 0 8px; color: #0b3d5c; }
  h2 { font-size: 14pt; margin: 18px 0 6px; color: #0b3d5c; }
  h3 { font-size: 12pt; margin: 14px 0 4px; }
  .meta { color: #444; font-size: 9pt; margin-bottom: 16px; }
  .list { margin: 8px 0 16px; }
  table { border-collapse: collapse; width: 100%; margin: 8px 0 16px; }
  th, td { border: 1px solid #bfc7cf; padding: 4px 8px; text-align: left; }
  thead tr { background: #eef3f7; }
  .footer { color: #666; font-size: 8pt; margin-top: 24px; }
</style>
"""


def _html_header(title: str) -> str:
    # Office namespaces make Word open the HTML as a native document
    return (
        "<!DOCTYPE html><html xmlns:o='urn:schemas-microsoft-com:office:office' "
        "xmlns:w='urn:schemas-microsoft-com:office:word' xmlns='http://www.w3.org/TR/REC-html40'>"
        f"<head><meta charset='utf-8'><title>{escape(title)}</title>{CSS}</head><body>"
    )


def _html_footer() -> str:
    return "</body></html>"


def markdown_to_html(text: str) -> str:
    """Render the narrative body; raw HTML in model output is escaped, not trusted."""
    return markdown.markdown(escape(text or "", quote=False), extensions=MARKDOWN_EXTENSIONS, output_format="html")


def _strip_leading_title(body: str, title: str) -> str:
    """Drop a first-line '# Title' that would repeat the document heading."""
    lines = (body or "").lstrip().splitlines()
    if lines and re.match(r"^#\s+", lines[0]) and lines[0].lstrip("#").strip().lower() == title.strip().lower():
        return "\n".join(lines[1:]).lstrip()
    return body


def _list_section(heading: str, items: Sequence[str]) -> str:
    cleaned = [str(i).strip() for i in items if str(i).strip()]
    if not cleaned:
        return ""
    parts = [f"<h2>{escape(heading)}</h2><div class='list'><ul>"]
    for item in cleaned:
        parts.append(f"<li>{escape(item)}</li>")
    parts.append("</ul></div>")
    return "".join(parts)


def render_word_document(
    title: str,
    body_markdown: str,
    *,
    key_findings: Optional[Sequence[str]] = None,
    recommendations: Optional[Sequence[str]] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """Return a Word-compatible HTML document for the narrative body."""
    title = (title or "").strip() or "ProMEL AI Report"
    generated = (generated_at or datetime.utcnow()).strftime("%Y-%m-%d %H:%MZ")

    body_parts: List[str] = [markdown_to_html(_strip_leading_title(body_markdown, title))]
    body_parts.append(_list_section("Key Findings", key_findings or []))
    body_parts.append(_list_section("Recommendations", recommendations or []))
    body_html = "".join(p for p in body_parts if p)

    parts = [_html_header(title)]
    parts.append(f"<h1>{escape(title)}</h1>")
    parts.append(f"<div class='meta'>Generated {escape(generated)} by ProMEL AI</div>")
    parts.append(body_html)
    parts.append("<div class='footer'>Monitoring, Evaluation and Learning report exported from the ProMEL dashboard.</div>")
    parts.append(_html_footer())
    return "".join(parts)


def export_filename(title: str, extension: str = "doc") -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "_", (title or "").strip()).strip("_").lower()
    return f"{slug or 'promel_report'}.{extension}"
