"""Tests for the Word export renderer and its HTTP functions."""

from __future__ import annotations

import json
import unittest
from datetime import datetime
from unittest import mock

from promel_func.HttpExportWord import main as export_main
from promel_func.HttpHealth import main as health_main
from promel_func.shared.html_renderer import (
    WORD_MIMETYPE,
    export_filename,
    markdown_to_html,
    render_word_document,
)


class HtmlRendererTests(unittest.TestCase):
    def test_render_word_document_produces_html(self) -> None:
        html = render_word_document(
            "Alpha Q1 Review",
            "## Overview\nImplementation is **on track**.\n\n- Wells built\n- Staff trained",
            key_findings=["Budget use is strong"],
            recommendations=["Keep monthly reviews"],
            generated_at=datetime(2024, 4, 1, 9, 30),
        )

        self.assertTrue(html.startswith("<!DOCTYPE html>"))
        self.assertIn("urn:schemas-microsoft-com:office:word", html)
        self.assertIn("<h1>Alpha Q1 Review</h1>", html)
        self.assertIn("<strong>on track</strong>", html)
        self.assertIn("<li>Wells built</li>", html)
        self.assertIn("<h2>Key Findings</h2>", html)
        self.assertIn("<li>Keep monthly reviews</li>", html)
        self.assertIn("2024-04-01 09:30Z", html)
        self.assertTrue(html.endswith("</body></html>"))

    def test_duplicate_title_heading_removed(self) -> None:
        html = render_word_document("Alpha Q1 Review", "# Alpha Q1 Review\n\nBody text")
        self.assertEqual(html.count("Alpha Q1 Review</h1>"), 1)
        self.assertIn("<p>Body text</p>", html)

    def test_raw_html_is_escaped(self) -> None:
        html = markdown_to_html("<script>alert(1)</script>")
        self.assertNotIn("<script>", html)
        self.assertIn("&lt;script&gt;", html)

    def test_empty_lists_are_omitted(self) -> None:
        html = render_word_document("T", "Body", key_findings=[], recommendations=["  "])
        self.assertNotIn("Key Findings", html)
        self.assertNotIn("Recommendations", html)

    def test_document_always_uses_built_in_layout(self) -> None:
        html = render_word_document("A & B", "Body", generated_at=datetime(2024, 1, 2, 3, 4))
        self.assertTrue(html.startswith("<!DOCTYPE html>"))
        self.assertIn("<title>A &amp; B</title>", html)
        self.assertIn("<h1>A &amp; B</h1>", html)
        self.assertIn("Generated 2024-01-02 03:04Z by ProMEL AI", html)
        self.assertTrue(html.endswith("</body></html>"))
        with self.assertRaises(TypeError):
            render_word_document("A", "Body", template="<html>{{BODY}}</html>")

    def test_export_filename(self) -> None:
        self.assertEqual(export_filename("ProMEL AI Report: Q1/2024"), "promel_ai_report_q1_2024.doc")
        self.assertEqual(export_filename("  "), "promel_report.doc")


class HttpExportWordTests(unittest.TestCase):
    def test_returns_word_attachment(self) -> None:
        req = mock.Mock()
        req.get_json.return_value = {"title": "Alpha Review", "report_markdown": "Body", "key_findings": ["k"]}

        resp = export_main(req)

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.mimetype, WORD_MIMETYPE)
        self.assertEqual(resp.headers["Content-Disposition"], 'attachment; filename="alpha_review.doc"')
        body = resp.get_body().decode("utf-8")
        self.assertIn("<h1>Alpha Review</h1>", body)

    def test_missing_body_is_rejected(self) -> None:
        req = mock.Mock()
        req.get_json.return_value = {"title": "Nothing"}

        resp = export_main(req)

        self.assertEqual(resp.status_code, 400)
        self.assertFalse(json.loads(resp.get_body())["success"])


class HttpHealthTests(unittest.TestCase):
    def test_health_payload(self) -> None:
        resp = health_main(mock.Mock())
        payload = json.loads(resp.get_body())
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(payload["ok"])
        self.assertEqual(payload["message"], "ProMEL AI backend is running")
        self.assertTrue(payload["version"])


if __name__ == "__main__":
    unittest.main()
