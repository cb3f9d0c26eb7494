"""Tests for request validation and environment checks."""

import os
import unittest
from unittest import mock

from promel_func.shared import ValidationError
from promel_func.shared.validators import (
    MAX_HISTORY_CHARS,
    MAX_HISTORY_TURNS,
    ensure_sheet_source_env,
    parse_chat_request,
    parse_export_request,
    read_json_body,
)


class ParseChatRequestTests(unittest.TestCase):
    def test_user_prompt_preferred_over_message(self) -> None:
        chat = parse_chat_request({"user_prompt": " Explain ", "message": "ignored"})
        self.assertEqual(chat.message, "Explain")

    def test_legacy_message_accepted(self) -> None:
        chat = parse_chat_request({"message": "Hello"})
        self.assertEqual(chat.message, "Hello")
        self.assertEqual(chat.mode, "custom")
        self.assertTrue(chat.include_filters)
        self.assertEqual(chat.filters, {"project": "", "period": "", "location": ""})
        self.assertEqual(chat.history, [])
        self.assertIsNone(chat.conversation_id)

    def test_missing_message_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            parse_chat_request({"filters": {"project": "Alpha"}})

    def test_filters_must_be_object(self) -> None:
        with self.assertRaises(ValidationError):
            parse_chat_request({"message": "x", "filters": ["Alpha"]})

    def test_filters_are_trimmed(self) -> None:
        chat = parse_chat_request({"message": "x", "filters": {"project": " Alpha ", "period": None}})
        self.assertEqual(chat.filters, {"project": "Alpha", "period": "", "location": ""})

    def test_include_filters_string_values(self) -> None:
        self.assertFalse(parse_chat_request({"message": "x", "include_filters": "false"}).include_filters)
        self.assertFalse(parse_chat_request({"message": "x", "include_filters": False}).include_filters)
        self.assertTrue(parse_chat_request({"message": "x", "include_filters": "yes"}).include_filters)

    def test_history_is_bounded(self) -> None:
        history = [{"role": "user", "content": "x" * 1000} for _ in range(15)]
        history.append("not a turn")
        chat = parse_chat_request({"message": "x", "history": history})
        self.assertEqual(len(chat.history), MAX_HISTORY_TURNS - 1)
        self.assertTrue(all(len(t["content"]) == MAX_HISTORY_CHARS for t in chat.history))

    def test_history_must_be_list(self) -> None:
        with self.assertRaises(ValidationError):
            parse_chat_request({"message": "x", "history": "earlier chat"})


class ReadJsonBodyTests(unittest.TestCase):
    def test_non_object_rejected(self) -> None:
        req = mock.Mock()
        req.get_json.return_value = ["a"]
        with self.assertRaises(ValidationError):
            read_json_body(req)

    def test_invalid_json_rejected(self) -> None:
        req = mock.Mock()
        req.get_json.side_effect = ValueError("no json")
        with self.assertRaises(ValidationError):
            read_json_body(req)


class ParseExportRequestTests(unittest.TestCase):
    def test_defaults(self) -> None:
        export = parse_export_request({"content": "Body"})
        self.assertEqual(export.title, "ProMEL AI Report")
        self.assertEqual(export.body, "Body")
        self.assertEqual(export.key_findings, [])

    def test_report_markdown_and_lists(self) -> None:
        export = parse_export_request(
            {"title": "Q1", "report_markdown": "# Q1", "key_findings": ["a", " "], "recommendations": ["b"]}
        )
        self.assertEqual(export.body, "# Q1")
        self.assertEqual(export.key_findings, ["a"])
        self.assertEqual(export.recommendations, ["b"])

    def test_body_required(self) -> None:
        with self.assertRaises(ValidationError):
            parse_export_request({"title": "Empty"})

    def test_lists_must_be_lists(self) -> None:
        with self.assertRaises(ValidationError):
            parse_export_request({"content": "x", "key_findings": "one"})


class EnsureSheetSourceEnvTests(unittest.TestCase):
    def test_requires_urls_and_key(self) -> None:
        with mock.patch.dict(os.environ, {"PROMEL_MONITORING_CSV_URL": "m"}, clear=True):
            with self.assertRaises(RuntimeError) as ctx:
                ensure_sheet_source_env()
        message = str(ctx.exception)
        self.assertIn("PROMEL_EVALUATION_CSV_URL", message)
        self.assertIn("OPENAI_API_KEY", message)
        self.assertNotIn("PROMEL_MONITORING_CSV_URL", message)

    def test_override_wins(self) -> None:
        env = {
            "PROMEL_MONITORING_CSV_URL": "m",
            "PROMEL_MONITORING_CSV_URL_OVERRIDE": "m2",
            "PROMEL_EVALUATION_CSV_URL": "e",
            "OPENAI_API_KEY": "k",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            urls = ensure_sheet_source_env()
        self.assertEqual(urls, {"monitoring": "m2", "evaluation": "e"})


if __name__ == "__main__":
    unittest.main()
