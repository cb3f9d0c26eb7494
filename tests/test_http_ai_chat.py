"""Tests for the HttpAiChat Azure Function."""

import json
import os
import unittest
from unittest import mock

from promel_func.HttpAiChat import main
from promel_func.narrate import DEFAULT_KEY_FINDINGS, PARSE_FALLBACK_NOTE, ModelCallError
from promel_func.shared import SheetFetchError

ENV = {
    "PROMEL_MONITORING_CSV_URL": "https://sheets.example/monitoring.csv",
    "PROMEL_EVALUATION_CSV_URL": "https://sheets.example/evaluation.csv",
    "OPENAI_API_KEY": "sk-test",
}

MONITORING_CSV = (
    "Timestamp,Project Name,Reporting Period,Province / District / Location,"
    "Activity Implementation on Schedule,Budget Utilisation as Planned,Key Achievements\n"
    '2024-01-10,Alpha,Q1,Lae,4,5,"Wells built, handed over"\n'
    "2024-02-10,Beta,Q1,Goroka,2,2,Survey\n"
)

EVALUATION_CSV = (
    "Project Name,Reporting Period,Evaluation Phase,Outcome Achievement Rating,Impact Rating,Overall Performance Rating\n"
    "Alpha,Q1,Midterm,4,4,5\n"
)

MODEL_REPLY = json.dumps(
    {
        "report_title": "Alpha dashboard review",
        "report_markdown": "Implementation is on track.",
        "key_findings": ["Budget use is strong"],
        "recommendations": ["Keep monthly reviews"],
        "visuals": {
            "kpi_scores": [],
            "distribution": {"good": 0, "watch": 0, "poor": 0},
            "combined_score_percent": 0,
            "combined_distribution": {"good": 0, "watch": 0, "poor": 0},
        },
    }
)


def _request(body):
    req = mock.Mock()
    req.get_json.return_value = body
    return req


def _json(resp):
    return json.loads(resp.get_body())


class HttpAiChatTests(unittest.TestCase):
    def setUp(self) -> None:
        env = mock.patch.dict(os.environ, ENV, clear=True)
        env.start()
        self.addCleanup(env.stop)

    def test_missing_message_is_rejected_before_upstream_calls(self) -> None:
        with mock.patch("promel_func.HttpAiChat.fetch_sheet_pair") as mock_fetch:
            resp = main(_request({"user_prompt": "   ", "filters": {}}))

        self.assertEqual(resp.status_code, 400)
        self.assertFalse(_json(resp)["success"])
        self.assertIn("user_prompt", _json(resp)["error"])
        mock_fetch.assert_not_called()

    def test_invalid_json_body(self) -> None:
        req = mock.Mock()
        req.get_json.side_effect = ValueError("bad json")
        resp = main(req)
        self.assertEqual(resp.status_code, 400)

    def test_missing_configuration(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            with mock.patch("promel_func.HttpAiChat.fetch_sheet_pair") as mock_fetch:
                resp = main(_request({"user_prompt": "Explain the trends"}))

        self.assertEqual(resp.status_code, 500)
        error = _json(resp)["error"]
        self.assertIn("PROMEL_MONITORING_CSV_URL", error)
        self.assertIn("OPENAI_API_KEY", error)
        mock_fetch.assert_not_called()

    def test_dashboard_request_end_to_end(self) -> None:
        with mock.patch(
            "promel_func.HttpAiChat.fetch_sheet_pair", return_value=(MONITORING_CSV, EVALUATION_CSV)
        ) as mock_fetch, mock.patch("promel_func.narrate.call_model", return_value=MODEL_REPLY) as mock_call:
            resp = main(
                _request(
                    {
                        "user_prompt": "Explain the trends on the dashboard",
                        "filters": {"project": "Alpha"},
                        "conversation_id": 42,
                    }
                )
            )

        self.assertEqual(resp.status_code, 200)
        mock_fetch.assert_called_once_with(ENV["PROMEL_MONITORING_CSV_URL"], ENV["PROMEL_EVALUATION_CSV_URL"])

        system_prompt, user_prompt = mock_call.call_args.args[:2]
        self.assertIn("interpreted", system_prompt)
        self.assertIn("Monitoring records matching filters: 1", user_prompt)
        self.assertIn("Wells built, handed over", user_prompt)

        body = _json(resp)
        self.assertTrue(body["success"])
        self.assertEqual(body["reply"], "Implementation is on track.")
        self.assertEqual(body["detected_intent"], "DASHBOARD_ANALYSIS")
        self.assertEqual(body["monitoring_records_used"], 1)
        self.assertEqual(body["evaluation_records_used"], 1)
        self.assertEqual(body["conversation_id"], 42)
        self.assertEqual(body["used_filters"]["project"], "Alpha")
        # (4 / 5) and (5 / 5): computed locally, not the zeros the model sent
        kpis = {k["label"]: k["percent"] for k in body["visuals"]["kpi_scores"]}
        self.assertEqual(kpis["Activity Implementation"], 80)
        self.assertEqual(kpis["Budget Utilisation"], 100)
        self.assertEqual(body["visuals"]["distribution"], {"good": 1, "watch": 0, "poor": 0})
        self.assertGreater(body["visuals"]["combined_score_percent"], 0)

    def test_definition_request_gets_no_sheet_data(self) -> None:
        with mock.patch(
            "promel_func.HttpAiChat.fetch_sheet_pair", return_value=(MONITORING_CSV, EVALUATION_CSV)
        ), mock.patch("promel_func.narrate.call_model", return_value=MODEL_REPLY) as mock_call:
            resp = main(_request({"message": "What is a theory of change?"}))

        self.assertEqual(resp.status_code, 200)
        user_prompt = mock_call.call_args.args[1]
        self.assertNotIn("Monitoring records matching filters", user_prompt)
        self.assertIn("general Monitoring, Evaluation and Learning knowledge", user_prompt)
        self.assertEqual(_json(resp)["detected_intent"], "DEFINITION")

    def test_mode_selects_intent(self) -> None:
        with mock.patch(
            "promel_func.HttpAiChat.fetch_sheet_pair", return_value=(MONITORING_CSV, EVALUATION_CSV)
        ), mock.patch("promel_func.narrate.call_model", return_value=MODEL_REPLY):
            resp = main(_request({"message": "Go", "mode": "draft_report"}))

        self.assertEqual(_json(resp)["detected_intent"], "REPORT")

    def test_unparseable_model_output_returns_note(self) -> None:
        with mock.patch(
            "promel_func.HttpAiChat.fetch_sheet_pair", return_value=(MONITORING_CSV, EVALUATION_CSV)
        ), mock.patch("promel_func.narrate.call_model", return_value="Here is my analysis in prose."):
            resp = main(_request({"user_prompt": "Analyse performance"}))

        self.assertEqual(resp.status_code, 200)
        body = _json(resp)
        self.assertTrue(body["success"])
        self.assertEqual(body["reply"], "Here is my analysis in prose.")
        self.assertEqual(body["note"], PARSE_FALLBACK_NOTE)
        self.assertEqual(body["key_findings"], DEFAULT_KEY_FINDINGS)

    def test_sheet_fetch_failure_is_bad_gateway(self) -> None:
        error = SheetFetchError(ENV["PROMEL_MONITORING_CSV_URL"], "Sheet source returned HTTP 404", status_code=404)
        with mock.patch("promel_func.HttpAiChat.fetch_sheet_pair", side_effect=error), mock.patch(
            "promel_func.narrate.call_model"
        ) as mock_call:
            resp = main(_request({"user_prompt": "Explain the trends"}))

        self.assertEqual(resp.status_code, 502)
        body = _json(resp)
        self.assertFalse(body["success"])
        self.assertIn("404", body["message"])
        mock_call.assert_not_called()

    def test_model_failure_propagates_status(self) -> None:
        with mock.patch(
            "promel_func.HttpAiChat.fetch_sheet_pair", return_value=(MONITORING_CSV, EVALUATION_CSV)
        ), mock.patch("promel_func.narrate.call_model", side_effect=ModelCallError(429, "Rate limit reached")):
            resp = main(_request({"user_prompt": "Explain the trends"}))

        self.assertEqual(resp.status_code, 429)
        body = _json(resp)
        self.assertFalse(body["success"])
        self.assertEqual(body["message"], "Rate limit reached")

    def test_unexpected_error_is_500(self) -> None:
        with mock.patch(
            "promel_func.HttpAiChat.fetch_sheet_pair", return_value=(MONITORING_CSV, EVALUATION_CSV)
        ), mock.patch("promel_func.HttpAiChat.generate_summary_artifacts", side_effect=KeyError("boom")):
            resp = main(_request({"user_prompt": "Explain the trends"}))

        self.assertEqual(resp.status_code, 500)
        body = _json(resp)
        self.assertEqual(body["error"], "ProMEL AI backend error (exception)")
        self.assertIn("boom", body["message"])


if __name__ == "__main__":
    unittest.main()
