"""Bridge helpers for invoking :mod:`summarize` from the Azure Function."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence

from .. import summarize
from ..sheet_parser import parse_sheet_text
from .logging_utils import get_json_logger

LOGGER = get_json_logger("promel.summarize_bridge")


def _parse_dataset(text: str, dataset_name: str) -> List[List[str]]:
    """Parse one sheet export and log what arrived."""
    rows = parse_sheet_text(text or "")
    header = [c.strip() for c in rows[0]] if rows else []
    LOGGER.info(
        "Dataset parsed",
        extra={
            "event": "dataset_parsed",
            "dataset": dataset_name,
            "chars": len(text or ""),
            "row_count": max(len(rows) - 1, 0),
            "column_count": len(header),
            "columns": header[:50],
        },
    )
    if not header:
        LOGGER.warning("Dataset has no header row", extra={"event": "dataset_empty", "dataset": dataset_name})
    return rows


def _log_missing_columns(header: Sequence[str], dataset_name: str, expected: Sequence[str]) -> None:
    missing = [name for name in expected if summarize.find_column(header, name) == summarize.COLUMN_NOT_FOUND]
    if missing:
        LOGGER.info(
            "Expected columns absent; related filters match all rows and averages report 0",
            extra={"event": "columns_absent", "dataset": dataset_name, "missing": missing},
        )


def generate_summary_artifacts(
    monitoring_text: str,
    evaluation_text: str,
    filters: Optional[Mapping[str, Any]] = None,
) -> summarize.DatasetSummary:
    """Compute summaries and visuals from the two raw sheet exports."""
    monitoring_rows = _parse_dataset(monitoring_text, "monitoring")
    evaluation_rows = _parse_dataset(evaluation_text, "evaluation")

    result = summarize.compute_summary(monitoring_rows, evaluation_rows, filters)

    _log_missing_columns(
        result.monitoring.header,
        "monitoring",
        list(summarize.MONITORING_FILTER_COLUMNS.values()) + [name for _, name in summarize.MONITORING_RATING_COLUMNS],
    )
    _log_missing_columns(
        result.evaluation.header,
        "evaluation",
        list(summarize.EVALUATION_FILTER_COLUMNS.values())
        + [summarize.EVALUATION_OUTCOME_COLUMN[1], summarize.EVALUATION_IMPACT_COLUMN[1]],
    )

    LOGGER.info(
        "Datasets filtered",
        extra={
            "event": "datasets_filtered",
            "used_filters": result.used_filters,
            "monitoring_loaded": result.monitoring.loaded_rows,
            "monitoring_matched": len(result.monitoring.data),
            "evaluation_loaded": result.evaluation.loaded_rows,
            "evaluation_matched": len(result.evaluation.data),
        },
    )
    LOGGER.info(
        "Visuals computed",
        extra={
            "event": "visuals_done",
            "combined_score_percent": result.visuals.combined_score_percent,
            "combined_distribution": result.visuals.to_dict()["combined_distribution"],
            "summary_chars": len(result.monitoring_summary) + len(result.evaluation_summary),
        },
    )
    return result
