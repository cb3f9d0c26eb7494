#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
summarize.py
Filters monitoring / evaluation sheet rows and produces the numbers the dashboard
and the narrative prompt are built from.

Implements:
- Row filter: exact-match criteria against named columns. Header names are matched
  case-insensitively; a criterion whose column is missing never excludes rows.
- Column averages over cells that parse as finite numbers. A missing column and a
  column with no numeric cells both average to 0 but keep distinct statuses.
- KPI percentages: rating average (1-5) rescaled to 0-100, clamped, rounded half-up.
- Distributions: each row's own mean over the rating columns it has values for.
    * mean >= 4  -> good
    * mean <= 2  -> poor
    * otherwise  -> watch
  Rows without any usable rating are counted nowhere.
- Evaluation rows are classified by the overall performance rating column
  (fuzzy-matched); without one, by the mean of the outcome and impact ratings.
- Bounded text digests for the language-model prompt, with fixed sentinel
  sentences for "no sheet loaded" and "no matching records".
"""

import argparse
import json
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .sheet_parser import parse_sheet_text, split_header

COLUMN_NOT_FOUND = -1

FILTER_KEYS = ("project", "period", "location")

MONITORING_FILTER_COLUMNS: Dict[str, str] = {
    "project": "project name",
    "period": "reporting period",
    "location": "province / district / location",
}

EVALUATION_FILTER_COLUMNS: Dict[str, str] = {
    "project": "project name",
    "period": "reporting period",
}

# (KPI label, lower-cased header name)
MONITORING_RATING_COLUMNS: List[Tuple[str, str]] = [
    ("Activity Implementation", "activity implementation on schedule"),
    ("Budget Utilisation", "budget utilisation as planned"),
    ("Staff Capacity", "staff capacity and availability"),
    ("Community Participation", "community participation"),
    ("Stakeholder Coordination", "coordination with stakeholders"),
]

EVALUATION_OUTCOME_COLUMN = ("Outcome Achievement", "outcome achievement rating")
EVALUATION_IMPACT_COLUMN = ("Impact", "impact rating")
EVALUATION_PERFORMANCE_LABEL = "Overall Performance"

# (entry label, header keywords; the first header containing any keyword wins)
MONITORING_ENTRY_FIELDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("Date", ("date", "timestamp")),
    ("Achievement", ("achievement",)),
    ("Challenge", ("challenge",)),
    ("Action", ("action", "next step")),
]

EVALUATION_ENTRY_FIELDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("Phase", ("phase",)),
    ("Outcome", ("outcome",)),
    ("Impact", ("impact",)),
]

BENEFICIARY_KEYWORDS = ("beneficiar",)

RATING_MAX = 5.0
GOOD_THRESHOLD = 4.0
POOR_THRESHOLD = 2.0
RECENT_ENTRY_LIMIT = 5
ENTRY_FIELD_MAX_CHARS = 160

NO_MONITORING_SHEET = "No monitoring sheet is loaded, so no monitoring data is available."
NO_MONITORING_MATCHES = "No monitoring records match the selected filters."
NO_EVALUATION_SHEET = "No evaluation sheet is loaded, so no evaluation data is available."
NO_EVALUATION_MATCHES = "No evaluation records match the selected filters."

# ---------------------- Types ----------------------

class AverageStatus(str, Enum):
    OK = "ok"
    COLUMN_NOT_FOUND = "column_not_found"
    NO_NUMERIC_VALUES = "no_numeric_values"


@dataclass(frozen=True)
class ColumnAverage:
    value: float
    status: AverageStatus
    count: int = 0

    @property
    def found(self) -> bool:
        return self.status is not AverageStatus.COLUMN_NOT_FOUND


@dataclass
class SheetTable:
    """Filtered rows; ``loaded_rows`` counts non-blank rows before the criteria."""
    header: List[str]
    data: List[List[str]]
    loaded_rows: int = 0


@dataclass
class KpiScore:
    label: str
    percent: int


@dataclass
class Distribution:
    good: int = 0
    watch: int = 0
    poor: int = 0

    def __add__(self, other: "Distribution") -> "Distribution":
        return Distribution(
            good=self.good + other.good,
            watch=self.watch + other.watch,
            poor=self.poor + other.poor,
        )

    @property
    def total(self) -> int:
        return self.good + self.watch + self.poor


@dataclass
class Visuals:
    kpi_scores: List[KpiScore] = field(default_factory=list)
    distribution: Distribution = field(default_factory=Distribution)
    combined_score_percent: int = 0
    combined_distribution: Distribution = field(default_factory=Distribution)
    evaluation_distribution: Distribution = field(default_factory=Distribution)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DatasetSummary:
    """Everything computed from one pair of sheets for one request."""
    used_filters: Dict[str, str]
    monitoring: SheetTable
    evaluation: SheetTable
    monitoring_summary: str
    evaluation_summary: str
    visuals: Visuals
    generated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meta": {
                "used_filters": dict(self.used_filters),
                "monitoring_loaded": self.monitoring.loaded_rows,
                "evaluation_loaded": self.evaluation.loaded_rows,
                "monitoring_records_used": len(self.monitoring.data),
                "evaluation_records_used": len(self.evaluation.data),
                "generated_at": self.generated_at,
            },
            "monitoring_summary": self.monitoring_summary,
            "evaluation_summary": self.evaluation_summary,
            "visuals": self.visuals.to_dict(),
        }

# ---------------------- Helpers ----------------------

def safe_float(x, default=0.0) -> float:
    try:
        f = float(x)
        if not np.isfinite(f):
            return default
        return f
    except Exception:
        return default

def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))

def _cell(row: Sequence[str], idx: int) -> str:
    if idx < 0 or idx >= len(row):
        return ""
    return row[idx]

def column_values(data: Sequence[Sequence[str]], idx: int) -> List[str]:
    return [_cell(row, idx) for row in data]

def to_numeric(values: Iterable[str], *, thousands: bool = False) -> pd.Series:
    """Finite numbers as floats; anything else becomes NaN."""
    s = pd.Series(list(values), dtype="object")
    if s.empty:
        return pd.Series(dtype="float64")
    s = s.astype(str).str.strip()
    if thousands:
        s = s.str.replace(",", "", regex=False)
    nums = pd.to_numeric(s, errors="coerce").astype("float64")
    return nums.where(np.isfinite(nums))

def normalize_criteria(filters: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    filters = filters or {}
    out: Dict[str, str] = {}
    for key in FILTER_KEYS:
        value = filters.get(key)
        out[key] = "" if value is None else str(value).strip()
    return out

# ---------------------- Column lookup ----------------------

def find_column(header: Sequence[str], name: str) -> int:
    """Index of the header equal to ``name`` ignoring case, else COLUMN_NOT_FOUND."""
    target = (name or "").strip().lower()
    for idx, h in enumerate(header):
        if str(h).strip().lower() == target:
            return idx
    return COLUMN_NOT_FOUND

def find_column_containing(header: Sequence[str], keywords: Sequence[str]) -> int:
    for idx, h in enumerate(header):
        lowered = str(h).strip().lower()
        if any(k in lowered for k in keywords):
            return idx
    return COLUMN_NOT_FOUND

def find_performance_column(header: Sequence[str]) -> int:
    """
    Fuzzy lookup of the overall performance rating column:
      1) a header with ("overall" or "performance") and "rating"
      2) otherwise the first header with "rating" that is not the outcome or
         impact rating, which feed the per-row fallback instead
    """
    lowered = [str(h).strip().lower() for h in header]
    for idx, h in enumerate(lowered):
        if ("overall" in h or "performance" in h) and "rating" in h:
            return idx
    component_ratings = {EVALUATION_OUTCOME_COLUMN[1], EVALUATION_IMPACT_COLUMN[1]}
    for idx, h in enumerate(lowered):
        if "rating" in h and h not in component_ratings:
            return idx
    return COLUMN_NOT_FOUND

# ---------------------- Row filter ----------------------

def _is_blank(row: Sequence[str]) -> bool:
    return all(not str(c).strip() for c in row)

def filter_rows(
    rows: Sequence[Sequence[str]],
    criteria: Optional[Mapping[str, Any]],
    profile: Mapping[str, str],
) -> SheetTable:
    """
    First row is the header. Drops blank rows, then keeps rows whose cell under
    each profile column equals the non-empty criterion (case-sensitive, trimmed).
    """
    header, body = split_header([list(r) for r in rows])
    data = [r for r in body if not _is_blank(r)]
    loaded = len(data)

    wanted = normalize_criteria(criteria)
    checks: List[Tuple[int, str]] = []
    for key, column_name in profile.items():
        value = wanted.get(key, "")
        if not value:
            continue
        idx = find_column(header, column_name)
        if idx == COLUMN_NOT_FOUND:
            # absent column: criterion matches everything
            continue
        checks.append((idx, value))

    if checks:
        data = [r for r in data if all(_cell(r, idx).strip() == value for idx, value in checks)]

    return SheetTable(header=header, data=data, loaded_rows=loaded)

# ---------------------- Aggregation ----------------------

def average_at(data: Sequence[Sequence[str]], idx: int) -> ColumnAverage:
    if idx == COLUMN_NOT_FOUND:
        return ColumnAverage(0.0, AverageStatus.COLUMN_NOT_FOUND)
    nums = to_numeric(column_values(data, idx)).dropna()
    if nums.empty:
        return ColumnAverage(0.0, AverageStatus.NO_NUMERIC_VALUES)
    return ColumnAverage(float(nums.mean()), AverageStatus.OK, int(nums.size))

def column_average(header: Sequence[str], data: Sequence[Sequence[str]], column_name: str) -> ColumnAverage:
    return average_at(data, find_column(header, column_name))

def average(header: Sequence[str], data: Sequence[Sequence[str]], column_name: str) -> float:
    return column_average(header, data, column_name).value

def percent_from_rating(avg: Any, max_rating: float = RATING_MAX) -> int:
    value = safe_float(avg)
    if value == 0 or max_rating <= 0:
        return 0
    pct = min(100.0, max(0.0, value / float(max_rating) * 100.0))
    return round_half_up(pct)

def positive_mean_percent(kpis: Iterable[KpiScore]) -> int:
    """Mean of the KPI percents above zero; 0 when none are available."""
    positives = [k.percent for k in kpis if k.percent > 0]
    if not positives:
        return 0
    return round_half_up(sum(positives) / len(positives))

def _row_means(data: Sequence[Sequence[str]], indices: Sequence[int]) -> pd.Series:
    cols = []
    for idx in indices:
        if idx != COLUMN_NOT_FOUND and idx not in cols:
            cols.append(idx)
    frame = pd.DataFrame(
        {idx: to_numeric(column_values(data, idx)).to_numpy() for idx in cols},
        index=range(len(data)),
    )
    if frame.empty:
        return pd.Series(np.nan, index=range(len(data)), dtype="float64")
    return frame.mean(axis=1, skipna=True)

def bucket_counts(row_means: pd.Series) -> Distribution:
    usable = row_means.dropna()
    good = int((usable >= GOOD_THRESHOLD).sum())
    poor = int((usable <= POOR_THRESHOLD).sum())
    return Distribution(good=good, watch=int(usable.size) - good - poor, poor=poor)

def row_distribution(
    header: Sequence[str],
    data: Sequence[Sequence[str]],
    column_names: Sequence[str],
) -> Distribution:
    indices = [find_column(header, name) for name in column_names]
    return bucket_counts(_row_means(data, indices))

def evaluation_distribution(header: Sequence[str], data: Sequence[Sequence[str]]) -> Distribution:
    perf_idx = find_performance_column(header)
    if perf_idx != COLUMN_NOT_FOUND:
        return bucket_counts(_row_means(data, [perf_idx]))
    return row_distribution(header, data, [EVALUATION_OUTCOME_COLUMN[1], EVALUATION_IMPACT_COLUMN[1]])

def beneficiaries_total(header: Sequence[str], data: Sequence[Sequence[str]]) -> Optional[float]:
    idx = find_column_containing(header, BENEFICIARY_KEYWORDS)
    if idx == COLUMN_NOT_FOUND:
        return None
    return float(to_numeric(column_values(data, idx), thousands=True).sum())

def _evaluation_ratings(header: Sequence[str], data: Sequence[Sequence[str]]) -> List[Tuple[str, ColumnAverage]]:
    return [
        (EVALUATION_OUTCOME_COLUMN[0], column_average(header, data, EVALUATION_OUTCOME_COLUMN[1])),
        (EVALUATION_IMPACT_COLUMN[0], column_average(header, data, EVALUATION_IMPACT_COLUMN[1])),
        (EVALUATION_PERFORMANCE_LABEL, average_at(data, find_performance_column(header))),
    ]

def _monitoring_ratings(header: Sequence[str], data: Sequence[Sequence[str]]) -> List[Tuple[str, ColumnAverage]]:
    return [(label, column_average(header, data, name)) for label, name in MONITORING_RATING_COLUMNS]

def _kpis(ratings: Sequence[Tuple[str, ColumnAverage]]) -> List[KpiScore]:
    return [KpiScore(label=label, percent=percent_from_rating(avg.value)) for label, avg in ratings]

def monitoring_visuals(table: SheetTable) -> Visuals:
    kpis = _kpis(_monitoring_ratings(table.header, table.data))
    dist = row_distribution(table.header, table.data, [name for _, name in MONITORING_RATING_COLUMNS])
    return Visuals(
        kpi_scores=kpis,
        distribution=dist,
        combined_score_percent=positive_mean_percent(kpis),
        combined_distribution=dist,
    )

def evaluation_visuals(table: SheetTable) -> Visuals:
    kpis = _kpis(_evaluation_ratings(table.header, table.data))
    dist = evaluation_distribution(table.header, table.data)
    return Visuals(
        kpi_scores=kpis,
        distribution=dist,
        combined_score_percent=positive_mean_percent(kpis),
        combined_distribution=dist,
        evaluation_distribution=dist,
    )

def combine_visuals(monitoring: Visuals, evaluation: Visuals) -> Visuals:
    kpis = list(monitoring.kpi_scores) + list(evaluation.kpi_scores)
    return Visuals(
        kpi_scores=kpis,
        distribution=monitoring.distribution,
        combined_score_percent=positive_mean_percent(kpis),
        combined_distribution=monitoring.distribution + evaluation.distribution,
        evaluation_distribution=evaluation.distribution,
    )

# ---------------------- Summary text ----------------------

def _fmt_total(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"

def _clip(text: str, limit: int = ENTRY_FIELD_MAX_CHARS) -> str:
    text = " ".join(str(text).split())
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"

def _recent_entries(data: Sequence[Sequence[str]], fields: Sequence[Tuple[str, int]]) -> List[str]:
    recent = list(data[-RECENT_ENTRY_LIMIT:])[::-1]
    lines = []
    for number, row in enumerate(recent, 1):
        parts = []
        for label, idx in fields:
            value = _cell(row, idx).strip()
            if value:
                parts.append(f"{label}: {_clip(value)}")
        lines.append(f"{number}. " + (" | ".join(parts) if parts else "(no details recorded)"))
    return lines

def _compose(
    table: SheetTable,
    *,
    dataset: str,
    ratings: Sequence[Tuple[str, ColumnAverage]],
    fields: Sequence[Tuple[str, int]],
    no_sheet: str,
    no_matches: str,
) -> str:
    if not table.header or table.loaded_rows == 0:
        return no_sheet
    if not table.data:
        return no_matches

    lines = [f"{dataset} records matching filters: {len(table.data)}"]
    total = beneficiaries_total(table.header, table.data)
    if total is not None:
        lines.append(f"Total beneficiaries reached: {_fmt_total(total)}")
    lines.append("Average ratings (1-5):")
    for label, avg in ratings:
        lines.append(f"- {label}: {avg.value:.2f}")
    lines.append(f"Most recent entries (latest first, up to {RECENT_ENTRY_LIMIT}):")
    lines.extend(_recent_entries(table.data, fields))
    return "\n".join(lines)

def compose_monitoring_summary(table: SheetTable) -> str:
    fields = [(label, find_column_containing(table.header, keys)) for label, keys in MONITORING_ENTRY_FIELDS]
    return _compose(
        table,
        dataset="Monitoring",
        ratings=_monitoring_ratings(table.header, table.data),
        fields=fields,
        no_sheet=NO_MONITORING_SHEET,
        no_matches=NO_MONITORING_MATCHES,
    )

def compose_evaluation_summary(table: SheetTable) -> str:
    fields = [(label, find_column_containing(table.header, keys)) for label, keys in EVALUATION_ENTRY_FIELDS]
    fields.append(("Performance", find_performance_column(table.header)))
    return _compose(
        table,
        dataset="Evaluation",
        ratings=_evaluation_ratings(table.header, table.data),
        fields=fields,
        no_sheet=NO_EVALUATION_SHEET,
        no_matches=NO_EVALUATION_MATCHES,
    )

# ---------------------- Main ----------------------

def compute_summary(
    monitoring_rows: Sequence[Sequence[str]],
    evaluation_rows: Sequence[Sequence[str]],
    filters: Optional[Mapping[str, Any]] = None,
) -> DatasetSummary:
    """Filter both datasets with the same criteria and derive text + visuals."""
    criteria = normalize_criteria(filters)
    monitoring = filter_rows(monitoring_rows, criteria, MONITORING_FILTER_COLUMNS)
    evaluation = filter_rows(evaluation_rows, criteria, EVALUATION_FILTER_COLUMNS)
    visuals = combine_visuals(monitoring_visuals(monitoring), evaluation_visuals(evaluation))
    return DatasetSummary(
        used_filters=criteria,
        monitoring=monitoring,
        evaluation=evaluation,
        monitoring_summary=compose_monitoring_summary(monitoring),
        evaluation_summary=compose_evaluation_summary(evaluation),
        visuals=visuals,
        generated_at=datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ"),
    )

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Summarize monitoring/evaluation CSV exports into JSON.")
    ap.add_argument("--monitoring-csv", required=True, help="Path to the monitoring sheet CSV export.")
    ap.add_argument("--evaluation-csv", required=True, help="Path to the evaluation sheet CSV export.")
    ap.add_argument("--project", default="", help="Exact project name to keep.")
    ap.add_argument("--period", default="", help="Exact reporting period to keep.")
    ap.add_argument("--location", default="", help="Exact province / district / location to keep (monitoring only).")
    return ap.parse_args(argv)

def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    with open(args.monitoring_csv, "r", encoding="utf-8") as f:
        monitoring_rows = parse_sheet_text(f.read())
    with open(args.evaluation_csv, "r", encoding="utf-8") as f:
        evaluation_rows = parse_sheet_text(f.read())

    summary = compute_summary(
        monitoring_rows,
        evaluation_rows,
        {"project": args.project, "period": args.period, "location": args.location},
    )
    print(json.dumps(summary.to_dict(), indent=2, ensure_ascii=False))
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
