"""Merge the electricity and production row sequences into one series.

The two uploads have no fixed schema, so the role of each column is inferred
per row by ordered rule lists. The first rule that yields a label wins.
Rows are paired by position; anything past the shorter sequence is dropped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from .models import AlignedPoint, CellValue, ChartPoint, RowRecord

LOGGER = logging.getLogger(__name__)

PERIOD_KEYWORDS = ("date", "month")

ColumnSelector = Callable[[RowRecord, Optional[str]], Optional[str]]


@dataclass(frozen=True)
class InferenceRule:
    name: str
    select: ColumnSelector


def _label_mentions_period(row: RowRecord, excluding: str | None) -> str | None:
    for label in row.labels:
        lowered = label.lower()
        if any(keyword in lowered for keyword in PERIOD_KEYWORDS):
            return label
    return None


def _first_declared_column(row: RowRecord, excluding: str | None) -> str | None:
    return row.labels[0] if row.labels else None


def _first_numeric_column(row: RowRecord, excluding: str | None) -> str | None:
    for label, cell in row.items():
        if label == excluding:
            continue
        if cell.is_numeric:
            return label
    return None


def _second_declared_column(row: RowRecord, excluding: str | None) -> str | None:
    labels = row.labels
    return labels[1] if len(labels) > 1 else None


PERIOD_COLUMN_RULES: Tuple[InferenceRule, ...] = (
    InferenceRule("label mentions date or month", _label_mentions_period),
    InferenceRule("first declared column", _first_declared_column),
)

NUMERIC_COLUMN_RULES: Tuple[InferenceRule, ...] = (
    InferenceRule("first numeric column", _first_numeric_column),
)

VALUE_FALLBACK_RULES: Tuple[InferenceRule, ...] = (
    InferenceRule("second declared column", _second_declared_column),
)


def _apply_rules(
    rules: Sequence[InferenceRule], row: RowRecord, excluding: str | None = None
) -> str | None:
    for rule in rules:
        label = rule.select(row, excluding)
        if label is not None:
            return label
    return None


def infer_period_column(row: RowRecord) -> str | None:
    """Return the label holding the period (date/month) of the row."""

    return _apply_rules(PERIOD_COLUMN_RULES, row)


def infer_numeric_column(row: RowRecord, excluding: str | None = None) -> str | None:
    """Return the first label other than ``excluding`` whose value is numeric."""

    return _apply_rules(NUMERIC_COLUMN_RULES, row, excluding)


def fallback_value_column(row: RowRecord) -> str | None:
    return _apply_rules(VALUE_FALLBACK_RULES, row)


def infer_value_column(row: RowRecord, excluding: str | None = None) -> str | None:
    return infer_numeric_column(row, excluding) or fallback_value_column(row)


def to_number(cell: CellValue | None) -> float | int:
    if cell is None:
        return 0
    number = cell.as_number()
    return 0 if number is None else number


def stringify(cell: CellValue | None) -> str:
    return "" if cell is None else cell.as_text()


def align_pair(electricity: RowRecord, production: RowRecord) -> AlignedPoint:
    period_label = infer_period_column(electricity)
    usage_label = infer_value_column(electricity, excluding=period_label)
    output_label = infer_value_column(production, excluding=infer_period_column(production))

    return AlignedPoint(
        period=stringify(electricity.get(period_label)) if period_label else "",
        usage=to_number(electricity.get(usage_label)) if usage_label else 0,
        output=to_number(production.get(output_label)) if output_label else 0,
    )


def align_series(
    electricity_rows: Sequence[RowRecord],
    production_rows: Sequence[RowRecord],
) -> List[AlignedPoint]:
    """Pair rows by position into AlignedPoints.

    The result has ``min(len(electricity_rows), len(production_rows))`` points.
    Column roles are inferred independently for every row.
    """

    count = min(len(electricity_rows), len(production_rows))
    dropped = max(len(electricity_rows), len(production_rows)) - count
    if dropped:
        LOGGER.debug(
            "Dropping %d unmatched rows (electricity=%d, production=%d)",
            dropped,
            len(electricity_rows),
            len(production_rows),
        )

    return [align_pair(electricity_rows[i], production_rows[i]) for i in range(count)]


_MONTH_FIRST_RE = re.compile(r"^(?P<month>\d{1,2})[/.-](?P<year>\d{4})$")
_YEAR_FIRST_RE = re.compile(r"^(?P<year>\d{4})[/.-](?P<month>\d{1,2})(?:[/.-]\d{1,2})?(?:[ T].*)?$")


def period_key(period: str) -> Tuple[int, int] | str:
    """Reduce a period label to (year, month) so "02/2024" matches "2024-02-01".

    Labels in neither MM/YYYY nor ISO date form are compared as stripped text.
    """

    text = period.strip()
    match = _MONTH_FIRST_RE.match(text) or _YEAR_FIRST_RE.match(text)
    if match:
        month = int(match.group("month"))
        if 1 <= month <= 12:
            return int(match.group("year")), month
    return text


def chart_points(
    points: Sequence[AlignedPoint],
    failure_start_month: str | None = None,
) -> List[ChartPoint]:
    """Annotate points for charting; points from the failure start month on are flagged."""

    marker = period_key(failure_start_month) if failure_start_month else ""
    after_failure = False
    annotated: List[ChartPoint] = []
    for point in points:
        if marker and period_key(point.period) == marker:
            after_failure = True
        annotated.append(
            ChartPoint(
                month=point.period,
                usage=point.usage,
                production=point.output,
                is_after_failure=after_failure,
            )
        )
    return annotated
