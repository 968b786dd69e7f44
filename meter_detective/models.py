from __future__ import annotations

import math
import numbers
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class CellKind(str, Enum):
    NUMBER = "number"
    TEXT = "text"
    DATE = "date"


@dataclass(frozen=True, slots=True)
class CellValue:
    """Tagged scalar decoded from a single spreadsheet cell."""

    kind: CellKind
    value: Any  # int/float for NUMBER, str for TEXT and DATE (ISO-8601)

    @classmethod
    def from_raw(cls, value: Any) -> Optional["CellValue"]:
        """Convert a raw decoded cell into a CellValue; blanks return None."""

        if value is None:
            return None
        if isinstance(value, bool):
            return cls(CellKind.TEXT, str(value))
        if isinstance(value, datetime):
            if value != value:  # NaT
                return None
            if value.time() == time(0, 0):
                return cls(CellKind.DATE, value.date().isoformat())
            return cls(CellKind.DATE, value.isoformat(sep=" ", timespec="seconds"))
        if isinstance(value, date):
            return cls(CellKind.DATE, value.isoformat())
        if isinstance(value, numbers.Integral):
            return cls(CellKind.NUMBER, int(value))
        if isinstance(value, numbers.Real):
            number = float(value)
            if math.isnan(number):
                return None
            if math.isinf(number):
                return cls(CellKind.TEXT, str(number))
            if number.is_integer():
                return cls(CellKind.NUMBER, int(number))
            return cls(CellKind.NUMBER, number)

        text = str(value)
        if not text.strip():
            return None
        return cls(CellKind.TEXT, text)

    def as_text(self) -> str:
        return str(self.value)

    def as_number(self) -> float | int | None:
        """Return the numeric reading of the cell, or None when it is not numeric."""

        if self.kind is CellKind.NUMBER:
            return self.value
        if self.kind is CellKind.DATE:
            return None

        text = self.value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        if not math.isfinite(number):
            return None
        return int(number) if number.is_integer() else number

    @property
    def is_numeric(self) -> bool:
        return self.as_number() is not None


class RowRecord(Mapping[str, CellValue]):
    """Immutable mapping of column label -> cell for one decoded spreadsheet row.

    Labels keep the declared (header) order; blank cells are not present.
    """

    __slots__ = ("_cells",)

    def __init__(self, cells: Iterable[Tuple[str, CellValue]] = ()) -> None:
        self._cells: Dict[str, CellValue] = dict(cells)

    @classmethod
    def from_raw(cls, values: Mapping[str, Any]) -> "RowRecord":
        cells = []
        for label, raw in values.items():
            cell = CellValue.from_raw(raw)
            if cell is not None:
                cells.append((str(label), cell))
        return cls(cells)

    def __getitem__(self, label: str) -> CellValue:
        return self._cells[label]

    def __iter__(self) -> Iterator[str]:
        return iter(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def __repr__(self) -> str:
        body = ", ".join(f"{label!r}: {cell.value!r}" for label, cell in self._cells.items())
        return f"RowRecord({{{body}}})"

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(self._cells)

    def to_json_dict(self) -> Dict[str, Any]:
        """Plain dict suitable for ``json.dumps``."""

        return {label: cell.value for label, cell in self._cells.items()}


@dataclass(frozen=True, slots=True)
class AlignedPoint:
    """One merged sample of electricity usage and production output."""

    period: str
    usage: float
    output: float


@dataclass(frozen=True, slots=True)
class ChartPoint:
    """AlignedPoint annotated for the chart collaborator."""

    month: str
    usage: float
    production: float
    is_after_failure: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "usage": self.usage,
            "production": self.production,
            "isAfterFailure": self.is_after_failure,
        }


@dataclass(frozen=True, slots=True)
class CaseDetails:
    """Case metadata typed in by the technician."""

    cause: str = ""
    discovery_date: str = ""
    fix_date: str = ""
    additional_info: str = ""


@dataclass(frozen=True, slots=True)
class UploadedFile:
    filename: str
    content: bytes


@dataclass(frozen=True, slots=True)
class AnalysisInput:
    """Validated case metadata bundled with both decoded row sequences."""

    case: CaseDetails
    electricity_rows: Tuple[RowRecord, ...] = field(default_factory=tuple)
    production_rows: Tuple[RowRecord, ...] = field(default_factory=tuple)


class AnomalyType(str, Enum):
    DROP = "DROP"
    SPIKE = "SPIKE"
    ERRATIC = "ERRATIC"
    NORMAL = "NORMAL"


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Validated answer of the reasoning engine."""

    failure_start_month: str
    confidence_score: float  # clamped to 0..100
    reasoning: Tuple[str, ...]
    anomaly_type: AnomalyType
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        """Return the camelCase wire shape the engine is asked to produce."""

        return {
            "failureStartMonth": self.failure_start_month,
            "confidenceScore": self.confidence_score,
            "reasoning": list(self.reasoning),
            "anomalyType": self.anomaly_type.value,
            "summary": self.summary,
        }
