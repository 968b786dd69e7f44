from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .aligner import align_series, chart_points
from .config import AppConfig, LLMConfig
from .errors import (
    AnalysisError,
    AnalysisInProgressError,
    DecodeError,
    ValidationError,
)
from .llm_client import LLMClient, ReasoningEngine
from .models import (
    AlignedPoint,
    AnalysisInput,
    AnalysisResult,
    CaseDetails,
    ChartPoint,
    RowRecord,
    UploadedFile,
)
from .prompt_builder import build_analysis_request
from .result_validator import parse_analysis_result
from .sheet_loader import load_rows

LOGGER = logging.getLogger(__name__)

MISSING_INPUT_MESSAGE = (
    "Please fill in all required fields: electricity file, production file, "
    "failure cause and discovery date"
)


class AnalysisState(Enum):
    IDLE = "idle"
    VALIDATING_INPUTS = "validating_inputs"
    LOADING_FILES = "loading_files"
    ALIGNING = "aligning"
    BUILDING_REQUEST = "building_request"
    AWAITING_RESPONSE = "awaiting_response"
    VALIDATING_RESULT = "validating_result"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class AnalysisOutcome:
    """What the presentation layer gets back from one analysis run."""

    state: AnalysisState
    result: Optional[AnalysisResult] = None
    points: Tuple[AlignedPoint, ...] = field(default_factory=tuple)
    error: Optional[AnalysisError] = None

    @property
    def succeeded(self) -> bool:
        return self.state is AnalysisState.DONE

    @property
    def message(self) -> str | None:
        return str(self.error) if self.error is not None else None

    def chart_points(self) -> List[ChartPoint]:
        marker = self.result.failure_start_month if self.result else None
        return chart_points(self.points, marker)


def _has_text(value: str | None) -> bool:
    return bool(value and value.strip())


def _has_file(upload: UploadedFile | None) -> bool:
    return upload is not None and bool(upload.content)


class AnalysisSession:
    """Runs one failure-onset analysis at a time for a single user session."""

    def __init__(
        self,
        config: AppConfig | None = None,
        engine: ReasoningEngine | None = None,
        engine_factory: Callable[[LLMConfig], ReasoningEngine] = LLMClient,
    ) -> None:
        self._config = config or AppConfig()
        self._engine = engine
        self._engine_factory = engine_factory
        self._lock = threading.Lock()
        self._state = AnalysisState.IDLE
        self._last_outcome: AnalysisOutcome | None = None

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def state(self) -> AnalysisState:
        return self._state

    @property
    def last_outcome(self) -> AnalysisOutcome | None:
        return self._last_outcome

    def reset(self) -> None:
        with self._lock:
            self._state = AnalysisState.IDLE
            self._last_outcome = None

    def analyze(
        self,
        electricity_file: UploadedFile | None,
        production_file: UploadedFile | None,
        case: CaseDetails,
    ) -> AnalysisOutcome:
        """Run the full pipeline and return a DONE or FAILED outcome.

        Raises AnalysisInProgressError if another analysis is still running.
        """

        if not self._lock.acquire(blocking=False):
            raise AnalysisInProgressError("An analysis is already in progress")
        try:
            self._last_outcome = None
            start_time = time.time()
            try:
                result, points = self._run(electricity_file, production_file, case)
            except AnalysisError as exc:
                LOGGER.warning("Analysis failed during %s: %s", self._state.value, exc)
                outcome = AnalysisOutcome(state=AnalysisState.FAILED, error=exc)
            except Exception as exc:
                LOGGER.exception("Unexpected error during %s", self._state.value)
                error = AnalysisError(f"Analysis failed: {exc}")
                error.__cause__ = exc
                outcome = AnalysisOutcome(state=AnalysisState.FAILED, error=error)
            else:
                outcome = AnalysisOutcome(
                    state=AnalysisState.DONE, result=result, points=tuple(points)
                )
                LOGGER.info(
                    "Analysis complete in %.2fs: failure start %s (%s, confidence %.0f%%)",
                    time.time() - start_time,
                    result.failure_start_month,
                    result.anomaly_type.value,
                    result.confidence_score,
                )
            # Missing input leaves the session idle so the user can re-submit.
            if isinstance(outcome.error, ValidationError):
                self._state = AnalysisState.IDLE
            else:
                self._state = outcome.state
            self._last_outcome = outcome
            return outcome
        finally:
            self._lock.release()

    def _run(
        self,
        electricity_file: UploadedFile | None,
        production_file: UploadedFile | None,
        case: CaseDetails,
    ) -> Tuple[AnalysisResult, List[AlignedPoint]]:
        self._state = AnalysisState.VALIDATING_INPUTS
        if not (
            _has_file(electricity_file)
            and _has_file(production_file)
            and _has_text(case.cause)
            and _has_text(case.discovery_date)
        ):
            raise ValidationError(MISSING_INPUT_MESSAGE)

        self._state = AnalysisState.LOADING_FILES
        electricity_rows, production_rows = self._load_files(electricity_file, production_file)

        self._state = AnalysisState.ALIGNING
        points = align_series(electricity_rows, production_rows)
        LOGGER.info(
            "Aligned %d points from %d electricity and %d production rows",
            len(points),
            len(electricity_rows),
            len(production_rows),
        )

        self._state = AnalysisState.BUILDING_REQUEST
        analysis_input = AnalysisInput(
            case=case,
            electricity_rows=tuple(electricity_rows),
            production_rows=tuple(production_rows),
        )
        request = build_analysis_request(
            analysis_input,
            self._config.llm,
            sample_limit=self._config.sample_limit,
            response_language=self._config.response_language,
        )

        self._state = AnalysisState.AWAITING_RESPONSE
        engine = self._get_engine()
        raw_text = engine.submit(request)

        self._state = AnalysisState.VALIDATING_RESULT
        result = parse_analysis_result(raw_text)
        return result, points

    def _load_files(
        self,
        electricity_file: UploadedFile,
        production_file: UploadedFile,
    ) -> Tuple[List[RowRecord], List[RowRecord]]:
        sheet_index = self._config.sheet_index
        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = {
                "electricity": executor.submit(
                    load_rows, electricity_file, sheet_index=sheet_index
                ),
                "production": executor.submit(
                    load_rows, production_file, sheet_index=sheet_index
                ),
            }
            loaded = {}
            for label, future in futures.items():
                try:
                    loaded[label] = future.result()
                except DecodeError as exc:
                    raise DecodeError(f"{label.capitalize()} file: {exc}") from exc
        return loaded["electricity"], loaded["production"]

    def _get_engine(self) -> ReasoningEngine:
        if self._engine is None:
            self._engine = self._engine_factory(self._config.llm)
        return self._engine
