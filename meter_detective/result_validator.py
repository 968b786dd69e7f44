from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Mapping
from typing import Any, List, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import EmptyResponseError, MalformedResponseError
from .models import AnalysisResult, AnomalyType

LOGGER = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.0
MAX_CONFIDENCE = 100.0

_CODE_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?(?P<body>.*?)\n?```$", re.DOTALL)


class _ResultPayload(BaseModel):
    """Wire shape of the engine answer; extra keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    failureStartMonth: str
    confidenceScore: float
    reasoning: List[str] = Field(..., min_length=1)
    anomalyType: AnomalyType
    summary: str

    @field_validator("failureStartMonth", "summary")
    @classmethod
    def _non_empty_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must be a non-empty string")
        return value

    @field_validator("confidenceScore", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("must be a number")
        try:
            number = float(value)
        except OverflowError:
            # Integers beyond float range still clamp to the nearest bound.
            number = math.inf if value > 0 else -math.inf
        if math.isnan(number):
            raise ValueError("must be a number")
        clamped = min(max(number, MIN_CONFIDENCE), MAX_CONFIDENCE)
        if clamped != number:
            LOGGER.warning("Clamping confidenceScore %s into [0, 100]", value)
        return clamped

    @field_validator("reasoning", mode="before")
    @classmethod
    def _drop_blank_reasons(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        cleaned = []
        for item in value:
            if isinstance(item, str):
                item = item.strip()
                if not item:
                    continue
            cleaned.append(item)
        return cleaned

    @field_validator("anomalyType", mode="before")
    @classmethod
    def _normalize_anomaly(cls, value: Any) -> AnomalyType:
        if isinstance(value, AnomalyType):
            return value
        if not isinstance(value, str):
            raise ValueError("must be a string")
        try:
            return AnomalyType(value.strip().upper())
        except ValueError:
            LOGGER.warning("Unrecognized anomalyType %r; using ERRATIC", value)
            return AnomalyType.ERRATIC

    def to_result(self) -> AnalysisResult:
        return AnalysisResult(
            failure_start_month=self.failureStartMonth,
            confidence_score=self.confidenceScore,
            reasoning=tuple(self.reasoning),
            anomaly_type=self.anomalyType,
            summary=self.summary,
        )


def _strip_code_fence(text: str) -> str:
    match = _CODE_FENCE_RE.match(text)
    return match.group("body").strip() if match else text


def _describe(exc: PydanticValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        problems.append(f"{location}: {error['msg']}")
    return "; ".join(problems)


def normalize_result(
    payload: Union[Mapping[str, Any], AnalysisResult],
    *,
    raw_payload: str | None = None,
) -> AnalysisResult:
    """Validate a decoded payload (or re-validate a result) into an AnalysisResult."""

    if isinstance(payload, AnalysisResult):
        payload = payload.to_dict()
    if not isinstance(payload, Mapping):
        raise MalformedResponseError(
            f"Reasoning engine returned {type(payload).__name__}, expected a JSON object",
            raw_payload=raw_payload,
        )
    try:
        parsed = _ResultPayload.model_validate(dict(payload))
    except PydanticValidationError as exc:
        raise MalformedResponseError(
            f"Reasoning engine response does not match the expected shape: {_describe(exc)}",
            raw_payload=raw_payload if raw_payload is not None else json.dumps(
                dict(payload), ensure_ascii=False, default=str
            ),
        ) from exc
    return parsed.to_result()


def parse_analysis_result(raw_text: str | None) -> AnalysisResult:
    """Decode and validate the raw text answer of the reasoning engine.

    Raises EmptyResponseError for a missing payload and MalformedResponseError
    (carrying the raw text) when it is not a valid result object.
    """

    if raw_text is None or not raw_text.strip():
        raise EmptyResponseError("Reasoning engine returned an empty response")

    body = _strip_code_fence(raw_text.strip())
    try:
        decoded = json.loads(body)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(
            f"Reasoning engine response is not valid JSON: {exc}",
            raw_payload=raw_text,
        ) from exc

    return normalize_result(decoded, raw_payload=raw_text)
