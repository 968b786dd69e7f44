from __future__ import annotations

import copy
import json
import logging
import re
from dataclasses import dataclass
from textwrap import dedent
from typing import Any, Dict, List, Sequence

from .config import LLMConfig
from .errors import ConfigurationError
from .models import AnalysisInput, AnomalyType, RowRecord

LOGGER = logging.getLogger(__name__)

DEFAULT_SAMPLE_LIMIT = 60
SCHEMA_NAME = "meter_failure_analysis"
_NOT_PROVIDED = "not provided"

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "failureStartMonth": {
            "type": "string",
            "description": "Month and year the failure began, e.g. '05/2023'",
        },
        "confidenceScore": {
            "type": "number",
            "description": "Confidence in the estimate, 0-100",
        },
        "reasoning": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Short, easy to read bullet points explaining the analysis",
        },
        "anomalyType": {
            "type": "string",
            "enum": [member.value for member in AnomalyType],
            "description": "Shape of the anomaly",
        },
        "summary": {
            "type": "string",
            "description": "Executive summary focused on the failure period and its cause",
        },
    },
    "required": ["failureStartMonth", "confidenceScore", "reasoning", "anomalyType", "summary"],
    "additionalProperties": False,
}


@dataclass(frozen=True)
class AnalysisRequest:
    """Everything the reasoning engine needs for one analysis call."""

    messages: List[Dict[str, str]]
    response_schema: Dict[str, Any]
    schema_name: str
    electricity_sample_size: int
    production_sample_size: int


def _sample_rows(rows: Sequence[RowRecord], limit: int) -> List[Dict[str, Any]]:
    return [row.to_json_dict() for row in rows[:limit]]


def _encode(value: str) -> str:
    """JSON-encode user text so quotes and braces stay inert inside the prompt."""

    text = (value or "").strip()
    return json.dumps(text or _NOT_PROVIDED, ensure_ascii=False)


def build_analysis_request(
    analysis_input: AnalysisInput,
    llm_config: LLMConfig,
    *,
    sample_limit: int = DEFAULT_SAMPLE_LIMIT,
    response_language: str = "English",
) -> AnalysisRequest:
    """Compose the chat messages and output schema for the failure-onset analysis.

    Raises ConfigurationError when no API key is available, before any other work.
    Only the first ``sample_limit`` rows of each spreadsheet are embedded.
    """

    if not llm_config.resolve_api_key():
        source = llm_config.api_key_env or "api_key"
        raise ConfigurationError(
            f"API key for the reasoning engine is not configured (set {source})"
        )
    if sample_limit < 1:
        raise ValueError("sample_limit must be 1 or greater")

    electricity_sample = _sample_rows(analysis_input.electricity_rows, sample_limit)
    production_sample = _sample_rows(analysis_input.production_rows, sample_limit)
    case = analysis_input.case

    system_prompt = dedent(
        """
        You are a world-class statistician and electrical engineer specialised in meter data
        analysis and anomaly detection. Your task is to determine in which month the meter or
        its accessories started to malfunction, using engineering and statistical reasoning.
        Always reply in {language}. Respond only with valid JSON that matches the required schema.

        Required JSON schema (all fields mandatory):
        {
          "failureStartMonth": "MM/YYYY",
          "confidenceScore": number between 0 and 100,
          "reasoning": ["text"],
          "anomalyType": "DROP" | "SPIKE" | "ERRATIC" | "NORMAL",
          "summary": "text"
        }

        Think step by step:
        1. Establish the normal relationship between electricity usage and production output.
        2. Find the point where the relationship starts to diverge, e.g. output stays the same
           while recorded usage falls (DROP) or the readings swing irregularly (ERRATIC).
        3. Work backwards from the discovery date to locate the start of the divergence.
        4. Check that the pattern is consistent with the confirmed failure cause (for example a
           slipping gear makes readings decline gradually or vanish).

        Response requirements:
        - State the month/year the failure started as precisely as possible.
        - Write the reasoning as short bullet points that are easy to understand.
        - Base the confidence percentage on how clear the pattern in the data is.
        """
    ).strip()
    system_prompt = system_prompt.replace("{language}", response_language)

    data_prompt = dedent(
        """
        Case details (JSON-encoded text):
        1. Confirmed failure cause (ground truth, the meter really failed): {cause}
        2. Discovery date: {discovery_date}
        3. Fix / replacement date (readings return to normal after this date): {fix_date}
        4. Additional information: {additional_info}

        5. Electricity usage data, first {electricity_count} rows (trend sample):
        {electricity_json}

        6. Production output data, first {production_count} rows (dependent variable):
        {production_json}
        """
    ).strip()

    replacements = {
        "{cause}": _encode(case.cause),
        "{discovery_date}": _encode(case.discovery_date),
        "{fix_date}": _encode(case.fix_date),
        "{additional_info}": _encode(case.additional_info),
        "{electricity_count}": str(len(electricity_sample)),
        "{production_count}": str(len(production_sample)),
        "{electricity_json}": json.dumps(electricity_sample, ensure_ascii=False),
        "{production_json}": json.dumps(production_sample, ensure_ascii=False),
    }
    # Single pass so placeholders inside substituted data are never expanded.
    data_prompt = _fill_template(data_prompt, replacements)

    LOGGER.debug(
        "Built analysis request with %d electricity and %d production rows",
        len(electricity_sample),
        len(production_sample),
    )

    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": data_prompt},
    ]
    return AnalysisRequest(
        messages=messages,
        response_schema=copy.deepcopy(RESPONSE_SCHEMA),
        schema_name=SCHEMA_NAME,
        electricity_sample_size=len(electricity_sample),
        production_sample_size=len(production_sample),
    )


def _fill_template(template: str, replacements: Dict[str, str]) -> str:
    pattern = re.compile("|".join(re.escape(key) for key in replacements))
    return pattern.sub(lambda match: replacements[match.group(0)], template)
