from __future__ import annotations

import json

import pytest

from conftest import well_formed_payload
from meter_detective.errors import EmptyResponseError, MalformedResponseError
from meter_detective.models import AnalysisResult, AnomalyType
from meter_detective.result_validator import normalize_result, parse_analysis_result


def _raw(**overrides) -> str:
    return json.dumps(well_formed_payload(**overrides))


def test_well_formed_response_is_returned_unchanged():
    payload = well_formed_payload()
    result = parse_analysis_result(json.dumps(payload))
    assert result.failure_start_month == "02/2024"
    assert result.confidence_score == 87
    assert result.anomaly_type is AnomalyType.DROP
    assert list(result.reasoning) == payload["reasoning"]
    assert result.summary == payload["summary"]
    assert result.to_dict() == payload


@pytest.mark.parametrize("raw", [None, "", "   \n"])
def test_empty_payload(raw):
    with pytest.raises(EmptyResponseError):
        parse_analysis_result(raw)


def test_invalid_json_carries_raw_payload():
    with pytest.raises(MalformedResponseError) as excinfo:
        parse_analysis_result('{"failureStartMonth": "02/2024",')
    assert excinfo.value.raw_payload == '{"failureStartMonth": "02/2024",'


def test_non_object_json_is_malformed():
    with pytest.raises(MalformedResponseError):
        parse_analysis_result('["DROP"]')


def test_missing_anomaly_type_is_rejected():
    payload = well_formed_payload()
    del payload["anomalyType"]
    raw = json.dumps(payload)
    with pytest.raises(MalformedResponseError, match="anomalyType") as excinfo:
        parse_analysis_result(raw)
    assert excinfo.value.raw_payload == raw


def test_unknown_anomaly_type_maps_to_erratic():
    assert parse_analysis_result(_raw(anomalyType="WEIRD")).anomaly_type is AnomalyType.ERRATIC


def test_anomaly_type_is_case_insensitive():
    assert parse_analysis_result(_raw(anomalyType=" spike ")).anomaly_type is AnomalyType.SPIKE


@pytest.mark.parametrize("score, expected", [(150, 100), (-5, 0), (42.5, 42.5), (100, 100), (0, 0)])
def test_confidence_is_clamped(score, expected):
    assert parse_analysis_result(_raw(confidenceScore=score)).confidence_score == expected


@pytest.mark.parametrize("score, expected", [(10**400, 100), (-(10**400), 0)])
def test_confidence_beyond_float_range_is_clamped(score, expected):
    raw = _raw(confidenceScore=score)
    assert str(score) in raw
    assert parse_analysis_result(raw).confidence_score == expected


def test_confidence_nan_is_malformed():
    raw = _raw().replace("87", "NaN")
    with pytest.raises(MalformedResponseError, match="confidenceScore"):
        parse_analysis_result(raw)


@pytest.mark.parametrize("score", ["87", True, None])
def test_confidence_must_be_numeric(score):
    with pytest.raises(MalformedResponseError, match="confidenceScore"):
        parse_analysis_result(_raw(confidenceScore=score))


@pytest.mark.parametrize(
    "field, value",
    [
        ("failureStartMonth", ""),
        ("failureStartMonth", 202402),
        ("summary", "  "),
        ("reasoning", []),
        ("reasoning", ["", "  "]),
        ("reasoning", "just one string"),
        ("reasoning", ["ok", 3]),
        ("anomalyType", None),
    ],
)
def test_off_contract_fields_are_rejected(field, value):
    with pytest.raises(MalformedResponseError, match=field):
        parse_analysis_result(_raw(**{field: value}))


def test_blank_reasons_are_dropped():
    result = parse_analysis_result(_raw(reasoning=["first", "  ", "second "]))
    assert result.reasoning == ("first", "second")


def test_extra_keys_are_ignored():
    result = parse_analysis_result(_raw(debug={"tokens": 5}))
    assert "debug" not in result.to_dict()


def test_markdown_code_fence_is_tolerated():
    raw = "```json\n" + _raw() + "\n```"
    assert parse_analysis_result(raw).anomaly_type is AnomalyType.DROP


def test_normalization_is_idempotent():
    first = parse_analysis_result(_raw(confidenceScore=150, anomalyType="WEIRD"))
    assert normalize_result(first) == first
    assert parse_analysis_result(json.dumps(first.to_dict())) == first


def test_normalize_result_accepts_mapping():
    result = normalize_result(well_formed_payload())
    assert isinstance(result, AnalysisResult)
    assert result.confidence_score == 87
