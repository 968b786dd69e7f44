from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest
from openai import APIError

from meter_detective.config import LLMConfig
from meter_detective.errors import ConfigurationError, TransportError
from meter_detective.llm_client import LLMClient
from meter_detective.models import AnalysisInput, CaseDetails, RowRecord
from meter_detective.prompt_builder import build_analysis_request


def _response(content, finish_reason="stop"):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
    )


def _api_error(message: str) -> APIError:
    request = httpx.Request("POST", "https://api.example.invalid/v1/chat/completions")
    return APIError(message, request, body=None)


class _StubCompletions:
    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _stub_client(*responses):
    completions = _StubCompletions(*responses)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


@pytest.fixture()
def request_(llm_config):
    analysis_input = AnalysisInput(
        case=CaseDetails(cause="Gear slipped", discovery_date="2024-03-15"),
        electricity_rows=(RowRecord.from_raw({"Date": "01/2024", "kWh": 100}),),
        production_rows=(RowRecord.from_raw({"Date": "01/2024", "Qty": 50}),),
    )
    return build_analysis_request(analysis_input, llm_config)


def test_submit_sends_schema_constrained_request(llm_config, request_):
    client, completions = _stub_client(_response('{"a": 1}'))
    engine = LLMClient(llm_config, client=client)

    assert engine.submit(request_) == '{"a": 1}'

    [call] = completions.calls
    assert call["model"] == "test-model"
    assert call["messages"] == request_.messages
    assert call["response_format"]["type"] == "json_schema"
    assert call["response_format"]["json_schema"]["schema"] is request_.response_schema
    assert call["response_format"]["json_schema"]["strict"] is True
    assert call["extra_body"] == {"reasoning": {"effort": "high"}}
    assert call["timeout"] == llm_config.request_timeout


def test_submit_returns_none_for_empty_content(llm_config, request_):
    client, _ = _stub_client(_response("   "))
    assert LLMClient(llm_config, client=client).submit(request_) is None


def test_submit_returns_none_without_choices(llm_config, request_):
    client, _ = _stub_client(SimpleNamespace(choices=[], usage=None))
    assert LLMClient(llm_config, client=client).submit(request_) is None


def test_truncated_response_is_still_returned(llm_config, request_):
    client, _ = _stub_client(_response('{"failureStartMonth": "02/20', finish_reason="length"))
    assert LLMClient(llm_config, client=client).submit(request_) == '{"failureStartMonth": "02/20'


def test_reasoning_hint_dropped_when_unsupported(llm_config, request_):
    client, completions = _stub_client(
        _api_error("Unsupported parameter: 'reasoning'"),
        _response("{}"),
    )
    assert LLMClient(llm_config, client=client).submit(request_) == "{}"
    assert "extra_body" in completions.calls[0]
    assert "extra_body" not in completions.calls[1]


def test_json_schema_downgraded_when_unsupported(llm_config, request_):
    client, completions = _stub_client(
        _api_error("response_format json_schema is not supported by this model"),
        _response("{}"),
    )
    assert LLMClient(llm_config, client=client).submit(request_) == "{}"
    assert completions.calls[1]["response_format"] == {"type": "json_object"}


def test_other_api_errors_become_transport_errors(llm_config, request_):
    client, completions = _stub_client(_api_error("Rate limit exceeded"))
    with pytest.raises(TransportError, match="Rate limit"):
        LLMClient(llm_config, client=client).submit(request_)
    assert len(completions.calls) == 1


def test_unexpected_errors_become_transport_errors(llm_config, request_):
    client, _ = _stub_client(ConnectionError("connection reset"))
    with pytest.raises(TransportError, match="connection reset"):
        LLMClient(llm_config, client=client).submit(request_)


def test_reasoning_disabled_in_config(request_):
    conf = LLMConfig(api_key="k", model="m", model_env=None, reasoning_enabled=False)
    client, completions = _stub_client(_response("{}"))
    LLMClient(conf, client=client).submit(request_)
    assert "extra_body" not in completions.calls[0]


def test_missing_key_fails_before_client_creation(monkeypatch):
    monkeypatch.delenv("METER_TEST_MISSING_KEY", raising=False)
    conf = LLMConfig(api_key_env="METER_TEST_MISSING_KEY", model="m", model_env=None)
    with pytest.raises(ConfigurationError):
        LLMClient(conf)


def test_model_from_environment_wins(monkeypatch):
    monkeypatch.setenv("METER_TEST_MODEL", "env-model")
    conf = LLMConfig(api_key="k", model="config-model", model_env="METER_TEST_MODEL")
    client, _ = _stub_client()
    assert LLMClient(conf, client=client).model_name == "env-model"
