# Shared pytest fixtures
from __future__ import annotations

import io
import json
from typing import Any

import pandas as pd
import pytest

from meter_detective.config import AppConfig, LLMConfig
from meter_detective.errors import TransportError


def make_excel_bytes(sheets: dict[str, list[list[Any]]]) -> bytes:
    """Build an .xlsx in memory; the first row of each sheet is the header."""

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for sheet, rows in sheets.items():
            df = pd.DataFrame(rows)
            df.to_excel(writer, sheet_name=sheet, header=False, index=False)
    return buffer.getvalue()


def well_formed_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "failureStartMonth": "02/2024",
        "confidenceScore": 87,
        "reasoning": [
            "Production stayed flat while recorded usage fell by 60%",
            "The drop precedes the discovery date by one billing cycle",
        ],
        "anomalyType": "DROP",
        "summary": "Meter under-registers from 02/2024 consistent with a slipping gear",
    }
    payload.update(overrides)
    return payload


class ScriptedEngine:
    """Reasoning engine fake returning scripted payloads in order."""

    def __init__(self, *payloads: Any) -> None:
        self._payloads = list(payloads)
        self.requests: list[Any] = []

    def submit(self, request):
        self.requests.append(request)
        payload = self._payloads.pop(0)
        if isinstance(payload, Exception):
            raise payload
        if isinstance(payload, dict):
            return json.dumps(payload)
        return payload


@pytest.fixture()
def llm_config() -> LLMConfig:
    return LLMConfig(api_key="test-key", model="test-model", model_env=None)


@pytest.fixture()
def app_config(llm_config: LLMConfig) -> AppConfig:
    return AppConfig(llm=llm_config)


@pytest.fixture()
def electricity_xlsx() -> bytes:
    return make_excel_bytes(
        {"Usage": [["Date", "kWh"], ["01/2024", 100], ["02/2024", 40]]}
    )


@pytest.fixture()
def production_xlsx() -> bytes:
    return make_excel_bytes(
        {"Output": [["Date", "Qty"], ["01/2024", 50], ["02/2024", 52]]}
    )


@pytest.fixture()
def transport_failure() -> TransportError:
    return TransportError("Reasoning engine request failed: connection reset")
