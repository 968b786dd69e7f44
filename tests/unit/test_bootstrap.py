from __future__ import annotations

import os
from pathlib import Path

from meter_detective import bootstrap
from meter_detective.orchestrator import AnalysisSession, AnalysisState


def test_create_session_with_config_and_env_file(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("METER_BOOTSTRAP_KEY", raising=False)
    (tmp_path / "conf").mkdir()
    config_path = tmp_path / "conf" / "config.yaml"
    config_path.write_text(
        "llm:\n  api_key_env: METER_BOOTSTRAP_KEY\n  model: m\n  model_env: null\nsample_limit: 12\n",
        encoding="utf-8",
    )
    (tmp_path / "conf" / ".env").write_text("METER_BOOTSTRAP_KEY=from-dotenv\n", encoding="utf-8")

    try:
        session = bootstrap.create_session(config_path)
        assert session.config.llm.resolve_api_key() == "from-dotenv"
    finally:
        os.environ.pop("METER_BOOTSTRAP_KEY", None)

    assert isinstance(session, AnalysisSession)
    assert session.state is AnalysisState.IDLE
    assert session.config.sample_limit == 12


def test_create_session_defaults(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    session = bootstrap.create_session()
    assert session.state is AnalysisState.IDLE
    assert session.config.sample_limit == 60
