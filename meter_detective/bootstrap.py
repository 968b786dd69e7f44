"""Wiring used by the presentation layer to obtain a ready AnalysisSession."""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

from .config import AppConfig, load_config
from .orchestrator import AnalysisSession

LOGGER = logging.getLogger("meter_detective")


def load_env_files(config_path: Path | None = None) -> None:
    """Load environment variables from .env files."""

    # Load default .env in current working directory if present
    load_dotenv(override=False)

    # Load .env placed next to the config file if it exists
    if config_path is not None:
        config_env = config_path.parent / ".env"
        if config_env.exists():
            load_dotenv(dotenv_path=config_env, override=False)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def create_session(
    config_path: str | Path | None = None,
    *,
    verbose: bool = False,
) -> AnalysisSession:
    """Load environment, logging and configuration, then build a session.

    Without ``config_path`` the defaults of AppConfig are used.
    """

    configure_logging(verbose)

    resolved_path = Path(config_path).expanduser().resolve() if config_path else None
    load_env_files(resolved_path)
    config = load_config(resolved_path) if resolved_path else AppConfig()

    LOGGER.info(
        "Analysis session ready (model=%s, sample_limit=%d, sheet_index=%d)",
        config.llm.resolve_model(),
        config.sample_limit,
        config.sheet_index,
    )
    return AnalysisSession(config)
