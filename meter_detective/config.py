from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


class LLMConfig(BaseModel):
    """Settings for the reasoning engine (any OpenAI-compatible endpoint)."""

    name: str | None = Field(
        None,
        description="Human-friendly name for the provider; used for logging",
    )
    model: str | None = Field(
        "gpt-4o",
        description="LLM model identifier; the value of model_env takes precedence when set",
    )
    model_env: str | None = Field(
        "METER_DETECTIVE_MODEL",
        description="Environment variable with the model identifier",
    )
    temperature: float = Field(
        0.0,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for the analysis call",
    )
    max_output_tokens: int = Field(
        4096,
        gt=0,
        description="Maximum number of tokens returned by the provider",
    )
    api_key: str | None = Field(
        None,
        description="Explicit API key; if omitted the key is read from api_key_env",
    )
    api_key_env: str | None = Field(
        "OPENAI_API_KEY",
        description="Environment variable with the API key",
    )
    base_url: str | None = Field(
        None,
        description="Optional override for the API base URL",
    )
    base_url_env: str | None = Field(
        None,
        description="Environment variable name for the API base URL",
    )
    organization: str | None = Field(
        None,
        description="Optional OpenAI organization identifier",
    )
    request_timeout: int = Field(
        180,
        gt=0,
        description="Timeout in seconds for the analysis request",
    )
    reasoning_enabled: bool = Field(
        True,
        description="Include a reasoning effort hint when calling the provider",
    )
    reasoning_effort: str = Field(
        "high",
        description="Reasoning effort hint sent when reasoning_enabled is set",
    )
    http_referer: str | None = Field(
        None,
        description="HTTP Referer header sent for OpenRouter app attribution",
    )
    x_title: str | None = Field(
        None,
        description="X-Title header sent for OpenRouter app attribution",
    )

    @model_validator(mode="after")
    def _ensure_required_fields(self) -> "LLMConfig":
        if not self.model and not self.model_env:
            raise ValueError("LLM provider must define 'model' or 'model_env'")
        if not self.api_key and not self.api_key_env:
            raise ValueError("LLM provider must define 'api_key' or 'api_key_env'")
        return self

    @field_validator("reasoning_effort")
    @classmethod
    def _validate_effort(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"low", "medium", "high"}:
            raise ValueError("reasoning_effort must be one of: low, medium, high")
        return normalized

    @property
    def display_name(self) -> str:
        return self.name or "reasoning-engine"

    def resolve_api_key(self) -> str | None:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env) or None
        return None

    def resolve_model(self) -> str | None:
        if self.model_env:
            from_env = os.environ.get(self.model_env)
            if from_env:
                return from_env
        return self.model or None

    def resolve_base_url(self) -> str | None:
        if self.base_url:
            return self.base_url
        if self.base_url_env:
            return os.environ.get(self.base_url_env) or None
        return None


class AppConfig(BaseModel):
    llm: LLMConfig = Field(default_factory=LLMConfig)
    sample_limit: int = Field(
        60,
        ge=1,
        le=500,
        description="Number of leading rows of each spreadsheet embedded in the request",
    )
    sheet_index: int = Field(
        0,
        ge=0,
        description="0-based index of the worksheet read from each upload",
    )
    response_language: str = Field(
        "English",
        description="Language the engine should use for reasoning and summary",
    )

    @field_validator("response_language")
    @classmethod
    def _validate_language(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("response_language must not be empty")
        return value


def load_config(path: str | Path) -> AppConfig:
    """Load configuration from a YAML file and return a validated object."""

    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)

    if data is None:
        msg = f"Configuration file is empty: {config_path}"
        raise ValueError(msg)

    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc
