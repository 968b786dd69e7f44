from __future__ import annotations

import logging
from typing import Any, Dict, Protocol

from openai import APIError, OpenAI

from .config import LLMConfig
from .errors import ConfigurationError, TransportError
from .prompt_builder import AnalysisRequest

LOGGER = logging.getLogger(__name__)


class ReasoningEngine(Protocol):
    """Anything that can answer an AnalysisRequest with raw text."""

    def submit(self, request: AnalysisRequest) -> str | None:
        """Return the raw text payload; raise TransportError on failure."""


def _is_unsupported_parameter_error(error: BaseException, parameter: str) -> bool:
    """Heuristic to detect when a provider rejects a request parameter."""

    message = str(error).lower()
    if parameter not in message:
        return False

    keywords = ("unsupported", "unknown", "not allowed", "invalid", "cannot", "not support")
    return any(keyword in message for keyword in keywords)


class LLMClient:
    """OpenAI chat-completions client issuing one schema-constrained analysis call."""

    def __init__(self, conf: LLMConfig, client: Any | None = None) -> None:
        self._conf = conf

        api_key = conf.resolve_api_key()
        if not api_key:
            raise ConfigurationError(
                f"API key for '{conf.display_name}' is not configured "
                f"(set {conf.api_key_env or 'api_key'})"
            )
        model_name = conf.resolve_model()
        if not model_name:
            raise ConfigurationError(
                f"Model identifier for '{conf.display_name}' is not configured"
            )
        self._model_name = model_name

        if client is None:
            client_kwargs: Dict[str, Any] = {
                "api_key": api_key,
                "base_url": conf.resolve_base_url(),
                "organization": conf.organization,
            }
            default_headers: Dict[str, str] = {}
            if conf.http_referer:
                default_headers["HTTP-Referer"] = conf.http_referer
            if conf.x_title:
                default_headers["X-Title"] = conf.x_title
            if default_headers:
                client_kwargs["default_headers"] = default_headers
            client = OpenAI(**client_kwargs)
        self._client = client

    @property
    def model_name(self) -> str:
        return self._model_name

    def submit(self, request: AnalysisRequest) -> str | None:
        """Send the request and return the raw message content (or None).

        Parameters the provider rejects (reasoning hint, json_schema output) are
        dropped and the call is re-issued once without them; there is no retry on
        other failures.
        """

        reasoning_enabled = self._conf.reasoning_enabled
        strict_schema = True

        while True:
            api_params = self._build_params(request, reasoning_enabled, strict_schema)
            try:
                response = self._client.chat.completions.create(**api_params)
            except APIError as exc:
                if reasoning_enabled and _is_unsupported_parameter_error(exc, "reasoning"):
                    LOGGER.warning(
                        "Disabling reasoning for provider '%s' due to error: %s",
                        self._conf.display_name,
                        exc,
                    )
                    reasoning_enabled = False
                    continue
                if strict_schema and (
                    _is_unsupported_parameter_error(exc, "json_schema")
                    or _is_unsupported_parameter_error(exc, "response_format")
                ):
                    LOGGER.warning(
                        "Provider '%s' rejected json_schema output; falling back to json_object (%s)",
                        self._conf.display_name,
                        exc,
                    )
                    strict_schema = False
                    continue
                raise TransportError(f"Reasoning engine request failed: {exc}") from exc
            except Exception as exc:
                raise TransportError(f"Reasoning engine request failed: {exc}") from exc
            break

        self._log_usage(response)

        choices = getattr(response, "choices", None)
        if not choices:
            LOGGER.warning("Reasoning engine response does not contain choices")
            return None

        choice = choices[0]
        content = (choice.message.content or "").strip()
        finish_reason = getattr(choice, "finish_reason", None)
        if finish_reason and finish_reason != "stop":
            LOGGER.warning(
                "Reasoning engine response ended with finish_reason=%s (%d chars)",
                finish_reason,
                len(content),
            )
        return content or None

    def _build_params(
        self,
        request: AnalysisRequest,
        reasoning_enabled: bool,
        strict_schema: bool,
    ) -> Dict[str, Any]:
        if strict_schema:
            response_format: Dict[str, Any] = {
                "type": "json_schema",
                "json_schema": {
                    "name": request.schema_name,
                    "schema": request.response_schema,
                    "strict": True,
                },
            }
        else:
            response_format = {"type": "json_object"}

        api_params: Dict[str, Any] = {
            "model": self._model_name,
            "messages": [msg.copy() for msg in request.messages],
            "temperature": self._conf.temperature,
            "max_tokens": self._conf.max_output_tokens,
            "response_format": response_format,
            "timeout": self._conf.request_timeout,
        }
        if reasoning_enabled:
            api_params["extra_body"] = {"reasoning": {"effort": self._conf.reasoning_effort}}
        return api_params

    @staticmethod
    def _log_usage(response: Any) -> None:
        usage = getattr(response, "usage", None)
        if not usage:
            return
        LOGGER.debug(
            "Reasoning engine usage: prompt=%s completion=%s total=%s tokens",
            getattr(usage, "prompt_tokens", 0),
            getattr(usage, "completion_tokens", 0),
            getattr(usage, "total_tokens", 0),
        )
