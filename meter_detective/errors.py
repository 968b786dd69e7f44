from __future__ import annotations


class AnalysisError(Exception):
    """Base error for the analysis pipeline; also used for transport failures."""


class ValidationError(AnalysisError):
    """Raised when required user input is missing."""


class DecodeError(AnalysisError):
    """Raised when an uploaded spreadsheet cannot be decoded into rows."""


class ConfigurationError(AnalysisError):
    """Raised when the reasoning engine is not configured (e.g. no API key)."""


class EmptyResponseError(AnalysisError):
    """Raised when the reasoning engine returns no textual payload."""


class MalformedResponseError(AnalysisError):
    """Raised when the reasoning engine payload does not match the result shape."""

    def __init__(self, message: str, raw_payload: str | None = None) -> None:
        super().__init__(message)
        self.raw_payload = raw_payload


class TransportError(AnalysisError):
    """Raised when the call to the reasoning engine fails."""


class AnalysisInProgressError(AnalysisError):
    """Raised when an analysis is triggered while another one is running."""
