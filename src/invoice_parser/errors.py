"""Error taxonomy for the extraction pipeline.

Every error carries the pipeline stage that produced it so callers can decide
between retrying (transport) and failing fast (precondition, configuration).
"""

from __future__ import annotations

from typing import Any, Dict, Optional


PRECONDITION = "precondition"
CONFIGURATION = "configuration"
RECOGNITION = "recognition"
TRANSPORT = "transport"
NORMALIZATION = "normalization"
CANCELLED = "cancelled"

# Stages reported to HTTP clients as client faults (400).
CLIENT_FAULT_STAGES = frozenset({PRECONDITION, CONFIGURATION})


class ExtractionError(Exception):
    """Base class for all pipeline failures."""

    stage: str = "pipeline"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def as_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "stage": self.stage}


class PreconditionError(ExtractionError):
    stage = PRECONDITION


class ConfigurationError(ExtractionError):
    stage = CONFIGURATION


class UnknownProviderError(ConfigurationError):
    def __init__(self, provider: Any, known: Any) -> None:
        known_list = ", ".join(known)
        super().__init__(
            f"Unknown provider '{provider}' (expected one of: {known_list})",
            details={"provider": provider},
        )
        self.provider = provider


class MissingSettingError(ConfigurationError):
    """A required credential or endpoint was absent from options and environment."""

    def __init__(self, setting: str, hint: str) -> None:
        super().__init__(f"{setting} not provided ({hint})", details={"setting": setting})
        self.setting = setting


class RecognitionError(ExtractionError):
    stage = RECOGNITION


class TransportError(ExtractionError):
    stage = TRANSPORT


class TransportTimeoutError(TransportError):
    pass


class ProviderUnavailableError(TransportError):
    """The provider client library could not be loaded or initialised."""


class NormalizationError(ExtractionError):
    stage = NORMALIZATION


class NoJsonFoundError(NormalizationError):
    pass


class MalformedJsonError(NormalizationError):
    def __init__(self, message: str, *, raw: str = "", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details=details)
        # Kept for manual inspection; never logged in full.
        self.raw = raw


class ExtractionCancelled(ExtractionError):
    stage = CANCELLED


__all__ = [
    "PRECONDITION",
    "CONFIGURATION",
    "RECOGNITION",
    "TRANSPORT",
    "NORMALIZATION",
    "CANCELLED",
    "CLIENT_FAULT_STAGES",
    "ExtractionError",
    "PreconditionError",
    "ConfigurationError",
    "UnknownProviderError",
    "MissingSettingError",
    "RecognitionError",
    "TransportError",
    "TransportTimeoutError",
    "ProviderUnavailableError",
    "NormalizationError",
    "NoJsonFoundError",
    "MalformedJsonError",
    "ExtractionCancelled",
]
