"""Interchangeable inference backends sharing one adapter contract."""

from __future__ import annotations

from typing import Dict, Optional

import httpx

from ..config import PROVIDER_NAMES
from ..errors import UnknownProviderError
from ..ocr import TextRecognizer
from .base import CancelCheck, Provider, check_cancelled
from .gemini import FallbackPolicy, MultimodalProvider, NoFallback, OcrTextFallback
from .ollama import CloudHttpProvider, LegacySingleShotProvider, LocalHttpProvider


def build_providers(
    *,
    recognizer: Optional[TextRecognizer] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Provider]:
    """Create one adapter per provider name, sharing the recognizer."""
    local = LocalHttpProvider(recognizer=recognizer, transport=transport)
    return {
        local.name: local,
        CloudHttpProvider.name: CloudHttpProvider(recognizer=recognizer, transport=transport),
        MultimodalProvider.name: MultimodalProvider(recognizer=recognizer, fallback_provider=local),
        LegacySingleShotProvider.name: LegacySingleShotProvider(recognizer=recognizer, transport=transport),
    }


def get_provider(providers: Dict[str, Provider], name: str) -> Provider:
    try:
        return providers[name]
    except (KeyError, TypeError):
        raise UnknownProviderError(name, PROVIDER_NAMES) from None


__all__ = [
    "CancelCheck",
    "Provider",
    "check_cancelled",
    "FallbackPolicy",
    "NoFallback",
    "OcrTextFallback",
    "MultimodalProvider",
    "LocalHttpProvider",
    "CloudHttpProvider",
    "LegacySingleShotProvider",
    "build_providers",
    "get_provider",
]
