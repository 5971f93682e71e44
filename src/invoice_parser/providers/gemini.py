"""Multimodal adapter: the raw image goes straight to Google Gemini.

When the SDK cannot be used or the call fails in transport, an explicit
fallback policy decides whether to fall back to OCR + text-mode extraction
on the local inference server.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import httpx

from ..config import FALLBACK_NONE, FALLBACK_OCR, MULTIMODAL, ExtractionOptions
from ..errors import (
    ConfigurationError,
    ExtractionError,
    MissingSettingError,
    PreconditionError,
    ProviderUnavailableError,
    TransportError,
    TransportTimeoutError,
)
from ..extraction.prompts import PromptMode, build_prompt
from ..logging import get_logger
from ..ocr import TextRecognizer
from .base import CancelCheck, Provider, check_cancelled
from .ollama import LocalHttpProvider

LOG = get_logger("providers-gemini")

ClientFactory = Callable[[str, float], Any]


def _sdk_client(api_key: str, timeout: float) -> Any:
    try:
        from google import genai
        from google.genai import types as genai_types
    except ImportError as exc:
        raise ProviderUnavailableError("google-genai SDK is not installed") from exc
    try:
        return genai.Client(
            api_key=api_key,
            http_options=genai_types.HttpOptions(timeout=int(timeout * 1000)),
        )
    except Exception as exc:
        raise ProviderUnavailableError(f"Could not create Gemini client: {exc}") from exc


def build_contents(image: bytes, mime_type: str) -> List[Dict[str, Any]]:
    """Inline image part followed by the image-mode instruction."""
    return [
        {"inline_data": {"mime_type": mime_type, "data": image}},
        {"text": build_prompt(PromptMode.IMAGE)},
    ]


def _to_dict(response: Any) -> Dict[str, Any]:
    if isinstance(response, dict):
        return response
    dump = getattr(response, "model_dump", None)
    if callable(dump):
        return dump(mode="json", exclude_none=True)
    text = getattr(response, "text", None)
    return {"text": text} if isinstance(text, str) else {}


# ---------------------------------------------------------------------------
# Fallback policies
# ---------------------------------------------------------------------------


class FallbackPolicy:
    """Decides what happens after a failed multimodal call."""

    name = FALLBACK_NONE
    recoverable: Tuple[Type[ExtractionError], ...] = ()

    def recovers(self, exc: ExtractionError) -> bool:
        return isinstance(exc, self.recoverable) and not isinstance(exc, ConfigurationError)

    async def run(
        self,
        image: bytes,
        options: ExtractionOptions,
        *,
        cancelled: Optional[CancelCheck] = None,
    ) -> Dict[str, Any]:
        raise NotImplementedError


class NoFallback(FallbackPolicy):
    name = FALLBACK_NONE


class OcrTextFallback(FallbackPolicy):
    """Run OCR + text-mode extraction against the local inference server."""

    name = FALLBACK_OCR
    recoverable = (TransportError,)

    def __init__(self, provider: Provider) -> None:
        self.provider = provider

    async def run(
        self,
        image: bytes,
        options: ExtractionOptions,
        *,
        cancelled: Optional[CancelCheck] = None,
    ) -> Dict[str, Any]:
        if options.fallback_options is None:
            raise ConfigurationError("OCR fallback requested without fallback options")
        fallback = options.fallback_options
        LOG.warning(f"Falling back to OCR + text extraction via {fallback.base_url} model={fallback.model}")
        return await self.provider.call(image, fallback, cancelled=cancelled)


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class MultimodalProvider(Provider):
    name = MULTIMODAL

    def __init__(
        self,
        *,
        recognizer: Optional[TextRecognizer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client_factory: Optional[ClientFactory] = None,
        fallback_provider: Optional[Provider] = None,
    ) -> None:
        super().__init__(recognizer=recognizer)
        self.client_factory = client_factory or _sdk_client
        # One SDK client per (api key, timeout).
        self._clients: Dict[Tuple[str, float], Any] = {}
        local = fallback_provider or LocalHttpProvider(recognizer=recognizer, transport=transport)
        self.policies: Dict[str, FallbackPolicy] = {
            FALLBACK_NONE: NoFallback(),
            FALLBACK_OCR: OcrTextFallback(local),
        }

    def validate(self, options: ExtractionOptions) -> None:
        if not options.api_key:
            raise MissingSettingError("Google API key", "option api_key or GOOGLE_API_KEY")

    def _client(self, options: ExtractionOptions) -> Any:
        key = (options.api_key, options.timeout)
        client = self._clients.get(key)
        if client is None:
            client = self.client_factory(options.api_key, options.timeout)
            self._clients[key] = client
        return client

    async def _generate(self, image: bytes, options: ExtractionOptions) -> Dict[str, Any]:
        client = self._client(options)
        contents = build_contents(image, options.mime_type)
        LOG.info(f"Calling Gemini model={options.model} bytes={len(image)} mime={options.mime_type}")
        t0 = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(model=options.model, contents=contents),
                timeout=options.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(f"Gemini request timed out after {options.timeout}s") from exc
        except httpx.TimeoutException as exc:
            raise TransportTimeoutError(f"Gemini request timed out: {exc}") from exc
        except ExtractionError:
            raise
        except Exception as exc:
            # google.genai.errors.APIError and client-side failures alike.
            code = getattr(exc, "code", None)
            raise TransportError(
                f"Gemini request failed: {exc}", details={"status": code} if code else None
            ) from exc
        LOG.info(f"Gemini finished in {time.perf_counter() - t0:.2f}s")
        return _to_dict(response)

    async def call(
        self,
        image: bytes,
        options: ExtractionOptions,
        *,
        cancelled: Optional[CancelCheck] = None,
    ) -> Dict[str, Any]:
        self.validate(options)
        if not image:
            raise PreconditionError("No image data supplied for extraction")
        policy = self.policies.get(options.fallback)
        if policy is None:
            raise ConfigurationError(f"Unknown fallback policy '{options.fallback}'")
        try:
            return await self._generate(image, options)
        except ExtractionError as exc:
            if not policy.recovers(exc):
                raise
            LOG.warning(f"Multimodal call failed ({exc.__class__.__name__}: {exc.message}); applying '{policy.name}' fallback")
            await check_cancelled(cancelled, "fallback")
            return await policy.run(image, options, cancelled=cancelled)


__all__ = ["FallbackPolicy", "NoFallback", "OcrTextFallback", "MultimodalProvider", "build_contents"]
