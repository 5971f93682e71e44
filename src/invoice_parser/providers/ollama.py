"""Ollama-compatible HTTP adapters (local, cloud and the legacy single-shot call)."""

from __future__ import annotations

import base64
import time
from typing import Any, Dict, Optional

import httpx

from ..config import CLOUD, LEGACY, LOCAL, ExtractionOptions
from ..errors import MissingSettingError, PreconditionError, TransportError, TransportTimeoutError
from ..extraction.prompts import LEGACY_PROMPT, PromptMode, build_prompt
from ..logging import get_logger
from ..ocr import TextRecognizer
from .base import CancelCheck, Provider, check_cancelled

LOG = get_logger("providers-ollama")

GENERATE_PATH = "/api/generate"


def generate_endpoint(base_url: str) -> str:
    base = base_url.rstrip("/")
    return base if base.endswith(GENERATE_PATH) else base + GENERATE_PATH


async def post_generate(
    base_url: str,
    body: Dict[str, Any],
    *,
    timeout: float,
    headers: Optional[Dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """POST ``body`` to the generate endpoint and return the decoded JSON.

    Every failure (timeout, connection, non-2xx, non-JSON body, error field)
    surfaces as a TransportError.
    """
    url = generate_endpoint(base_url)
    LOG.info(f"POST {url} model={body.get('model')} timeout={timeout}s")
    t0 = time.perf_counter()
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.post(url, json=body, headers=headers or {})
    except httpx.TimeoutException as exc:
        raise TransportTimeoutError(
            f"Inference request timed out after {timeout}s", details={"url": url}
        ) from exc
    except httpx.HTTPError as exc:
        raise TransportError(f"Inference request failed: {exc}", details={"url": url}) from exc

    dt = time.perf_counter() - t0
    if resp.status_code >= 400:
        LOG.error(f"Inference HTTP {resp.status_code}: {resp.text[:500]}")
        raise TransportError(
            f"Inference endpoint returned HTTP {resp.status_code}",
            details={"url": url, "status": resp.status_code, "body": resp.text[:300]},
        )
    try:
        data = resp.json()
    except ValueError as exc:
        raise TransportError("Inference endpoint returned a non-JSON body", details={"url": url}) from exc
    if isinstance(data, dict) and data.get("error"):
        raise TransportError(f"Inference endpoint error: {data['error']}", details={"url": url})
    LOG.info(f"Inference finished in {dt:.2f}s")
    return data


class OllamaTextProvider(Provider):
    """OCR the image, then send the text-mode prompt to ``/api/generate``."""

    name = LOCAL
    uses_ocr = True

    def __init__(
        self,
        *,
        recognizer: Optional[TextRecognizer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(recognizer=recognizer)
        self.transport = transport

    def _headers(self, options: ExtractionOptions) -> Dict[str, str]:
        return {}

    def validate(self, options: ExtractionOptions) -> None:
        if not options.base_url:
            raise MissingSettingError("Inference base URL", "option base_url or OLLAMA_LOCAL_URL")

    async def call(
        self,
        image: bytes,
        options: ExtractionOptions,
        *,
        cancelled: Optional[CancelCheck] = None,
    ) -> Dict[str, Any]:
        self.validate(options)
        text = await self._recognize(image, options)
        await check_cancelled(cancelled, "transport")
        body = {
            "model": options.model,
            "prompt": build_prompt(PromptMode.TEXT, text),
            "stream": False,
        }
        return await post_generate(
            options.base_url,
            body,
            timeout=options.timeout,
            headers=self._headers(options),
            transport=self.transport,
        )


class LocalHttpProvider(OllamaTextProvider):
    name = LOCAL


class CloudHttpProvider(OllamaTextProvider):
    """Hosted Ollama-compatible server; base URL required, bearer token optional."""

    name = CLOUD

    def validate(self, options: ExtractionOptions) -> None:
        if not options.base_url:
            raise MissingSettingError("Ollama cloud base URL", "option base_url or OLLAMA_CLOUD_URL")

    def _headers(self, options: ExtractionOptions) -> Dict[str, str]:
        if options.api_key:
            return {"Authorization": f"Bearer {options.api_key}"}
        return {}


class LegacySingleShotProvider(Provider):
    """One vision call doing OCR and extraction together.

    The model chooses between the invoice and the label/device shape.
    """

    name = LEGACY

    def __init__(
        self,
        *,
        recognizer: Optional[TextRecognizer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(recognizer=recognizer)
        self.transport = transport

    def validate(self, options: ExtractionOptions) -> None:
        if not options.base_url:
            raise MissingSettingError("Inference base URL", "option base_url or OLLAMA_LOCAL_URL")

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
        body = {
            "model": options.model,
            "prompt": LEGACY_PROMPT,
            "images": [base64.b64encode(image).decode("ascii")],
            "stream": False,
        }
        return await post_generate(options.base_url, body, timeout=options.timeout, transport=self.transport)


__all__ = [
    "GENERATE_PATH",
    "generate_endpoint",
    "post_generate",
    "OllamaTextProvider",
    "LocalHttpProvider",
    "CloudHttpProvider",
    "LegacySingleShotProvider",
]
