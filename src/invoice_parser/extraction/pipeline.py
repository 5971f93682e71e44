"""Pipeline orchestrator: provider dispatch, normalization and shaping."""

from __future__ import annotations

import time
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from ..config import LEGACY, ExtractionOptions, resolve_options
from ..domain.schema import LEGACY_INVOICE_KEYS, conform_invoice, conform_label, is_label_payload
from ..errors import ConfigurationError, ExtractionError, PreconditionError, TransportError
from ..logging import get_logger
from ..ocr import TextRecognizer
from ..providers import CancelCheck, Provider, build_providers, check_cancelled, get_provider
from .normalize import decode_content, extract_structured

LOG = get_logger("pipeline")


class ExtractionPipeline:
    """Turn an image buffer into a structured result via a named provider.

    Stages run strictly in sequence (recognition, transport, normalization).
    Errors keep their class and stage tag; anything unexpected raised by an
    adapter is reported as a transport failure with the cause chained.
    """

    def __init__(
        self,
        recognizer: Optional[TextRecognizer] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        providers: Optional[Dict[str, Provider]] = None,
        dotenv_dir: Optional[str] = None,
    ) -> None:
        self.recognizer = recognizer or TextRecognizer()
        self.providers = providers or build_providers(recognizer=self.recognizer, transport=transport)
        self.dotenv_dir = dotenv_dir

    def resolve(
        self,
        provider: str,
        overrides: Optional[Mapping[str, Any]] = None,
        *,
        environ: Optional[Mapping[str, str]] = None,
    ) -> ExtractionOptions:
        return resolve_options(provider, overrides, environ=environ, dotenv_dir=self.dotenv_dir)

    def _prepare(self, image: bytes, provider: str, options: Optional[ExtractionOptions]):
        adapter = get_provider(self.providers, provider)
        if options is None:
            options = self.resolve(provider)
        elif options.provider != provider:
            raise ConfigurationError(
                f"Options were resolved for '{options.provider}', not '{provider}'"
            )
        adapter.validate(options)
        if not image:
            raise PreconditionError("No image data supplied for extraction")
        return adapter, options

    @staticmethod
    async def _call(adapter: Provider, image: bytes, options: ExtractionOptions, cancelled: Optional[CancelCheck]) -> Dict[str, Any]:
        try:
            return await adapter.call(image, options, cancelled=cancelled)
        except ExtractionError:
            raise
        except Exception as exc:
            raise TransportError(f"{adapter.name} provider failed: {exc}") from exc

    @staticmethod
    def _root_keys(provider: str) -> Tuple[str, ...]:
        return LEGACY_INVOICE_KEYS if provider == LEGACY else ()

    @staticmethod
    def _shape(provider: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if is_label_payload(data):
            return conform_label(data)
        if provider == LEGACY:
            # The broad legacy invoice shape is returned as the model wrote it.
            return data
        return conform_invoice(data)

    async def extract(
        self,
        image: bytes,
        provider: str,
        options: Optional[ExtractionOptions] = None,
        *,
        cancelled: Optional[CancelCheck] = None,
    ) -> Dict[str, Any]:
        adapter, options = self._prepare(image, provider, options)
        LOG.info(f"Extraction started provider={provider} model={options.model} bytes={len(image)}")
        t0 = time.perf_counter()

        await check_cancelled(cancelled, "provider call")
        raw = await self._call(adapter, image, options, cancelled)
        t1 = time.perf_counter()

        await check_cancelled(cancelled, "normalization")
        try:
            data = extract_structured(decode_content(raw, extra_keys=self._root_keys(provider)))
        except ExtractionError as exc:
            LOG.error(f"Normalization failed for provider={provider}: {exc.message}")
            raise

        result = self._shape(provider, data)
        LOG.info(
            f"Extraction finished provider={provider} call={t1 - t0:.2f}s "
            f"total={time.perf_counter() - t0:.2f}s keys={len(result)}"
        )
        return result

    async def extract_text(
        self,
        image: bytes,
        options: Optional[ExtractionOptions] = None,
        *,
        cancelled: Optional[CancelCheck] = None,
    ) -> str:
        """Single-shot legacy call returning the model text without parsing."""
        adapter, options = self._prepare(image, LEGACY, options)
        await check_cancelled(cancelled, "provider call")
        raw = await self._call(adapter, image, options, cancelled)
        return decode_content(raw, extra_keys=LEGACY_INVOICE_KEYS)

    async def recognize(self, image: bytes, *, language: Optional[str] = None, verbose: bool = False) -> str:
        if not image:
            raise PreconditionError("No image data supplied for recognition")
        return await self.recognizer.recognize(image, language=language, verbose=verbose)


__all__ = ["ExtractionPipeline"]
