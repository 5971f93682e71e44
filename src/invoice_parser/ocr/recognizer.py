"""Tesseract-backed text recognition for uploaded image buffers."""

from __future__ import annotations

import asyncio
import io
from typing import Callable, Optional

import pytesseract
from PIL import Image, UnidentifiedImageError

from ..config import DEFAULT_LANGUAGE
from ..errors import PreconditionError, RecognitionError
from ..logging import get_logger

LOG = get_logger("ocr-recognizer")

ProgressSink = Callable[[str, float], None]


def _log_progress(status: str, progress: float) -> None:
    LOG.info(f"[OCR] {status}: {progress:.2f}")


class TextRecognizer:
    """Convert an image buffer into plain text using Tesseract.

    A single instance may be shared by concurrent requests: every call runs
    its own Tesseract subprocess on a worker thread, so no lock is needed.
    Blank or unreadable images yield an empty string, not an error.
    """

    def __init__(self, *, tesseract_cmd: Optional[str] = None, config: str = "") -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.config = config
        self.ready = False
        self.version: Optional[str] = None

    def warm_up(self) -> bool:
        """Probe the Tesseract binary and mark the recognizer ready."""
        try:
            self.version = str(pytesseract.get_tesseract_version())
        except (pytesseract.TesseractNotFoundError, OSError) as exc:
            LOG.error(f"Tesseract is not available: {exc}")
            self.ready = False
            return False
        self.ready = True
        LOG.info(f"Tesseract {self.version} ready")
        return True

    @staticmethod
    def _report(sink: Optional[ProgressSink], status: str, progress: float) -> None:
        if sink is None:
            return
        try:
            sink(status, progress)
        except Exception as exc:
            # Progress telemetry must never affect recognition.
            LOG.debug(f"Progress sink raised {exc.__class__.__name__}: {exc}")

    def _recognize_sync(self, image: bytes, language: str, sink: Optional[ProgressSink]) -> str:
        self._report(sink, "loading image", 0.0)
        try:
            with Image.open(io.BytesIO(image)) as img:
                img.load()
                self._report(sink, "recognizing text", 0.5)
                text = pytesseract.image_to_string(img, lang=language, config=self.config)
        except UnidentifiedImageError as exc:
            raise RecognitionError("Unsupported or corrupt image data", details={"bytes": len(image)}) from exc
        except Image.DecompressionBombError as exc:
            raise RecognitionError(f"Image too large to decode: {exc}", details={"bytes": len(image)}) from exc
        except pytesseract.TesseractNotFoundError as exc:
            raise RecognitionError("Tesseract binary not found") from exc
        except Exception as exc:
            # TesseractError, OSError and any other decoder failure.
            raise RecognitionError(f"OCR processing failed: {exc}", details={"language": language}) from exc
        self._report(sink, "recognizing text", 1.0)
        return text or ""

    async def recognize(
        self,
        image: bytes,
        *,
        language: Optional[str] = None,
        verbose: bool = False,
        progress: Optional[ProgressSink] = None,
    ) -> str:
        if not image:
            raise PreconditionError("Image buffer is empty")
        lang = language or DEFAULT_LANGUAGE
        sink = progress if progress is not None else (_log_progress if verbose else None)
        LOG.debug(f"Running OCR on {len(image)} bytes (lang={lang})")
        text = await asyncio.to_thread(self._recognize_sync, image, lang, sink)
        LOG.info(f"OCR produced {len(text)} characters")
        return text


__all__ = ["TextRecognizer", "ProgressSink"]
