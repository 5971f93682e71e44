from __future__ import annotations

from typing import Any, Awaitable, Callable, ClassVar, Dict, Optional

from ..config import ExtractionOptions
from ..errors import ExtractionCancelled, PreconditionError
from ..logging import get_logger
from ..ocr import TextRecognizer

LOG = get_logger("providers")

CancelCheck = Callable[[], Awaitable[bool]]


async def check_cancelled(cancelled: Optional[CancelCheck], boundary: str) -> None:
    """Raise ExtractionCancelled when the caller has gone away."""
    if cancelled is not None and await cancelled():
        LOG.info(f"Request cancelled before {boundary}")
        raise ExtractionCancelled(f"Request cancelled before {boundary}")


class Provider:
    """Adapter contract shared by every inference backend.

    ``call`` returns the provider's raw JSON response; decoding and parsing
    belong to the pipeline.
    """

    name: ClassVar[str] = ""
    uses_ocr: ClassVar[bool] = False

    def __init__(self, *, recognizer: Optional[TextRecognizer] = None) -> None:
        self.recognizer = recognizer

    def validate(self, options: ExtractionOptions) -> None:
        """Fail fast on missing settings; runs before any I/O."""

    async def call(
        self,
        image: bytes,
        options: ExtractionOptions,
        *,
        cancelled: Optional[CancelCheck] = None,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def _recognize(self, image: bytes, options: ExtractionOptions) -> str:
        if not image:
            raise PreconditionError("No image data supplied for extraction")
        if self.recognizer is None:
            self.recognizer = TextRecognizer()
        return await self.recognizer.recognize(
            image, language=options.language, verbose=options.verbose
        )
