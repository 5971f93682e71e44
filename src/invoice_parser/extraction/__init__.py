"""Prompt construction and response normalization.

The orchestrator lives in :mod:`invoice_parser.extraction.pipeline`.
"""

from .normalize import RESPONSE_SHAPES, ResponseShape, decode_content, extract_structured
from .prompts import LEGACY_PROMPT, PromptMode, build_prompt

__all__ = [
    "RESPONSE_SHAPES",
    "ResponseShape",
    "decode_content",
    "extract_structured",
    "LEGACY_PROMPT",
    "PromptMode",
    "build_prompt",
]
