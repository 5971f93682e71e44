"""Instruction text sent to the language model."""

from __future__ import annotations

import enum
import json
from typing import Optional

from ..domain.schema import invoice_template


class PromptMode(str, enum.Enum):
    TEXT = "text"    # OCR already ran; recognized text is embedded
    IMAGE = "image"  # the model receives the image itself


def _render_template() -> str:
    schema = json.dumps(invoice_template(), indent=2)
    return (
        "You are an invoice data extraction engine.\n"
        "\n"
        "Extract invoice data as VALID JSON ONLY.\n"
        "\n"
        f"Schema:\n{schema}\n"
        "\n"
        "Rules:\n"
        "- Output ONLY JSON\n"
        "- No markdown\n"
        "- No explanation\n"
        "- Empty string if missing\n"
        "- Do NOT invent values; copy numbers and text exactly as they appear\n"
    )


INVOICE_PROMPT = _render_template()

IMAGE_INSTRUCTION = "Invoice Image attached. Extract invoice fields and return VALID JSON ONLY."

LEGACY_PROMPT = """You are an OCR and document-understanding expert. Extract every piece of readable text from the provided image with maximum accuracy.

The image may be an **invoice**, **label**, **electronic device**, or **appliance**.
Your output format must automatically adapt as follows:

-------------------------------------------------------
### 1. If the image is an INVOICE:
Return a clean, well-structured JSON object with fields:

{
  "invoice_number": "",
  "invoice_date": "",
  "due_date": "",
  "seller": {
    "name": "",
    "address": "",
    "contact": ""
  },
  "buyer": {
    "name": "",
    "address": "",
    "contact": ""
  },
  "items": [
    {
      "description": "",
      "quantity": "",
      "unit_price": "",
      "amount": ""
    }
  ],
  "subtotal": "",
  "tax": "",
  "total": "",
  "currency": "",
  "additional_notes": ""
}

- If any field is missing in the image, return "" (empty string)
- Do NOT hallucinate any values
- Preserve all numbers exactly as seen

-------------------------------------------------------
### 2. For LABELS or ELECTRONIC DEVICES/APPLIANCES:
Extract all readable text, model number, serial number, power ratings,
certifications, instructions, manufacturer and any warnings or fine print.

Format:
{
"type": "label" | "device",
"text": "<all extracted text>",
"key_fields": {
"model": "",
"serial": "",
"power_rating": "",
"manufacturer": ""
}
}
-------------------------------------------------------
### IMPORTANT RULES
- Extract **all visible text**, even if small or repeated.
- Maintain line breaks where possible.
- Do NOT make assumptions about missing information.
- Do NOT include interpretation, only extraction.
- Return JSON only, without markdown fences.

Now extract the text following the above rules."""


def build_prompt(mode: PromptMode, text: Optional[str] = None) -> str:
    """Return the extraction prompt for ``mode``.

    Text mode ends with a bare ``JSON:`` cue so the completion starts with the
    object itself.
    """
    mode = PromptMode(mode)
    if mode is PromptMode.TEXT:
        return f"{INVOICE_PROMPT}\n\nInvoice Text:\n{text or ''}\n\nJSON:"
    return f"{INVOICE_PROMPT}\n\n{IMAGE_INSTRUCTION}"


__all__ = ["PromptMode", "INVOICE_PROMPT", "IMAGE_INSTRUCTION", "LEGACY_PROMPT", "build_prompt"]
