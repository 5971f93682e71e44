"""Invoice and label extraction from images.

OCR (Tesseract) feeds a language model through interchangeable providers:
a local Ollama server, a hosted Ollama-compatible server, Google Gemini with
the raw image, or a legacy single-shot vision call.
"""

__version__ = "0.3.0"

__all__ = [
    "config",
    "errors",
    "logging",
]
