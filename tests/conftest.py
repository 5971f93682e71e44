from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

ENV_NAMES = (
    "OCR_LANGUAGE",
    "OLLAMA_LOCAL_URL",
    "OLLAMA_CLOUD_URL",
    "OLLAMA_API_KEY",
    "GOOGLE_API_KEY",
    "OLLAMA_MODEL",
    "GEMINI_MODEL",
    "LEGACY_MODEL",
    "LLM_TIMEOUT",
    "MULTIMODAL_FALLBACK",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


class FakeRecognizer:
    def __init__(self, text: str = "", *, ready: bool = True) -> None:
        self.text = text
        self.ready = ready
        self.calls: List[Dict[str, Any]] = []

    def warm_up(self) -> bool:
        self.ready = True
        return True

    async def recognize(self, image: bytes, *, language: Optional[str] = None, verbose: bool = False, progress=None) -> str:
        self.calls.append({"bytes": len(image), "language": language, "verbose": verbose})
        return self.text


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: List[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)

    def bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


def generate_reply(text: str, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"model": "gemma3", "response": text, "done": True})

    return handler


@pytest.fixture
def fake_recognizer():
    return FakeRecognizer("Invoice #123, Total: 45.00")
