"""Recover structured JSON from free-form model output.

Two steps:

1. ``decode_content`` pulls the model's text out of a provider response by
   trying each known response shape in priority order.
2. ``extract_structured`` parses the JSON object embedded in that text with a
   bounded two-attempt strategy: from the first ``{`` to the end, then from
   the first ``{`` to the last ``}``. Nothing beyond that is repaired.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from ..domain.schema import carries_schema_keys
from ..errors import MalformedJsonError, NoJsonFoundError
from ..logging import get_logger

LOG = get_logger("normalize")


# ---------------------------------------------------------------------------
# Response shapes
# ---------------------------------------------------------------------------


def _chat_content(response: Dict[str, Any]) -> Optional[str]:
    message = response.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    return None


def _generate_content(response: Dict[str, Any]) -> Optional[str]:
    value = response.get("response")
    return value if isinstance(value, str) else None


def _candidates_content(response: Dict[str, Any]) -> Optional[str]:
    candidates = response.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    first = candidates[0] if isinstance(candidates[0], dict) else {}
    content = first.get("content")
    if isinstance(content, str):
        return content
    if not isinstance(content, dict):
        return None
    parts = content.get("parts") or []
    texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    return "".join(texts) if texts else None


def _text_content(response: Dict[str, Any]) -> Optional[str]:
    value = response.get("text")
    return value if isinstance(value, str) else None


def _root_content(response: Dict[str, Any]) -> Optional[str]:
    # Providers that already answer with the structured object at the root.
    # A bare envelope (usage, safety feedback, load status) is not a result.
    if not carries_schema_keys(response):
        return None
    return json.dumps(response, ensure_ascii=False)


@dataclass(frozen=True)
class ResponseShape:
    name: str
    decode: Callable[[Dict[str, Any]], Optional[str]]


RESPONSE_SHAPES: Tuple[ResponseShape, ...] = (
    ResponseShape("chat", _chat_content),             # {"message": {"content": ...}}
    ResponseShape("generate", _generate_content),     # {"response": ...}
    ResponseShape("candidates", _candidates_content), # {"candidates": [{"content": {"parts": [...]}}]}
    ResponseShape("text", _text_content),             # {"text": ...}
    ResponseShape("root", _root_content),             # the object itself
)


def decode_content(response: Any, *, extra_keys: Tuple[str, ...] = ()) -> str:
    """Return the model text carried by ``response``.

    ``extra_keys`` widens the root shape to further top-level result keys
    (the broad legacy invoice shape).
    """
    if isinstance(response, str):
        return response
    if not isinstance(response, dict):
        raise NoJsonFoundError(
            "Unrecognized provider response", details={"type": type(response).__name__}
        )
    for shape in RESPONSE_SHAPES:
        content = shape.decode(response)
        if content is not None:
            LOG.debug(f"Decoded provider response as '{shape.name}' ({len(content)} chars)")
            return content
    if extra_keys and carries_schema_keys(response, extra_keys):
        LOG.debug("Decoded provider response as 'root' via extra keys")
        return json.dumps(response, ensure_ascii=False)
    LOG.debug(f"Provider response carried no content (keys: {sorted(response)[:10]})")
    raise NoJsonFoundError("Provider response carried no content")


# ---------------------------------------------------------------------------
# JSON recovery
# ---------------------------------------------------------------------------


def extract_structured(content: Any) -> Dict[str, Any]:
    """Parse the JSON object embedded in ``content``.

    Raises NoJsonFoundError when there is no opening brace at all and
    MalformedJsonError when both parse attempts fail.
    """
    if not isinstance(content, str) or not content:
        raise NoJsonFoundError("No content to parse")
    start = content.find("{")
    if start == -1:
        raise NoJsonFoundError("No JSON object found in model response")

    json_text = content[start:]
    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError:
        end = json_text.rfind("}")
        if end == -1:
            raise MalformedJsonError("Failed to parse JSON from model response", raw=content)
        try:
            parsed = json.loads(json_text[: end + 1])
        except json.JSONDecodeError as exc:
            LOG.debug(f"JSON recovery failed: {exc} (first 200 chars: {content[:200]!r})")
            raise MalformedJsonError(
                "Failed to parse JSON from model response", raw=content, details={"reason": str(exc)}
            ) from exc
        LOG.debug("Parsed JSON after trimming trailing text")

    if not isinstance(parsed, dict):
        raise MalformedJsonError("Model response JSON is not an object", raw=content)
    return parsed


__all__ = ["ResponseShape", "RESPONSE_SHAPES", "decode_content", "extract_structured"]
