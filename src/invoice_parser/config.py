"""Per-request option resolution.

Options are resolved once per request from explicit overrides, the process
environment and an optional ``.env`` file, in that order of precedence. The
result is immutable and passed explicitly through the pipeline; providers
never read the environment themselves.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from dotenv import dotenv_values

from .errors import ConfigurationError, UnknownProviderError
from .logging import get_logger

LOG = get_logger("config")


LOCAL = "local"
CLOUD = "cloud"
MULTIMODAL = "multimodal"
LEGACY = "legacy"
PROVIDER_NAMES = (LOCAL, CLOUD, MULTIMODAL, LEGACY)

FALLBACK_NONE = "none"
FALLBACK_OCR = "ocr"
FALLBACK_CHOICES = (FALLBACK_NONE, FALLBACK_OCR)

DEFAULT_LANGUAGE = "eng"
DEFAULT_LOCAL_URL = "http://localhost:11434"
DEFAULT_MIME_TYPE = "image/png"
DEFAULT_TIMEOUT = 120.0

DEFAULT_MODELS: Dict[str, str] = {
    LOCAL: "gemma3",
    CLOUD: "gemma3",
    MULTIMODAL: "gemini-2.5-flash",
    LEGACY: "deepseek-ocr",
}

# Environment names per provider; None means the setting has no env source.
_MODEL_ENV = {LOCAL: "OLLAMA_MODEL", CLOUD: "OLLAMA_MODEL", MULTIMODAL: "GEMINI_MODEL", LEGACY: "LEGACY_MODEL"}
_BASE_URL_ENV = {LOCAL: "OLLAMA_LOCAL_URL", CLOUD: "OLLAMA_CLOUD_URL", MULTIMODAL: None, LEGACY: "OLLAMA_LOCAL_URL"}
_BASE_URL_DEFAULT = {LOCAL: DEFAULT_LOCAL_URL, CLOUD: None, MULTIMODAL: None, LEGACY: DEFAULT_LOCAL_URL}
_API_KEY_ENV = {LOCAL: None, CLOUD: "OLLAMA_API_KEY", MULTIMODAL: "GOOGLE_API_KEY", LEGACY: None}

# Upload forms use camelCase; both spellings are accepted.
_ALIASES = {
    "baseUrl": "base_url",
    "apiKey": "api_key",
    "mimeType": "mime_type",
}
_OPTION_KEYS = {"model", "language", "base_url", "api_key", "mime_type", "timeout", "verbose", "fallback"}

_TRUE_STRINGS = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ExtractionOptions:
    provider: str
    model: str
    language: str = DEFAULT_LANGUAGE
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    mime_type: str = DEFAULT_MIME_TYPE
    timeout: float = DEFAULT_TIMEOUT
    verbose: bool = False
    fallback: str = FALLBACK_NONE
    # Options for the OCR fallback path, resolved for the local provider.
    fallback_options: Optional["ExtractionOptions"] = None

    def with_overrides(self, **changes: Any) -> "ExtractionOptions":
        return replace(self, **changes)

    def describe(self) -> Dict[str, Any]:
        """Loggable view; the API key is reduced to a presence flag."""
        return {
            "provider": self.provider,
            "model": self.model,
            "language": self.language,
            "base_url": self.base_url,
            "api_key": bool(self.api_key),
            "mime_type": self.mime_type,
            "timeout": self.timeout,
            "verbose": self.verbose,
            "fallback": self.fallback,
        }


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir."""
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def load_environment(dotenv_dir: Optional[str] = None) -> Dict[str, str]:
    """Return the environment layer: process env over ``.env`` values.

    The ``.env`` file is read without mutating ``os.environ``.
    """
    env: Dict[str, str] = {}
    path = _find_upwards(dotenv_dir or os.getcwd(), ".env")
    if path:
        values = dotenv_values(path)
        env.update({k: v for k, v in values.items() if v is not None})
        LOG.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    env.update(os.environ)
    return env


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_overrides(overrides: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in (overrides or {}).items():
        key = _ALIASES.get(key, key)
        if key not in _OPTION_KEYS:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        if value is None:
            continue
        result[key] = value
    return result


def _coerce_timeout(value: Any) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid timeout: {value!r}") from exc
    if seconds <= 0:
        raise ConfigurationError(f"Timeout must be positive, got {value!r}")
    return seconds


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_STRINGS


def _pick(overrides: Mapping[str, Any], env: Mapping[str, str], key: str, env_name: Optional[str], default: Any) -> Any:
    if key in overrides:
        return overrides[key]
    if env_name:
        from_env = _clean(env.get(env_name))
        if from_env is not None:
            return from_env
    return default


def resolve_options(
    provider: str,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    dotenv_dir: Optional[str] = None,
) -> ExtractionOptions:
    """Build the immutable options for one request.

    ``provider`` must already be a known provider name. Missing required
    settings (cloud base URL, multimodal API key) are not an error here; the
    provider reports them before doing any work.
    """
    if provider not in PROVIDER_NAMES:
        raise UnknownProviderError(provider, PROVIDER_NAMES)

    env = environ if environ is not None else load_environment(dotenv_dir)
    opts = _normalize_overrides(overrides)

    fallback = str(_pick(opts, env, "fallback", "MULTIMODAL_FALLBACK", FALLBACK_NONE)).lower()
    if fallback not in FALLBACK_CHOICES:
        raise ConfigurationError(
            f"Unknown fallback policy '{fallback}' (expected one of: {', '.join(FALLBACK_CHOICES)})"
        )

    options = ExtractionOptions(
        provider=provider,
        model=str(_pick(opts, env, "model", _MODEL_ENV[provider], DEFAULT_MODELS[provider])),
        language=str(_pick(opts, env, "language", "OCR_LANGUAGE", DEFAULT_LANGUAGE)),
        base_url=_clean(_pick(opts, env, "base_url", _BASE_URL_ENV[provider], _BASE_URL_DEFAULT[provider])),
        api_key=_clean(_pick(opts, env, "api_key", _API_KEY_ENV[provider], None)),
        mime_type=str(_pick(opts, env, "mime_type", None, DEFAULT_MIME_TYPE)),
        timeout=_coerce_timeout(_pick(opts, env, "timeout", "LLM_TIMEOUT", DEFAULT_TIMEOUT)),
        verbose=_coerce_bool(_pick(opts, env, "verbose", None, False)),
        fallback=fallback,
    )

    if provider == MULTIMODAL and fallback == FALLBACK_OCR:
        # The fallback talks to the local server; only the shared settings carry over.
        shared = {k: opts[k] for k in ("language", "timeout", "verbose") if k in opts}
        options = replace(options, fallback_options=resolve_options(LOCAL, shared, environ=env))

    LOG.debug(f"Resolved options: {options.describe()}")
    return options
