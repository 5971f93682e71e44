import logging
import os
import sys
from typing import Optional, Union


ROOT_NAME = "invoice_parser"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _coerce_level(value: Union[str, int, None]) -> int:
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    if isinstance(value, int):
        return value
    return logging.INFO


def _root() -> logging.Logger:
    """Configure the package logger once; children propagate to it.

    - Honors LOG_LEVEL (default INFO) and LOG_FILE (optional path).
    - Writes to stderr so stdout stays clean for CLI JSON output.
    """
    root = logging.getLogger(ROOT_NAME)
    if getattr(root, "_invoice_parser_configured", False):
        return root

    level = _coerce_level(os.environ.get("LOG_LEVEL", "INFO"))
    root.setLevel(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(formatter)
    root.addHandler(sh)

    # Optional log file (appends)
    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
            fh.setFormatter(formatter)
            root.addHandler(fh)
        except OSError:
            root.warning("LOG_FILE could not be opened; continuing without file logging")

    root.propagate = False
    setattr(root, "_invoice_parser_configured", True)
    return root


def get_logger(name: str) -> logging.Logger:
    """Return ``invoice_parser.<name>``, configuring the package logger on first use."""
    _root()
    return logging.getLogger(f"{ROOT_NAME}.{name}")


def set_level(level: Union[str, int, None]) -> int:
    """Override the package log level at runtime (CLI ``--verbose``/``--log-level``)."""
    resolved = _coerce_level(level)
    _root().setLevel(resolved)
    return resolved


__all__ = ["get_logger", "set_level", "ROOT_NAME"]
