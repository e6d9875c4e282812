"""Structured logging helpers shared across the resolver, registries and cache.

Records carry their structured fields through ``extra=extra_context(...)`` so
handlers and formatters can pick them up without parsing message text.
"""
from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from constants import Constants

_SENSITIVE_PARAMS = {"token", "access_token", "api_key", "apikey", "key", "secret", "password"}
_CREDENTIALS_RE = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once.

    The level is taken from ``level`` or the ``DUBPM_LOG_LEVEL`` environment
    variable and falls back to INFO.
    """
    global _configured  # pylint: disable=global-statement
    name = (level or os.environ.get(Constants.ENV_LOG_LEVEL) or "INFO").upper()
    numeric = getattr(logging, name, logging.INFO)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    root = logging.getLogger()
    if not _configured:
        logging.basicConfig(level=numeric, format=Constants.LOG_FORMAT)
        _configured = True
    root.setLevel(numeric)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Return an ``extra`` mapping for a log record, without ``None`` values."""
    return {key: value for key, value in fields.items() if value is not None}


def is_debug_enabled(logger: logging.Logger) -> bool:
    """True when DEBUG records of ``logger`` would be emitted."""
    return logger.isEnabledFor(logging.DEBUG)


def safe_url(url: str) -> str:
    """Strip user info and sensitive query parameters from a URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return redact(url)
    netloc = parts.netloc.rsplit("@", 1)[-1]
    query = urlencode(
        [
            (k, "***" if k.lower() in _SENSITIVE_PARAMS else v)
            for k, v in parse_qsl(parts.query, keep_blank_values=True)
        ]
    )
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


def redact(text: str) -> str:
    """Remove embedded credentials (``scheme://user:pass@``) from free text."""
    return _CREDENTIALS_RE.sub(r"\g<scheme>***@", text)


class Timer:
    """Context manager measuring wall time in milliseconds."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, *exc: Any) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> float:
        end = self._end if self._end is not None else time.perf_counter()
        return round((end - self._start) * 1000.0, 3)
