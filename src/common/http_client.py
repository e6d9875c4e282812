"""Shared HTTP helpers used by the registry clients.

Encapsulates timeouts, bounded retries and error mapping so registry modules
avoid duplicating try/except blocks. Failures surface as NetworkFetchError.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Iterator, Optional, Tuple

import requests

from constants import Constants
from common.errors import NetworkFetchError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

_session: Optional[requests.Session] = None


def _get_session() -> requests.Session:
    global _session  # pylint: disable=global-statement
    if _session is None:
        _session = requests.Session()
        _session.headers.update({"User-Agent": "dubpm"})
    return _session


def _backoff(attempt: int) -> None:
    time.sleep(Constants.HTTP_RETRY_BASE_DELAY_SEC * (2 ** attempt))


def robust_get(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    stream: bool = False,
    **kwargs: Any
) -> requests.Response:
    """Perform a GET request with timeout and retries, with DEBUG traces.

    Timeouts, connection errors and 5xx responses are retried up to
    ``Constants.HTTP_RETRY_MAX`` attempts with exponential backoff. Any other
    status code is returned to the caller untouched.

    Raises:
        NetworkFetchError: when all attempts failed (``retryable=True``).
    """
    safe_target = safe_url(url)
    last_exception = None

    for attempt in range(Constants.HTTP_RETRY_MAX):
        if attempt:
            _backoff(attempt - 1)
        with Timer() as t:
            try:
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP request",
                        extra=extra_context(
                            event="http_request",
                            component="http_client",
                            action="GET",
                            target=safe_target,
                            attempt=attempt + 1
                        )
                    )

                response = _get_session().get(
                    url,
                    timeout=Constants.REQUEST_TIMEOUT,
                    headers=headers,
                    stream=stream,
                    **kwargs
                )

                if response.status_code >= 500:
                    last_exception = f"server error {response.status_code}"
                    response.close()
                    if is_debug_enabled(logger):
                        logger.debug(
                            "HTTP server error",
                            extra=extra_context(
                                event="http_response",
                                component="http_client",
                                action="GET",
                                outcome="server_error",
                                status_code=response.status_code,
                                attempt=attempt + 1,
                                target=safe_target
                            )
                        )
                    continue

                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP response ok",
                        extra=extra_context(
                            event="http_response",
                            component="http_client",
                            action="GET",
                            outcome="success",
                            status_code=response.status_code,
                            duration_ms=t.duration_ms(),
                            target=safe_target
                        )
                    )
                return response

            except requests.Timeout:
                last_exception = "timeout"
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP timeout",
                        extra=extra_context(
                            event="http_exception",
                            component="http_client",
                            action="GET",
                            outcome="timeout",
                            attempt=attempt + 1,
                            target=safe_target
                        )
                    )
                continue
            except requests.RequestException as exc:  # includes ConnectionError
                last_exception = str(exc)
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP request exception",
                        extra=extra_context(
                            event="http_exception",
                            component="http_client",
                            action="GET",
                            outcome="request_exception",
                            attempt=attempt + 1,
                            target=safe_target
                        )
                    )
                continue

    raise NetworkFetchError(
        safe_target,
        f"request failed after {Constants.HTTP_RETRY_MAX} attempts: {last_exception}",
        retryable=True,
    )


def get_json(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any
) -> Tuple[int, Optional[Any]]:
    """Perform GET request and parse the JSON body.

    Args:
        url: Target URL
        headers: Optional request headers
        **kwargs: Additional requests.get parameters

    Returns:
        Tuple of (status_code, parsed_json_or_none). The body is only parsed
        for 200 responses.

    Raises:
        NetworkFetchError: on transport failure, or when a 200 body is not JSON.
    """
    response = robust_get(url, headers=headers, **kwargs)
    if response.status_code != 200:
        return response.status_code, None
    try:
        parsed = json.loads(response.text)
    except json.JSONDecodeError as exc:
        raise NetworkFetchError(safe_url(url), f"invalid JSON response: {exc}") from exc
    if is_debug_enabled(logger):
        logger.debug(
            "Parsed JSON response",
            extra=extra_context(
                event="parse",
                component="http_client",
                action="get_json",
                outcome="success",
                status_code=response.status_code,
                target=safe_url(url)
            )
        )
    return response.status_code, parsed


def iter_download(url: str, *, chunk_size: int = Constants.DOWNLOAD_CHUNK_SIZE) -> Iterator[bytes]:
    """Stream the body of ``url`` in chunks.

    Raises:
        NetworkFetchError: for non-200 responses (retryable only for 5xx) or
            when the connection drops mid-transfer.
    """
    response = robust_get(url, stream=True)
    safe_target = safe_url(url)
    try:
        if response.status_code != 200:
            raise NetworkFetchError(safe_target, f"HTTP {response.status_code}", retryable=False)
        try:
            for chunk in response.iter_content(chunk_size=chunk_size):
                if chunk:
                    yield chunk
        except requests.RequestException as exc:
            raise NetworkFetchError(safe_target, f"download interrupted: {exc}", retryable=True) from exc
    finally:
        response.close()
