"""Single outbound HTTP call with error classification.

``http_request`` performs one httpx call and either returns an
``HttpResponse`` or raises a classified ``ExecutionError``. Retries and the
circuit breaker live one level up in ``ExecutionService``.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from ..models.execution import DEFAULT_TIMEOUT_MS, HttpMethod, HttpRequest, RateLimitInfo
from .errors import NetworkError, RequestTimeoutError, create_error_from_status
from .retry import parse_retry_after_header

__all__ = [
    "HttpResponse",
    "http_request",
    "extract_rate_limit_info",
    "parse_response_body",
    "build_url",
    "create_default_headers",
]

logger = logging.getLogger(__name__)

# Epoch seconds below this are treated as seconds, above as milliseconds.
_SECONDS_CUTOFF = 10_000_000_000


@dataclass
class HttpResponse:
    status: int
    headers: Dict[str, str]
    data: Any
    duration_ms: int
    retry_after_ms: Optional[int] = None
    rate_limit: Optional[RateLimitInfo] = None


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def _int_header(headers: Mapping[str, str], *names: str) -> Optional[int]:
    for name in names:
        raw = _header(headers, name)
        if raw is None:
            continue
        try:
            return int(raw.strip())
        except ValueError:
            continue
    return None


def extract_rate_limit_info(headers: Mapping[str, str]) -> Optional[RateLimitInfo]:
    """Read ``RateLimit-*`` / ``X-RateLimit-*`` and ``Retry-After`` headers."""
    limit = _int_header(headers, "RateLimit-Limit", "X-RateLimit-Limit")
    remaining = _int_header(headers, "RateLimit-Remaining", "X-RateLimit-Remaining")
    reset = _int_header(headers, "RateLimit-Reset", "X-RateLimit-Reset")
    if reset is not None and reset < _SECONDS_CUTOFF:
        reset *= 1000
    retry_after = parse_retry_after_header(_header(headers, "Retry-After"))
    if limit is None and remaining is None and reset is None and retry_after is None:
        return None
    return RateLimitInfo(limit=limit, remaining=remaining, reset=reset, retryAfterMs=retry_after)


def _is_json_content(content_type: str) -> bool:
    return "application/json" in content_type or "+json" in content_type


def parse_response_body(response: httpx.Response) -> Any:
    """Decode by content type: 204/empty -> None, JSON -> value, text/XML -> str.

    Unknown content types try JSON first and fall back to text.
    """
    if response.status_code == 204 or not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if _is_json_content(content_type):
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return response.text
    if "text/" in content_type or "application/xml" in content_type or "+xml" in content_type:
        return response.text
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text


def _error_message(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    for key in ("message", "error", "error_description"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def http_request(
    request: HttpRequest,
    *,
    timeout_ms: Optional[int] = None,
    idempotency_key: Optional[str] = None,
    client: Optional[httpx.Client] = None,
) -> HttpResponse:
    """Perform one HTTP call.

    Args:
        request: Method, URL, headers, query params and body.
        timeout_ms: Overrides ``request.timeoutMs`` (default 30s).
        idempotency_key: Sent as ``Idempotency-Key``.
        client: Optional ``httpx.Client``; the module-level ``httpx.request``
            is used otherwise.

    Raises:
        RateLimitError: 429 (with ``Retry-After`` when present).
        ServerError: 5xx.
        ClientError: Other 4xx.
        RequestTimeoutError: The call exceeded the timeout.
        NetworkError: Connection-level failures.
    """
    timeout = timeout_ms if timeout_ms is not None else (request.timeoutMs or DEFAULT_TIMEOUT_MS)
    headers = dict(request.headers)
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    content: Optional[bytes] = None
    if request.body is not None and request.method != HttpMethod.GET:
        if _header(headers, "Content-Type") is None:
            headers["Content-Type"] = "application/json"
        if isinstance(request.body, (str, bytes)):
            content = request.body.encode("utf-8") if isinstance(request.body, str) else request.body
        else:
            content = json.dumps(request.body).encode("utf-8")

    kwargs: Dict[str, Any] = {
        "headers": headers,
        "params": request.params or None,
        "content": content,
        "timeout": timeout / 1000,
    }
    started = time.monotonic()
    try:
        if client is not None:
            response = client.request(request.method.value, request.url, **kwargs)
        else:
            response = httpx.request(request.method.value, request.url, **kwargs)
    except httpx.TimeoutException as e:
        raise RequestTimeoutError(timeout, e) from e
    except httpx.RequestError as e:
        raise NetworkError(f"Network error: {e}", e) from e
    duration_ms = int((time.monotonic() - started) * 1000)

    response_headers = dict(response.headers)
    rate_limit = extract_rate_limit_info(response_headers)
    retry_after_ms = rate_limit.retryAfterMs if rate_limit else None

    if response.status_code >= 400:
        body = parse_response_body(response)
        logger.debug("%s %s -> %d", request.method.value, request.url, response.status_code)
        raise create_error_from_status(
            response.status_code, _error_message(body), body, retry_after_ms=retry_after_ms
        )

    return HttpResponse(
        status=response.status_code,
        headers=response_headers,
        data=parse_response_body(response),
        duration_ms=duration_ms,
        retry_after_ms=retry_after_ms,
        rate_limit=rate_limit,
    )


# ---------------- Helpers -----------------


def build_url(base_url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Append ``params`` (None values skipped) to ``base_url``'s query."""
    if not params:
        return base_url
    pairs = [(k, _query_value(v)) for k, v in params.items() if v is not None]
    if not pairs:
        return base_url
    parts = urlsplit(base_url)
    query = "&".join(filter(None, [parts.query, urlencode(pairs)]))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def create_default_headers(
    api_key: Optional[str] = None, additional: Optional[Mapping[str, str]] = None
) -> Dict[str, str]:
    headers = {"Accept": "application/json", "Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    if additional:
        headers.update(additional)
    return headers
