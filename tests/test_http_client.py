from __future__ import annotations

import json

import httpx
import pytest

from gateway_pipeline.execution.errors import (
    ClientError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    create_error_from_status,
)
from gateway_pipeline.execution.http_client import (
    build_url,
    create_default_headers,
    extract_rate_limit_info,
    http_request,
)
from gateway_pipeline.models.execution import HttpRequest


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_json_response_is_parsed():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["idempotency"] = request.headers.get("Idempotency-Key")
        return httpx.Response(200, json={"items": [1, 2]}, headers={"X-Request-Id": "r1"})

    response = http_request(
        HttpRequest(url="https://api.test/items", params={"q": "x"}),
        idempotency_key="k1",
        client=_client(handler),
    )
    assert response.status == 200
    assert response.data == {"items": [1, 2]}
    assert response.headers["x-request-id"] == "r1"
    assert seen["url"] == "https://api.test/items?q=x"
    assert seen["idempotency"] == "k1"
    assert response.rate_limit is None


def test_post_body_is_sent_as_json():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["content_type"] = request.headers.get("Content-Type")
        return httpx.Response(201, json={"id": 7})

    response = http_request(
        HttpRequest(url="https://api.test/items", method="POST", body={"name": "a"}),
        client=_client(handler),
    )
    assert response.data == {"id": 7}
    assert seen == {"body": {"name": "a"}, "content_type": "application/json"}


def test_get_ignores_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["content"] = request.content
        return httpx.Response(200, json=[])

    http_request(HttpRequest(url="https://api.test/items", body={"ignored": True}), client=_client(handler))
    assert seen["content"] == b""


def test_body_decoding_by_content_type():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/empty":
            return httpx.Response(204)
        if request.url.path == "/text":
            return httpx.Response(200, text="hello", headers={"Content-Type": "text/plain"})
        return httpx.Response(200, content=b'{"a": 1}')

    client = _client(handler)
    assert http_request(HttpRequest(url="https://api.test/empty"), client=client).data is None
    assert http_request(HttpRequest(url="https://api.test/text"), client=client).data == "hello"
    assert http_request(HttpRequest(url="https://api.test/sniff"), client=client).data == {"a": 1}


def test_status_errors_are_classified():
    def handler(request: httpx.Request) -> httpx.Response:
        status = int(request.url.path.strip("/"))
        if status == 429:
            return httpx.Response(429, headers={"Retry-After": "2"})
        return httpx.Response(status, json={"message": f"failed {status}"})

    client = _client(handler)
    with pytest.raises(RateLimitError) as rate:
        http_request(HttpRequest(url="https://api.test/429"), client=client)
    assert rate.value.retry_after_ms == 2000

    with pytest.raises(ServerError) as server:
        http_request(HttpRequest(url="https://api.test/502"), client=client)
    assert server.value.status_code == 502
    assert server.value.message == "failed 502"

    with pytest.raises(ClientError) as client_error:
        http_request(HttpRequest(url="https://api.test/404"), client=client)
    assert client_error.value.response_body == {"message": "failed 404"}
    assert not client_error.value.retryable


@pytest.mark.parametrize("status", [400, 409, 429, 500, 503])
def test_status_classification_matches_error_factory(status):
    client = _client(lambda request: httpx.Response(status, json={"message": "nope"}))
    with pytest.raises(Exception) as excinfo:
        http_request(HttpRequest(url="https://api.test/x"), client=client)
    expected = create_error_from_status(status, "nope")
    assert type(excinfo.value) is type(expected)
    assert excinfo.value.code == expected.code
    assert excinfo.value.retryable == expected.retryable


def test_transport_failures_are_classified():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    def stall(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(NetworkError):
        http_request(HttpRequest(url="https://api.test/x"), client=_client(refuse))
    with pytest.raises(RequestTimeoutError) as timeout:
        http_request(HttpRequest(url="https://api.test/x", timeoutMs=250), client=_client(stall))
    assert timeout.value.timeout_ms == 250


def test_rate_limit_headers():
    info = extract_rate_limit_info(
        {"X-RateLimit-Limit": "100", "X-RateLimit-Remaining": "5", "X-RateLimit-Reset": "1700000000"}
    )
    assert info.limit == 100
    assert info.remaining == 5
    assert info.reset == 1700000000000
    assert extract_rate_limit_info({"Content-Type": "application/json"}) is None


def test_build_url_and_default_headers():
    assert build_url("https://a.test/x?y=1", {"page": 2, "skip": None, "flag": True}) == (
        "https://a.test/x?y=1&page=2&flag=true"
    )
    assert build_url("https://a.test/x", {}) == "https://a.test/x"
    headers = create_default_headers("secret", {"X-Tenant": "t1"})
    assert headers["Authorization"] == "Bearer secret"
    assert headers["X-Tenant"] == "t1"
