from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import httpx

from gateway_pipeline.config import Settings
from gateway_pipeline.execution.circuit_breaker import CircuitBreaker
from gateway_pipeline.execution.service import ExecutionService
from gateway_pipeline.mapping.service import MappingService
from gateway_pipeline.models.execution import (
    ActionDefinition,
    CircuitBreakerConfig,
    CircuitState,
    ConnectionContext,
    ExecutionErrorCode,
    InvocationRequest,
    RetryConfig,
)
from gateway_pipeline.models.mapping import FieldMapping
from gateway_pipeline.models.pagination import PaginationStrategyType, TruncationReason
from gateway_pipeline.models.validation import ValidationIssueCode
from gateway_pipeline.pipeline import GatewayPipeline, build_request_parts

NO_WAIT = RetryConfig(maxAttempts=3, baseDelayMs=0, jitterFactor=0)

CONNECTION = ConnectionContext(
    id="conn-1",
    name="Production",
    tenantId="tenant-1",
    baseUrl="https://api.test/v1",
    headers={"Authorization": "Bearer t0k"},
)

EMAIL_SCHEMA = {
    "type": "object",
    "properties": {
        "data": {
            "type": "object",
            "properties": {"user_email": {"type": "string"}},
            "required": ["user_email"],
        }
    },
    "required": ["data"],
}


class _Api:
    """MockTransport handler: ``responder(request)`` builds each response; every request is kept."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]):
        self.responder = responder
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)


def _json(body: Any, status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status, json=body)


def _action(**overrides: Any) -> ActionDefinition:
    fields: Dict[str, Any] = {
        "id": "act-1",
        "slug": "list-users",
        "name": "List Users",
        "integrationName": "Acme",
        "integrationSlug": "acme",
        "endpointTemplate": "/users",
    }
    fields.update(overrides)
    return ActionDefinition.model_validate(fields)


def _pipeline(
    api: _Api,
    *,
    mapping: Optional[MappingService] = None,
    settings: Optional[Settings] = None,
    breaker: Optional[CircuitBreaker] = None,
    retry: RetryConfig = NO_WAIT,
) -> GatewayPipeline:
    execution = ExecutionService(
        retry,
        circuit_breaker=breaker,
        client=httpx.Client(transport=httpx.MockTransport(api)),
        sleep=lambda seconds: None,
    )
    return GatewayPipeline(
        settings=settings or Settings(_env_file=None),
        mapping_service=mapping,
        execution_service=execution,
    )


def _mapping_service(config: Dict[str, Any], *mappings: FieldMapping) -> MappingService:
    service = MappingService()
    service.update_config("act-1", {"enabled": True, **config})
    for m in mappings:
        service.create_mapping("act-1", m)
    return service


def _m(source: str, target: str, direction: str = "output", **transform) -> FieldMapping:
    return FieldMapping(sourcePath=source, targetPath=target, direction=direction, transformConfig=transform)


# ---------------- Request building -----------------


def test_build_request_parts_for_get_and_post():
    url, query, body = build_request_parts(
        _action(endpointTemplate="/users/{user_id}"), CONNECTION, {"user_id": "a b", "limit": 5, "skip": None}
    )
    assert url == "https://api.test/v1/users/a%20b"
    assert query == {"limit": 5}
    assert body is None

    url, query, body = build_request_parts(
        _action(method="POST", endpointTemplate="https://other.test/notes"), CONNECTION, {"text": "hi"}
    )
    assert url == "https://other.test/notes"
    assert query == {}
    assert body == {"text": "hi"}


def test_nested_query_values_are_json_encoded():
    _, query, _ = build_request_parts(_action(), CONNECTION, {"filter": {"a": 1}, "ids": [1, 2]})
    assert query == {"filter": '{"a":1}', "ids": [1, 2]}


# ---------------- Happy path -----------------


def test_simple_get_invocation():
    api = _Api(_json({"users": [{"id": 1}]}))
    response = _pipeline(api).invoke(_action(), CONNECTION, InvocationRequest(input={"q": "ada"}))

    assert response.success
    assert response.data == {"users": [{"id": 1}]}
    assert response.error is None
    assert response.meta.requestId.startswith("req_")
    assert response.meta.attempts == 1
    assert response.mapping.bypassed and not response.mapping.applied
    assert response.validation.valid
    assert response.pagination is None

    sent = api.requests[0]
    assert str(sent.url) == "https://api.test/v1/users?q=ada"
    assert sent.headers["Authorization"] == "Bearer t0k"


def test_post_sends_remaining_input_as_body():
    api = _Api(_json({"id": 9}, status=201))
    action = _action(method="POST", endpointTemplate="/users/{user_id}/notes")
    response = _pipeline(api).invoke(action, CONNECTION, InvocationRequest(input={"user_id": "u1", "text": "hi"}))

    assert response.success
    sent = api.requests[0]
    assert sent.method == "POST"
    assert sent.url.path == "/v1/users/u1/notes"
    assert json.loads(sent.content) == {"text": "hi"}


def test_output_mapping_and_preamble():
    api = _Api(_json({"data": {"user_email": "a@b.com"}}))
    mapping = _mapping_service({"preserveUnmapped": False}, _m("$.data.user_email", "$.email"))
    action = _action(preambleTemplate="{action_name} from {integration_name} via {connection_name}:")
    response = _pipeline(api, mapping=mapping).invoke(action, CONNECTION)

    assert response.success
    assert response.data == {"email": "a@b.com"}
    assert response.mapping.applied
    assert response.mapping.outputMappingsApplied == 1
    assert response.context == "List Users from Acme via Production:"


def test_input_mapping_renames_before_request():
    api = _Api(_json([]))
    mapping = _mapping_service({"preserveUnmapped": False}, _m("$.query", "$.q", direction="input"))
    response = _pipeline(api, mapping=mapping).invoke(_action(), CONNECTION, InvocationRequest(input={"query": "x"}))
    assert response.success
    assert api.requests[0].url.params["q"] == "x"
    assert response.mapping.inputMappingsApplied == 1


def test_mapping_bypass_returns_raw_data():
    api = _Api(_json({"data": {"user_email": "a@b.com"}}))
    mapping = _mapping_service({"preserveUnmapped": False}, _m("$.data.user_email", "$.email"))
    response = _pipeline(api, mapping=mapping).invoke(
        _action(), CONNECTION, InvocationRequest.model_validate({"mapping": {"bypass": True}})
    )
    assert response.data == {"data": {"user_email": "a@b.com"}}
    assert response.mapping.bypassed


# ---------------- Mapping and validation failures -----------------


def test_fail_mode_input_mapping_stops_before_calling_upstream():
    api = _Api(_json({}))
    mapping = _mapping_service(
        {"failureMode": "fail"}, _m("$.limit", "$.limit", direction="input", coercion={"type": "number"})
    )
    response = _pipeline(api, mapping=mapping).invoke(
        _action(), CONNECTION, InvocationRequest(input={"limit": "many"})
    )
    assert not response.success
    assert response.error.code == ExecutionErrorCode.MAPPING_ERROR
    assert response.mapping.errors
    assert api.requests == []


def test_validation_runs_on_raw_page_before_output_mapping():
    api = _Api(_json({"data": {"user_email": "a@b.com"}}))
    mapping = _mapping_service({"preserveUnmapped": False}, _m("$.data.user_email", "$.email"))
    action = _action(outputSchema=EMAIL_SCHEMA, validationConfig={"mode": "strict"})
    response = _pipeline(api, mapping=mapping).invoke(action, CONNECTION)

    assert response.success
    assert response.validation.valid
    assert response.validation.issueCount == 0
    assert response.data == {"email": "a@b.com"}


def test_strict_validation_failure_is_reported():
    api = _Api(_json({"data": {}}))
    action = _action(outputSchema=EMAIL_SCHEMA, validationConfig={"mode": "strict"})
    response = _pipeline(api).invoke(action, CONNECTION)

    assert not response.success
    assert response.data is None
    assert response.error.code == ExecutionErrorCode.VALIDATION_ERROR
    assert not response.validation.valid
    issue = response.validation.issues[0]
    assert issue.code == ValidationIssueCode.MISSING_REQUIRED_FIELD
    assert issue.path == "$.data.user_email"


def test_warn_mode_returns_data_with_issues():
    api = _Api(_json({"data": {}}))
    action = _action(outputSchema=EMAIL_SCHEMA, validationConfig={"mode": "warn"})
    response = _pipeline(api).invoke(action, CONNECTION)
    assert response.success
    assert response.data == {"data": {}}
    assert response.validation.valid
    assert response.validation.issueCount == 1
    assert response.validation.driftStatus is not None


def test_validation_bypass_and_mode_override():
    action = _action(outputSchema=EMAIL_SCHEMA, validationConfig={"mode": "strict"})

    bypassed = _pipeline(_Api(_json({"data": {}}))).invoke(
        action, CONNECTION, InvocationRequest.model_validate({"validation": {"bypass": True}})
    )
    assert bypassed.success
    assert bypassed.validation.bypassed

    relaxed = _pipeline(_Api(_json({"data": {}}))).invoke(
        action, CONNECTION, InvocationRequest.model_validate({"validation": {"modeOverride": "warn"}})
    )
    assert relaxed.success
    assert relaxed.validation.mode.value == "warn"


# ---------------- Execution failures -----------------


def test_client_error_is_surfaced():
    api = _Api(_json({"message": "not found"}, status=404))
    response = _pipeline(api).invoke(_action(), CONNECTION)
    assert not response.success
    assert response.error.code == ExecutionErrorCode.CLIENT_ERROR
    assert response.error.statusCode == 404
    assert response.error.message == "not found"
    assert response.meta.attempts == 1
    assert response.validation is None


def test_transient_errors_are_retried():
    statuses = [503, 200]
    api = _Api(lambda request: httpx.Response(statuses.pop(0), json={"ok": True}))
    response = _pipeline(api).invoke(_action(), CONNECTION)
    assert response.success
    assert response.meta.attempts == 2


def test_open_circuit_blocks_next_invocation():
    api = _Api(_json({}, status=500))
    breaker = CircuitBreaker(CircuitBreakerConfig(failureThreshold=1))
    pipeline = _pipeline(api, breaker=breaker, retry=RetryConfig(maxAttempts=1))

    first = pipeline.invoke(_action(), CONNECTION)
    assert first.error.code == ExecutionErrorCode.MAX_RETRIES_EXCEEDED

    second = pipeline.invoke(_action(), CONNECTION)
    assert second.error.code == ExecutionErrorCode.CIRCUIT_OPEN
    assert second.error.retryAfterMs is not None
    assert second.meta.attempts == 0
    assert len(api.requests) == 1


def test_circuit_id_falls_back_from_connection_to_integration_to_action():
    assert CONNECTION.circuitId == "conn-1"
    pinned = ConnectionContext(id="conn-2", circuitId="shared", baseUrl="https://api.test")
    anonymous = ConnectionContext(baseUrl="https://api.test")

    api = _Api(_json({}, status=500))
    breaker = CircuitBreaker(CircuitBreakerConfig(failureThreshold=1))
    pipeline = _pipeline(api, breaker=breaker, retry=RetryConfig(maxAttempts=1))
    pipeline.invoke(_action(), pinned)
    pipeline.invoke(_action(integrationId="int-9"), anonymous)
    pipeline.invoke(_action(id="act-9"), anonymous)

    for circuit_id in ("shared", "int-9", "act-9"):
        assert breaker.get_state(circuit_id) == CircuitState.OPEN
    assert breaker.get_state("conn-2") == CircuitState.CLOSED


# ---------------- Pagination -----------------

CURSOR_PAGES = {
    None: {"items": [1, 2], "next": "c1"},
    "c1": {"items": [3, 4], "next": "c2"},
    "c2": {"items": [5], "next": None},
}

CURSOR_CONFIG = {
    "enabled": True,
    "strategy": "cursor",
    "cursorParam": "cursor",
    "cursorPath": "$.next",
    "dataPath": "$.items",
}


def _cursor_api(fail_on: Optional[str] = None) -> _Api:
    def respond(request: httpx.Request) -> httpx.Response:
        cursor = request.url.params.get("cursor")
        if cursor is not None and cursor == fail_on:
            return httpx.Response(500, json={"message": "boom"})
        return httpx.Response(200, json=CURSOR_PAGES[cursor])

    return _Api(respond)


def test_cursor_pagination_merges_pages():
    api = _cursor_api()
    response = _pipeline(api).invoke(_action(paginationConfig=CURSOR_CONFIG), CONNECTION)

    assert response.success
    assert response.data == [1, 2, 3, 4, 5]
    assert response.pagination.strategyUsed == PaginationStrategyType.CURSOR
    assert response.pagination.pagesFetched == 3
    assert not response.pagination.truncated
    assert response.meta.attempts == 3
    assert [r.url.params.get("cursor") for r in api.requests] == [None, "c1", "c2"]


def test_settings_cap_pages_when_action_leaves_them_unset():
    api = _cursor_api()
    settings = Settings(_env_file=None, PAGINATION_MAX_PAGES=2)
    response = _pipeline(api, settings=settings).invoke(_action(paginationConfig=CURSOR_CONFIG), CONNECTION)

    assert response.data == [1, 2, 3, 4]
    assert response.pagination.truncated
    assert response.pagination.truncationReason == TruncationReason.MAX_PAGES
    assert response.pagination.continuationToken


def test_failure_on_later_page_returns_partial_data():
    api = _cursor_api(fail_on="c1")
    response = _pipeline(api, retry=RetryConfig(maxAttempts=1)).invoke(
        _action(paginationConfig=CURSOR_CONFIG), CONNECTION
    )
    assert not response.success
    assert response.data == [1, 2]
    assert response.error.code == ExecutionErrorCode.MAX_RETRIES_EXCEEDED
    assert response.pagination.truncationReason == TruncationReason.ERROR


def test_pagination_bypass_fetches_one_raw_page():
    api = _cursor_api()
    response = _pipeline(api).invoke(
        _action(paginationConfig=CURSOR_CONFIG),
        CONNECTION,
        InvocationRequest.model_validate({"pagination": {"bypass": True}}),
    )
    assert response.success
    assert response.data == CURSOR_PAGES[None]
    assert response.pagination.bypassed
    assert response.pagination.pagesFetched == 1
    assert len(api.requests) == 1


def test_preamble_counts_merged_items():
    api = _cursor_api()
    action = _action(paginationConfig=CURSOR_CONFIG, preambleTemplate="{result_count} users:")
    response = _pipeline(api).invoke(action, CONNECTION)
    assert response.context == "5 users:"


def test_strip_mode_keeps_cursor_for_next_page():
    pages = {
        None: {"data": [{"id": 1}], "next_cursor": "c2", "meta": {"total": 2}},
        "c2": {"data": [{"id": 2}], "next_cursor": None, "meta": {"total": 2}},
    }
    api = _Api(lambda request: httpx.Response(200, json=pages[request.url.params.get("cursor")]))
    action = _action(
        outputSchema={"type": "object", "properties": {"data": {"type": "array"}}},
        validationConfig={"mode": "warn", "extraFields": "strip"},
        paginationConfig={
            "enabled": True,
            "strategy": "cursor",
            "cursorParam": "cursor",
            "cursorPath": "$.next_cursor",
            "dataPath": "$.data",
            "totalPath": "$.meta.total",
        },
    )
    response = _pipeline(api).invoke(action, CONNECTION)

    assert response.success
    assert response.data == [{"id": 1}, {"id": 2}]
    assert [r.url.params.get("cursor") for r in api.requests] == [None, "c2"]
    assert response.pagination.pagesFetched == 2
    assert response.pagination.totalItems == 2
    assert not response.pagination.hasMore
    assert not response.pagination.truncated
