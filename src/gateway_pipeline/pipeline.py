"""Invocation orchestrator.

`GatewayPipeline.invoke` runs one action call through every stage:

    input mapping -> request building -> paginate(circuit gate -> call with
    retry -> validate raw page) -> merge pages -> output mapping -> preamble
    -> response

Validation always sees the raw page, before output mapping, so issue paths
point at the upstream API shape. Each stage reports what it did in the
response metadata; per-request bypass flags short-circuit a stage and mark it
``bypassed`` instead of silently skipping it.

Failures that the configured modes treat as fatal (``fail`` mapping,
``strict`` validation) and every execution error (open circuit, exhausted
retries, client errors) come back as ``success=False`` with the classified
error. `invoke` does not raise for them.
"""
from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

from .config import Settings, get_settings
from .execution.preamble import PreambleContext, apply_preamble
from .execution.service import ExecutionService
from .mapping.engine import merge_mapping_results
from .mapping.repository import MappingRepository
from .mapping.service import MappingService
from .models.execution import (
    ActionDefinition,
    ConnectionContext,
    ExecuteOptions,
    ExecutionErrorCode,
    ExecutionErrorDetails,
    HttpMethod,
    HttpRequest,
    InvocationRequest,
    InvocationResponse,
    ResponseMeta,
)
from .models.mapping import FailureMode, MappingResponseMetadata, MappingResult
from .models.pagination import PaginatedResult, PaginationConfig, PaginationResponseMetadata
from .models.validation import ValidationResponseMetadata
from .pagination.service import FetchedPage, PaginationService
from .pagination.strategies import PaginationParams
from .validation.drift import DriftTracker
from .validation.service import ValidateResponseResult, ValidationService
from .validation.validator import MISSING

__all__ = ["GatewayPipeline", "build_request_parts"]

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


class _StageAbort(Exception):
    """Stops the page loop; the reason is recorded on the invocation state."""


@dataclass
class _InvocationState:
    attempts: int = 0
    error: Optional[ExecutionErrorDetails] = None
    validation_failure: Optional[ValidateResponseResult] = None
    validations: List[ValidateResponseResult] = field(default_factory=list)


# ---------------- Request building -----------------


def _query_value(value: Any) -> Any:
    if isinstance(value, (dict, list)) and not (
        isinstance(value, list) and all(isinstance(v, (str, int, float, bool)) for v in value)
    ):
        return json.dumps(value, separators=(",", ":"))
    return value


def build_request_parts(
    action: ActionDefinition, connection: ConnectionContext, payload: Dict[str, Any]
) -> Tuple[str, Dict[str, Any], Any]:
    """Resolve the endpoint URL and split the payload into query and body.

    ``{name}`` placeholders in the endpoint template consume the matching
    payload keys. GET sends what remains as query params; every other method
    sends it as a JSON body.

    Returns:
        ``(url, query_params, body)``; body is None when nothing remains.
    """
    remaining = dict(payload)

    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in remaining:
            logger.warning("No input value for URL placeholder {%s} in action %s", name, action.slug)
            return match.group(0)
        return quote(str(remaining.pop(name)), safe="")

    path = _PLACEHOLDER_RE.sub(substitute, action.endpointTemplate)
    if path.startswith(("http://", "https://")) or not connection.baseUrl:
        url = path
    else:
        url = connection.baseUrl.rstrip("/") + "/" + path.lstrip("/")

    if action.method == HttpMethod.GET:
        query = {k: _query_value(v) for k, v in remaining.items() if v is not None}
        return url, query, None
    return url, {}, remaining or None


# ---------------- Metadata helpers -----------------


def _mapping_metadata(result: MappingResult) -> MappingResponseMetadata:
    return MappingResponseMetadata(
        applied=result.applied,
        bypassed=result.bypassed,
        inputMappingsApplied=result.meta.inputMappingsApplied,
        outputMappingsApplied=result.meta.outputMappingsApplied,
        fieldsTransformed=result.meta.fieldsTransformed,
        fieldsCoerced=result.meta.fieldsCoerced,
        fieldsDefaulted=result.meta.fieldsDefaulted,
        mappingDurationMs=result.meta.mappingDurationMs,
        errors=list(result.errors) or None,
        failureMode=result.failureMode,
    )


def _pagination_metadata(result: PaginatedResult) -> PaginationResponseMetadata:
    meta = result.metadata
    return PaginationResponseMetadata(
        strategyUsed=result.strategyUsed,
        pagesFetched=meta.pagesFetched,
        totalItems=meta.totalItems,
        fetchedItems=meta.fetchedItems,
        hasMore=meta.hasMore,
        truncated=meta.truncated,
        truncationReason=meta.truncationReason,
        continuationToken=meta.continuationToken,
    )


def _validation_metadata(results: List[ValidateResponseResult]) -> Optional[ValidationResponseMetadata]:
    """Fold per-page validation metadata; drift status comes from the last page."""
    if not results:
        return None
    if len(results) == 1:
        return results[0].metadata
    metas = [r.metadata for r in results]
    issues = [issue for m in metas for issue in (m.issues or [])]
    last = metas[-1]
    return ValidationResponseMetadata(
        valid=all(m.valid for m in metas),
        mode=last.mode,
        bypassed=all(m.bypassed for m in metas),
        issueCount=len(issues),
        issues=issues or None,
        fieldsCoerced=sum(m.fieldsCoerced for m in metas),
        fieldsStripped=sum(m.fieldsStripped for m in metas),
        fieldsDefaulted=sum(m.fieldsDefaulted for m in metas),
        validationDurationMs=sum(m.validationDurationMs for m in metas),
        driftStatus=last.driftStatus,
        driftMessage=last.driftMessage,
    )


def _mapping_failure(result: MappingResult, stage: str) -> ExecutionErrorDetails:
    return ExecutionErrorDetails(
        code=ExecutionErrorCode.MAPPING_ERROR,
        message=f"{stage} mapping failed with {len(result.errors)} error(s)",
        retryable=False,
        details={"errors": [e.model_dump(mode="json") for e in result.errors]},
    )


# ---------------- Pipeline -----------------


class GatewayPipeline:
    """Runs action invocations; one instance is shared by concurrent callers.

    Args:
        settings: Configuration; `get_settings()` when None.
        mapping_service: Field mapping (repository-backed).
        mapping_repository: Used to build the mapping service when none is given.
        pagination_service: Page loop.
        validation_service: Response validation and drift tracking.
        execution_service: Circuit breaker + retry + HTTP.
        clock: Monotonic seconds source for latency.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        mapping_service: Optional[MappingService] = None,
        mapping_repository: Optional[MappingRepository] = None,
        pagination_service: Optional[PaginationService] = None,
        validation_service: Optional[ValidationService] = None,
        execution_service: Optional[ExecutionService] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.mapping = mapping_service or MappingService(
            mapping_repository, ttl_seconds=self.settings.MAPPING_CACHE_TTL_SECONDS
        )
        self.pagination = pagination_service or PaginationService()
        self.validation = validation_service or ValidationService(
            DriftTracker(), budget_ms=self.settings.VALIDATION_TIMEOUT_MS
        )
        self.execution = execution_service or ExecutionService(
            self.settings.retry_config(), circuit_config=self.settings.circuit_breaker_config()
        )
        self._clock = clock

    def _pagination_config(self, action: ActionDefinition) -> PaginationConfig:
        config = action.paginationConfig or PaginationConfig()
        defaults = {
            "maxPages": self.settings.PAGINATION_MAX_PAGES,
            "maxItems": self.settings.PAGINATION_MAX_ITEMS,
        }
        unset = {k: v for k, v in defaults.items() if k not in config.model_fields_set}
        return config.model_copy(update=unset) if unset else config

    def invoke(
        self,
        action: ActionDefinition,
        connection: ConnectionContext,
        request: Optional[InvocationRequest] = None,
    ) -> InvocationResponse:
        """Execute ``action`` over ``connection`` for one caller request.

        Args:
            action: Stored action definition.
            connection: Resolved connection (credentials already in headers).
            request: Caller input and per-request overrides.

        Returns:
            The `InvocationResponse`; ``success=False`` carries the error.
        """
        started = self._clock()
        request = request or InvocationRequest()
        request_id = f"req_{uuid.uuid4().hex[:16]}"
        state = _InvocationState()

        def respond(
            success: bool,
            data: Any = None,
            *,
            error: Optional[ExecutionErrorDetails] = None,
            mapping: Optional[MappingResult] = None,
            pagination: Optional[PaginationResponseMetadata] = None,
            context: Optional[str] = None,
        ) -> InvocationResponse:
            latency = int((self._clock() - started) * 1000)
            if not success:
                logger.info(
                    "Invocation %s of %s failed: %s",
                    request_id,
                    action.slug,
                    error.code.value if error else "unknown",
                )
            return InvocationResponse(
                success=success,
                data=data,
                context=context,
                error=error,
                pagination=pagination,
                validation=_validation_metadata(state.validations),
                mapping=_mapping_metadata(mapping) if mapping is not None else None,
                meta=ResponseMeta(requestId=request_id, latencyMs=latency, attempts=state.attempts),
            )

        # ---- Input mapping
        input_result = self.mapping.apply_input_mapping(
            request.input, action.id, connection_id=connection.id, request=request.mapping
        )
        if input_result.errors and input_result.failureMode == FailureMode.FAIL:
            return respond(False, error=_mapping_failure(input_result, "Input"), mapping=input_result)
        payload = input_result.data if isinstance(input_result.data, dict) else dict(request.input)

        # ---- Request building
        url, query, body = build_request_parts(action, connection, payload)
        options = ExecuteOptions(
            retryConfig=action.retryConfig,
            circuitBreakerId=connection.circuitId or action.integrationId or action.id,
            idempotencyKey=request.idempotencyKey,
            timeoutMs=action.timeoutMs or self.settings.HTTP_TIMEOUT_MS,
            passthrough=request.passthrough,
        )

        def fetch(params: PaginationParams) -> FetchedPage:
            headers = {**connection.headers, **params.headers}
            page_body = body
            if params.body_params:
                page_body = {**(body or {}), **params.body_params}
            if params.url:
                http_request = HttpRequest(url=params.url, method=action.method, headers=headers, body=page_body)
            else:
                http_request = HttpRequest(
                    url=url,
                    method=action.method,
                    headers=headers,
                    params={k: v for k, v in params.query_params.items() if v is not None},
                    body=page_body,
                )
            result = self.execution.execute(http_request, options)
            state.attempts += result.attempts
            if not result.success:
                state.error = result.error
                if result.error is not None and result.error.code == ExecutionErrorCode.UNKNOWN_ERROR:
                    logger.error("Unexpected failure calling %s: %s", http_request.url, result.error.message)
                raise _StageAbort()

            validated = self.validation.validate_response(
                MISSING if result.data is None else result.data,
                action.outputSchema,
                action.validationConfig,
                request.validation,
                action_id=action.id,
                tenant_id=connection.tenantId,
            )
            state.validations.append(validated)
            if not validated.valid:
                state.validation_failure = validated
                raise _StageAbort()
            return FetchedPage(data=validated.data, headers=result.headers or {}, raw=result.data)

        # ---- Paginate
        pag_config = self._pagination_config(action)
        pag_request = request.pagination
        pag_bypassed = bool(pag_request and pag_request.bypass)
        paginated: Optional[PaginatedResult] = None
        pagination_meta: Optional[PaginationResponseMetadata] = None
        merged: Any = None
        try:
            if pag_config.enabled and not pag_bypassed:
                paginated = self.pagination.fetch_paginated(
                    fetch,
                    pag_config,
                    pag_request,
                    original_params=query,
                    action_id=action.id,
                )
            else:
                page = fetch(PaginationParams(query_params=dict(query)))
                merged = page.data
                if pag_bypassed:
                    pagination_meta = PaginationResponseMetadata(pagesFetched=1, bypassed=True)
        except _StageAbort:
            pass

        if paginated is not None:
            pagination_meta = _pagination_metadata(paginated)
            merged = paginated.data if paginated.strategyUsed is not None else paginated.rawResponse

        if state.validation_failure is not None:
            meta = state.validation_failure.metadata
            return respond(
                False,
                error=ExecutionErrorDetails(
                    code=ExecutionErrorCode.VALIDATION_ERROR,
                    message=f"Response validation failed ({meta.mode.value} mode): {meta.issueCount} issue(s)",
                    retryable=False,
                    details={"issueCount": meta.issueCount},
                ),
                mapping=input_result,
                pagination=pagination_meta,
            )
        if state.error is not None:
            # Partial pages collected before the failure are returned as-is.
            return respond(
                False,
                merged if paginated is not None else None,
                error=state.error,
                mapping=input_result,
                pagination=pagination_meta,
            )

        # ---- Output mapping
        output_result = self.mapping.apply_output_mapping(
            merged, action.id, connection_id=connection.id, request=request.mapping
        )
        mapping_summary = merge_mapping_results(input_result, output_result)
        if output_result.errors and output_result.failureMode == FailureMode.FAIL:
            return respond(
                False,
                merged,
                error=_mapping_failure(output_result, "Output"),
                mapping=mapping_summary,
                pagination=pagination_meta,
            )
        final = output_result.data

        # ---- Preamble
        preamble = apply_preamble(
            action.preambleTemplate,
            PreambleContext(
                integration_name=action.integrationName,
                integration_slug=action.integrationSlug,
                action_name=action.name,
                action_slug=action.slug,
                connection_name=connection.name,
            ),
            final,
        )

        logger.debug("Invocation %s of %s succeeded in %d attempt(s)", request_id, action.slug, state.attempts)
        return respond(
            True,
            final,
            mapping=mapping_summary,
            pagination=pagination_meta,
            context=preamble.context,
        )
