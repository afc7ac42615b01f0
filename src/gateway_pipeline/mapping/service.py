"""Mapping service: the entry point the pipeline and management API use.

Wraps ``MappingRepository`` (cached reads, invalidating writes) and the pure
engine in ``mapping.engine``. Compiled paths are cached per
``actionId[:connectionId]:direction`` and are dropped together with the
repository caches on every write.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..cache import DEFAULT_TTL_SECONDS, TTLCache
from ..models.mapping import (
    ConnectionMappingState,
    ConnectionMappingStats,
    FieldMapping,
    MappingConfig,
    MappingDirection,
    MappingPreviewResult,
    MappingRequest,
    MappingResult,
    MappingSource,
)
from .engine import (
    CompiledMapping,
    MappingOptions,
    apply_mappings,
    create_bypassed_result,
    merge_mapping_config,
    preview_mapping,
    should_skip_mapping,
    validate_mappings,
)
from .repository import CachedResolvedMappings, MappingRepository

__all__ = ["MappingService", "MappingServiceError"]

logger = logging.getLogger(__name__)


class MappingServiceError(ValueError):
    """Raised for management requests that cannot be honoured (e.g. invalid paths)."""


class MappingService:
    def __init__(
        self,
        repository: Optional[MappingRepository] = None,
        *,
        compiled_cache: Optional[TTLCache[List[CompiledMapping]]] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ):
        self.repository = repository or MappingRepository(ttl_seconds=ttl_seconds)
        self._compiled_cache: TTLCache[List[CompiledMapping]] = (
            compiled_cache
            if compiled_cache is not None
            else TTLCache(ttl_seconds, name="compiled-mappings")
        )

    # ---------------- Pipeline -----------------

    def _mappings_for(
        self, action_id: str, connection_id: Optional[str], direction: MappingDirection
    ) -> tuple[List[FieldMapping], MappingConfig]:
        if connection_id:
            resolved = self.repository.get_resolved_mappings(action_id, connection_id)
            mappings = [r.mapping for r in resolved.resolved if r.mapping.direction == direction]
            return mappings, resolved.config
        cached = self.repository.get_mappings_for_action(action_id)
        return cached.for_direction(direction), cached.config

    def _apply(
        self,
        data: Any,
        action_id: str,
        direction: MappingDirection,
        connection_id: Optional[str],
        request: Optional[MappingRequest],
    ) -> MappingResult:
        mappings, base_config = self._mappings_for(action_id, connection_id, direction)
        config, bypass = merge_mapping_config(base_config, request)
        if should_skip_mapping(config, mappings, bypass):
            return create_bypassed_result(data, config.failureMode)
        cache_key = f"{action_id}:{connection_id}" if connection_id else action_id
        result = apply_mappings(
            data,
            MappingOptions(direction=direction, config=config, mappings=mappings),
            cache_key=cache_key,
            cache=self._compiled_cache,
        )
        if result.errors:
            logger.debug(
                "%s mapping action=%s connection=%s errors=%d applied=%s",
                direction.value,
                action_id,
                connection_id,
                len(result.errors),
                result.applied,
            )
        return result

    def apply_input_mapping(
        self,
        data: Any,
        action_id: str,
        *,
        connection_id: Optional[str] = None,
        request: Optional[MappingRequest] = None,
    ) -> MappingResult:
        return self._apply(data, action_id, MappingDirection.INPUT, connection_id, request)

    def apply_output_mapping(
        self,
        data: Any,
        action_id: str,
        *,
        connection_id: Optional[str] = None,
        request: Optional[MappingRequest] = None,
    ) -> MappingResult:
        return self._apply(data, action_id, MappingDirection.OUTPUT, connection_id, request)

    # ---------------- Management -----------------

    def get_config(self, action_id: str) -> MappingConfig:
        return self.repository.get_config(action_id)

    def update_config(self, action_id: str, changes: Dict[str, Any]) -> MappingConfig:
        cfg = self.repository.update_config(action_id, changes)
        self.invalidate_caches(action_id)
        return cfg

    def get_mappings(
        self, action_id: str, direction: Optional[MappingDirection] = None
    ) -> List[FieldMapping]:
        cached = self.repository.get_mappings_for_action(action_id)
        if direction is None:
            return cached.input_mappings + cached.output_mappings
        return cached.for_direction(direction)

    def get_stats(self, action_id: str) -> Dict[str, Any]:
        cached = self.repository.get_mappings_for_action(action_id)
        return {
            "enabled": cached.config.enabled,
            "inputMappingCount": len(cached.input_mappings),
            "outputMappingCount": len(cached.output_mappings),
            "failureMode": cached.config.failureMode.value,
            "preserveUnmapped": cached.config.preserveUnmapped,
        }

    def create_mapping(self, action_id: str, mapping: FieldMapping) -> FieldMapping:
        self._raise_if_invalid(mapping)
        created = self.repository.create_mapping(action_id, mapping)
        self.invalidate_caches(action_id)
        return created

    def update_mapping(self, action_id: str, mapping_id: str, changes: Dict[str, Any]) -> Optional[FieldMapping]:
        self._check_update(mapping_id, changes)
        updated = self.repository.update_mapping(mapping_id, changes)
        if updated is not None:
            self.invalidate_caches(action_id)
        return updated

    def delete_mapping(self, action_id: str, mapping_id: str) -> bool:
        deleted = self.repository.delete_mapping(mapping_id)
        if deleted:
            self.invalidate_caches(action_id)
        return deleted

    def bulk_upsert(
        self, action_id: str, mappings: List[FieldMapping], *, replace: bool = False
    ) -> List[FieldMapping]:
        for m in mappings:
            self._raise_if_invalid(m)
        results = self.repository.bulk_upsert(action_id, mappings, replace=replace)
        self.invalidate_caches(action_id)
        return results

    def preview(
        self,
        action_id: str,
        sample: Any,
        direction: MappingDirection = MappingDirection.OUTPUT,
        mappings: Optional[List[FieldMapping]] = None,
    ) -> MappingPreviewResult:
        """Run mappings against sample data, even when mapping is disabled for the action."""
        config = self.get_config(action_id)
        to_use = mappings if mappings is not None else self.get_mappings(action_id, direction)
        return preview_mapping(sample, to_use, config, direction)

    def preview_with_connection(
        self,
        action_id: str,
        connection_id: str,
        sample: Any,
        direction: MappingDirection = MappingDirection.OUTPUT,
        mappings: Optional[List[FieldMapping]] = None,
    ) -> MappingPreviewResult:
        resolved = self.repository.get_resolved_mappings(action_id, connection_id)
        to_use = (
            mappings
            if mappings is not None
            else [r.mapping for r in resolved.resolved if r.mapping.direction == direction]
        )
        return preview_mapping(sample, to_use, resolved.config, direction)

    def validate_mappings(self, mappings: List[FieldMapping]) -> List[str]:
        return [e.message for e in validate_mappings(mappings)]

    # ---------------- Connection overrides -----------------

    def resolve_mappings(self, action_id: str, connection_id: Optional[str]) -> CachedResolvedMappings:
        return self.repository.get_resolved_mappings(action_id, connection_id)

    def get_connection_mapping_state(self, action_id: str, connection_id: str) -> ConnectionMappingState:
        resolved = self.repository.get_resolved_mappings(action_id, connection_id)
        defaults = sum(1 for r in resolved.resolved if r.source == MappingSource.DEFAULT)
        return ConnectionMappingState(
            actionId=action_id,
            connectionId=connection_id,
            mappings=resolved.resolved,
            config=resolved.config,
            defaultsCount=defaults,
            overridesCount=len(resolved.resolved) - defaults,
        )

    def get_connection_mapping_stats(self, action_id: str, connection_id: str) -> ConnectionMappingStats:
        resolved = self.repository.get_resolved_mappings(action_id, connection_id)
        overrides = sum(1 for r in resolved.resolved if r.source == MappingSource.CONNECTION)
        return ConnectionMappingStats(
            overrideCount=overrides,
            defaultCount=len(resolved.resolved) - overrides,
            totalCount=len(resolved.resolved),
            hasOverrides=overrides > 0,
        )

    def get_connection_overrides(self, action_id: str, connection_id: str) -> List[FieldMapping]:
        return self.repository.get_mappings_by_connection(action_id, connection_id)

    def count_connections_with_overrides(self, action_id: str) -> int:
        return self.repository.count_connections_with_overrides(action_id)

    def create_connection_override(
        self, action_id: str, connection_id: str, mapping: FieldMapping
    ) -> FieldMapping:
        """Create a connection-scoped mapping after validating its paths.

        Raises:
            MappingServiceError: When a path is invalid.
            DuplicateMappingError: When the connection already overrides the key.
        """
        self._raise_if_invalid(mapping)
        created = self.repository.create_mapping(action_id, mapping, connection_id)
        self.invalidate_connection_caches(action_id, connection_id)
        return created

    def update_connection_override(
        self, action_id: str, connection_id: str, mapping_id: str, changes: Dict[str, Any]
    ) -> Optional[FieldMapping]:
        self._check_update(mapping_id, changes)
        updated = self.repository.update_mapping(mapping_id, changes)
        if updated is not None:
            self.invalidate_connection_caches(action_id, connection_id)
        return updated

    def delete_connection_override(self, action_id: str, connection_id: str, mapping_id: str) -> bool:
        deleted = self.repository.delete_mapping(mapping_id)
        if deleted:
            self.invalidate_connection_caches(action_id, connection_id)
        return deleted

    def reset_connection_mappings(self, action_id: str, connection_id: str) -> int:
        count = self.repository.delete_all(action_id, connection_id)
        self.invalidate_connection_caches(action_id, connection_id)
        return count

    def copy_mappings_to_connection(self, action_id: str, connection_id: str) -> List[FieldMapping]:
        copied = self.repository.copy_defaults_to_connection(action_id, connection_id)
        self.invalidate_connection_caches(action_id, connection_id)
        return copied

    # ---------------- Caches -----------------

    def invalidate_caches(self, action_id: str) -> None:
        """Drop repository and compiled caches for an action and all its connections."""
        self.repository.invalidate_action(action_id)
        self._compiled_cache.invalidate_prefix(f"{action_id}:")

    def invalidate_connection_caches(self, action_id: str, connection_id: str) -> None:
        self.repository.invalidate_connection(action_id, connection_id)
        for direction in MappingDirection:
            self._compiled_cache.invalidate(f"{action_id}:{connection_id}:{direction.value}")

    def _raise_if_invalid(self, mapping: FieldMapping) -> None:
        errors = validate_mappings([mapping])
        if errors:
            raise MappingServiceError(
                "Invalid mapping: " + ", ".join(e.message for e in errors)
            )

    def _check_update(self, mapping_id: str, changes: Dict[str, Any]) -> None:
        existing = self.repository.store.get(mapping_id)
        if existing is None:
            return
        candidate = FieldMapping.model_validate({**existing.model_dump(), **changes})
        self._raise_if_invalid(candidate)
