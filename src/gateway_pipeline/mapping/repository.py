"""Mapping storage and the cached read path used by the pipeline.

Two layers live here:

* ``InMemoryMappingStore`` - the management CRUD surface (list / create /
  update / delete mappings, get / update the per-action ``MappingConfig``).
  Production deployments put a relational store behind the same methods; the
  pipeline itself only ever talks to ``MappingRepository``.
* ``MappingRepository`` - read-through caches over a store:

  ========================================  ==========================
  cache                                     key
  ========================================  ==========================
  action defaults (+ config)                ``actionId``
  connection-scoped rows                    ``actionId:connectionId``
  resolved (defaults merged with overrides)  ``resolved:actionId:connectionId``
  ========================================  ==========================

  Every write through the repository invalidates the affected keys;
  invalidating an action also drops all of its connection entries.

``resolve_mappings`` performs the override merge: a connection row replaces
the default row with the same ``(sourcePath, direction)`` key. Defaults keep
their creation order; connection-only keys are appended in their own order.
"""
from __future__ import annotations

import itertools
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..cache import DEFAULT_TTL_SECONDS, TTLCache
from ..models.mapping import (
    FieldMapping,
    MappingConfig,
    MappingDirection,
    MappingSource,
    ResolvedMapping,
)

__all__ = [
    "DuplicateMappingError",
    "CachedMappings",
    "CachedResolvedMappings",
    "InMemoryMappingStore",
    "MappingRepository",
    "resolve_mappings",
]

logger = logging.getLogger(__name__)


class DuplicateMappingError(ValueError):
    """Raised when a mapping with the same (action, connection, sourcePath, direction) exists."""


@dataclass
class CachedMappings:
    input_mappings: List[FieldMapping] = field(default_factory=list)
    output_mappings: List[FieldMapping] = field(default_factory=list)
    config: MappingConfig = field(default_factory=MappingConfig)

    def for_direction(self, direction: MappingDirection) -> List[FieldMapping]:
        return self.input_mappings if direction == MappingDirection.INPUT else self.output_mappings


@dataclass
class CachedResolvedMappings:
    resolved: List[ResolvedMapping]
    config: MappingConfig


def resolve_mappings(
    defaults: Iterable[FieldMapping],
    overrides: Iterable[FieldMapping],
    connection_id: Optional[str] = None,
) -> List[ResolvedMapping]:
    """Merge connection overrides onto defaults in a single pass over each list."""
    merged: Dict[str, ResolvedMapping] = {}
    for m in defaults:
        merged[m.key()] = ResolvedMapping(mapping=m, source=MappingSource.DEFAULT)
    for m in overrides:
        key = m.key()
        existing = merged.get(key)
        default_mapping = (
            existing.mapping
            if existing is not None and existing.source == MappingSource.DEFAULT
            else None
        )
        # dict preserves the default's slot when a key is overwritten
        merged[key] = ResolvedMapping(
            mapping=m,
            source=MappingSource.CONNECTION,
            connectionId=connection_id or m.connectionId,
            overridden=default_mapping is not None,
            defaultMapping=default_mapping,
        )
    return list(merged.values())


# ---------------- Store -----------------


class InMemoryMappingStore:
    """Thread-safe in-memory stand-in for the mapping tables."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._rows: Dict[str, FieldMapping] = {}
        self._order: Dict[str, int] = {}
        self._seq = itertools.count()
        self._configs: Dict[str, MappingConfig] = {}

    # mappings

    def list_mappings(
        self,
        action_id: str,
        connection_id: Optional[str] = None,
        direction: Optional[MappingDirection] = None,
    ) -> List[FieldMapping]:
        """Rows for one scope (``connection_id=None`` means the defaults), oldest first."""
        with self._lock:
            rows = [
                m
                for m in self._rows.values()
                if m.actionId == action_id
                and m.connectionId == connection_id
                and (direction is None or m.direction == direction)
            ]
            rows.sort(key=lambda m: self._order[m.id])  # type: ignore[index]
            return [m.model_copy(deep=True) for m in rows]

    def get(self, mapping_id: str) -> Optional[FieldMapping]:
        with self._lock:
            row = self._rows.get(mapping_id)
            return row.model_copy(deep=True) if row else None

    def create(
        self, action_id: str, mapping: FieldMapping, connection_id: Optional[str] = None
    ) -> FieldMapping:
        with self._lock:
            self._ensure_unique(action_id, connection_id, mapping.sourcePath, mapping.direction)
            row = mapping.model_copy(
                update={"id": str(uuid.uuid4()), "actionId": action_id, "connectionId": connection_id},
                deep=True,
            )
            self._rows[row.id] = row  # type: ignore[index]
            self._order[row.id] = next(self._seq)  # type: ignore[index]
            return row.model_copy(deep=True)

    def update(self, mapping_id: str, changes: Dict[str, Any]) -> Optional[FieldMapping]:
        with self._lock:
            row = self._rows.get(mapping_id)
            if row is None:
                return None
            merged = row.model_dump()
            merged.update({k: v for k, v in changes.items() if k not in ("id", "actionId", "connectionId")})
            updated = FieldMapping.model_validate(merged)
            if (updated.sourcePath, updated.direction) != (row.sourcePath, row.direction):
                self._ensure_unique(
                    row.actionId or "", row.connectionId, updated.sourcePath, updated.direction
                )
            self._rows[mapping_id] = updated
            return updated.model_copy(deep=True)

    def delete(self, mapping_id: str) -> bool:
        with self._lock:
            self._order.pop(mapping_id, None)
            return self._rows.pop(mapping_id, None) is not None

    def delete_scope(self, action_id: str, connection_id: Optional[str] = None) -> int:
        with self._lock:
            doomed = [
                k
                for k, m in self._rows.items()
                if m.actionId == action_id and m.connectionId == connection_id
            ]
            for k in doomed:
                del self._rows[k]
                self._order.pop(k, None)
            return len(doomed)

    def connections_with_overrides(self, action_id: str) -> List[str]:
        with self._lock:
            ids = {
                m.connectionId
                for m in self._rows.values()
                if m.actionId == action_id and m.connectionId is not None
            }
        return sorted(ids)  # type: ignore[type-var]

    def _ensure_unique(
        self,
        action_id: str,
        connection_id: Optional[str],
        source_path: str,
        direction: MappingDirection,
    ) -> None:
        for m in self._rows.values():
            if (
                m.actionId == action_id
                and m.connectionId == connection_id
                and m.sourcePath == source_path
                and m.direction == direction
            ):
                raise DuplicateMappingError(
                    f"Mapping for {source_path} ({direction.value}) already exists"
                )

    # config

    def get_config(self, action_id: str) -> MappingConfig:
        with self._lock:
            cfg = self._configs.get(action_id)
            return cfg.model_copy() if cfg else MappingConfig()

    def save_config(self, action_id: str, changes: Dict[str, Any]) -> MappingConfig:
        with self._lock:
            current = self._configs.get(action_id, MappingConfig())
            updated = MappingConfig.model_validate({**current.model_dump(), **changes})
            self._configs[action_id] = updated
            return updated.model_copy()


# ---------------- Cached repository -----------------


class MappingRepository:
    """Cached read path plus cache-invalidating writes over a store."""

    def __init__(
        self,
        store: Optional[InMemoryMappingStore] = None,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        mapping_cache: Optional[TTLCache[CachedMappings]] = None,
        resolved_cache: Optional[TTLCache[CachedResolvedMappings]] = None,
    ):
        self.store = store or InMemoryMappingStore()
        self._mapping_cache: TTLCache[CachedMappings] = (
            mapping_cache if mapping_cache is not None else TTLCache(ttl_seconds, name="mappings")
        )
        self._resolved_cache: TTLCache[CachedResolvedMappings] = (
            resolved_cache
            if resolved_cache is not None
            else TTLCache(ttl_seconds, name="resolved-mappings")
        )

    @staticmethod
    def cache_key(action_id: str, connection_id: Optional[str] = None) -> str:
        return f"{action_id}:{connection_id}" if connection_id else action_id

    @staticmethod
    def resolved_cache_key(action_id: str, connection_id: str) -> str:
        return f"resolved:{action_id}:{connection_id}"

    # reads

    def get_mappings_for_action(self, action_id: str) -> CachedMappings:
        key = self.cache_key(action_id)
        cached = self._mapping_cache.get(key)
        if cached is not None:
            return cached
        rows = self.store.list_mappings(action_id)
        loaded = CachedMappings(
            input_mappings=[m for m in rows if m.direction == MappingDirection.INPUT],
            output_mappings=[m for m in rows if m.direction == MappingDirection.OUTPUT],
            config=self.store.get_config(action_id),
        )
        self._mapping_cache.set(key, loaded)
        return loaded

    def get_mappings_by_connection(self, action_id: str, connection_id: str) -> List[FieldMapping]:
        key = self.cache_key(action_id, connection_id)
        cached = self._mapping_cache.get(key)
        if cached is not None:
            return cached.input_mappings + cached.output_mappings
        rows = self.store.list_mappings(action_id, connection_id)
        self._mapping_cache.set(
            key,
            CachedMappings(
                input_mappings=[m for m in rows if m.direction == MappingDirection.INPUT],
                output_mappings=[m for m in rows if m.direction == MappingDirection.OUTPUT],
                config=self.store.get_config(action_id),
            ),
        )
        return rows

    def get_resolved_mappings(
        self, action_id: str, connection_id: Optional[str] = None
    ) -> CachedResolvedMappings:
        """Effective mappings for a connection; defaults only when ``connection_id`` is None."""
        if not connection_id:
            defaults = self.get_mappings_for_action(action_id)
            return CachedResolvedMappings(
                resolved=[
                    ResolvedMapping(mapping=m, source=MappingSource.DEFAULT)
                    for m in defaults.input_mappings + defaults.output_mappings
                ],
                config=defaults.config,
            )

        key = self.resolved_cache_key(action_id, connection_id)
        cached = self._resolved_cache.get(key)
        if cached is not None:
            return cached

        defaults = self.store.list_mappings(action_id)
        overrides = self.store.list_mappings(action_id, connection_id)
        resolved = CachedResolvedMappings(
            resolved=resolve_mappings(defaults, overrides, connection_id),
            config=self.store.get_config(action_id),
        )
        self._resolved_cache.set(key, resolved)
        logger.debug(
            "resolved mappings action=%s connection=%s defaults=%d overrides=%d",
            action_id,
            connection_id,
            len(defaults),
            len(overrides),
        )
        return resolved

    def get_config(self, action_id: str) -> MappingConfig:
        return self.get_mappings_for_action(action_id).config

    def count_connections_with_overrides(self, action_id: str) -> int:
        return len(self.store.connections_with_overrides(action_id))

    # writes

    def create_mapping(
        self, action_id: str, mapping: FieldMapping, connection_id: Optional[str] = None
    ) -> FieldMapping:
        created = self.store.create(action_id, mapping, connection_id)
        self._invalidate_scope(action_id, connection_id)
        return created

    def update_mapping(self, mapping_id: str, changes: Dict[str, Any]) -> Optional[FieldMapping]:
        updated = self.store.update(mapping_id, changes)
        if updated is not None:
            self._invalidate_scope(updated.actionId or "", updated.connectionId)
        return updated

    def delete_mapping(self, mapping_id: str) -> bool:
        existing = self.store.get(mapping_id)
        if existing is None:
            return False
        deleted = self.store.delete(mapping_id)
        self._invalidate_scope(existing.actionId or "", existing.connectionId)
        return deleted

    def bulk_upsert(
        self,
        action_id: str,
        mappings: List[FieldMapping],
        *,
        replace: bool = False,
        connection_id: Optional[str] = None,
    ) -> List[FieldMapping]:
        """Create or update many rows; ``replace`` clears the scope first."""
        if replace:
            self.store.delete_scope(action_id, connection_id)
        results: List[FieldMapping] = []
        for m in mappings:
            if m.id and not replace:
                updated = self.store.update(m.id, m.model_dump(exclude={"id"}))
                if updated is not None:
                    results.append(updated)
                continue
            results.append(self.store.create(action_id, m, connection_id))
        self._invalidate_scope(action_id, connection_id)
        return results

    def delete_all(self, action_id: str, connection_id: Optional[str] = None) -> int:
        count = self.store.delete_scope(action_id, connection_id)
        self._invalidate_scope(action_id, connection_id)
        return count

    def copy_defaults_to_connection(self, action_id: str, connection_id: str) -> List[FieldMapping]:
        copied = [
            self.store.create(action_id, m.model_copy(update={"id": None}), connection_id)
            for m in self.store.list_mappings(action_id)
        ]
        self.invalidate_connection(action_id, connection_id)
        return copied

    def update_config(self, action_id: str, changes: Dict[str, Any]) -> MappingConfig:
        cfg = self.store.save_config(action_id, changes)
        self.invalidate_action(action_id)
        return cfg

    # invalidation

    def invalidate_action(self, action_id: str) -> None:
        self._mapping_cache.invalidate(action_id)
        self._mapping_cache.invalidate_prefix(f"{action_id}:")
        self._resolved_cache.invalidate_prefix(f"resolved:{action_id}:")

    def invalidate_connection(self, action_id: str, connection_id: str) -> None:
        self._mapping_cache.invalidate(self.cache_key(action_id, connection_id))
        self._resolved_cache.invalidate(self.resolved_cache_key(action_id, connection_id))

    def clear(self) -> None:
        self._mapping_cache.clear()
        self._resolved_cache.clear()

    def _invalidate_scope(self, action_id: str, connection_id: Optional[str]) -> None:
        if connection_id:
            self.invalidate_connection(action_id, connection_id)
        else:
            self.invalidate_action(action_id)
