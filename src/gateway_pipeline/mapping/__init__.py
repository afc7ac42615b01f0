"""Field mapping subpackage.

Modules:
    engine: Pure mapping application (compile, resolve, coerce, write)
    repository: Mapping storage interface, in-memory store and cached reads
    service: Pipeline and management entry point

Design Invariants:
    - The engine never raises for data problems; errors are returned in the result
    - Fail mode with any error returns the original data unchanged
    - A connection override shadows the default with the same (sourcePath, direction)
"""
from __future__ import annotations

from .engine import MappingOptions, apply_mappings, preview_mapping, validate_mappings
from .repository import DuplicateMappingError, InMemoryMappingStore, MappingRepository, resolve_mappings
from .service import MappingService, MappingServiceError

__all__ = [
    "MappingOptions",
    "apply_mappings",
    "preview_mapping",
    "validate_mappings",
    "DuplicateMappingError",
    "InMemoryMappingStore",
    "MappingRepository",
    "resolve_mappings",
    "MappingService",
    "MappingServiceError",
]
