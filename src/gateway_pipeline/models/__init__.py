"""Pydantic data models shared across the pipeline stages.

Modules:
    mapping: Field mappings, mapping config and mapping results
    pagination: Pagination config, per-request overrides, results and tokens
    validation: Validation config, issues, results and drift reporting
    execution: Retry/circuit config, HTTP request/result and the invocation boundary
"""
