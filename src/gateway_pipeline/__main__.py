"""Command-line entry point for the gateway pipeline.

This module provides a Typer CLI for exercising the pipeline stages against
JSON files, without a database or a running gateway:

1.  ``map``: preview field mappings on a sample payload.
2.  ``validate``: validate a response body against an output schema.
3.  ``detect-pagination``: suggest a pagination strategy from a sample response.
4.  ``invoke``: run a full action invocation (mapping, execution with retry and
    circuit breaker, pagination, validation, preamble) and print the response.

Every command prints JSON on stdout. ``validate`` and ``invoke`` exit with
status 1 when the result is not valid / not successful.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

# Load .env file if present (before any config access)
env_file = find_dotenv(usecwd=True)
if env_file:
    load_dotenv(env_file)

from .config import get_settings
from .mapping.engine import describe_mappings, preview_mapping, validate_mappings
from .models.execution import ActionDefinition, ConnectionContext, InvocationRequest
from .models.mapping import FieldMapping, MappingConfig, MappingDirection
from .models.validation import ValidationMode, ValidationRequest
from .pagination.detector import detect_pagination_strategy
from .pipeline import GatewayPipeline
from .validation.service import ValidationService, apply_validation_preset, parse_validation_config
from .validation.validator import MISSING

app = typer.Typer(help="API gateway execution pipeline CLI")

logger = logging.getLogger(__name__)


def _load_json(path: Path) -> Any:
    """Read a JSON document from ``path``; ``-`` reads stdin."""
    try:
        text = typer.get_text_stream("stdin").read() if str(path) == "-" else path.read_text(encoding="utf-8")
    except OSError as e:
        raise typer.BadParameter(f"cannot read {path}: {e}") from e
    try:
        return json.loads(text) if text.strip() else None
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"{path} is not valid JSON: {e}") from e


def _echo_json(value: Any) -> None:
    typer.echo(json.dumps(value, indent=2, default=str))


def _setup_logging() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)


@app.callback()
def main() -> None:  # pragma: no cover - simple callback
    """gateway-pipeline CLI.

    Use a subcommand like 'invoke' or 'validate'.
    """
    pass


@app.command("map", help="Preview field mappings on a sample payload.")
def map_command(
    mappings_file: Path = typer.Argument(
        ..., help='JSON list of field mappings, or {"config": {...}, "mappings": [...]}'
    ),
    sample_file: Path = typer.Argument(..., help="JSON sample payload ('-' for stdin)"),
    direction: MappingDirection = typer.Option(MappingDirection.OUTPUT, help="Which mappings to apply"),
) -> None:
    _setup_logging()
    raw = _load_json(mappings_file)
    if isinstance(raw, dict):
        config_raw, mappings_raw = raw.get("config") or {}, raw.get("mappings") or []
    else:
        config_raw, mappings_raw = {}, raw or []
    try:
        mappings = [FieldMapping.model_validate(m) for m in mappings_raw]
        config = MappingConfig.model_validate(config_raw)
    except ValidationError as e:
        raise typer.BadParameter(f"invalid mappings: {e}") from e

    path_errors = validate_mappings(mappings)
    if path_errors:
        _echo_json({"valid": False, "errors": [err.model_dump(mode="json") for err in path_errors]})
        raise typer.Exit(code=1)

    for line in describe_mappings(mappings):
        logger.info("mapping %s", line)
    preview = preview_mapping(_load_json(sample_file), mappings, config, direction)
    _echo_json(preview.model_dump(mode="json"))


@app.command(help="Validate a response body against an output schema.")
def validate(
    schema_file: Path = typer.Argument(..., help="JSON Schema subset describing the response"),
    data_file: Path = typer.Argument(..., help="JSON response body ('-' for stdin)"),
    mode: Optional[ValidationMode] = typer.Option(None, help="Override the validation mode"),
    preset: Optional[str] = typer.Option(
        None, help="Apply a named preset first (PRODUCTION, RESILIENT, FLEXIBLE)"
    ),
    config_file: Optional[Path] = typer.Option(None, help="Stored validation config JSON"),
) -> None:
    _setup_logging()
    settings = get_settings()
    schema = _load_json(schema_file)
    data = _load_json(data_file)
    config = parse_validation_config(_load_json(config_file)) if config_file else None
    if preset:
        try:
            config = apply_validation_preset(config, preset.upper())
        except KeyError as e:
            raise typer.BadParameter(f"unknown preset {preset}") from e

    service = ValidationService(budget_ms=settings.VALIDATION_TIMEOUT_MS)
    outcome = service.validate_response(
        MISSING if data is None else data,
        schema,
        config,
        ValidationRequest(modeOverride=mode) if mode else None,
    )
    _echo_json(
        {
            "valid": outcome.valid,
            "data": outcome.data,
            "validation": outcome.metadata.model_dump(mode="json", exclude_none=True),
        }
    )
    if not outcome.valid:
        raise typer.Exit(code=1)


@app.command("detect-pagination", help="Suggest a pagination strategy for a sample response.")
def detect_pagination(
    sample_file: Path = typer.Argument(..., help="JSON sample response ('-' for stdin)"),
    link: Optional[str] = typer.Option(None, help="Value of the response's Link header, if any"),
) -> None:
    _setup_logging()
    headers = {"link": link} if link else None
    result = detect_pagination_strategy(_load_json(sample_file), headers)
    _echo_json(result.model_dump(mode="json"))


@app.command(help="Run one action invocation and print the response.")
def invoke(
    action_file: Path = typer.Argument(..., help="Action definition JSON"),
    connection_file: Path = typer.Argument(..., help="Connection context JSON (baseUrl, headers)"),
    request_file: Optional[Path] = typer.Option(
        None, "--request", help="Invocation request JSON (input and per-request overrides)"
    ),
    input_json: Optional[str] = typer.Option(
        None, "--input", help="Inline JSON object used as request input"
    ),
) -> None:
    """Execute an action through every pipeline stage.

    Mapping configuration is empty in this mode (no store is attached), so
    input and output mapping report ``applied=false``.
    """
    _setup_logging()
    try:
        action = ActionDefinition.model_validate(_load_json(action_file))
        connection = ConnectionContext.model_validate(_load_json(connection_file) or {})
        request = InvocationRequest.model_validate((_load_json(request_file) or {}) if request_file else {})
    except ValidationError as e:
        raise typer.BadParameter(str(e)) from e
    if input_json:
        try:
            request.input = json.loads(input_json)
        except json.JSONDecodeError as e:
            raise typer.BadParameter(f"--input is not valid JSON: {e}") from e

    response = GatewayPipeline(settings=get_settings()).invoke(action, connection, request)
    _echo_json(response.model_dump(mode="json", exclude_none=True))
    if not response.success:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
