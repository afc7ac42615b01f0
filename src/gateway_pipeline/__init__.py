"""API gateway execution pipeline.

Runs one action invocation end to end: input mapping, request building,
circuit-gated HTTP execution with retry, pagination, response validation with
drift tracking, output mapping and an optional LLM-facing preamble.

Typical use::

    from gateway_pipeline import GatewayPipeline
    response = GatewayPipeline().invoke(action, connection, request)
"""

__version__ = "0.1.0"

from .config import Settings, get_settings
from .pipeline import GatewayPipeline, build_request_parts

__all__ = ["GatewayPipeline", "Settings", "build_request_parts", "get_settings", "__version__"]
