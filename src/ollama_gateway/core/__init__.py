"""Core functionality shared by the gateway server and the chat client.

- **config.py**: Environment-based configuration using Pydantic Settings
  (``OLLAMA_GATEWAY_`` prefix) and the global ``config`` instance
- **errors.py**: The gateway error taxonomy and its HTTP status mapping
- **records.py**: Typed request/record models exchanged with the engine
- **dispatcher.py**: Buffered and streaming calls to the Ollama engine
- **access.py**: API-key / model-assignment checks backed by projects.json
"""

from ollama_gateway.core.access import AccessDecision, Project, ProjectRegistry
from ollama_gateway.core.config import GatewayConfig, config
from ollama_gateway.core.dispatcher import UpstreamDispatcher, UpstreamStream
from ollama_gateway.core.errors import (
    AuthError,
    AuthorizationError,
    GatewayError,
    MalformedFrame,
    StreamAborted,
    UpstreamError,
    UpstreamUnavailable,
    ValidationError,
)
from ollama_gateway.core.records import Attachment, GenerationRecord, GenerationRequest

__all__ = [
    "AccessDecision",
    "Attachment",
    "AuthError",
    "AuthorizationError",
    "GatewayConfig",
    "GatewayError",
    "GenerationRecord",
    "GenerationRequest",
    "MalformedFrame",
    "Project",
    "ProjectRegistry",
    "StreamAborted",
    "UpstreamDispatcher",
    "UpstreamError",
    "UpstreamStream",
    "UpstreamUnavailable",
    "ValidationError",
    "config",
]
