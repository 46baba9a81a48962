"""Ollama Gateway - API-key gated relay for Ollama text generation."""

__version__ = "0.1.0"

from ollama_gateway.core.config import GatewayConfig, config
from ollama_gateway.core.records import GenerationRecord, GenerationRequest

__all__ = [
    "GatewayConfig",
    "GenerationRecord",
    "GenerationRequest",
    "config",
]
