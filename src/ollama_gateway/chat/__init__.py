"""Consumer side of the gateway: streaming chat with paced presentation.

- **client.py**: ``httpx`` client for the gateway's generation routes
- **reassembler.py**: Rebuilds NDJSON records from arbitrarily chunked bytes
- **extractor.py**: Turns records into fragment / completion / failure signals
- **scheduler.py**: Reveals queued fragments one at a time at a fixed pace
- **session.py**: Wires the pipeline together per prompt
- **cli.py**: ``ollama-gateway-chat`` terminal client
"""

from ollama_gateway.chat.client import GatewayClient, LocalAttachment
from ollama_gateway.chat.extractor import FieldExtractor
from ollama_gateway.chat.models import Message, MessageState
from ollama_gateway.chat.reassembler import FrameReassembler, parse_frame
from ollama_gateway.chat.scheduler import PresentationScheduler
from ollama_gateway.chat.session import ChatSession

__all__ = [
    "ChatSession",
    "FieldExtractor",
    "FrameReassembler",
    "GatewayClient",
    "LocalAttachment",
    "Message",
    "MessageState",
    "PresentationScheduler",
    "parse_frame",
]
