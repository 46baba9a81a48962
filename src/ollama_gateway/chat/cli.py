"""``ollama-gateway-chat``: stream one reply from the gateway to the terminal.

Usage::

    ollama-gateway-chat --api-key sk-demo --model llama3 "Why is the sky blue?"
    ollama-gateway-chat --api-key sk-demo --model llava --attach cat.png "What is this?"

The reply is revealed at the configured pace (``--delay-ms`` or
``OLLAMA_GATEWAY_PACING_DELAY_MS``).  Ctrl-C aborts the reply.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from ollama_gateway.chat.client import GatewayClient, LocalAttachment
from ollama_gateway.chat.models import Message, MessageState
from ollama_gateway.chat.session import ChatSession
from ollama_gateway.core.config import config
from ollama_gateway.core.errors import GatewayError

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "http://localhost:8080"


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="ollama-gateway-chat",
        description="Stream a reply from an Ollama Gateway.",
    )
    ap.add_argument(
        "--url",
        default=os.environ.get("OLLAMA_GATEWAY_URL", DEFAULT_GATEWAY_URL),
        help="Gateway base URL.",
    )
    ap.add_argument(
        "--api-key",
        default=os.environ.get("OLLAMA_GATEWAY_API_KEY"),
        help="Project API key (or OLLAMA_GATEWAY_API_KEY).",
    )
    ap.add_argument("--model", required=True, help="Model to generate with.")
    ap.add_argument(
        "--attach",
        action="append",
        default=[],
        metavar="FILE",
        help="File to attach; repeat for several.",
    )
    ap.add_argument(
        "--delay-ms",
        type=int,
        default=config.pacing_delay_ms,
        help="Delay between revealed fragments, in milliseconds.",
    )
    ap.add_argument("prompt", help="Prompt text.")
    return ap


def _write(message: Message, text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


async def run(args: argparse.Namespace) -> MessageState:
    attachments = [LocalAttachment.from_path(Path(p)) for p in args.attach]
    async with GatewayClient(args.url, args.api_key) as client:
        session = ChatSession(
            client,
            args.model,
            delay=max(args.delay_ms, 0) / 1000.0,
            on_append=_write,
        )
        try:
            reply = await session.send(args.prompt, attachments)
        finally:
            await session.aclose()
    sys.stdout.write("\n")
    return reply.state


def main() -> int:
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    args = build_parser().parse_args()
    if not args.api_key:
        print("An API key is required (--api-key or OLLAMA_GATEWAY_API_KEY).", file=sys.stderr)
        return 2

    try:
        state = asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        return 130
    except GatewayError as exc:
        print(f"{exc.title}: {exc.message}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"Cannot read attachment: {exc}", file=sys.stderr)
        return 1

    return 0 if state is MessageState.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
