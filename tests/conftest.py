"""Shared pytest fixtures for Ollama Gateway tests.

No test talks to a real Ollama server.  Upstream traffic goes through
``httpx.MockTransport`` backed by :class:`FakeOllama`, a small router that
records every request and answers with canned engine replies.
"""

from __future__ import annotations

import json
import shutil
import tempfile
from collections.abc import AsyncIterator, Callable, Generator, Iterable
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from ollama_gateway.api.main import create_app
from ollama_gateway.core.config import GatewayConfig

ADMIN_TOKEN = "admin-secret"

Responder = Callable[[httpx.Request], httpx.Response]


class FakeOllama:
    """Callable used as the ``httpx.MockTransport`` handler.

    Attributes:
        requests: Every request received, in order.
        routes: ``(method, path) -> responder`` table; unknown routes get 404.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Responder] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get((request.method, request.url.path))
        if responder is None:
            return httpx.Response(404, json={"error": f"no route for {request.url.path}"})
        return responder(request)

    def route(self, method: str, path: str, responder: Responder) -> None:
        self.routes[(method, path)] = responder

    def json_bodies(self) -> list[dict]:
        """Decoded JSON bodies of all requests that carried one."""
        return [json.loads(r.content) for r in self.requests if r.content]

    @staticmethod
    def chunks(parts: Iterable[bytes], *, fail_after: bool = False) -> AsyncIterator[bytes]:
        """Async body yielding ``parts`` one by one, optionally then breaking."""

        async def body() -> AsyncIterator[bytes]:
            for part in parts:
                yield part
            if fail_after:
                raise httpx.ReadError("connection reset by peer")

        return body()

    @classmethod
    def ndjson(cls, parts: Iterable[bytes], *, fail_after: bool = False) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"content-type": "application/x-ndjson"},
            content=cls.chunks(list(parts), fail_after=fail_after),
        )


GENERATE_CHUNKS = [
    b'{"model":"llama3","response":"Hel","done":false}\n{"model":"lla',
    b'ma3","response":"lo ","done":false}\n',
    b'{"model":"llama3","response":"world","done":false}\n{"model":"llama3","response":"","done":true}\n',
]


def _default_generate(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    if body.get("stream"):
        return FakeOllama.ndjson(GENERATE_CHUNKS)
    return httpx.Response(
        200,
        json={
            "model": body["model"],
            "created_at": "2024-01-01T00:00:00Z",
            "response": "Hello world",
            "done": True,
            "total_duration": 1234,
        },
    )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> GatewayConfig:
    """Configuration with a temporary data directory and an admin token."""
    return GatewayConfig(
        ollama_base_url="http://ollama.test:11434",
        data_dir=temp_dir / "data",
        admin_token=ADMIN_TOKEN,
        _env_file=None,
    )


@pytest.fixture
def projects_file(test_config: GatewayConfig) -> Path:
    """Write a registry with an active, an inactive and a restricted project."""
    data = {
        "projects": [
            {"id": 1, "name": "demo", "api_key": "sk-demo", "is_active": True, "models": ["llama3", "llava"]},
            {"id": 2, "name": "paused", "api_key": "sk-paused", "is_active": False, "models": ["llama3"]},
            {"id": 3, "name": "mistral-only", "api_key": "sk-mistral", "is_active": True, "models": ["mistral"]},
        ]
    }
    path = test_config.projects_file
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def fake_ollama() -> FakeOllama:
    """A fake engine with the default generate and model-management routes."""
    fake = FakeOllama()
    fake.route("POST", "/api/generate", _default_generate)
    fake.route("GET", "/api/tags", lambda r: httpx.Response(200, json={"models": [{"name": "llama3:latest"}]}))
    fake.route("GET", "/api/ps", lambda r: httpx.Response(200, json={"models": []}))
    fake.route(
        "POST",
        "/api/pull",
        lambda r: FakeOllama.ndjson([b'{"status":"pulling manifest"}\n', b'{"status":"success"}\n']),
    )
    fake.route("DELETE", "/api/delete", lambda r: httpx.Response(200))
    return fake


@pytest.fixture
def upstream_client(fake_ollama: FakeOllama) -> httpx.AsyncClient:
    """An ``httpx.AsyncClient`` wired to the fake engine."""
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_ollama))


@pytest.fixture
def test_client(
    test_config: GatewayConfig,
    projects_file: Path,
    upstream_client: httpx.AsyncClient,
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient for a gateway whose upstream is the fake engine."""
    app = create_app(test_config, http_client=upstream_client)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-API-Key": "sk-demo"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def generate_chunks() -> list[bytes]:
    """Chunks served by the fake engine's default streaming generate."""
    return list(GENERATE_CHUNKS)
