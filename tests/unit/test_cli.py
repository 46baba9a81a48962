"""Tests for ollama_gateway.chat.cli — the ``ollama-gateway-chat`` command."""

from __future__ import annotations

import httpx
import pytest

from ollama_gateway.chat import cli
from ollama_gateway.chat.client import GatewayClient


@pytest.fixture
def patched_client(monkeypatch, fake_ollama):
    """Route the CLI's GatewayClient through the fake router."""
    fake_ollama.route(
        "POST",
        "/api/ollama/generate",
        lambda r: fake_ollama.ndjson([b'{"response":"Hello"}\n{"response":" there"}\n', b'{"done":true}\n']),
    )

    def factory(url: str, api_key: str) -> GatewayClient:
        transport = httpx.MockTransport(fake_ollama)
        return GatewayClient(url, api_key, http_client=httpx.AsyncClient(transport=transport))

    monkeypatch.setattr(cli, "GatewayClient", factory)
    return fake_ollama


class TestParser:
    def test_arguments(self):
        args = cli.build_parser().parse_args(
            ["--api-key", "sk-demo", "--model", "llava", "--attach", "a.png", "--attach", "b.png", "hi"]
        )
        assert args.model == "llava"
        assert args.attach == ["a.png", "b.png"]
        assert args.prompt == "hi"

    def test_model_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["--api-key", "k", "hi"])


class TestMain:
    def test_missing_api_key(self, monkeypatch, capsys):
        monkeypatch.delenv("OLLAMA_GATEWAY_API_KEY", raising=False)
        monkeypatch.setattr("sys.argv", ["ollama-gateway-chat", "--model", "llama3", "hi"])
        assert cli.main() == 2
        assert "API key" in capsys.readouterr().err

    def test_streams_reply_to_stdout(self, monkeypatch, capsys, patched_client):
        monkeypatch.setattr(
            "sys.argv",
            ["ollama-gateway-chat", "--api-key", "sk-demo", "--model", "llama3", "--delay-ms", "0", "hi"],
        )
        assert cli.main() == 0
        assert capsys.readouterr().out == "Hello there\n"
        assert patched_client.requests[-1].headers["X-API-Key"] == "sk-demo"

    def test_error_reply_exit_code(self, monkeypatch, capsys, patched_client):
        patched_client.route(
            "POST", "/api/ollama/generate", lambda r: httpx.Response(401, json={"error": "Invalid API key"})
        )
        monkeypatch.setattr(
            "sys.argv",
            ["ollama-gateway-chat", "--api-key", "sk-bad", "--model", "llama3", "--delay-ms", "0", "hi"],
        )
        assert cli.main() == 1
        assert "[Error] Server error: 401" in capsys.readouterr().out

    def test_unreadable_attachment(self, monkeypatch, capsys, temp_dir):
        monkeypatch.setattr(
            "sys.argv",
            [
                "ollama-gateway-chat",
                "--api-key",
                "sk-demo",
                "--model",
                "llava",
                "--attach",
                str(temp_dir / "missing.png"),
                "hi",
            ],
        )
        assert cli.main() == 1
        assert "Cannot read attachment" in capsys.readouterr().err
