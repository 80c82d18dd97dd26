"""Tests for the Ollama client against a local aiohttp server."""

from __future__ import annotations

import asyncio
import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from pivot_coach.ai.llm_client import OllamaClient
from pivot_coach.errors import BackendUnavailable, RequestFailed


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ndjson_handler(lines: list, received: list):
    async def handler(request: web.Request) -> web.StreamResponse:
        received.append(await request.json())
        response = web.StreamResponse()
        response.content_type = "application/x-ndjson"
        await response.prepare(request)
        for line in lines:
            raw = line if isinstance(line, str) else json.dumps(line)
            await response.write((raw + "\n").encode("utf-8"))
        return response

    return handler


async def _tags(request: web.Request) -> web.Response:
    return web.json_response({"models": [{"name": "qwen2.5:7b-instruct-q4_K_M"}, {"name": "mistral"}]})


def _run(app: web.Application, scenario, **client_kwargs):
    async def main():
        server = TestServer(app)
        await server.start_server()
        try:
            client = OllamaClient(base_url=str(server.make_url("/")), **client_kwargs)
            return await scenario(client)
        finally:
            await server.close()

    return asyncio.run(main())


def _app(generate_handler) -> web.Application:
    app = web.Application()
    app.router.add_post("/api/generate", generate_handler)
    app.router.add_get("/api/tags", _tags)
    return app


async def _collect(client: OllamaClient) -> list[str]:
    return [token async for token in client.generate_stream("Le client dit: \"prix\"", "system")]


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


def test_stream_yields_tokens_until_done() -> None:
    received: list = []
    lines = [
        {"response": "Bonne ", "done": False},
        "not json",
        {"response": "", "done": False},
        {"response": "question.", "done": False},
        {"response": "", "done": True},
        {"response": "ignored", "done": False},
    ]

    tokens = _run(_app(_ndjson_handler(lines, received)), _collect)

    assert tokens == ["Bonne ", "question."]
    body = received[0]
    assert body["stream"] is True
    assert body["system"] == "system"
    assert body["options"] == {
        "temperature": 0.7,
        "num_predict": 256,
        "top_p": 0.9,
        "repeat_penalty": 1.1,
    }


def test_stream_error_line_raises() -> None:
    lines = [{"response": "a", "done": False}, {"error": "model not found"}]

    with pytest.raises(RequestFailed):
        _run(_app(_ndjson_handler(lines, [])), _collect)


def test_stream_non_200_raises_with_status() -> None:
    async def failing(request: web.Request) -> web.Response:
        return web.Response(status=500, text="boom")

    with pytest.raises(RequestFailed) as exc_info:
        _run(_app(failing), _collect)
    assert exc_info.value.status == 500


def test_stream_timeout_raises_request_failed() -> None:
    async def slow(request: web.Request) -> web.Response:
        await asyncio.sleep(1.0)
        return web.json_response({"response": "late", "done": True})

    with pytest.raises(RequestFailed):
        _run(_app(slow), _collect, timeout=0.2)


def test_unreachable_backend() -> None:
    client = OllamaClient(base_url="http://127.0.0.1:1")

    with pytest.raises(BackendUnavailable):
        asyncio.run(_collect(client))
    assert asyncio.run(client.is_available()) is False


# ---------------------------------------------------------------------------
# Non-streaming and health
# ---------------------------------------------------------------------------


def test_generate_returns_response_text() -> None:
    received: list = []

    async def handler(request: web.Request) -> web.Response:
        received.append(await request.json())
        return web.json_response({"response": "Version courte.", "done": True})

    async def scenario(client: OllamaClient) -> str:
        return await client.generate("Raccourcis", system="court")

    assert _run(_app(handler), scenario) == "Version courte."
    assert received[0]["stream"] is False


def test_health_and_models() -> None:
    async def scenario(client: OllamaClient):
        return await client.is_available(), await client.list_models()

    available, models = _run(_app(_ndjson_handler([], [])), scenario)

    assert available is True
    assert models == ["qwen2.5:7b-instruct-q4_K_M", "mistral"]
