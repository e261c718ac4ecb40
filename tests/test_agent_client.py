from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from codesession.agent import (
    AgentClient,
    AgentClientError,
    AgentStreamError,
    MessagePartUpdated,
    ServerConnected,
    SessionIdle,
    get_agent_client,
    reset_agent_client,
)
from codesession.catalog import AgentModel


def sse(*payloads: object) -> bytes:
    chunks = [f"data: {json.dumps(payload)}\n\n" for payload in payloads]
    return "".join(chunks).encode("utf-8")


def test_create_session_posts_directory() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "ses_new", "title": "t", "directory": "/wt"})

    async def scenario():
        client = AgentClient("http://agent", transport=httpx.MockTransport(handler))
        try:
            return await client.create_session("/wt")
        finally:
            await client.aclose()

    session = asyncio.run(scenario())

    assert session.id == "ses_new"
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/session"
    assert seen[0].url.params["directory"] == "/wt"


def test_prompt_sends_model_and_tool_overrides() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        assert request.url.path == "/session/ses_1/message"
        return httpx.Response(
            200,
            json={
                "info": {"id": "msg_1"},
                "parts": [
                    {"type": "step-start"},
                    {"type": "text", "text": "feat(core): add thing\n- detail"},
                ],
            },
        )

    async def scenario():
        client = AgentClient("http://agent", transport=httpx.MockTransport(handler))
        try:
            return await client.prompt(
                "ses_1",
                directory="/wt",
                model=AgentModel(provider_id="anthropic", model_id="claude"),
                message="summarize",
                tools={"write": False, "edit": False},
            )
        finally:
            await client.aclose()

    response = asyncio.run(scenario())

    assert response.first_text() == "feat(core): add thing\n- detail"
    assert bodies[0] == {
        "parts": [{"type": "text", "text": "summarize"}],
        "model": {"providerID": "anthropic", "modelID": "claude"},
        "tools": {"write": False, "edit": False},
    }


def test_http_errors_become_client_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    async def scenario():
        client = AgentClient("http://agent", transport=httpx.MockTransport(handler))
        try:
            await client.create_session("/wt")
        finally:
            await client.aclose()

    with pytest.raises(AgentClientError, match="500"):
        asyncio.run(scenario())


def test_stream_events_decodes_and_skips_garbage() -> None:
    body = sse(
        {"type": "server.connected", "properties": {}},
        {"type": "message.part.updated", "properties": {"part": {"type": "text", "text": "hi"}}},
        {"type": "message.part.updated", "properties": {}},
        {"type": "session.idle", "properties": {"sessionID": "ses_1"}},
    ) + b"data: not-json\n\n"

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/event"
        assert request.url.params["directory"] == "/wt"
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    async def scenario():
        client = AgentClient("http://agent", transport=httpx.MockTransport(handler))
        try:
            return [event async for event in client.stream_events("/wt")]
        finally:
            await client.aclose()

    events = asyncio.run(scenario())

    assert [type(event) for event in events] == [ServerConnected, MessagePartUpdated, SessionIdle]


def test_stream_events_rejects_bad_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async def scenario():
        client = AgentClient("http://agent", transport=httpx.MockTransport(handler))
        try:
            async for _ in client.stream_events("/wt"):
                pass
        finally:
            await client.aclose()

    with pytest.raises(AgentStreamError):
        asyncio.run(scenario())


def test_stream_transport_failure_is_stream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def scenario():
        client = AgentClient("http://agent", transport=httpx.MockTransport(handler))
        try:
            async for _ in client.stream_events("/wt"):
                pass
        finally:
            await client.aclose()

    with pytest.raises(AgentStreamError):
        asyncio.run(scenario())


def test_get_agent_client_is_process_wide() -> None:
    reset_agent_client()
    try:
        first = get_agent_client("http://127.0.0.1:4096")
        second = get_agent_client("http://127.0.0.1:4096/")
        assert first is second
    finally:
        reset_agent_client()
