from __future__ import annotations

import asyncio
from pathlib import Path

from codesession.agent.client import AgentStreamError, FakeAgentClient
from codesession.session import EventListener
from codesession.session.compositor import STATUS_HEADER

from conftest import Components, RecordingChat, connected_event, idle_event, part_event


class HeldMentionChat(RecordingChat):
    """Blocks the first completion mention until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.holding = asyncio.Event()
        self.release = asyncio.Event()

    async def send_message(self, channel_id: str, content: str) -> str:
        if "Task completed" in content and not self.release.is_set():
            self.holding.set()
            await self.release.wait()
        return await super().send_message(channel_id, content)


def _listener(components: Components) -> EventListener:
    return EventListener(components.registry, components.listeners, components.compositor, components.agent)


async def _wait_stopped(components: Components, thread_id: str = "t1") -> None:
    for _ in range(200):
        if not components.listeners.is_running(thread_id):
            return
        await asyncio.sleep(0.01)
    raise AssertionError("listener did not stop")


def test_completed_tool_posts_once_and_idle_mentions_user(tmp_path: Path) -> None:
    agent = FakeAgentClient(
        events=[
            connected_event(),
            part_event("tool", tool="bash", status="running"),
            part_event("tool", tool="bash", status="completed", end=2.0),
            idle_event(),
        ]
    )
    components = Components(tmp_path, agent)
    listener = _listener(components)

    async def scenario():
        await components.registry.get_or_create("t1", str(components.worktree), "/repo", "repo", user_id="42")
        spawned = await listener.spawn_if_absent("t1")
        await _wait_stopped(components)
        return spawned, await components.registry.get("t1")

    spawned, record = asyncio.run(scenario())

    assert spawned is True
    assert components.chat.contents("t1") == [
        f"{STATUS_HEADER}\n> |>> tool: bash",
        "<@42> Task completed!",
    ]
    assert components.chat.edits == []
    assert record.active is False
    assert record.is_streaming is False
    assert record.tool_history == ""
    assert record.status_message_id is None
    assert components.listeners.is_running("t1") is False


def test_reasoning_and_text_share_one_message(tmp_path: Path) -> None:
    agent = FakeAgentClient(
        events=[
            connected_event(),
            part_event("reasoning", text="planning", end=2.0),
            part_event("text", text="Hello", end=None),
            part_event("text", text="Hello\n\n\nworld", end=3.0),
            idle_event(),
        ]
    )
    components = Components(tmp_path, agent)
    listener = _listener(components)

    async def scenario() -> None:
        await components.registry.get_or_create("t1", str(components.worktree), "/repo", "repo")
        await listener.run("t1")

    asyncio.run(scenario())

    chat = components.chat
    assert chat.contents("t1") == [f"{STATUS_HEADER}\n> |>> thinking: planning"]
    assert [content for _, _, content in chat.edits] == [
        f"{STATUS_HEADER}\n> |>> thinking: planning\nResponse:\nHello\nworld",
    ]


def test_stream_error_deactivates_without_posting(tmp_path: Path) -> None:
    agent = FakeAgentClient(events=[connected_event(), AgentStreamError("connection reset")])
    components = Components(tmp_path, agent)
    listener = _listener(components)

    async def scenario():
        await components.registry.get_or_create("t1", str(components.worktree), "/repo", "repo", user_id="42")
        await listener.spawn_if_absent("t1")
        await _wait_stopped(components)
        return await components.registry.get("t1")

    record = asyncio.run(scenario())

    assert components.chat.sent == []
    assert record is not None
    assert record.active is False
    assert record.is_streaming is False
    assert (tmp_path / "sessions" / "t1.json").exists()


def test_events_for_other_sessions_are_ignored(tmp_path: Path) -> None:
    agent = FakeAgentClient(
        events=[
            part_event("text", session="ses_other", text="not mine", end=2.0),
            idle_event("ses_other"),
            part_event("text", text="mine", end=2.0),
            idle_event(),
        ]
    )
    components = Components(tmp_path, agent)
    listener = _listener(components)

    async def scenario():
        await components.registry.get_or_create("t1", str(components.worktree), "/repo", "repo")
        await listener.run("t1")
        return await components.registry.get("t1")

    record = asyncio.run(scenario())

    assert components.chat.contents("t1") == [f"{STATUS_HEADER}\nResponse:\nmine"]
    assert record.active is False


def test_shutdown_cancels_held_stream(tmp_path: Path) -> None:
    agent = FakeAgentClient(events=[connected_event()])
    agent.hold_stream = True
    components = Components(tmp_path, agent)
    listener = _listener(components)

    async def scenario():
        await components.registry.get_or_create("t1", str(components.worktree), "/repo", "repo")
        first = await listener.spawn_if_absent("t1", wait_connected=1.0)
        record = await components.registry.get("t1")
        streaming = record.is_streaming
        second = await listener.spawn_if_absent("t1", wait_connected=1.0)
        await components.listeners.shutdown()
        return first, second, streaming

    first, second, streaming = asyncio.run(scenario())

    assert first is True
    assert second is False
    assert streaming is True
    assert agent.streams_opened == 1
    assert components.listeners.is_running("t1") is False


def test_message_during_idle_keeps_listener_for_next_turn(tmp_path: Path) -> None:
    agent = FakeAgentClient(events=[connected_event(), part_event("text", text="first", end=2.0), idle_event()])
    agent.hold_stream = True
    chat = HeldMentionChat()
    components = Components(tmp_path, agent, chat=chat)
    listener = _listener(components)

    async def scenario():
        await components.registry.get_or_create("t1", str(components.worktree), "/repo", "repo", user_id="42")
        await listener.spawn_if_absent("t1")
        await asyncio.wait_for(chat.holding.wait(), timeout=1.0)
        await components.registry.set_active("t1", True)
        spawned = await listener.spawn_if_absent("t1")
        chat.release.set()
        for _ in range(100):
            if "<@42> Task completed!" in chat.contents("t1"):
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.01)
        state = (
            spawned,
            await components.registry.is_active("t1"),
            components.listeners.is_running("t1"),
        )
        await components.listeners.shutdown()
        return state

    spawned, active, running = asyncio.run(scenario())

    assert spawned is False
    assert active is True
    assert running is True
    assert agent.streams_opened == 1


def test_rearmed_listener_streams_second_turn_then_exits(tmp_path: Path) -> None:
    agent = FakeAgentClient(
        events=[
            connected_event(),
            part_event("text", text="first", end=2.0),
            idle_event(),
            part_event("text", text="second", end=3.0),
            idle_event(),
        ]
    )
    chat = HeldMentionChat()
    components = Components(tmp_path, agent, chat=chat)
    listener = _listener(components)

    async def scenario():
        await components.registry.get_or_create("t1", str(components.worktree), "/repo", "repo", user_id="42")
        await listener.spawn_if_absent("t1")
        await asyncio.wait_for(chat.holding.wait(), timeout=1.0)
        refused = await listener.spawn_if_absent("t1")
        await components.registry.set_active("t1", True)
        chat.release.set()
        await _wait_stopped(components)
        return refused, await components.registry.is_active("t1")

    refused, active = asyncio.run(scenario())

    assert refused is False
    assert chat.contents("t1") == [
        f"{STATUS_HEADER}\nResponse:\nfirst",
        "<@42> Task completed!",
        f"{STATUS_HEADER}\nResponse:\nsecond",
        "<@42> Task completed!",
    ]
    assert active is False
    assert components.listeners.is_running("t1") is False
