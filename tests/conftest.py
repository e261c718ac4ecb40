from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from codesession.agent.client import FakeAgentClient
from codesession.agent.events import parse_event
from codesession.chat.client import ChatClientError
from codesession.session import ListenerSet, MessageCompositor, SessionRegistry
from codesession.storage import SessionStore


class RecordingChat:
    """In-memory chat platform that records every outbound call."""

    def __init__(self, limit: int = 2000) -> None:
        self.limit = limit
        self.sent: list[tuple[str, str, str]] = []
        self.edits: list[tuple[str, str, str]] = []
        self.threads: list[tuple[str, str, str]] = []
        self.typing: list[str] = []
        self.fail_send = False
        self.fail_edit = False
        self.fail_thread = False
        self.closed = False
        self._counter = 0

    async def create_thread(self, channel_id: str, name: str) -> str:
        if self.fail_thread:
            raise ChatClientError("thread create refused")
        self._counter += 1
        thread_id = f"10{self._counter}"
        self.threads.append((channel_id, name, thread_id))
        return thread_id

    async def send_message(self, channel_id: str, content: str) -> str:
        if self.fail_send:
            raise ChatClientError("send refused")
        if len(content) > self.limit:
            raise ChatClientError(f"message of {len(content)} characters exceeds {self.limit}")
        self._counter += 1
        message_id = f"msg-{self._counter}"
        self.sent.append((channel_id, message_id, content))
        return message_id

    async def edit_message(self, channel_id: str, message_id: str, content: str) -> None:
        if self.fail_edit:
            raise ChatClientError("edit refused")
        if len(content) > self.limit:
            raise ChatClientError(f"edit of {len(content)} characters exceeds {self.limit}")
        self.edits.append((channel_id, message_id, content))

    async def trigger_typing(self, channel_id: str) -> None:
        self.typing.append(channel_id)

    async def aclose(self) -> None:
        self.closed = True

    def contents(self, channel_id: str | None = None) -> list[str]:
        return [content for channel, _, content in self.sent if channel_id in (None, channel)]


class Components:
    def __init__(
        self,
        tmp_path: Path,
        agent: FakeAgentClient,
        chat: RecordingChat | None = None,
        **compositor_kwargs: Any,
    ) -> None:
        self.agent = agent
        self.chat = chat or RecordingChat()
        self.store = SessionStore(tmp_path / "sessions")
        self.listeners = ListenerSet()
        self.registry = SessionRegistry(self.store, agent, listeners=self.listeners)
        self.compositor = MessageCompositor(self.registry, self.chat, **compositor_kwargs)
        self.worktree = tmp_path / "worktree"
        self.worktree.mkdir(exist_ok=True)


@pytest.fixture
def chat() -> RecordingChat:
    return RecordingChat()


@pytest.fixture
def components(tmp_path: Path) -> Components:
    return Components(tmp_path, FakeAgentClient())


def part_event(
    part_type: str,
    *,
    session: str = "ses_1",
    text: str = "",
    tool: str = "",
    status: str | None = None,
    end: float | None = None,
) -> Any:
    part: dict[str, Any] = {
        "id": "prt_1",
        "type": part_type,
        "sessionID": session,
        "messageID": "msg_1",
    }
    if part_type == "tool":
        part["tool"] = tool
        part["callID"] = "call_1"
        part["state"] = {"status": status or "running", "time": {"start": 1, "end": end}}
    else:
        part["text"] = text
        part["time"] = {"start": 1, "end": end}
    return parse_event({"type": "message.part.updated", "properties": {"part": part}})


def idle_event(session: str = "ses_1") -> Any:
    return parse_event({"type": "session.idle", "properties": {"sessionID": session}})


def connected_event() -> Any:
    return parse_event({"type": "server.connected", "properties": {}})
