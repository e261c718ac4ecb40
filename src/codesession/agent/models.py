"""Wire models for the opencode agent HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

PART_TEXT = "text"
PART_REASONING = "reasoning"
PART_TOOL = "tool"
PART_STEP_START = "step-start"
PART_STEP_FINISH = "step-finish"

TOOL_PENDING = "pending"
TOOL_RUNNING = "running"
TOOL_COMPLETED = "completed"
TOOL_ERROR = "error"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TimeRange(_WireModel):
    start: float | None = None
    end: float | None = None


class ToolState(_WireModel):
    status: str = TOOL_PENDING
    title: str | None = None
    output: str | None = None
    error: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)
    time: TimeRange | None = None


class MessagePart(_WireModel):
    """One incremental fragment of agent output."""

    id: str = ""
    type: str
    session_id: str = Field(default="", validation_alias=AliasChoices("sessionID", "sessionId", "session_id"))
    message_id: str = Field(default="", validation_alias=AliasChoices("messageID", "messageId", "message_id"))
    text: str = ""
    tool: str = ""
    call_id: str = Field(default="", validation_alias=AliasChoices("callID", "callId", "call_id"))
    state: ToolState | None = None
    time: TimeRange | None = None
    tokens: dict[str, Any] | None = None
    cost: float | None = None

    @property
    def is_ready(self) -> bool:
        """Whether the part has reached a state worth showing in chat.

        Tool parts are judged by their nested tool state only; every other part
        type by its own time range.
        """

        if self.type == PART_TOOL:
            state = self.state
            return (
                state is not None
                and state.status == TOOL_COMPLETED
                and state.time is not None
                and state.time.end is not None
            )
        return self.time is not None and self.time.end is not None


class AgentSession(_WireModel):
    """Handle for a remote agent conversation."""

    id: str
    title: str | None = None
    directory: str | None = None


class PromptResponse(_WireModel):
    """Result of a synchronous prompt call."""

    info: dict[str, Any] = Field(default_factory=dict)
    parts: list[MessagePart] = Field(default_factory=list)

    def first_text(self) -> str | None:
        for part in self.parts:
            if part.type == PART_TEXT and part.text:
                return part.text
        return None


__all__ = [
    "AgentSession",
    "MessagePart",
    "PART_REASONING",
    "PART_STEP_FINISH",
    "PART_STEP_START",
    "PART_TEXT",
    "PART_TOOL",
    "PromptResponse",
    "TOOL_COMPLETED",
    "TOOL_ERROR",
    "TOOL_PENDING",
    "TOOL_RUNNING",
    "TimeRange",
    "ToolState",
]
