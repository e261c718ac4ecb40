"""Typed decoding of the agent's server-sent event stream."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .models import MessagePart

EVENT_SERVER_CONNECTED = "server.connected"
EVENT_MESSAGE_PART_UPDATED = "message.part.updated"
EVENT_SESSION_IDLE = "session.idle"


class AgentEventError(ValueError):
    """Raised when an event payload cannot be decoded."""


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ServerConnected(_Event):
    type: Literal["server.connected"]


class PartUpdatedProperties(_Event):
    part: MessagePart


class MessagePartUpdated(_Event):
    type: Literal["message.part.updated"]
    properties: PartUpdatedProperties

    @property
    def part(self) -> MessagePart:
        return self.properties.part


class IdleProperties(_Event):
    session_id: str = Field(default="", validation_alias=AliasChoices("sessionID", "sessionId", "session_id"))


class SessionIdle(_Event):
    type: Literal["session.idle"]
    properties: IdleProperties = Field(default_factory=IdleProperties)

    @property
    def session_id(self) -> str:
        return self.properties.session_id


class UnknownEvent(_Event):
    """Any event kind the relay does not act on."""

    type: str
    properties: dict[str, Any] = Field(default_factory=dict)


KnownEvent = Annotated[
    Union[ServerConnected, MessagePartUpdated, SessionIdle],
    Field(discriminator="type"),
]
AgentEvent = Union[ServerConnected, MessagePartUpdated, SessionIdle, UnknownEvent]

_KNOWN_TYPES = {EVENT_SERVER_CONNECTED, EVENT_MESSAGE_PART_UPDATED, EVENT_SESSION_IDLE}
_known_adapter: TypeAdapter[Any] = TypeAdapter(KnownEvent)


def parse_event(payload: Any) -> AgentEvent:
    """Decode one event envelope into its variant using the ``type`` discriminator."""

    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        raise AgentEventError("event payload must be an object with a string 'type'")
    try:
        if payload["type"] in _KNOWN_TYPES:
            return _known_adapter.validate_python(payload)
        return UnknownEvent.model_validate(payload)
    except ValidationError as exc:
        raise AgentEventError(f"invalid {payload['type']} event: {exc}") from exc


__all__ = [
    "AgentEvent",
    "AgentEventError",
    "EVENT_MESSAGE_PART_UPDATED",
    "EVENT_SERVER_CONNECTED",
    "EVENT_SESSION_IDLE",
    "MessagePartUpdated",
    "ServerConnected",
    "SessionIdle",
    "UnknownEvent",
    "parse_event",
]
