"""opencode agent client, event model and server launcher."""

from .client import (
    AgentClient,
    AgentClientError,
    AgentStreamError,
    FakeAgentClient,
    get_agent_client,
    reset_agent_client,
)
from .events import (
    AgentEvent,
    AgentEventError,
    MessagePartUpdated,
    ServerConnected,
    SessionIdle,
    UnknownEvent,
    parse_event,
)
from .models import AgentSession, MessagePart, PromptResponse, TimeRange, ToolState
from .server import AgentServer, AgentServerError, AgentServerNotFoundError

__all__ = [
    "AgentClient",
    "AgentClientError",
    "AgentEvent",
    "AgentEventError",
    "AgentServer",
    "AgentServerError",
    "AgentServerNotFoundError",
    "AgentSession",
    "AgentStreamError",
    "FakeAgentClient",
    "MessagePart",
    "MessagePartUpdated",
    "PromptResponse",
    "ServerConnected",
    "SessionIdle",
    "TimeRange",
    "ToolState",
    "UnknownEvent",
    "get_agent_client",
    "parse_event",
    "reset_agent_client",
]
