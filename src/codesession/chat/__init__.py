"""Chat platform client and message formatting."""

from .client import ChatClient, ChatClientError, DiscordChatClient
from .formatting import (
    append_to_history,
    chunk_fenced,
    fenced_tail,
    format_blockquote,
    remove_excessive_newlines,
    strip_fence,
    trim_to_prefix,
    trim_to_suffix,
)

__all__ = [
    "ChatClient",
    "ChatClientError",
    "DiscordChatClient",
    "append_to_history",
    "chunk_fenced",
    "fenced_tail",
    "format_blockquote",
    "remove_excessive_newlines",
    "strip_fence",
    "trim_to_prefix",
    "trim_to_suffix",
]
