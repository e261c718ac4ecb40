"""Text shaping helpers for chat messages."""

from __future__ import annotations

import re

_NEWLINE_RUNS = re.compile(r"\n{2,}")
TRUNCATION_MARKER = "[...]\n"


def format_blockquote(text: str) -> str:
    """Prefix every non-blank line with a quote marker; blank lines are dropped."""

    lines = [line for line in text.rstrip("\n").split("\n") if line.strip()]
    return "\n".join(f"> {line}" for line in lines)


def remove_excessive_newlines(text: str) -> str:
    return _NEWLINE_RUNS.sub("\n", text.strip("\n"))


def append_to_history(history: str, fragment: str) -> str:
    if not history:
        return fragment
    if history.endswith("\n"):
        return history + fragment
    return f"{history}\n{fragment}"


def trim_to_suffix(text: str, budget: int) -> str:
    """Return the longest suffix of ``text`` within ``budget`` that starts on a line boundary.

    When even the last line exceeds ``budget`` the tail of that line is hard cut.
    """

    if budget <= 0:
        return ""
    if len(text) <= budget:
        return text
    start = len(text) - budget
    if text[start - 1] == "\n":
        return text[start:]
    newline = text.find("\n", start)
    if newline == -1:
        return text[start:]
    return text[newline + 1 :]


def chunk_fenced(text: str, limit: int, language: str = "diff") -> list[str]:
    """Split ``text`` into fenced code blocks that each fit within ``limit`` characters.

    Chunks prefer to break after a newline; stripping the fences and joining the
    bodies reproduces ``text`` exactly.
    """

    opening = f"```{language}\n"
    closing = "\n```"
    budget = limit - len(opening) - len(closing)
    if budget <= 0:
        raise ValueError("limit too small for fenced chunks")

    chunks: list[str] = []
    position = 0
    while position < len(text):
        end = min(position + budget, len(text))
        if end < len(text):
            newline = text.rfind("\n", position, end)
            if newline >= position:
                end = newline + 1
        chunks.append(f"{opening}{text[position:end]}{closing}")
        position = end
    return chunks


def trim_to_prefix(text: str, budget: int) -> str:
    """Return the longest prefix of ``text`` within ``budget`` that ends on a line boundary."""

    if budget <= 0:
        return ""
    if len(text) <= budget:
        return text
    newline = text.rfind("\n", 0, budget + 1)
    if newline <= 0:
        return text[:budget]
    return text[:newline]


def fenced_tail(header: str, body: str, limit: int, language: str = "") -> str:
    """Wrap ``body`` in one fenced block under ``header`` that fits ``limit`` characters.

    An oversized body keeps its last lines behind a truncation marker.
    """

    opening = f"{header}\n```{language}\n" if header else f"```{language}\n"
    closing = "\n```"
    room = limit - len(opening) - len(closing)
    if len(body) <= room:
        return f"{opening}{body}{closing}"
    room -= len(TRUNCATION_MARKER)
    if room <= 0:
        raise ValueError("limit too small for a fenced block")
    return f"{opening}{TRUNCATION_MARKER}{trim_to_suffix(body, room)}{closing}"


def strip_fence(chunk: str, language: str = "diff") -> str:
    opening = f"```{language}\n"
    closing = "\n```"
    if not (chunk.startswith(opening) and chunk.endswith(closing)):
        raise ValueError("chunk is not a fenced block")
    return chunk[len(opening) : -len(closing)]


__all__ = [
    "TRUNCATION_MARKER",
    "append_to_history",
    "chunk_fenced",
    "fenced_tail",
    "format_blockquote",
    "remove_excessive_newlines",
    "strip_fence",
    "trim_to_prefix",
    "trim_to_suffix",
]
