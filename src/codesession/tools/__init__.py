"""Chat command surface registered as MCP tools."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from fastmcp import Context, FastMCP

from .. import __version__
from ..agent.client import AgentClient, AgentClientError
from ..catalog import AgentModel, CatalogLoadError, CatalogLoader
from ..chat.client import ChatClient, ChatClientError
from ..chat.formatting import chunk_fenced, fenced_tail
from ..config import RelaySettings
from ..git import NO_DIFF_MESSAGE, GitCommandError, GitOperations, construct_pr_link
from ..session import EventListener, MessageCompositor, SessionRegistry
from ..storage.models import CommitStatus

NO_SESSION = "No session found for this thread. Start one with `/codesession` first."
WORKTREE_MISSING = "Worktree directory not found. Please start a new session."
EMPTY_MESSAGE = "Please include a message for the agent."
PROMPT_FAILED = "Failed to send message to the agent."
SUMMARY_FAILED = "Failed to generate summary."
NO_CHANGES = "No changes to commit."
COMMIT_DONE = "Commit completed successfully!"
CATALOG_FAILED = "Session options are misconfigured; check the relay logs."
UNKNOWN_REPOSITORY = "Unknown repository."
UNKNOWN_MODEL = "Unknown model."
THREAD_FAILED = "Failed to create thread."
WORKTREE_FAILED = "Failed to create worktree."
SESSION_FAILED = "Failed to create agent session."
DEFAULT_SUMMARY = "Changes made during session"
BOUNDARY_INSTRUCTION = "\n\nImportant: Stay within the current worktree directory for all file operations."
SUMMARY_LIMIT = 50
LISTENER_CONNECT_TIMEOUT = 5.0

_GIT_FAILURE_MESSAGES = {
    "status": "Failed to check repository status.",
    "add": "Failed to stage changes.",
    "commit": "Failed to commit changes.",
    "branch": "Failed to push changes.",
    "fetch": "Failed to push changes.",
    "push": "Failed to push changes.",
    "diff": "Failed to get diff.",
}
_MENTION = re.compile(r"<@!?\d+>")


@dataclass(slots=True)
class ToolHandles:
    ping: Any
    list_options: Any
    start_session: Any
    send_message: Any
    select_model: Any
    commit: Any
    diff: Any
    cleanup_session: Any


def _summary_from(text: str | None) -> str:
    if not text or not text.strip():
        return DEFAULT_SUMMARY
    first_line = text.strip().splitlines()[0].strip()
    return first_line[:SUMMARY_LIMIT] or DEFAULT_SUMMARY


def _welcome_message(repository: str, model: AgentModel, worktree_path: str, session_id: str) -> str:
    return (
        "```\n"
        "OpenCode Session Started\n"
        f"Repository: {repository}\n"
        f"Model: {model.label}\n"
        f"Worktree Path: {worktree_path}\n"
        f"Session ID: {session_id[-8:]}\n"
        "```"
    )


def _git_failure(exc: GitCommandError, limit: int) -> str:
    output = exc.output.strip() or "(no output)"
    return fenced_tail(f"**Git {exc.operation} failed**", output, limit)


def register_tools(
    server: FastMCP,
    *,
    settings: RelaySettings,
    catalog: CatalogLoader,
    registry: SessionRegistry,
    listener: EventListener,
    compositor: MessageCompositor,
    chat: ChatClient,
    git: GitOperations,
    agent_client: AgentClient,
) -> ToolHandles:
    """Register the relay's commands on the server."""

    def _ping(context: Context | None = None) -> dict[str, Any]:
        """Report that the relay is alive."""

        return {"status": "ok", "version": __version__}

    def _list_options(context: Context | None = None) -> dict[str, Any]:
        """List repositories and models a session can be started with."""

        try:
            loaded = catalog.load()
        except CatalogLoadError as exc:
            _emit_log(context, "error", "Catalog unavailable", extra={"error": str(exc)})
            return {"ok": False, "message": CATALOG_FAILED}
        return {
            "ok": True,
            "repositories": [{"name": repo.name, "path": str(repo.path)} for repo in loaded.repositories],
            "models": [model.label for model in loaded.models],
        }

    async def _start_session(
        channel_id: str,
        repository: str,
        model: str,
        user_id: str = "",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Open a thread, provision its worktree and start an agent session."""

        try:
            loaded = catalog.load()
        except CatalogLoadError as exc:
            _emit_log(context, "error", "Catalog unavailable", extra={"error": str(exc)})
            return {"ok": False, "message": CATALOG_FAILED}

        repo = loaded.find_repository(repository)
        if repo is None:
            return {"ok": False, "message": UNKNOWN_REPOSITORY}
        agent_model = loaded.find_model(model)
        if agent_model is None:
            return {"ok": False, "message": UNKNOWN_MODEL}

        thread_name = f"codesession-{uuid4().hex[:8]}"
        try:
            thread_id = await chat.create_thread(channel_id, thread_name)
        except ChatClientError as exc:
            _emit_log(context, "error", "Failed to create thread", extra={"channel_id": channel_id, "error": str(exc)})
            return {"ok": False, "message": THREAD_FAILED}

        worktree_path = Path(settings.worktrees_path) / thread_id
        branch = f"codesession/{thread_id}"
        try:
            await git.create_worktree(repo.path, worktree_path, branch)
        except GitCommandError as exc:
            _emit_log(
                context,
                "error",
                "Failed to create worktree",
                extra={"thread_id": thread_id, "operation": exc.operation, "output": exc.output},
            )
            await compositor.send(thread_id, WORKTREE_FAILED)
            return {"ok": False, "thread_id": thread_id, "message": WORKTREE_FAILED}

        record = await registry.get_or_create(
            thread_id,
            str(worktree_path),
            str(repo.path),
            repo.name,
            user_id=user_id,
            model=agent_model,
        )
        if record is None:
            try:
                await git.remove_worktree(repo.path, worktree_path)
            except GitCommandError as exc:
                _emit_log(context, "warning", "Failed to remove worktree", extra={"thread_id": thread_id, "output": exc.output})
            await compositor.send(thread_id, SESSION_FAILED)
            return {"ok": False, "thread_id": thread_id, "message": SESSION_FAILED}

        await compositor.send(
            thread_id,
            _welcome_message(repo.name, agent_model, record.worktree_path, record.session_id),
        )
        _emit_log(
            context,
            "info",
            "Started session",
            extra={"thread_id": thread_id, "session_id": record.session_id, "repository": repo.name},
        )
        return {
            "ok": True,
            "thread_id": thread_id,
            "session_id": record.session_id,
            "message": f"Session started in <#{thread_id}>",
        }

    async def _send_message(
        thread_id: str,
        content: str,
        user_id: str = "",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Forward a thread mention to the agent."""

        text = _MENTION.sub("", content).strip()
        if not text:
            return {"ok": False, "message": EMPTY_MESSAGE}

        record = await registry.lazy_load(thread_id)
        if record is None:
            return {"ok": False, "message": NO_SESSION}
        if not Path(record.worktree_path).is_dir():
            _emit_log(context, "error", "Worktree missing", extra={"thread_id": thread_id, "worktree_path": record.worktree_path})
            await compositor.send(thread_id, WORKTREE_MISSING)
            return {"ok": False, "message": WORKTREE_MISSING}

        if user_id:
            await registry.set_user(thread_id, user_id)
        await listener.spawn_if_absent(thread_id, wait_connected=LISTENER_CONNECT_TIMEOUT)
        await registry.set_active(thread_id, True)

        try:
            await chat.trigger_typing(thread_id)
        except ChatClientError as exc:
            _emit_log(context, "debug", "Typing indicator failed", extra={"thread_id": thread_id, "error": str(exc)})

        try:
            response = await agent_client.prompt(
                record.session_id,
                directory=record.worktree_path,
                model=record.model,
                message=text + BOUNDARY_INSTRUCTION,
            )
        except AgentClientError as exc:
            _emit_log(
                context,
                "error",
                "Failed to prompt agent",
                extra={"thread_id": thread_id, "session_id": record.session_id, "error": str(exc)},
            )
            await registry.set_active(thread_id, False)
            await compositor.send(thread_id, PROMPT_FAILED)
            return {"ok": False, "message": PROMPT_FAILED}

        return {"ok": True, "session_id": record.session_id, "parts": len(response.parts)}

    async def _select_model(thread_id: str, model: str, context: Context | None = None) -> dict[str, Any]:
        """Switch the model used for the thread's next prompts."""

        try:
            agent_model = catalog.model(model)
        except CatalogLoadError as exc:
            _emit_log(context, "warning", "Model selection rejected", extra={"thread_id": thread_id, "error": str(exc)})
            return {"ok": False, "message": UNKNOWN_MODEL}

        if await registry.lazy_load(thread_id) is None:
            return {"ok": False, "message": NO_SESSION}
        await registry.set_model(thread_id, agent_model)
        return {"ok": True, "model": agent_model.label, "message": f"Model set to {agent_model.label}"}

    async def _fail_commit(
        thread_id: str,
        exc: GitCommandError,
        context: Context | None,
        commit_hash: str | None = None,
    ) -> dict[str, Any]:
        _emit_log(
            context,
            "error",
            "Git operation failed",
            extra={"thread_id": thread_id, "operation": exc.operation, "output": exc.output},
        )
        await registry.update_last_commit(thread_id, CommitStatus.FAILED, commit_hash=commit_hash)
        await compositor.send(thread_id, _git_failure(exc, settings.chat_message_limit))
        message = _GIT_FAILURE_MESSAGES.get(exc.operation, "Git operation failed.")
        return {"ok": False, "status": CommitStatus.FAILED.value, "hash": commit_hash or "", "message": message}

    async def _commit(thread_id: str, context: Context | None = None) -> dict[str, Any]:
        """Summarize the session, then commit and push the worktree."""

        record = await registry.lazy_load(thread_id)
        if record is None:
            return {"ok": False, "message": NO_SESSION}
        worktree = record.worktree_path
        if not Path(worktree).is_dir():
            return {"ok": False, "message": WORKTREE_MISSING}

        try:
            response = await agent_client.prompt(
                record.session_id,
                directory=worktree,
                model=record.model,
                message=settings.summarizer_instruction,
                tools={"write": False, "edit": False},
            )
        except AgentClientError as exc:
            _emit_log(context, "error", "Failed to generate summary", extra={"thread_id": thread_id, "error": str(exc)})
            return {"ok": False, "message": SUMMARY_FAILED}

        full_message = (response.first_text() or "").strip() or DEFAULT_SUMMARY
        summary = _summary_from(full_message)
        await registry.append_commit(thread_id, summary)

        try:
            status = await git.status(worktree)
        except GitCommandError as exc:
            return await _fail_commit(thread_id, exc, context)
        if status.is_clean:
            await registry.update_last_commit(thread_id, CommitStatus.NO_CHANGES)
            return {"ok": True, "status": CommitStatus.NO_CHANGES.value, "message": NO_CHANGES}

        try:
            await git.add_all(worktree)
            commit_hash = await git.commit(worktree, full_message)
        except GitCommandError as exc:
            return await _fail_commit(thread_id, exc, context)

        try:
            branch = await git.current_branch(worktree)
            push_result = await git.push(worktree, branch)
        except GitCommandError as exc:
            return await _fail_commit(thread_id, exc, context, commit_hash=commit_hash)

        await registry.update_last_commit(thread_id, CommitStatus.SUCCESS, commit_hash=commit_hash)

        details = (
            "**Commit & Push Successful**\n\n"
            f"**Summary:** {summary}\n**Hash:** {commit_hash}\n**Branch:** {branch}"
        )
        remote = await git.remote_url(worktree)
        pr_link = construct_pr_link(remote, branch) if remote else None
        if pr_link:
            details += f"\n\n**Pull Request:** {pr_link}"
        push_output = push_result.output or "(no output)"
        await compositor.send(
            thread_id,
            fenced_tail(f"{details}\n\n**Git Push Output:**", push_output, settings.chat_message_limit),
        )

        _emit_log(
            context,
            "info",
            "Committed and pushed session changes",
            extra={"thread_id": thread_id, "hash": commit_hash, "branch": branch},
        )
        return {
            "ok": True,
            "status": CommitStatus.SUCCESS.value,
            "hash": commit_hash,
            "branch": branch,
            "pr_link": pr_link,
            "message": COMMIT_DONE,
        }

    async def _diff(thread_id: str, context: Context | None = None) -> dict[str, Any]:
        """Post the worktree diff as fenced chunks."""

        record = await registry.lazy_load(thread_id)
        if record is None:
            return {"ok": False, "message": NO_SESSION}
        if not Path(record.worktree_path).is_dir():
            return {"ok": False, "message": WORKTREE_MISSING}

        try:
            text = await git.diff(record.worktree_path)
        except GitCommandError as exc:
            _emit_log(context, "error", "Git diff failed", extra={"thread_id": thread_id, "output": exc.output})
            await compositor.send(thread_id, _git_failure(exc, settings.chat_message_limit))
            return {"ok": False, "message": _GIT_FAILURE_MESSAGES["diff"]}

        if text == NO_DIFF_MESSAGE:
            await compositor.send(thread_id, NO_DIFF_MESSAGE)
            return {"ok": True, "chunks": 0, "message": NO_DIFF_MESSAGE}

        chunks = chunk_fenced(text, settings.chat_message_limit)
        for chunk in chunks:
            await compositor.send(thread_id, chunk)
        return {"ok": True, "chunks": len(chunks)}

    async def _cleanup_session(thread_id: str, context: Context | None = None) -> dict[str, Any]:
        """Stop the listener, remove the worktree and forget the session."""

        record = await registry.lazy_load(thread_id)
        if record is None:
            return {"ok": False, "message": NO_SESSION}
        try:
            await git.remove_worktree(record.repository_path, record.worktree_path)
        except GitCommandError as exc:
            _emit_log(context, "warning", "Failed to remove worktree", extra={"thread_id": thread_id, "output": exc.output})
        await registry.cleanup(thread_id)
        return {"ok": True, "message": "Session cleaned up."}

    tool_ping = server.tool(name="ping", description="Check that the relay is running.")(_ping)
    tool_options = server.tool(
        name="list_options",
        description="List repositories and provider/model labels available for new sessions.",
    )(_list_options)
    tool_start = server.tool(
        name="start_session",
        description=(
            "Create a chat thread in the given channel, provision a git worktree for the chosen "
            "repository and start an agent session with the chosen model."
        ),
    )(_start_session)
    tool_send = server.tool(
        name="send_message",
        description="Forward a user's thread message to the thread's agent session.",
    )(_send_message)
    tool_model = server.tool(
        name="select_model",
        description="Change the provider/model label used for the thread's agent prompts.",
    )(_select_model)
    tool_commit = server.tool(
        name="commit",
        description="Summarize the session, commit all worktree changes and push the session branch.",
        annotations={"destructiveHint": False, "openWorldHint": True},
    )(_commit)
    tool_diff = server.tool(
        name="diff",
        description="Post the worktree's current diff to the thread in fenced chunks.",
    )(_diff)
    tool_cleanup = server.tool(
        name="cleanup_session",
        description="Stop the thread's listener, remove its worktree and delete the session record.",
    )(_cleanup_session)

    return ToolHandles(
        ping=tool_ping,
        list_options=tool_options,
        start_session=tool_start,
        send_message=tool_send,
        select_model=tool_model,
        commit=tool_commit,
        diff=tool_diff,
        cleanup_session=tool_cleanup,
    )


__all__ = ["ToolHandles", "register_tools"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the module logger, mirroring to the MCP client when a context is present."""

    payload = extra or {}
    getattr(logger, level, logger.info)(message, extra=payload)
    if context is None:
        return
    ctx_logger = getattr(context, "logger", None)
    if ctx_logger is not None:
        log_method = getattr(ctx_logger, level, None)
        if callable(log_method):
            log_method(message, extra=payload)
