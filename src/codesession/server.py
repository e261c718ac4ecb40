"""FastMCP server bootstrap for the CodeSession relay."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .agent import AgentClient, AgentServer, AgentServerNotFoundError, get_agent_client
from .catalog import CatalogLoadError, CatalogLoader
from .chat import ChatClient, DiscordChatClient
from .config import ConfigurationError, RelaySettings, get_settings
from .git import GitOperations
from .session import EventListener, ListenerSet, MessageCompositor, SessionRegistry
from .storage import SessionStore
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the relay."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_server(
    settings: Optional[RelaySettings] = None,
    *,
    agent_client: AgentClient | None = None,
    chat_client: ChatClient | None = None,
    git: GitOperations | None = None,
    agent_server: AgentServer | None = None,
) -> FastMCP:
    """Wire the session components together behind a FastMCP server."""

    settings = settings or get_settings()

    if chat_client is None:
        if not settings.bot_token:
            raise ConfigurationError("DISCORD_BOT_TOKEN is required")
        chat_client = DiscordChatClient(settings.bot_token, api_base=settings.chat_api_base)

    agent_metadata: dict[str, Any] = {
        "base_url": settings.agent_base_url,
        "spawn": settings.spawn_agent_server,
        "executable": None,
        "version": None,
        "error": None,
    }
    if agent_server is None and settings.spawn_agent_server:
        try:
            agent_server = AgentServer(Path(settings.agent_executable) if settings.agent_executable else None)
            version_result = _run_sync(agent_server.version())
            if version_result.ok:
                agent_metadata["version"] = version_result.stdout.strip()
        except AgentServerNotFoundError as exc:
            agent_metadata["error"] = str(exc)
            agent_server = None
    if agent_server is not None:
        agent_metadata["executable"] = str(agent_server.executable)

    if agent_client is None:
        agent_client = get_agent_client(settings.agent_base_url, prompt_timeout=settings.agent_prompt_timeout)

    git = git or GitOperations()
    catalog = CatalogLoader(settings.catalog_path)
    store = SessionStore(settings.sessions_path)
    listeners = ListenerSet()
    registry = SessionRegistry(store, agent_client, listeners=listeners)
    compositor = MessageCompositor(
        registry,
        chat_client,
        message_limit=settings.chat_message_limit,
        safety_margin=settings.chat_safety_margin,
        min_edit_interval=settings.min_edit_interval,
    )
    listener = EventListener(registry, listeners, compositor, agent_client)

    @asynccontextmanager
    async def relay_lifespan(_server: FastMCP):
        """Start the agent server on startup; stop every listener before closing clients."""

        if agent_server is not None and settings.spawn_agent_server:
            await agent_server.start(settings.agent_port)
        try:
            yield {"registry": registry, "listeners": listeners}
        finally:
            await listeners.shutdown()
            await agent_client.aclose()
            await chat_client.aclose()
            if agent_server is not None:
                await agent_server.stop()
            logging.getLogger(__name__).info("Relay shut down")

    server = FastMCP(
        name="CodeSession Relay",
        version=__version__,
        instructions=(
            "CodeSession pairs chat threads with opencode agent sessions running in dedicated git "
            "worktrees. Start a session, forward thread messages, then diff and commit the result."
        ),
        lifespan=relay_lifespan,
    )

    handles = register_tools(
        server,
        settings=settings,
        catalog=catalog,
        registry=registry,
        listener=listener,
        compositor=compositor,
        chat=chat_client,
        git=git,
        agent_client=agent_client,
    )

    @server.resource(
        "resource://codesession/status",
        name="codesession_status",
        title="CodeSession Relay Status",
        description="Provides the current runtime status for the relay.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    async def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        try:
            loaded = catalog.load()
            catalog_summary: dict[str, Any] = {
                "repositories": [repo.name for repo in loaded.repositories],
                "models": [model.label for model in loaded.models],
                "error": None,
            }
        except CatalogLoadError as exc:
            catalog_summary = {"repositories": [], "models": [], "error": str(exc)}

        sessions = await registry.snapshot()
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "catalog": catalog_summary,
            "agent": {**agent_metadata, "running": bool(agent_server and agent_server.running)},
            "sessions": {
                "cached": len(sessions),
                "active": sum(1 for item in sessions if item["active"]),
                "preview": sessions[-5:],
                "path": str(settings.sessions_path),
            },
            "listeners": listeners.active_threads(),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "relay_settings", settings)
    setattr(server, "relay_lifespan", relay_lifespan)
    setattr(server, "agent_metadata", agent_metadata)
    setattr(server, "agent_server", agent_server)
    setattr(server, "session_registry", registry)
    setattr(server, "listener_set", listeners)
    setattr(server, "compositor", compositor)
    setattr(server, "event_listener", listener)
    setattr(server, "catalog_loader", catalog)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the relay via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    try:
        CatalogLoader(settings.catalog_path).load()
        server = create_server(settings)
    except (CatalogLoadError, ConfigurationError) as exc:
        logger.error("Invalid configuration", extra={"error": str(exc)})
        raise SystemExit(1) from exc

    logger.info(
        "Launching CodeSession relay",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "agent_base_url": settings.agent_base_url,
            "agent_server": getattr(server, "agent_metadata", {}).get("executable"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
