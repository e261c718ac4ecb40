"""Launcher for the ``opencode serve`` subprocess."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..utils import sanitize_environment

logger = logging.getLogger(__name__)


class AgentServerError(RuntimeError):
    """Base class for agent server launcher errors."""


class AgentServerNotFoundError(AgentServerError):
    """Raised when the opencode executable cannot be located."""


@dataclass(slots=True)
class CommandResult:
    """Holds the outcome of a short-lived opencode invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class AgentServer:
    """Run the agent HTTP server as a child process of the relay."""

    def __init__(self, executable: Path | None = None, *, stop_timeout: float = 5.0) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._stop_timeout = stop_timeout
        self._process: asyncio.subprocess.Process | None = None

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise AgentServerNotFoundError(f"opencode executable not found at {candidate}")

        binary = shutil.which("opencode")
        if binary is None:
            raise AgentServerNotFoundError("opencode executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    async def version(self) -> CommandResult:
        cmd = [str(self._executable_path), "--version"]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        return CommandResult(
            args=tuple(cmd),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )

    async def start(self, port: int) -> None:
        """Spawn ``opencode serve`` on ``port``; a second call is a no-op while running."""

        if self.running:
            return
        cmd = [str(self._executable_path), "serve", "--port", str(port)]
        self._process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            env=sanitize_environment(),
        )
        logger.info("Started agent server", extra={"pid": self._process.pid, "port": port})

    async def stop(self) -> None:
        """Terminate the child, escalating to kill after ``stop_timeout`` seconds."""

        process = self._process
        if process is None:
            return
        self._process = None
        if process.returncode is not None:
            return
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self._stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Agent server ignored terminate; killing", extra={"pid": process.pid})
            process.kill()
            await process.wait()
        logger.info("Stopped agent server", extra={"pid": process.pid, "returncode": process.returncode})


__all__ = ["AgentServer", "AgentServerError", "AgentServerNotFoundError", "CommandResult"]
