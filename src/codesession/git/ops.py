"""Async git subprocess wrapper used for worktrees and the commit flow."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from ..utils import sanitize_environment

logger = logging.getLogger(__name__)

BOT_AUTHOR_NAME = "CodeSession Bot"
BOT_AUTHOR_EMAIL = "codesession-bot@example.com"
NO_DIFF_MESSAGE = "No changes to show."

_FORBIDDEN_BRANCH_CHARS = re.compile(r"[\s~^:?*\[\\]")


class GitCommandError(RuntimeError):
    """Raised when a git invocation exits non-zero.

    ``operation`` names the step (``status``, ``add``, ``commit``, ``push``...) and
    ``output`` holds git's combined output, shown verbatim to users.
    """

    def __init__(self, operation: str, output: str, returncode: int | None = None) -> None:
        super().__init__(f"git {operation} failed: {output.strip()}")
        self.operation = operation
        self.output = output
        self.returncode = returncode


@dataclass(slots=True)
class GitResult:
    """Holds the outcome of one git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


@dataclass(slots=True)
class GitStatus:
    is_clean: bool
    staged: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)


def validate_branch_name(branch: str) -> None:
    """Reject branch names git would refuse or misread as options."""

    problems: list[str] = []
    if not branch:
        problems.append("must not be empty")
    if branch.startswith("-"):
        problems.append("must not start with '-'")
    if branch.endswith(".") or branch.endswith("/") or branch.endswith(".lock"):
        problems.append("must not end with '.', '/' or '.lock'")
    if ".." in branch or "//" in branch or "@{" in branch:
        problems.append("must not contain '..', '//' or '@{'")
    if _FORBIDDEN_BRANCH_CHARS.search(branch):
        problems.append("must not contain whitespace or any of ~^:?*[\\")
    if problems:
        raise ValueError(f"invalid branch name {branch!r}: " + "; ".join(problems))


def parse_porcelain(output: str) -> GitStatus:
    """Parse ``git status --porcelain`` (v1) output."""

    status = GitStatus(is_clean=True)
    for line in output.splitlines():
        if len(line) < 4:
            continue
        index, worktree, path = line[0], line[1], line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        status.is_clean = False
        if index == "?" and worktree == "?":
            status.untracked.append(path)
            continue
        if index not in {" ", "?"}:
            status.staged.append(path)
        if worktree in {"M", "R", "D"}:
            status.modified.append(path)
    return status


def construct_pr_link(remote_url: str, branch: str) -> str | None:
    """Return a pull/merge request URL for GitHub or GitLab remotes, else ``None``."""

    url = remote_url.strip()
    if url.endswith(".git"):
        url = url[: -len(".git")]

    for host in ("github.com", "gitlab.com"):
        repo_path: str | None = None
        if url.startswith(f"https://{host}/"):
            repo_path = url[len(f"https://{host}/") :]
        elif url.startswith(f"git@{host}:"):
            repo_path = url[len(f"git@{host}:") :]
        elif url.startswith(f"ssh://git@{host}/"):
            repo_path = url[len(f"ssh://git@{host}/") :]
        if not repo_path:
            continue
        if host == "github.com":
            return f"https://github.com/{repo_path}/compare/{branch}?expand=1"
        return f"https://gitlab.com/{repo_path}/-/merge_requests/new?merge_request[source_branch]={branch}"
    return None


class GitOperations:
    """Run git commands asynchronously against worktrees and source repositories."""

    def __init__(self, executable: str = "git") -> None:
        self._executable = executable

    async def _invoke(self, *args: str, cwd: Path | str) -> GitResult:
        cmd = [self._executable, *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment({"GIT_TERMINAL_PROMPT": "0"}),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        result = GitResult(
            args=tuple(cmd),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )
        logger.debug("git %s exited %s", args[0] if args else "", result.returncode, extra={"cwd": str(cwd)})
        return result

    async def _run(self, operation: str, *args: str, cwd: Path | str) -> GitResult:
        result = await self._invoke(*args, cwd=cwd)
        if not result.ok:
            raise GitCommandError(operation, result.output, result.returncode)
        return result

    async def has_remote(self, repo_path: Path | str, remote: str = "origin") -> bool:
        result = await self._invoke("remote", cwd=repo_path)
        return result.ok and remote in result.stdout.split()

    async def resolve_start_point(self, repo_path: Path | str) -> str:
        """Return the ref a new session branch is cut from.

        Fetches ``origin`` and prefers its default branch, then the checkout's
        upstream; ``HEAD`` when there is no usable remote ref. Only remote-tracking
        refs are updated, the source checkout's working tree and HEAD stay as they are.
        """

        if not await self.has_remote(repo_path):
            return "HEAD"
        fetch = await self._invoke("fetch", "origin", cwd=repo_path)
        if not fetch.ok:
            logger.warning("git fetch failed", extra={"repo_path": str(repo_path), "output": fetch.output})

        for args in (
            ("symbolic-ref", "--quiet", "--short", "refs/remotes/origin/HEAD"),
            ("rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}"),
        ):
            result = await self._invoke(*args, cwd=repo_path)
            ref = result.stdout.strip()
            if result.ok and ref:
                return ref
        return "HEAD"

    async def create_worktree(self, repo_path: Path | str, worktree_path: Path | str, branch: str) -> None:
        """Create ``worktree_path`` on a new ``branch`` cut from the remote's current state."""

        try:
            validate_branch_name(branch)
        except ValueError as exc:
            raise GitCommandError("worktree add", str(exc)) from exc

        target = Path(worktree_path)
        if target.exists():
            raise GitCommandError("worktree add", f"worktree path already exists: {target}")
        target.parent.mkdir(parents=True, exist_ok=True)

        start_point = await self.resolve_start_point(repo_path)
        await self._run("worktree add", "worktree", "add", "-b", branch, str(target), start_point, cwd=repo_path)
        logger.info(
            "Created worktree",
            extra={
                "repo_path": str(repo_path),
                "worktree_path": str(target),
                "branch": branch,
                "start_point": start_point,
            },
        )

    async def remove_worktree(self, repo_path: Path | str, worktree_path: Path | str) -> None:
        target = Path(worktree_path)
        if not target.exists():
            await self._invoke("worktree", "prune", cwd=repo_path)
            return
        await self._run("worktree remove", "worktree", "remove", "--force", str(target), cwd=repo_path)
        logger.info("Removed worktree", extra={"repo_path": str(repo_path), "worktree_path": str(target)})

    async def status(self, worktree_path: Path | str) -> GitStatus:
        result = await self._run("status", "status", "--porcelain", cwd=worktree_path)
        return parse_porcelain(result.stdout)

    async def add_all(self, worktree_path: Path | str) -> GitResult:
        return await self._run("add", "add", ".", cwd=worktree_path)

    async def commit(self, worktree_path: Path | str, message: str) -> str:
        """Commit staged changes as the bot identity with hooks bypassed; return the new hash."""

        await self._run(
            "commit",
            "-c",
            f"user.name={BOT_AUTHOR_NAME}",
            "-c",
            f"user.email={BOT_AUTHOR_EMAIL}",
            "-c",
            "commit.gpgsign=false",
            "commit",
            "--no-verify",
            "-m",
            message,
            cwd=worktree_path,
        )
        return await self.rev_parse(worktree_path)

    async def rev_parse(self, worktree_path: Path | str, ref: str = "HEAD") -> str:
        result = await self._run("rev-parse", "rev-parse", ref, cwd=worktree_path)
        return result.stdout.strip()

    async def current_branch(self, worktree_path: Path | str) -> str:
        result = await self._run("branch", "branch", "--show-current", cwd=worktree_path)
        branch = result.stdout.strip()
        if not branch:
            raise GitCommandError("branch", "worktree is in detached HEAD state")
        return branch

    async def push(self, worktree_path: Path | str, branch: str) -> GitResult:
        """Fetch then push ``branch`` to ``origin``, setting upstream."""

        await self._run("fetch", "fetch", "origin", cwd=worktree_path)
        return await self._run("push", "push", "-u", "origin", branch, cwd=worktree_path)

    async def diff(self, worktree_path: Path | str) -> str:
        result = await self._run(
            "diff",
            "diff",
            "--minimal",
            "--ignore-all-space",
            "--diff-filter=ACMR",
            cwd=worktree_path,
        )
        return result.stdout if result.stdout.strip() else NO_DIFF_MESSAGE

    async def remote_url(self, worktree_path: Path | str, remote: str = "origin") -> str | None:
        result = await self._invoke("remote", "get-url", remote, cwd=worktree_path)
        if not result.ok:
            return None
        return result.stdout.strip() or None


__all__ = [
    "BOT_AUTHOR_EMAIL",
    "BOT_AUTHOR_NAME",
    "GitCommandError",
    "GitOperations",
    "GitResult",
    "GitStatus",
    "NO_DIFF_MESSAGE",
    "construct_pr_link",
    "parse_porcelain",
    "validate_branch_name",
]
