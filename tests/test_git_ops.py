from __future__ import annotations

import asyncio
import shutil
import subprocess
from pathlib import Path

import pytest

from codesession.git import (
    BOT_AUTHOR_NAME,
    NO_DIFF_MESSAGE,
    GitCommandError,
    GitOperations,
    construct_pr_link,
    parse_porcelain,
    validate_branch_name,
)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", "-c", "commit.gpgsign=false", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def make_repo(path: Path, *, with_remote: bool = False) -> Path:
    path.mkdir(parents=True)
    git(path, "init")
    (path / "README.md").write_text("hello\n", encoding="utf-8")
    git(path, "add", ".")
    git(path, "commit", "-m", "initial")
    if with_remote:
        remote = path.parent / "remote.git"
        git(path.parent, "init", "--bare", str(remote))
        git(path, "remote", "add", "origin", str(remote))
        git(path, "push", "-u", "origin", "HEAD")
    return path


@requires_git
def test_worktree_lifecycle_and_commit(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo")
    worktree = tmp_path / "worktrees" / "42"
    ops = GitOperations()

    async def scenario():
        await ops.create_worktree(repo, worktree, "codesession/42")
        branch = await ops.current_branch(worktree)
        clean = await ops.status(worktree)
        (worktree / "README.md").write_text("hello\nworld\n", encoding="utf-8")
        (worktree / "new.txt").write_text("new\n", encoding="utf-8")
        dirty = await ops.status(worktree)
        diff = await ops.diff(worktree)
        await ops.add_all(worktree)
        commit_hash = await ops.commit(worktree, "feat: change readme\n\n- add world")
        after = await ops.status(worktree)
        empty_diff = await ops.diff(worktree)
        return branch, clean, dirty, diff, commit_hash, after, empty_diff

    branch, clean, dirty, diff, commit_hash, after, empty_diff = asyncio.run(scenario())

    assert branch == "codesession/42"
    assert clean.is_clean
    assert not dirty.is_clean
    assert dirty.untracked == ["new.txt"]
    assert dirty.modified == ["README.md"]
    assert "+world" in diff
    assert len(commit_hash) == 40
    assert after.is_clean
    assert empty_diff == NO_DIFF_MESSAGE
    assert git(worktree, "log", "-1", "--format=%an") == BOT_AUTHOR_NAME

    asyncio.run(ops.remove_worktree(repo, worktree))
    assert not worktree.exists()


@requires_git
def test_push_to_origin(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo", with_remote=True)
    worktree = tmp_path / "worktrees" / "7"
    ops = GitOperations()

    async def scenario():
        await ops.create_worktree(repo, worktree, "codesession/7")
        (worktree / "file.txt").write_text("content\n", encoding="utf-8")
        await ops.add_all(worktree)
        await ops.commit(worktree, "feat: add file")
        result = await ops.push(worktree, "codesession/7")
        remote_url = await ops.remote_url(worktree)
        return result, remote_url

    result, remote_url = asyncio.run(scenario())

    assert result.ok
    assert remote_url == str(tmp_path / "remote.git")
    assert "codesession/7" in git(tmp_path / "remote.git", "branch", "--list")


@requires_git
def test_create_worktree_leaves_source_checkout_untouched(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo", with_remote=True)
    (repo / "shared.txt").write_text("from remote\n", encoding="utf-8")
    git(repo, "add", ".")
    git(repo, "commit", "-m", "remote only")
    git(repo, "push")
    git(repo, "reset", "--hard", "HEAD~1")
    (repo / "notes.txt").write_text("local\n", encoding="utf-8")
    git(repo, "add", ".")
    git(repo, "commit", "-m", "unpushed")
    (repo / "README.md").write_text("hello\nuncommitted edit\n", encoding="utf-8")
    head_before = git(repo, "rev-parse", "HEAD")
    worktree = tmp_path / "worktrees" / "t1"

    asyncio.run(GitOperations().create_worktree(repo, worktree, "codesession/t1"))

    assert git(repo, "rev-parse", "HEAD") == head_before
    assert (repo / "README.md").read_text(encoding="utf-8") == "hello\nuncommitted edit\n"
    assert (repo / "notes.txt").exists()
    assert not (repo / "shared.txt").exists()
    assert (worktree / "shared.txt").exists()
    assert not (worktree / "notes.txt").exists()
    assert (worktree / "README.md").read_text(encoding="utf-8") == "hello\n"


@requires_git
def test_start_point_without_remote_is_head(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo")

    assert asyncio.run(GitOperations().resolve_start_point(repo)) == "HEAD"


@requires_git
def test_push_without_remote_fails(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo")
    ops = GitOperations()

    with pytest.raises(GitCommandError) as excinfo:
        asyncio.run(ops.push(repo, "main"))

    assert excinfo.value.operation == "fetch"
    assert asyncio.run(ops.remote_url(repo)) is None


@requires_git
def test_invalid_branch_is_rejected_before_git_runs(tmp_path: Path) -> None:
    repo = make_repo(tmp_path / "repo")
    worktree = tmp_path / "wt"

    with pytest.raises(GitCommandError) as excinfo:
        asyncio.run(GitOperations().create_worktree(repo, worktree, "bad branch"))

    assert excinfo.value.operation == "worktree add"
    assert not worktree.exists()


@pytest.mark.parametrize(
    "name",
    ["", "-flag", "a..b", "ends.", "tilde~1", "has space", "x.lock", "a:b"],
)
def test_validate_branch_name_rejects(name: str) -> None:
    with pytest.raises(ValueError):
        validate_branch_name(name)


def test_validate_branch_name_accepts_session_branches() -> None:
    validate_branch_name("codesession/1234567890")


def test_parse_porcelain() -> None:
    status = parse_porcelain("M  staged.py\n M edited.py\n?? new.py\nR  old.py -> renamed.py\n")

    assert not status.is_clean
    assert status.staged == ["staged.py", "renamed.py"]
    assert status.modified == ["edited.py"]
    assert status.untracked == ["new.py"]
    assert parse_porcelain("").is_clean


@pytest.mark.parametrize(
    ("remote", "expected"),
    [
        (
            "https://github.com/acme/app.git",
            "https://github.com/acme/app/compare/feature?expand=1",
        ),
        (
            "git@github.com:acme/app.git",
            "https://github.com/acme/app/compare/feature?expand=1",
        ),
        (
            "https://gitlab.com/acme/app",
            "https://gitlab.com/acme/app/-/merge_requests/new?merge_request[source_branch]=feature",
        ),
        (
            "git@gitlab.com:acme/app.git",
            "https://gitlab.com/acme/app/-/merge_requests/new?merge_request[source_branch]=feature",
        ),
        ("https://example.org/acme/app.git", None),
    ],
)
def test_construct_pr_link(remote: str, expected: str | None) -> None:
    assert construct_pr_link(remote, "feature") == expected
