"""Git worktree and commit helpers."""

from .ops import (
    BOT_AUTHOR_EMAIL,
    BOT_AUTHOR_NAME,
    NO_DIFF_MESSAGE,
    GitCommandError,
    GitOperations,
    GitResult,
    GitStatus,
    construct_pr_link,
    parse_porcelain,
    validate_branch_name,
)

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
