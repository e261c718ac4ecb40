"""CodeSession relay diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from codesession.config import RelaySettings
from codesession.storage import SessionStore, SessionStoreError


def load_store(settings: RelaySettings) -> SessionStore:
    store = SessionStore(settings.sessions_path)
    if not store.directory.is_dir():
        print(f"Sessions directory not found: {store.directory}")
        raise SystemExit(1)
    return store


def cmd_sessions(args: argparse.Namespace) -> None:
    settings = RelaySettings()
    store = load_store(settings)
    errors: list[str] = []
    records = list(store.list_records(errors))
    if args.json:
        payload = [
            {
                "thread_id": record.thread_id,
                "session_id": record.session_id,
                "repository": record.repository_name,
                "model": record.model.label if record.model else None,
                "worktree_path": record.worktree_path,
                "created_at": record.created_at.isoformat(),
                "commits": len(record.commits),
            }
            for record in records
        ]
        print(json.dumps({"sessions": payload, "errors": errors}, indent=2))
    else:
        for record in records:
            model = record.model.label if record.model else "-"
            print(f"{record.thread_id} [{record.repository_name}] {model} -> {record.session_id}")
        for error in errors:
            print(f"! {error}")


def cmd_commits(args: argparse.Namespace) -> None:
    settings = RelaySettings()
    store = load_store(settings)
    try:
        record = store.load(args.thread_id)
    except SessionStoreError as exc:
        print(f"Session unreadable: {exc}")
        raise SystemExit(1)
    if record is None:
        print(f"No session for thread {args.thread_id}")
        raise SystemExit(1)
    payload = [
        {
            "hash": commit.hash,
            "summary": commit.summary,
            "timestamp": commit.timestamp.isoformat(),
            "status": commit.status.value,
        }
        for commit in record.commits
    ]
    print(json.dumps(payload, indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = RelaySettings()
    store = load_store(settings)
    errors: list[str] = []
    records = list(store.list_records(errors))

    repository_counts: dict[str, int] = {}
    commit_counts: dict[str, int] = {}
    for record in records:
        repository_counts[record.repository_name] = repository_counts.get(record.repository_name, 0) + 1
        for commit in record.commits:
            commit_counts[commit.status.value] = commit_counts.get(commit.status.value, 0) + 1

    metrics = {
        "sessions_total": len(records),
        "unreadable_sessions": len(errors),
        "sessions_by_repository": repository_counts,
        "commits_total": sum(commit_counts.values()),
        "commit_status_counts": commit_counts,
    }
    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="CodeSession relay diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List persisted sessions")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_commits = sub.add_parser("commits", help="Show the commit history of one thread")
    p_commits.add_argument("--thread-id", required=True)
    p_commits.set_defaults(func=cmd_commits)

    p_metrics = sub.add_parser("metrics", help="Show session and commit counts")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
