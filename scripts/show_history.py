#!/usr/bin/env python3
"""Print a student's chat history or a department's question log.

Usage:
    python scripts/show_history.py sessions student@uni.edu
    python scripts/show_history.py sessions student@uni.edu session_1712...
    python scripts/show_history.py provider library@uni.edu
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from gateway.audit import AuditLogSink  # noqa: E402
from gateway.config import AppConfig  # noqa: E402
from gateway.errors import NotFoundError  # noqa: E402
from gateway.history import SessionQueryService  # noqa: E402
from gateway.sessions import ConversationStore  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Inspect recorded chat sessions and provider question logs."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sessions = sub.add_parser("sessions", help="List a student's sessions, or dump one.")
    sessions.add_argument("email", help="Student email.")
    sessions.add_argument("session_id", nargs="?", help="Session to dump in full.")

    provider = sub.add_parser("provider", help="Dump a department's question log.")
    provider.add_argument("email", help="Department account email, or 'unknown'.")
    provider.add_argument("--store", help="Only entries for this store.")

    return parser.parse_args()


async def show_sessions(history: SessionQueryService, email: str, session_id: str = None) -> int:
    if session_id:
        try:
            session = await history.get_session(email, session_id)
        except NotFoundError as exc:
            print(exc)
            return 1
        print(json.dumps(session.to_dict(), indent=2, ensure_ascii=False))
        return 0

    sessions = await history.list_sessions(email)
    if not sessions:
        print(f"No sessions for {email}")
        return 0
    for summary in sessions:
        print(f"{summary.created_at.isoformat()}  {summary.session_id}  {summary.session_name}")
    print(f"\n{len(sessions)} session(s)")
    return 0


async def show_provider(audit_log: AuditLogSink, email: str, store: str = None) -> int:
    entries = await audit_log.read(email)
    if store:
        entries = [entry for entry in entries if entry.get("store_name") == store]
    for entry in entries:
        answered = "answered" if entry.get("response") is not None else "NO ANSWER"
        print(f"{entry.get('asked_at')}  [{entry.get('store_name')}] {entry.get('user_email')}: "
              f"{entry.get('question')} ({answered})")
    print(f"\n{len(entries)} entr{'y' if len(entries) == 1 else 'ies'}")
    return 0


def main() -> int:
    args = parse_args()
    paths = AppConfig.get().paths

    if args.command == "sessions":
        history = SessionQueryService(ConversationStore(paths.sessions_dir))
        return asyncio.run(show_sessions(history, args.email, args.session_id))
    return asyncio.run(show_provider(AuditLogSink(paths.provider_logs_dir), args.email, args.store))


if __name__ == "__main__":
    sys.exit(main())
