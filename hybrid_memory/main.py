"""Hybrid memory maintenance CLI.

Entry point for inspecting the durable conversation store.
Usage:
    python -m hybrid_memory.main --init                  # Write default config
    python -m hybrid_memory.main --check-store           # Probe store connectivity
    python -m hybrid_memory.main --list-sessions         # Recently updated sessions
    python -m hybrid_memory.main --show SESSION_ID       # Print a stored conversation
    python -m hybrid_memory.main --delete SESSION_ID     # Remove a stored conversation
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import structlog

from hybrid_memory.config import HybridMemoryConfig, get_home, load_config, save_default_config
from hybrid_memory.core.memory.store import DurableStoreAdapter, SQLiteConversationStore

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_LEVELS.get(level.upper(), 20)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def _load_env() -> None:
    """Load .env files from project root and ~/.hybrid_memory/ (embedding API keys)."""
    env_file = Path(".env")
    if env_file.exists():
        from dotenv import load_dotenv
        load_dotenv(env_file)

    home_env = get_home() / ".env"
    if home_env.exists():
        from dotenv import load_dotenv
        load_dotenv(home_env)


def _open_store(config: HybridMemoryConfig) -> SQLiteConversationStore:
    # The CLI always talks to the SQLite file, even when the store is disabled
    # for live memories.
    return SQLiteConversationStore(config.store.resolve_db_path())


def _format_ts(millis: int | None) -> str:
    if not millis:
        return "-"
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat(timespec="seconds")


async def _handle_check_store(config: HybridMemoryConfig) -> int:
    store = _open_store(config)
    adapter = DurableStoreAdapter(store, connect_timeout=config.store.connect_timeout)
    if await adapter.check_connection():
        print(f"Store reachable: {store.db_path}")
        return 0
    print(f"Store NOT reachable: {store.db_path}")
    return 1


async def _handle_list_sessions(config: HybridMemoryConfig, limit: int) -> int:
    sessions = await _open_store(config).list_sessions(limit=limit)
    if not sessions:
        print("No stored sessions.")
        return 0
    for s in sessions:
        print(f"{s['session_id']}\t{s['message_count']} messages\t{_format_ts(s['last_updated'])}")
    return 0


async def _handle_show(config: HybridMemoryConfig, session_id: str) -> int:
    store = _open_store(config)
    adapter = DurableStoreAdapter(store, connect_timeout=config.store.connect_timeout)
    messages = await adapter.load(session_id)
    if not messages:
        print(f"No messages stored for session: {session_id}")
        return 1
    for m in messages:
        print(f"[{_format_ts(m.timestamp)}] {m.role.value}: {m.text}")
    return 0


async def _handle_delete(config: HybridMemoryConfig, session_id: str) -> int:
    if await _open_store(config).delete_session(session_id):
        print(f"Deleted session: {session_id}")
        return 0
    print(f"Session not found: {session_id}")
    return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Hybrid conversation memory - store maintenance",
        prog="hybrid-memory",
    )
    parser.add_argument(
        "--init",
        action="store_true",
        help="Initialize default configuration",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config file (default: ~/.hybrid_memory/config.yaml)",
    )
    parser.add_argument(
        "--check-store",
        action="store_true",
        help="Check that the durable store is reachable",
    )
    parser.add_argument(
        "--list-sessions",
        action="store_true",
        help="List recently updated sessions",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum sessions to list (used with --list-sessions)",
    )
    parser.add_argument(
        "--show",
        metavar="SESSION_ID",
        default=None,
        help="Print the stored conversation for a session",
    )
    parser.add_argument(
        "--delete",
        metavar="SESSION_ID",
        default=None,
        help="Delete the stored conversation for a session",
    )
    args = parser.parse_args(argv)

    if args.init:
        config_path = save_default_config(
            Path(args.config) if args.config else None
        )
        print(f"Default config saved to: {config_path}")
        return 0

    # Load config
    config_path = Path(args.config) if args.config else None
    config = load_config(config_path)
    setup_logging(config.logging.level)
    _load_env()

    if args.check_store:
        return asyncio.run(_handle_check_store(config))
    if args.list_sessions:
        return asyncio.run(_handle_list_sessions(config, args.limit))
    if args.show:
        return asyncio.run(_handle_show(config, args.show))
    if args.delete:
        return asyncio.run(_handle_delete(config, args.delete))

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
