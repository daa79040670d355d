"""SQLite database module for kryten-streambot.

Follows the kryten-userstats pattern: each public method is async and wraps
a synchronous inner function via asyncio.run_in_executor(None, _sync).
A new connection is created per call (WAL mode, 30s busy timeout, Row factory).

``BotDatabase`` owns the schema; the per-entity repositories in
``repositories.py`` share its connection factory.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Callable, TypeVar

T = TypeVar("T")

TOKEN_TABLES: dict[str, str] = {
    "broadcaster": "twitch_tokens",
    "donation": "donationalerts_tokens",
    "bot": "bot_tokens",
}

TEMPLATE_TABLES: dict[str, tuple[str, tuple[str, ...]]] = {
    "intim": ("intim_contexts", ("variant_one", "variant_two")),
    "poceluy": ("poceluy_contexts", ("variant_two", "variant_three", "variant_four")),
}


class BotDatabase:
    """SQLite-backed persistence for the stream bot."""

    def __init__(self, db_path: str, logger: logging.Logger) -> None:
        self._db_path = db_path
        self._logger = logger

    def _get_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection with standard settings."""
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.row_factory = sqlite3.Row
        return conn

    async def run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``fn(conn)`` on a fresh connection in the default executor."""
        loop = asyncio.get_running_loop()

        def _sync() -> T:
            conn = self._get_connection()
            try:
                return fn(conn)
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Initialization
    # ══════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """Create all tables and indexes. Idempotent."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._create_tables)

    def _create_tables(self) -> None:
        conn = self._get_connection()
        try:
            # ── Users & counters ─────────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL,
                    twitch_login TEXT UNIQUE,
                    vote_limit INTEGER DEFAULT 1,
                    affinity INTEGER DEFAULT 0,
                    last_affinity_note TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_stats (
                    user_id INTEGER NOT NULL,
                    stat_key TEXT NOT NULL,
                    value INTEGER DEFAULT 0,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(user_id, stat_key)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_users_username ON users(username COLLATE NOCASE)"
            )

            # ── Achievements ─────────────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS achievements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    stat_key TEXT NOT NULL,
                    threshold INTEGER NOT NULL,
                    title TEXT,
                    description TEXT,
                    UNIQUE(stat_key, threshold)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_achievements (
                    user_id INTEGER NOT NULL,
                    achievement_id INTEGER NOT NULL,
                    earned_at TEXT NOT NULL,
                    UNIQUE(user_id, achievement_id)
                )
            """)

            # ── Polls & votes ────────────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS games (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS polls (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    archived BOOLEAN DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS poll_games (
                    poll_id INTEGER NOT NULL,
                    game_id INTEGER NOT NULL,
                    UNIQUE(poll_id, game_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS votes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    poll_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    game_id INTEGER NOT NULL,
                    slot INTEGER NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(poll_id, user_id, slot)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

            # ── Stream session roster ────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS stream_chatters (
                    user_id INTEGER PRIMARY KEY,
                    message_count INTEGER DEFAULT 0,
                    joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # ── Paired-command templates ─────────────────────
            for table, columns in TEMPLATE_TABLES.values():
                cols = ", ".join(f"{c} TEXT" for c in columns)
                conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} "
                    f"(id INTEGER PRIMARY KEY AUTOINCREMENT, {cols})"
                )

            # ── Persisted credentials ────────────────────────
            for table in TOKEN_TABLES.values():
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        access_token TEXT NOT NULL,
                        refresh_token TEXT,
                        expires_at TEXT,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

            # ── Structured log sink & overlay media ──────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS event_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message TEXT NOT NULL,
                    media_url TEXT,
                    preview_url TEXT,
                    title TEXT,
                    type TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_event_logs_type ON event_logs(type, created_at)"
            )
            conn.execute("""
                CREATE TABLE IF NOT EXISTS obs_media (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    type TEXT NOT NULL,
                    gif_url TEXT,
                    sound_url TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS log_rewards (
                    reward_id TEXT PRIMARY KEY
                )
            """)

            conn.commit()
            self._logger.debug("Database schema ready at %s", self._db_path)
        finally:
            conn.close()
