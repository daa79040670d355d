"""Per-entity repositories over ``BotDatabase``.

Each repository exposes a small async capability contract; the engines
depend on these rather than on SQL. Every method runs one short synchronous
unit of work on a fresh connection through ``BotDatabase.run``.
"""

from __future__ import annotations

import sqlite3

from .database import TEMPLATE_TABLES, TOKEN_TABLES, BotDatabase
from .utils import iso_now, normalize_username


def _row_to_dict(row: sqlite3.Row | None) -> dict | None:
    return dict(row) if row is not None else None


# ══════════════════════════════════════════════════════════════
#  Users & counters
# ══════════════════════════════════════════════════════════════

class UserRepository:
    def __init__(self, database: BotDatabase) -> None:
        self._db = database

    async def get_or_create(self, login: str, display_name: str | None = None) -> dict:
        """Find a user by login, creating the row on first sight."""
        login = normalize_username(login)
        name = display_name or login

        def _sync(conn: sqlite3.Connection) -> dict:
            row = conn.execute(
                "SELECT * FROM users WHERE twitch_login = ?", (login,),
            ).fetchone()
            if row is not None:
                if display_name and row["username"] != display_name:
                    conn.execute(
                        "UPDATE users SET username = ? WHERE id = ?",
                        (display_name, row["id"]),
                    )
                    conn.commit()
                    return {**dict(row), "username": display_name}
                return dict(row)
            try:
                conn.execute(
                    "INSERT INTO users (username, twitch_login) VALUES (?, ?)",
                    (name, login),
                )
                conn.commit()
            except sqlite3.IntegrityError:
                pass  # Created concurrently
            row = conn.execute(
                "SELECT * FROM users WHERE twitch_login = ?", (login,),
            ).fetchone()
            return dict(row)

        return await self._db.run(_sync)

    async def find_by_login(self, login: str) -> dict | None:
        login = normalize_username(login)
        if not login:
            return None

        def _sync(conn: sqlite3.Connection) -> dict | None:
            row = conn.execute(
                "SELECT * FROM users WHERE twitch_login = ?", (login,),
            ).fetchone()
            return _row_to_dict(row)

        return await self._db.run(_sync)

    async def increment_stat(self, user_id: int, key: str, amount: int = 1) -> int:
        """Atomically add *amount* to a counter and return the new value."""

        def _sync(conn: sqlite3.Connection) -> int:
            conn.execute(
                """INSERT INTO user_stats (user_id, stat_key, value, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(user_id, stat_key)
                   DO UPDATE SET value = value + excluded.value,
                                 updated_at = excluded.updated_at""",
                (user_id, key, amount, iso_now()),
            )
            row = conn.execute(
                "SELECT value FROM user_stats WHERE user_id = ? AND stat_key = ?",
                (user_id, key),
            ).fetchone()
            conn.commit()
            return int(row["value"])

        return await self._db.run(_sync)

    async def set_stat_max(self, user_id: int, key: str, value: int) -> int:
        """Raise a counter to *value* if it is lower. Returns the stored value."""

        def _sync(conn: sqlite3.Connection) -> int:
            conn.execute(
                """INSERT INTO user_stats (user_id, stat_key, value, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(user_id, stat_key)
                   DO UPDATE SET value = MAX(value, excluded.value),
                                 updated_at = excluded.updated_at""",
                (user_id, key, value, iso_now()),
            )
            row = conn.execute(
                "SELECT value FROM user_stats WHERE user_id = ? AND stat_key = ?",
                (user_id, key),
            ).fetchone()
            conn.commit()
            return int(row["value"])

        return await self._db.run(_sync)

    async def get_stat(self, user_id: int, key: str) -> int:
        def _sync(conn: sqlite3.Connection) -> int:
            row = conn.execute(
                "SELECT value FROM user_stats WHERE user_id = ? AND stat_key = ?",
                (user_id, key),
            ).fetchone()
            return int(row["value"]) if row else 0

        return await self._db.run(_sync)

    async def get_stats(self, user_id: int) -> dict[str, int]:
        def _sync(conn: sqlite3.Connection) -> dict[str, int]:
            rows = conn.execute(
                "SELECT stat_key, value FROM user_stats WHERE user_id = ? ORDER BY stat_key",
                (user_id,),
            ).fetchall()
            return {r["stat_key"]: int(r["value"]) for r in rows}

        return await self._db.run(_sync)

    async def increment_vote_limit(self, user_id: int, amount: int = 1) -> int:
        def _sync(conn: sqlite3.Connection) -> int:
            conn.execute(
                "UPDATE users SET vote_limit = MAX(COALESCE(vote_limit, 1), 1) + ? WHERE id = ?",
                (amount, user_id),
            )
            row = conn.execute("SELECT vote_limit FROM users WHERE id = ?", (user_id,)).fetchone()
            conn.commit()
            return int(row["vote_limit"]) if row else 0

        return await self._db.run(_sync)

    async def update_affinity(
        self, user_id: int, delta: int, lower: int, upper: int, note: str | None,
    ) -> int:
        """Shift affinity by *delta*, clamped to [lower, upper]."""

        def _sync(conn: sqlite3.Connection) -> int:
            conn.execute(
                """UPDATE users
                   SET affinity = MIN(?, MAX(?, COALESCE(affinity, 0) + ?)),
                       last_affinity_note = ?
                   WHERE id = ?""",
                (upper, lower, delta, note, user_id),
            )
            row = conn.execute("SELECT affinity FROM users WHERE id = ?", (user_id,)).fetchone()
            conn.commit()
            return int(row["affinity"]) if row else 0

        return await self._db.run(_sync)


# ══════════════════════════════════════════════════════════════
#  Achievements
# ══════════════════════════════════════════════════════════════

class AchievementRepository:
    def __init__(self, database: BotDatabase) -> None:
        self._db = database

    async def seed(self, catalog: dict[str, list[int]]) -> int:
        """Insert any missing (stat_key, threshold) rows. Returns rows added."""

        def _sync(conn: sqlite3.Connection) -> int:
            added = 0
            for key, thresholds in catalog.items():
                for threshold in thresholds:
                    cur = conn.execute(
                        """INSERT OR IGNORE INTO achievements (stat_key, threshold, title, description)
                           VALUES (?, ?, ?, ?)""",
                        (key, threshold, f"{key} {threshold}", None),
                    )
                    added += cur.rowcount
            conn.commit()
            return added

        return await self._db.run(_sync)

    async def find(self, stat_key: str, threshold: int) -> dict | None:
        def _sync(conn: sqlite3.Connection) -> dict | None:
            row = conn.execute(
                "SELECT * FROM achievements WHERE stat_key = ? AND threshold = ?",
                (stat_key, threshold),
            ).fetchone()
            return _row_to_dict(row)

        return await self._db.run(_sync)

    async def award(self, user_id: int, achievement_id: int) -> bool:
        """Insert a UserAchievement row. Returns False if it already existed."""

        def _sync(conn: sqlite3.Connection) -> bool:
            try:
                conn.execute(
                    "INSERT INTO user_achievements (user_id, achievement_id, earned_at) VALUES (?, ?, ?)",
                    (user_id, achievement_id, iso_now()),
                )
                conn.commit()
                return True
            except sqlite3.IntegrityError:
                return False

        return await self._db.run(_sync)

    async def list_for_user(self, user_id: int) -> list[dict]:
        def _sync(conn: sqlite3.Connection) -> list[dict]:
            rows = conn.execute(
                """SELECT a.stat_key, a.threshold, a.title, ua.earned_at
                   FROM user_achievements ua
                   JOIN achievements a ON a.id = ua.achievement_id
                   WHERE ua.user_id = ?
                   ORDER BY ua.earned_at, a.stat_key, a.threshold""",
                (user_id,),
            ).fetchall()
            return [dict(r) for r in rows]

        return await self._db.run(_sync)


# ══════════════════════════════════════════════════════════════
#  Polls & votes
# ══════════════════════════════════════════════════════════════

class PollRepository:
    def __init__(self, database: BotDatabase) -> None:
        self._db = database

    async def get_active(self) -> dict | None:
        """Newest non-archived poll."""

        def _sync(conn: sqlite3.Connection) -> dict | None:
            row = conn.execute(
                "SELECT * FROM polls WHERE archived = 0 ORDER BY id DESC LIMIT 1",
            ).fetchone()
            return _row_to_dict(row)

        return await self._db.run(_sync)

    async def games_with_votes(self, poll_id: int) -> list[dict]:
        """Games in the poll, in insertion order, with their vote totals."""

        def _sync(conn: sqlite3.Connection) -> list[dict]:
            rows = conn.execute(
                """SELECT g.id, g.name,
                          (SELECT COUNT(*) FROM votes v
                           WHERE v.poll_id = pg.poll_id AND v.game_id = g.id) AS votes
                   FROM poll_games pg
                   JOIN games g ON g.id = pg.game_id
                   WHERE pg.poll_id = ?
                   ORDER BY pg.rowid""",
                (poll_id,),
            ).fetchall()
            return [dict(r) for r in rows]

        return await self._db.run(_sync)

    async def create(self, game_names: list[str]) -> int:
        """Create a poll over the named games (inserting unknown games)."""

        def _sync(conn: sqlite3.Connection) -> int:
            cur = conn.execute("INSERT INTO polls (archived) VALUES (0)")
            poll_id = cur.lastrowid
            for name in game_names:
                row = conn.execute(
                    "SELECT id FROM games WHERE name = ?", (name,),
                ).fetchone()
                game_id = row["id"] if row else conn.execute(
                    "INSERT INTO games (name) VALUES (?)", (name,),
                ).lastrowid
                conn.execute(
                    "INSERT OR IGNORE INTO poll_games (poll_id, game_id) VALUES (?, ?)",
                    (poll_id, game_id),
                )
            conn.commit()
            return int(poll_id)

        return await self._db.run(_sync)

    async def get_setting(self, key: str) -> str | None:
        def _sync(conn: sqlite3.Connection) -> str | None:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None

        return await self._db.run(_sync)

    async def set_setting(self, key: str, value: str) -> None:
        def _sync(conn: sqlite3.Connection) -> None:
            conn.execute(
                """INSERT INTO settings (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
                (key, value),
            )
            conn.commit()

        await self._db.run(_sync)


class VoteRepository:
    def __init__(self, database: BotDatabase) -> None:
        self._db = database

    async def list_for_user(self, poll_id: int, user_id: int) -> list[dict]:
        def _sync(conn: sqlite3.Connection) -> list[dict]:
            rows = conn.execute(
                "SELECT * FROM votes WHERE poll_id = ? AND user_id = ? ORDER BY slot",
                (poll_id, user_id),
            ).fetchall()
            return [dict(r) for r in rows]

        return await self._db.run(_sync)

    async def add(self, poll_id: int, user_id: int, game_id: int, slot: int) -> None:
        """Insert a vote. Raises sqlite3.IntegrityError if the slot is taken."""

        def _sync(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO votes (poll_id, user_id, game_id, slot) VALUES (?, ?, ?, ?)",
                (poll_id, user_id, game_id, slot),
            )
            conn.commit()

        await self._db.run(_sync)

    async def tally_for_user(self, poll_id: int, user_id: int) -> list[dict]:
        """Per-game vote counts for one user, most voted first."""

        def _sync(conn: sqlite3.Connection) -> list[dict]:
            rows = conn.execute(
                """SELECT g.name, COUNT(*) AS count
                   FROM votes v JOIN games g ON g.id = v.game_id
                   WHERE v.poll_id = ? AND v.user_id = ?
                   GROUP BY g.id, g.name
                   ORDER BY count DESC, g.name""",
                (poll_id, user_id),
            ).fetchall()
            return [dict(r) for r in rows]

        return await self._db.run(_sync)


# ══════════════════════════════════════════════════════════════
#  Stream roster
# ══════════════════════════════════════════════════════════════

class ChatterRepository:
    def __init__(self, database: BotDatabase) -> None:
        self._db = database

    async def touch(self, user_id: int) -> int:
        """Add the user to the roster (or bump their message count)."""

        def _sync(conn: sqlite3.Connection) -> int:
            conn.execute(
                """INSERT INTO stream_chatters (user_id, message_count, joined_at)
                   VALUES (?, 1, ?)
                   ON CONFLICT(user_id) DO UPDATE SET message_count = message_count + 1""",
                (user_id, iso_now()),
            )
            row = conn.execute(
                "SELECT message_count FROM stream_chatters WHERE user_id = ?", (user_id,),
            ).fetchone()
            conn.commit()
            return int(row["message_count"])

        return await self._db.run(_sync)

    async def list_active(self) -> list[dict]:
        """Roster entries joined with their user rows."""

        def _sync(conn: sqlite3.Connection) -> list[dict]:
            rows = conn.execute(
                """SELECT u.id, u.username, u.twitch_login, sc.message_count
                   FROM stream_chatters sc JOIN users u ON u.id = sc.user_id
                   ORDER BY sc.joined_at, u.id""",
            ).fetchall()
            return [dict(r) for r in rows]

        return await self._db.run(_sync)

    async def count(self) -> int:
        def _sync(conn: sqlite3.Connection) -> int:
            row = conn.execute("SELECT COUNT(*) AS n FROM stream_chatters").fetchone()
            return int(row["n"])

        return await self._db.run(_sync)

    async def clear(self) -> int:
        def _sync(conn: sqlite3.Connection) -> int:
            cur = conn.execute("DELETE FROM stream_chatters")
            conn.commit()
            return cur.rowcount

        return await self._db.run(_sync)


# ══════════════════════════════════════════════════════════════
#  Templates
# ══════════════════════════════════════════════════════════════

class ContentRepository:
    def __init__(self, database: BotDatabase) -> None:
        self._db = database

    async def random_template(self, family: str) -> dict | None:
        """One random template row for a paired family, or None if empty."""
        table, columns = TEMPLATE_TABLES[family]

        def _sync(conn: sqlite3.Connection) -> dict | None:
            row = conn.execute(
                f"SELECT {', '.join(columns)} FROM {table} ORDER BY RANDOM() LIMIT 1",
            ).fetchone()
            return _row_to_dict(row)

        return await self._db.run(_sync)

    async def add_template(self, family: str, **phrases: str) -> None:
        table, columns = TEMPLATE_TABLES[family]
        values = [phrases.get(c, "") for c in columns]

        def _sync(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                values,
            )
            conn.commit()

        await self._db.run(_sync)


# ══════════════════════════════════════════════════════════════
#  Tokens
# ══════════════════════════════════════════════════════════════

class TokenRepository:
    def __init__(self, database: BotDatabase) -> None:
        self._db = database

    async def latest(self, provider: str) -> dict | None:
        """Freshest persisted token row for a provider.

        Non-expiring rows (NULL ``expires_at``) first, then latest expiry, then
        newest insert.
        """
        table = TOKEN_TABLES[provider]

        def _sync(conn: sqlite3.Connection) -> dict | None:
            row = conn.execute(
                f"SELECT * FROM {table} ORDER BY expires_at IS NULL DESC, expires_at DESC, id DESC LIMIT 1",
            ).fetchone()
            return _row_to_dict(row)

        return await self._db.run(_sync)

    async def save(
        self, provider: str, access_token: str, refresh_token: str | None, expires_at: str | None,
    ) -> None:
        table = TOKEN_TABLES[provider]

        def _sync(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"INSERT INTO {table} (access_token, refresh_token, expires_at, updated_at) VALUES (?, ?, ?, ?)",
                (access_token, refresh_token, expires_at, iso_now()),
            )
            conn.commit()

        await self._db.run(_sync)


# ══════════════════════════════════════════════════════════════
#  Structured log sink
# ══════════════════════════════════════════════════════════════

class EventLogRepository:
    def __init__(self, database: BotDatabase) -> None:
        self._db = database

    async def append(
        self,
        message: str,
        type: str,
        title: str | None = None,
        media_url: str | None = None,
        preview_url: str | None = None,
    ) -> int:
        def _sync(conn: sqlite3.Connection) -> int:
            cur = conn.execute(
                """INSERT INTO event_logs (message, media_url, preview_url, title, type, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (message, media_url, preview_url, title, type, iso_now()),
            )
            conn.commit()
            return int(cur.lastrowid)

        return await self._db.run(_sync)

    async def recent(self, type: str | None = None, limit: int = 20) -> list[dict]:
        def _sync(conn: sqlite3.Connection) -> list[dict]:
            if type:
                rows = conn.execute(
                    "SELECT * FROM event_logs WHERE type = ? ORDER BY id DESC LIMIT ?",
                    (type, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM event_logs ORDER BY id DESC LIMIT ?", (limit,),
                ).fetchall()
            return [dict(r) for r in rows]

        return await self._db.run(_sync)

    async def last_title(self, type: str) -> str | None:
        rows = await self.recent(type, limit=1)
        return rows[0]["title"] if rows else None

    async def random_media(self, type: str) -> dict | None:
        """Random overlay media (gif/sound) for a log type."""

        def _sync(conn: sqlite3.Connection) -> dict | None:
            row = conn.execute(
                "SELECT gif_url, sound_url FROM obs_media WHERE type = ? ORDER BY RANDOM() LIMIT 1",
                (type,),
            ).fetchone()
            return _row_to_dict(row)

        return await self._db.run(_sync)

    async def add_media(self, type: str, gif_url: str | None, sound_url: str | None) -> None:
        def _sync(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO obs_media (type, gif_url, sound_url) VALUES (?, ?, ?)",
                (type, gif_url, sound_url),
            )
            conn.commit()

        await self._db.run(_sync)

    async def logged_reward_ids(self) -> set[str]:
        def _sync(conn: sqlite3.Connection) -> set[str]:
            rows = conn.execute("SELECT reward_id FROM log_rewards").fetchall()
            return {r["reward_id"] for r in rows}

        return await self._db.run(_sync)

    async def add_logged_reward(self, reward_id: str) -> None:
        def _sync(conn: sqlite3.Connection) -> None:
            conn.execute("INSERT OR IGNORE INTO log_rewards (reward_id) VALUES (?)", (reward_id,))
            conn.commit()

        await self._db.run(_sync)


class Repositories:
    """Bundle of all repositories sharing one database."""

    def __init__(self, database: BotDatabase) -> None:
        self.database = database
        self.users = UserRepository(database)
        self.achievements = AchievementRepository(database)
        self.polls = PollRepository(database)
        self.votes = VoteRepository(database)
        self.chatters = ChatterRepository(database)
        self.content = ContentRepository(database)
        self.tokens = TokenRepository(database)
        self.event_logs = EventLogRepository(database)
