"""Achievement engine — per-user counters with at-most-once threshold awards.

Every counter mutation goes through ``increment_stat`` which always runs
``check_and_award`` on the new value. The catalog maps a stat key to an
ascending threshold list; it is built once from ``BASE_ACHIEVEMENTS``, the
generated fine-grained social keys and any families added in config.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .config import StreamBotConfig
    from .repositories import AchievementRepository, UserRepository


BASE_ACHIEVEMENTS: dict[str, list[int]] = {
    "total_streams_watched": [10],
    "total_subs_gifted": [5],
    "total_subs_received": [5],
    "total_chat_messages_sent": [500, 1000, 2000],
    "total_times_tagged": [10],
    "total_commands_run": [20],
    "total_months_subbed": [3],
    "total_watch_time": [60, 120, 240, 600, 1800, 3000],
    "message_count": [20, 50, 100],
    "first_message": [1],
    "clips_created": [1],
    "combo_commands": [1],
}

PAIRED_FAMILIES: tuple[str, ...] = ("intim", "poceluy")
TAG_STATES: tuple[str, ...] = ("with_tag", "no_tag")
SOCIAL_THRESHOLD = 5


def social_suffixes(percents: Iterable[int]) -> list[str]:
    """Suffixed variants counted per paired family (22 with three percents)."""
    percents = list(percents)
    suffixes: list[str] = []
    for ts in TAG_STATES:
        suffixes += [f"{ts}_{p}" for p in percents]
        suffixes.append(f"self_{ts}")
        suffixes += [f"self_{ts}_{p}" for p in percents]
    for base in ("tagged_equals_partner", "tag_match_success"):
        suffixes.append(base)
        suffixes += [f"{base}_{p}" for p in percents]
    return suffixes


def build_catalog(
    percents: Iterable[int],
    extra: dict[str, list[int]] | None = None,
) -> dict[str, list[int]]:
    catalog = {key: sorted(values) for key, values in BASE_ACHIEVEMENTS.items()}
    suffixes = social_suffixes(percents)
    for family in PAIRED_FAMILIES:
        for suffix in suffixes:
            catalog[f"{family}_{suffix}"] = [SOCIAL_THRESHOLD]
    for key, values in (extra or {}).items():
        catalog[key] = sorted(set(catalog.get(key, [])) | set(values))
    return catalog


class AchievementEngine:
    """Counter increments plus catalog-driven achievement awards."""

    def __init__(
        self,
        config: StreamBotConfig,
        users: UserRepository,
        achievements: AchievementRepository,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._users = users
        self._achievements = achievements
        self._logger = logger or logging.getLogger("streambot.achievements")
        self.catalog = build_catalog(
            config.paired_commands.special_percents,
            {fam.stat_key: fam.thresholds for fam in config.achievements},
        )

        # Metrics
        self.awarded_total: int = 0

    async def initialize(self) -> None:
        """Seed the achievements table from the catalog."""
        added = await self._achievements.seed(self.catalog)
        self._logger.info(
            "Achievement catalog: %d keys (%d new rows)", len(self.catalog), added,
        )

    # ══════════════════════════════════════════════════════════
    #  Public API
    # ══════════════════════════════════════════════════════════

    async def increment_stat(self, user_id: int, key: str, amount: int = 1) -> int | None:
        """Add *amount* to a counter and check achievements.

        Returns the new value, or None if the store failed (the counter may
        not have advanced).
        """
        try:
            value = await self._users.increment_stat(user_id, key, amount)
        except sqlite3.Error as e:
            self._logger.error("Failed to increment %s for user %s: %s", key, user_id, e)
            return None
        await self.check_and_award(user_id, key, value)
        return value

    async def increment_many(self, user_id: int, keys: Iterable[str]) -> list[int | None]:
        """Increment several keys concurrently."""
        return await asyncio.gather(*(self.increment_stat(user_id, k) for k in keys))

    async def check_and_award(self, user_id: int, key: str, value: int) -> bool:
        """Award every catalog threshold for *key* that *value* has reached.

        Returns True if at least one new UserAchievement row was inserted.
        """
        thresholds = self.catalog.get(key)
        if not thresholds:
            return False

        awarded_any = False
        try:
            for threshold in thresholds:
                if threshold > value:
                    break
                row = await self._achievements.find(key, threshold)
                if not row:
                    continue
                if await self._achievements.award(user_id, row["id"]):
                    awarded_any = True
                    self.awarded_total += 1
                    self._logger.info(
                        "Achievement awarded: user %s → %s ≥ %d", user_id, key, threshold,
                    )
        except sqlite3.Error as e:
            self._logger.error("Achievement check failed for %s/%s: %s", user_id, key, e)
            return awarded_any
        return awarded_any
