"""Scheduler module — periodic background tasks.

Stream status polling, per-minute watch time, donation feed polling and the
logged-reward id reload. Each loop catches and logs its own failures so one
bad cycle never stops the task.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import TYPE_CHECKING

from .donation_client import describe_donation

if TYPE_CHECKING:
    from .achievement_engine import AchievementEngine
    from .config import StreamBotConfig
    from .donation_client import DonationAlertsClient
    from .engine_state import EngineState
    from .event_recorder import EventRecorder
    from .repositories import Repositories
    from .twitch_api import TwitchApi

DONATION_TYPE = "donation"


class Scheduler:
    """Central module for all periodic tasks."""

    def __init__(
        self,
        config: StreamBotConfig,
        repos: Repositories,
        achievements: AchievementEngine,
        twitch: TwitchApi,
        donations: DonationAlertsClient,
        recorder: EventRecorder,
        state: EngineState,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._repos = repos
        self._achievements = achievements
        self._twitch = twitch
        self._donations = donations
        self._recorder = recorder
        self._state = state
        self._logger = logger or logging.getLogger("streambot.scheduler")
        self._tasks: list[asyncio.Task] = []
        self.donation_cursor: int = 0

    async def start(self) -> None:
        """Start all scheduled tasks."""
        cfg = self._config.scheduler
        if self._config.twitch.channel_id and self._config.twitch.client_id:
            self._tasks.append(asyncio.create_task(self._stream_status_loop()))
            self._logger.info(
                "Stream status task started (interval: %ds)", cfg.stream_status_interval_seconds,
            )

        self._tasks.append(asyncio.create_task(self._watch_time_loop()))
        self._tasks.append(asyncio.create_task(self._reward_reload_loop()))

        if self._config.donation_alerts.api_url:
            await self.load_donation_cursor()
            self._tasks.append(asyncio.create_task(self._donation_loop()))
            self._logger.info("Donation poll started (cursor: %d)", self.donation_cursor)

    async def stop(self) -> None:
        """Cancel all tasks."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # ══════════════════════════════════════════════════════════
    #  Stream Status
    # ══════════════════════════════════════════════════════════

    async def _stream_status_loop(self) -> None:
        while True:
            try:
                await self.check_stream_status()
            except Exception:
                self._logger.exception("Stream status check failed")
            await asyncio.sleep(self._config.scheduler.stream_status_interval_seconds)

    async def check_stream_status(self) -> None:
        """Poll the stream state and handle online/offline transitions.

        On the first successful poll an online stream keeps a non-empty
        roster (the bot restarted mid-stream). Any later transition clears
        the roster and resets the session; when a stream ends every rostered
        chatter gets ``total_streams_watched`` incremented.
        """
        status = await self._twitch.get_stream()
        if status is None:
            return
        online, _stream = status
        was_online = self._state.stream_online
        self._state.stream_online = online

        if was_online is None:
            if online and await self._repos.chatters.count() == 0:
                self._state.reset_session()
                await self._repos.chatters.clear()
            return

        if was_online and not online:
            self._logger.info("Stream went offline")
            roster = await self._repos.chatters.list_active()
            await asyncio.gather(*(
                self._achievements.increment_stat(c["id"], "total_streams_watched")
                for c in roster
            ))
            await self._repos.chatters.clear()
            self._state.reset_session()
        elif not was_online and online:
            self._logger.info("Stream went online")
            await self._repos.chatters.clear()
            self._state.reset_session()

    # ══════════════════════════════════════════════════════════
    #  Watch Time
    # ══════════════════════════════════════════════════════════

    async def _watch_time_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.scheduler.watch_time_interval_seconds)
            try:
                await self.tick_watch_time()
            except Exception:
                self._logger.exception("Watch time update failed")

    async def tick_watch_time(self) -> int:
        """+1 ``total_watch_time`` per rostered chatter. Returns the roster size."""
        roster = await self._repos.chatters.list_active()
        await asyncio.gather(*(
            self._achievements.increment_stat(c["id"], "total_watch_time")
            for c in roster
        ))
        return len(roster)

    # ══════════════════════════════════════════════════════════
    #  Donations
    # ══════════════════════════════════════════════════════════

    async def load_donation_cursor(self) -> None:
        """Resume from the newest logged donation id."""
        try:
            title = await self._repos.event_logs.last_title(DONATION_TYPE)
        except sqlite3.Error as e:
            self._logger.error("Failed to load last donation id: %s", e)
            return
        if title and title.strip().isdigit():
            self.donation_cursor = int(title)

    async def _donation_loop(self) -> None:
        while True:
            try:
                await self.check_donations()
            except Exception:
                self._logger.exception("Donation check failed")
            await asyncio.sleep(self._config.scheduler.donation_interval_seconds)

    async def check_donations(self) -> int:
        """Log every donation newer than the cursor. Returns how many were logged."""
        donations = await self._donations.fetch_since(self.donation_cursor)
        for item in donations:
            fields = describe_donation(item)
            await self._recorder.log(
                fields["message"],
                DONATION_TYPE,
                title=fields["title"],
                media_url=fields["media_url"],
                preview_url=fields["preview_url"],
            )
            self.donation_cursor = max(self.donation_cursor, item["id"])
        if donations:
            self._logger.info("Logged %d donation(s), cursor now %d", len(donations), self.donation_cursor)
        return len(donations)

    # ══════════════════════════════════════════════════════════
    #  Reward Ids
    # ══════════════════════════════════════════════════════════

    async def _reward_reload_loop(self) -> None:
        while True:
            try:
                await self.reload_reward_ids()
            except Exception:
                self._logger.exception("Reward id reload failed")
            await asyncio.sleep(self._config.scheduler.reward_reload_interval_seconds)

    async def reload_reward_ids(self) -> None:
        try:
            ids = await self._repos.event_logs.logged_reward_ids()
        except sqlite3.Error as e:
            self._logger.error("Failed to load logged reward ids: %s", e)
            return
        self._state.logged_reward_ids = ids

    # ══════════════════════════════════════════════════════════
    #  Subscriber Months
    # ══════════════════════════════════════════════════════════

    async def sync_sub_months(self, login: str) -> int | None:
        """Raise ``total_months_subbed`` to the viewer's cumulative months.

        Returns the stored value, or None when the platform has no data.
        """
        twitch_user = await self._twitch.get_user(login)
        if not twitch_user:
            return None
        months = await self._twitch.get_subscription_months(twitch_user["id"])
        if not months:
            return None
        user = await self._repos.users.get_or_create(
            login, twitch_user.get("display_name") or login,
        )
        value = await self._repos.users.set_stat_max(user["id"], "total_months_subbed", months)
        await self._achievements.check_and_award(user["id"], "total_months_subbed", value)
        return value
