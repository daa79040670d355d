"""Prometheus metrics server for kryten-streambot.

Subclasses BaseMetricsServer from kryten-py to expose
bot-specific metrics and health details.
"""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

from kryten import BaseMetricsServer

if TYPE_CHECKING:
    from .main import StreamBotApp


class StreamBotMetricsServer(BaseMetricsServer):
    """Bot-specific Prometheus metrics endpoint."""

    def __init__(self, app: StreamBotApp, port: int = 28290) -> None:
        super().__init__(
            service_name="streambot",
            port=port,
            client=app.client,
            logger=app.logger,
        )
        self._app = app

    async def _collect_custom_metrics(self) -> list[str]:
        """Collect bot-specific Prometheus metrics."""
        app = self._app
        lines: list[str] = []

        # ── Counters ─────────────────────────────────────────
        lines.append(f"streambot_events_processed_total {app.events_processed}")
        lines.append(f"streambot_requests_processed_total {app.requests_processed}")
        if app.chat_handler:
            lines.append(f"streambot_messages_processed_total {app.chat_handler.messages_processed}")
            lines.append(f"streambot_commands_processed_total {app.chat_handler.commands_processed}")
            lines.append(f"streambot_messages_dropped_total {app.chat_handler.messages_dropped}")
            lines.append(f"streambot_mentions_processed_total {app.chat_handler.mentions_processed}")
        if app.platform_events:
            lines.append(f"streambot_subscriptions_processed_total {app.platform_events.subscriptions_processed}")
            lines.append(f"streambot_redemptions_received_total {app.platform_events.redemptions_received}")
        if app.achievement_engine:
            lines.append(f"streambot_achievements_awarded_total {app.achievement_engine.awarded_total}")
        if app.vote_ledger:
            lines.append(f"streambot_votes_cast_total {app.vote_ledger.votes_cast}")
        if app.generator:
            lines.append(f"streambot_generator_failures_total {app.generator.failures}")

        # ── Gauges ───────────────────────────────────────────
        if app.chat_handler:
            lines.append(f"streambot_queue_depth {app.chat_handler.queue_depth}")
        if app.state:
            online = 1 if app.state.stream_online else 0
            lines.append(f"streambot_stream_online {online}")
        if app.repos:
            try:
                roster = await app.repos.chatters.count()
                lines.append(f"streambot_roster_size {roster}")
            except sqlite3.Error:
                app.logger.warning("Roster size unavailable for metrics")

        return lines

    async def _get_health_details(self) -> dict:
        """Return health details for the /health endpoint."""
        return {
            "database": "connected" if self._app.db else "disconnected",
            "channels_configured": len(self._app.config.channels) if self._app.config else 0,
            "stream_online": self._app.state.stream_online if self._app.state else None,
            "queue_depth": self._app.chat_handler.queue_depth if self._app.chat_handler else 0,
        }
