"""Structured log sink plus overlay trigger for notable chat events."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .overlay_client import OverlayClient
    from .repositories import EventLogRepository


class EventRecorder:
    def __init__(
        self,
        event_logs: EventLogRepository,
        overlay: OverlayClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._event_logs = event_logs
        self._overlay = overlay
        self._logger = logger or logging.getLogger("streambot.events")

    async def log(
        self,
        message: str,
        type: str,
        title: str | None = None,
        media_url: str | None = None,
        preview_url: str | None = None,
    ) -> int | None:
        """Append an event_logs row. Returns the row id, or None on failure."""
        try:
            return await self._event_logs.append(
                message, type, title=title, media_url=media_url, preview_url=preview_url,
            )
        except sqlite3.Error as e:
            self._logger.error("Failed to log %s event: %s", type, e)
            return None

    async def trigger_overlay(
        self, family: str, type: str, initiator: str, target: str | None, message: str,
    ) -> bool:
        """Fire the overlay action mapped to *type* (or the family default)."""
        if not self._overlay or not self._overlay.configured:
            return False
        action = self._overlay.resolve_action(family, type)
        if not action:
            return False

        payload: dict[str, str | None] = {
            "type": type,
            "initiator": initiator,
            "target": target,
            "message": message,
        }
        try:
            media = await self._event_logs.random_media(type)
        except sqlite3.Error as e:
            self._logger.warning("Overlay media lookup failed for %s: %s", type, e)
            media = None
        if media:
            payload["gif_url"] = media.get("gif_url")
            payload["sound_url"] = media.get("sound_url")
        return await self._overlay.trigger(action, payload)
