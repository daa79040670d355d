"""Twitch platform events relayed over NATS.

Two subjects (``events.subscription_subject``, ``events.redemption_subject``)
carry JSON objects published by the Twitch bridge:

* subscriptions: ``{"kind": "subscription" | "resub" | "subgift" |
  "submysterygift", "channel", "username", "display_name", "message",
  "recipient", "count", "cumulative_months"}``
* reward redemptions: ``{"channel", "username", "display_name",
  "reward_id", "message"}``

Subscriptions are logged and counted here. Redemptions are queued on the
chat pipeline so they are processed in order with chat messages.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

from .chat_handler import ChatMessage
from .utils import normalize_username

if TYPE_CHECKING:
    from .achievement_engine import AchievementEngine
    from .chat_handler import ChatHandler
    from .config import StreamBotConfig
    from .event_recorder import EventRecorder
    from .repositories import UserRepository

SUB_KINDS = ("subscription", "resub", "subgift", "submysterygift")


def decode_event(msg: Any) -> dict | None:
    """Payload of a NATS message as a dict (raw message, bytes, str or dict)."""
    data = getattr(msg, "data", msg)
    if isinstance(data, dict):
        return data
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8", errors="replace")
    if not isinstance(data, str):
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


class PlatformEventHandler:
    """Subscription and reward-redemption events."""

    def __init__(
        self,
        config: StreamBotConfig,
        users: UserRepository,
        achievements: AchievementEngine,
        recorder: EventRecorder,
        chat_handler: ChatHandler,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._users = users
        self._achievements = achievements
        self._recorder = recorder
        self._chat_handler = chat_handler
        self._logger = logger or logging.getLogger("streambot.platform")

        # Metrics
        self.subscriptions_processed: int = 0
        self.redemptions_received: int = 0

    async def connect(self, client: Any) -> None:
        events = self._config.events
        await client.subscribe(events.subscription_subject, self._on_subscription)
        await client.subscribe(events.redemption_subject, self._on_redemption)
        self._logger.info(
            "Listening for platform events on %s, %s",
            events.subscription_subject, events.redemption_subject,
        )

    async def _on_subscription(self, msg: Any) -> None:
        payload = decode_event(msg)
        if payload is None:
            self._logger.warning("Ignoring malformed subscription event")
            return
        try:
            await self.handle_subscription(payload)
        except Exception:
            self._logger.exception("Subscription event handler error")

    async def _on_redemption(self, msg: Any) -> None:
        payload = decode_event(msg)
        if payload is None:
            self._logger.warning("Ignoring malformed redemption event")
            return
        self.handle_redemption(payload)

    # ══════════════════════════════════════════════════════════
    #  Redemptions
    # ══════════════════════════════════════════════════════════

    def handle_redemption(self, payload: dict) -> bool:
        """Queue a redemption on the chat pipeline. Returns False if unusable."""
        login = normalize_username(payload.get("username"))
        reward_id = str(payload.get("reward_id") or "").strip()
        if not login or not reward_id:
            self._logger.warning("Redemption event without username or reward id: %s", payload)
            return False
        self.redemptions_received += 1
        self._chat_handler.enqueue(ChatMessage(
            channel=payload.get("channel") or self._default_channel(),
            login=login,
            display_name=payload.get("display_name") or login,
            text=str(payload.get("message") or ""),
            reward_id=reward_id,
            is_redemption=True,
        ))
        return True

    # ══════════════════════════════════════════════════════════
    #  Subscriptions
    # ══════════════════════════════════════════════════════════

    async def handle_subscription(self, payload: dict) -> bool:
        """Log a subscription event and update the subscriber counters."""
        kind = payload.get("kind")
        login = normalize_username(payload.get("username"))
        if kind not in SUB_KINDS or not login:
            self._logger.warning("Unknown subscription event: %s", payload)
            return False
        display = payload.get("display_name") or login
        self.subscriptions_processed += 1

        if kind in ("subscription", "resub"):
            label = "New sub" if kind == "subscription" else "Re-sub"
            text = payload.get("message")
            await self._recorder.log(
                f"{label}: {display}" + (f" - {text}" if text else ""), kind, title=display,
            )
            user = await self._user(login, display)
            if user:
                await self._achievements.increment_stat(user["id"], "total_subs_received")
                await self._sync_months(user, payload.get("cumulative_months"))

        elif kind == "subgift":
            recipient = normalize_username(payload.get("recipient"))
            await self._recorder.log(f"Gift sub: {display} -> {recipient}", kind, title=display)
            gifter = await self._user(login, display)
            if gifter:
                await self._achievements.increment_stat(gifter["id"], "total_subs_gifted")
            if recipient:
                receiver = await self._user(recipient, payload.get("recipient_display_name") or recipient)
                if receiver:
                    await self._achievements.increment_stat(receiver["id"], "total_subs_received")

        else:
            count = _to_int(payload.get("count"))
            gifter = await self._user(login, display)
            if gifter and count > 0:
                await self._achievements.increment_stat(gifter["id"], "total_subs_gifted", count)
        return True

    async def _user(self, login: str, display_name: str) -> dict | None:
        try:
            return await self._users.get_or_create(login, display_name)
        except sqlite3.Error as e:
            self._logger.error("User lookup failed for %s: %s", login, e)
            return None

    async def _sync_months(self, user: dict, months: Any) -> None:
        value = _to_int(months)
        if value <= 0:
            return
        try:
            stored = await self._users.set_stat_max(user["id"], "total_months_subbed", value)
        except sqlite3.Error as e:
            self._logger.error("Sub months update failed for user %s: %s", user["id"], e)
            return
        await self._achievements.check_and_award(user["id"], "total_months_subbed", stored)

    def _default_channel(self) -> str:
        channels = self._config.channels
        return channels[0].channel if channels else ""


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
