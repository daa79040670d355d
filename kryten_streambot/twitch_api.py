"""Twitch Helix REST client.

Bearer tokens come from ``TokenVault``. Every call is bounded by
``twitch.request_timeout_seconds``; non-2xx responses and transport errors
are logged and surface as ``None`` so commands can degrade gracefully. A 401
drops the cached token so the next call reloads it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import aiohttp

from .errors import TokenError
from .token_vault import APP, BROADCASTER

if TYPE_CHECKING:
    from .config import StreamBotConfig
    from .token_vault import TokenVault


class TwitchApi:
    """Async client for the handful of Helix endpoints the bot uses."""

    def __init__(
        self,
        config: StreamBotConfig,
        vault: TokenVault,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._vault = vault
        self._logger = logger or logging.getLogger("streambot.twitch")
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        """Create the HTTP session."""
        self._session = aiohttp.ClientSession(
            base_url=self._config.twitch.api_base.rstrip("/") + "/",
            headers={"Client-ID": self._config.twitch.client_id},
            timeout=aiohttp.ClientTimeout(total=self._config.twitch.request_timeout_seconds),
        )

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    @property
    def _channel_id(self) -> str:
        return self._config.twitch.channel_id

    # ══════════════════════════════════════════════════════════
    #  Endpoints
    # ══════════════════════════════════════════════════════════

    async def get_user(self, login: str) -> dict | None:
        """Look up a Twitch user by login (app token)."""
        token = await self._vault.get_token(APP)
        data = await self._request("GET", "users", token, APP, params={"login": login})
        users = (data or {}).get("data") or []
        return users[0] if users else None

    async def get_stream(self) -> tuple[bool, dict | None] | None:
        """Current stream state for the channel.

        Uses the app token, falling back to the broadcaster token. Returns
        ``(online, stream)`` or None when the status could not be read.
        """
        token: str | None = None
        provider = APP
        try:
            token = await self._vault.get_token(APP)
        except TokenError as e:
            self._logger.warning("App token unavailable, trying broadcaster token: %s", e)
        if not token:
            provider = BROADCASTER
            token = await self._vault.get_token(BROADCASTER)
        if not token:
            return None

        data = await self._request("GET", "streams", token, provider, params={"user_id": self._channel_id})
        if data is None:
            return None
        streams = data.get("data") or []
        return (True, streams[0]) if streams else (False, None)

    async def create_clip(self) -> str | None:
        """Create a clip of the live stream. Returns the clip id."""
        token = await self._vault.get_token(BROADCASTER)
        if not token:
            return None
        data = await self._request(
            "POST", "clips", token, BROADCASTER, params={"broadcaster_id": self._channel_id},
        )
        clips = (data or {}).get("data") or []
        return clips[0].get("id") if clips else None

    async def get_reward_title(self, reward_id: str) -> str | None:
        """Title of a channel-points custom reward."""
        token = await self._vault.get_token(BROADCASTER)
        if not token:
            return None
        data = await self._request(
            "GET",
            "channel_points/custom_rewards",
            token,
            BROADCASTER,
            params={"broadcaster_id": self._channel_id, "id": reward_id},
        )
        rewards = (data or {}).get("data") or []
        return rewards[0].get("title") if rewards else None

    async def get_subscription_months(self, twitch_user_id: str) -> int | None:
        """Cumulative subscription months of a viewer."""
        token = await self._vault.get_token(BROADCASTER)
        if not token:
            return None
        data = await self._request(
            "GET",
            "subscriptions",
            token,
            BROADCASTER,
            params={"broadcaster_id": self._channel_id, "user_id": twitch_user_id},
        )
        subs = (data or {}).get("data") or []
        if not subs:
            return None
        months = subs[0].get("cumulative_months")
        return int(months) if months else None

    # ══════════════════════════════════════════════════════════
    #  Internal Helpers
    # ══════════════════════════════════════════════════════════

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        provider: str,
        params: dict[str, Any] | None = None,
    ) -> dict | None:
        if not self._session:
            return None
        try:
            async with self._session.request(
                method,
                path,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            ) as resp:
                if resp.status == 401:
                    self._vault.invalidate(provider)
                if resp.status < 200 or resp.status >= 300:
                    text = await resp.text()
                    self._logger.error(
                        "Helix %s %s failed: %s %s", method, path, resp.status, text,
                    )
                    return None
                return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.error("Helix %s %s failed: %s", method, path, e)
            return None
