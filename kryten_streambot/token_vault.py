"""TokenVault — cached credentials for the four external identities.

Providers:

* ``app`` — Twitch client-credentials token. Required: failures raise
  ``TokenError``.
* ``donation`` — DonationAlerts bearer token read from the store.
* ``broadcaster`` — broadcaster-delegated Twitch token read from the store.
* ``bot`` — static ``twitch.bot_oauth_token`` if configured, otherwise read
  from the store.

Persisted providers return ``None`` when no valid token exists; callers
treat that as "feature unavailable this cycle". An expired persisted row that
carries a refresh token is exchanged once and the new token written back.
No locking: concurrent callers may refresh redundantly.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from typing import TYPE_CHECKING

import aiohttp

from .errors import TokenError
from .utils import to_epoch

if TYPE_CHECKING:
    from .config import StreamBotConfig
    from .engine_state import EngineState
    from .repositories import TokenRepository

APP = "app"
DONATION = "donation"
BROADCASTER = "broadcaster"
BOT = "bot"

PROVIDERS = (APP, DONATION, BROADCASTER, BOT)


class TokenVault:
    """Returns a usable bearer token per provider, refreshing as needed."""

    def __init__(
        self,
        config: StreamBotConfig,
        tokens: TokenRepository,
        state: EngineState,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._tokens = tokens
        self._state = state
        self._logger = logger or logging.getLogger("streambot.tokens")
        self._session: aiohttp.ClientSession | None = None
        self._warned: set[str] = set()

    async def start(self) -> None:
        """Create the HTTP session used for token exchanges."""
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._config.twitch.request_timeout_seconds),
        )

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    @property
    def _skew(self) -> int:
        return self._config.tokens.skew_seconds

    # ══════════════════════════════════════════════════════════
    #  Public API
    # ══════════════════════════════════════════════════════════

    async def get_token(self, provider: str) -> str | None:
        """Return a fresh token for *provider*, or None if none is available.

        Raises TokenError only for the ``app`` provider.
        """
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown token provider: {provider}")

        cached = self._state.token(provider)
        if cached.is_fresh(self._skew):
            return cached.token

        if provider == APP:
            return await self._refresh_app_token()

        if provider == BOT and self._config.twitch.bot_oauth_token:
            cached.set(self._config.twitch.bot_oauth_token, None)
            return cached.token

        return await self._load_persisted(provider)

    def invalidate(self, provider: str) -> None:
        """Forget a cached token (e.g. after a 401)."""
        self._state.token(provider).clear()

    # ══════════════════════════════════════════════════════════
    #  App token (client credentials)
    # ══════════════════════════════════════════════════════════

    async def _refresh_app_token(self) -> str:
        twitch = self._config.twitch
        if not twitch.client_id or not twitch.client_secret:
            raise TokenError("Twitch credentials not configured")
        if not self._session:
            raise TokenError("Token vault not started")

        try:
            async with self._session.post(
                twitch.auth_url,
                params={
                    "client_id": twitch.client_id,
                    "client_secret": twitch.client_secret,
                    "grant_type": "client_credentials",
                },
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise TokenError(f"Auth failed: {resp.status} {text}")
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TokenError(f"Auth request failed: {e}") from e

        token = data.get("access_token")
        if not token:
            raise TokenError("Auth response carried no access_token")
        expires_in = int(data.get("expires_in") or 0)
        self._state.token(APP).set(token, time.time() + expires_in)
        self._logger.debug("App token refreshed (expires in %ds)", expires_in)
        return token

    # ══════════════════════════════════════════════════════════
    #  Persisted providers
    # ══════════════════════════════════════════════════════════

    async def _load_persisted(self, provider: str) -> str | None:
        cached = self._state.token(provider)
        try:
            row = await self._tokens.latest(provider)
        except sqlite3.Error as e:
            cached.clear()
            self._warn_once(provider, "Failed to load %s token: %s", provider, e)
            return None

        if not row or not row.get("access_token"):
            cached.clear()
            self._warn_once(provider, "%s token not found", provider)
            return None

        expires_at = to_epoch(row.get("expires_at")) or None
        if expires_at is None or expires_at - self._skew > time.time():
            cached.set(row["access_token"], expires_at)
            self._warned.discard(provider)
            return cached.token

        if row.get("refresh_token"):
            refreshed = await self._refresh_persisted(provider, row["refresh_token"])
            if refreshed:
                self._warned.discard(provider)
                return refreshed

        cached.clear()
        self._warn_once(provider, "%s token expired", provider)
        return None

    async def _refresh_persisted(self, provider: str, refresh_token: str) -> str | None:
        """Exchange a refresh token and write the new credentials back."""
        if provider == DONATION:
            da = self._config.donation_alerts
            url, client_id, client_secret = da.token_url, da.client_id, da.client_secret
        else:
            tw = self._config.twitch
            url, client_id, client_secret = tw.auth_url, tw.client_id, tw.client_secret
        if not client_id or not client_secret or not self._session:
            return None

        try:
            async with self._session.post(
                url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": client_id,
                    "client_secret": client_secret,
                },
            ) as resp:
                if resp.status != 200:
                    self._logger.warning(
                        "%s token refresh failed: HTTP %d", provider, resp.status,
                    )
                    return None
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.warning("%s token refresh failed: %s", provider, e)
            return None

        token = data.get("access_token")
        if not token:
            return None
        expires_at = time.time() + int(data.get("expires_in") or 0)
        new_refresh = data.get("refresh_token") or refresh_token
        try:
            await self._tokens.save(
                provider,
                token,
                new_refresh,
                time.strftime("%Y-%m-%dT%H:%M:%S+00:00", time.gmtime(expires_at)),
            )
        except sqlite3.Error as e:
            self._logger.error("Failed to persist refreshed %s token: %s", provider, e)

        self._state.token(provider).set(token, expires_at)
        self._logger.info("%s token refreshed", provider)
        return token

    def _warn_once(self, provider: str, msg: str, *args: object) -> None:
        if provider in self._warned:
            return
        self._warned.add(provider)
        self._logger.warning(msg, *args)
