"""Overlay action runner client — async HTTP wrapper.

Fires a named or GUID-identified action on a Streamer.bot-style HTTP server
(``POST {base_url}/DoAction``). Failures are logged and never raised.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any

import aiohttp

if TYPE_CHECKING:
    from .config import OverlayConfig

_GUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE,
)
_ARG_KEYS = ("type", "initiator", "target", "message", "gif_url", "sound_url")


def _sanitize(value: Any) -> str:
    if value is None:
        return ""
    return str(value).replace("\n", " ").replace("\r", " ").strip()


class OverlayClient:
    """Async client for the overlay action runner."""

    def __init__(self, config: OverlayConfig, logger: logging.Logger | None = None) -> None:
        self._config = config
        self._logger = logger or logging.getLogger("streambot.overlay")
        self._session: aiohttp.ClientSession | None = None

    @property
    def configured(self) -> bool:
        return bool(self._config.base_url)

    async def start(self) -> None:
        """Create the HTTP session."""
        self._session = aiohttp.ClientSession(
            base_url=self._config.base_url.rstrip("/") + "/",
            timeout=aiohttp.ClientTimeout(total=self._config.timeout_seconds),
        )

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def resolve_action(self, family: str, type: str) -> str | None:
        """Action for a dominant key, falling back to the family default."""
        actions = self._config.actions
        return actions.get(type) or actions.get(f"{family}.__default__")

    async def trigger(self, action: str, payload: dict[str, Any]) -> bool:
        """Fire *action*. Returns True on a 2xx response."""
        action = (action or "").strip()
        if not action or not self._session:
            return False

        body: dict[str, Any] = {"action": {"id": action} if _GUID_RE.match(action) else {"name": action}}
        args = {k: _sanitize(payload[k]) for k in _ARG_KEYS if k in payload}
        if args:
            body["args"] = args

        try:
            async with self._session.post("DoAction", json=body) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    self._logger.error(
                        "Overlay action %s failed: %s %s", action, resp.status, text,
                    )
                    return False
                return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.error("Overlay action %s failed: %s", action, e)
            return False
