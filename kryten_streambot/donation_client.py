"""DonationAlerts API client.

Fetches the recent donations list and normalises each entry into the
structured event-log shape (message, media url, preview url, cursor title).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlparse

import aiohttp

from .token_vault import DONATION

if TYPE_CHECKING:
    from .config import DonationAlertsConfig
    from .token_vault import TokenVault


def youtube_thumbnail(url: str | None) -> str | None:
    """``hqdefault`` preview for a YouTube link, None for anything else."""
    if not url:
        return None
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = parsed.hostname or ""
    video_id: str | None = None
    if "youtu.be" in host:
        video_id = parsed.path.lstrip("/").split("/")[0] or None
    elif "youtube.com" in host:
        video_id = (parse_qs(parsed.query).get("v") or [None])[0]
    return f"https://img.youtube.com/vi/{video_id}/hqdefault.jpg" if video_id else None


def describe_donation(item: dict) -> dict:
    """Event-log fields for one donation entry."""
    name = item.get("username") or item.get("name") or "Anonymous"
    amount = f"{item.get('amount')}"
    if item.get("currency"):
        amount += f" {item['currency']}"
    media_url = (item.get("media") or {}).get("url") or None
    return {
        "message": f"Donation from {name}: {amount}",
        "media_url": media_url,
        "preview_url": youtube_thumbnail(media_url),
        "title": str(item["id"]),
    }


class DonationAlertsClient:
    """Async client for the DonationAlerts donations feed."""

    def __init__(
        self,
        config: DonationAlertsConfig,
        vault: TokenVault,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._vault = vault
        self._logger = logger or logging.getLogger("streambot.donations")
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        """Create the HTTP session."""
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._config.request_timeout_seconds),
        )

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch_since(self, cursor: int) -> list[dict]:
        """Donations with an id greater than *cursor*, ascending by id.

        Returns [] when no token is available or the request fails.
        """
        if not self._session:
            return []
        token = await self._vault.get_token(DONATION)
        if not token:
            return []

        try:
            async with self._session.get(
                self._config.api_url,
                headers={"Authorization": f"Bearer {token}"},
            ) as resp:
                if resp.status != 200:
                    self._logger.warning("Donation feed returned %s", resp.status)
                    return []
                data = await resp.json()
        except Exception as e:
            self._logger.error("Donation feed request failed: %s", e)
            return []

        items = data.get("data") if isinstance(data, dict) else None
        donations = [
            d for d in (items or [])
            if isinstance(d, dict) and isinstance(d.get("id"), int)
        ]
        donations.sort(key=lambda d: d["id"])
        return [d for d in donations if d["id"] > cursor]
