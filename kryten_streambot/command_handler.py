"""Request-reply command handler on kryten.streambot.command.

Provides a NATS request-reply API for admin tooling: health, per-user stats
and earned achievements, and an on-demand subscriber-months sync.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from . import __version__
from .utils import normalize_username

if TYPE_CHECKING:
    from kryten import KrytenClient

    from .main import StreamBotApp

SUBJECT = "kryten.streambot.command"


class CommandHandler:
    """Handles request-reply commands on kryten.streambot.command."""

    def __init__(
        self,
        app: StreamBotApp,
        client: KrytenClient,
        logger: logging.Logger | None = None,
    ) -> None:
        self._app = app
        self._client = client
        self._logger = logger or logging.getLogger("streambot.command")

    async def connect(self) -> None:
        """Subscribe to request-reply on kryten.streambot.command."""
        await self._client.subscribe_request_reply(SUBJECT, self._handle_command)

    async def _handle_command(self, request: dict[str, Any]) -> dict[str, Any]:
        """Route a command request to the appropriate handler."""
        command = request.get("command", "")
        handler = self._HANDLER_MAP.get(command)

        if not handler:
            return {
                "service": "streambot",
                "command": command,
                "success": False,
                "error": f"Unknown command: {command}",
            }

        try:
            result = await handler(self, request)
            self._app.requests_processed += 1
            return {
                "service": "streambot",
                "command": command,
                "success": True,
                "data": result,
            }
        except Exception as e:
            self._logger.exception("Command handler error for %s", command)
            return {
                "service": "streambot",
                "command": command,
                "success": False,
                "error": str(e),
            }

    def _require_username(self, request: dict[str, Any]) -> str:
        username = normalize_username(request.get("username") or "")
        if not username:
            raise ValueError("username is required")
        return username

    # ══════════════════════════════════════════════════════════
    #  Commands
    # ══════════════════════════════════════════════════════════

    async def _handle_ping(self, request: dict[str, Any]) -> dict[str, Any]:
        return {"pong": True, "version": __version__}

    async def _handle_health(self, request: dict[str, Any]) -> dict[str, Any]:
        state = self._app.state
        return {
            "status": "healthy",
            "database": "connected" if self._app.db else "disconnected",
            "stream_online": state.stream_online if state else None,
            "roster_size": await self._app.repos.chatters.count(),
            "queue_depth": self._app.chat_handler.queue_depth if self._app.chat_handler else 0,
            "uptime_seconds": self._app.uptime_seconds,
        }

    async def _handle_user_stats(self, request: dict[str, Any]) -> dict[str, Any]:
        username = self._require_username(request)
        user = await self._app.repos.users.find_by_login(username)
        if not user:
            return {"found": False}
        stats = await self._app.repos.users.get_stats(user["id"])
        return {
            "found": True,
            "username": user["username"],
            "vote_limit": user["vote_limit"],
            "affinity": user["affinity"],
            "stats": stats,
        }

    async def _handle_user_achievements(self, request: dict[str, Any]) -> dict[str, Any]:
        username = self._require_username(request)
        user = await self._app.repos.users.find_by_login(username)
        if not user:
            return {"found": False}
        earned = await self._app.repos.achievements.list_for_user(user["id"])
        return {"found": True, "username": user["username"], "achievements": earned}

    async def _handle_sync_sub_months(self, request: dict[str, Any]) -> dict[str, Any]:
        username = self._require_username(request)
        months = await self._app.scheduler.sync_sub_months(username)
        return {"username": username, "total_months_subbed": months}

    _HANDLER_MAP: dict[str, Any] = {
        "system.ping": _handle_ping,
        "system.health": _handle_health,
        "user.stats": _handle_user_stats,
        "user.achievements": _handle_user_achievements,
        "user.sync_sub_months": _handle_sync_sub_months,
    }
