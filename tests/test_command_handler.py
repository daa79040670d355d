"""Tests for the request-reply CommandHandler."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from kryten_streambot.command_handler import SUBJECT, CommandHandler
from kryten_streambot.repositories import Repositories


@pytest.fixture
def app(repos: Repositories, state, achievement_engine) -> MagicMock:
    app = MagicMock()
    app.repos = repos
    app.db = repos.database
    app.state = state
    app.chat_handler = MagicMock(queue_depth=3)
    app.scheduler = MagicMock()
    app.scheduler.sync_sub_months = AsyncMock(return_value=6)
    app.uptime_seconds = 12.5
    app.requests_processed = 0
    return app


@pytest.fixture
def handler(app, mock_client) -> CommandHandler:
    return CommandHandler(app, mock_client, logging.getLogger("test"))


async def test_connect_subscribes(handler, mock_client):
    await handler.connect()
    mock_client.subscribe_request_reply.assert_awaited_once()
    assert mock_client.subscribe_request_reply.await_args.args[0] == SUBJECT


async def test_ping(handler, app):
    result = await handler._handle_command({"command": "system.ping"})
    assert result["success"] is True
    assert result["data"]["pong"] is True
    assert app.requests_processed == 1


async def test_health(handler, state):
    state.stream_online = True
    result = await handler._handle_command({"command": "system.health"})
    data = result["data"]
    assert data["status"] == "healthy"
    assert data["stream_online"] is True
    assert data["roster_size"] == 0
    assert data["queue_depth"] == 3


async def test_unknown_command(handler):
    result = await handler._handle_command({"command": "nope"})
    assert result["success"] is False
    assert "Unknown command" in result["error"]


async def test_user_stats(handler, repos: Repositories, achievement_engine):
    alice = await repos.users.get_or_create("alice", "Alice")
    await achievement_engine.increment_stat(alice["id"], "clips_created")

    result = await handler._handle_command({"command": "user.stats", "username": "@Alice"})
    assert result["data"]["found"] is True
    assert result["data"]["stats"] == {"clips_created": 1}

    achievements = await handler._handle_command({"command": "user.achievements", "username": "alice"})
    assert achievements["data"]["achievements"][0]["stat_key"] == "clips_created"


async def test_user_stats_unknown_user(handler):
    result = await handler._handle_command({"command": "user.stats", "username": "ghost"})
    assert result["data"] == {"found": False}


async def test_missing_username_is_error(handler):
    result = await handler._handle_command({"command": "user.stats"})
    assert result["success"] is False
    assert "username" in result["error"]


async def test_sync_sub_months(handler, app):
    result = await handler._handle_command({"command": "user.sync_sub_months", "username": "bob"})
    assert result["data"] == {"username": "bob", "total_months_subbed": 6}
    app.scheduler.sync_sub_months.assert_awaited_once_with("bob")
