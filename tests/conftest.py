"""Shared test fixtures for kryten-streambot."""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from kryten_streambot.achievement_engine import AchievementEngine
from kryten_streambot.config import StreamBotConfig
from kryten_streambot.database import BotDatabase
from kryten_streambot.engine_state import EngineState
from kryten_streambot.event_composer import EventComposer
from kryten_streambot.event_recorder import EventRecorder
from kryten_streambot.repositories import Repositories
from kryten_streambot.text_generator import TextGenerator
from kryten_streambot.vote_ledger import VoteLedger


# ── Minimal config dict matching StreamBotConfig schema ──────

def make_config_dict(**overrides) -> dict:
    """Build a valid config dict with sensible test defaults."""
    base = {
        "nats": {"servers": ["nats://localhost:4222"]},
        "channels": [{"domain": "twitch.tv", "channel": "testchannel"}],
        "service": {"name": "streambot"},
        "database": {"path": ":memory:"},
        "bot": {"username": "TestBot", "ignored_users": ["IgnoredBot"]},
        "twitch": {
            "client_id": "cid",
            "client_secret": "csecret",
            "channel_id": "12345",
        },
        "text_generator": {
            "api_key": "test-key",
            "retries": 2,
            "backoff_seconds": 0.2,
        },
        "paired_commands": {"combo_window_seconds": 60, "special_percents": [0, 69, 100]},
    }
    base.update(overrides)
    return base


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a config dict suitable for tests."""
    return make_config_dict()


@pytest.fixture
def sample_config(sample_config_dict: dict) -> StreamBotConfig:
    """Return a parsed StreamBotConfig."""
    return StreamBotConfig(**sample_config_dict)


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> str:
    """Return a temporary SQLite database path."""
    return str(tmp_path / "test_streambot.db")


@pytest_asyncio.fixture
async def database(tmp_db_path: str) -> AsyncGenerator[BotDatabase, None]:
    """Provide an initialized database with temp file."""
    db = BotDatabase(tmp_db_path, logging.getLogger("test"))
    await db.initialize()
    yield db


@pytest.fixture
def repos(database: BotDatabase) -> Repositories:
    return Repositories(database)


@pytest.fixture
def state() -> EngineState:
    return EngineState()


@pytest.fixture
def mock_client() -> MagicMock:
    """Return a mock KrytenClient with async methods."""
    client = MagicMock()
    client.send_chat = AsyncMock(return_value="corr-id-456")
    client.connect = AsyncMock()
    client.run = AsyncMock()
    client.stop = AsyncMock()
    client.subscribe = AsyncMock()
    client.subscribe_request_reply = AsyncMock()
    return client


@pytest.fixture
def fake_generator() -> MagicMock:
    """TextGenerator stand-in that always fails over to the fallback text."""
    generator = MagicMock(spec=TextGenerator)
    generator.enabled = True
    generator.failures = 0
    generator.complete = AsyncMock(return_value=None)
    generator.start = AsyncMock()
    generator.stop = AsyncMock()
    return generator


@pytest.fixture
def mock_overlay() -> MagicMock:
    overlay = MagicMock()
    overlay.configured = False
    overlay.trigger = AsyncMock(return_value=True)
    return overlay


@pytest.fixture
def recorder(repos: Repositories, mock_overlay: MagicMock) -> EventRecorder:
    return EventRecorder(repos.event_logs, mock_overlay, logging.getLogger("test"))


@pytest_asyncio.fixture
async def achievement_engine(
    sample_config: StreamBotConfig,
    repos: Repositories,
) -> AchievementEngine:
    """AchievementEngine with a seeded catalog."""
    engine = AchievementEngine(
        sample_config, repos.users, repos.achievements, logging.getLogger("test"),
    )
    await engine.initialize()
    return engine


@pytest.fixture
def vote_ledger(repos: Repositories) -> VoteLedger:
    return VoteLedger(repos.votes, logging.getLogger("test"))


@pytest.fixture
def composer(
    sample_config: StreamBotConfig,
    repos: Repositories,
    achievement_engine: AchievementEngine,
    fake_generator: MagicMock,
    recorder: EventRecorder,
    state: EngineState,
    mock_client: MagicMock,
) -> EventComposer:
    """EventComposer with a seeded RNG and a failing generator."""
    return EventComposer(
        config=sample_config,
        users=repos.users,
        chatters=repos.chatters,
        content=repos.content,
        achievements=achievement_engine,
        generator=fake_generator,
        recorder=recorder,
        state=state,
        client=mock_client,
        logger=logging.getLogger("test"),
        rng=random.Random(7),
    )


# ── Helpers ──────────────────────────────────────────────────

async def add_chatters(repos: Repositories, *logins: str) -> list[dict]:
    """Create users and put them on the active roster."""
    users = []
    for login in logins:
        user = await repos.users.get_or_create(login, login)
        await repos.chatters.touch(user["id"])
        users.append(user)
    return users


def mock_response(status: int = 200, json_data=None, text: str = "") -> AsyncMock:
    """aiohttp response usable as ``async with session.post(...) as resp``."""
    resp = AsyncMock()
    resp.status = status
    resp.json = AsyncMock(return_value=json_data)
    resp.text = AsyncMock(return_value=text)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp
