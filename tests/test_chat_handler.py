"""Tests for ChatHandler — stats, rewards, dispatch and voting."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_config_dict
from kryten_streambot import prompts
from kryten_streambot.chat_handler import ChatHandler, ChatMessage
from kryten_streambot.config import StreamBotConfig
from kryten_streambot.repositories import Repositories

CH = "testchannel"
EXTRA_VOTE = "e776c465-7f7a-4a41-8593-68165248ecd8"


@pytest.fixture
def mock_composer() -> MagicMock:
    composer = MagicMock()
    composer.paired = AsyncMock()
    composer.single_value = AsyncMock()
    composer.who = AsyncMock()
    composer.mention_reply = AsyncMock(return_value="привет")
    return composer


@pytest.fixture
def mock_twitch() -> MagicMock:
    twitch = MagicMock()
    twitch.create_clip = AsyncMock(return_value="FunnyClipId")
    twitch.get_reward_title = AsyncMock(return_value="Гидрация")
    return twitch


@pytest.fixture
def handler(
    sample_config, repos, achievement_engine, mock_composer, vote_ledger,
    mock_twitch, recorder, state, mock_client,
) -> ChatHandler:
    return ChatHandler(
        config=sample_config,
        repos=repos,
        achievements=achievement_engine,
        composer=mock_composer,
        ledger=vote_ledger,
        twitch=mock_twitch,
        recorder=recorder,
        state=state,
        client=mock_client,
        logger=logging.getLogger("test"),
    )


def _msg(text: str, login: str = "alice", reward_id: str | None = None) -> ChatMessage:
    return ChatMessage(channel=CH, login=login, display_name=login, text=text, reward_id=reward_id)


def _last_reply(mock_client: MagicMock) -> str:
    return mock_client.send_chat.await_args.args[1]


# ═══════════════════════════════════════════════════════════════
#  Filtering & stats
# ═══════════════════════════════════════════════════════════════


async def test_bot_and_ignored_users_skipped(handler, repos: Repositories):
    await handler.handle(_msg("hi", login="TestBot"))
    await handler.handle(_msg("hi", login="ignoredbot"))
    assert await repos.users.find_by_login("testbot") is None
    assert handler.messages_processed == 0


async def test_message_stats(handler, repos: Repositories, state):
    state.stream_online = True
    bob = await repos.users.get_or_create("bob", "bob")

    await handler.handle(_msg("!foo привет @bob и @nobody"))

    alice = await repos.users.find_by_login("alice")
    stats = await repos.users.get_stats(alice["id"])
    assert stats["total_chat_messages_sent"] == 1
    assert stats["total_commands_run"] == 1
    assert stats["first_message"] == 1
    assert await repos.users.get_stat(bob["id"], "total_times_tagged") == 1
    assert [c["twitch_login"] for c in await repos.chatters.list_active()] == ["alice"]


async def test_first_message_awarded_once_per_session(handler, repos: Repositories):
    await handler.handle(_msg("hi", login="alice"))
    await handler.handle(_msg("hi", login="bob"))
    bob = await repos.users.find_by_login("bob")
    assert await repos.users.get_stat(bob["id"], "first_message") == 0
    alice = await repos.users.find_by_login("alice")
    earned = await repos.achievements.list_for_user(alice["id"])
    assert ("first_message", 1) in {(a["stat_key"], a["threshold"]) for a in earned}


async def test_offline_stream_keeps_roster_empty(handler, repos: Repositories, state):
    state.stream_online = False
    await handler.handle(_msg("hi"))
    assert await repos.chatters.count() == 0


async def test_message_count_achievement(handler, repos: Repositories, state):
    state.stream_online = True
    for _ in range(20):
        await handler.handle(_msg("hi"))
    alice = await repos.users.find_by_login("alice")
    earned = await repos.achievements.list_for_user(alice["id"])
    assert ("message_count", 20) in {(a["stat_key"], a["threshold"]) for a in earned}


async def test_affinity_updated(handler, repos: Repositories):
    await handler.handle(_msg("спасибо!"))
    alice = await repos.users.find_by_login("alice")
    assert alice["affinity"] == 1
    assert alice["last_affinity_note"] == "Вежливое сообщение"


# ═══════════════════════════════════════════════════════════════
#  Rewards
# ═══════════════════════════════════════════════════════════════


async def test_extra_vote_reward(handler, repos: Repositories, mock_client):
    await handler.handle(_msg("", reward_id=EXTRA_VOTE))
    alice = await repos.users.find_by_login("alice")
    assert alice["vote_limit"] == 2
    mock_client.send_chat.assert_awaited_once_with(CH, prompts.EXTRA_VOTE_ADDED.format(user="alice"))


async def test_reward_logged_when_no_filter(handler, repos: Repositories):
    await handler.handle(_msg("налей воды", reward_id="r-1"))
    logs = await repos.event_logs.recent("reward")
    assert logs[0]["message"] == "Reward Гидрация redeemed by alice: налей воды"
    assert logs[0]["title"] == "Гидрация"


async def test_reward_outside_filter_not_logged(handler, repos: Repositories, state):
    state.logged_reward_ids = {"r-2"}
    await handler.handle(_msg("", reward_id="r-1"))
    assert await repos.event_logs.recent("reward") == []


async def test_reward_title_falls_back_to_id(handler, repos: Repositories, mock_twitch):
    mock_twitch.get_reward_title = AsyncMock(return_value=None)
    await handler.handle(_msg("", reward_id="r-9"))
    logs = await repos.event_logs.recent("reward")
    assert logs[0]["message"] == "Reward r-9 redeemed by alice"


# ═══════════════════════════════════════════════════════════════
#  Dispatch
# ═══════════════════════════════════════════════════════════════


async def test_paired_dispatch(handler, mock_composer):
    await handler.handle(_msg("!ИНТИМ @bob в лифте"))
    mock_composer.paired.assert_awaited_once()
    args = mock_composer.paired.await_args.args
    assert args[0] == CH
    assert args[1] == "intim"
    assert args[3] == "@bob в лифте"
    assert handler.commands_processed == 1


async def test_single_value_dispatch(handler, mock_composer):
    await handler.handle(_msg("!куда @bob"))
    args = mock_composer.single_value.await_args.args
    assert args[1] == "where_to"
    assert args[3] == "@bob"


async def test_who_dispatch(handler, mock_composer):
    await handler.handle(_msg("!кто тут главный"))
    mock_composer.who.assert_awaited_once()


async def test_unknown_command_ignored(handler, mock_client):
    await handler.handle(_msg("!неизвестно"))
    mock_client.send_chat.assert_not_called()
    assert handler.commands_processed == 0


async def test_clip_success(handler, repos: Repositories, mock_client):
    await handler.handle(_msg("!clip"))
    assert _last_reply(mock_client) == "@alice, клип создан: https://clips.twitch.tv/FunnyClipId"
    alice = await repos.users.find_by_login("alice")
    assert await repos.users.get_stat(alice["id"], "clips_created") == 1


async def test_clip_failure(handler, repos: Repositories, mock_client, mock_twitch):
    mock_twitch.create_clip = AsyncMock(return_value=None)
    await handler.handle(_msg("!клип"))
    assert _last_reply(mock_client) == prompts.CLIP_FAILED.format(user="alice")
    alice = await repos.users.find_by_login("alice")
    assert await repos.users.get_stat(alice["id"], "clips_created") == 0


# ═══════════════════════════════════════════════════════════════
#  Voting
# ═══════════════════════════════════════════════════════════════


async def test_vote_help(handler, mock_client):
    await handler.handle(_msg("!игра"))
    assert _last_reply(mock_client) == prompts.VOTE_HELP


async def test_vote_no_poll(handler, mock_client):
    await handler.handle(_msg("!game Doom"))
    assert _last_reply(mock_client) == prompts.VOTE_NO_POLL.format(user="alice")


async def test_vote_list(handler, repos: Repositories, mock_client):
    await repos.polls.create(["Doom", "Quake"])
    await handler.handle(_msg("!игра список"))
    assert _last_reply(mock_client) == "1. Doom - 0 | 2. Quake - 0"


async def test_vote_by_number_and_name(handler, repos: Repositories, mock_client):
    await repos.polls.create(["Doom", "Half Life"])
    alice = await repos.users.get_or_create("alice", "alice")
    await repos.users.increment_vote_limit(alice["id"])

    await handler.handle(_msg("!игра 2"))
    assert _last_reply(mock_client) == prompts.VOTE_ACCEPTED.format(user="alice", name="Half Life")
    await handler.handle(_msg("!игра half life"))
    assert _last_reply(mock_client) == prompts.VOTE_ACCEPTED.format(user="alice", name="Half Life")
    await handler.handle(_msg("!игра Doom"))
    assert _last_reply(mock_client) == prompts.VOTE_LIMIT.format(user="alice")


async def test_vote_bad_number_and_unknown_name(handler, repos: Repositories, mock_client):
    await repos.polls.create(["Doom"])
    await handler.handle(_msg("!игра 5"))
    assert _last_reply(mock_client) == prompts.VOTE_BAD_NUMBER.format(user="alice")
    await handler.handle(_msg("!игра Tetris"))
    assert _last_reply(mock_client) == prompts.VOTE_NOT_FOUND.format(user="alice", name="Tetris")


async def test_vote_non_ascii_digit_treated_as_name(handler, repos: Repositories, mock_client):
    await repos.polls.create(["Doom"])
    await handler.handle(_msg("!игра ²"))
    assert _last_reply(mock_client) == prompts.VOTE_NOT_FOUND.format(user="alice", name="²")


async def test_vote_status(handler, repos: Repositories, mock_client):
    await repos.polls.create(["Doom", "Quake"])
    await handler.handle(_msg("!игра 1"))
    await handler.handle(_msg("!игра голоса"))
    assert _last_reply(mock_client) == (
        prompts.VOTE_STATUS.format(user="alice", remaining=0)
        + prompts.VOTE_STATUS_DETAIL.format(items="Doom (1)")
    )


async def test_vote_closed(handler, repos: Repositories, mock_client):
    await repos.polls.create(["Doom"])
    await repos.polls.set_setting("accept_votes", "false")
    await handler.handle(_msg("!игра Doom"))
    assert _last_reply(mock_client) == prompts.VOTE_CLOSED.format(user="alice")


# ═══════════════════════════════════════════════════════════════
#  Queue
# ═══════════════════════════════════════════════════════════════


async def test_full_queue_drops_oldest(repos, achievement_engine, mock_composer, vote_ledger,
                                       mock_twitch, recorder, state, mock_client):
    cfg = StreamBotConfig(**make_config_dict(handler={"queue_size": 2, "workers": 1}))
    handler = ChatHandler(cfg, repos, achievement_engine, mock_composer, vote_ledger,
                          mock_twitch, recorder, state, mock_client, logging.getLogger("test"))
    for text in ("one", "two", "three"):
        handler.enqueue(_msg(text))
    assert handler.queue_depth == 2
    assert handler.messages_dropped == 1
    assert handler._queue.get_nowait().text == "two"


async def test_workers_process_queue(handler, repos: Repositories):
    handler.start()
    try:
        handler.enqueue(_msg("hi"))
        handler.enqueue(_msg("hi again"))
        await asyncio.wait_for(handler._queue.join(), timeout=5)
    finally:
        await handler.stop()
    alice = await repos.users.find_by_login("alice")
    assert await repos.users.get_stat(alice["id"], "total_chat_messages_sent") == 2


# ═══════════════════════════════════════════════════════════════
#  Mentions & redemption events
# ═══════════════════════════════════════════════════════════════


async def test_bot_mention_answered_instead_of_command(handler, mock_composer, state):
    await handler.handle(_msg("@TestBot !игра Doom"))
    mock_composer.mention_reply.assert_awaited_once()
    channel, user, text = mock_composer.mention_reply.await_args.args
    assert (channel, user["username"], text) == (CH, "alice", "@TestBot !игра Doom")
    assert handler.commands_processed == 0
    assert handler.mentions_processed == 1
    assert state.history_snapshot()[-1] == {"username": "alice", "role": "user", "message": "@TestBot !игра Doom"}


async def test_mention_of_longer_name_is_not_bot_mention(handler, mock_composer):
    await handler.handle(_msg("@TestBotFan привет"))
    mock_composer.mention_reply.assert_not_called()


async def test_redemption_event_runs_reward_only(handler, repos: Repositories, mock_client):
    redemption = ChatMessage(
        channel=CH, login="alice", display_name="Alice", text="", reward_id=EXTRA_VOTE, is_redemption=True,
    )
    await handler.handle(redemption)

    alice = await repos.users.find_by_login("alice")
    assert alice["vote_limit"] == 2
    assert await repos.users.get_stats(alice["id"]) == {}
    mock_client.send_chat.assert_awaited_once_with(CH, prompts.EXTRA_VOTE_ADDED.format(user="Alice"))
