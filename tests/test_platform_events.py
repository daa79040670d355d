"""Tests for PlatformEventHandler — subscriptions and reward redemptions."""

from __future__ import annotations

import json
import logging
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from kryten_streambot.chat_handler import ChatHandler
from kryten_streambot.platform_events import PlatformEventHandler, decode_event
from kryten_streambot.repositories import Repositories

EXTRA_VOTE = "e776c465-7f7a-4a41-8593-68165248ecd8"


@pytest.fixture
def chat_handler(
    sample_config, repos, achievement_engine, composer, vote_ledger, recorder, state, mock_client,
) -> ChatHandler:
    return ChatHandler(
        config=sample_config,
        repos=repos,
        achievements=achievement_engine,
        composer=composer,
        ledger=vote_ledger,
        twitch=MagicMock(),
        recorder=recorder,
        state=state,
        client=mock_client,
        logger=logging.getLogger("test"),
    )


@pytest.fixture
def events(sample_config, repos, achievement_engine, recorder, chat_handler) -> PlatformEventHandler:
    return PlatformEventHandler(
        config=sample_config,
        users=repos.users,
        achievements=achievement_engine,
        recorder=recorder,
        chat_handler=chat_handler,
        logger=logging.getLogger("test"),
    )


def test_decode_event_shapes():
    assert decode_event({"a": 1}) == {"a": 1}
    assert decode_event(SimpleNamespace(data=b'{"a": 2}')) == {"a": 2}
    assert decode_event('{"a": 3}') == {"a": 3}
    assert decode_event(b"not json") is None
    assert decode_event(b"[1, 2]") is None


async def test_connect_subscribes_to_both_subjects(events, mock_client, sample_config):
    await events.connect(mock_client)
    subjects = [c.args[0] for c in mock_client.subscribe.await_args_list]
    assert subjects == [
        sample_config.events.subscription_subject,
        sample_config.events.redemption_subject,
    ]


# ═══════════════════════════════════════════════════════════════
#  Redemptions
# ═══════════════════════════════════════════════════════════════


async def test_extra_vote_redemption_end_to_end(events, chat_handler, repos: Repositories, mock_client):
    payload = {"channel": "testchannel", "username": "Alice", "reward_id": EXTRA_VOTE}
    await events._on_redemption(SimpleNamespace(data=json.dumps(payload).encode()))

    assert chat_handler.queue_depth == 1
    queued = chat_handler._queue.get_nowait()
    assert queued.is_redemption and queued.reward_id == EXTRA_VOTE
    await chat_handler.handle(queued)

    alice = await repos.users.find_by_login("alice")
    assert alice["vote_limit"] == 2
    assert mock_client.send_chat.await_count == 1


async def test_redemption_without_reward_id_ignored(events, chat_handler):
    assert events.handle_redemption({"username": "alice"}) is False
    assert chat_handler.queue_depth == 0


# ═══════════════════════════════════════════════════════════════
#  Subscriptions
# ═══════════════════════════════════════════════════════════════


async def test_new_sub_logged_and_counted(events, repos: Repositories):
    await events.handle_subscription({
        "kind": "subscription", "username": "alice", "display_name": "Alice",
        "message": "ура", "cumulative_months": 3,
    })

    logs = await repos.event_logs.recent("subscription")
    assert logs[0]["message"] == "New sub: Alice - ура"
    alice = await repos.users.find_by_login("alice")
    assert await repos.users.get_stat(alice["id"], "total_subs_received") == 1
    assert await repos.users.get_stat(alice["id"], "total_months_subbed") == 3
    earned = await repos.achievements.list_for_user(alice["id"])
    assert ("total_months_subbed", 3) in {(a["stat_key"], a["threshold"]) for a in earned}


async def test_resub_increments_received(events, repos: Repositories):
    for _ in range(5):
        await events.handle_subscription({"kind": "resub", "username": "bob"})

    bob = await repos.users.find_by_login("bob")
    assert await repos.users.get_stat(bob["id"], "total_subs_received") == 5
    earned = await repos.achievements.list_for_user(bob["id"])
    assert ("total_subs_received", 5) in {(a["stat_key"], a["threshold"]) for a in earned}
    assert (await repos.event_logs.recent("resub"))[0]["message"] == "Re-sub: bob"


async def test_subgift_credits_both_sides(events, repos: Repositories):
    await events.handle_subscription({"kind": "subgift", "username": "carol", "recipient": "Dave"})

    carol = await repos.users.find_by_login("carol")
    dave = await repos.users.find_by_login("dave")
    assert await repos.users.get_stat(carol["id"], "total_subs_gifted") == 1
    assert await repos.users.get_stat(dave["id"], "total_subs_received") == 1
    assert (await repos.event_logs.recent("subgift"))[0]["message"] == "Gift sub: carol -> dave"


async def test_mystery_gift_adds_count(events, repos: Repositories):
    await events.handle_subscription({"kind": "submysterygift", "username": "erin", "count": "5"})

    erin = await repos.users.find_by_login("erin")
    assert await repos.users.get_stat(erin["id"], "total_subs_gifted") == 5
    earned = await repos.achievements.list_for_user(erin["id"])
    assert ("total_subs_gifted", 5) in {(a["stat_key"], a["threshold"]) for a in earned}
    assert await repos.event_logs.recent("submysterygift") == []


async def test_unknown_kind_rejected(events):
    assert await events.handle_subscription({"kind": "raid", "username": "x"}) is False
    assert events.subscriptions_processed == 0
