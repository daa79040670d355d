"""Tests for kryten_streambot.database and repositories."""

from __future__ import annotations

import sqlite3

import pytest

from kryten_streambot.database import BotDatabase
from kryten_streambot.repositories import Repositories


class TestInitialization:
    """Database initialization and table creation."""

    async def test_initialize_creates_tables(self, repos: Repositories):
        assert await repos.users.find_by_login("nobody") is None
        assert await repos.chatters.count() == 0

    async def test_initialize_idempotent(self, database: BotDatabase, repos: Repositories):
        await database.initialize()
        assert await repos.polls.get_active() is None


class TestUsers:
    """User rows and counters."""

    async def test_get_or_create_new(self, repos: Repositories):
        user = await repos.users.get_or_create("Alice", "Alice")
        assert user["twitch_login"] == "alice"
        assert user["username"] == "Alice"
        assert user["vote_limit"] == 1

    async def test_get_or_create_existing_updates_display_name(self, repos: Repositories):
        first = await repos.users.get_or_create("alice", "alice")
        second = await repos.users.get_or_create("ALICE", "AliceTheGreat")
        assert second["id"] == first["id"]
        assert second["username"] == "AliceTheGreat"

    async def test_increment_stat_returns_new_value(self, repos: Repositories):
        user = await repos.users.get_or_create("bob")
        assert await repos.users.increment_stat(user["id"], "clips_created") == 1
        assert await repos.users.increment_stat(user["id"], "clips_created", 3) == 4
        assert await repos.users.get_stat(user["id"], "clips_created") == 4

    async def test_get_stat_missing_is_zero(self, repos: Repositories):
        user = await repos.users.get_or_create("bob")
        assert await repos.users.get_stat(user["id"], "nope") == 0

    async def test_set_stat_max_never_lowers(self, repos: Repositories):
        user = await repos.users.get_or_create("carol")
        assert await repos.users.set_stat_max(user["id"], "total_months_subbed", 6) == 6
        assert await repos.users.set_stat_max(user["id"], "total_months_subbed", 2) == 6
        stats = await repos.users.get_stats(user["id"])
        assert stats == {"total_months_subbed": 6}

    async def test_increment_vote_limit(self, repos: Repositories):
        user = await repos.users.get_or_create("dave")
        assert await repos.users.increment_vote_limit(user["id"]) == 2

    async def test_update_affinity_clamped(self, repos: Repositories):
        user = await repos.users.get_or_create("erin")
        assert await repos.users.update_affinity(user["id"], 5, -10, 10, "x") == 5
        assert await repos.users.update_affinity(user["id"], 50, -10, 10, "y") == 10
        row = await repos.users.find_by_login("erin")
        assert row["last_affinity_note"] == "y"


class TestAchievements:

    async def test_seed_is_idempotent(self, repos: Repositories):
        catalog = {"clips_created": [1], "message_count": [20, 50]}
        assert await repos.achievements.seed(catalog) == 3
        assert await repos.achievements.seed(catalog) == 0

    async def test_award_once(self, repos: Repositories):
        await repos.achievements.seed({"clips_created": [1]})
        user = await repos.users.get_or_create("alice")
        row = await repos.achievements.find("clips_created", 1)
        assert await repos.achievements.award(user["id"], row["id"]) is True
        assert await repos.achievements.award(user["id"], row["id"]) is False
        earned = await repos.achievements.list_for_user(user["id"])
        assert [(a["stat_key"], a["threshold"]) for a in earned] == [("clips_created", 1)]


class TestPollsAndVotes:

    async def test_games_in_insertion_order_with_counts(self, repos: Repositories):
        poll_id = await repos.polls.create(["Doom", "Quake", "Hexen"])
        user = await repos.users.get_or_create("alice")
        games = await repos.polls.games_with_votes(poll_id)
        assert [g["name"] for g in games] == ["Doom", "Quake", "Hexen"]

        await repos.votes.add(poll_id, user["id"], games[1]["id"], 1)
        games = await repos.polls.games_with_votes(poll_id)
        assert [g["votes"] for g in games] == [0, 1, 0]

    async def test_duplicate_slot_rejected(self, repos: Repositories):
        poll_id = await repos.polls.create(["Doom"])
        user = await repos.users.get_or_create("alice")
        game = (await repos.polls.games_with_votes(poll_id))[0]
        await repos.votes.add(poll_id, user["id"], game["id"], 1)
        with pytest.raises(sqlite3.IntegrityError):
            await repos.votes.add(poll_id, user["id"], game["id"], 1)

    async def test_tally_for_user(self, repos: Repositories):
        poll_id = await repos.polls.create(["Doom", "Quake"])
        user = await repos.users.get_or_create("alice")
        doom, quake = await repos.polls.games_with_votes(poll_id)
        await repos.votes.add(poll_id, user["id"], doom["id"], 1)
        await repos.votes.add(poll_id, user["id"], doom["id"], 2)
        await repos.votes.add(poll_id, user["id"], quake["id"], 3)
        tally = await repos.votes.tally_for_user(poll_id, user["id"])
        assert tally == [{"name": "Doom", "count": 2}, {"name": "Quake", "count": 1}]

    async def test_settings_roundtrip(self, repos: Repositories):
        assert await repos.polls.get_setting("accept_votes") is None
        await repos.polls.set_setting("accept_votes", "false")
        await repos.polls.set_setting("accept_votes", "true")
        assert await repos.polls.get_setting("accept_votes") == "true"


class TestRoster:

    async def test_touch_counts_messages(self, repos: Repositories):
        user = await repos.users.get_or_create("alice")
        assert await repos.chatters.touch(user["id"]) == 1
        assert await repos.chatters.touch(user["id"]) == 2
        active = await repos.chatters.list_active()
        assert active[0]["twitch_login"] == "alice"
        assert active[0]["message_count"] == 2

    async def test_clear(self, repos: Repositories):
        user = await repos.users.get_or_create("alice")
        await repos.chatters.touch(user["id"])
        assert await repos.chatters.clear() == 1
        assert await repos.chatters.count() == 0


class TestContentAndLogs:

    async def test_random_template_empty_table(self, repos: Repositories):
        assert await repos.content.random_template("intim") is None

    async def test_random_template_columns(self, repos: Repositories):
        await repos.content.add_template("poceluy", variant_two="нежно", variant_three="в щёку")
        row = await repos.content.random_template("poceluy")
        assert row == {"variant_two": "нежно", "variant_three": "в щёку", "variant_four": ""}

    async def test_token_latest_is_newest(self, repos: Repositories):
        await repos.tokens.save("donation", "old", "r1", None)
        await repos.tokens.save("donation", "new", "r2", None)
        row = await repos.tokens.latest("donation")
        assert row["access_token"] == "new"
        assert await repos.tokens.latest("broadcaster") is None

    async def test_token_latest_prefers_latest_expiry(self, repos: Repositories):
        await repos.tokens.save("broadcaster", "long", "r1", "2031-01-01T00:00:00+00:00")
        await repos.tokens.save("broadcaster", "short", "r2", "2030-01-01T00:00:00+00:00")
        row = await repos.tokens.latest("broadcaster")
        assert row["access_token"] == "long"

        await repos.tokens.save("broadcaster", "forever", None, None)
        row = await repos.tokens.latest("broadcaster")
        assert row["access_token"] == "forever"

    async def test_event_log_last_title(self, repos: Repositories):
        await repos.event_logs.append("Donation from a: 1", "donation", title="10")
        await repos.event_logs.append("Donation from b: 2", "donation", title="11")
        await repos.event_logs.append("other", "intim_no_tag_69", title=None)
        assert await repos.event_logs.last_title("donation") == "11"

    async def test_logged_reward_ids(self, repos: Repositories):
        await repos.event_logs.add_logged_reward("r-1")
        await repos.event_logs.add_logged_reward("r-1")
        assert await repos.event_logs.logged_reward_ids() == {"r-1"}
