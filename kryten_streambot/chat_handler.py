"""Inbound chat pipeline.

Messages are pushed onto a bounded queue by the transport callback and
consumed by ``handler.workers`` worker tasks (one by default, so messages are
processed strictly in arrival order). When the queue is full the oldest
pending message is dropped.

Per message: find-or-create the author, update chat statistics and affinity,
handle reward redemptions, answer @mentions of the bot, then dispatch ``!``
commands. Redemption events (``is_redemption``) only run the reward step.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from . import prompts
from .affinity import score_message
from .errors import StreamBotError
from .vote_ledger import VOTE_LIMIT_REACHED

if TYPE_CHECKING:
    from .achievement_engine import AchievementEngine
    from .config import StreamBotConfig
    from .engine_state import EngineState
    from .event_composer import EventComposer
    from .event_recorder import EventRecorder
    from .repositories import Repositories
    from .twitch_api import TwitchApi
    from .vote_ledger import VoteLedger

_MENTION_RE = re.compile(r"@([A-Za-z0-9_]+)")
_VOTE_NUMBER_RE = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class ChatMessage:
    channel: str
    login: str
    display_name: str
    text: str
    reward_id: str | None = None
    is_echo: bool = False
    # Redemption events only carry the reward; the chat line (if any) arrives separately
    is_redemption: bool = False


class ChatHandler:
    """Queue-fed message processor and command dispatcher."""

    def __init__(
        self,
        config: StreamBotConfig,
        repos: Repositories,
        achievements: AchievementEngine,
        composer: EventComposer,
        ledger: VoteLedger,
        twitch: TwitchApi,
        recorder: EventRecorder,
        state: EngineState,
        client: Any,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._repos = repos
        self._achievements = achievements
        self._composer = composer
        self._ledger = ledger
        self._twitch = twitch
        self._recorder = recorder
        self._state = state
        self._client = client
        self._logger = logger or logging.getLogger("streambot.chat")

        self._queue: asyncio.Queue[ChatMessage] = asyncio.Queue(maxsize=config.handler.queue_size)
        self._workers: list[asyncio.Task] = []
        self._ignored = {u.lower() for u in config.bot.ignored_users}
        self._bot_login = config.bot.username.lower()
        self._bot_mention_re = re.compile(rf"@{re.escape(self._bot_login)}\b", re.IGNORECASE)

        # Metrics
        self.messages_processed: int = 0
        self.commands_processed: int = 0
        self.mentions_processed: int = 0
        self.messages_dropped: int = 0

        # Prefix → handler; checked in order
        self._commands: list[tuple[str, Callable[[ChatMessage, dict, str], Awaitable[None]]]] = [
            ("!интим", self._cmd_intim),
            ("!поцелуй", self._cmd_poceluy),
            ("!где", self._single(prompts.WHERE)),
            ("!когда", self._single(prompts.WHEN)),
            ("!что", self._single(prompts.WHAT)),
            ("!куда", self._single(prompts.WHERE_TO)),
            ("!кто", self._cmd_who),
            ("!clip", self._cmd_clip),
            ("!клип", self._cmd_clip),
            ("!игра", self._cmd_vote),
            ("!game", self._cmd_vote),
        ]

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    # ══════════════════════════════════════════════════════════
    #  Queue lifecycle
    # ══════════════════════════════════════════════════════════

    def start(self) -> None:
        """Start the worker tasks."""
        for _ in range(max(self._config.handler.workers, 1)):
            self._workers.append(asyncio.create_task(self._worker()))

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

    def enqueue(self, message: ChatMessage) -> None:
        """Queue a message, dropping the oldest pending one when full."""
        if self._queue.full():
            try:
                dropped = self._queue.get_nowait()
                self._queue.task_done()
                self.messages_dropped += 1
                self._logger.warning(
                    "Message queue full, dropped message from %s", dropped.login,
                )
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(message)

    async def _worker(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self.handle(message)
            except Exception:
                self._logger.exception("Chat handler error for %s", message.login)
            finally:
                self._queue.task_done()

    # ══════════════════════════════════════════════════════════
    #  Message pipeline
    # ══════════════════════════════════════════════════════════

    async def handle(self, message: ChatMessage) -> None:
        login = message.login.lower()
        if message.is_echo or login == self._bot_login or login in self._ignored:
            return
        self.messages_processed += 1

        text = message.text.strip()
        try:
            user = await self._repos.users.get_or_create(login, message.display_name)
        except sqlite3.Error as e:
            self._logger.error("User lookup failed for %s: %s", login, e)
            if text.startswith("!"):
                await self._reply(message, prompts.USER_LOOKUP_FAILED)
            return

        if message.is_redemption:
            if message.reward_id:
                await self._handle_reward(message, user, text)
            return

        await self._track_stats(user, text)
        await self._update_affinity(user, text)

        if message.reward_id:
            await self._handle_reward(message, user, text)

        self._state.add_history(message.login, "user", text)
        if self._bot_mention_re.search(text):
            self.mentions_processed += 1
            await self._composer.mention_reply(message.channel, user, text)
            return

        if text.startswith("!"):
            await self._dispatch(message, user, text)

    async def _track_stats(self, user: dict, text: str) -> None:
        uid = user["id"]
        if not self._state.first_message_awarded:
            self._state.first_message_awarded = True
            await self._achievements.increment_stat(uid, "first_message")

        if self._state.stream_online:
            try:
                count = await self._repos.chatters.touch(uid)
                await self._achievements.check_and_award(uid, "message_count", count)
            except sqlite3.Error as e:
                self._logger.error("Roster update failed for user %s: %s", uid, e)

        tasks = [self._achievements.increment_stat(uid, "total_chat_messages_sent")]
        if text.startswith("!"):
            tasks.append(self._achievements.increment_stat(uid, "total_commands_run"))
        for login in {m.lower() for m in _MENTION_RE.findall(text)}:
            tasks.append(self._count_mention(login))
        await asyncio.gather(*tasks)

    async def _count_mention(self, login: str) -> None:
        try:
            mentioned = await self._repos.users.find_by_login(login)
        except sqlite3.Error as e:
            self._logger.error("Mention lookup failed for %s: %s", login, e)
            return
        if mentioned:
            await self._achievements.increment_stat(mentioned["id"], "total_times_tagged")

    async def _update_affinity(self, user: dict, text: str) -> None:
        cfg = self._config.affinity
        result = score_message(text, cfg)
        if result is None:
            return
        try:
            await self._repos.users.update_affinity(
                user["id"], result.delta, cfg.min, cfg.max, result.note,
            )
        except sqlite3.Error as e:
            self._logger.error("Affinity update failed for user %s: %s", user["id"], e)

    async def _handle_reward(self, message: ChatMessage, user: dict, text: str) -> None:
        reward_id = message.reward_id
        if reward_id == self._config.voting.extra_vote_reward_id:
            try:
                await self._repos.users.increment_vote_limit(user["id"], 1)
            except sqlite3.Error as e:
                self._logger.error("Extra vote reward failed for user %s: %s", user["id"], e)
                return
            await self._reply(message, prompts.EXTRA_VOTE_ADDED)
            return

        logged = self._state.logged_reward_ids
        if logged and reward_id not in logged:
            return
        name = await self._twitch.get_reward_title(reward_id) or reward_id
        line = f"Reward {name} redeemed by {message.display_name}"
        if text:
            line += f": {text}"
        await self._recorder.log(line, "reward", title=name)

    async def _dispatch(self, message: ChatMessage, user: dict, text: str) -> None:
        lowered = text.lower()
        for prefix, handler in self._commands:
            if lowered.startswith(prefix):
                self.commands_processed += 1
                await handler(message, user, text[len(prefix):].strip())
                return

    async def _reply(self, message: ChatMessage, template: str, **kwargs: Any) -> None:
        await self._client.send_chat(
            message.channel, template.format(user=message.display_name, **kwargs),
        )

    # ══════════════════════════════════════════════════════════
    #  Commands
    # ══════════════════════════════════════════════════════════

    async def _cmd_intim(self, message: ChatMessage, user: dict, args: str) -> None:
        await self._composer.paired(message.channel, prompts.INTIM, user, args)

    async def _cmd_poceluy(self, message: ChatMessage, user: dict, args: str) -> None:
        await self._composer.paired(message.channel, prompts.POCELUY, user, args)

    def _single(self, family: str) -> Callable[[ChatMessage, dict, str], Awaitable[None]]:
        async def _handler(message: ChatMessage, user: dict, args: str) -> None:
            await self._composer.single_value(message.channel, family, user, args)
        return _handler

    async def _cmd_who(self, message: ChatMessage, user: dict, args: str) -> None:
        await self._composer.who(message.channel, user, args)

    async def _cmd_clip(self, message: ChatMessage, user: dict, args: str) -> None:
        twitch = self._config.twitch
        clip_id: str | None = None
        if twitch.channel_id and twitch.client_id:
            try:
                clip_id = await self._twitch.create_clip()
            except StreamBotError as e:
                self._logger.error("Clip creation failed: %s", e)
        if not clip_id:
            await self._reply(message, prompts.CLIP_FAILED)
            return
        url = f"{twitch.clip_base_url.rstrip('/')}/{clip_id}"
        await self._reply(message, prompts.CLIP_CREATED, url=url)
        await self._achievements.increment_stat(user["id"], "clips_created")

    # ── Voting ───────────────────────────────────────────────

    async def _cmd_vote(self, message: ChatMessage, user: dict, args: str) -> None:
        words = args.split()
        if not words:
            await self._client.send_chat(message.channel, prompts.VOTE_HELP)
            return

        sub = words[0].lower()
        if sub == "список":
            await self._vote_list(message)
        elif sub == "голоса":
            await self._vote_status(message, user)
        else:
            await self._vote_cast(message, user, words)

    async def _vote_list(self, message: ChatMessage) -> None:
        try:
            poll = await self._repos.polls.get_active()
            if not poll:
                await self._reply(message, prompts.VOTE_NO_POLL)
                return
            games = await self._repos.polls.games_with_votes(poll["id"])
        except sqlite3.Error as e:
            self._logger.error("Game list failed: %s", e)
            await self._reply(message, prompts.VOTE_LIST_FAILED)
            return
        text = " | ".join(f"{i}. {g['name']} - {g['votes']}" for i, g in enumerate(games, 1))
        if text:
            await self._client.send_chat(message.channel, text)

    async def _vote_status(self, message: ChatMessage, user: dict) -> None:
        try:
            poll = await self._repos.polls.get_active()
            if not poll:
                await self._reply(message, prompts.VOTE_NO_POLL)
                return
            tally = await self._repos.votes.tally_for_user(poll["id"], user["id"])
        except sqlite3.Error as e:
            self._logger.error("Vote status failed for user %s: %s", user["id"], e)
            await self._reply(message, prompts.VOTE_STATUS_FAILED)
            return
        used = sum(int(t["count"]) for t in tally)
        remaining = max(int(user.get("vote_limit") or 1), 1) - used
        text = prompts.VOTE_STATUS.format(user=message.display_name, remaining=remaining)
        if tally:
            items = ", ".join(f"{t['name']} ({t['count']})" for t in tally)
            text += prompts.VOTE_STATUS_DETAIL.format(items=items)
        await self._client.send_chat(message.channel, text)

    async def _vote_cast(self, message: ChatMessage, user: dict, words: list[str]) -> None:
        name = " ".join(words)
        try:
            poll = await self._repos.polls.get_active()
            if not poll:
                await self._reply(message, prompts.VOTE_NO_POLL)
                return
            if not await self._voting_open():
                await self._reply(message, prompts.VOTE_CLOSED)
                return
            games = await self._repos.polls.games_with_votes(poll["id"])
        except sqlite3.Error as e:
            self._logger.error("Vote lookup failed for user %s: %s", user["id"], e)
            await self._reply(message, prompts.VOTE_FAILED)
            return

        if len(words) == 1 and _VOTE_NUMBER_RE.match(words[0]):
            index = int(words[0])
            if index < 1 or index > len(games):
                await self._reply(message, prompts.VOTE_BAD_NUMBER)
                return
            game = games[index - 1]
        else:
            game = next((g for g in games if g["name"].lower() == name.lower()), None)
            if not game:
                await self._reply(message, prompts.VOTE_NOT_FOUND, name=name)
                return

        result = await self._ledger.add_vote(user, poll["id"], game["id"])
        if result.success:
            await self._reply(message, prompts.VOTE_ACCEPTED, name=game["name"])
        elif result.reason == VOTE_LIMIT_REACHED:
            await self._reply(message, prompts.VOTE_LIMIT)
        else:
            await self._reply(message, prompts.VOTE_DB_ERROR)

    async def _voting_open(self) -> bool:
        """``accept_votes`` setting, cached for ``voting.accept_votes_ttl_seconds``."""
        now = time.monotonic()
        ttl = self._config.voting.accept_votes_ttl_seconds
        if self._state.accept_votes_checked_at and now - self._state.accept_votes_checked_at < ttl:
            return self._state.accept_votes
        value = await self._repos.polls.get_setting("accept_votes")
        self._state.accept_votes = value is None or value.strip().lower() not in ("false", "0", "no", "off")
        self._state.accept_votes_checked_at = now
        return self._state.accept_votes
