"""Event composer — paired social commands and single-value generative commands.

Paired families (``intim``, ``poceluy``) sample a partner from the active
roster, optionally resolve an ``@tag``, fill a template (generated phrases
with template fallback, then placeholder resolution), roll a percent and
classify the outcome into stat keys on the author (and the tagged user when
the tag hit the sampled partner).

Single-value families (``where``, ``when``, ``what``, ``where_to``) ask the
generator for one short phrase and guarantee it differs from the previous
accepted value of the same family. ``who`` just samples a participant.
"""

from __future__ import annotations

import asyncio
import logging
import random
import sqlite3
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from . import prompts
from .errors import TextGeneratorError
from .placeholders import ParticipantPool, resolve_placeholders
from .utils import normalize_phrase, normalize_username, squeeze_spaces, tidy_reply

if TYPE_CHECKING:
    from .achievement_engine import AchievementEngine
    from .config import StreamBotConfig
    from .engine_state import EngineState
    from .event_recorder import EventRecorder
    from .repositories import ChatterRepository, ContentRepository, UserRepository
    from .text_generator import TextGenerator

GENERIC_LABEL = "обычные"
COMBO_KEY = "combo_commands"

# Paired family → template columns in frame order
TEMPLATE_COLUMNS: dict[str, tuple[str, ...]] = {
    prompts.INTIM: ("variant_one", "variant_two"),
    prompts.POCELUY: ("variant_two", "variant_three", "variant_four"),
}


# ══════════════════════════════════════════════════════════════
#  Outcome & classification
# ══════════════════════════════════════════════════════════════

@dataclass
class EventOutcome:
    author: dict
    partner: dict
    tagged: dict | None
    percent: int
    has_tag: bool
    is_self: bool
    tag_matches_partner: bool

    @property
    def tag_state(self) -> str:
        return "with_tag" if self.has_tag else "no_tag"


@dataclass
class Classification:
    author_keys: list[str] = field(default_factory=list)
    tagged_keys: list[str] = field(default_factory=list)
    dominant: str | None = None


def classify(family: str, outcome: EventOutcome, special_percents: list[int]) -> Classification:
    """Stat keys produced by one paired invocation, plus its dominant key."""
    ts = outcome.tag_state
    special = outcome.percent in special_percents
    p = outcome.percent
    result = Classification()

    author = [f"{family}_{ts}"]
    if outcome.is_self:
        author.append(f"{family}_self_{ts}")
    if outcome.tag_matches_partner:
        author += [f"{family}_tagged_equals_partner", f"{family}_tag_match_success"]
    if special:
        author.append(f"{family}_{ts}_{p}")
        if outcome.is_self:
            author.append(f"{family}_self_{ts}_{p}")
        if outcome.tag_matches_partner:
            author += [f"{family}_tagged_equals_partner_{p}", f"{family}_tag_match_success_{p}"]
    result.author_keys = author

    if outcome.tag_matches_partner and outcome.tagged:
        result.tagged_keys = [f"{family}_tagged_equals_partner"]
        if special:
            result.tagged_keys.append(f"{family}_tagged_equals_partner_{p}")

    priority = [
        f"{family}_self_{ts}_{p}",
        f"{family}_tagged_equals_partner_{p}",
        f"{family}_{ts}_{p}",
        f"{family}_self_{ts}",
        f"{family}_tagged_equals_partner",
    ]
    produced = set(author)
    result.dominant = next((k for k in priority if k in produced), None)
    return result


def compose_paired_message(
    family: str,
    percent: int,
    author: str,
    partner: str,
    tag: str | None,
    phrases: dict[str, str],
) -> str:
    author = f"@{author}"
    partner = f"@{partner}"
    if family == prompts.INTIM:
        one, two = phrases.get("variant_one", ""), phrases.get("variant_two", "")
        if tag:
            text = f"{percent}% шанс того, что {author} {two} {tag} интимиться с {partner} {one}"
        else:
            text = f"{percent}% шанс того, что у {author} {one} будет интим с {partner}"
    else:
        two = phrases.get("variant_two", "")
        three = phrases.get("variant_three", "")
        four = phrases.get("variant_four", "")
        if tag:
            text = f"{percent}% шанс того, что {author} {two} {tag} поцелует {four} {partner} {three}"
        else:
            text = f"{percent}% шанс того, что у {author} {three} поцелует {four} {partner}"
    return squeeze_spaces(text)


def split_args(text: str) -> tuple[str | None, str]:
    """Split command arguments into the first ``@tag`` and the remaining text."""
    tag: str | None = None
    rest: list[str] = []
    for word in text.split():
        if tag is None and word.startswith("@") and len(word) > 1:
            tag = word
        elif not word.startswith("@"):
            rest.append(word)
    return tag, " ".join(rest)


@dataclass
class PairedResult:
    message: str
    outcome: EventOutcome
    classification: Classification

    @property
    def type(self) -> str:
        return self.classification.dominant or GENERIC_LABEL


# ══════════════════════════════════════════════════════════════
#  Composer
# ══════════════════════════════════════════════════════════════

class EventComposer:
    """Builds and sends the replies of the social and generative commands."""

    def __init__(
        self,
        config: StreamBotConfig,
        users: UserRepository,
        chatters: ChatterRepository,
        content: ContentRepository,
        achievements: AchievementEngine,
        generator: TextGenerator,
        recorder: EventRecorder,
        state: EngineState,
        client: Any,
        logger: logging.Logger | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._users = users
        self._chatters = chatters
        self._content = content
        self._achievements = achievements
        self._generator = generator
        self._recorder = recorder
        self._state = state
        self._client = client
        self._logger = logger or logging.getLogger("streambot.composer")
        self._rng = rng or random.Random()

    # ══════════════════════════════════════════════════════════
    #  Paired-participant commands
    # ══════════════════════════════════════════════════════════

    async def paired(self, channel: str, family: str, user: dict, args: str) -> PairedResult | None:
        """Run one ``!интим`` / ``!поцелуй`` invocation to completion."""
        name = user["username"]
        try:
            roster = await self._chatters.list_active()
        except sqlite3.Error as e:
            self._logger.error("Roster lookup failed for %s: %s", family, e)
            await self._client.send_chat(channel, prompts.COMMAND_FAILED.format(user=name))
            return None
        if not roster:
            await self._client.send_chat(channel, prompts.NO_PARTICIPANTS.format(user=name))
            return None

        cfg = self._config.paired_commands
        partner = self._rng.choice(roster)
        tag, extra_text = split_args(args)
        tag_login = normalize_username(tag) if tag else ""

        tagged, template = await asyncio.gather(
            self._find_tagged(tag_login),
            self._content.random_template(family),
            return_exceptions=True,
        )
        if isinstance(template, BaseException):
            self._logger.error("Template lookup failed for %s: %s", family, template)
            await self._client.send_chat(channel, prompts.COMMAND_FAILED.format(user=name))
            return None
        template = template or {}
        combo = self._state.record_paired(user["id"], family, cfg.combo_window_seconds)
        if isinstance(tagged, BaseException):
            tagged = None

        partner_login = normalize_username(partner.get("twitch_login") or partner["username"])
        author_login = normalize_username(user.get("twitch_login") or name)
        is_self = partner["id"] == user["id"]
        tag_matches = bool(tag_login) and tag_login == partner_login
        target_name = tag_login or partner["username"]

        roster_names = [c["username"] for c in roster]
        candidates = self._mention_candidates(
            roster_names, {author_login, partner_login, tag_login}, cfg.mention_candidates_limit,
        )

        # Generated phrases (template fallback)
        slots = prompts.GENERATED_SLOTS[family]
        generated = await asyncio.gather(*(
            self._generate_variant(
                family,
                slot,
                fallback=template.get(slot) or "",
                author=name,
                partner=partner["username"],
                target_name=target_name,
                is_self=is_self,
                was_tagged=tag_matches and tagged is not None,
                had_tag=bool(tag),
                extra_text=extra_text,
                candidates=candidates,
            )
            for slot in slots
        ))
        phrases = {col: template.get(col) or "" for col in TEMPLATE_COLUMNS[family]}
        phrases.update({slot: text for slot, text in zip(slots, generated) if text})

        pool = ParticipantPool(roster_names, exclude={author_login, partner_login}, rng=self._rng)
        for col in TEMPLATE_COLUMNS[family]:
            phrases[col] = resolve_placeholders(phrases[col], pool, self._rng)

        outcome = EventOutcome(
            author=user,
            partner=partner,
            tagged=tagged if tag_matches else None,
            percent=self._rng.randint(0, 100),
            has_tag=bool(tag),
            is_self=is_self,
            tag_matches_partner=tag_matches,
        )
        classification = classify(family, outcome, cfg.special_percents)

        # Side effects (fan-out)
        increments = [self._achievements.increment_many(user["id"], classification.author_keys)]
        if classification.tagged_keys and outcome.tagged:
            increments.append(
                self._achievements.increment_many(outcome.tagged["id"], classification.tagged_keys)
            )
        if combo:
            increments.append(self._achievements.increment_stat(user["id"], COMBO_KEY))
        await asyncio.gather(*increments)

        message = compose_paired_message(
            family, outcome.percent, name, partner["username"], tag, phrases,
        )
        result = PairedResult(message, outcome, classification)
        await self._client.send_chat(channel, message)

        if classification.dominant:
            await self._recorder.log(message, classification.dominant)
            await self._recorder.trigger_overlay(
                family, classification.dominant, name, partner["username"], message,
            )
        self._logger.debug("%s: %s (%s)", family, message, result.type)
        return result

    async def _find_tagged(self, login: str) -> dict | None:
        if not login:
            return None
        try:
            return await self._users.find_by_login(login)
        except sqlite3.Error as e:
            self._logger.error("Tagged user lookup failed for %s: %s", login, e)
            return None

    async def _generate_variant(self, family: str, slot: str, fallback: str, **kwargs: Any) -> str:
        if not self._generator.enabled:
            return fallback
        messages = prompts.paired_variant_messages(family, slot, fallback=fallback, **kwargs)
        try:
            text = await self._generator.complete(messages, normalize=normalize_phrase)
        except TextGeneratorError as e:
            self._logger.warning("Generator failed for %s/%s: %s", family, slot, e)
            return fallback
        return text or fallback

    def _mention_candidates(self, names: list[str], exclude: set[str], limit: int) -> list[str]:
        seen = {e for e in exclude if e}
        unique: list[str] = []
        for name in names:
            key = normalize_username(name)
            if key and key not in seen:
                seen.add(key)
                unique.append(name)
        self._rng.shuffle(unique)
        return unique[:limit]

    # ══════════════════════════════════════════════════════════
    #  Single-value generative commands
    # ══════════════════════════════════════════════════════════

    async def single_value(self, channel: str, family: str, user: dict, args: str) -> str:
        """Run ``!где`` / ``!когда`` / ``!что`` / ``!куда``; returns the sent message."""
        subject = args.strip() or f"@{user['username']}"
        candidate: str | None = None

        if self._generator.enabled:
            candidates: list[str] = []
            if family != prompts.WHEN:
                candidates = await self._roster_names_excluding(normalize_username(subject))
            messages = prompts.single_value_messages(
                family, subject, candidates, self._state.previous_value(family),
            )
            try:
                candidate = await self._generator.complete(messages, normalize=normalize_phrase)
            except TextGeneratorError as e:
                self._logger.warning("Generator failed for %s: %s", family, e)

        value = self.ensure_distinct(family, candidate or "")
        message = f"{subject} {value}".strip()
        await self._client.send_chat(channel, message)
        return message

    def ensure_distinct(self, family: str, candidate: str) -> str:
        """Accept *candidate* unless it repeats the previous value; else draw a fallback."""
        previous = self._state.previous_value(family)
        value = normalize_phrase(candidate)
        if not value or value == previous:
            value = self.pick_fallback(family, exclude=previous)
        self._state.remember_value(family, value)
        return value

    def pick_fallback(self, family: str, exclude: str = "") -> str:
        pool = [normalize_phrase(v) for v in prompts.FALLBACK_POOLS.get(family, [])]
        pool = [v for v in pool if v]
        if not pool:
            return ""
        available = [v for v in pool if v != exclude] or pool
        return self._rng.choice(available)

    async def _roster_names_excluding(self, exclude: str) -> list[str]:
        try:
            roster = await self._chatters.list_active()
        except sqlite3.Error as e:
            self._logger.error("Roster lookup failed: %s", e)
            return []
        return self._mention_candidates(
            [c["username"] for c in roster],
            {exclude},
            self._config.generative_commands.mention_candidates_limit,
        )

    # ══════════════════════════════════════════════════════════
    #  Who
    # ══════════════════════════════════════════════════════════

    async def who(self, channel: str, user: dict, args: str) -> str:
        name: str | None = None
        try:
            roster = await self._chatters.list_active()
            if roster:
                name = self._rng.choice(roster)["username"]
        except sqlite3.Error as e:
            self._logger.error("Roster lookup failed for who: %s", e)
        name = name or user["username"]
        message = " ".join(p for p in (args.strip(), f"@{name}") if p)
        await self._client.send_chat(channel, message)
        return message

    # ══════════════════════════════════════════════════════════
    #  @mention replies
    # ══════════════════════════════════════════════════════════

    async def mention_reply(self, channel: str, user: dict, text: str) -> str | None:
        """Answer a message addressed to the bot.

        Throttled globally; returns None when the throttle swallowed it.
        The reply goes to the overlay when a ``mention_reply`` action is
        mapped, otherwise to chat.
        """
        bot = self._config.bot
        if not self._state.mention_reply_allowed(bot.mention_throttle_seconds):
            return None

        name = user["username"]
        reply: str | None = None
        if self._generator.enabled:
            messages = prompts.mention_reply_messages(
                bot.username, self._state.history_snapshot(), name, text,
            )
            try:
                reply = await self._generator.complete(
                    messages, normalize=tidy_reply, max_tokens=120, temperature=0.85, top_p=0.9,
                )
            except TextGeneratorError as e:
                self._logger.warning("Generator failed for mention reply: %s", e)
        reply = reply or prompts.MENTION_FALLBACK_REPLY

        shown = await self._recorder.trigger_overlay(
            prompts.MENTION, prompts.MENTION_TYPE, name, None, reply,
        )
        if not shown:
            await self._client.send_chat(channel, reply)
        self._state.add_history(bot.username, "assistant", reply)
        return reply
