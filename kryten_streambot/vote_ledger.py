"""Vote ledger — slot-bounded votes per (poll, user).

A user may hold up to ``vote_limit`` votes in a poll; each occupies a
distinct slot in ``[1, vote_limit]``. The UNIQUE(poll_id, user_id, slot)
constraint is the last line of defence against concurrent inserts.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .repositories import VoteRepository

VOTE_LIMIT_REACHED = "vote limit reached"
DB_ERROR = "db error"


@dataclass(frozen=True)
class VoteResult:
    success: bool
    reason: str | None = None
    slot: int | None = None


def lowest_free_slot(used: set[int], limit: int) -> int | None:
    for slot in range(1, limit + 1):
        if slot not in used:
            return slot
    return None


class VoteLedger:
    def __init__(self, votes: VoteRepository, logger: logging.Logger | None = None) -> None:
        self._votes = votes
        self._logger = logger or logging.getLogger("streambot.votes")

        # Metrics
        self.votes_cast: int = 0

    async def add_vote(self, user: dict, poll_id: int, game_id: int) -> VoteResult:
        limit = max(int(user.get("vote_limit") or 1), 1)
        try:
            existing = await self._votes.list_for_user(poll_id, user["id"])
        except sqlite3.Error as e:
            self._logger.error("Failed to read votes for user %s: %s", user["id"], e)
            return VoteResult(False, DB_ERROR)

        if len(existing) >= limit:
            return VoteResult(False, VOTE_LIMIT_REACHED)

        slot = lowest_free_slot({int(v["slot"]) for v in existing}, limit)
        if slot is None:
            return VoteResult(False, VOTE_LIMIT_REACHED)

        try:
            await self._votes.add(poll_id, user["id"], game_id, slot)
        except sqlite3.Error as e:
            self._logger.error("Failed to insert vote for user %s: %s", user["id"], e)
            return VoteResult(False, DB_ERROR)

        self.votes_cast += 1
        self._logger.debug(
            "Vote: user %s → game %s in poll %s (slot %d/%d)",
            user["id"], game_id, poll_id, slot, limit,
        )
        return VoteResult(True, slot=slot)
