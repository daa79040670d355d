"""Placeholder resolution for template and generated phrases.

Supported directives:

* ``[от N до M]`` / ``[from N to M]`` — uniform integer in [min, max]
* ``$randomnumberN`` / ``$randomnumberN:M`` — uniform integer in [1, N] / [N, M]
* ``[random_chatter]`` — a distinct roster participant per occurrence
* ``$intimuserK`` — a roster participant; repeats of the same K share one

Participants already used in the message (author, partner, earlier
placeholders) are never picked again. With nobody left a participant
directive resolves to an empty string.
"""

from __future__ import annotations

import random
import re
from typing import Iterable

from .utils import normalize_username

_RANGE_RE = re.compile(r"\[(?:от|from)\s*(\d+)\s*(?:до|to)\s*(\d+)\]", re.IGNORECASE)
_RANDOM_NUMBER_RE = re.compile(r"\$randomnumber(\d+)(?::(\d+))?", re.IGNORECASE)
_RANDOM_CHATTER_RE = re.compile(r"\[random_chatter\]", re.IGNORECASE)
_INTIM_USER_RE = re.compile(r"\$intimuser\d*", re.IGNORECASE)


def _randint(rng: random.Random, a: int, b: int) -> int:
    lo, hi = min(a, b), max(a, b)
    return rng.randint(lo, hi)


class ParticipantPool:
    """Distinct-name sampler shared by all phrases of one message."""

    def __init__(
        self,
        names: Iterable[str],
        exclude: Iterable[str] = (),
        rng: random.Random | None = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._used: set[str] = {normalize_username(n) for n in exclude if n}
        self._names: list[str] = []
        for name in names:
            key = normalize_username(name)
            if not key or key in self._used:
                continue
            if any(normalize_username(n) == key for n in self._names):
                continue
            self._names.append(str(name).strip())

    def take(self) -> str:
        """Remove and return a random ``@name``, or '' when exhausted."""
        if not self._names:
            return ""
        name = self._names.pop(self._rng.randrange(len(self._names)))
        self._used.add(normalize_username(name))
        return f"@{name}"


def resolve_numbers(text: str, rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    text = _RANGE_RE.sub(lambda m: str(_randint(rng, int(m.group(1)), int(m.group(2)))), text)

    def _number(m: re.Match) -> str:
        if m.group(2) is None:
            return str(_randint(rng, 1, int(m.group(1))))
        return str(_randint(rng, int(m.group(1)), int(m.group(2))))

    return _RANDOM_NUMBER_RE.sub(_number, text)


def resolve_placeholders(
    text: str,
    pool: ParticipantPool,
    rng: random.Random | None = None,
) -> str:
    """Resolve every directive in *text*, drawing participants from *pool*."""
    if not text:
        return text or ""
    text = resolve_numbers(text, rng)
    text = _RANDOM_CHATTER_RE.sub(lambda _m: pool.take(), text)

    assigned: dict[str, str] = {}

    def _intim_user(m: re.Match) -> str:
        key = m.group(0).lower()
        if key not in assigned:
            assigned[key] = pool.take()
        return assigned[key]

    return _INTIM_USER_RE.sub(_intim_user, text)
