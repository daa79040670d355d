"""Affinity heuristic — a tiny word-list sentiment score per chat message."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import AffinityConfig

POSITIVE_WORDS = frozenset({
    "спасибо", "пасиба", "благодарю", "пожалуйста", "сорян", "извини", "люблю",
    "класс", "круто", "хорошо", "супер", "приятно", "молодец", "умничка",
    "красавчик", "красотка", "милый", "милая", "добрый", "добрая", "респект",
})

NEGATIVE_WORDS = frozenset({
    "дурак", "идиот", "тупой", "тупая", "бесишь", "ненавижу", "отстой", "плохой",
    "плохая", "урод", "уродина", "треш", "фу", "мерзко", "стыдно",
})

TOXIC_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (r"иди\s+нах", r"пошел\s+ты", r"пошла\s+ты", r"заткнись", r"сука", r"говно", r"дебил")
)

_WORD_RE = re.compile(r"[a-zа-яё]+", re.IGNORECASE)


@dataclass(frozen=True)
class AffinityDelta:
    delta: int
    note: str


def score_message(text: str, config: AffinityConfig) -> AffinityDelta | None:
    """Affinity change for one message, or None when it is neutral."""
    lowered = text.lower().replace("ё", "е")
    words = _WORD_RE.findall(lowered)
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)
    toxic = sum(1 for p in TOXIC_PATTERNS if p.search(lowered))

    raw = positive - negative - 3 * toxic
    if raw == 0:
        return None

    magnitude = min(max(abs(raw), config.min_step), config.max_step)
    delta = magnitude if raw > 0 else -magnitude
    if toxic:
        note = "Токсичное сообщение"
    elif delta < 0:
        note = "Негативная лексика"
    else:
        note = "Вежливое сообщение"
    return AffinityDelta(delta, note)
