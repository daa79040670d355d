"""Process-local mutable state shared by the interaction engine.

Constructed once at startup and reset on reconnect. Holds the token
caches, the previous accepted value per generative family, per-user paired
command timestamps and the stream-session flags.
"""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass, field


@dataclass
class CachedToken:
    token: str | None = None
    expires_at: float = 0.0  # epoch seconds; math.inf for non-expiring tokens

    def is_fresh(self, skew_seconds: int, now: float | None = None) -> bool:
        if not self.token:
            return False
        now = time.time() if now is None else now
        return self.expires_at - skew_seconds > now

    def set(self, token: str, expires_at: float | None) -> None:
        self.token = token
        self.expires_at = math.inf if expires_at is None else float(expires_at)

    def clear(self) -> None:
        self.token = None
        self.expires_at = 0.0


@dataclass
class EngineState:
    """Everything the engine remembers between messages."""

    tokens: dict[str, CachedToken] = field(default_factory=dict)
    last_values: dict[str, str] = field(default_factory=dict)
    paired_times: dict[int, dict[str, float]] = field(default_factory=dict)

    # Stream session
    stream_online: bool | None = None
    first_message_awarded: bool = False

    # Voting
    accept_votes: bool = True
    accept_votes_checked_at: float = 0.0

    # Reward ids that produce a structured log row (empty = log all)
    logged_reward_ids: set[str] = field(default_factory=set)

    # Recent chat lines fed to @mention replies
    history_size: int = 30
    chat_history: deque = field(init=False)
    last_mention_reply_at: float | None = None

    def __post_init__(self) -> None:
        self.chat_history = deque(maxlen=max(self.history_size, 1))

    # ── Tokens ───────────────────────────────────────────────

    def token(self, provider: str) -> CachedToken:
        return self.tokens.setdefault(provider, CachedToken())

    # ── Anti-repeat ──────────────────────────────────────────

    def previous_value(self, family: str) -> str:
        return self.last_values.get(family, "")

    def remember_value(self, family: str, value: str) -> None:
        self.last_values[family] = value

    # ── Chat history ─────────────────────────────────────────

    def add_history(self, username: str, role: str, message: str) -> None:
        if message:
            self.chat_history.append({"username": username, "role": role, "message": message})

    def history_snapshot(self) -> list[dict[str, str]]:
        """Oldest first."""
        return list(self.chat_history)

    def mention_reply_allowed(self, throttle_seconds: float, now: float | None = None) -> bool:
        """Claim the mention-reply slot; False while the throttle window is open."""
        now = time.monotonic() if now is None else now
        last = self.last_mention_reply_at
        if last is not None and now - last < throttle_seconds:
            return False
        self.last_mention_reply_at = now
        return True

    # ── Combo tracking ───────────────────────────────────────

    def record_paired(
        self, user_id: int, family: str, window_seconds: float, now: float | None = None,
    ) -> bool:
        """Record a paired-command use; True if another family was used within the window."""
        now = time.monotonic() if now is None else now
        entry = self.paired_times.setdefault(user_id, {})
        combo = any(
            now - ts <= window_seconds
            for other, ts in entry.items()
            if other != family
        )
        entry[family] = now
        return combo

    # ── Lifecycle ────────────────────────────────────────────

    def reset_session(self) -> None:
        """Called on online↔offline transitions."""
        self.first_message_awarded = False

    def reset(self) -> None:
        """Drop everything (reconnect)."""
        self.tokens.clear()
        self.last_values.clear()
        self.paired_times.clear()
        self.chat_history.clear()
        self.last_mention_reply_at = None
        self.stream_online = None
        self.first_message_awarded = False
        self.accept_votes = True
        self.accept_votes_checked_at = 0.0
