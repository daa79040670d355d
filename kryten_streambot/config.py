"""Configuration system for kryten-streambot.

All Pydantic models are defined here with sensible defaults. The top-level
``StreamBotConfig`` extends ``KrytenConfig`` so NATS, channel and metrics
settings come from kryten-py unchanged.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from kryten import KrytenConfig
from pydantic import BaseModel, Field

from .errors import ConfigError


# ═══════════════════════════════════════════════════════════════
#  Core
# ═══════════════════════════════════════════════════════════════

class DatabaseConfig(BaseModel):
    path: str = "streambot.db"


class BotConfig(BaseModel):
    username: str = "hornypaps"
    ignored_users: list[str] = Field(default_factory=lambda: ["nightbot", "streamlabs"])
    # @mention replies
    mention_throttle_seconds: float = 12.0
    chat_history_size: int = 30


class HandlerConfig(BaseModel):
    """Inbound message queue. ``workers=1`` processes messages strictly in order."""
    queue_size: int = 100
    workers: int = 1


# ═══════════════════════════════════════════════════════════════
#  External services
# ═══════════════════════════════════════════════════════════════

class TwitchConfig(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    channel_id: str = ""
    bot_oauth_token: str = ""
    auth_url: str = "https://id.twitch.tv/oauth2/token"
    api_base: str = "https://api.twitch.tv/helix"
    clip_base_url: str = "https://clips.twitch.tv"
    request_timeout_seconds: float = 10.0


class DonationAlertsConfig(BaseModel):
    api_url: str = "https://www.donationalerts.com/api/v1/alerts/donations"
    token_url: str = "https://www.donationalerts.com/oauth/token"
    client_id: str = ""
    client_secret: str = ""
    request_timeout_seconds: float = 10.0


class TokensConfig(BaseModel):
    skew_seconds: int = 60


class TextGeneratorConfig(BaseModel):
    api_key: str = ""
    chat_url: str = "https://api.together.xyz/v1/chat/completions"
    model: str = "meta-llama/Llama-3.3-70B-Instruct-Turbo"
    timeout_seconds: float = 8.0
    retries: int = 2
    backoff_seconds: float = 0.2
    max_tokens: int = 100
    temperature: float = 0.8
    top_p: float = 0.9


class OverlayConfig(BaseModel):
    """Optional overlay trigger (Streamer.bot-style HTTP action runner)."""
    base_url: str = ""
    timeout_seconds: float = 4.0
    actions: dict[str, str] = Field(
        default_factory=dict,
        description="Dominant stat key (or '<family>.__default__') → action id",
    )


# ═══════════════════════════════════════════════════════════════
#  Engine behaviour
# ═══════════════════════════════════════════════════════════════

class VotingConfig(BaseModel):
    extra_vote_reward_id: str = "e776c465-7f7a-4a41-8593-68165248ecd8"
    accept_votes_ttl_seconds: float = 30.0


class PairedCommandsConfig(BaseModel):
    combo_window_seconds: int = 60
    special_percents: list[int] = Field(default=[0, 69, 100])
    mention_candidates_limit: int = 5


class GenerativeCommandsConfig(BaseModel):
    mention_candidates_limit: int = 3


class AffinityConfig(BaseModel):
    min: int = -100
    max: int = 100
    min_step: int = 1
    max_step: int = 5


class SchedulerConfig(BaseModel):
    stream_status_interval_seconds: int = 60
    watch_time_interval_seconds: int = 60
    donation_interval_seconds: int = 10
    reward_reload_interval_seconds: int = 60


class EventsConfig(BaseModel):
    """NATS subjects carrying Twitch events that are not plain chat lines."""
    subscription_subject: str = "kryten.events.twitch.subscription"
    redemption_subject: str = "kryten.events.twitch.redemption"


class AchievementFamilyConfig(BaseModel):
    stat_key: str
    thresholds: list[int]


# ═══════════════════════════════════════════════════════════════
#  Top-Level Config
# ═══════════════════════════════════════════════════════════════

class StreamBotConfig(KrytenConfig):
    """Full bot config — extends KrytenConfig with the interaction engine sections."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    bot: BotConfig = Field(default_factory=BotConfig)
    handler: HandlerConfig = Field(default_factory=HandlerConfig)

    twitch: TwitchConfig = Field(default_factory=TwitchConfig)
    donation_alerts: DonationAlertsConfig = Field(default_factory=DonationAlertsConfig)
    tokens: TokensConfig = Field(default_factory=TokensConfig)
    text_generator: TextGeneratorConfig = Field(default_factory=TextGeneratorConfig)
    overlay: OverlayConfig = Field(default_factory=OverlayConfig)

    voting: VotingConfig = Field(default_factory=VotingConfig)
    paired_commands: PairedCommandsConfig = Field(default_factory=PairedCommandsConfig)
    generative_commands: GenerativeCommandsConfig = Field(default_factory=GenerativeCommandsConfig)
    affinity: AffinityConfig = Field(default_factory=AffinityConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)

    # Extra achievement families on top of the built-in catalog
    achievements: list[AchievementFamilyConfig] = Field(default_factory=list)
    # NOTE: metrics is inherited from KrytenConfig (kryten.config.MetricsConfig)


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def validate_required(config: StreamBotConfig) -> None:
    """Raise ConfigError when settings the bot cannot start without are missing."""
    missing: list[str] = []
    if not config.channels:
        missing.append("channels")
    if not config.twitch.client_id:
        missing.append("twitch.client_id")
    if not config.twitch.channel_id:
        missing.append("twitch.channel_id")
    if missing:
        raise ConfigError(f"Missing required settings: {', '.join(missing)}")


def load_config(config_path: str) -> StreamBotConfig:
    """Load and validate YAML config file into StreamBotConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return StreamBotConfig(**raw)
