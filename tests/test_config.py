"""Tests for kryten_streambot.config and the CLI helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import yaml

from conftest import make_config_dict
from kryten_streambot.__main__ import (
    CONFIG_ENV,
    config_summary,
    parse_args,
    resolve_config_path,
    validate,
)
from kryten_streambot.config import (
    AffinityConfig,
    StreamBotConfig,
    load_config,
    validate_required,
)
from kryten_streambot.errors import ConfigError


class TestStreamBotConfig:
    """Test StreamBotConfig model parsing and defaults."""

    def test_minimal_config(self):
        cfg = StreamBotConfig(
            nats={"servers": ["nats://localhost:4222"]},
            channels=[{"domain": "twitch.tv", "channel": "test"}],
        )
        assert cfg.database.path == "streambot.db"
        assert cfg.handler.workers == 1
        assert cfg.paired_commands.special_percents == [0, 69, 100]
        assert cfg.voting.accept_votes_ttl_seconds == 30.0

    def test_full_config(self, sample_config_dict: dict):
        cfg = StreamBotConfig(**sample_config_dict)
        assert cfg.bot.username == "TestBot"
        assert cfg.twitch.channel_id == "12345"
        assert cfg.channels[0].channel == "testchannel"

    def test_affinity_defaults(self):
        aff = AffinityConfig()
        assert (aff.min, aff.max) == (-100, 100)
        assert (aff.min_step, aff.max_step) == (1, 5)


class TestValidateRequired:

    def test_complete_config_passes(self, sample_config: StreamBotConfig):
        validate_required(sample_config)

    def test_missing_settings_listed(self):
        cfg = StreamBotConfig(**make_config_dict(twitch={}))
        with pytest.raises(ConfigError) as exc:
            validate_required(cfg)
        message = str(exc.value)
        assert "twitch.client_id" in message
        assert "twitch.channel_id" in message
        assert "channels" not in message


class TestLoadConfig:

    def _write(self, tmp_path: Path, data) -> str:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")
        return str(path)

    def test_load_from_yaml(self, tmp_path: Path):
        cfg = load_config(self._write(tmp_path, make_config_dict()))
        assert cfg.text_generator.api_key == "test-key"

    def test_env_expansion(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("STREAMBOT_TEST_KEY", "from-env")
        monkeypatch.delenv("STREAMBOT_MISSING", raising=False)
        data = make_config_dict(
            text_generator={"api_key": "${STREAMBOT_TEST_KEY}"},
            database={"path": "${STREAMBOT_MISSING:-fallback.db}"},
        )
        cfg = load_config(self._write(tmp_path, data))
        assert cfg.text_generator.api_key == "from-env"
        assert cfg.database.path == "fallback.db"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_non_mapping_rejected(self, tmp_path: Path):
        with pytest.raises(ValueError):
            load_config(self._write(tmp_path, ["a", "b"]))


class TestCli:

    def test_parse_args(self):
        args = parse_args(["--config", "x.yaml", "--log-level", "DEBUG", "--validate-config"])
        assert args.config == "x.yaml"
        assert args.log_level == "DEBUG"
        assert args.validate_config is True

    def test_explicit_config_path_wins(self):
        assert resolve_config_path("custom.yaml") == "custom.yaml"

    def test_falls_back_to_local_config(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV, raising=False)
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config.yaml").write_text("{}", encoding="utf-8")
        # the system-wide path does not exist in the test environment
        assert resolve_config_path(None) in ("./config.yaml", "/etc/kryten/kryten-streambot/config.yaml")

    def test_env_var_before_default_locations(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config.yaml").write_text("{}", encoding="utf-8")
        monkeypatch.setenv(CONFIG_ENV, "/srv/bot/streambot.yaml")
        assert resolve_config_path(None) == "/srv/bot/streambot.yaml"

    def test_validate_ok(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(make_config_dict()), encoding="utf-8")
        assert validate(str(path), logging.getLogger("test")) == 0

    def test_validate_missing_twitch_settings(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(make_config_dict(twitch={})), encoding="utf-8")
        assert validate(str(path), logging.getLogger("test")) == 1

    def test_validate_missing_file(self, tmp_path: Path):
        assert validate(str(tmp_path / "nope.yaml"), logging.getLogger("test")) == 1

    def test_config_summary(self):
        cfg = StreamBotConfig(**make_config_dict(text_generator={"api_key": ""}))
        lines = config_summary(cfg)
        assert "channels: twitch.tv/testchannel" in lines
        assert "bot: TestBot" in lines
        assert "text generator: off (fallback pools only)" in lines
        assert "overlay: off" in lines
