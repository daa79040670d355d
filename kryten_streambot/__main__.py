"""Command line for kryten-streambot.

``kryten-streambot [--config PATH] [--log-level LEVEL] [--validate-config]``

The config path falls back to ``$KRYTEN_STREAMBOT_CONFIG``, then the
system-wide and working-directory ``config.yaml``. ``--validate-config``
loads the file, checks the required settings and prints which optional
integrations are enabled.
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from . import __version__
from .config import StreamBotConfig, load_config, validate_required
from .errors import ConfigError
from .main import StreamBotApp

CONFIG_ENV = "KRYTEN_STREAMBOT_CONFIG"
CONFIG_CANDIDATES = (
    "/etc/kryten/kryten-streambot/config.yaml",
    "./config.yaml",
)
# Chatty third-party loggers kept at WARNING unless running at DEBUG
QUIET_LOGGERS = ("aiohttp.access", "nats")


def setup_logging(level: str = "INFO") -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if numeric > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="kryten-streambot",
        description="Twitch chat interaction engine: social commands, achievements, game voting",
    )
    parser.add_argument("--config", help=f"Path to config.yaml (default: ${CONFIG_ENV} or a standard location)")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--validate-config", action="store_true", help="Check the config and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def resolve_config_path(explicit: str | None) -> str | None:
    if explicit:
        return explicit
    from_env = os.environ.get(CONFIG_ENV, "").strip()
    if from_env:
        return from_env
    return next((c for c in CONFIG_CANDIDATES if Path(c).exists()), None)


def config_summary(config: StreamBotConfig) -> list[str]:
    """Human-readable overview of what a config turns on."""
    channels = ", ".join(f"{c.domain}/{c.channel}" for c in config.channels)
    return [
        f"channels: {channels}",
        f"bot: {config.bot.username}",
        f"database: {config.database.path}",
        f"text generator: {'on' if config.text_generator.api_key.strip() else 'off (fallback pools only)'}",
        f"overlay: {config.overlay.base_url or 'off'}",
        f"donations: {config.donation_alerts.api_url or 'off'}",
    ]


def validate(config_path: str, logger: logging.Logger) -> int:
    """Exit status for ``--validate-config``."""
    try:
        config = load_config(config_path)
        validate_required(config)
    except (ConfigError, FileNotFoundError, ValueError) as e:
        logger.error("Config validation failed: %s", e)
        return 1
    for line in config_summary(config):
        logger.info("  %s", line)
    logger.info("Config is valid.")
    return 0


async def run(config_path: str, logger: logging.Logger) -> int:
    app = StreamBotApp(config_path)

    # Signal handling (Unix only; Windows uses KeyboardInterrupt)
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(app.stop()))

    try:
        await app.start()
    except ConfigError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()
    return 0


def main(argv: list[str] | None = None) -> None:
    """Sync entry point for pyproject.toml [project.scripts]."""
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("streambot")

    config_path = resolve_config_path(args.config)
    if not config_path:
        logger.error("No config file found. Use --config, $%s or ./config.yaml.", CONFIG_ENV)
        sys.exit(1)

    if args.validate_config:
        sys.exit(validate(config_path, logger))
    sys.exit(asyncio.run(run(config_path, logger)))


if __name__ == "__main__":
    main()
