"""Service orchestrator — StreamBotApp.

Follows the canonical kryten-py microservice pattern:
config → DB init → register handlers → connect → subscribe → metrics → run.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from kryten import KrytenClient

from . import __version__
from .achievement_engine import AchievementEngine
from .chat_handler import ChatHandler, ChatMessage
from .command_handler import CommandHandler
from .config import StreamBotConfig, load_config, validate_required
from .database import BotDatabase
from .donation_client import DonationAlertsClient
from .engine_state import EngineState
from .event_composer import EventComposer
from .event_recorder import EventRecorder
from .metrics_server import StreamBotMetricsServer
from .overlay_client import OverlayClient
from .platform_events import PlatformEventHandler
from .repositories import Repositories
from .scheduler import Scheduler
from .text_generator import TextGenerator
from .token_vault import TokenVault
from .twitch_api import TwitchApi
from .vote_ledger import VoteLedger


class StreamBotApp:
    """Top-level application orchestrator."""

    def __init__(self, config_path: str) -> None:
        self.config_path = Path(config_path)
        self.logger = logging.getLogger("streambot")

        # Components (initialized in start())
        self.config: StreamBotConfig | None = None
        self.client: KrytenClient | None = None
        self.db: BotDatabase | None = None
        self.repos: Repositories | None = None
        self.state: EngineState | None = None
        self.vault: TokenVault | None = None
        self.twitch: TwitchApi | None = None
        self.donations: DonationAlertsClient | None = None
        self.generator: TextGenerator | None = None
        self.overlay: OverlayClient | None = None
        self.recorder: EventRecorder | None = None
        self.achievement_engine: AchievementEngine | None = None
        self.vote_ledger: VoteLedger | None = None
        self.composer: EventComposer | None = None
        self.chat_handler: ChatHandler | None = None
        self.command_handler: CommandHandler | None = None
        self.platform_events: PlatformEventHandler | None = None
        self.metrics_server: StreamBotMetricsServer | None = None
        self.scheduler: Scheduler | None = None

        # State
        self._running = False
        self._start_time: float | None = None

        # Counters (for metrics)
        self.events_processed: int = 0
        self.requests_processed: int = 0

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    async def start(self) -> None:
        """Start the bot service — canonical kryten-py sequence."""
        self.logger.info("Starting kryten-streambot...")
        self._start_time = time.time()

        # 1. Load and validate config
        self.config = load_config(str(self.config_path))
        validate_required(self.config)
        self.logger.info("Config loaded: %d channel(s)", len(self.config.channels))

        # 2. Initialize database
        self.db = BotDatabase(self.config.database.path, self.logger)
        await self.db.initialize()
        self.repos = Repositories(self.db)
        self.logger.info("Database initialized: %s", self.config.database.path)

        # 3. Initialize domain components
        self.state = EngineState(history_size=self.config.bot.chat_history_size)
        self.vault = TokenVault(self.config, self.repos.tokens, self.state, self.logger)
        self.twitch = TwitchApi(self.config, self.vault, self.logger)
        self.donations = DonationAlertsClient(self.config.donation_alerts, self.vault, self.logger)
        self.generator = TextGenerator(self.config.text_generator, self.logger)
        self.overlay = OverlayClient(self.config.overlay, self.logger)
        self.recorder = EventRecorder(self.repos.event_logs, self.overlay, self.logger)
        self.achievement_engine = AchievementEngine(
            config=self.config,
            users=self.repos.users,
            achievements=self.repos.achievements,
            logger=self.logger,
        )
        await self.achievement_engine.initialize()
        self.vote_ledger = VoteLedger(self.repos.votes, self.logger)

        # 4. Create KrytenClient
        self.client = KrytenClient(self.config)

        self.composer = EventComposer(
            config=self.config,
            users=self.repos.users,
            chatters=self.repos.chatters,
            content=self.repos.content,
            achievements=self.achievement_engine,
            generator=self.generator,
            recorder=self.recorder,
            state=self.state,
            client=self.client,
            logger=self.logger,
        )
        self.chat_handler = ChatHandler(
            config=self.config,
            repos=self.repos,
            achievements=self.achievement_engine,
            composer=self.composer,
            ledger=self.vote_ledger,
            twitch=self.twitch,
            recorder=self.recorder,
            state=self.state,
            client=self.client,
            logger=self.logger,
        )

        # 4b. Start HTTP clients
        await self.vault.start()
        await self.twitch.start()
        await self.donations.start()
        await self.generator.start()
        if self.overlay.configured:
            await self.overlay.start()
            self.logger.info("Overlay client started: %s", self.config.overlay.base_url)

        # 5. Register event handlers BEFORE connect
        @self.client.on("chatmsg")
        async def handle_chatmsg(event):
            try:
                self.events_processed += 1
                self.chat_handler.enqueue(ChatMessage(
                    channel=event.channel,
                    login=event.username,
                    display_name=event.username,
                    text=event.message,
                ))
            except Exception:
                self.logger.exception("chatmsg handler error for %s", getattr(event, "username", "?"))

        # 6. Connect to NATS
        await self.client.connect()
        self.logger.info("Connected to NATS")

        # 7. Subscribe to robot startup for re-initialization
        await self.client.subscribe(
            "kryten.lifecycle.robot.startup",
            self._handle_robot_startup,
        )

        # 7b. Subscriptions and reward redemptions from the Twitch bridge
        self.platform_events = PlatformEventHandler(
            config=self.config,
            users=self.repos.users,
            achievements=self.achievement_engine,
            recorder=self.recorder,
            chat_handler=self.chat_handler,
            logger=self.logger,
        )
        await self.platform_events.connect(self.client)

        # 8. Start metrics server
        metrics_port = self.config.metrics.port if self.config.metrics else 28290
        self.metrics_server = StreamBotMetricsServer(self, port=metrics_port)
        await self.metrics_server.start()
        self.logger.info("Metrics server started on port %d", metrics_port)

        # 9. Start command handler
        self.command_handler = CommandHandler(self, self.client, self.logger)
        await self.command_handler.connect()
        self.logger.info("Command handler ready on kryten.streambot.command")

        # 10. Start chat workers
        self.chat_handler.start()

        # 11. Start scheduler
        self.scheduler = Scheduler(
            config=self.config,
            repos=self.repos,
            achievements=self.achievement_engine,
            twitch=self.twitch,
            donations=self.donations,
            recorder=self.recorder,
            state=self.state,
            logger=self.logger,
        )
        await self.scheduler.start()

        # 12. Mark running
        self._running = True
        self.logger.info("kryten-streambot started successfully (v%s)", __version__)

        # 13. Block on client event loop
        await self.client.run()

    async def stop(self) -> None:
        """Gracefully shut down all components in reverse order."""
        if not self._running:
            return
        self.logger.info("Shutting down kryten-streambot...")
        self._running = False

        if self.scheduler:
            await self.scheduler.stop()
        if self.chat_handler:
            await self.chat_handler.stop()
        if self.metrics_server:
            await self.metrics_server.stop()
        for http_client in (self.overlay, self.generator, self.donations, self.twitch, self.vault):
            if http_client:
                await http_client.stop()
        if self.client:
            await self.client.stop()

        self.logger.info("kryten-streambot stopped.")

    async def _handle_robot_startup(self, msg) -> None:
        """Handle kryten-robot restart — drop process-local state and re-announce ourselves."""
        self.logger.info("Robot startup detected — resetting engine state")
        if self.state:
            self.state.reset()
        if self.scheduler:
            await self.scheduler.reload_reward_ids()
        if self.client and self.client.lifecycle:
            try:
                await self.client.lifecycle.publish_startup()
                self.logger.info("Re-published streambot startup event")
            except Exception:
                self.logger.exception("Failed to re-publish startup event")
