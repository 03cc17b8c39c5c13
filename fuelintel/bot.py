"""Application wiring: builds every component from Config and runs the bot."""

import logging
from datetime import timedelta

from fuelintel.channels.base import ChannelAdapter
from fuelintel.commands.handlers import get_default_commands
from fuelintel.commands.registry import CommandRegistry
from fuelintel.core.config import Config
from fuelintel.nlp.classifier import HttpIntentClassifier, IntentClassifier
from fuelintel.nlp.gateway import NlpGateway
from fuelintel.resilience.circuit_breaker import CircuitBreaker
from fuelintel.resilience.concurrency import ConcurrencyGuard
from fuelintel.resilience.degradation import DegradationController
from fuelintel.router import MessageRouter
from fuelintel.stores.kv import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from fuelintel.stores.prices import InMemoryPriceRepository, PriceRepository
from fuelintel.stores.session import SessionStore
from fuelintel.wizard.configure import CONFIGURE_WIZARD, ConfigureWizard
from fuelintel.wizard.engine import WizardEngine

logger = logging.getLogger(__name__)

CLASSIFIER_BREAKER = "classifier"


class FuelIntelBot:
    """Owns the long-lived components and the channel lifecycle.

    Components are built once here and shared by every conversation; the
    router is the only thing channels talk to.

    Args:
        config: Application configuration.
        kv: Key-value backend; Redis when session.redis_url is set, else in-memory.
        prices: Price repository; seeded from prices.seed_file when not given.
        classifier: Intent classifier; built from nlp.api_url when not given.
    """

    def __init__(
        self,
        config: Config,
        kv: KeyValueStore | None = None,
        prices: PriceRepository | None = None,
        classifier: IntentClassifier | None = None,
    ):
        self.config = config

        self.kv = kv or self._build_kv(config)
        self.sessions = SessionStore(
            self.kv,
            ttl_seconds=config.session.ttl_seconds,
            key_prefix=config.session.key_prefix,
            compression=config.session.compression,
            context_ttl=timedelta(seconds=config.session.context_ttl_seconds),
            history_size=config.session.history_size,
        )
        self.prices = prices or self._build_prices(config)

        names = set(config.circuit_breakers) | {CLASSIFIER_BREAKER}
        self.breakers = {
            name: CircuitBreaker.from_config(name, config.breaker(name)) for name in sorted(names)
        }
        self.guard = ConcurrencyGuard.from_config(config.rate_limit)
        self.degradation = DegradationController.from_config(
            config.degradation,
            backpressure_ratio=config.rate_limit.backpressure_ratio,
            latency_source=CLASSIFIER_BREAKER,
        )
        for breaker in self.breakers.values():
            self.degradation.watch(breaker)

        self.classifier = classifier or self._build_classifier(config)
        self.gateway = NlpGateway(
            self.classifier,
            self.breakers[CLASSIFIER_BREAKER],
            timeout_seconds=config.nlp.timeout_seconds,
            confidence_threshold=config.nlp.confidence_threshold,
            context_window=config.nlp.context_window,
        )

        self.registry = CommandRegistry()
        for handler in get_default_commands():
            self.registry.register_handler(handler)

        self.wizards = WizardEngine([CONFIGURE_WIZARD], ttl=timedelta(seconds=config.wizard.ttl_seconds))
        self.wizard_handlers = {CONFIGURE_WIZARD.name: ConfigureWizard()}

        self.router = MessageRouter(
            registry=self.registry,
            sessions=self.sessions,
            wizards=self.wizards,
            wizard_handlers=self.wizard_handlers,
            gateway=self.gateway,
            prices=self.prices,
            guard=self.guard,
            degradation=self.degradation,
            breakers=self.breakers,
            slow_mode_rate_factor=config.rate_limit.slow_mode_rate_factor,
            admin_users={f"telegram:{user_id}" for user_id in config.telegram.admin_users},
        )
        self._channels: list[ChannelAdapter] = []

    @staticmethod
    def _build_kv(config: Config) -> KeyValueStore:
        if config.session.redis_url:
            logger.info("Using Redis session storage")
            return RedisKeyValueStore.from_url(config.session.redis_url)
        logger.info("Using in-memory session storage")
        return InMemoryKeyValueStore()

    @staticmethod
    def _build_prices(config: Config) -> PriceRepository:
        if config.prices.seed_file:
            logger.info(f"Loading price data from {config.prices.seed_file}")
            return InMemoryPriceRepository.from_yaml(config.prices.seed_file)
        logger.warning("No price seed file configured; price queries will find no data")
        return InMemoryPriceRepository()

    @staticmethod
    def _build_classifier(config: Config) -> IntentClassifier | None:
        if not config.nlp.api_url:
            logger.info("No classifier API configured, using local intent parser only")
            return None
        return HttpIntentClassifier(
            config.nlp.api_url,
            api_key=config.nlp.api_key,
            model=config.nlp.model,
            temperature=config.nlp.temperature,
            max_tokens=config.nlp.max_tokens,
            timeout_seconds=config.nlp.timeout_seconds,
        )

    def command_menu(self) -> list[tuple[str, str]]:
        """(name, description) pairs for the visible commands."""
        return [(d.name, d.description) for d in self.registry.list_commands()]

    async def add_channel(self, channel: ChannelAdapter) -> None:
        """Connect a channel to the router and start it."""
        channel.on_message(self.router.route)
        await channel.start()
        self._channels.append(channel)
        logger.info(f"Channel '{channel.name}' attached")

    async def stop(self) -> None:
        """Stop channels and release clients.

        Logs errors but does not raise; shutdown completes for every component.
        """
        for channel in self._channels:
            try:
                await channel.stop()
            except Exception as e:
                logger.error(f"Error stopping channel '{channel.name}': {e}")
        self._channels.clear()

        if self.classifier is not None:
            try:
                await self.classifier.close()
            except Exception as e:
                logger.error(f"Error closing classifier: {e}")
        try:
            await self.kv.close()
        except Exception as e:
            logger.error(f"Error closing session storage: {e}")
        logger.info("FuelIntel stopped")
