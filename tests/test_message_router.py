"""End-to-end tests for message routing through a fully wired bot."""

import asyncio
from datetime import timedelta
from typing import Any

import pytest

from fuelintel import messages
from fuelintel.bot import FuelIntelBot
from fuelintel.channels.base import InboundMessage
from fuelintel.commands.base import CommandDefinition, CommandHandler, CommandResult
from fuelintel.core.config import Config, RateLimitConfig, TelegramConfig
from fuelintel.nlp.classifier import ClassificationResult, IntentClassifier
from fuelintel.resilience.circuit_breaker import CircuitState
from fuelintel.stores.kv import InMemoryKeyValueStore
from fuelintel.stores.prices import InMemoryPriceRepository, Station
from fuelintel.wizard.configure import CANCELLED, SAVE_FAILED

USER = "telegram:42"
ADMIN = "telegram:1"
NEWCOMER = "telegram:7"


class SlowClassifier(IntentClassifier):
    """Classifier that never answers in time."""

    def __init__(self, delay: float):
        self.delay = delay
        self.calls = 0

    async def classify(self, text: str, context: dict[str, Any]) -> ClassificationResult:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return ClassificationResult(intent="unknown")


class ExplodingCommand(CommandHandler):
    """Command with a bug in it."""

    @property
    def definition(self) -> CommandDefinition:
        return CommandDefinition(name="boom", description="Always fails", hidden=True)

    async def handle(self, message, args, context) -> CommandResult:
        context.session.merge_context("help", {"fuel_type": "diesel"})
        raise RuntimeError("bug")


def make_prices() -> InMemoryPriceRepository:
    prices = InMemoryPriceRepository()
    prices.add_station(
        Station(station_id="PL/1", name="Pemex Centro", alias="Casa", brand="pemex"),
        {"regular": 22.0, "premium": 24.0, "diesel": 23.0},
    )
    prices.add_station(
        Station(station_id="PL/2", name="Oxxo Gas Norte", brand="oxxo"),
        {"regular": 23.0, "premium": 25.0, "diesel": 24.0},
    )
    prices.register_station(USER, "PL/1")
    prices.register_station(USER, "PL/2")
    return prices


def make_bot(config: Config | None = None, classifier: IntentClassifier | None = None) -> FuelIntelBot:
    config = config or Config(telegram=TelegramConfig(admin_users=[1]))
    return FuelIntelBot(config, kv=InMemoryKeyValueStore(), prices=make_prices(), classifier=classifier)


def text(body: str, user: str = USER) -> InboundMessage:
    return InboundMessage(user_key=user, text=body, chat_id=user.split(":")[1])


def press(payload: str, user: str = USER) -> InboundMessage:
    return InboundMessage(user_key=user, callback_payload=payload, chat_id=user.split(":")[1])


async def reply(bot: FuelIntelBot, message: InboundMessage) -> str:
    replies = await bot.router.route(message)
    assert replies, "expected at least one reply"
    return "\n".join(r.text for r in replies)


@pytest.fixture
def bot() -> FuelIntelBot:
    return make_bot()


class TestCommands:
    """Command dispatch, aliases and suggestions."""

    @pytest.mark.asyncio
    async def test_start_offers_menu(self, bot: FuelIntelBot):
        replies = await bot.router.route(text("/start"))

        assert "FuelIntel" in replies[0].text
        payloads = [button.payload for row in replies[0].keyboard for button in row]
        assert payloads == ["cmd:precios", "cmd:estaciones", "cmd:configurar", "cmd:help"]

    @pytest.mark.asyncio
    async def test_prices_for_fuel(self, bot: FuelIntelBot):
        body = await reply(bot, text("/precios premium"))

        assert "Precios de Premium" in body
        assert "Casa" in body
        assert "$24.00" in body
        assert "Regular" not in body

    @pytest.mark.asyncio
    async def test_alias_and_bot_mention(self, bot: FuelIntelBot):
        body = await reply(bot, text("/Precio@FuelIntelBot diesel"))
        assert "Precios de Diésel" in body

    @pytest.mark.asyncio
    async def test_market_averages_without_stations(self, bot: FuelIntelBot):
        body = await reply(bot, text("/precios", user=NEWCOMER))

        assert "promedio" in body
        assert "$22.50" in body

    @pytest.mark.asyncio
    async def test_menu_button(self, bot: FuelIntelBot):
        body = await reply(bot, press("cmd:estaciones"))
        assert "Casa" in body
        assert "PL/2" in body

    @pytest.mark.asyncio
    async def test_unknown_command_suggests(self, bot: FuelIntelBot):
        replies = await bot.router.route(text("/prezios"))

        assert "/prezios" in replies[0].text
        assert messages.DID_YOU_MEAN in replies[0].text
        assert replies[0].keyboard[0][0].payload == "cmd:precios"

    @pytest.mark.asyncio
    async def test_unknown_command_without_match(self, bot: FuelIntelBot):
        replies = await bot.router.route(text("/xyzzy"))

        assert messages.DID_YOU_MEAN not in replies[0].text
        assert replies[0].keyboard is None

    @pytest.mark.asyncio
    async def test_stale_button(self, bot: FuelIntelBot):
        body = await reply(bot, press("config_radius:5"))
        assert "ya no está disponible" in body

    @pytest.mark.asyncio
    async def test_help_lists_visible_commands(self, bot: FuelIntelBot):
        body = await reply(bot, text("/ayuda"))

        assert "/precios" in body
        assert "/status" not in body


class TestFreeText:
    """NLP routing, follow-ups and suggestions."""

    @pytest.mark.asyncio
    async def test_confident_intent_executes_command(self, bot: FuelIntelBot):
        body = await reply(bot, text("¿A cómo está la roja?"))
        assert "Precios de Premium" in body

    @pytest.mark.asyncio
    async def test_follow_up_uses_context(self, bot: FuelIntelBot):
        first = await reply(bot, text("premium price?"))
        second = await reply(bot, text("and regular?"))

        assert "Precios de Premium" in first
        assert "Precios de Regular" in second

        session = await bot.sessions.load(USER)
        assert session.context.intent == "price_query"
        assert session.context.last_intent == "price_query"
        assert session.context.entities == {"fuel_type": "regular"}
        assert session.context.last_entities == {"fuel_type": "premium"}
        assert session.recent_queries(2) == ["premium price?", "and regular?"]

    @pytest.mark.asyncio
    async def test_low_confidence_suggests(self, bot: FuelIntelBot):
        replies = await bot.router.route(text("quiero configurar"))

        assert replies[0].text == messages.NLP_SUGGESTION.format(command="/configurar")
        assert replies[0].keyboard[0][0].payload == "suggest:/configurar"

        body = await reply(bot, press("suggest:/configurar"))
        assert "Paso 1/5" in body

    @pytest.mark.asyncio
    async def test_not_understood(self, bot: FuelIntelBot):
        assert await reply(bot, text("hola")) == messages.NLP_NOT_UNDERSTOOD

    @pytest.mark.asyncio
    async def test_classifier_timeouts_degrade_to_static_fallback(self):
        classifier = SlowClassifier(delay=10.0)
        bot = make_bot(Config(), classifier=classifier)

        assert "Precios de Premium" in await reply(bot, text("precio de la premium"))
        # A timeout slower than the latency threshold alone is not a degradation
        assert bot.degradation.level == "normal"
        assert bot.degradation.p95_latency() is None

        for _ in range(4):
            body = await reply(bot, text("precio de la premium"))
            assert "Precios de Premium" in body

        assert bot.breakers["classifier"].state == CircuitState.OPEN
        assert bot.degradation.level == "degraded"
        assert bot.degradation.is_feature_enabled("writes")

        body = await reply(bot, text("precio de la premium"))
        assert body == messages.FALLBACK_CLASSIFIER_PRICE
        assert classifier.calls == 5

        # Commands keep working
        assert "Precios de Premium" in await reply(bot, text("/precios premium"))


class TestConfigureWizard:
    """The /configurar dialog driven through the router."""

    @pytest.mark.asyncio
    async def test_full_dialog_with_buttons(self, bot: FuelIntelBot):
        replies = await bot.router.route(text("/configurar"))
        assert "Paso 1/5" in replies[0].text
        assert replies[0].keyboard[0][0].payload == "config_station:PL/1"

        assert "Paso 2/5" in await reply(bot, press("config_station:PL/1"))
        assert "Paso 3/5" in await reply(bot, press("config_radius:5"))
        assert "Paso 4/5" in await reply(bot, press("config_threshold:3"))

        replies = await bot.router.route(press("config_fuel:diesel"))
        labels = [button.text for row in replies[0].keyboard for button in row]
        assert "⬜ Diésel" in labels
        assert "✅ Premium" in labels

        assert "Paso 5/5" in await reply(bot, press("config_fuel_done"))
        summary = await reply(bot, press("config_time:07:00"))

        assert "Configuración Guardada" in summary
        assert "Casa" in summary
        assert bot.prices.preferences[USER] == {
            "primary_station_id": "PL/1",
            "alert_radius_km": 5,
            "price_change_threshold": 3,
            "fuel_types": ["regular", "premium"],
            "daily_summary_time": "07:00",
            "telegram_enabled": True,
        }
        session = await bot.sessions.load(USER)
        assert session.active_wizard is None

    @pytest.mark.asyncio
    async def test_typed_answers_and_back(self, bot: FuelIntelBot):
        await bot.router.route(text("/configurar"))
        await bot.router.route(text("Casa"))
        assert "Paso 3/5" in await reply(bot, text("10 km"))
        assert "Paso 2/5" in await reply(bot, text("atrás"))

        session = await bot.sessions.load(USER)
        assert session.active_wizard.data == {"station_id": "PL/1", "radius_km": 10}

    @pytest.mark.asyncio
    async def test_invalid_answer_stays_on_step(self, bot: FuelIntelBot):
        await bot.router.route(text("/configurar"))
        await bot.router.route(press("config_station:PL/1"))

        body = await reply(bot, text("7 km"))
        assert "Opción no válida" in body
        assert "Paso 2/5" in body

    @pytest.mark.asyncio
    async def test_commands_are_held_during_wizard(self, bot: FuelIntelBot):
        await bot.router.route(text("/configurar"))
        body = await reply(bot, text("/precios"))

        assert "Termina los pasos" in body
        assert "Paso 1/5" in body

    @pytest.mark.asyncio
    async def test_cancel(self, bot: FuelIntelBot):
        await bot.router.route(text("/configurar"))
        assert await reply(bot, text("cancelar")) == CANCELLED

        session = await bot.sessions.load(USER)
        assert session.active_wizard is None

    @pytest.mark.asyncio
    async def test_no_stations(self, bot: FuelIntelBot):
        body = await reply(bot, text("/configurar", user=NEWCOMER))

        assert "No tienes estaciones" in body
        session = await bot.sessions.load(NEWCOMER)
        assert session.active_wizard is None

    @pytest.mark.asyncio
    async def test_save_failure_keeps_last_step(self, bot: FuelIntelBot):
        await bot.router.route(text("/configurar"))
        for payload in ("config_station:PL/2", "config_radius:1", "config_threshold:0", "config_fuel_done"):
            await bot.router.route(press(payload))

        bot.prices.available = False
        body = await reply(bot, press("config_time:none"))
        assert SAVE_FAILED in body
        assert "Paso 5/5" in body

        bot.prices.available = True
        summary = await reply(bot, press("config_time:none"))
        assert "Sin alertas" in summary
        assert bot.prices.preferences[USER]["daily_summary_time"] is None

    @pytest.mark.asyncio
    async def test_expired_wizard(self, bot: FuelIntelBot):
        await bot.router.route(text("/configurar"))
        session = await bot.sessions.load(USER)
        session.active_wizard.started_at -= timedelta(seconds=301)
        await bot.sessions.save(USER, session)

        replies = await bot.router.route(text("/precios premium"))

        assert replies[0].text == messages.WIZARD_EXPIRED
        assert "Precios de Premium" in replies[1].text
        assert (await bot.sessions.load(USER)).active_wizard is None


class TestProtection:
    """Rate limits, caps, admin gates, degradation and failures."""

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        bot = make_bot(Config(rate_limit=RateLimitConfig(max_requests=2)))
        await bot.router.route(text("/ayuda"))
        await bot.router.route(text("/ayuda"))

        body = await reply(bot, text("/ayuda"))
        assert "límite de solicitudes" in body
        assert "60 segundos" in body

    @pytest.mark.asyncio
    async def test_slow_mode_halves_limit(self):
        bot = make_bot(Config(rate_limit=RateLimitConfig(max_requests=4)))
        bot.degradation.force_level("degraded")

        await bot.router.route(text("/ayuda"))
        await bot.router.route(text("/ayuda"))
        assert "límite de solicitudes" in await reply(bot, text("/ayuda"))

    @pytest.mark.asyncio
    async def test_conversation_cap(self):
        bot = make_bot(Config(rate_limit=RateLimitConfig(max_concurrent_conversations=0)))
        assert await reply(bot, text("/ayuda")) == messages.BUSY

    @pytest.mark.asyncio
    async def test_status_requires_admin(self, bot: FuelIntelBot):
        assert await reply(bot, text("/status")) == messages.UNAUTHORIZED
        assert "Nivel: normal" in await reply(bot, text("/status", user=ADMIN))

    @pytest.mark.asyncio
    async def test_admin_forces_read_only(self, bot: FuelIntelBot):
        body = await reply(bot, text("/status minimal", user=ADMIN))
        assert "Nivel: minimal (forzado)" in body

        assert await reply(bot, text("/configurar")) == messages.READ_ONLY
        assert await reply(bot, text("hola")) == messages.FALLBACK_CLASSIFIER
        assert "Precios de Premium" in await reply(bot, text("/precios premium"))

        await bot.router.route(text("/status auto", user=ADMIN))
        assert "Paso 1/5" in await reply(bot, text("/configurar"))

    @pytest.mark.asyncio
    async def test_analytics_disabled(self, bot: FuelIntelBot):
        assert "💡 Recomendación para Casa" in await reply(bot, text("/recomendacion"))

        bot.degradation.force_level("degraded")
        assert await reply(bot, text("/recomendacion")) == messages.FALLBACK_ANALYTICS

    @pytest.mark.asyncio
    async def test_store_outage(self, bot: FuelIntelBot):
        bot.prices.available = False
        assert await reply(bot, text("/precios")) == messages.SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_handler_bug_rolls_back_session(self, bot: FuelIntelBot):
        bot.registry.register_handler(ExplodingCommand())
        await bot.router.route(text("premium price?"))

        assert await reply(bot, text("/boom")) == messages.GENERAL_ERROR

        session = await bot.sessions.load(USER)
        assert session.context.intent == "price_query"
        assert session.context.entities == {"fuel_type": "premium"}
        assert bot.guard.active_conversations == 0

    @pytest.mark.asyncio
    async def test_concurrent_messages_from_one_user(self, bot: FuelIntelBot):
        queries = ["premium price?", "diesel price?", "regular price?", "ayuda"]
        await asyncio.gather(*(bot.router.route(text(q)) for q in queries))

        session = await bot.sessions.load(USER)
        assert sorted(session.recent_queries(5)) == sorted(queries)
