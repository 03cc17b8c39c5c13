"""Message router: the single entry point for every inbound message.

Order of work per message:

1. Rate limit and conversation cap (no session access when rejected).
2. Per-user lock, session load, expired context cleanup.
3. Active wizard input, unless the wizard timed out.
4. Commands and command buttons.
5. Free text through the NLP gateway, or a static fallback when NLP is off.
6. Session save, after success or a caught failure.

route() never raises. Handler failures roll the session back to its state
before dispatch and produce a generic reply.
"""

import logging
import math
from typing import TYPE_CHECKING

from fuelintel import messages
from fuelintel.channels.base import InboundMessage, KeyboardButton, OutboundMessage
from fuelintel.commands.base import CommandContext
from fuelintel.core.errors import TransientStoreError
from fuelintel.model.session import ConversationSession

if TYPE_CHECKING:
    from fuelintel.commands.registry import CommandRegistry
    from fuelintel.nlp.gateway import NlpGateway
    from fuelintel.resilience.circuit_breaker import CircuitBreaker
    from fuelintel.resilience.concurrency import ConcurrencyGuard
    from fuelintel.resilience.degradation import DegradationController
    from fuelintel.stores.prices import PriceRepository
    from fuelintel.stores.session import SessionStore
    from fuelintel.wizard.engine import WizardEngine, WizardHandler

logger = logging.getLogger(__name__)

# Intents the router may execute without asking, and the command each runs
INTENT_COMMANDS = {
    "price_query": "precios",
    "station_search": "estaciones",
    "recommendation": "recomendacion",
    "configure": "configurar",
    "help": "help",
}

COMMAND_PAYLOAD = "cmd:"
SUGGEST_PAYLOAD = "suggest:"
HISTORY_RESPONSE_LIMIT = 500
STALE_BUTTON = "Esta opción ya no está disponible. Usa /ayuda para ver qué puedes hacer."


class MessageRouter:
    """Routes inbound messages to wizards, commands or the NLP gateway.

    Args:
        registry: Command registry.
        sessions: Session store.
        wizards: Wizard engine.
        wizard_handlers: Wizard handlers keyed by wizard name.
        gateway: NLP gateway for free text.
        prices: Price repository handed to handlers.
        guard: Rate limiter and conversation counter.
        degradation: Degradation controller.
        breakers: Breakers shown by the status command.
        slow_mode_rate_factor: Multiplier on the rate limit in slow mode.
        admin_users: User keys allowed to run admin commands.
    """

    def __init__(
        self,
        registry: "CommandRegistry",
        sessions: "SessionStore",
        wizards: "WizardEngine",
        wizard_handlers: dict[str, "WizardHandler"],
        gateway: "NlpGateway",
        prices: "PriceRepository",
        guard: "ConcurrencyGuard",
        degradation: "DegradationController",
        breakers: dict[str, "CircuitBreaker"] | None = None,
        slow_mode_rate_factor: float = 0.5,
        admin_users: set[str] | None = None,
    ):
        self.registry = registry
        self.sessions = sessions
        self.wizards = wizards
        self.wizard_handlers = wizard_handlers
        self.gateway = gateway
        self.prices = prices
        self.guard = guard
        self.degradation = degradation
        self.breakers = breakers or {}
        self.slow_mode_rate_factor = slow_mode_rate_factor
        self.admin_users = admin_users or set()

    def _rate_limit(self) -> int:
        limit = self.guard.max_requests
        if self.degradation.is_slow_mode_enabled():
            limit = max(1, int(limit * self.slow_mode_rate_factor))
        return limit

    async def route(self, message: InboundMessage) -> list[OutboundMessage]:
        """Handle one inbound message and return the replies to send."""
        user_key = message.user_key

        decision = self.guard.try_acquire(user_key, self._rate_limit())
        if not decision.allowed:
            logger.info(f"Rate limited {user_key} (limit {decision.limit}, retry in {decision.retry_after:.0f}s)")
            seconds = max(1, math.ceil(decision.retry_after))
            return [OutboundMessage(text=messages.RATE_LIMITED.format(seconds=seconds))]

        if not self.guard.enter_conversation(user_key):
            logger.info(f"Conversation cap reached, turning away {user_key}")
            return [OutboundMessage(text=messages.BUSY)]

        try:
            self.degradation.record_load(self.guard.load_ratio())
            async with self.sessions.lock(user_key):
                return await self._route_locked(message)
        except Exception as e:
            logger.error(f"Unhandled error routing message from {user_key}: {e}", exc_info=True)
            return [OutboundMessage(text=messages.GENERAL_ERROR)]
        finally:
            self.guard.leave_conversation(user_key)

    async def _route_locked(self, message: InboundMessage) -> list[OutboundMessage]:
        user_key = message.user_key
        session = await self.sessions.load(user_key)
        session.clear_expired_context()

        notices: list[OutboundMessage] = []
        if session.active_wizard is not None and self.wizards.is_timed_out(session):
            logger.info(f"Wizard '{session.active_wizard.wizard_id}' for {user_key} timed out")
            self.wizards.cancel(session)
            notices.append(OutboundMessage(text=messages.WIZARD_EXPIRED))

        snapshot = session.snapshot()
        try:
            replies = await self._dispatch(message, session)
        except TransientStoreError as e:
            logger.warning(f"Store unavailable while handling {user_key}: {e}")
            session.restore(snapshot)
            replies = [OutboundMessage(text=messages.SERVICE_UNAVAILABLE)]
        except Exception as e:
            logger.error(f"Handler failed for {user_key}: {e}", exc_info=True)
            session.restore(snapshot)
            replies = [OutboundMessage(text=messages.GENERAL_ERROR)]

        await self.sessions.save(user_key, session)
        return notices + replies

    def _build_context(self, session: ConversationSession) -> CommandContext:
        return CommandContext(
            session=session,
            registry=self.registry,
            prices=self.prices,
            wizards=self.wizards,
            degradation=self.degradation,
            wizard_handlers=self.wizard_handlers,
            concurrency=self.guard,
            breakers=self.breakers,
            is_admin=session.user_key in self.admin_users,
        )

    async def _dispatch(self, message: InboundMessage, session: ConversationSession) -> list[OutboundMessage]:
        context = self._build_context(session)

        if session.active_wizard is not None:
            replies = await self._dispatch_wizard(message, context)
            if replies is not None:
                return replies

        if message.is_callback:
            return await self._dispatch_callback(message, context)

        if message.is_command:
            name, args = message.parse_command()
            return await self.run_command(name, args, message, context)

        text = message.text.strip()
        if not text:
            return []
        return await self._handle_free_text(text, message, context)

    async def _dispatch_wizard(
        self, message: InboundMessage, context: CommandContext
    ) -> list[OutboundMessage] | None:
        """Feed input to the active wizard. None means fall through."""
        session = context.session
        wizard_id = session.active_wizard.wizard_id
        handler = self.wizard_handlers.get(wizard_id)
        if handler is None:
            logger.error(f"No handler for active wizard '{wizard_id}', dropping it for {session.user_key}")
            self.wizards.cancel(session)
            return None

        if not self.degradation.is_feature_enabled("writes"):
            self.wizards.cancel(session)
            return [OutboundMessage(text=messages.READ_ONLY)]

        result = await handler.handle_input(message, context)
        return result.to_messages()

    async def _dispatch_callback(self, message: InboundMessage, context: CommandContext) -> list[OutboundMessage]:
        payload = message.callback_payload or ""
        if payload.startswith(COMMAND_PAYLOAD):
            line = payload[len(COMMAND_PAYLOAD) :]
        elif payload.startswith(SUGGEST_PAYLOAD):
            line = payload[len(SUGGEST_PAYLOAD) :]
        else:
            logger.debug(f"Stale or unknown button payload {payload!r} from {message.user_key}")
            return [OutboundMessage(text=STALE_BUTTON)]

        parts = line.strip().lstrip("/").split(maxsplit=1)
        if not parts:
            return [OutboundMessage(text=STALE_BUTTON)]
        name = parts[0].split("@", 1)[0]
        args = parts[1] if len(parts) > 1 else ""
        return await self.run_command(name, args, message, context)

    async def run_command(
        self, name: str, args: str, message: InboundMessage, context: CommandContext
    ) -> list[OutboundMessage]:
        """Execute a command by name or alias, enforcing admin and feature gates."""
        handler = self.registry.get(name)
        if handler is None:
            logger.debug(f"Unknown command /{name} from {message.user_key}")
            return [self._unknown_command(name)]

        definition = handler.definition
        if definition.admin_only and not context.is_admin:
            logger.info(f"Refused admin command /{definition.name} for {message.user_key}")
            return [OutboundMessage(text=messages.UNAUTHORIZED)]

        feature = definition.requires_feature
        if feature and not self.degradation.is_feature_enabled(feature):
            logger.info(f"/{definition.name} refused, feature '{feature}' is disabled")
            if feature == "writes":
                return [OutboundMessage(text=messages.READ_ONLY)]
            if feature == "analytics":
                return [OutboundMessage(text=self.degradation.fallback_response("analytics", args or None))]
            return [OutboundMessage(text=messages.FEATURE_DISABLED)]

        result = await handler.handle(message, args, context)
        return result.to_messages()

    def _unknown_command(self, name: str) -> OutboundMessage:
        suggestions = self.registry.find_similar(name)
        lines = [messages.UNKNOWN_COMMAND.format(command=name)]
        keyboard = None
        if suggestions:
            lines.append("")
            lines.append(messages.DID_YOU_MEAN)
            lines.extend(f"• /{suggestion}" for suggestion in suggestions)
            keyboard = [[KeyboardButton(f"/{s}", f"{COMMAND_PAYLOAD}{s}") for s in suggestions]]
        lines.append("")
        lines.append(messages.SEE_HELP)
        return OutboundMessage(text="\n".join(lines), keyboard=keyboard)

    async def _handle_free_text(
        self, text: str, message: InboundMessage, context: CommandContext
    ) -> list[OutboundMessage]:
        session = context.session

        if not self.degradation.is_feature_enabled("nlp"):
            logger.debug(f"NLP disabled, static fallback for {message.user_key}")
            return [OutboundMessage(text=self.degradation.fallback_response("classifier", text))]

        result = await self.gateway.process(
            text,
            prior_context=session.current_context(),
            recent_queries=session.recent_queries(self.gateway.context_window),
        )
        if result.response_time_ms is not None:
            self.degradation.record_latency(result.response_time_ms)

        session.merge_context(
            result.intent if result.intent != "unknown" else None,
            result.entities,
            result.confidence,
        )

        command = INTENT_COMMANDS.get(result.intent)
        if command and not result.low_confidence:
            logger.debug(f"Executing /{command} for intent {result.intent} ({result.confidence:.2f})")
            context.entities = dict(result.entities)
            replies = await self.run_command(command, "", message, context)
        elif result.suggested_command:
            suggestion = result.suggested_command
            replies = [
                OutboundMessage(
                    text=messages.NLP_SUGGESTION.format(command=suggestion),
                    keyboard=[
                        [
                            KeyboardButton(
                                messages.NLP_SUGGESTION_BUTTON.format(command=suggestion),
                                f"{SUGGEST_PAYLOAD}{suggestion}",
                            )
                        ]
                    ],
                )
            ]
        else:
            replies = [OutboundMessage(text=messages.NLP_NOT_UNDERSTOOD)]

        response_text = "\n".join(reply.text for reply in replies)
        session.add_to_history(text, response_text[:HISTORY_RESPONSE_LIMIT])
        return replies
