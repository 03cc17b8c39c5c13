"""Base abstractions for the command system."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fuelintel.channels.base import InboundMessage, KeyboardButton, OutboundMessage

if TYPE_CHECKING:
    from fuelintel.commands.registry import CommandRegistry
    from fuelintel.model.session import ConversationSession
    from fuelintel.resilience.circuit_breaker import CircuitBreaker
    from fuelintel.resilience.concurrency import ConcurrencyGuard
    from fuelintel.resilience.degradation import DegradationController
    from fuelintel.stores.prices import PriceRepository
    from fuelintel.wizard.engine import WizardEngine, WizardHandler


@dataclass
class CommandDefinition:
    """Metadata for a registered command."""

    name: str  # e.g., "precios"
    description: str  # Short description for /ayuda
    category: str = "general"
    aliases: tuple[str, ...] = ()
    hidden: bool = False  # If True, omit from /ayuda
    args_description: str | None = None  # e.g., "[combustible]"
    requires_feature: str | None = None  # DegradationController feature name
    admin_only: bool = False


@dataclass
class CommandContext:
    """Per-turn context passed to command and wizard handlers."""

    session: "ConversationSession"
    registry: "CommandRegistry"
    prices: "PriceRepository"
    wizards: "WizardEngine"
    degradation: "DegradationController"
    wizard_handlers: dict[str, "WizardHandler"] = field(default_factory=dict)
    concurrency: "ConcurrencyGuard | None" = None
    breakers: dict[str, "CircuitBreaker"] = field(default_factory=dict)
    is_admin: bool = False
    entities: dict[str, Any] = field(default_factory=dict)  # From NLP, when routed from free text


@dataclass
class CommandResult:
    """Result from a command handler."""

    response: str | None = None  # Text to send back to user
    keyboard: list[list[KeyboardButton]] | None = None

    def to_messages(self) -> list[OutboundMessage]:
        if self.response is None:
            return []
        return [OutboundMessage(text=self.response, keyboard=self.keyboard)]


class CommandHandler(ABC):
    """Base class for command implementations."""

    @property
    @abstractmethod
    def definition(self) -> CommandDefinition:
        """Command metadata."""
        ...

    @abstractmethod
    async def handle(
        self,
        message: InboundMessage,
        args: str,
        context: CommandContext,
    ) -> CommandResult:
        """Execute the command."""
        ...
