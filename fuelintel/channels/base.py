"""Transport boundary types and the channel adapter interface."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class KeyboardButton:
    """Inline button; pressing it sends ``payload`` back as a callback."""

    text: str
    payload: str


@dataclass
class InboundMessage:
    """Unified inbound event: a text message or a button press.

    Attributes:
        user_key: Stable user identity, e.g. "telegram:42".
        text: Message text (empty for pure button presses).
        callback_payload: Payload of the pressed button, if any.
        chat_id: Where replies go.
        channel: Channel name.
        metadata: Channel-specific extras (username, message id, ...).
    """

    user_key: str
    text: str = ""
    callback_payload: str | None = None
    chat_id: str | None = None
    channel: str = "telegram"
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_callback(self) -> bool:
        return self.callback_payload is not None

    @property
    def is_command(self) -> bool:
        return not self.is_callback and self.text.strip().startswith("/")

    def parse_command(self) -> tuple[str, str]:
        """Parse command and arguments from the text.

        The bot mention suffix is stripped and the name lower-cased:
        "/Precios@FuelBot premium" -> ("precios", "premium").

        Returns:
            Tuple of (command_name, arguments_string).
        """
        if not self.is_command:
            return ("", self.text)

        parts = self.text.strip().split(maxsplit=1)
        command = parts[0][1:].split("@", 1)[0].lower()
        args = parts[1].strip() if len(parts) > 1 else ""
        return (command, args)


@dataclass
class OutboundMessage:
    """A reply, optionally with rows of inline buttons."""

    text: str
    keyboard: list[list[KeyboardButton]] | None = None


MessageCallback = Callable[[InboundMessage], Awaitable[list[OutboundMessage]]]


class ChannelAdapter(ABC):
    """Abstract base class for channel adapters.

    Channel adapters handle:
    - Protocol adaptation (platform updates to InboundMessage and back)
    - Access control (allowlists)
    - Delivery of replies
    """

    name: str = "base"

    @abstractmethod
    async def start(self) -> None:
        """Connect and begin receiving updates."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop receiving updates and disconnect."""
        ...

    @abstractmethod
    async def send(self, chat_id: str, message: OutboundMessage) -> None:
        """Deliver one reply to a chat."""
        ...

    @abstractmethod
    def on_message(self, callback: MessageCallback) -> None:
        """Register the handler producing replies for inbound messages."""
        ...

    def build_user_key(self, user_id: str | int) -> str:
        """User key like 'telegram:42'."""
        return f"{self.name}:{user_id}"
