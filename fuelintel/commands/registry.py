"""Command registry: name and alias lookup plus fuzzy suggestions."""

import difflib
import logging
from collections.abc import Mapping

from fuelintel.commands.base import CommandDefinition, CommandHandler

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.5


class CommandRegistry:
    """Static map from command name to handler, built once at start-up.

    Lookups never raise: an unknown name returns None.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._aliases: dict[str, str] = {}

    def register(self, name: str, handler: CommandHandler) -> None:
        """Register a handler under a name, plus the aliases in its definition.

        Args:
            name: Command name without the leading slash.
            handler: Command handler to register.
        """
        name = name.lower()
        if name in self._handlers:
            logger.warning(f"Replacing handler for /{name}")
        self._handlers[name] = handler
        for alias in handler.definition.aliases:
            self.add_alias(alias, name)

    def register_handler(self, handler: CommandHandler) -> None:
        """Register a handler under its definition's name."""
        self.register(handler.definition.name, handler)

    def register_many(self, handlers: Mapping[str, CommandHandler]) -> None:
        for name, handler in handlers.items():
            self.register(name, handler)

    def add_alias(self, alias: str, name: str) -> None:
        alias = alias.lower()
        if alias in self._handlers:
            raise ValueError(f"Alias '{alias}' shadows a registered command")
        self._aliases[alias] = name.lower()

    def resolve_alias(self, name: str) -> str:
        """Canonical command name for a name or alias."""
        name = name.lower()
        return self._aliases.get(name, name)

    def get(self, name: str) -> CommandHandler | None:
        """Handler for a command name or alias, None if not registered."""
        return self._handlers.get(self.resolve_alias(name))

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def all(self) -> dict[str, CommandHandler]:
        return dict(self._handlers)

    def list_commands(self, include_hidden: bool = False) -> list[CommandDefinition]:
        """List all registered commands.

        Args:
            include_hidden: Whether to include hidden commands.

        Returns:
            List of command definitions in registration order.
        """
        return [
            h.definition
            for h in self._handlers.values()
            if include_hidden or not h.definition.hidden
        ]

    def by_category(self, category: str) -> list[CommandDefinition]:
        return [d for d in self.list_commands() if d.category == category]

    def find_similar(self, attempted: str, max_results: int = 3) -> list[str]:
        """Registered command names resembling a mistyped one.

        Names and aliases are both compared; results are canonical names,
        best match first, without duplicates. Hidden commands are never
        suggested.

        Args:
            attempted: The unrecognized command name.
            max_results: Maximum number of suggestions.

        Returns:
            Command names, possibly empty.
        """
        attempted = attempted.lower().lstrip("/")
        if not attempted or max_results <= 0:
            return []

        candidates = [name for name, h in self._handlers.items() if not h.definition.hidden]
        candidates += [alias for alias, name in self._aliases.items() if name in candidates]

        scored = []
        for candidate in candidates:
            ratio = difflib.SequenceMatcher(None, attempted, candidate).ratio()
            if ratio >= SIMILARITY_THRESHOLD:
                scored.append((ratio, candidate))
        scored.sort(key=lambda item: (-item[0], item[1]))

        results: list[str] = []
        for _, candidate in scored:
            name = self.resolve_alias(candidate)
            if name not in results:
                results.append(name)
            if len(results) >= max_results:
                break
        return results
