"""Command system: handler interface and registry."""

from fuelintel.commands.base import CommandContext, CommandDefinition, CommandHandler, CommandResult
from fuelintel.commands.registry import CommandRegistry

__all__ = [
    "CommandContext",
    "CommandDefinition",
    "CommandHandler",
    "CommandRegistry",
    "CommandResult",
]
