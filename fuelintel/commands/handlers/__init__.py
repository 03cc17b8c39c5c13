"""Built-in command handlers."""

from fuelintel.commands.base import CommandHandler
from fuelintel.commands.handlers.configurar import CancelarCommand, ConfigurarCommand
from fuelintel.commands.handlers.help import ComandosCommand, HelpCommand
from fuelintel.commands.handlers.precios import EstacionesCommand, PreciosCommand
from fuelintel.commands.handlers.recomendacion import RecomendacionCommand
from fuelintel.commands.handlers.start import StartCommand
from fuelintel.commands.handlers.status import StatusCommand


def get_default_commands() -> list[CommandHandler]:
    """Return all built-in command handlers for registration.

    Returns:
        List of command handler instances.
    """
    return [
        StartCommand(),
        HelpCommand(),
        ComandosCommand(),
        PreciosCommand(),
        EstacionesCommand(),
        RecomendacionCommand(),
        ConfigurarCommand(),
        CancelarCommand(),
        StatusCommand(),
    ]


__all__ = [
    "CancelarCommand",
    "ComandosCommand",
    "ConfigurarCommand",
    "EstacionesCommand",
    "get_default_commands",
    "HelpCommand",
    "PreciosCommand",
    "RecomendacionCommand",
    "StartCommand",
    "StatusCommand",
]
