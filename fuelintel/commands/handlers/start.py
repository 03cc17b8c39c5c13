"""Start command handler."""

from typing import TYPE_CHECKING

from fuelintel.channels.base import KeyboardButton
from fuelintel.commands.base import CommandDefinition, CommandHandler, CommandResult

if TYPE_CHECKING:
    from fuelintel.channels.base import InboundMessage
    from fuelintel.commands.base import CommandContext


class StartCommand(CommandHandler):
    """Greet the user and offer the main actions."""

    @property
    def definition(self) -> CommandDefinition:
        """Command metadata."""
        return CommandDefinition(
            name="start",
            description="Iniciar el bot",
            aliases=("inicio",),
            hidden=True,
        )

    async def handle(
        self,
        message: "InboundMessage",
        args: str,
        context: "CommandContext",
    ) -> CommandResult:
        """Execute the start command.

        Args:
            message: Incoming message.
            args: Command arguments (unused).
            context: Command execution context.

        Returns:
            CommandResult with the welcome text and main menu buttons.
        """
        name = message.metadata.get("first_name")
        greeting = f"¡Hola, {name}! 👋" if name else "¡Bienvenido a FuelIntel! 🚀"
        text = (
            f"{greeting}\n\n"
            "Te ayudo a monitorear precios de combustible y tomar decisiones para tu estación.\n\n"
            "Puedes usar los botones de abajo o escribir directamente lo que necesitas, "
            "por ejemplo: \"¿a cómo está la premium?\""
        )
        keyboard = [
            [
                KeyboardButton("⛽ Precios", "cmd:precios"),
                KeyboardButton("📍 Mis estaciones", "cmd:estaciones"),
            ],
            [
                KeyboardButton("⚙️ Configurar", "cmd:configurar"),
                KeyboardButton("❓ Ayuda", "cmd:help"),
            ],
        ]
        return CommandResult(response=text, keyboard=keyboard)
