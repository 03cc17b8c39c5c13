"""Configuration and cancel command handlers."""

from typing import TYPE_CHECKING

from fuelintel.commands.base import CommandDefinition, CommandHandler, CommandResult

if TYPE_CHECKING:
    from fuelintel.channels.base import InboundMessage
    from fuelintel.commands.base import CommandContext


class ConfigurarCommand(CommandHandler):
    """Start the notification preferences wizard."""

    wizard_name = "configurar"

    @property
    def definition(self) -> CommandDefinition:
        """Command metadata."""
        return CommandDefinition(
            name="configurar",
            description="Configurar alertas y preferencias",
            category="configuracion",
            aliases=("config",),
            requires_feature="writes",
        )

    async def handle(
        self,
        message: "InboundMessage",
        args: str,
        context: "CommandContext",
    ) -> CommandResult:
        """Execute the configure command.

        Args:
            message: Incoming message.
            args: Command arguments (unused).
            context: Command execution context.

        Returns:
            CommandResult with the wizard's first step.
        """
        wizard = context.wizard_handlers[self.wizard_name]
        return await wizard.start(message, context)


class CancelarCommand(CommandHandler):
    """Cancel the active dialog and forget the conversational context."""

    @property
    def definition(self) -> CommandDefinition:
        """Command metadata."""
        return CommandDefinition(
            name="cancelar",
            description="Cancelar la operación actual",
            category="configuracion",
            aliases=("cancel",),
        )

    async def handle(
        self,
        message: "InboundMessage",
        args: str,
        context: "CommandContext",
    ) -> CommandResult:
        had_wizard = context.wizards.cancel(context.session)
        context.session.context = None
        if had_wizard:
            return CommandResult(response="❌ Operación cancelada.")
        return CommandResult(response="No hay ninguna operación activa.")
