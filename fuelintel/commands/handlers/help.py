"""Help and command list handlers."""

from typing import TYPE_CHECKING

from fuelintel.commands.base import CommandDefinition, CommandHandler, CommandResult

if TYPE_CHECKING:
    from fuelintel.channels.base import InboundMessage
    from fuelintel.commands.base import CommandContext

CATEGORY_TITLES = {
    "precios": "⛽ Precios",
    "estaciones": "📍 Estaciones",
    "analisis": "📊 Análisis",
    "configuracion": "⚙️ Configuración",
    "general": "ℹ️ General",
}


class HelpCommand(CommandHandler):
    """Explain how to use the bot."""

    @property
    def definition(self) -> CommandDefinition:
        """Command metadata."""
        return CommandDefinition(
            name="help",
            description="Mostrar ayuda",
            aliases=("ayuda",),
        )

    async def handle(
        self,
        message: "InboundMessage",
        args: str,
        context: "CommandContext",
    ) -> CommandResult:
        """Execute the help command.

        Args:
            message: Incoming message.
            args: Optional command name to describe.
            context: Command execution context.

        Returns:
            CommandResult with help text.
        """
        if args:
            handler = context.registry.get(args.lstrip("/").split()[0])
            if handler is not None and not handler.definition.hidden:
                definition = handler.definition
                args_hint = f" {definition.args_description}" if definition.args_description else ""
                aliases = ", ".join(f"/{a}" for a in definition.aliases)
                text = f"/{definition.name}{args_hint} - {definition.description}"
                if aliases:
                    text += f"\nTambién: {aliases}"
                return CommandResult(response=text)

        lines = [
            "❓ Ayuda de FuelIntel",
            "",
            "Escribe tus preguntas con tus propias palabras:",
            "• \"¿a cómo está la magna?\"",
            "• \"¿y la premium?\"",
            "• \"¿qué me recomiendas?\"",
            "",
            "Comandos principales:",
        ]
        for definition in context.registry.list_commands():
            args_hint = f" {definition.args_description}" if definition.args_description else ""
            lines.append(f"/{definition.name}{args_hint} - {definition.description}")
        lines.append("")
        lines.append("Usa /comandos para verlos por categoría.")
        return CommandResult(response="\n".join(lines))


class ComandosCommand(CommandHandler):
    """List commands grouped by category."""

    @property
    def definition(self) -> CommandDefinition:
        """Command metadata."""
        return CommandDefinition(
            name="comandos",
            description="Ver comandos por categoría",
            aliases=("menu",),
        )

    async def handle(
        self,
        message: "InboundMessage",
        args: str,
        context: "CommandContext",
    ) -> CommandResult:
        sections = []
        for category, title in CATEGORY_TITLES.items():
            definitions = context.registry.by_category(category)
            if not definitions:
                continue
            lines = [title]
            lines.extend(f"  /{d.name} - {d.description}" for d in definitions)
            sections.append("\n".join(lines))

        if not sections:
            return CommandResult(response="No hay comandos disponibles.")
        return CommandResult(response="📋 Comandos disponibles\n\n" + "\n\n".join(sections))
