"""Price lookup handlers."""

from typing import TYPE_CHECKING

from fuelintel.commands.base import CommandDefinition, CommandHandler, CommandResult
from fuelintel.messages import FUEL_LABELS
from fuelintel.nlp.local import LocalIntentParser
from fuelintel.stores.prices import FUEL_TYPES

if TYPE_CHECKING:
    from fuelintel.channels.base import InboundMessage
    from fuelintel.commands.base import CommandContext

_parser = LocalIntentParser()


def resolve_fuel_type(args: str, context: "CommandContext") -> str | None:
    """Fuel type from the command arguments, else from NLP entities."""
    if args:
        fuel = _parser.extract_fuel_type(_parser.prepare(args))
        if fuel:
            return fuel
    fuel = context.entities.get("fuel_type")
    return fuel if fuel in FUEL_TYPES else None


def format_price(value: float | None) -> str:
    return f"${value:,.2f}" if value is not None else "sin datos"


class PreciosCommand(CommandHandler):
    """Show current prices at the user's stations."""

    @property
    def definition(self) -> CommandDefinition:
        """Command metadata."""
        return CommandDefinition(
            name="precios",
            description="Precios actuales de tus estaciones",
            category="precios",
            aliases=("precio",),
            args_description="[regular|premium|diesel]",
        )

    async def handle(
        self,
        message: "InboundMessage",
        args: str,
        context: "CommandContext",
    ) -> CommandResult:
        """Execute the prices command.

        Args:
            message: Incoming message.
            args: Optional fuel type filter.
            context: Command execution context.

        Returns:
            CommandResult with prices per station, or market averages when
            the user has no registered stations.
        """
        fuel_type = resolve_fuel_type(args, context)
        fuels = (fuel_type,) if fuel_type else FUEL_TYPES
        stations = await context.prices.get_user_stations(message.user_key)

        if not stations:
            averages = await context.prices.get_average_prices(fuel_type)
            if not averages:
                return CommandResult(response="📭 No hay precios disponibles en este momento.")
            lines = ["📊 Precios promedio del mercado", ""]
            lines.extend(f"{FUEL_LABELS[f]}: {format_price(averages.get(f))}" for f in fuels if f in averages)
            lines.append("")
            lines.append("Registra tu estación para ver sus precios y usa /configurar para recibir alertas.")
            return CommandResult(response="\n".join(lines))

        title = f"⛽ Precios de {FUEL_LABELS[fuel_type]}" if fuel_type else "⛽ Precios actuales"
        lines = [title]
        for station in stations:
            current = await context.prices.get_current_prices(station.station_id)
            lines.append("")
            lines.append(f"📍 {station.label}")
            for fuel in fuels:
                lines.append(f"  {FUEL_LABELS[fuel]}: {format_price(current.price(fuel) if current else None)}")
        return CommandResult(response="\n".join(lines))


class EstacionesCommand(CommandHandler):
    """List the user's registered stations."""

    @property
    def definition(self) -> CommandDefinition:
        """Command metadata."""
        return CommandDefinition(
            name="estaciones",
            description="Tus estaciones registradas",
            category="estaciones",
            aliases=("mis_estaciones", "cercanas"),
        )

    async def handle(
        self,
        message: "InboundMessage",
        args: str,
        context: "CommandContext",
    ) -> CommandResult:
        stations = await context.prices.get_user_stations(message.user_key)
        if not stations:
            return CommandResult(response="📍 No tienes estaciones registradas.")

        lines = ["📍 Tus estaciones", ""]
        for station in stations:
            details = ", ".join(part for part in (station.brand, station.municipality) if part)
            suffix = f" ({details})" if details else ""
            lines.append(f"• {station.label}{suffix} - {station.station_id}")
        return CommandResult(response="\n".join(lines))
