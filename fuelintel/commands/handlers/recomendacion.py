"""Pricing recommendation handler."""

from typing import TYPE_CHECKING

from fuelintel.commands.base import CommandDefinition, CommandHandler, CommandResult
from fuelintel.commands.handlers.precios import format_price, resolve_fuel_type
from fuelintel.messages import FUEL_LABELS
from fuelintel.stores.prices import FUEL_TYPES

if TYPE_CHECKING:
    from fuelintel.channels.base import InboundMessage
    from fuelintel.commands.base import CommandContext

# Differences within this many pesos of the market average count as aligned
ALIGNED_MARGIN = 0.10


class RecomendacionCommand(CommandHandler):
    """Compare the user's main station with the market average."""

    @property
    def definition(self) -> CommandDefinition:
        """Command metadata."""
        return CommandDefinition(
            name="recomendacion",
            description="Recomendación de precios frente al mercado",
            category="analisis",
            aliases=("recomendar",),
            args_description="[combustible]",
            requires_feature="analytics",
        )

    async def handle(
        self,
        message: "InboundMessage",
        args: str,
        context: "CommandContext",
    ) -> CommandResult:
        """Execute the recommendation command.

        Args:
            message: Incoming message.
            args: Optional fuel type filter.
            context: Command execution context.

        Returns:
            CommandResult with one line per fuel type.
        """
        stations = await context.prices.get_user_stations(message.user_key)
        if not stations:
            return CommandResult(response="📍 Registra una estación para recibir recomendaciones.")

        station = stations[0]
        current = await context.prices.get_current_prices(station.station_id)
        averages = await context.prices.get_average_prices()
        if current is None or not averages:
            return CommandResult(response=context.degradation.fallback_response("analytics", "analisis"))

        fuel_type = resolve_fuel_type(args, context)
        lines = [f"💡 Recomendación para {station.label}", ""]
        for fuel in (fuel_type,) if fuel_type else FUEL_TYPES:
            price = current.price(fuel)
            average = averages.get(fuel)
            if price is None or average is None:
                continue
            diff = price - average
            if abs(diff) <= ALIGNED_MARGIN:
                advice = "alineado con el mercado, mantén el precio"
            elif diff > 0:
                advice = f"{format_price(diff)} arriba del promedio, considera ajustar a la baja"
            else:
                advice = f"{format_price(-diff)} abajo del promedio, hay margen para subir"
            lines.append(
                f"{FUEL_LABELS[fuel]}: {format_price(price)} vs {format_price(average)} promedio, {advice}."
            )

        if len(lines) == 2:
            return CommandResult(response="📭 No hay datos suficientes para recomendar.")
        return CommandResult(response="\n".join(lines))
