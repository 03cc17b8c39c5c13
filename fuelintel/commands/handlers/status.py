"""Operational status handler."""

from typing import TYPE_CHECKING

from fuelintel.commands.base import CommandDefinition, CommandHandler, CommandResult

if TYPE_CHECKING:
    from fuelintel.channels.base import InboundMessage
    from fuelintel.commands.base import CommandContext

STATE_ICONS = {"closed": "✅", "half_open": "⚠️", "open": "❌"}


class StatusCommand(CommandHandler):
    """Show degradation level, breakers and load. Admins may force a level."""

    @property
    def definition(self) -> CommandDefinition:
        """Command metadata."""
        return CommandDefinition(
            name="status",
            description="Estado del servicio",
            category="admin",
            aliases=("estado",),
            hidden=True,
            args_description="[normal|degraded|minimal|auto]",
            admin_only=True,
        )

    async def handle(
        self,
        message: "InboundMessage",
        args: str,
        context: "CommandContext",
    ) -> CommandResult:
        """Execute the status command.

        Args:
            message: Incoming message.
            args: Optional level to force, or "auto" to clear the override.
            context: Command execution context.

        Returns:
            CommandResult with formatted status information.
        """
        degradation = context.degradation
        lines = []

        level_arg = args.strip().lower()
        if level_arg == "auto":
            degradation.clear_override()
            lines.append("Override eliminado.")
        elif level_arg:
            try:
                degradation.force_level(level_arg)
                lines.append(f"Nivel forzado a {level_arg}.")
            except ValueError:
                return CommandResult(response=f"Nivel desconocido: {level_arg}")

        report = degradation.status_report()
        override = " (forzado)" if report["override"] else ""
        lines.append(f"Nivel: {report['level']}{override}")
        flags = report["flags"]
        lines.append(
            f"NLP: {'on' if flags['nlp_enabled'] else 'off'}, "
            f"análisis: {'on' if flags['analytics_enabled'] else 'off'}, "
            f"modo lento: {'on' if flags['slow_mode_enabled'] else 'off'}, "
            f"solo lectura: {'on' if flags['read_only'] else 'off'}"
        )

        p95 = report["p95_latency_ms"]
        lines.append(f"Latencia p95: {f'{p95:.0f} ms' if p95 is not None else 'sin datos'}")

        if context.concurrency is not None:
            stats = context.concurrency.stats()
            lines.append(
                f"Conversaciones activas: {stats['active_conversations']}/"
                f"{stats['max_concurrent_conversations']}, limitadas: {stats['rate_limited']}"
            )

        for name, breaker in context.breakers.items():
            stats = breaker.stats()
            icon = STATE_ICONS.get(stats["state"], "•")
            lines.append(
                f"{icon} {name}: {stats['state']} "
                f"({stats['failures']}/{stats['failure_threshold']} fallos)"
            )

        return CommandResult(response="\n".join(lines))
