"""Five-step notification preferences wizard (/configurar).

Button payloads follow ``config_<action>[:value]``: ``config_station:<id>``,
``config_radius:<km>``, ``config_threshold:<pct>``, ``config_fuel:<type>``,
``config_fuel_done``, ``config_time:<HH:MM|none>``, ``config_back[:<step>]``
and ``config_cancel``. Every step also accepts typed answers.
"""

import logging
import re
from typing import Any

from fuelintel.channels.base import InboundMessage, KeyboardButton
from fuelintel.commands.base import CommandContext, CommandResult
from fuelintel.core.errors import InvalidWizardTransitionError, TransientStoreError
from fuelintel.messages import FUEL_LABELS
from fuelintel.nlp.local import COLLOQUIALISMS, normalize
from fuelintel.stores.prices import FUEL_TYPES, Station
from fuelintel.wizard.engine import StepKind, WizardDefinition, WizardHandler, WizardStep

logger = logging.getLogger(__name__)

WIZARD_NAME = "configurar"
PAYLOAD_PREFIX = "config_"

RADIUS_OPTIONS = (1, 3, 5, 10, 15, 20)
THRESHOLD_OPTIONS = (1, 2, 3, 5, 10, 0)
TIME_OPTIONS = ("06:00", "07:00", "08:00", "09:00", "12:00", "18:00", "20:00", "none")

CONFIGURE_WIZARD = WizardDefinition(
    name=WIZARD_NAME,
    steps=(
        WizardStep("station_id", "¿Cuál es tu estación principal?"),
        WizardStep(
            "radius_km",
            "¿Radio de monitoreo en kilómetros?\n"
            "Esto determina qué tan lejos buscaremos estaciones para comparar precios.",
            options=RADIUS_OPTIONS,
        ),
        WizardStep(
            "price_change_threshold",
            "¿Umbral de alerta de precios?\n"
            "Te notificaremos cuando los precios cambien más de este porcentaje.",
            options=THRESHOLD_OPTIONS,
        ),
        WizardStep(
            "fuel_types",
            "¿Qué tipos de combustible quieres monitorear?\nSelecciona todos los que te interesen.",
            kind=StepKind.MULTI_SELECT,
            options=FUEL_TYPES,
        ),
        WizardStep(
            "daily_summary_time",
            "¿A qué hora quieres recibir el resumen diario?\nHora de la Ciudad de México.",
            options=TIME_OPTIONS,
        ),
    ),
)

TIME_LABELS = {
    "06:00": "6:00 AM",
    "07:00": "7:00 AM",
    "08:00": "8:00 AM",
    "09:00": "9:00 AM",
    "12:00": "12:00 PM",
    "18:00": "6:00 PM",
    "20:00": "8:00 PM",
    "none": "Sin resumen",
}

CANCEL_WORDS = ("cancelar", "cancel", "/cancelar", "/cancel", "salir")
BACK_WORDS = ("atrás", "atras", "regresar", "back")
DONE_WORDS = ("listo", "continuar", "done", "ok")
NO_SUMMARY_WORDS = ("none", "ninguno", "no", "sin resumen", "desactivado")

INVALID_OPTION = "⚠️ Opción no válida. Elige una de las opciones de abajo."
NO_STATIONS = (
    "📍 No tienes estaciones registradas.\n"
    "Registra una estación desde el panel web y vuelve a usar /configurar."
)
CANCELLED = (
    "❌ Configuración cancelada.\n\n"
    "Puedes reiniciar la configuración en cualquier momento usando /configurar"
)
SAVE_FAILED = "⚠️ No pudimos guardar tus preferencias. Intenta de nuevo en unos momentos."
FINISH_FIRST = "⚠️ Estás configurando tus preferencias. Termina los pasos o usa /cancelar para salir."

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_payload(payload: str) -> tuple[str, str | None] | None:
    """Split ``config_<action>[:value]`` into (action, value).

    Only the first colon separates the value, so "config_time:06:00" yields
    ("time", "06:00"). Returns None for payloads of other handlers.
    """
    if not payload.startswith(PAYLOAD_PREFIX):
        return None
    action, _, value = payload[len(PAYLOAD_PREFIX) :].partition(":")
    return action, (value or None)


def _chunk(buttons: list[KeyboardButton], size: int = 2) -> list[list[KeyboardButton]]:
    return [buttons[i : i + size] for i in range(0, len(buttons), size)]


def _parse_int(value: str) -> int | None:
    try:
        return int(value.strip().rstrip("%").replace("km", "").strip())
    except ValueError:
        return None


def _parse_fuel(value: str) -> str | None:
    word = normalize(value).replace("diésel", "diesel")
    word = COLLOQUIALISMS.get(word, word)
    return word if word in FUEL_TYPES else None


def _parse_time(value: str) -> str | None:
    text = normalize(value)
    if text in NO_SUMMARY_WORDS:
        return "none"
    match = _TIME_RE.match(text)
    if not match:
        return None
    candidate = f"{int(match.group(1)):02d}:{match.group(2)}"
    return candidate if candidate in TIME_OPTIONS else None


class ConfigureWizard(WizardHandler):
    """Collects station, radius, alert threshold, fuel types and summary time."""

    @property
    def definition(self) -> WizardDefinition:
        return CONFIGURE_WIZARD

    async def start(self, message: InboundMessage, context: CommandContext) -> CommandResult:
        stations = await context.prices.get_user_stations(message.user_key)
        if not stations:
            # Nothing to choose from; a restarted wizard is dropped too
            context.wizards.cancel(context.session)
            return CommandResult(response=NO_STATIONS)

        context.wizards.start(context.session, WIZARD_NAME)
        return await self.render(context, stations=stations)

    async def render(
        self,
        context: CommandContext,
        notice: str | None = None,
        stations: list[Station] | None = None,
    ) -> CommandResult:
        """Show the active step with its buttons."""
        state = context.session.active_wizard
        step = context.wizards.current_step_definition(context.session)
        number = state.current_step

        lines = []
        if notice:
            lines.append(notice)
            lines.append("")
        lines.append("⚙️ Configuración de Preferencias")
        lines.append("")
        lines.append(f"Paso {number}/{CONFIGURE_WIZARD.total_steps}: {step.prompt}")

        if step.key == "station_id":
            if stations is None:
                stations = await context.prices.get_user_stations(context.session.user_key)
            buttons = [KeyboardButton(s.label, f"config_station:{s.station_id}") for s in stations]
        elif step.key == "radius_km":
            buttons = [KeyboardButton(f"{km} km", f"config_radius:{km}") for km in RADIUS_OPTIONS]
        elif step.key == "price_change_threshold":
            buttons = [
                KeyboardButton(f"{pct}%" if pct else "Sin alertas", f"config_threshold:{pct}")
                for pct in THRESHOLD_OPTIONS
            ]
        elif step.key == "fuel_types":
            selected = state.data.get("fuel_types", list(FUEL_TYPES))
            buttons = [
                KeyboardButton(f"{'✅' if fuel in selected else '⬜'} {FUEL_LABELS[fuel]}", f"config_fuel:{fuel}")
                for fuel in FUEL_TYPES
            ]
        else:
            buttons = [KeyboardButton(TIME_LABELS[t], f"config_time:{t}") for t in TIME_OPTIONS]

        keyboard = _chunk(buttons, size=1 if step.key == "station_id" else 2)
        if step.key == "fuel_types":
            keyboard.append([KeyboardButton("✅ Continuar", "config_fuel_done")])

        controls = [KeyboardButton("❌ Cancelar", "config_cancel")]
        if number > 1:
            controls.insert(0, KeyboardButton("⬅️ Atrás", "config_back"))
        keyboard.append(controls)

        return CommandResult(response="\n".join(lines), keyboard=keyboard)

    async def handle_input(self, message: InboundMessage, context: CommandContext) -> CommandResult:
        session = context.session
        engine = context.wizards

        if message.is_callback:
            parsed = parse_payload(message.callback_payload)
            if parsed is None:
                logger.debug(f"Ignoring foreign payload {message.callback_payload!r} during wizard")
                return await self.render(context, notice=INVALID_OPTION)
            action, value = parsed
        else:
            action, value = self._interpret_text(message.text)

        if action == "cancel":
            engine.cancel(session)
            return CommandResult(response=CANCELLED)

        if action == "command":
            return await self.render(context, notice=FINISH_FIRST)

        if action == "restart":
            return await self.start(message, context)

        if action == "back":
            if value and value.isdigit():
                try:
                    engine.go_to(session, int(value))
                except InvalidWizardTransitionError:
                    return await self.render(context, notice=INVALID_OPTION)
            else:
                engine.back(session)
            return await self.render(context)

        step = engine.current_step_definition(session)
        handler = {
            "station_id": self._on_station,
            "radius_km": self._on_radius,
            "price_change_threshold": self._on_threshold,
            "fuel_types": self._on_fuel,
            "daily_summary_time": self._on_time,
        }[step.key]
        return await handler(action, value, message, context)

    def _interpret_text(self, text: str) -> tuple[str, str | None]:
        """Map a typed answer to the same (action, value) shape as a payload."""
        stripped = text.strip()
        lowered = stripped.lower()
        if lowered in CANCEL_WORDS:
            return "cancel", None
        if lowered in BACK_WORDS:
            return "back", None
        if lowered.startswith("/"):
            command = lowered[1:].split("@", 1)[0].split(maxsplit=1)[0] if len(lowered) > 1 else ""
            if command in ("configurar", "config"):
                return "restart", None
            return "command", stripped
        return "text", stripped

    async def _advance(self, context: CommandContext, key: str, value: Any) -> CommandResult:
        context.wizards.advance(context.session, {key: value})
        return await self.render(context)

    async def _on_station(
        self, action: str, value: str | None, message: InboundMessage, context: CommandContext
    ) -> CommandResult:
        if action not in ("station", "text") or not value:
            return await self.render(context, notice=INVALID_OPTION)

        stations = await context.prices.get_user_stations(message.user_key)
        wanted = value.lower()
        for station in stations:
            names = {station.station_id.lower(), station.name.lower()}
            if station.alias:
                names.add(station.alias.lower())
            if wanted in names:
                return await self._advance(context, "station_id", station.station_id)

        logger.debug(f"Station {value!r} is not registered for {message.user_key}")
        return await self.render(context, notice=INVALID_OPTION, stations=stations)

    async def _on_radius(
        self, action: str, value: str | None, message: InboundMessage, context: CommandContext
    ) -> CommandResult:
        radius = _parse_int(value) if action in ("radius", "text") and value else None
        if radius not in RADIUS_OPTIONS:
            return await self.render(context, notice=INVALID_OPTION)
        return await self._advance(context, "radius_km", radius)

    async def _on_threshold(
        self, action: str, value: str | None, message: InboundMessage, context: CommandContext
    ) -> CommandResult:
        if action == "text" and value and normalize(value) in ("sin alertas", "ninguno", "no"):
            value = "0"
        threshold = _parse_int(value) if action in ("threshold", "text") and value else None
        if threshold not in THRESHOLD_OPTIONS:
            return await self.render(context, notice=INVALID_OPTION)
        return await self._advance(context, "price_change_threshold", threshold)

    async def _on_fuel(
        self, action: str, value: str | None, message: InboundMessage, context: CommandContext
    ) -> CommandResult:
        session = context.session
        done = action == "fuel_done" or (action == "text" and value and value.lower() in DONE_WORDS)
        if done:
            selection = list(session.active_wizard.data.get("fuel_types", FUEL_TYPES))
            return await self._advance(context, "fuel_types", selection)

        fuel = _parse_fuel(value) if action in ("fuel", "text") and value else None
        if fuel is None:
            return await self.render(context, notice=INVALID_OPTION)
        context.wizards.toggle_selection(session, "fuel_types", fuel, default=FUEL_TYPES)
        return await self.render(context)

    async def _on_time(
        self, action: str, value: str | None, message: InboundMessage, context: CommandContext
    ) -> CommandResult:
        summary_time = _parse_time(value) if action in ("time", "text") and value else None
        if summary_time is None:
            return await self.render(context, notice=INVALID_OPTION)

        data = {**context.session.active_wizard.data, "daily_summary_time": summary_time}
        prefs = build_preferences(data)
        try:
            await context.prices.save_notification_preferences(message.user_key, prefs)
        except TransientStoreError as e:
            # Wizard stays on the last step so the user can retry
            logger.warning(f"Could not save preferences for {message.user_key}: {e}")
            return await self.render(context, notice=SAVE_FAILED)

        context.wizards.complete(context.session, {"daily_summary_time": summary_time})
        stations = await context.prices.get_user_stations(message.user_key)
        station_name = next(
            (s.label for s in stations if s.station_id == prefs["primary_station_id"]),
            prefs["primary_station_id"],
        )
        return CommandResult(response=format_summary(prefs, station_name))


def build_preferences(data: dict[str, Any]) -> dict[str, Any]:
    """Translate wizard data into the stored preference record."""
    summary_time = data.get("daily_summary_time")
    return {
        "primary_station_id": data["station_id"],
        "alert_radius_km": data["radius_km"],
        "price_change_threshold": data["price_change_threshold"],
        "fuel_types": list(data["fuel_types"]),
        "daily_summary_time": None if summary_time in (None, "none") else summary_time,
        "telegram_enabled": True,
    }


def format_summary(prefs: dict[str, Any], station_name: str) -> str:
    threshold = prefs["price_change_threshold"]
    fuels = ", ".join(FUEL_LABELS.get(f, f.title()) for f in prefs["fuel_types"])
    return "\n".join(
        [
            "✅ Configuración Guardada",
            "",
            f"📍 Estación principal: {station_name}",
            f"📏 Radio de monitoreo: {prefs['alert_radius_km']} km",
            f"🎯 Umbral de alerta: {f'{threshold}%' if threshold > 0 else 'Sin alertas'}",
            f"⛽ Combustibles: {fuels}",
            f"⏰ Resumen diario: {prefs['daily_summary_time'] or 'Desactivado'}",
        ]
    )
