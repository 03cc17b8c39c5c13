"""Generic multi-step dialog state machine.

A wizard is an ordered table of steps. The engine only sequences them:
what a step means, and what happens with the collected data, belongs to the
WizardHandler driving it.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from fuelintel.core.errors import (
    InvalidWizardTransitionError,
    NoActiveWizardError,
    UnknownWizardError,
    WizardAlreadyActiveError,
)
from fuelintel.model.session import ConversationSession, WizardState, utcnow

if TYPE_CHECKING:
    from fuelintel.channels.base import InboundMessage
    from fuelintel.commands.base import CommandContext, CommandResult

logger = logging.getLogger(__name__)

DEFAULT_WIZARD_TTL = timedelta(seconds=300)


class StepKind(StrEnum):
    """How a step collects its value."""

    CHOICE = "choice"
    MULTI_SELECT = "multi_select"
    TEXT = "text"


@dataclass(frozen=True)
class WizardStep:
    """One step of a wizard.

    Attributes:
        key: Name under which the step's value is stored in the wizard data.
        prompt: Question shown to the user.
        kind: How the value is collected.
        options: Allowed values for choice and multi-select steps.
    """

    key: str
    prompt: str
    kind: StepKind = StepKind.CHOICE
    options: tuple[Any, ...] = ()


@dataclass(frozen=True)
class WizardDefinition:
    """Named, ordered step table."""

    name: str
    steps: tuple[WizardStep, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError(f"Wizard '{self.name}' has no steps")
        keys = [step.key for step in self.steps]
        if len(set(keys)) != len(keys):
            raise ValueError(f"Wizard '{self.name}' has duplicate step keys")

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def step(self, number: int) -> WizardStep:
        """Step by 1-based number.

        Raises:
            InvalidWizardTransitionError: If the number is out of range.
        """
        if not 1 <= number <= self.total_steps:
            raise InvalidWizardTransitionError(f"Wizard '{self.name}' has no step {number}")
        return self.steps[number - 1]

    def step_number(self, key: str) -> int:
        for index, step in enumerate(self.steps, start=1):
            if step.key == key:
                return index
        raise KeyError(key)


class WizardEngine:
    """Sequences wizard steps on a ConversationSession.

    Every operation works on the session's ``active_wizard``; the engine
    itself is stateless apart from its definitions, so one instance serves
    all users.

    Args:
        definitions: Wizard definitions to register.
        ttl: Time after which an unfinished wizard is abandoned.
    """

    def __init__(self, definitions: Iterable[WizardDefinition] = (), ttl: timedelta = DEFAULT_WIZARD_TTL):
        self.ttl = ttl
        self._definitions: dict[str, WizardDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: WizardDefinition) -> None:
        self._definitions[definition.name] = definition

    def definition(self, wizard_name: str) -> WizardDefinition:
        """Definition by name.

        Raises:
            UnknownWizardError: If no wizard has that name.
        """
        try:
            return self._definitions[wizard_name]
        except KeyError:
            raise UnknownWizardError(f"Unknown wizard: {wizard_name}") from None

    def _require_active(self, session: ConversationSession) -> tuple[WizardState, WizardDefinition]:
        state = session.active_wizard
        if state is None:
            raise NoActiveWizardError(f"No active wizard for {session.user_key}")
        return state, self.definition(state.wizard_id)

    def start(self, session: ConversationSession, wizard_name: str, now: datetime | None = None) -> WizardState:
        """Start a wizard at step 1 with empty data.

        Restarting the wizard that is already active resets it.

        Raises:
            UnknownWizardError: If the wizard is not registered.
            WizardAlreadyActiveError: If a different wizard is active.
        """
        self.definition(wizard_name)
        current = session.active_wizard
        if current is not None and current.wizard_id != wizard_name:
            raise WizardAlreadyActiveError(
                f"Wizard '{current.wizard_id}' is active; cancel it before starting '{wizard_name}'"
            )

        now = now or utcnow()
        session.active_wizard = WizardState(wizard_id=wizard_name, started_at=now)
        session.touch(now)
        logger.debug(f"Started wizard '{wizard_name}' for {session.user_key}")
        return session.active_wizard

    def advance(self, session: ConversationSession, step_data: dict[str, Any] | None = None) -> WizardState:
        """Merge step data and move to the next step.

        Raises:
            NoActiveWizardError: If no wizard is active.
            InvalidWizardTransitionError: At the last step; call complete() instead.
        """
        state, definition = self._require_active(session)
        if state.current_step >= definition.total_steps:
            raise InvalidWizardTransitionError(
                f"Wizard '{definition.name}' is at its last step; complete it instead"
            )
        state.data.update(step_data or {})
        state.current_step += 1
        session.touch()
        return state

    def back(self, session: ConversationSession) -> WizardState:
        """Go back one step, never below 1. Collected data is kept.

        Raises:
            NoActiveWizardError: If no wizard is active.
        """
        state, _ = self._require_active(session)
        state.current_step = max(1, state.current_step - 1)
        session.touch()
        return state

    def go_to(self, session: ConversationSession, step_number: int) -> WizardState:
        """Jump back to an earlier step. Collected data is kept.

        Raises:
            NoActiveWizardError: If no wizard is active.
            InvalidWizardTransitionError: If the step is not an earlier or current one.
        """
        state, definition = self._require_active(session)
        definition.step(step_number)
        if step_number > state.current_step:
            raise InvalidWizardTransitionError(f"Cannot skip ahead to step {step_number}")
        state.current_step = step_number
        session.touch()
        return state

    def cancel(self, session: ConversationSession) -> bool:
        """Drop the active wizard without side effects.

        Returns:
            True if a wizard was active.
        """
        if session.active_wizard is None:
            return False
        logger.debug(f"Cancelled wizard '{session.active_wizard.wizard_id}' for {session.user_key}")
        session.active_wizard = None
        session.touch()
        return True

    def complete(self, session: ConversationSession, step_data: dict[str, Any] | None = None) -> dict[str, Any]:
        """Finish the wizard and hand back everything collected.

        Args:
            session: Session with an active wizard.
            step_data: Data from the final step, merged before returning.

        Returns:
            The accumulated data; applying it is the caller's job.

        Raises:
            NoActiveWizardError: If no wizard is active.
        """
        state, _ = self._require_active(session)
        data = {**state.data, **(step_data or {})}
        session.active_wizard = None
        session.touch()
        return data

    def is_timed_out(self, session: ConversationSession, now: datetime | None = None) -> bool:
        """True when an active wizard is older than the TTL."""
        state = session.active_wizard
        if state is None:
            return False
        now = now or utcnow()
        return now - state.started_at > self.ttl

    def toggle_selection(
        self,
        session: ConversationSession,
        field_key: str,
        item: Any,
        default: Iterable[Any] = (),
    ) -> list[Any]:
        """Toggle an item in a multi-select field.

        The field starts from ``default`` when unset. Removing the only
        selected item re-adds it: the selection is never empty, so the user
        can always continue.

        Returns:
            The selection after toggling.

        Raises:
            NoActiveWizardError: If no wizard is active.
        """
        state, _ = self._require_active(session)
        selection = list(state.data.get(field_key, list(default)))
        if item in selection:
            selection.remove(item)
            if not selection:
                selection = [item]
        else:
            selection.append(item)
        state.data[field_key] = selection
        session.touch()
        return selection

    def current_step_definition(self, session: ConversationSession) -> WizardStep:
        """Step awaiting input.

        Raises:
            NoActiveWizardError: If no wizard is active.
        """
        state, definition = self._require_active(session)
        return definition.step(state.current_step)


class WizardHandler(ABC):
    """Drives one wizard definition: renders steps and interprets input."""

    @property
    @abstractmethod
    def definition(self) -> WizardDefinition:
        """Step table this handler drives."""
        ...

    @abstractmethod
    async def start(self, message: "InboundMessage", context: "CommandContext") -> "CommandResult":
        """Start the wizard and show its first step."""
        ...

    @abstractmethod
    async def handle_input(self, message: "InboundMessage", context: "CommandContext") -> "CommandResult":
        """Process one button press or text reply for the active step."""
        ...
