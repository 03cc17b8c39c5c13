"""Tests for the generic wizard state machine."""

from datetime import UTC, datetime, timedelta

import pytest

from fuelintel.core.errors import (
    InvalidWizardTransitionError,
    NoActiveWizardError,
    UnknownWizardError,
    WizardAlreadyActiveError,
)
from fuelintel.model.session import ConversationSession
from fuelintel.wizard.engine import StepKind, WizardDefinition, WizardEngine, WizardStep

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

SURVEY = WizardDefinition(
    name="survey",
    steps=(
        WizardStep("color", "Color?", options=("rojo", "verde")),
        WizardStep("toppings", "Toppings?", kind=StepKind.MULTI_SELECT, options=("a", "b", "c")),
        WizardStep("comment", "Comment?", kind=StepKind.TEXT),
    ),
)
OTHER = WizardDefinition(name="other", steps=(WizardStep("x", "X?"),))


@pytest.fixture
def engine() -> WizardEngine:
    return WizardEngine([SURVEY, OTHER], ttl=timedelta(seconds=300))


@pytest.fixture
def session() -> ConversationSession:
    return ConversationSession(user_key="telegram:42")


class TestDefinition:
    """Step table validation."""

    def test_empty_definition_rejected(self):
        with pytest.raises(ValueError):
            WizardDefinition(name="empty", steps=())

    def test_duplicate_keys_rejected(self):
        with pytest.raises(ValueError):
            WizardDefinition(name="dup", steps=(WizardStep("a", "A"), WizardStep("a", "B")))

    def test_step_lookup(self):
        assert SURVEY.total_steps == 3
        assert SURVEY.step(2).key == "toppings"
        assert SURVEY.step_number("comment") == 3
        with pytest.raises(InvalidWizardTransitionError):
            SURVEY.step(4)


class TestTransitions:
    """start/advance/back/go_to/cancel/complete."""

    def test_start(self, engine: WizardEngine, session: ConversationSession):
        state = engine.start(session, "survey", now=T0)

        assert state.wizard_id == "survey"
        assert state.current_step == 1
        assert state.data == {}
        assert state.started_at == T0

    def test_start_unknown(self, engine: WizardEngine, session: ConversationSession):
        with pytest.raises(UnknownWizardError):
            engine.start(session, "nope")

    def test_start_while_other_active(self, engine: WizardEngine, session: ConversationSession):
        engine.start(session, "survey")
        with pytest.raises(WizardAlreadyActiveError):
            engine.start(session, "other")

    def test_restart_same_wizard_resets(self, engine: WizardEngine, session: ConversationSession):
        engine.start(session, "survey")
        engine.advance(session, {"color": "rojo"})

        state = engine.start(session, "survey")
        assert state.current_step == 1
        assert state.data == {}

    def test_advance_accumulates(self, engine: WizardEngine, session: ConversationSession):
        engine.start(session, "survey")
        engine.advance(session, {"color": "rojo"})
        state = engine.advance(session, {"toppings": ["a"]})

        assert state.current_step == 3
        assert state.data == {"color": "rojo", "toppings": ["a"]}

    def test_advance_past_last_step(self, engine: WizardEngine, session: ConversationSession):
        engine.start(session, "other")
        with pytest.raises(InvalidWizardTransitionError):
            engine.advance(session, {"x": 1})

    def test_back_keeps_data_and_floors_at_one(self, engine: WizardEngine, session: ConversationSession):
        engine.start(session, "survey")
        engine.advance(session, {"color": "rojo"})

        assert engine.back(session).current_step == 1
        assert engine.back(session).current_step == 1
        assert session.active_wizard.data == {"color": "rojo"}

    def test_go_to(self, engine: WizardEngine, session: ConversationSession):
        engine.start(session, "survey")
        engine.advance(session, {"color": "rojo"})
        engine.advance(session, {"toppings": ["a"]})

        assert engine.go_to(session, 1).current_step == 1
        with pytest.raises(InvalidWizardTransitionError):
            engine.go_to(session, 3)
        with pytest.raises(InvalidWizardTransitionError):
            engine.go_to(session, 0)

    def test_cancel(self, engine: WizardEngine, session: ConversationSession):
        engine.start(session, "survey")
        assert engine.cancel(session) is True
        assert session.active_wizard is None
        assert engine.cancel(session) is False

    def test_complete_returns_all_data(self, engine: WizardEngine, session: ConversationSession):
        engine.start(session, "survey")
        engine.advance(session, {"color": "verde"})
        engine.advance(session, {"toppings": ["b"]})

        data = engine.complete(session, {"comment": "bien"})

        assert data == {"color": "verde", "toppings": ["b"], "comment": "bien"}
        assert session.active_wizard is None

    def test_operations_need_active_wizard(self, engine: WizardEngine, session: ConversationSession):
        with pytest.raises(NoActiveWizardError):
            engine.advance(session)
        with pytest.raises(NoActiveWizardError):
            engine.complete(session)
        with pytest.raises(NoActiveWizardError):
            engine.current_step_definition(session)


class TestTimeoutAndSelection:
    """Abandonment and multi-select toggling."""

    def test_timeout(self, engine: WizardEngine, session: ConversationSession):
        assert not engine.is_timed_out(session, T0)
        engine.start(session, "survey", now=T0)

        assert not engine.is_timed_out(session, T0 + timedelta(seconds=300))
        assert engine.is_timed_out(session, T0 + timedelta(seconds=301))

    def test_toggle_from_default(self, engine: WizardEngine, session: ConversationSession):
        engine.start(session, "survey")
        engine.advance(session, {"color": "rojo"})

        assert engine.toggle_selection(session, "toppings", "b", default=("a", "b", "c")) == ["a", "c"]
        assert engine.toggle_selection(session, "toppings", "b") == ["a", "c", "b"]

    def test_toggle_never_empties(self, engine: WizardEngine, session: ConversationSession):
        engine.start(session, "survey")
        engine.toggle_selection(session, "toppings", "a")

        assert engine.toggle_selection(session, "toppings", "a") == ["a"]
        assert session.active_wizard.data["toppings"] == ["a"]

    def test_current_step_definition(self, engine: WizardEngine, session: ConversationSession):
        engine.start(session, "survey")
        engine.advance(session, {"color": "rojo"})
        assert engine.current_step_definition(session).kind == StepKind.MULTI_SELECT
