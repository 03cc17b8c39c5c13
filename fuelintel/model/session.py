"""Domain models for per-user conversation sessions."""

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

DEFAULT_CONTEXT_TTL = timedelta(seconds=300)
DEFAULT_HISTORY_SIZE = 5


def utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class WizardState:
    """Progress through one multi-step dialog.

    Attributes:
        wizard_id: Name of the wizard definition (e.g., "configurar").
        current_step: 1-based index of the step awaiting input.
        data: Values collected so far, keyed by step key.
        started_at: When the wizard was started; drives the abandonment timeout.
    """

    wizard_id: str
    started_at: datetime
    current_step: int = 1
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "wizard_id": self.wizard_id,
            "current_step": self.current_step,
            "data": self.data,
            "started_at": self.started_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WizardState":
        return cls(
            wizard_id=data["wizard_id"],
            current_step=int(data.get("current_step", 1)),
            data=dict(data.get("data") or {}),
            started_at=datetime.fromisoformat(data["started_at"]),
        )


@dataclass
class ConversationContext:
    """Short-lived memory of the last recognized intent and entities.

    ``last_intent`` and ``last_entities`` hold the context as it was before the
    most recent merge, which is what follow-up detection compares against.
    """

    updated_at: datetime
    intent: str | None = None
    entities: dict[str, Any] = field(default_factory=dict)
    confidence: float | None = None
    last_intent: str | None = None
    last_entities: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent,
            "entities": self.entities,
            "confidence": self.confidence,
            "last_intent": self.last_intent,
            "last_entities": self.last_entities,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationContext":
        return cls(
            intent=data.get("intent"),
            entities=dict(data.get("entities") or {}),
            confidence=data.get("confidence"),
            last_intent=data.get("last_intent"),
            last_entities=dict(data.get("last_entities") or {}),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass
class HistoryEntry:
    """One query/response exchange."""

    query: str
    response: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"query": self.query, "response": self.response, "timestamp": self.timestamp.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            query=data["query"],
            response=data["response"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class ConversationSession:
    """In-memory representation of one user's conversation state.

    Holds at most one active wizard, the conversational context used to resolve
    follow-up queries, and a short rolling history. Fields expire
    independently: the wizard through WizardEngine's timeout, the context
    through ``context_ttl``.

    Context expiry is strict: a context aged exactly ``context_ttl`` is still
    valid, one microsecond later it is expired.

    Example:
        >>> session = ConversationSession(user_key="telegram:42")
        >>> _ = session.merge_context("price_query", {"fuel_type": "premium"})
        >>> _ = session.merge_context(None, {"fuel_type": "regular"})
        >>> session.context.last_entities
        {'fuel_type': 'premium'}
    """

    user_key: str
    active_wizard: WizardState | None = None
    context: ConversationContext | None = None
    history: list[HistoryEntry] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    context_ttl: timedelta = field(default=DEFAULT_CONTEXT_TTL, compare=False)
    history_size: int = field(default=DEFAULT_HISTORY_SIZE, compare=False)

    def touch(self, now: datetime | None = None) -> None:
        self.updated_at = now or utcnow()

    # Conversational context

    def is_context_expired(self, now: datetime | None = None) -> bool:
        """Return True when there is no context or it outlived context_ttl."""
        if self.context is None:
            return True
        now = now or utcnow()
        return now - self.context.updated_at > self.context_ttl

    def clear_expired_context(self, now: datetime | None = None) -> bool:
        """Drop the context if expired. History and wizard state are untouched.

        Returns:
            True if a stored context was removed.
        """
        if self.context is not None and self.is_context_expired(now):
            self.context = None
            self.touch(now)
            return True
        return False

    def current_context(self, now: datetime | None = None) -> ConversationContext | None:
        """Context as readers should see it: None once expired."""
        return None if self.is_context_expired(now) else self.context

    def merge_context(
        self,
        intent: str | None,
        entities: dict[str, Any] | None = None,
        confidence: float | None = None,
        now: datetime | None = None,
    ) -> ConversationContext:
        """Merge a newly recognized intent and entities into the context.

        New values win on conflict. Entities are a shallow union where new keys
        override old keys of the same name. The context as it was before this
        merge is preserved under ``last_intent`` and ``last_entities``; those
        two fields cannot be overwritten by the caller.

        Args:
            intent: Newly recognized intent, or None to keep the current one.
            entities: Newly extracted entities.
            confidence: Classification confidence.
            now: Merge time (defaults to the current UTC time).

        Returns:
            The merged context now stored on the session.
        """
        now = now or utcnow()
        previous = self.current_context(now)
        new_entities = dict(entities or {})

        if previous is None:
            merged = ConversationContext(
                updated_at=now,
                intent=intent,
                entities=new_entities,
                confidence=confidence,
            )
        else:
            merged = ConversationContext(
                updated_at=now,
                intent=intent if intent is not None else previous.intent,
                entities={**previous.entities, **new_entities},
                confidence=confidence if confidence is not None else previous.confidence,
                last_intent=previous.intent,
                last_entities=copy.deepcopy(previous.entities),
            )

        self.context = merged
        self.touch(now)
        return merged

    # History

    def add_to_history(self, query: str, response: str, now: datetime | None = None) -> None:
        """Append an exchange, keeping only the most recent ``history_size``."""
        now = now or utcnow()
        self.history.append(HistoryEntry(query=query, response=response, timestamp=now))
        if len(self.history) > self.history_size:
            del self.history[: len(self.history) - self.history_size]
        self.touch(now)

    def recent_queries(self, limit: int) -> list[str]:
        if limit <= 0:
            return []
        return [entry.query for entry in self.history[-limit:]]

    # Serialization

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "user_key": self.user_key,
            "active_wizard": self.active_wizard.to_dict() if self.active_wizard else None,
            "context": self.context.to_dict() if self.context else None,
            "history": [entry.to_dict() for entry in self.history],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        context_ttl: timedelta = DEFAULT_CONTEXT_TTL,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> "ConversationSession":
        """Rebuild a session from to_dict() output.

        Raises:
            KeyError, TypeError, ValueError, AttributeError: If the payload is malformed.
        """
        wizard = data.get("active_wizard")
        context = data.get("context")
        session = cls(
            user_key=data["user_key"],
            active_wizard=WizardState.from_dict(wizard) if wizard else None,
            context=ConversationContext.from_dict(context) if context else None,
            history=[HistoryEntry.from_dict(entry) for entry in data.get("history") or []],
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
            context_ttl=context_ttl,
            history_size=history_size,
        )
        # Payloads written with a larger history_size are trimmed on load
        if len(session.history) > history_size:
            session.history = session.history[-history_size:]
        return session

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the persisted state, for rolling back a failed turn."""
        return copy.deepcopy(self.to_dict())

    def restore(self, snapshot: dict[str, Any]) -> None:
        """Reset every persisted field to a previous snapshot()."""
        restored = ConversationSession.from_dict(
            snapshot, context_ttl=self.context_ttl, history_size=self.history_size
        )
        self.active_wizard = restored.active_wizard
        self.context = restored.context
        self.history = restored.history
        self.created_at = restored.created_at
        self.updated_at = restored.updated_at
