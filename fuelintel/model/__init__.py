"""Domain models."""

from fuelintel.model.session import ConversationContext, ConversationSession, HistoryEntry, WizardState

__all__ = ["ConversationContext", "ConversationSession", "HistoryEntry", "WizardState"]
