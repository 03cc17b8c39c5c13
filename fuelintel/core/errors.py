"""Exception hierarchy for FuelIntel.

Errors fall into three groups that the message router treats differently:
user input problems (answered with a corrective message), external dependency
failures (answered with a fallback and logged as warnings) and invariant
violations (logged as errors and answered with a generic message).
"""


class FuelIntelError(Exception):
    """Base class for all FuelIntel errors."""


class CircuitOpenError(FuelIntelError):
    """Raised when a circuit breaker rejects a call without running it."""

    def __init__(self, name: str, retry_after: float = 0.0):
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{name}' is open; retry in {retry_after:.1f}s"
        )


class WizardError(FuelIntelError):
    """Base class for wizard state machine violations."""


class UnknownWizardError(WizardError):
    """Raised when starting a wizard that has no registered definition."""


class WizardAlreadyActiveError(WizardError):
    """Raised when starting a wizard while a different one is active."""


class NoActiveWizardError(WizardError):
    """Raised when a wizard transition is requested with no wizard active."""


class InvalidWizardTransitionError(WizardError):
    """Raised for transitions the step table does not allow."""


class StoreError(FuelIntelError):
    """Base class for persistent store collaborator failures."""


class TransientStoreError(StoreError):
    """The store is temporarily unavailable; the caller may retry later."""


class ClassifierError(FuelIntelError):
    """The external intent classifier returned an error or unusable payload."""
