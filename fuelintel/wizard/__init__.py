"""Multi-step dialogs."""

from fuelintel.wizard.configure import CONFIGURE_WIZARD, ConfigureWizard
from fuelintel.wizard.engine import StepKind, WizardDefinition, WizardEngine, WizardHandler, WizardStep

__all__ = [
    "CONFIGURE_WIZARD",
    "ConfigureWizard",
    "StepKind",
    "WizardDefinition",
    "WizardEngine",
    "WizardHandler",
    "WizardStep",
]
