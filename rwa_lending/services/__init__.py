"""Origination services."""
from .allowance import AllowanceOrchestrator
from .economics import LoanEconomicsCalculator
from .position_resolver import AssetPositionResolver
from .preflight import PreflightValidator
from .submitter import OriginationSubmitter
from .wizard import Draft, OriginationWizard, WizardState

__all__ = [
    "AllowanceOrchestrator",
    "AssetPositionResolver",
    "Draft",
    "LoanEconomicsCalculator",
    "OriginationSubmitter",
    "OriginationWizard",
    "PreflightValidator",
    "WizardState",
]
