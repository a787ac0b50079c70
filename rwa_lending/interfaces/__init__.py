"""Protocol interfaces for the loan origination engine."""
from .chain import LedgerClient
from .diagnostics import DiagnosticsSink
from .metadata import MetadataResolver
from .wallet import WalletProvider

__all__ = ["DiagnosticsSink", "LedgerClient", "MetadataResolver", "WalletProvider"]
