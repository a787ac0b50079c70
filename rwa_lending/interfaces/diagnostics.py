"""Diagnostics sink protocol: a structured trace of engine decisions."""
from typing import Any, Protocol


class DiagnosticsSink(Protocol):
    """Receives every engine event; the host decides whether to render them."""

    def record(self, event: str, **fields: Any) -> None: ...
