"""Diagnostics sinks for origination events."""
from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class LoggingDiagnostics:
    """Write every event to the module logger at DEBUG level."""

    def __init__(self, level: int = logging.DEBUG) -> None:
        self.level = level

    def record(self, event: str, **fields: Any) -> None:
        if fields:
            details = " ".join(f"{k}={v!r}" for k, v in sorted(fields.items()))
            logger.log(self.level, "%s %s", event, details)
        else:
            logger.log(self.level, "%s", event)


class CollectingDiagnostics:
    """Keep events in memory, e.g. for a host UI or for tests."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def record(self, event: str, **fields: Any) -> None:
        self.events.append((event, dict(fields)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def last(self, event: str) -> dict[str, Any] | None:
        for name, fields in reversed(self.events):
            if name == event:
                return fields
        return None
