"""Metadata resolver protocol for off-chain display documents."""
from typing import Protocol

from ..models import DisplayMetadata


class MetadataResolver(Protocol):
    """Abstract interface for turning a token URI into display metadata."""

    async def resolve(self, uri: str) -> DisplayMetadata: ...
