"""Off-chain display metadata resolution."""
from .resolver import HttpMetadataResolver, parse_token_uri

__all__ = ["HttpMetadataResolver", "parse_token_uri"]
