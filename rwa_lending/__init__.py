"""Collateralized loan origination engine for tokenized real-world assets."""

__version__ = "0.1.0"
