"""Parley - automated conversational-agent testing across providers."""

__version__ = "0.1.0"
