"""Sync a local note vault into an AnythingLLM document store."""

__version__ = "0.1.0"
