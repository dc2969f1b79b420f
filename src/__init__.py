"""Crucible - hypothesis synthesis orchestrator."""

__version__ = "0.1.0"
