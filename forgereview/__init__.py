"""Forge-agnostic pull request backends with async orchestration."""

__version__ = "0.1.0"
