"""Persisted runtime state."""

from .local_config import LocalConfig, LocalConfigStore

__all__ = ["LocalConfig", "LocalConfigStore"]
