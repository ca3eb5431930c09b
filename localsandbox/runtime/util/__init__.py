"""Shared utilities."""

from .env_file import EnvFile
from .singletons import register_singleton, reset_all_singletons

__all__ = [
    "EnvFile",
    "register_singleton",
    "reset_all_singletons",
]
