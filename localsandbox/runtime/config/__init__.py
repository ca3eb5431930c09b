"""Runtime configuration."""

from .settings import cfg

__all__ = ["cfg"]
