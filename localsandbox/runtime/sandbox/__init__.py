"""Local sandbox engine -- persistent-looking containers on immutable images."""

from __future__ import annotations

from .engine import DockerEngine
from .executor import CommandExecutor, extract_exit_code
from .instance import LocalSandboxInstance
from .models import (
    AGENT_TYPES,
    BaseContainer,
    EventType,
    ExecutionResult,
    ImageResolution,
    ImageSource,
    SandboxEvent,
)
from .provider import LocalSandboxProvider, create_local_provider

__all__ = [
    "AGENT_TYPES",
    "BaseContainer",
    "CommandExecutor",
    "DockerEngine",
    "EventType",
    "ExecutionResult",
    "ImageResolution",
    "ImageSource",
    "LocalSandboxInstance",
    "LocalSandboxProvider",
    "SandboxEvent",
    "create_local_provider",
    "extract_exit_code",
]
