"""Data models for local sandbox interactions."""

from __future__ import annotations

import enum
import json
import time
from dataclasses import dataclass, field
from typing import Any

AGENT_TYPES: tuple[str, ...] = ("claude", "codex", "opencode", "gemini", "grok")


class ImageSource(enum.Enum):
    registry = "registry"
    build = "build"
    fallback = "fallback"


class EventType(enum.Enum):
    start = "start"
    update = "update"
    error = "error"
    end = "end"


@dataclass(frozen=True)
class ExecutionResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        return {"exitCode": self.exit_code, "stdout": self.stdout, "stderr": self.stderr}


@dataclass(frozen=True)
class ImageResolution:
    source: ImageSource
    image: str
    cached: bool = False


@dataclass(frozen=True)
class BaseContainer:
    """Resolved image plus the instance environment; never mutated once ready."""

    image: str
    source: ImageSource
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkspaceSnapshot:
    archive: bytes
    sequence: int
    captured_at: float

    @property
    def size(self) -> int:
        return len(self.archive)


@dataclass(frozen=True)
class SandboxEvent:
    type: EventType
    payload: str
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    @property
    def channel(self) -> str:
        """Subscription name the event is delivered under."""
        return "error" if self.type is EventType.error else "update"

    def json_payload(self) -> dict[str, Any] | None:
        """Decode structured (start/end) payloads; ``None`` for raw lines."""
        if self.type not in (EventType.start, EventType.end):
            return None
        return json.loads(self.payload)
