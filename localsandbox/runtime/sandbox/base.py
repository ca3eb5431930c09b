"""Sandbox provider interface shared with the agent orchestrator."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from .models import ExecutionResult


@runtime_checkable
class SandboxCommands(Protocol):
    async def run(
        self,
        command: str,
        *,
        timeout_ms: int | None = None,
        background: bool = False,
        on_stdout: Callable[[str], Any] | None = None,
        on_stderr: Callable[[str], Any] | None = None,
    ) -> ExecutionResult:
        ...


@runtime_checkable
class SandboxInstance(Protocol):
    sandbox_id: str

    @property
    def commands(self) -> SandboxCommands:
        ...

    async def read_file(self, path: str) -> str:
        ...

    async def write_file(self, path: str, content: str | bytes) -> None:
        ...

    async def kill(self) -> None:
        ...

    async def pause(self) -> None:
        ...

    async def get_host(self, port: int) -> str:
        ...


@runtime_checkable
class SandboxProvider(Protocol):
    async def create(
        self,
        envs: dict[str, str] | None = None,
        agent_type: str | None = None,
        workdir: str | None = None,
    ) -> SandboxInstance:
        ...

    async def resume(self, sandbox_id: str) -> SandboxInstance:
        ...
