"""Local sandbox instance -- one long-lived logical container for an agent."""

from __future__ import annotations

import asyncio
import logging

from ..errors import SandboxClosedError
from .base_container import BaseContainerCache
from .engine import DockerEngine
from .executor import CommandExecutor
from .images import ImageResolver
from .snapshot import WorkspaceSnapshotStore
from .streaming import EventChannel, StreamingAdapter, Subscription

logger = logging.getLogger(__name__)


class LocalSandboxInstance:
    """Emulates a persistent container on top of immutable images.

    The base image is resolved on first use; the working directory travels
    between commands as a snapshot.  File and command operations on one
    instance are serialised by ``workspace_lock``.
    """

    def __init__(
        self,
        sandbox_id: str,
        *,
        resolver: ImageResolver,
        engine: DockerEngine,
        workdir: str,
        agent_type: str | None = None,
        envs: dict[str, str] | None = None,
        event_queue_size: int | None = None,
        stream_delay_ms: int | None = None,
        stream_delay_step_ms: int | None = None,
    ) -> None:
        self.sandbox_id = sandbox_id
        self.agent_type = agent_type
        self.envs: dict[str, str] = dict(envs or {})
        self.workdir = workdir
        self.engine = engine
        self.base_cache = BaseContainerCache(
            resolver, engine, agent_type, self.envs, owner=sandbox_id,
        )
        self.snapshots = WorkspaceSnapshotStore(workdir)
        self.workspace_lock = asyncio.Lock()
        self.events = EventChannel(event_queue_size)
        self._running = True
        self._commands = CommandExecutor(
            self,
            StreamingAdapter(
                self.events, delay_ms=stream_delay_ms, step_ms=stream_delay_step_ms,
            ),
        )

    def __repr__(self) -> str:
        state = "running" if self._running else "killed"
        return f"<LocalSandboxInstance {self.sandbox_id} {state}>"

    @property
    def commands(self) -> CommandExecutor:
        return self._commands

    @property
    def is_running(self) -> bool:
        return self._running

    def ensure_running(self) -> None:
        if not self._running:
            raise SandboxClosedError(self.sandbox_id)

    def subscribe(self, *names: str, maxsize: int | None = None) -> Subscription:
        """Subscribe to ``"update"`` and/or ``"error"`` events (both by default)."""
        self.ensure_running()
        return self.events.subscribe(*names, maxsize=maxsize)

    # -- files -------------------------------------------------------------

    async def read_file(self, path: str) -> str:
        self.ensure_running()
        base = await self.base_cache.ensure_ready()
        async with self.workspace_lock:
            self.ensure_running()
            data = await asyncio.to_thread(
                self.engine.read_file, base, self.snapshots.current, self.workdir, path,
            )
            self.ensure_running()
        return data.decode("utf-8", errors="replace")

    async def write_file(self, path: str, content: str | bytes) -> None:
        self.ensure_running()
        base = await self.base_cache.ensure_ready()
        data = content.encode("utf-8") if isinstance(content, str) else content
        async with self.workspace_lock:
            self.ensure_running()
            archive = await asyncio.to_thread(
                self.engine.write_file, base, self.snapshots.current, self.workdir, path, data,
            )
            # Killed mid-write: the archive must not resurrect the workspace.
            self.ensure_running()
            self.snapshots.replace(archive)
        logger.info("[sandbox.file] sandbox=%s wrote %s (%d bytes)", self.sandbox_id, path, len(data))

    # -- lifecycle ---------------------------------------------------------

    async def kill(self) -> None:
        """Drop every in-memory reference; safe to call more than once."""
        if not self._running:
            return
        self._running = False
        self.snapshots.clear()
        self.base_cache.clear()
        self.events.close()
        logger.info("[sandbox.kill] sandbox=%s", self.sandbox_id)

    async def pause(self) -> None:
        self.ensure_running()

    async def get_host(self, port: int) -> str:
        self.ensure_running()
        return "localhost"
