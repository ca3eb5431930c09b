"""Local sandbox provider -- create/resume entry point."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from ..config.settings import cfg
from ..state.local_config import LocalConfig, LocalConfigStore
from .engine import DockerEngine
from .images import ImageResolver
from .instance import LocalSandboxInstance

logger = logging.getLogger(__name__)

_ID_PREFIX = "local"
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    digits = ""
    while True:
        value, rem = divmod(value, 36)
        digits = _BASE36[rem] + digits
        if not value:
            return digits


def new_sandbox_id(agent_type: str | None) -> str:
    """``local-<agent>-<base36 ms>-<hex>``; the hex keeps same-ms ids apart."""
    stamp = _base36(int(time.time() * 1000))
    return f"{_ID_PREFIX}-{agent_type or 'default'}-{stamp}-{uuid.uuid4().hex[:6]}"


class LocalSandboxProvider:
    """Creates sandbox instances backed by the local Docker engine.

    Instances live only in process memory: nothing is registered, so
    ``resume`` cannot recover a previous instance and ``list_environments``
    is always empty.
    """

    def __init__(
        self,
        config: LocalConfig | None = None,
        *,
        engine: DockerEngine | None = None,
        config_store: LocalConfigStore | None = None,
        **instance_options: Any,
    ) -> None:
        self._store = config_store
        if config is None:
            self._store = self._store or LocalConfigStore()
            config = self._store.config
        self._config = config
        self._engine = engine or DockerEngine()
        self._instance_options = instance_options

    @property
    def config(self) -> LocalConfig:
        return self._config

    def reload_config(self) -> LocalConfig:
        """Re-read persisted configuration; affects instances created afterwards."""
        self._store = self._store or LocalConfigStore()
        self._config = self._store.reload()
        logger.info("[sandbox.provider] configuration reloaded from %s", self._store.path)
        return self._config

    async def create(
        self,
        envs: dict[str, str] | None = None,
        agent_type: str | None = None,
        workdir: str | None = None,
    ) -> LocalSandboxInstance:
        sandbox_id = new_sandbox_id(agent_type)
        instance = LocalSandboxInstance(
            sandbox_id,
            resolver=ImageResolver(self._config, self._engine),
            engine=self._engine,
            workdir=workdir or cfg.default_workdir,
            agent_type=agent_type,
            envs=envs,
            **self._instance_options,
        )
        logger.info(
            "[sandbox.provider] created %s agent=%s workdir=%s",
            sandbox_id, agent_type or "default", instance.workdir,
        )
        return instance

    async def resume(self, sandbox_id: str) -> LocalSandboxInstance:
        """Return a fresh default instance; no state from *sandbox_id* survives."""
        logger.warning(
            "[sandbox.provider] resume(%s): local sandboxes are not persisted; creating a new one",
            sandbox_id,
        )
        return await self.create()

    async def list_environments(self) -> list[Any]:
        return []


def create_local_provider(config: LocalConfig | None = None, **kwargs: Any) -> LocalSandboxProvider:
    return LocalSandboxProvider(config, **kwargs)
