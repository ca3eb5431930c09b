"""Tests for the sandbox provider facade."""

from __future__ import annotations

import json
import re
from pathlib import Path

import pytest

from localsandbox.runtime.sandbox.base import SandboxCommands, SandboxInstance, SandboxProvider
from localsandbox.runtime.sandbox.provider import (
    LocalSandboxProvider,
    _base36,
    create_local_provider,
    new_sandbox_id,
)
from localsandbox.runtime.state.local_config import LocalConfig, LocalConfigStore

from .conftest import FakeEngine


class TestSandboxIds:
    def test_format(self) -> None:
        assert re.fullmatch(r"local-claude-[0-9a-z]+-[0-9a-f]{6}", new_sandbox_id("claude"))

    def test_default_agent(self) -> None:
        assert new_sandbox_id(None).startswith("local-default-")

    def test_unique(self) -> None:
        assert len({new_sandbox_id("codex") for _ in range(50)}) == 50

    def test_base36(self) -> None:
        assert _base36(0) == "0"
        assert _base36(35) == "z"
        assert _base36(36) == "10"
        assert int(_base36(1_700_000_000_000), 36) == 1_700_000_000_000


class TestProvider:
    @pytest.mark.asyncio
    async def test_create_is_lazy(self, fake_engine: FakeEngine) -> None:
        provider = LocalSandboxProvider(LocalConfig(), engine=fake_engine)
        sandbox = await provider.create(envs={"A": "1"}, agent_type="gemini")
        assert sandbox.sandbox_id.startswith("local-gemini-")
        assert sandbox.agent_type == "gemini"
        assert sandbox.envs == {"A": "1"}
        assert sandbox.workdir == "/workspace"
        assert sandbox.is_running
        assert fake_engine.calls == []

    @pytest.mark.asyncio
    async def test_custom_workdir(self, fake_engine: FakeEngine) -> None:
        provider = LocalSandboxProvider(LocalConfig(), engine=fake_engine)
        sandbox = await provider.create(workdir="/home/agent")
        assert sandbox.workdir == "/home/agent"

    @pytest.mark.asyncio
    async def test_workdir_from_settings(self, fake_engine: FakeEngine) -> None:
        from localsandbox.runtime.config import cfg

        cfg.write_env(SANDBOX_WORKDIR="/code")
        sandbox = await LocalSandboxProvider(LocalConfig(), engine=fake_engine).create()
        assert sandbox.workdir == "/code"

    @pytest.mark.asyncio
    async def test_resume_returns_new_instance(self, fake_engine: FakeEngine) -> None:
        provider = LocalSandboxProvider(LocalConfig(), engine=fake_engine)
        first = await provider.create(agent_type="claude")
        resumed = await provider.resume(first.sandbox_id)
        assert resumed.sandbox_id != first.sandbox_id
        assert resumed.agent_type is None

    @pytest.mark.asyncio
    async def test_list_environments_empty(self, fake_engine: FakeEngine) -> None:
        provider = LocalSandboxProvider(LocalConfig(), engine=fake_engine)
        await provider.create()
        assert await provider.list_environments() == []

    def test_config_loaded_from_store(self, data_dir: Path, fake_engine: FakeEngine) -> None:
        (data_dir / "local_sandbox.json").write_text(json.dumps({"dockerHubUser": "alice"}))
        provider = LocalSandboxProvider(engine=fake_engine)
        assert provider.config.docker_hub_user == "alice"

    def test_reload_config(self, data_dir: Path, fake_engine: FakeEngine) -> None:
        provider = LocalSandboxProvider(engine=fake_engine)
        assert provider.config.prefer_registry_images is False
        LocalConfigStore().update(prefer_registry_images=True)
        assert provider.config.prefer_registry_images is False
        assert provider.reload_config().prefer_registry_images is True

    def test_explicit_config_is_used(self, fake_engine: FakeEngine) -> None:
        config = LocalConfig(docker_hub_user="bob")
        assert LocalSandboxProvider(config, engine=fake_engine).config is config

    def test_create_local_provider(self, fake_engine: FakeEngine) -> None:
        provider = create_local_provider(LocalConfig(), engine=fake_engine)
        assert isinstance(provider, LocalSandboxProvider)

    @pytest.mark.asyncio
    async def test_satisfies_sandbox_interfaces(self, fake_engine: FakeEngine) -> None:
        provider = LocalSandboxProvider(LocalConfig(), engine=fake_engine)
        sandbox = await provider.create()
        assert isinstance(provider, SandboxProvider)
        assert isinstance(sandbox, SandboxInstance)
        assert isinstance(sandbox.commands, SandboxCommands)
