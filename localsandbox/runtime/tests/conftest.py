"""Shared pytest fixtures for localsandbox.runtime tests."""

from __future__ import annotations

import json
import posixpath
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from docker.errors import DockerException, ImageNotFound

from localsandbox.runtime.errors import ExecutionFailure
from localsandbox.runtime.sandbox.engine import EngineRun, resolve_path
from localsandbox.runtime.sandbox.models import BaseContainer, WorkspaceSnapshot

Handler = Callable[[dict[str, str], str], tuple[int, str, str]]


@pytest.fixture(autouse=True)
def _isolate_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setenv("LOCALSANDBOX_DATA_DIR", str(data_dir))
    monkeypatch.setenv("LOCALSANDBOX_PROJECT_ROOT", str(tmp_path))
    monkeypatch.setenv("DOTENV_PATH", str(tmp_path / ".env"))
    return data_dir


@pytest.fixture(autouse=True)
def _reset_singletons(_isolate_data_dir: Path):
    from localsandbox.runtime.util.singletons import reset_all_singletons

    reset_all_singletons()
    yield
    reset_all_singletons()


@pytest.fixture()
def data_dir(_isolate_data_dir: Path) -> Path:
    return _isolate_data_dir


@pytest.fixture()
def build_context(tmp_path: Path) -> Path:
    """Project root with an (initially empty) Dockerfile directory."""
    (tmp_path / "assets" / "dockerfiles").mkdir(parents=True)
    return tmp_path


def add_dockerfile(context: Path, agent_type: str) -> Path:
    path = context / "assets" / "dockerfiles" / f"Dockerfile.{agent_type}"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("FROM node:20-bookworm-slim\n")
    return path


# ---------------------------------------------------------------------------
# In-memory engine
# ---------------------------------------------------------------------------


def _files(snapshot: WorkspaceSnapshot | None) -> dict[str, str]:
    return json.loads(snapshot.archive) if snapshot is not None else {}


def _shell(files: dict[str, str], command: str) -> tuple[int, str, str]:
    """Just enough shell for the tests: echo, redirect, cat, ls, exit."""
    if command.startswith("exit "):
        return int(command.split()[1]), "", ""
    if command.startswith("echo "):
        text = command[len("echo "):]
        if " > " in text:
            text, _, name = text.partition(" > ")
            files[name.strip()] = text.strip("'\"") + "\n"
            return 0, "", ""
        return 0, text.strip("'\"") + "\n", ""
    if command.startswith("cat "):
        name = command[len("cat "):].strip()
        if name in files:
            return 0, files[name], ""
        return 1, "", f"cat: {name}: No such file or directory\n"
    if command == "ls":
        return 0, "".join(f"{name}\n" for name in sorted(files)), ""
    return 127, "", f"sh: 1: {command.split()[0]}: not found\n"


class FakeEngine:
    """Stands in for :class:`DockerEngine`; the workspace is a JSON dict.

    ``pullable=None`` lets every pull succeed; otherwise only the listed
    references can be pulled.
    """

    def __init__(
        self,
        *,
        local_images: set[str] | None = None,
        pullable: set[str] | None = None,
        build_fails: bool = False,
        push_fails: bool = False,
        connect_error: Exception | None = None,
        info: dict[str, Any] | None = None,
    ) -> None:
        self.local_images = set(local_images or ())
        self.pullable = pullable
        self.build_fails = build_fails
        self.push_fails = push_fails
        self.connect_error = connect_error
        self.info_data = info or {}
        self.handlers: dict[str, Handler] = {}
        self.calls: list[tuple[str, str]] = []
        self.runs: list[tuple[str, str, bool]] = []

    @contextmanager
    def connect(self) -> Iterator[MagicMock]:
        if self.connect_error is not None:
            raise self.connect_error
        yield MagicMock(name="docker-client")

    def image_present(self, client: Any, ref: str) -> bool:
        self.calls.append(("present", ref))
        return ref in self.local_images

    def pull(self, client: Any, ref: str) -> None:
        self.calls.append(("pull", ref))
        if self.pullable is not None and ref not in self.pullable:
            raise ImageNotFound(f"pull access denied for {ref}")
        self.local_images.add(ref)

    def build(self, client: Any, context: Path, dockerfile: str, tag: str) -> None:
        self.calls.append(("build", tag))
        if self.build_fails:
            raise DockerException(f"failed to build {dockerfile}")
        self.local_images.add(tag)

    def tag(self, client: Any, source: str, repository: str, tag: str = "latest") -> None:
        self.calls.append(("tag", f"{repository}:{tag}"))

    def push(self, client: Any, repository: str, tag: str = "latest") -> None:
        self.calls.append(("push", f"{repository}:{tag}"))
        if self.push_fails:
            raise DockerException("denied: requested access to the resource is denied")

    def info(self) -> dict[str, Any]:
        return dict(self.info_data)

    def run(
        self,
        base: BaseContainer,
        snapshot: WorkspaceSnapshot | None,
        workdir: str,
        command: str,
        *,
        check: bool = True,
    ) -> EngineRun:
        self.runs.append((base.image, command, check))
        files = _files(snapshot)
        code, stdout, stderr = self.handlers.get(command, _shell)(files, command)
        if check and code != 0:
            raise ExecutionFailure(
                f"Command '{command}' in image '{base.image}' returned non-zero "
                f"exit status {code}: {stderr}",
                code,
            )
        return EngineRun(code, stdout, stderr, json.dumps(files).encode())

    def read_file(
        self, base: BaseContainer, snapshot: WorkspaceSnapshot | None, workdir: str, path: str,
    ) -> bytes:
        name = posixpath.relpath(resolve_path(workdir, path), workdir)
        files = _files(snapshot)
        if name not in files:
            raise FileNotFoundError(resolve_path(workdir, path))
        return files[name].encode()

    def write_file(
        self,
        base: BaseContainer,
        snapshot: WorkspaceSnapshot | None,
        workdir: str,
        path: str,
        data: bytes,
    ) -> bytes:
        files = _files(snapshot)
        files[posixpath.relpath(resolve_path(workdir, path), workdir)] = data.decode()
        return json.dumps(files).encode()


@pytest.fixture()
def fake_engine() -> FakeEngine:
    return FakeEngine()
