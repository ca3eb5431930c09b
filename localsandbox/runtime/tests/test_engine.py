"""Tests for the Docker engine adapter against a mocked SDK client."""

from __future__ import annotations

import io
import tarfile
from unittest.mock import MagicMock, call, patch

import pytest
from docker.errors import DockerException, ImageNotFound, NotFound

from localsandbox.runtime.errors import ExecutionFailure
from localsandbox.runtime.sandbox.engine import (
    CONTAINER_LABEL,
    DockerEngine,
    directory_archive,
    extract_file,
    file_archive,
    resolve_path,
)
from localsandbox.runtime.sandbox.models import BaseContainer, ImageSource, WorkspaceSnapshot

BASE = BaseContainer(image="ubuntu:24.04", source=ImageSource.fallback, env={"A": "1"})


def _members(archive: bytes) -> dict[str, tarfile.TarInfo]:
    with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
        return {m.name: m for m in tar.getmembers()}


@pytest.fixture()
def client():
    client = MagicMock(name="docker-client")
    with patch("localsandbox.runtime.sandbox.engine.docker.from_env", return_value=client) as from_env:
        client.from_env = from_env
        yield client


@pytest.fixture()
def container(client):
    container = client.containers.create.return_value
    container.wait.return_value = {"StatusCode": 0}
    container.logs.side_effect = [b"hello\n", b""]
    container.get_archive.return_value = (iter([b"snap", b"shot"]), {"name": "workspace"})
    return container


class TestArchiveHelpers:
    def test_resolve_relative(self) -> None:
        assert resolve_path("/workspace", "a.txt") == "/workspace/a.txt"
        assert resolve_path("/workspace", "./src/../b.txt") == "/workspace/b.txt"

    def test_resolve_absolute(self) -> None:
        assert resolve_path("/workspace", "/etc/hosts") == "/etc/hosts"

    def test_directory_archive(self) -> None:
        members = _members(directory_archive("/workspace/project"))
        assert set(members) == {"workspace", "workspace/project"}
        assert all(m.isdir() for m in members.values())

    def test_file_archive_contains_parents(self) -> None:
        archive = file_archive("/workspace/notes/todo.txt", b"buy milk")
        members = _members(archive)
        assert members["workspace/notes"].isdir()
        assert members["workspace/notes/todo.txt"].size == 8
        assert extract_file(archive) == b"buy milk"

    def test_extract_file_requires_regular_file(self) -> None:
        with pytest.raises(IsADirectoryError):
            extract_file(directory_archive("/workspace"))


class TestImages:
    def test_image_present(self, client) -> None:
        engine = DockerEngine()
        assert engine.image_present(client, "ubuntu:24.04") is True
        client.images.get.side_effect = ImageNotFound("missing")
        assert engine.image_present(client, "ubuntu:24.04") is False

    def test_build_consumes_log_stream(self, client, tmp_path) -> None:
        client.images.build.return_value = (MagicMock(), iter([{"stream": "Step 1/2\n"}, {"aux": {}}]))
        DockerEngine().build(client, tmp_path, "assets/dockerfiles/Dockerfile.claude", "vibekit-claude:latest")
        client.images.build.assert_called_once_with(
            path=str(tmp_path),
            dockerfile="assets/dockerfiles/Dockerfile.claude",
            tag="vibekit-claude:latest",
            rm=True,
        )

    def test_tag(self, client) -> None:
        DockerEngine().tag(client, "vibekit-codex:latest", "alice/vibekit-codex", "latest")
        client.images.get.assert_called_once_with("vibekit-codex:latest")
        client.images.get.return_value.tag.assert_called_once_with("alice/vibekit-codex", tag="latest")

    def test_push_error_line_raises(self, client) -> None:
        client.images.push.return_value = iter([{"status": "Preparing"}, {"error": "denied"}])
        with pytest.raises(DockerException, match="denied"):
            DockerEngine().push(client, "alice/vibekit-codex")

    def test_info_closes_client(self, client) -> None:
        client.info.return_value = {"Username": "alice"}
        assert DockerEngine().info() == {"Username": "alice"}
        client.close.assert_called_once()

    def test_timeout_passed_to_client(self, client) -> None:
        with DockerEngine(timeout=7).connect():
            pass
        client.from_env.assert_called_once_with(timeout=7)


class TestRun:
    def test_success_captures_output_and_archive(self, client, container) -> None:
        result = DockerEngine().run(BASE, None, "/workspace", "echo hello")
        assert result.exit_code == 0
        assert result.stdout == "hello\n"
        assert result.stderr == ""
        assert result.archive == b"snapshot"
        client.containers.create.assert_called_once_with(
            "ubuntu:24.04",
            command=["sh", "-c", "echo hello"],
            environment={"A": "1"},
            working_dir="/workspace",
            labels={CONTAINER_LABEL: "1"},
        )
        container.get_archive.assert_called_once_with("/workspace")
        container.remove.assert_called_once_with(force=True)
        client.close.assert_called_once()

    def test_restores_snapshot_into_parent(self, client, container) -> None:
        snapshot = WorkspaceSnapshot(archive=b"previous", sequence=1, captured_at=0.0)
        DockerEngine().run(BASE, snapshot, "/workspace", "ls")
        puts = container.put_archive.call_args_list
        assert len(puts) == 2
        assert puts[0].args[0] == "/"
        assert puts[1] == call("/", b"previous")

    def test_nested_workdir_parent(self, client, container) -> None:
        snapshot = WorkspaceSnapshot(archive=b"previous", sequence=1, captured_at=0.0)
        DockerEngine().run(BASE, snapshot, "/home/agent/work", "ls")
        assert container.put_archive.call_args_list[1] == call("/home/agent", b"previous")

    def test_failure_raises_with_exit_status(self, client, container) -> None:
        container.wait.return_value = {"StatusCode": 2}
        container.logs.side_effect = [b"", b"boom\n"]
        with pytest.raises(ExecutionFailure) as exc_info:
            DockerEngine().run(BASE, None, "/workspace", "false")
        assert exc_info.value.exit_status == 2
        assert "exit status 2" in str(exc_info.value)
        container.get_archive.assert_not_called()
        container.remove.assert_called_once_with(force=True)

    def test_unchecked_failure_still_captures(self, client, container) -> None:
        container.wait.return_value = {"StatusCode": 3}
        result = DockerEngine().run(BASE, None, "/workspace", "sleep 1; exit 3", check=False)
        assert result.exit_code == 3
        assert result.archive == b"snapshot"

    def test_engine_unavailable(self) -> None:
        with patch(
            "localsandbox.runtime.sandbox.engine.docker.from_env",
            side_effect=DockerException("Error while fetching server API version"),
        ):
            with pytest.raises(ExecutionFailure) as exc_info:
                DockerEngine().run(BASE, None, "/workspace", "true")
        assert exc_info.value.exit_status is None

    def test_container_removed_when_restore_fails(self, client, container) -> None:
        container.put_archive.side_effect = [True, DockerException("no space left")]
        snapshot = WorkspaceSnapshot(archive=b"previous", sequence=1, captured_at=0.0)
        with pytest.raises(ExecutionFailure):
            DockerEngine().run(BASE, snapshot, "/workspace", "true")
        container.remove.assert_called_once_with(force=True)
        container.start.assert_not_called()


class TestFiles:
    def test_read_file(self, client, container) -> None:
        container.get_archive.return_value = (
            iter([file_archive("/workspace/a.txt", b"data")]), {},
        )
        assert DockerEngine().read_file(BASE, None, "/workspace", "a.txt") == b"data"
        container.get_archive.assert_called_once_with("/workspace/a.txt")
        container.start.assert_not_called()

    def test_read_missing_file(self, client, container) -> None:
        container.get_archive.side_effect = NotFound("no such file")
        with pytest.raises(FileNotFoundError):
            DockerEngine().read_file(BASE, None, "/workspace", "missing.txt")
        container.remove.assert_called_once_with(force=True)

    def test_write_file(self, client, container) -> None:
        archive = DockerEngine().write_file(BASE, None, "/workspace", "notes/a.txt", b"hi")
        assert archive == b"snapshot"
        written = container.put_archive.call_args_list[-1]
        assert written.args[0] == "/"
        assert "workspace/notes/a.txt" in _members(written.args[1])

    def test_write_failure(self, client, container) -> None:
        container.get_archive.side_effect = DockerException("gone")
        with pytest.raises(ExecutionFailure):
            DockerEngine().write_file(BASE, None, "/workspace", "a.txt", b"x")
