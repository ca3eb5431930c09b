"""Docker engine adapter -- scoped clients, image ops, and layered containers.

Every container operation here follows the same shape: open a client,
create a throw-away container from the base image, lay the working
directory (fresh or restored from a snapshot archive) into it, do the
work, capture what is needed, remove the container, close the client.
Nothing is held between calls.
"""

from __future__ import annotations

import io
import logging
import posixpath
import tarfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import docker
from docker.errors import ContainerError, DockerException, ImageNotFound, NotFound

from ..config.settings import cfg
from ..errors import ExecutionFailure
from .models import BaseContainer, WorkspaceSnapshot

logger = logging.getLogger(__name__)

CONTAINER_LABEL = "localsandbox.managed"


@dataclass(frozen=True)
class EngineRun:
    exit_code: int
    stdout: str
    stderr: str
    archive: bytes | None


class DockerEngine:
    """Thin, stateless wrapper over the Docker SDK."""

    def __init__(self, timeout: int | None = None) -> None:
        self._timeout = timeout

    @contextmanager
    def connect(self) -> Iterator[docker.DockerClient]:
        client = docker.from_env(timeout=self._timeout or cfg.docker_timeout)
        try:
            yield client
        finally:
            _close_client(client)

    # -- images ------------------------------------------------------------

    def image_present(self, client: docker.DockerClient, ref: str) -> bool:
        try:
            client.images.get(ref)
        except ImageNotFound:
            return False
        return True

    def pull(self, client: docker.DockerClient, ref: str) -> None:
        logger.info("[engine.pull] image=%s", ref)
        client.images.pull(ref)

    def build(
        self, client: docker.DockerClient, context: Path, dockerfile: str, tag: str,
    ) -> None:
        logger.info("[engine.build] dockerfile=%s tag=%s context=%s", dockerfile, tag, context)
        start = time.time()
        _image, log_stream = client.images.build(
            path=str(context), dockerfile=dockerfile, tag=tag, rm=True,
        )
        for chunk in log_stream:
            line = chunk.get("stream", "").rstrip() if isinstance(chunk, dict) else ""
            if line:
                logger.debug("[engine.build] %s", line)
        logger.info("[engine.build] tag=%s done in %.1fs", tag, time.time() - start)

    def tag(self, client: docker.DockerClient, source: str, repository: str, tag: str = "latest") -> None:
        client.images.get(source).tag(repository, tag=tag)

    def push(self, client: docker.DockerClient, repository: str, tag: str = "latest") -> None:
        logger.info("[engine.push] image=%s:%s", repository, tag)
        for line in client.images.push(repository, tag=tag, stream=True, decode=True):
            if isinstance(line, dict) and line.get("error"):
                raise DockerException(line["error"])

    def info(self) -> dict[str, Any]:
        with self.connect() as client:
            return client.info()

    # -- layered containers ------------------------------------------------

    def run(
        self,
        base: BaseContainer,
        snapshot: WorkspaceSnapshot | None,
        workdir: str,
        command: str,
        *,
        check: bool = True,
    ) -> EngineRun:
        """Run ``sh -c command`` in a fresh working container.

        With *check*, a non-zero exit raises :class:`ExecutionFailure` and no
        archive is captured.  Without it the archive is captured whatever
        the exit status.
        """
        try:
            with self.connect() as client:
                container = self._working_container(
                    client, base, snapshot, workdir, ["sh", "-c", command],
                )
                try:
                    container.start()
                    status = container.wait().get("StatusCode", 1)
                    stdout = _decode(container.logs(stdout=True, stderr=False))
                    stderr = _decode(container.logs(stdout=False, stderr=True))
                    archive = None
                    if status == 0 or not check:
                        archive = _capture(container, workdir)
                finally:
                    _discard(container)
                if check and status != 0:
                    raise ContainerError(container, status, command, base.image, stderr)
        except (DockerException, OSError) as exc:
            raise ExecutionFailure(str(exc), getattr(exc, "exit_status", None)) from exc
        return EngineRun(exit_code=status, stdout=stdout, stderr=stderr, archive=archive)

    def read_file(
        self, base: BaseContainer, snapshot: WorkspaceSnapshot | None, workdir: str, path: str,
    ) -> bytes:
        target = resolve_path(workdir, path)
        try:
            with self.connect() as client:
                container = self._working_container(client, base, snapshot, workdir, ["true"])
                try:
                    bits, _stat = container.get_archive(target)
                    archive = b"".join(bits)
                finally:
                    _discard(container)
        except NotFound as exc:
            raise FileNotFoundError(target) from exc
        except (DockerException, OSError) as exc:
            raise ExecutionFailure(str(exc)) from exc
        return extract_file(archive)

    def write_file(
        self,
        base: BaseContainer,
        snapshot: WorkspaceSnapshot | None,
        workdir: str,
        path: str,
        data: bytes,
    ) -> bytes:
        """Write *data* to *path*; returns the new working-directory archive."""
        target = resolve_path(workdir, path)
        try:
            with self.connect() as client:
                container = self._working_container(client, base, snapshot, workdir, ["true"])
                try:
                    container.put_archive("/", file_archive(target, data))
                    archive = _capture(container, workdir)
                finally:
                    _discard(container)
        except (DockerException, OSError) as exc:
            raise ExecutionFailure(str(exc)) from exc
        return archive

    def _working_container(
        self,
        client: docker.DockerClient,
        base: BaseContainer,
        snapshot: WorkspaceSnapshot | None,
        workdir: str,
        command: list[str],
    ) -> Any:
        container = client.containers.create(
            base.image,
            command=command,
            environment=dict(base.env),
            working_dir=workdir,
            labels={CONTAINER_LABEL: "1"},
        )
        try:
            container.put_archive("/", directory_archive(workdir))
            if snapshot is not None:
                container.put_archive(_parent(workdir), snapshot.archive)
        except BaseException:
            _discard(container)
            raise
        return container


# -- archive helpers -------------------------------------------------------


def resolve_path(workdir: str, path: str) -> str:
    """Resolve *path* against *workdir* the way a shell in it would."""
    return posixpath.normpath(posixpath.join(workdir, path))


def directory_archive(path: str) -> bytes:
    """Tar holding every directory on *path*, rooted at ``/``."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name in _ancestors(path):
            tar.addfile(_dir_info(name))
    return buf.getvalue()


def file_archive(path: str, data: bytes) -> bytes:
    """Tar holding *data* at absolute *path* plus its parent directories."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name in _ancestors(posixpath.dirname(path)):
            tar.addfile(_dir_info(name))
        info = tarfile.TarInfo(path.lstrip("/"))
        info.size = len(data)
        info.mode = 0o644
        info.mtime = int(time.time())
        tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def extract_file(archive: bytes) -> bytes:
    """Return the contents of the single regular file in *archive*."""
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r") as tar:
        for member in tar.getmembers():
            if member.isfile():
                handle = tar.extractfile(member)
                if handle is not None:
                    return handle.read()
    raise IsADirectoryError("archive holds no regular file")


def _ancestors(path: str) -> list[str]:
    parts = [p for p in path.strip("/").split("/") if p]
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


def _dir_info(name: str) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    info.mtime = int(time.time())
    return info


def _parent(workdir: str) -> str:
    return posixpath.dirname(workdir.rstrip("/")) or "/"


def _capture(container: Any, workdir: str) -> bytes:
    bits, _stat = container.get_archive(workdir)
    return b"".join(bits)


def _decode(raw: bytes | None) -> str:
    return (raw or b"").decode("utf-8", errors="replace")


def _discard(container: Any) -> None:
    try:
        container.remove(force=True)
    except (DockerException, OSError):
        logger.debug("failed to remove container %s", getattr(container, "id", "?"), exc_info=True)


def _close_client(client: Any) -> None:
    try:
        client.close()
    except Exception:
        logger.debug("failed to close docker client", exc_info=True)
