"""Workspace snapshot store -- the latest wholesale capture of the workdir."""

from __future__ import annotations

import logging
import time

from .models import WorkspaceSnapshot

logger = logging.getLogger(__name__)


class WorkspaceSnapshotStore:
    """Holds at most one snapshot; each capture replaces the previous one."""

    def __init__(self, workdir: str) -> None:
        self._workdir = workdir
        self._current: WorkspaceSnapshot | None = None
        self._sequence = 0

    @property
    def workdir(self) -> str:
        return self._workdir

    @property
    def current(self) -> WorkspaceSnapshot | None:
        return self._current

    @property
    def has_snapshot(self) -> bool:
        return self._current is not None

    def replace(self, archive: bytes) -> WorkspaceSnapshot:
        self._sequence += 1
        self._current = WorkspaceSnapshot(
            archive=archive, sequence=self._sequence, captured_at=time.time(),
        )
        logger.debug(
            "[sandbox.snapshot] workdir=%s seq=%d size=%.1fKB",
            self._workdir, self._sequence, len(archive) / 1024,
        )
        return self._current

    def clear(self) -> None:
        self._current = None
