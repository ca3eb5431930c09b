"""Command executor -- runs commands against the base container and snapshot."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..errors import ExecutionFailure
from .models import ExecutionResult
from .streaming import StreamingAdapter

if TYPE_CHECKING:
    from .instance import LocalSandboxInstance

logger = logging.getLogger(__name__)

_EXIT_CODE_RE = re.compile(r"exit (?:code|status)\s*:?\s*(\d+)", re.IGNORECASE)
_DEFAULT_FAILURE_CODE = 1


def extract_exit_code(message: str) -> int:
    """Pull an exit code out of free-text engine output; 1 when absent."""
    match = _EXIT_CODE_RE.search(message or "")
    if match:
        return int(match.group(1))
    return _DEFAULT_FAILURE_CODE


def exit_code_for(exc: ExecutionFailure) -> int:
    """Structured exit status when the engine gave one, else parsed from text."""
    if exc.exit_status:
        return exc.exit_status
    # A surfaced failure never reports success.
    return extract_exit_code(str(exc)) or _DEFAULT_FAILURE_CODE


class CommandExecutor:
    """The ``commands`` surface of a sandbox instance."""

    def __init__(self, instance: LocalSandboxInstance, streamer: StreamingAdapter) -> None:
        self._instance = instance
        self._streamer = streamer

    async def run(
        self,
        command: str,
        *,
        timeout_ms: int | None = None,
        background: bool = False,
        on_stdout: Callable[[str], Any] | None = None,
        on_stderr: Callable[[str], Any] | None = None,
    ) -> ExecutionResult:
        """Run *command* in the sandbox working directory.

        ``timeout_ms`` is accepted for interface compatibility and not
        enforced.  Background commands still run to completion; the result
        reports that the process started.
        """
        inst = self._instance
        inst.ensure_running()
        base = await inst.base_cache.ensure_ready()

        # Held across start..end so each command's events stay contiguous.
        async with inst.workspace_lock:
            # kill() may have landed while this call was queued on the lock.
            inst.ensure_running()
            start = time.time()
            self._streamer.start(command)
            logger.info(
                "[sandbox.run] sandbox=%s background=%s cmd=%.120s",
                inst.sandbox_id, background, command,
            )
            try:
                run = await asyncio.to_thread(
                    inst.engine.run, base, inst.snapshots.current, inst.workdir, command,
                    check=not background,
                )
            except ExecutionFailure as exc:
                inst.ensure_running()
                result = self._failed(exc)
            else:
                # A kill during the engine round-trip discards the capture.
                inst.ensure_running()
                if run.archive is not None:
                    inst.snapshots.replace(run.archive)
                if background:
                    result = ExecutionResult(
                        exit_code=0,
                        stdout=f"Background process started: {command}",
                        stderr="",
                    )
                else:
                    result = ExecutionResult(exit_code=0, stdout=run.stdout, stderr=run.stderr)
                    await self._streamer.replay(
                        run.stdout, run.stderr, on_stdout=on_stdout, on_stderr=on_stderr,
                    )
            self._streamer.end(command, result.exit_code)
        logger.info(
            "[sandbox.run] sandbox=%s exit=%d duration_ms=%d",
            inst.sandbox_id, result.exit_code, int((time.time() - start) * 1000),
        )
        return result

    def _failed(self, exc: ExecutionFailure) -> ExecutionResult:
        message = str(exc)
        exit_code = exit_code_for(exc)
        logger.warning(
            "[sandbox.run] sandbox=%s failed exit=%d: %.300s",
            self._instance.sandbox_id, exit_code, message,
        )
        self._streamer.failure(message)
        return ExecutionResult(exit_code=exit_code, stdout="", stderr=message)
