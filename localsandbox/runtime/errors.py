"""Error taxonomy for the local sandbox engine.

Only :class:`InitializationFailure` and :class:`SandboxClosedError` ever
reach callers of ``commands.run``.  Resolution and configuration failures
are recovered where they happen; execution failures are folded into the
command result.
"""

from __future__ import annotations


class SandboxError(Exception):
    """Base class for sandbox engine errors."""


class ResolutionFailure(SandboxError):
    """An image fetch or build step failed; the next strategy is tried."""

    def __init__(self, source: str, image: str, reason: str) -> None:
        super().__init__(f"{source} image {image!r} unavailable: {reason}")
        self.source = source
        self.image = image
        self.reason = reason


class InitializationFailure(SandboxError):
    """The base container never became ready after exhausting fallbacks."""

    def __init__(self, agent_type: str | None, failures: list[ResolutionFailure]) -> None:
        detail = "; ".join(str(f) for f in failures) or "no image strategy available"
        super().__init__(
            f"Base container for agent {agent_type or 'default'!r} could not be "
            f"initialised: {detail}"
        )
        self.agent_type = agent_type
        self.failures = list(failures)


class ExecutionFailure(SandboxError):
    """A round-trip to the container engine raised.

    ``exit_status`` carries the engine's structured exit code when it
    reported one.
    """

    def __init__(self, message: str, exit_status: int | None = None) -> None:
        super().__init__(message)
        self.exit_status = exit_status


class ConfigurationReadFailure(SandboxError):
    """The local configuration file is unreadable or malformed."""


class SandboxClosedError(SandboxError):
    """An operation was attempted on a killed sandbox instance."""

    def __init__(self, sandbox_id: str) -> None:
        super().__init__(f"Sandbox {sandbox_id} has been killed")
        self.sandbox_id = sandbox_id
