"""Base container cache -- single-flight lazy resolution of the base image."""

from __future__ import annotations

import asyncio
import enum
import logging
import time

from docker.errors import DockerException

from ..errors import InitializationFailure, ResolutionFailure, SandboxClosedError
from .engine import DockerEngine
from .images import ImageResolver
from .models import BaseContainer

logger = logging.getLogger(__name__)

# Strategies tried after the primary one fails.
MAX_FALLBACKS = 2


class InitState(enum.Enum):
    uninitialized = "uninitialized"
    initializing = "initializing"
    ready = "ready"
    failed = "failed"


class BaseContainerCache:
    """Resolves the base container once per instance.

    The first :meth:`ensure_ready` call does the work; callers arriving
    while it is in flight park on a waiter future and are released together
    with the same outcome.  ``failed`` is terminal.

    :meth:`clear` bumps a generation counter; a resolution that finishes
    under an older generation is discarded and its callers get
    :class:`SandboxClosedError`.
    """

    def __init__(
        self,
        resolver: ImageResolver,
        engine: DockerEngine,
        agent_type: str | None,
        env: dict[str, str] | None = None,
        *,
        owner: str = "",
    ) -> None:
        self._resolver = resolver
        self._engine = engine
        self._agent_type = agent_type
        self._env = dict(env or {})
        self._owner = owner or f"{agent_type or 'default'} base container"
        self._state = InitState.uninitialized
        self._generation = 0
        self._waiters: list[asyncio.Future[BaseContainer]] = []
        self._container: BaseContainer | None = None
        self._error: InitializationFailure | None = None

    @property
    def state(self) -> InitState:
        return self._state

    @property
    def container(self) -> BaseContainer | None:
        return self._container

    async def ensure_ready(self) -> BaseContainer:
        if self._state is InitState.ready and self._container is not None:
            return self._container
        if self._state is InitState.failed and self._error is not None:
            raise self._error
        if self._state is InitState.initializing:
            waiter: asyncio.Future[BaseContainer] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            return await waiter

        self._state = InitState.initializing
        generation = self._generation
        try:
            container = await asyncio.to_thread(self._initialize)
        except InitializationFailure as exc:
            if generation != self._generation:
                raise SandboxClosedError(self._owner) from exc
            self._state = InitState.failed
            self._error = exc
            self._release(error=exc)
            raise
        except BaseException as exc:
            if generation != self._generation:
                raise
            # Cancelled or unexpected: let the next caller start over.
            self._state = InitState.uninitialized
            self._release(error=exc)
            raise
        if generation != self._generation:
            logger.info(
                "[sandbox.init] %s cleared during resolution; discarding %s",
                self._owner, container.image,
            )
            raise SandboxClosedError(self._owner)
        self._container = container
        self._state = InitState.ready
        self._release(container=container)
        return container

    def clear(self) -> None:
        """Drop the base container reference (instance teardown).

        Callers parked on an in-flight resolution fail with
        :class:`SandboxClosedError`.
        """
        self._generation += 1
        self._container = None
        self._error = None
        self._state = InitState.uninitialized
        self._release(error=SandboxClosedError(self._owner))

    def _release(
        self, container: BaseContainer | None = None, error: BaseException | None = None,
    ) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if waiter.done():
                continue
            if isinstance(error, asyncio.CancelledError):
                waiter.cancel()
            elif error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(container)

    def _initialize(self) -> BaseContainer:
        start = time.time()
        strategies = self._resolver.plan(self._agent_type)[: 1 + MAX_FALLBACKS]
        failures: list[ResolutionFailure] = []
        logger.info(
            "[sandbox.init] agent=%s plan=%s",
            self._agent_type or "default", [s.source.value for s in strategies],
        )
        try:
            with self._engine.connect() as client:
                for index, strategy in enumerate(strategies):
                    if index:
                        logger.warning(
                            "[sandbox.init] falling back to %s strategy (attempt %d/%d)",
                            strategy.source.value, index + 1, len(strategies),
                        )
                    try:
                        resolution = self._resolver.realize(client, strategy)
                    except ResolutionFailure as exc:
                        logger.warning(
                            "[sandbox.init] %s strategy failed: %s", strategy.source.value, exc,
                        )
                        failures.append(exc)
                        continue
                    logger.info(
                        "[sandbox.init] agent=%s image=%s source=%s ready in %.1fs",
                        self._agent_type or "default", resolution.image,
                        resolution.source.value, time.time() - start,
                    )
                    return BaseContainer(
                        image=resolution.image, source=resolution.source, env=dict(self._env),
                    )
        except (DockerException, OSError) as exc:
            logger.error("[sandbox.init] container engine unavailable: %s", exc)
            failures.append(ResolutionFailure("engine", "docker", str(exc)))
        else:
            logger.error(
                "[sandbox.init] agent=%s exhausted %d strategies",
                self._agent_type or "default", len(strategies),
            )
        raise InitializationFailure(self._agent_type, failures)
