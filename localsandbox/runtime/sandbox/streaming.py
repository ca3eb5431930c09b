"""Streaming adapter -- turns a captured command result into ordered events.

Output is captured in full before any event for a command is emitted, so
stdout and stderr never interleave: ``start``, stdout lines, stderr lines,
``end``.  Events fan out to subscribers through bounded queues; a full
queue drops its oldest event rather than stalling the command.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from ..config.settings import cfg
from .models import EventType, SandboxEvent

logger = logging.getLogger(__name__)

CHANNEL_NAMES: frozenset[str] = frozenset({"update", "error"})

_CLOSED = None


class Subscription:
    """Async-iterable view of an :class:`EventChannel` for a set of names."""

    def __init__(self, channel: EventChannel, names: frozenset[str], maxsize: int) -> None:
        self._channel = channel
        self._names = names
        self._queue: asyncio.Queue[SandboxEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def names(self) -> frozenset[str]:
        return self._names

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: SandboxEvent) -> None:
        if self._closed or event.channel not in self._names:
            return
        self._put(event)

    async def get(self) -> SandboxEvent | None:
        """Next event, or ``None`` once the subscription is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def drain(self) -> list[SandboxEvent]:
        """Everything currently queued, without waiting."""
        events: list[SandboxEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _CLOSED:
                events.append(item)
        return events

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel.unsubscribe(self)
        self._put(_CLOSED)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> SandboxEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def _put(self, item: SandboxEvent | None) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning(
                "[sandbox.events] subscriber queue full (%d); dropped oldest event",
                self._queue.maxsize,
            )
        self._queue.put_nowait(item)


class EventChannel:
    """Fan-out of sandbox events to bounded subscriber queues."""

    def __init__(self, maxsize: int | None = None) -> None:
        self._maxsize = maxsize or cfg.event_queue_size
        self._subscribers: list[Subscription] = []

    def subscribe(self, *names: str, maxsize: int | None = None) -> Subscription:
        wanted = frozenset(names) or CHANNEL_NAMES
        unknown = wanted - CHANNEL_NAMES
        if unknown:
            raise ValueError(f"Unknown event names: {sorted(unknown)}")
        sub = Subscription(self, wanted, maxsize or self._maxsize)
        self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    def publish(self, event: SandboxEvent) -> None:
        logger.debug("[sandbox.events] %s/%s %.80s", event.channel, event.type.value, event.payload)
        for sub in list(self._subscribers):
            sub.offer(event)

    def close(self) -> None:
        for sub in list(self._subscribers):
            sub.close()


class StreamingAdapter:
    """Emits the event sequence for one command onto an :class:`EventChannel`."""

    def __init__(
        self,
        channel: EventChannel,
        *,
        delay_ms: int | None = None,
        step_ms: int | None = None,
    ) -> None:
        self._channel = channel
        self._delay_ms = cfg.stream_delay_ms if delay_ms is None else delay_ms
        self._step_ms = cfg.stream_delay_step_ms if step_ms is None else step_ms

    def start(self, command: str) -> SandboxEvent:
        return self._emit(EventType.start, {"type": "start", "command": command})

    async def replay(
        self,
        stdout: str,
        stderr: str,
        *,
        on_stdout: Callable[[str], Any] | None = None,
        on_stderr: Callable[[str], Any] | None = None,
    ) -> None:
        """Replay captured output line by line with a growing synthetic delay."""
        if stdout:
            await self._emit_lines(EventType.update, stdout, on_stdout)
        if stderr:
            await self._emit_lines(EventType.error, stderr, on_stderr)
            self._publish(EventType.update, f"STDERR: {stderr}")

    def failure(self, message: str) -> SandboxEvent:
        return self._publish(EventType.error, message)

    def end(self, command: str, exit_code: int) -> SandboxEvent:
        return self._emit(
            EventType.end, {"type": "end", "command": command, "exitCode": exit_code},
        )

    async def _emit_lines(
        self, event_type: EventType, output: str, callback: Callable[[str], Any] | None,
    ) -> None:
        lines = [line for line in output.split("\n") if line.strip()]
        for index, line in enumerate(lines):
            delay = self._delay_ms + index * self._step_ms
            if delay > 0:
                await asyncio.sleep(delay / 1000)
            self._publish(event_type, line)
            if callback:
                callback(line)

    def _emit(self, event_type: EventType, body: dict[str, Any]) -> SandboxEvent:
        timestamp = int(time.time() * 1000)
        event = SandboxEvent(
            type=event_type,
            payload=json.dumps({**body, "timestamp": timestamp}),
            timestamp=timestamp,
        )
        self._channel.publish(event)
        return event

    def _publish(self, event_type: EventType, payload: str) -> SandboxEvent:
        event = SandboxEvent(type=event_type, payload=payload)
        self._channel.publish(event)
        return event
