"""Per-host output channel shared by a Session and a Collector.

A RemoteSink carries two kinds of traffic on separate queues:

- OutputEvents (stdout, stderr and the synthetic exit notice), bounded so
  a slow consumer applies backpressure to the relay tasks
- exactly one terminal RunOutcome

Keeping the outcome on its own queue lets the consumer wait on "more
bytes" and "finished" at once without the outcome queuing up behind a
backlog of bytes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

# Events a producer may have in flight before it blocks.
EVENT_BUFFER = 16


class Stream(Enum):
    """Origin of an output event."""

    STDOUT = 1
    STDERR = 2
    EXIT = -1

    @property
    def tag(self) -> str:
        return _TAGS[self]


_TAGS = {
    Stream.STDOUT: "out",
    Stream.STDERR: "err",
    Stream.EXIT: "***",
}


@dataclass(frozen=True)
class OutputEvent:
    """A slice of output from one host."""

    data: bytes
    stream: Stream


@dataclass(frozen=True)
class RunOutcome:
    """Terminal result for one host.

    A command that ran and exited has an ``exit_status`` (zero or not).
    Anything that kept the command from completing normally is an ``error``.
    """

    exit_status: int | None = None
    error: BaseException | None = None

    @classmethod
    def exited(cls, status: int) -> RunOutcome:
        return cls(exit_status=status)

    @classmethod
    def failure(cls, error: BaseException) -> RunOutcome:
        return cls(error=error)

    @property
    def failed(self) -> bool:
        return self.error is not None


class RemoteSink:
    """Single-producer, single-consumer channel pair for one host."""

    def __init__(self, host: str, buffer: int = EVENT_BUFFER) -> None:
        self.host = host
        self.events: asyncio.Queue[OutputEvent] = asyncio.Queue(maxsize=buffer)
        self.outcome: asyncio.Queue[RunOutcome] = asyncio.Queue(maxsize=1)
        self._finished = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def stdout(self, data: bytes) -> None:
        """Queue a chunk of standard output."""
        await self._send(OutputEvent(bytes(data), Stream.STDOUT))

    async def stderr(self, data: bytes) -> None:
        """Queue a chunk of standard error."""
        await self._send(OutputEvent(bytes(data), Stream.STDERR))

    async def exit(self, code: int) -> None:
        """Record a clean exit with its status."""
        await self._send(
            OutputEvent(f"Exited with code: {code}\n".encode(), Stream.EXIT)
        )

    async def done(self, outcome: RunOutcome) -> None:
        """Signal the terminal outcome. Must be called exactly once."""
        if self._finished:
            raise RuntimeError(f"Outcome for {self.host} already signalled")
        self._finished = True
        await self.outcome.put(outcome)

    def close(self) -> None:
        """Stop accepting events and discard anything still queued.

        Called by the consumer once it has stopped reading, so a producer
        blocked on a full queue is released instead of waiting forever.
        """
        self._closed = True
        dropped = 0
        while not self.events.empty():
            self.events.get_nowait()
            dropped += 1
        if dropped:
            logger.debug("Dropped %d late events from %s", dropped, self.host)

    async def _send(self, event: OutputEvent) -> None:
        if self._closed:
            logger.debug(
                "Discarding %d bytes of %s from %s after close",
                len(event.data),
                event.stream.name.lower(),
                self.host,
            )
            return
        await self.events.put(event)
