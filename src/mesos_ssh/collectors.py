"""Output collectors: render every host's RemoteSink for the operator.

Two strategies share the same per-host drain loop:

- BatchedCollector buffers each host's output and prints it as one block
  once the host is finished (first finished, first printed).
- InterleavedCollector splits output into lines as it arrives and prints
  them tagged with host and stream, in true arrival order across hosts.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, TextIO

from .sink import OutputEvent, RemoteSink, RunOutcome, Stream

logger = logging.getLogger(__name__)

# Time to wait for remaining output after a host reports its outcome.
GRACE_PERIOD = 0.1

# ANSI colors cycled across hosts when printing to a terminal
HOST_COLORS = [
    "\033[36m",  # Cyan
    "\033[33m",  # Yellow
    "\033[35m",  # Magenta
    "\033[32m",  # Green
    "\033[34m",  # Blue
    "\033[91m",  # Light Red
    "\033[96m",  # Light Cyan
    "\033[93m",  # Light Yellow
]
RESET = "\033[0m"


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


class Collector(ABC):
    """Consumes all RemoteSinks of a run and renders a consolidated view."""

    def __init__(self, grace_period: float = GRACE_PERIOD) -> None:
        self.grace_period = grace_period
        self._workers: list[asyncio.Task[None]] = []

    @property
    def host_count(self) -> int:
        return len(self._workers)

    def new_remote(self, host: str) -> RemoteSink:
        """Create the sink for ``host`` and start consuming it."""
        sink = RemoteSink(host)
        task = asyncio.create_task(self._process(sink), name=f"collect:{host}")
        self._workers.append(task)
        return sink

    def cancel(self) -> None:
        """Stop every per-host consumer task."""
        for task in self._workers:
            task.cancel()

    @abstractmethod
    async def read(self):
        """Render output until every sink has finished."""

    @abstractmethod
    async def _process(self, sink: RemoteSink) -> None:
        """Consume one sink until its outcome and grace period are done."""

    async def _drain(
        self, sink: RemoteSink, handle: Callable[[OutputEvent], None]
    ) -> RunOutcome:
        """Feed events to ``handle`` until the outcome arrives, then keep
        feeding until the stream has been quiet for one grace period.

        The sink is closed on return; later events are discarded.
        """
        next_event = asyncio.ensure_future(sink.events.get())
        finished = asyncio.ensure_future(sink.outcome.get())
        try:
            while not finished.done():
                await asyncio.wait(
                    {next_event, finished}, return_when=asyncio.FIRST_COMPLETED
                )
                if next_event.done():
                    handle(next_event.result())
                    next_event = asyncio.ensure_future(sink.events.get())
            outcome = finished.result()

            # Relay tasks may still be delivering; each event re-arms the timer.
            while True:
                done, _ = await asyncio.wait({next_event}, timeout=self.grace_period)
                if not done:
                    break
                handle(next_event.result())
                next_event = asyncio.ensure_future(sink.events.get())
        finally:
            next_event.cancel()
            finished.cancel()
            sink.close()

        logger.debug("Collected outcome for %s: %s", sink.host, outcome)
        return outcome


@dataclass
class HostTranscript:
    """Everything one host produced, in arrival order."""

    host: str
    events: list[OutputEvent] = field(default_factory=list)
    outcome: RunOutcome = field(default_factory=RunOutcome)

    @property
    def output(self) -> bytes:
        return b"".join(event.data for event in self.events)


class BatchedCollector(Collector):
    """Displays each host's output in one block after it finishes."""

    def __init__(
        self, grace_period: float = GRACE_PERIOD, out: TextIO | None = None
    ) -> None:
        super().__init__(grace_period)
        self._out = out if out is not None else sys.stdout
        self._results: asyncio.Queue[HostTranscript] = asyncio.Queue()

    async def read(self) -> list[HostTranscript]:
        """Print one block per host as each completes.

        Returns the transcripts in the order they were printed.
        """
        transcripts = []
        for _ in range(self.host_count):
            transcript = await self._results.get()
            self._render(transcript)
            transcripts.append(transcript)

        await asyncio.gather(*self._workers)
        return transcripts

    async def _process(self, sink: RemoteSink) -> None:
        transcript = HostTranscript(sink.host)
        transcript.outcome = await self._drain(sink, transcript.events.append)
        await self._results.put(transcript)

    def _render(self, transcript: HostTranscript) -> None:
        self._out.write(f"\n===== Results from {transcript.host}\n")
        self._out.write(_decode(transcript.output))
        if transcript.outcome.failed:
            self._out.write(f"==> Failed with {transcript.outcome.error}\n")
        self._out.flush()


@dataclass(frozen=True)
class OutputLine:
    """One complete line of output attributed to a host and stream."""

    host: str
    stream: Stream
    text: str

    def __str__(self) -> str:
        return f"{self.host} [{self.stream.tag}]: {self.text}"


# Type alias for line callback
LineCallback = Callable[[OutputLine], None]


class LineAssembler:
    """Splits one host's events into whole lines.

    A partial line is held until its newline arrives, or flushed as-is
    when the host switches streams, so lines from different streams are
    never glued together.
    """

    def __init__(self, host: str, emit: LineCallback) -> None:
        self.host = host
        self._emit = emit
        self._stream: Stream | None = None
        self._buf = bytearray()

    def feed(self, event: OutputEvent) -> None:
        if event.stream is not self._stream:
            self.flush()
            self._stream = event.stream

        data = event.data
        start = 0
        while True:
            nl = data.find(b"\n", start)
            if nl < 0:
                break
            self._buf += data[start:nl]
            self._send()
            start = nl + 1

        self._buf += data[start:]

    def flush(self) -> None:
        if self._buf:
            self._send()

    def _send(self) -> None:
        text = _decode(bytes(self._buf))
        self._buf.clear()
        if text.endswith("\r"):
            text = text[:-1]
        self._emit(OutputLine(self.host, self._stream, text))


class InterleavedCollector(Collector):
    """Interleaves line-buffered output from all hosts as it arrives."""

    def __init__(
        self,
        grace_period: float = GRACE_PERIOD,
        on_line: LineCallback | None = None,
        out: TextIO | None = None,
        color: bool | None = None,
    ) -> None:
        super().__init__(grace_period)
        self._out = out if out is not None else sys.stdout
        self._on_line = on_line or self._print
        if color is None:
            color = self._out.isatty()
        self._color = color
        self._host_colors: dict[str, str] = {}
        self._lines: asyncio.Queue[OutputLine] = asyncio.Queue()

    async def read(self) -> int:
        """Deliver lines until every host is finished.

        Returns the number of lines delivered.
        """
        delivered = 0
        barrier = asyncio.ensure_future(asyncio.gather(*self._workers))

        while not barrier.done():
            next_line = asyncio.ensure_future(self._lines.get())
            await asyncio.wait(
                {next_line, barrier}, return_when=asyncio.FIRST_COMPLETED
            )
            if next_line.done():
                self._on_line(next_line.result())
                delivered += 1
            else:
                next_line.cancel()

        while not self._lines.empty():
            self._on_line(self._lines.get_nowait())
            delivered += 1

        await barrier
        return delivered

    async def _process(self, sink: RemoteSink) -> None:
        assembler = LineAssembler(sink.host, self._lines.put_nowait)
        outcome = await self._drain(sink, assembler.feed)
        if outcome.failed:
            assembler.feed(
                OutputEvent(f"Failed with {outcome.error}\n".encode(), Stream.EXIT)
            )
        assembler.flush()

    def _print(self, line: OutputLine) -> None:
        if self._color:
            color = self._host_colors.setdefault(
                line.host, HOST_COLORS[len(self._host_colors) % len(HOST_COLORS)]
            )
            text = f"{color}{line.host}{RESET} [{line.stream.tag}]: {line.text}"
        else:
            text = str(line)
        print(text, file=self._out, flush=True)
