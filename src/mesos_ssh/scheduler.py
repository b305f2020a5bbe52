"""Fan-out scheduler: one session per host, at most N active at a time."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence

from .auth import Auth
from .collectors import Collector
from .config import RunConfig
from .errors import ConnectError, SessionError
from .session import Session, SessionState
from .sink import RemoteSink, RunOutcome

logger = logging.getLogger(__name__)

# Type alias for status callback
StatusCallback = Callable[[str, SessionState], None]  # (host, state) -> None
SessionFactory = Callable[[str, RemoteSink], Session]  # (host, sink) -> Session


class Scheduler:
    """Runs the configured command on every host."""

    def __init__(
        self,
        hosts: Sequence[str],
        config: RunConfig,
        collector: Collector,
        auth: Auth | None = None,
        session_factory: SessionFactory | None = None,
        on_status: StatusCallback | None = None,
    ) -> None:
        if session_factory is None:
            if auth is None:
                raise ValueError("auth is required without a session_factory")
            session_factory = self._default_factory(auth)
        self.hosts = list(hosts)
        self.config = config
        self.collector = collector
        self.on_status = on_status
        self.outcomes: dict[str, RunOutcome] = {}
        self.peak_active = 0
        self._session_factory = session_factory
        self._active = 0
        self._tasks: list[asyncio.Task[None]] = []

    def _default_factory(self, auth: Auth) -> SessionFactory:
        def factory(host: str, sink: RemoteSink) -> Session:
            return Session(
                host,
                self.config.user,
                self.config.port,
                auth,
                sink,
                forward_agent=self.config.command.forward_agent,
            )

        return factory

    def _emit_status(self, host: str, state: SessionState) -> None:
        """Notify the status callback; its failures never affect the run."""
        if not self.on_status:
            return
        try:
            self.on_status(host, state)
        except Exception:
            logger.exception("Status callback failed for %s", host)

    async def run(self) -> dict[str, RunOutcome]:
        """Run on all hosts, render the output, and wait for every host."""
        admission = asyncio.Semaphore(self.config.parallel)

        self._tasks = []
        for host in self.hosts:
            sink = self.collector.new_remote(host)
            session = self._session_factory(host, sink)
            self._tasks.append(
                asyncio.create_task(
                    self._run_host(session, sink, admission), name=f"session:{host}"
                )
            )

        logger.debug("Reading the results")
        await self.collector.read()

        logger.debug("Waiting for completion")
        await asyncio.gather(*self._tasks)
        return self.outcomes

    def cancel(self) -> None:
        """Cancel every host session and collector task of the current run."""
        for task in self._tasks:
            task.cancel()
        self.collector.cancel()

    async def _run_host(
        self, session: Session, sink: RemoteSink, admission: asyncio.Semaphore
    ) -> None:
        host = session.host
        async with admission:
            self._active += 1
            self.peak_active = max(self.peak_active, self._active)
            try:
                outcome = await self._drive(session)
            finally:
                self._active -= 1

            self.outcomes[host] = outcome
            await sink.done(outcome)
            self._emit_status(host, SessionState.TERMINATED)

    async def _drive(self, session: Session) -> RunOutcome:
        """Connect, run and close one session, reducing it to an outcome."""
        host = session.host
        try:
            await session.connect()
        except ConnectError as e:
            logger.debug("Connection to %s failed: %s", host, e)
            return RunOutcome.failure(e)
        except Exception as e:
            logger.exception("Unexpected error connecting to %s", host)
            return RunOutcome.failure(e)

        self._emit_status(host, SessionState.CONNECTED)
        try:
            self._emit_status(host, SessionState.RUNNING)
            return await session.run(self.config.command)
        except SessionError as e:
            logger.debug("Run on %s failed: %s", host, e)
            return RunOutcome.failure(e)
        except Exception as e:
            logger.exception("Unexpected error running on %s", host)
            return RunOutcome.failure(e)
        finally:
            session.close()
