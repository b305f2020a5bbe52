"""Shared fakes for asyncssh processes, connections and authentication."""

import asyncio
from collections import deque
from types import SimpleNamespace

import pytest


class FakeReader:
    """Stands in for an asyncssh SSHReader in byte mode."""

    def __init__(self, chunks=(), error=None, block=None):
        self._chunks = deque(bytes(c) for c in chunks)
        self._error = error
        self._block = block
        self.read_sizes = []

    async def read(self, n=-1):
        await asyncio.sleep(0)
        self.read_sizes.append(n)
        if not self._chunks:
            if self._error is not None:
                raise self._error
            if self._block is not None:
                await self._block.wait()
            return b""
        chunk = self._chunks.popleft()
        if n > 0 and len(chunk) > n:
            self._chunks.appendleft(chunk[n:])
            chunk = chunk[:n]
        return chunk


class FakeWriter:
    """Stands in for an asyncssh SSHWriter."""

    def __init__(self):
        self.data = bytearray()
        self.eof = False

    def write(self, data):
        if self.eof:
            raise BrokenPipeError("stdin closed")
        self.data += data

    def write_eof(self):
        self.eof = True

    async def drain(self):
        await asyncio.sleep(0)


class FakeProcess:
    """Stands in for asyncssh.SSHClientProcess.

    With ``hang=True`` the process only finishes when closed, and its
    readers block until then.
    """

    def __init__(
        self,
        stdout=(),
        stderr=(),
        exit_status=0,
        exit_signal=None,
        hang=False,
        delay=0.0,
        wait_stdout=b"",
        wait_stderr=b"",
    ):
        self._closed_event = asyncio.Event()
        block = self._closed_event if hang else None
        self.stdout = FakeReader(stdout, block=block)
        self.stderr = FakeReader(stderr, block=block)
        self.stdin = FakeWriter()
        self.exit_status = None if hang else exit_status
        self.exit_signal = exit_signal
        self.closed = False
        self._hang = hang
        self._delay = delay
        self._wait_stdout = wait_stdout
        self._wait_stderr = wait_stderr

    def close(self):
        self.closed = True
        self.exit_status = None
        self._closed_event.set()

    async def wait_closed(self):
        if self._hang:
            await self._closed_event.wait()
        else:
            await asyncio.sleep(self._delay)

    async def wait(self):
        await self.wait_closed()
        return SimpleNamespace(
            exit_status=self.exit_status,
            stdout=self._wait_stdout,
            stderr=self._wait_stderr,
        )


class FakeConnection:
    """Stands in for asyncssh.SSHClientConnection.

    ``processes`` are handed out in order by create_process; ``results``
    maps a command prefix to the result returned by run().
    """

    def __init__(self, processes=(), results=None):
        self.processes = deque(processes)
        self.results = results or {}
        self.created = []
        self.ran = []
        self.closed = False

    async def create_process(self, command, **kwargs):
        self.created.append((command, kwargs))
        return self.processes.popleft()

    async def run(self, command, check=False, encoding="utf-8"):
        self.ran.append(command)
        for prefix, result in self.results.items():
            if command.startswith(prefix):
                if isinstance(result, Exception):
                    raise result
                return result
        return SimpleNamespace(exit_status=0, stdout=b"", stderr=b"")

    def close(self):
        self.closed = True


class FakeAuth:
    """Minimal Auth replacement that counts password requests."""

    def __init__(self, password="hunter2", agent=True):
        self.password = password
        self.agent = agent
        self.password_requests = 0

    async def get_password(self):
        self.password_requests += 1
        return self.password

    def require_agent(self):
        from mesos_ssh.errors import AuthError

        if not self.agent:
            raise AuthError("No agent available")

    def connect_options(self, forward_agent=False):
        return {}


@pytest.fixture
def fake_auth():
    return FakeAuth()
