"""One host's SSH session: connect, stage files, run the command, relay output."""

from __future__ import annotations

import asyncio
import logging
import shlex
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Sequence

import asyncssh

from .auth import Auth
from .config import CommandSpec
from .errors import (
    AbnormalExitError,
    AuthError,
    CommandTimeoutError,
    ConnectError,
    SessionError,
    StagingError,
)
from .sink import RemoteSink, RunOutcome
from .staging import SCP_RECEIVER, iter_scp_stream

logger = logging.getLogger(__name__)

# sudo's prompt; only looked for at the very start of stdout
PROMPT_MARKER = b"[sudo] password for "
PROMPT_SCAN_LIMIT = 64
PROMPT_READ_SIZE = 32

RELAY_READ_SIZE = 32 * 1024

TERM_TYPE = "xterm"
TERM_SIZE = (80, 25)
# RFC 4254 opcodes: ECHO off, TTY_OP_ISPEED and TTY_OP_OSPEED 14400 baud
TERM_MODES = {53: 0, 128: 14400, 129: 14400}

Send = Callable[[bytes], Awaitable[None]]


class SessionState(Enum):
    """Lifecycle of a session."""

    IDLE = "idle"
    CONNECTED = "connected"
    RUNNING = "running"
    TERMINATED = "terminated"


def _decode(data: bytes | str | None) -> str:
    if not data:
        return ""
    if isinstance(data, str):
        return data.strip()
    return data.decode("utf-8", errors="replace").strip()


class Session:
    """Drives one command to completion on one host."""

    def __init__(
        self,
        host: str,
        user: str,
        port: int,
        auth: Auth,
        sink: RemoteSink,
        forward_agent: bool = False,
    ) -> None:
        self.host = host
        self.user = user
        self.port = port
        self.sink = sink
        self.state = SessionState.IDLE
        self._auth = auth
        self._forward_agent = forward_agent
        self._conn: asyncssh.SSHClientConnection | None = None

    async def connect(self) -> None:
        """Open the SSH connection to the host."""
        logger.debug("Starting connection to %s@%s:%d", self.user, self.host, self.port)
        try:
            self._conn = await asyncssh.connect(
                self.host,
                port=self.port,
                username=self.user,
                known_hosts=None,  # Skip host key verification
                **self._auth.connect_options(self._forward_agent),
            )
        except (asyncssh.Error, OSError, AuthError) as e:
            raise ConnectError(self.host, e) from e
        self.state = SessionState.CONNECTED

    def close(self) -> None:
        """Close the connection if one is open."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def run(self, command: CommandSpec) -> RunOutcome:
        """Run ``command``, staging its files first if it has any.

        A command that exits, with any status, is a successful run. Raises
        SessionError if staging fails or the command ends abnormally.
        """
        if self.state is not SessionState.CONNECTED:
            raise RuntimeError(f"Session to {self.host} is {self.state.value}")

        self.state = SessionState.RUNNING
        try:
            if not command.files:
                return await self._run_command(command)

            tmpdir = await self._mktemp()
            try:
                await self._send_files(tmpdir, command.files)
                return await self._run_command(command, tmpdir)
            finally:
                await self._deltemp(tmpdir)
        finally:
            self.state = SessionState.TERMINATED

    async def _run_command(
        self, command: CommandSpec, workdir: str | None = None
    ) -> RunOutcome:
        if command.forward_agent:
            try:
                self._auth.require_agent()
            except AuthError as e:
                raise SessionError(self.host, str(e)) from e

        options = {}
        if command.needs_pty:
            logger.debug("Requesting pty on %s", self.host)
            options = {
                "term_type": TERM_TYPE,
                "term_size": TERM_SIZE,
                "term_modes": TERM_MODES,
            }

        logger.debug("Invoking cmd on %s", self.host)
        try:
            process = await self._conn.create_process(
                command.remote_command(workdir), encoding=None, **options
            )
        except (asyncssh.Error, OSError) as e:
            raise AbnormalExitError(
                self.host, f"Failed to start command on {self.host}: {e}"
            ) from e

        timed_out = False

        def expire() -> None:
            nonlocal timed_out
            timed_out = True
            logger.debug("Deadline reached on %s, closing session", self.host)
            process.close()

        deadline = asyncio.get_running_loop().call_later(command.timeout, expire)

        if command.sudo:
            stdout_relay = self._answer_prompt(process.stdout, process.stdin)
        else:
            process.stdin.write_eof()
            stdout_relay = self._relay(process.stdout, self.sink.stdout)
        relays = [
            asyncio.create_task(stdout_relay),
            asyncio.create_task(self._relay(process.stderr, self.sink.stderr)),
        ]

        try:
            await process.wait_closed()
            await asyncio.gather(*relays)
        finally:
            deadline.cancel()
            for task in relays:
                task.cancel()

        if timed_out:
            logger.debug("Cmd on %s timed out", self.host)
            raise CommandTimeoutError(self.host, command.timeout)

        if process.exit_signal is not None:
            signal_name = process.exit_signal[0]
            logger.debug("Cmd on %s killed by signal %s", self.host, signal_name)
            raise AbnormalExitError(
                self.host, f"Command on {self.host} killed by signal {signal_name}"
            )

        status = process.exit_status
        if status is None:
            logger.debug("Cmd on %s terminated abnormally", self.host)
            raise AbnormalExitError(
                self.host, f"Session on {self.host} closed without an exit status"
            )

        logger.debug("Cmd on %s terminated with code %d", self.host, status)
        await self.sink.exit(status)
        return RunOutcome.exited(status)

    async def _relay(self, reader, send: Send) -> None:
        """Copy ``reader`` into the sink until EOF."""
        try:
            while True:
                data = await reader.read(RELAY_READ_SIZE)
                if not data:
                    return
                await send(data)
        except (asyncssh.Error, OSError) as e:
            logger.debug("Read error on %s: %s", self.host, e)

    async def _answer_prompt(self, stdout, stdin) -> None:
        """Answer sudo's password prompt, then relay the rest of stdout.

        Only the first PROMPT_SCAN_LIMIT bytes are scanned. Everything read
        is passed through to the sink unchanged.
        """
        seen = bytearray()
        try:
            while len(seen) < PROMPT_SCAN_LIMIT:
                data = await stdout.read(PROMPT_READ_SIZE)
                if not data:
                    return
                seen += data
                await self.sink.stdout(data)

                if PROMPT_MARKER in seen:
                    logger.debug("Responding to password prompt on %s", self.host)
                    try:
                        password = await self._auth.get_password()
                    except AuthError as e:
                        logger.warning("Cannot answer prompt on %s: %s", self.host, e)
                        break
                    stdin.write(password.encode() + b"\r")
                    break
            else:
                logger.debug(
                    "No sudo prompt found in first %d bytes on %s, skipping",
                    PROMPT_SCAN_LIMIT,
                    self.host,
                )
            stdin.write_eof()
        except (asyncssh.Error, OSError) as e:
            logger.debug("Read error while waiting for password on %s: %s", self.host, e)
            return

        await self._relay(stdout, self.sink.stdout)

    async def _mktemp(self) -> str:
        logger.debug("Creating temporary directory on %s", self.host)
        try:
            result = await self._conn.run("mktemp -d", check=False, encoding=None)
        except (asyncssh.Error, OSError) as e:
            raise StagingError(
                self.host, f"Failed to create temporary directory on {self.host}: {e}"
            ) from e

        path = _decode(result.stdout)
        if result.exit_status != 0 or not path:
            raise StagingError(
                self.host,
                f"mktemp failed on {self.host}: {_decode(result.stderr) or 'no output'}",
            )
        return path

    async def _send_files(self, directory: str, files: Sequence[Path]) -> None:
        logger.debug("Preparing to send files to %s", self.host)
        try:
            process = await self._conn.create_process(
                f"{SCP_RECEIVER} {shlex.quote(directory)}", encoding=None
            )
        except (asyncssh.Error, OSError) as e:
            raise StagingError(
                self.host, f"Failed to start file copy on {self.host}: {e}"
            ) from e

        send_error: Exception | None = None
        try:
            for path in files:
                logger.debug("Sending %s to %s", path, self.host)
                for chunk in iter_scp_stream([path]):
                    process.stdin.write(chunk)
                    await process.stdin.drain()
            process.stdin.write_eof()
        except (asyncssh.Error, OSError) as e:
            logger.debug("Failed to send files to %s: %s", self.host, e)
            send_error = e
            process.close()

        try:
            result = await process.wait()
        except (asyncssh.Error, OSError) as e:
            raise StagingError(self.host, f"File copy failed on {self.host}: {e}") from e

        if send_error is not None:
            raise StagingError(
                self.host, f"Failed to send files to {self.host}: {send_error}"
            ) from send_error
        if result.exit_status != 0:
            remote = _decode(result.stderr) or _decode(result.stdout)
            logger.debug("File copy failed on %s remote: %s", self.host, remote)
            raise StagingError(
                self.host, f"File copy failed on {self.host}: {remote or 'no output'}"
            )

    async def _deltemp(self, directory: str) -> None:
        logger.debug("Removing temporary directory on %s", self.host)
        try:
            result = await self._conn.run(f"rm -rf {shlex.quote(directory)}", check=False)
        except (asyncssh.Error, OSError) as e:
            logger.warning("Failed to remove %s on %s: %s", directory, self.host, e)
            return
        if result.exit_status != 0:
            logger.warning(
                "Failed to remove %s on %s: exit status %s",
                directory,
                self.host,
                result.exit_status,
            )
