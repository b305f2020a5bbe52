"""SSH authentication material: keys, agent and a shared password."""

from __future__ import annotations

import asyncio
import getpass
import logging
import os
from pathlib import Path
from typing import Any, Callable, Mapping

import asyncssh

from .errors import AuthError

logger = logging.getLogger(__name__)


class PasswordPrompt:
    """Asks for the password the first time it is needed, then reuses it.

    Every caller, the first included, gets the answer (or the failure)
    from the same cached result.
    """

    def __init__(
        self,
        reader: Callable[[str], str] = getpass.getpass,
        prompt: str = "Password:",
    ) -> None:
        self._reader = reader
        self._prompt = prompt
        self._lock: asyncio.Lock | None = None
        self._password: str | None = None
        self._error: AuthError | None = None
        self.prompts = 0

    @property
    def answered(self) -> bool:
        return self._password is not None or self._error is not None

    async def get(self) -> str:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if not self.answered:
                await asyncio.to_thread(self._ask)
        return self._result()

    def prefetch(self) -> str:
        """Prompt right away, outside the event loop."""
        if not self.answered:
            self._ask()
        return self._result()

    def _ask(self) -> None:
        self.prompts += 1
        try:
            self._password = self._reader(self._prompt)
        except (EOFError, OSError) as e:
            self._error = AuthError(f"Failed to read password: {e}")
        else:
            logger.debug("Read password of length %d", len(self._password))

    def _result(self) -> str:
        if self._error is not None:
            raise self._error
        return self._password


class _PromptingClient(asyncssh.SSHClient):
    """Offers the shared password once per connection."""

    def __init__(self, auth: Auth) -> None:
        self._auth = auth
        self._attempted = False

    def password_auth_requested(self):
        if self._attempted:
            return None
        self._attempted = True
        return self._auth.get_password()


class Auth:
    """Authentication methods tried in order: key file, agent, password."""

    def __init__(
        self,
        key_file: str | Path | None = None,
        password_file: str | Path | None = None,
        use_agent: bool = True,
        forward_agent: bool = False,
        environ: Mapping[str, str] | None = None,
        prompt: PasswordPrompt | None = None,
    ) -> None:
        environ = os.environ if environ is None else environ

        self._key: asyncssh.SSHKey | None = None
        if key_file:
            try:
                self._key = asyncssh.read_private_key(str(key_file))
            except (OSError, asyncssh.KeyImportError) as e:
                raise AuthError(f"Failed to load key {key_file}: {e}") from e

        self.use_agent = use_agent
        self.agent_path: str | None = None
        if use_agent or forward_agent:
            sock = environ.get("SSH_AUTH_SOCK")
            if sock:
                if not Path(sock).exists():
                    raise AuthError(f"SSH agent socket not found: {sock}")
                self.agent_path = sock
            elif forward_agent:
                logger.warning("Agent forwarding requested but SSH_AUTH_SOCK is not set")

        self._password: str | None = None
        self._prompt: PasswordPrompt | None = None
        if password_file:
            try:
                self._password = Path(password_file).read_text().strip()
            except OSError as e:
                raise AuthError(f"Failed to read password file: {e}") from e
        else:
            self._prompt = prompt or PasswordPrompt()

    @property
    def methods(self) -> list[str]:
        methods = []
        if self._key is not None:
            methods.append("publickey")
        if self.use_agent and self.agent_path:
            methods.append("agent")
        methods.append("password")
        return methods

    @property
    def needs_prompt(self) -> bool:
        return self._prompt is not None and not self._prompt.answered

    async def get_password(self) -> str:
        if self._password is not None:
            return self._password
        return await self._prompt.get()

    def prefetch_password(self) -> str:
        if self._password is not None:
            return self._password
        return self._prompt.prefetch()

    def require_agent(self) -> None:
        """Fail unless an agent is available for forwarding."""
        if not self.agent_path:
            raise AuthError("No agent available")

    def connect_options(self, forward_agent: bool = False) -> dict[str, Any]:
        """Keyword arguments for ``asyncssh.connect``."""
        options: dict[str, Any] = {
            "client_factory": lambda: _PromptingClient(self),
            "agent_path": self.agent_path if self.use_agent else None,
            # A socket path forwards that agent without authenticating with it
            "agent_forwarding": self.agent_path if forward_agent and self.agent_path else False,
        }
        if self._key is not None:
            options["client_keys"] = [self._key]
        elif not options["agent_path"]:
            options["client_keys"] = None
        return options
