"""Exception types raised by mesos-ssh."""


class MesosSSHError(Exception):
    """Base class for all mesos-ssh errors."""


class DiscoveryError(MesosSSHError):
    """Host discovery failed (registry unreachable, bad response, bad file)."""


class AuthError(MesosSSHError):
    """Authentication material could not be set up or obtained."""


class SessionError(MesosSSHError):
    """A failure confined to a single host's session."""

    def __init__(self, host: str, message: str):
        self.host = host
        super().__init__(message)


class ConnectError(SessionError):
    """Failed to establish the SSH connection to a host."""

    def __init__(self, host: str, original_error: Exception):
        """Initialize connection error.

        Args:
            host: Host that could not be reached
            original_error: Exception raised by the transport
        """
        self.original_error = original_error
        super().__init__(host, f"Cannot connect to {host}: {original_error}")


class StagingError(SessionError):
    """Temporary directory creation or file transfer failed."""


class AbnormalExitError(SessionError):
    """The remote command ended without a clean exit status."""


class CommandTimeoutError(AbnormalExitError):
    """The remote command was torn down by its deadline."""

    def __init__(self, host: str, timeout: float):
        self.timeout = timeout
        super().__init__(host, f"Command on {host} timed out after {timeout:g}s")
