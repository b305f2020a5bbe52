"""mesos-ssh: Run a command on many cluster hosts over SSH and collect the output."""

from .auth import Auth, PasswordPrompt
from .collectors import BatchedCollector, Collector, InterleavedCollector
from .config import CommandSpec, Defaults, RunConfig, load_config
from .scheduler import Scheduler
from .session import Session, SessionState
from .sink import OutputEvent, RemoteSink, RunOutcome, Stream

__all__ = [
    "Auth",
    "PasswordPrompt",
    "BatchedCollector",
    "Collector",
    "InterleavedCollector",
    "CommandSpec",
    "Defaults",
    "RunConfig",
    "load_config",
    "Scheduler",
    "Session",
    "SessionState",
    "OutputEvent",
    "RemoteSink",
    "RunOutcome",
    "Stream",
]
