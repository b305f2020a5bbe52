"""Configuration for mesos-ssh runs."""

from __future__ import annotations

import getpass
import os
import re
import shlex
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_MESOS = "http://leader.mesos:5050"
CONFIG_ENV = "MESOS_SSH_CONFIG"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "root"


@dataclass(frozen=True)
class CommandSpec:
    """The command run on every host. Shared read-only by all sessions."""

    command: str
    sudo: bool = False
    pty: bool = False
    forward_agent: bool = False
    timeout: float = 60.0
    files: tuple[Path, ...] = ()

    @property
    def needs_pty(self) -> bool:
        # sudo won't prompt for a password without a controlling terminal
        return self.sudo or self.pty

    def remote_command(self, workdir: str | None = None) -> str:
        """Build the shell command line sent to the remote host."""
        cmd = self.command
        if workdir:
            cmd = f"cd {shlex.quote(workdir)}; {cmd}"
        if self.sudo:
            cmd = f"/usr/bin/sudo /bin/bash -c {shlex.quote(cmd)}"
        return cmd


@dataclass
class Defaults:
    """Default values that can be overridden from a config file or flags."""

    user: str = field(default_factory=_current_user)
    port: int = 22
    parallel: int = 4
    timeout: float = 60.0
    mesos: str = DEFAULT_MESOS
    key_file: Path | None = None
    password_file: Path | None = None
    agent: bool = True
    forward_agent: bool = False
    interleave: bool = False
    grace_period: float = 0.1


@dataclass(frozen=True)
class RunConfig:
    """Everything the scheduler and sessions need for one run."""

    command: CommandSpec
    user: str
    port: int = 22
    parallel: int = 4
    interleave: bool = False
    grace_period: float = 0.1

    def __post_init__(self) -> None:
        if self.parallel < 1:
            raise ValueError(f"parallel must be >= 1, got {self.parallel}")


def parse_duration(text: str | int | float) -> float:
    """Parse a duration like ``90``, ``30s``, ``2m``, ``1m30s`` or ``500ms``.

    Bare numbers are seconds.
    """
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        seconds = float(text)
    else:
        value = str(text).strip()
        try:
            seconds = float(value)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(value):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if not value or pos != len(value):
                raise ValueError(f"Invalid duration: {text!r}") from None

    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {text!r}")
    return seconds


def find_config(explicit: str | Path | None = None) -> Path | None:
    """Locate the config file: explicit path, then $MESOS_SSH_CONFIG."""
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return None


def load_config(config_path: str | Path) -> Defaults:
    """Load defaults from a YAML file."""
    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    return _parse_defaults(raw)


def _parse_defaults(raw: dict[str, Any]) -> Defaults:
    """Parse the defaults section."""
    defaults_raw = raw.get("defaults", {}) or {}
    if not isinstance(defaults_raw, dict):
        raise ValueError("'defaults' must be a mapping")

    known = {f.name for f in fields(Defaults)}
    unknown = set(defaults_raw) - known
    if unknown:
        raise ValueError(f"Unknown defaults: {', '.join(sorted(unknown))}")

    defaults = Defaults()
    if "user" in defaults_raw:
        defaults.user = str(defaults_raw["user"])
    if "port" in defaults_raw:
        defaults.port = _positive_int(defaults_raw["port"], "port")
    if "parallel" in defaults_raw:
        defaults.parallel = _positive_int(defaults_raw["parallel"], "parallel")
    if "timeout" in defaults_raw:
        defaults.timeout = parse_duration(defaults_raw["timeout"])
    if "grace_period" in defaults_raw:
        defaults.grace_period = parse_duration(defaults_raw["grace_period"])
    if "mesos" in defaults_raw:
        defaults.mesos = str(defaults_raw["mesos"])
    if defaults_raw.get("key_file"):
        defaults.key_file = Path(defaults_raw["key_file"]).expanduser()
    if defaults_raw.get("password_file"):
        defaults.password_file = Path(defaults_raw["password_file"]).expanduser()
    for flag in ("agent", "forward_agent", "interleave"):
        if flag in defaults_raw:
            value = defaults_raw[flag]
            if not isinstance(value, bool):
                raise ValueError(f"'{flag}' must be true or false")
            setattr(defaults, flag, value)

    return defaults


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"'{name}' must be a positive integer, got {value!r}")
    return value
