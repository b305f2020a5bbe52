#!/usr/bin/env python3
"""Main entry point for mesos-ssh."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .auth import Auth
from .collectors import BatchedCollector, Collector, InterleavedCollector
from .config import (
    CommandSpec,
    Defaults,
    RunConfig,
    find_config,
    load_config,
    parse_duration,
)
from .discovery import Target, get_hosts
from .errors import AuthError, DiscoveryError
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

TARGETS = "|".join(target.value for target in Target)


def _duration(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _positive(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        value = 0
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {text!r}")
    return value


def build_parser(defaults: Defaults) -> argparse.ArgumentParser:
    """Command line parser whose defaults come from ``defaults``."""
    parser = argparse.ArgumentParser(
        prog="mesos-ssh",
        usage=f"%(prog)s [OPTIONS] <{TARGETS}|FILE> <cmd>...",
        description="Run a command on many hosts of a Mesos cluster over SSH",
    )
    parser.add_argument(
        "target",
        help=f"Hosts to run on: one of {', '.join(t.value for t in Target)}, "
        "or a file of newline-separated hosts",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to run")
    parser.add_argument(
        "-m",
        "--parallel",
        type=_positive,
        default=defaults.parallel,
        help="How many sessions to run in parallel (default: %(default)s)",
    )
    parser.add_argument("--user", default=defaults.user, help="Remote username")
    parser.add_argument("--port", type=_positive, default=defaults.port, help="SSH port")
    parser.add_argument(
        "--sudo",
        action="store_true",
        help="Run commands as superuser on the remote machine",
    )
    parser.add_argument(
        "--pty",
        action="store_true",
        help="Run command in a pty (automatically applied with --sudo)",
    )
    parser.add_argument(
        "--timeout",
        type=_duration,
        default=defaults.timeout,
        help="Timeout for remote command, e.g. 90, 30s, 2m (default: %(default)ss)",
    )
    parser.add_argument(
        "--interleave",
        action="store_true",
        default=defaults.interleave,
        help="Interleave output from each session rather than wait for it to finish",
    )
    parser.add_argument(
        "-f",
        "--file",
        dest="files",
        action="append",
        type=Path,
        default=[],
        help="Copy a file to a temporary directory the command runs in (repeatable)",
    )
    parser.add_argument(
        "-A",
        "--forward-agent",
        action="store_true",
        default=defaults.forward_agent,
        help="Forward the local SSH agent to the remote command",
    )
    parser.add_argument(
        "--no-agent",
        action="store_true",
        default=not defaults.agent,
        help="Don't authenticate with the local SSH agent",
    )
    parser.add_argument(
        "-i", "--key", type=Path, default=defaults.key_file, help="Private key file"
    )
    parser.add_argument(
        "--password-file",
        type=Path,
        default=defaults.password_file,
        help="Read the password from a file instead of prompting",
    )
    parser.add_argument(
        "--mesos", default=defaults.mesos, help="Address of Mesos leader"
    )
    parser.add_argument("--config", type=Path, help="YAML file with defaults")
    parser.add_argument("--debug", action="store_true", help="Write debug output")
    parser.add_argument(
        "--dashboard", action="store_true", help="Show output in a TUI dashboard"
    )
    return parser


def configure_logging(debug: bool) -> None:
    """Set up stderr logging; DEBUG when requested, WARNING otherwise."""
    if debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(filename)s:%(lineno)d %(levelname)s %(message)s",
            stream=sys.stderr,
        )
    else:
        logging.basicConfig(
            level=logging.WARNING, format="mesos-ssh: %(message)s", stream=sys.stderr
        )
        _quiet_third_party_loggers()


def _quiet_third_party_loggers() -> None:
    """Reduce noise from third-party libraries."""
    logging.getLogger("asyncssh").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _load_defaults(argv: list[str] | None) -> Defaults:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", type=Path)
    known, _ = pre.parse_known_args(argv)

    config_path = find_config(known.config)
    if config_path is None:
        return Defaults()
    return load_config(config_path)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        defaults = _load_defaults(argv)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (ValueError, OSError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    parser = build_parser(defaults)
    args = parser.parse_args(argv)
    if not args.command:
        parser.error("a command is required")

    configure_logging(args.debug)

    # Staged files must be readable before any host is contacted
    for path in args.files:
        if not path.is_file():
            print(f"Error: File not found: {path}", file=sys.stderr)
            return 1

    command = CommandSpec(
        " ".join(args.command),
        sudo=args.sudo,
        pty=args.pty,
        forward_agent=args.forward_agent,
        timeout=args.timeout,
        files=tuple(args.files),
    )
    config = RunConfig(
        command,
        user=args.user,
        port=args.port,
        parallel=args.parallel,
        interleave=args.interleave,
        grace_period=defaults.grace_period,
    )

    try:
        hosts = asyncio.run(get_hosts(args.target, args.mesos))
    except DiscoveryError as e:
        print(f"Error: Failed to find hosts: {e}", file=sys.stderr)
        return 1

    if not hosts:
        print(f"Error: No hosts found for {args.target}", file=sys.stderr)
        return 1
    logger.debug("Found hosts: %s", ", ".join(hosts))

    try:
        auth = Auth(
            key_file=args.key,
            password_file=args.password_file,
            use_agent=not args.no_agent,
            forward_agent=args.forward_agent,
        )
    except AuthError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    logger.debug("Authentication methods: %s", ", ".join(auth.methods))

    try:
        if args.dashboard:
            return _run_dashboard(hosts, config, auth)
        return _run_headless(hosts, config, auth)
    except KeyboardInterrupt:
        return 130


def make_collector(config: RunConfig) -> Collector:
    """Pick the collector for the requested output mode."""
    if config.interleave:
        return InterleavedCollector(grace_period=config.grace_period)
    return BatchedCollector(grace_period=config.grace_period)


def _run_headless(hosts: list[str], config: RunConfig, auth: Auth) -> int:
    """Run the scheduler and print to stdout."""

    async def run() -> None:
        scheduler = Scheduler(hosts, config, make_collector(config), auth=auth)
        await scheduler.run()

    asyncio.run(run())
    return 0


def _run_dashboard(hosts: list[str], config: RunConfig, auth: Auth) -> int:
    """Run with the TUI dashboard."""
    from .dashboard import Dashboard

    # The dashboard owns the terminal, so ask for the password up front
    if auth.needs_prompt and (config.command.sudo or auth.methods == ["password"]):
        try:
            auth.prefetch_password()
        except AuthError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    app = Dashboard(hosts, config, auth)
    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
