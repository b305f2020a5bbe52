"""Resolve a target selector into the list of hosts to run on."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

import httpx

from .errors import DiscoveryError
from .mesos import MesosAgent, discover_leader, lookup_masters

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 10.0


class Target(Enum):
    """Symbolic host selectors. Anything else names a host file."""

    MASTERS = "masters"
    AGENTS = "agents"
    PUBLIC = "public"
    PRIVATE = "private"
    ALL = "all"


_AGENT_FILTERS: dict[Target, Callable[[MesosAgent], bool]] = {
    Target.AGENTS: lambda agent: True,
    Target.ALL: lambda agent: True,
    Target.PUBLIC: lambda agent: agent.is_public,
    Target.PRIVATE: lambda agent: not agent.is_public,
}


def read_host_file(path: str | Path) -> list[str]:
    """Read newline-separated hosts, skipping blank lines."""
    try:
        contents = Path(path).read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise DiscoveryError(f"Failed to read host file {path}: {e}") from e

    return [line.strip() for line in contents.splitlines() if line.strip()]


async def get_hosts(
    selector: str,
    mesos: str | None = None,
    http: httpx.AsyncClient | None = None,
    resolve_masters: Callable[[], Awaitable[list[str]]] = lookup_masters,
) -> list[str]:
    """Look up the hosts for ``selector``."""
    try:
        target = Target(selector)
    except ValueError:
        return read_host_file(selector)

    if target is Target.MASTERS:
        return await resolve_masters()

    if http is None:
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
            return await _agent_hosts(target, mesos, client, resolve_masters)
    return await _agent_hosts(target, mesos, http, resolve_masters)


async def _agent_hosts(
    target: Target,
    mesos: str | None,
    http: httpx.AsyncClient,
    resolve_masters: Callable[[], Awaitable[list[str]]],
) -> list[str]:
    client = await discover_leader(mesos, http)
    agents = await client.get_agents()
    logger.debug("Mesos at %s reported %d agents", client.endpoint, len(agents))

    keep = _AGENT_FILTERS[target]
    hosts = [agent.hostname for agent in agents if keep(agent)]
    if target is Target.ALL:
        hosts.extend(await resolve_masters())
    return hosts
