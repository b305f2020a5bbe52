"""Pared-down client for the Mesos operator HTTP API."""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass, field
from typing import Any

import dns.asyncresolver
import dns.exception
import httpx

from .config import DEFAULT_MESOS
from .errors import DiscoveryError

logger = logging.getLogger(__name__)

MASTERS_NAME = "master.mesos"
LEADER_SRV = "_leader._tcp.mesos"
PUBLIC_ROLE = "slave_public"


@dataclass
class MesosResource:
    name: str
    type: str = ""
    role: str = ""

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> MesosResource:
        return cls(
            name=raw.get("name", ""),
            type=raw.get("type", ""),
            role=raw.get("role", "") or "",
        )


@dataclass
class MesosAgent:
    """An agent as reported by GET_AGENTS."""

    hostname: str
    port: int = 5051
    active: bool = True
    resources: list[MesosResource] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> MesosAgent:
        info = raw.get("agent_info") or {}
        hostname = info.get("hostname")
        if not hostname:
            raise DiscoveryError("Agent entry without a hostname")
        return cls(
            hostname=hostname,
            port=info.get("port", 5051),
            active=raw.get("active", True),
            resources=[MesosResource.from_dict(r) for r in info.get("resources") or []],
        )

    @property
    def is_public(self) -> bool:
        """Public agents carry resources reserved for the public role."""
        return any(resource.role == PUBLIC_ROLE for resource in self.resources)


class MesosClient:
    """Talks to one Mesos master endpoint."""

    def __init__(self, endpoint: str, http: httpx.AsyncClient) -> None:
        self.endpoint = endpoint.rstrip("/")
        self._http = http

    async def get_version(self) -> dict[str, Any]:
        """Used to check for a Mesos endpoint."""
        response = await self._call("GET_VERSION")
        return response.get("get_version") or {}

    async def get_agents(self) -> list[MesosAgent]:
        """All agents registered with the master."""
        response = await self._call("GET_AGENTS")
        agents = (response.get("get_agents") or {}).get("agents") or []
        return [MesosAgent.from_dict(agent) for agent in agents]

    async def _call(self, request_type: str) -> dict[str, Any]:
        try:
            response = await self._http.post(
                f"{self.endpoint}/api/v1",
                json={"type": request_type},
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Mesos request to {self.endpoint} failed: {e}") from e
        except ValueError as e:
            raise DiscoveryError(f"Malformed response from {self.endpoint}: {e}") from e

        if not isinstance(result, dict):
            raise DiscoveryError(f"Malformed response from {self.endpoint}")
        if result.get("type") != request_type:
            raise DiscoveryError(
                f"Unexpected response type '{result.get('type')}', wanted '{request_type}'"
            )
        return result


async def _leader_candidates() -> list[str]:
    """Endpoints advertised by the leader.mesos SRV record."""
    try:
        answer = await dns.asyncresolver.resolve(LEADER_SRV, "SRV")
    except dns.exception.DNSException as e:
        logger.warning("Failed to lookup %s SRV record: %s", LEADER_SRV, e)
        return []
    return [
        f"http://{record.target.to_text(omit_final_dot=True)}:{record.port}"
        for record in answer
    ]


async def discover_leader(endpoint: str | None, http: httpx.AsyncClient) -> MesosClient:
    """Find a reachable Mesos master.

    Tries the given endpoint, then the SRV record, then the well-known
    leader address.
    """
    if endpoint:
        client = MesosClient(endpoint, http)
        try:
            await client.get_version()
            return client
        except DiscoveryError as e:
            logger.warning(
                "Failed to connect to Mesos at %s, trying autodiscovery: %s", endpoint, e
            )

    for candidate in await _leader_candidates():
        client = MesosClient(candidate, http)
        try:
            await client.get_version()
            return client
        except DiscoveryError as e:
            logger.debug("Mesos candidate %s unavailable: %s", candidate, e)

    client = MesosClient(DEFAULT_MESOS, http)
    try:
        await client.get_version()
    except DiscoveryError as e:
        raise DiscoveryError(f"Failed checking {DEFAULT_MESOS}: {e}") from e
    return client


async def lookup_masters(name: str = MASTERS_NAME) -> list[str]:
    """Addresses of the Mesos masters, in resolver order."""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(name, None, type=socket.SOCK_STREAM)
    except OSError as e:
        raise DiscoveryError(f"Failed to resolve {name}: {e}") from e

    addresses: list[str] = []
    for _family, _type, _proto, _canon, sockaddr in infos:
        if sockaddr[0] not in addresses:
            addresses.append(sockaddr[0])
    return addresses
