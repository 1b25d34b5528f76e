"""
Peer discovery

Finds the other domain controllers of the domain. Strategies run in order:

- directory computer accounts (samba-tool computer list)
- DNS SRV records for _ldap._tcp.<domain>
- name resolution of the domain itself, only when both of the above came up empty

Results of every strategy that succeeded are merged and deduplicated by
normalized node name.
"""

import asyncio
import logging
import socket
from typing import List, Optional

from ..errors import DirectoryUnreachable
from ..core.commands import CommandRunner, run_command
from ..core.models import normalize_node
from .directory import RoleQueryAdapter

logger = logging.getLogger(__name__)


def parse_srv_records(output: str) -> List[str]:
    """Parse `dig +short ... SRV` lines (`priority weight port target`)"""
    nodes = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) != 4:
            continue
        name = normalize_node(fields[3])
        if name and name not in nodes:
            nodes.append(name)
    return nodes


class PeerDiscovery:
    """Multi-strategy domain controller discovery"""

    def __init__(
        self,
        domain: str,
        directory: Optional[RoleQueryAdapter] = None,
        dig_command: str = "dig",
        timeout: float = 10.0,
        runner: CommandRunner = run_command,
    ):
        self.domain = domain
        self.directory = directory
        self.dig_command = dig_command
        self.timeout = timeout
        self.runner = runner
        self._cache: Optional[List[str]] = None

    def reset(self):
        """Forget the cached result of the current cycle"""
        self._cache = None

    async def from_directory(self) -> List[str]:
        if self.directory is None:
            return []
        try:
            return await self.directory.list_servers()
        except DirectoryUnreachable as e:
            logger.warning(f"Directory discovery failed: {e}")
            return []

    async def from_srv(self) -> List[str]:
        if not self.domain:
            return []
        record = f"_ldap._tcp.{self.domain}"
        result = await self.runner([self.dig_command, "+short", record, "SRV"], self.timeout)
        if not result.ok:
            logger.warning(f"SRV lookup for {record} failed: {result.describe()}")
            return []
        return parse_srv_records(result.stdout)

    async def from_name_resolution(self) -> List[str]:
        """Reverse-resolve the addresses the domain name points at"""
        if not self.domain:
            return []
        loop = asyncio.get_running_loop()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(self.domain, None, type=socket.SOCK_STREAM), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Cannot resolve {self.domain}: {e}")
            return []

        nodes = []
        for address in sorted({info[4][0] for info in infos}):
            try:
                hostname, _, _ = await asyncio.wait_for(
                    loop.run_in_executor(None, socket.gethostbyaddr, address), timeout=self.timeout
                )
            except (OSError, asyncio.TimeoutError) as e:
                logger.debug(f"No reverse record for {address}: {e}")
                continue
            name = normalize_node(hostname)
            if name and name not in nodes:
                nodes.append(name)
        return nodes

    async def discover(self) -> List[str]:
        """All known domain controllers, sorted, cached for the cycle"""
        if self._cache is not None:
            return list(self._cache)

        found = set()
        for strategy in (self.from_directory, self.from_srv):
            nodes = await strategy()
            logger.debug(f"{strategy.__name__} found {len(nodes)} domain controllers")
            found.update(filter(None, map(normalize_node, nodes)))

        if not found:
            logger.info("Directory and SRV discovery found nothing, falling back to name resolution")
            found.update(filter(None, map(normalize_node, await self.from_name_resolution())))

        self._cache = sorted(found)
        logger.info(f"Discovered {len(self._cache)} domain controllers: {', '.join(self._cache) or 'none'}")
        return list(self._cache)

    async def peers(self, exclude: List[str]) -> List[str]:
        """Discovered nodes minus the excluded identities"""
        excluded = {normalize_node(name) for name in exclude}
        return [node for node in await self.discover() if node not in excluded]
