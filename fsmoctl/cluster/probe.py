"""
Connectivity probe

A node counts as reachable when at least two of three independent signals
answer: ICMP echo, the LDAP port and the SMB port. A single signal is never
enough to declare a node dead or alive.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from prometheus_client import Counter

from ..core.commands import CommandRunner, run_command
from ..core.models import UNKNOWN_HOLDER, normalize_node

logger = logging.getLogger(__name__)

PROBE_VERDICTS = Counter('fsmoctl_probe_verdicts_total', 'Connectivity probe verdicts', ['verdict'])


class ProbeVerdict(Enum):
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"
    # Majority failed but not every signal agreed
    AMBIGUOUS = "ambiguous"


@dataclass
class ProbeResult:
    """Per-signal outcome of probing one node"""
    node: str
    checks: Dict[str, Optional[bool]] = field(default_factory=dict)
    required_passes: int = 2

    @property
    def passed(self) -> int:
        return sum(1 for value in self.checks.values() if value)

    @property
    def reachable(self) -> bool:
        return self.passed >= self.required_passes

    @property
    def verdict(self) -> ProbeVerdict:
        if self.reachable:
            return ProbeVerdict.REACHABLE
        # Errors (None) and lone passing signals make the failure ambiguous
        if self.passed > 0 or any(value is None for value in self.checks.values()):
            return ProbeVerdict.AMBIGUOUS
        return ProbeVerdict.UNREACHABLE

    def summary(self) -> str:
        return f"{self.passed}/{len(self.checks)} tests passed"


class ConnectivityProbe:
    """Multi-signal reachability test"""

    def __init__(
        self,
        timeout: float = 2.0,
        ldap_port: int = 389,
        smb_port: int = 445,
        required_passes: int = 2,
        ping_command: str = "ping",
        domain: str = "",
        runner: CommandRunner = run_command,
    ):
        self.timeout = timeout
        self.ldap_port = ldap_port
        self.smb_port = smb_port
        self.required_passes = required_passes
        self.ping_command = ping_command
        self.domain = domain
        self.runner = runner

    def address(self, node: str) -> str:
        """Qualify short node names with the domain when one is configured"""
        if self.domain and "." not in node:
            return f"{node}.{self.domain}"
        return node

    async def _ping(self, host: str) -> Optional[bool]:
        wait = str(max(1, int(round(self.timeout))))
        result = await self.runner([self.ping_command, "-c", "1", "-W", wait, host], self.timeout + 1)
        if result.returncode in (126, 127):
            logger.debug(f"ping unavailable: {result.describe()}")
            return None
        return result.ok

    async def _tcp(self, host: str, port: int) -> Optional[bool]:
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=self.timeout)
        except (asyncio.TimeoutError, ConnectionError):
            return False
        except OSError as e:
            # Name resolution failures land here as well
            logger.debug(f"TCP probe {host}:{port} failed: {e}")
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def check(self, node: str) -> ProbeResult:
        """Run all three checks concurrently"""
        host = normalize_node(node) if node else ""
        result = ProbeResult(node=host, required_passes=self.required_passes)
        if not host or host == UNKNOWN_HOLDER:
            result.checks = {"ping": False, "ldap": False, "smb": False}
            PROBE_VERDICTS.labels(verdict=result.verdict.value).inc()
            return result

        address = self.address(host)
        ping, ldap, smb = await asyncio.gather(
            self._ping(address),
            self._tcp(address, self.ldap_port),
            self._tcp(address, self.smb_port),
        )
        result.checks = {"ping": ping, "ldap": ldap, "smb": smb}
        PROBE_VERDICTS.labels(verdict=result.verdict.value).inc()
        logger.debug(f"DC connectivity tests for {host}: {result.summary()}")
        return result

    async def is_reachable(self, node: str) -> bool:
        return (await self.check(node)).reachable
