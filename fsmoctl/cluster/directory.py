"""
Directory role query adapter

The only place that talks to samba-tool and interprets its text output.
Everything it returns is typed (RoleOwnership, lists of normalized node
names); every failure is a DirectoryUnreachable or SeizureFailed.
"""

import logging
from typing import Dict, List, Optional, Sequence

from prometheus_client import Counter

from ..errors import DirectoryUnreachable, SeizureFailed
from ..core.commands import CommandRunner, run_command
from ..core.models import ALL_ROLES, Role, RoleOwnership, holder_from_dn, normalize_node

logger = logging.getLogger(__name__)

DIRECTORY_QUERIES = Counter('fsmoctl_directory_queries_total', 'Directory commands issued', ['command', 'result'])

# userAccountControl SERVER_TRUST_ACCOUNT bit
DC_COMPUTER_FILTER = "(userAccountControl:1.2.840.113556.1.4.803:=8192)"


def parse_fsmo_show(output: str) -> Dict[Role, Optional[str]]:
    """Parse `samba-tool fsmo show` into role -> normalized holder.

    Lines look like
    `PdcEmulationMasterRole owner: CN=NTDS Settings,CN=DC1,CN=Servers,...`.
    Roles missing from the output map to None.
    """
    labels = {role.fsmo_label.lower(): role for role in ALL_ROLES}
    holders: Dict[Role, Optional[str]] = {role: None for role in ALL_ROLES}

    for line in output.splitlines():
        label, separator, dn = line.partition(" owner:")
        if not separator:
            continue
        role = labels.get(label.strip().lower())
        if role is None:
            continue
        server = holder_from_dn(dn.strip())
        holders[role] = normalize_node(server) or None

    return holders


def parse_computer_list(output: str) -> List[str]:
    """Parse `samba-tool computer list` output into node names"""
    nodes = []
    for line in output.splitlines():
        name = normalize_node(line)
        if name and name not in nodes:
            nodes.append(name)
    return nodes


class RoleQueryAdapter:
    """Typed access to role ownership and the seize primitive"""

    def __init__(
        self,
        this_node: str,
        samba_tool: str = "samba-tool",
        use_sudo: bool = False,
        timeout: float = 30.0,
        runner: CommandRunner = run_command,
    ):
        self.this_node = normalize_node(this_node)
        self.samba_tool = samba_tool
        self.use_sudo = use_sudo
        self.timeout = timeout
        self.runner = runner

    def _command(self, *args: str) -> List[str]:
        command = [self.samba_tool, *args]
        if self.use_sudo:
            command = ["sudo", "-n", *command]
        return command

    async def _run(self, name: str, args: Sequence[str]):
        result = await self.runner(args, self.timeout)
        DIRECTORY_QUERIES.labels(command=name, result="ok" if result.ok else "error").inc()
        return result

    async def query_roles(self) -> RoleOwnership:
        """Fetch the current role -> holder map"""
        result = await self._run("fsmo_show", self._command("fsmo", "show"))
        if not result.ok:
            raise DirectoryUnreachable(f"Failed to query FSMO roles: {result.describe()}", result.returncode)

        holders = parse_fsmo_show(result.stdout)
        if not any(holders.values()):
            raise DirectoryUnreachable("FSMO query returned no recognizable role owners")

        ownership = RoleOwnership(this_node=self.this_node, holders=holders)
        held = ", ".join(sorted(role.value for role in ownership.held_roles)) or "none"
        logger.info(f"FSMO Roles - This server holds: {held}")
        return ownership

    async def seize(self, role: Role):
        """Force the role onto this node"""
        logger.info(f"Seizing {role.value} role")
        result = await self._run("fsmo_seize", self._command("fsmo", "seize", f"--role={role.samba_name}", "--force"))
        if result.timed_out or result.returncode in (126, 127):
            raise DirectoryUnreachable(f"Seize command for {role.value} could not run: {result.describe()}", result.returncode)
        if not result.ok:
            raise SeizureFailed(role.value, result.describe())
        logger.info(f"Successfully seized {role.value} role")

    async def list_servers(self) -> List[str]:
        """Domain controller computer accounts registered in the directory"""
        result = await self._run("computer_list", self._command("computer", "list", f"--filter={DC_COMPUTER_FILTER}"))
        if not result.ok:
            raise DirectoryUnreachable(f"Failed to list domain controllers: {result.describe()}", result.returncode)
        return parse_computer_list(result.stdout)
