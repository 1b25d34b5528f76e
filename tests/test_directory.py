"""samba-tool output parsing and the role query adapter"""

import pytest

from fsmoctl.errors import DirectoryUnreachable, SeizureFailed
from fsmoctl.core.commands import CommandResult
from fsmoctl.core.models import Role
from fsmoctl.cluster.directory import RoleQueryAdapter, parse_computer_list, parse_fsmo_show

SITE = "CN=Servers,CN=Default-First-Site-Name,CN=Sites,CN=Configuration,DC=example,DC=test"

FSMO_SHOW = f"""SchemaMasterRole owner: CN=NTDS Settings,CN=DC1,{SITE}
InfrastructureMasterRole owner: CN=NTDS Settings,CN=DC2,{SITE}
RidAllocationMasterRole owner: CN=NTDS Settings,CN=DC1,{SITE}
PdcEmulationMasterRole owner: CN=NTDS Settings,CN=DC2,{SITE}
DomainNamingMasterRole owner: CN=NTDS Settings,CN=DC1,{SITE}
DomainDnsZonesMasterRole owner: CN=NTDS Settings,CN=DC3,{SITE}
ForestDnsZonesMasterRole owner: CN=NTDS Settings,CN=DC3,{SITE}
"""


class RecordingRunner:
    def __init__(self, results=None):
        self.results = list(results or [])
        self.calls = []

    async def __call__(self, args, timeout):
        self.calls.append(list(args))
        result = self.results.pop(0)
        result.args = list(args)
        return result


def test_parse_fsmo_show():
    holders = parse_fsmo_show(FSMO_SHOW)
    assert holders == {
        Role.SCHEMA: "dc1",
        Role.INFRASTRUCTURE: "dc2",
        Role.RID: "dc1",
        Role.PDC: "dc2",
        Role.DOMAIN_NAMING: "dc1",
    }


def test_parse_fsmo_show_missing_roles():
    holders = parse_fsmo_show(f"PdcEmulationMasterRole owner: CN=NTDS Settings,CN=DC2,{SITE}\nnoise\n")
    assert holders[Role.PDC] == "dc2"
    assert holders[Role.RID] is None


def test_parse_computer_list():
    assert parse_computer_list("DC1$\nDC2$\n\ndc1$\n") == ["dc1", "dc2"]


async def test_query_roles_marks_held_roles():
    runner = RecordingRunner([CommandResult(args=[], returncode=0, stdout=FSMO_SHOW)])
    adapter = RoleQueryAdapter("DC2.example.test", runner=runner)

    ownership = await adapter.query_roles()

    assert ownership.held_roles == frozenset({Role.PDC, Role.INFRASTRUCTURE})
    assert runner.calls == [["samba-tool", "fsmo", "show"]]


async def test_query_failure_is_directory_unreachable():
    runner = RecordingRunner([CommandResult(args=[], returncode=1, stderr="ERROR: LDAP connection failed\n")])
    with pytest.raises(DirectoryUnreachable) as excinfo:
        await RoleQueryAdapter("dc1", runner=runner).query_roles()
    assert excinfo.value.returncode == 1


async def test_query_without_owners_is_directory_unreachable():
    runner = RecordingRunner([CommandResult(args=[], returncode=0, stdout="nothing useful\n")])
    with pytest.raises(DirectoryUnreachable):
        await RoleQueryAdapter("dc1", runner=runner).query_roles()


async def test_seize_command_line():
    runner = RecordingRunner([CommandResult(args=[], returncode=0)])
    await RoleQueryAdapter("dc1", use_sudo=True, runner=runner).seize(Role.DOMAIN_NAMING)
    assert runner.calls == [["sudo", "-n", "samba-tool", "fsmo", "seize", "--role=naming", "--force"]]


async def test_seize_refused_is_seizure_failed():
    runner = RecordingRunner([CommandResult(args=[], returncode=255, stderr="ERROR: Failed to seize\n")])
    with pytest.raises(SeizureFailed) as excinfo:
        await RoleQueryAdapter("dc1", runner=runner).seize(Role.PDC)
    assert excinfo.value.role == "PDC"


@pytest.mark.parametrize("result", [
    CommandResult(args=[], returncode=-1, timed_out=True),
    CommandResult(args=[], returncode=127, stderr="samba-tool: command not found"),
])
async def test_seize_that_cannot_run_is_directory_unreachable(result):
    with pytest.raises(DirectoryUnreachable):
        await RoleQueryAdapter("dc1", runner=RecordingRunner([result])).seize(Role.RID)


async def test_list_servers_uses_dc_filter():
    runner = RecordingRunner([CommandResult(args=[], returncode=0, stdout="DC1$\nDC2$\n")])
    assert await RoleQueryAdapter("dc1", runner=runner).list_servers() == ["dc1", "dc2"]
    assert runner.calls[0][:3] == ["samba-tool", "computer", "list"]
    assert "8192" in runner.calls[0][3]
