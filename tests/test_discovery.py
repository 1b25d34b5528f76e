"""Peer discovery strategies and merging"""

from fsmoctl.errors import DirectoryUnreachable
from fsmoctl.core.commands import CommandResult
from fsmoctl.cluster.discovery import PeerDiscovery, parse_srv_records


class StaticDirectory:
    def __init__(self, servers=None, error=None):
        self.servers = servers or []
        self.error = error
        self.calls = 0

    async def list_servers(self):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.servers)


def dig_runner(stdout="", returncode=0):
    calls = []

    async def runner(args, timeout):
        calls.append(list(args))
        return CommandResult(args=list(args), returncode=returncode, stdout=stdout)

    runner.calls = calls
    return runner


def test_parse_srv_records():
    output = "0 100 389 dc1.example.test.\n0 100 389 DC2.example.test.\n0 100 389 dc1.example.test.\nbad line\n"
    assert parse_srv_records(output) == ["dc1", "dc2"]


async def test_strategies_are_merged_and_deduplicated(monkeypatch):
    runner = dig_runner("0 100 389 dc2.example.test.\n0 100 389 dc3.example.test.\n")
    discovery = PeerDiscovery("example.test", directory=StaticDirectory(["DC1$", "dc2"]), runner=runner)

    async def no_fallback():
        raise AssertionError("name resolution must not run when other strategies found nodes")

    monkeypatch.setattr(discovery, "from_name_resolution", no_fallback)

    assert await discovery.discover() == ["dc1", "dc2", "dc3"]
    assert runner.calls == [["dig", "+short", "_ldap._tcp.example.test", "SRV"]]


async def test_fallback_runs_when_nothing_found(monkeypatch):
    directory = StaticDirectory(error=DirectoryUnreachable("ldap down"))
    discovery = PeerDiscovery("example.test", directory=directory, runner=dig_runner(returncode=9))

    async def resolved():
        return ["DC9.example.test"]

    monkeypatch.setattr(discovery, "from_name_resolution", resolved)

    assert await discovery.discover() == ["dc9"]
    assert directory.calls == 1


async def test_result_is_cached_until_reset():
    directory = StaticDirectory(["dc1", "dc2"])
    discovery = PeerDiscovery("", directory=directory)

    await discovery.discover()
    await discovery.discover()
    assert directory.calls == 1

    discovery.reset()
    await discovery.discover()
    assert directory.calls == 2


async def test_peers_exclude_self():
    discovery = PeerDiscovery("", directory=StaticDirectory(["dc1", "dc2", "dc3"]))
    assert await discovery.peers(["DC2.example.test", "dc3"]) == ["dc1"]
