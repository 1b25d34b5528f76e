"""Connectivity probe majority logic"""

import asyncio
import socket

import pytest

from fsmoctl.core.commands import CommandResult
from fsmoctl.cluster.probe import ConnectivityProbe, ProbeResult, ProbeVerdict


def ping_runner(returncode=0):
    calls = []

    async def runner(args, timeout):
        calls.append(list(args))
        return CommandResult(args=list(args), returncode=returncode)

    runner.calls = calls
    return runner


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
async def listening_port():
    async def handle(reader, writer):
        writer.close()

    server = await asyncio.start_server(handle, "localhost", 0)
    port = server.sockets[0].getsockname()[1]
    yield port
    server.close()
    await server.wait_closed()


@pytest.mark.parametrize("checks, verdict", [
    ({"ping": True, "ldap": True, "smb": False}, ProbeVerdict.REACHABLE),
    ({"ping": False, "ldap": False, "smb": False}, ProbeVerdict.UNREACHABLE),
    ({"ping": True, "ldap": False, "smb": False}, ProbeVerdict.AMBIGUOUS),
    ({"ping": None, "ldap": False, "smb": False}, ProbeVerdict.AMBIGUOUS),
])
def test_verdicts(checks, verdict):
    result = ProbeResult(node="dc1", checks=checks)
    assert result.verdict == verdict
    assert result.reachable == (verdict == ProbeVerdict.REACHABLE)


async def test_two_of_three_is_reachable(listening_port):
    probe = ConnectivityProbe(timeout=1.0, ldap_port=listening_port, smb_port=unused_port(), runner=ping_runner(0))
    result = await probe.check("localhost")
    assert result.checks == {"ping": True, "ldap": True, "smb": False}
    assert result.reachable
    assert result.summary() == "2/3 tests passed"


async def test_single_signal_is_not_enough(listening_port):
    probe = ConnectivityProbe(timeout=1.0, ldap_port=listening_port, smb_port=unused_port(), runner=ping_runner(1))
    result = await probe.check("localhost")
    assert not result.reachable
    assert result.verdict == ProbeVerdict.AMBIGUOUS


async def test_unknown_holder_is_not_probed():
    runner = ping_runner(0)
    probe = ConnectivityProbe(runner=runner)
    for name in ("", "unknown"):
        result = await probe.check(name)
        assert result.verdict == ProbeVerdict.UNREACHABLE
    assert runner.calls == []


async def test_short_names_are_qualified(monkeypatch):
    runner = ping_runner(0)
    probe = ConnectivityProbe(timeout=1.0, domain="example.test", runner=runner)
    hosts = []

    async def fake_tcp(host, port):
        hosts.append((host, port))
        return True

    monkeypatch.setattr(probe, "_tcp", fake_tcp)

    assert await probe.is_reachable("DC1")
    assert runner.calls[0][-1] == "dc1.example.test"
    assert sorted(hosts) == [("dc1.example.test", 389), ("dc1.example.test", 445)]
