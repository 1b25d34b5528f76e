"""Line codecs of the shared records"""

from datetime import datetime, timezone

from fsmoctl.core.models import Role, RoleStatus, SeizureAttempt, SeizureOutcome
from fsmoctl.core.records import (
    PriorityTable,
    RoleStatusTable,
    format_attempt,
    parse_attempt,
    parse_key_values,
    parse_lock,
    parse_priority_line,
    parse_role_status_line,
)

ROLE_TABLE = """# FSMO Roles Status Configuration
# Format: ROLE=HOLDER:LAST_CHECK:STATUS:SERVICES

PDC=dc1:2026-03-02_11:55:00:ACTIVE:chrony,isc-dhcp-server,samba-ad-dc
RID=other:2026-03-02_11:55:00:INACTIVE:none
SCHEMA=dc2:not-a-time:SEIZED:samba-ad-dc
bogus line
"""


def test_role_status_line_with_colons_in_timestamp():
    record = parse_role_status_line("PDC=dc1:2026-03-02_11:55:00:ACTIVE:chrony,samba-ad-dc")
    assert record.role == Role.PDC
    assert record.holder == "dc1"
    assert record.status == RoleStatus.ACTIVE
    assert record.services == ["chrony", "samba-ad-dc"]
    assert record.last_checked == datetime(2026, 3, 2, 11, 55, tzinfo=timezone.utc)


def test_role_table_round_trip_keeps_header():
    table = RoleStatusTable.parse(ROLE_TABLE)
    assert set(table.records) == {Role.PDC, Role.RID, Role.SCHEMA}
    assert table.get(Role.RID).services == []
    assert table.get(Role.SCHEMA).status == RoleStatus.SEIZED
    assert table.get(Role.INFRASTRUCTURE).status == RoleStatus.UNKNOWN

    rendered = table.render()
    assert rendered.startswith("# FSMO Roles Status Configuration\n")
    assert "RID=other:2026-03-02_11:55:00:INACTIVE:none" in rendered
    assert "bogus" not in rendered


def test_invalid_role_lines_are_ignored():
    assert parse_role_status_line("NOPE=dc1:x:ACTIVE:none") is None
    assert parse_role_status_line("PDC=dc1:2026-03-02_11:55:00:MAYBE:none") is None


def test_priority_line_with_empty_fields():
    entry = parse_priority_line("DC2:40::15:::90:2026-03-01_08:00:00")
    assert entry.node == "dc2"
    assert entry.general == 40
    assert entry.priority_for(Role.PDC) == 40
    assert entry.priority_for(Role.RID) == 15
    assert entry.priority_for(Role.DOMAIN_NAMING) == 90
    assert entry.last_seen == datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


def test_priority_table_render_preserves_unparseable_last_seen():
    table = PriorityTable.parse("# header\nDC3:20:20:20:20:20:20:yesterday\n")
    assert table.get("dc3").last_seen is None
    assert table.render() == "# header\ndc3:20:20:20:20:20:20:yesterday\n"


def test_lock_codec():
    lock = parse_lock(Role.PDC, "DC1:1772452800\n")
    assert lock.holder == "dc1"
    assert lock.acquired_at == datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
    assert parse_lock(Role.PDC, "dc1:soon") is None
    assert parse_lock(Role.PDC, "") is None


def test_attempt_line():
    attempt = SeizureAttempt(
        role=Role.RID,
        actor="dc2",
        timestamp=datetime(2026, 3, 2, 12, 0, 5, tzinfo=timezone.utc),
        outcome=SeizureOutcome.SUCCESS,
    )
    line = format_attempt(attempt)
    assert line == "2026-03-02 12:00:05 [dc2] SEIZURE_ATTEMPT role=RID result=SUCCESS"
    assert parse_attempt(line) == attempt
    assert parse_attempt("2026-03-02 12:00:05 [dc2] something else") is None


def test_key_values_skip_comments():
    values = parse_key_values("# comment\nA=1\n\nB = two=2\nnoise\n")
    assert values == {"A": "1", "B": "two=2"}
