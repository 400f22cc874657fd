from __future__ import annotations

import datetime

import pytest

from streamdesk.entities import (
    AltRequest,
    Employee,
    EmployeeAlt,
    ExternalAlt,
    Livestream,
    Snapshot,
    alt_candidates,
    alt_from_payload,
    alt_to_payload,
    display_name,
    has_report,
)
from streamdesk.roles import CurrentUser, can_cover, palette_for_role, parse_roles, shift_role


def _snapshot_payload(**overrides):
    payload = {
        "id": 7,
        "livestream_id": 3,
        "date": "2024-04-01",
        "period": {
            "id": 2,
            "start_time": "09:00",
            "end_time": "10:00",
            "channel_id": 1,
            "channel_name": "Main",
            "for": "host",
            "noon": False,
        },
        "assignee": {"id": 11, "name": "Hana Host"},
        "alt_assignee": None,
        "alt_note": None,
        "goal": 0,
        "report": {},
    }
    payload.update(overrides)
    return payload


def test_snapshot_payload_parses_period_bounds():
    snapshot = Snapshot.from_payload(_snapshot_payload())
    assert snapshot.role == "host"
    assert (snapshot.start_minute, snapshot.end_minute) == (540, 600)
    assert snapshot.period.label == "09:00 - 10:00"
    assert snapshot.assignee.name == "Hana Host"
    assert not snapshot.has_alt


def test_alt_payload_accepts_tagged_and_legacy_forms():
    assert alt_from_payload({"kind": "employee", "id": "12"}) == EmployeeAlt(12)
    assert alt_from_payload({"kind": "external", "name": " Guest "}) == ExternalAlt("Guest")
    assert alt_from_payload("other", "Cousin Sam") == ExternalAlt("Cousin Sam")
    assert alt_from_payload(14) == EmployeeAlt(14)
    assert alt_from_payload(None) is None
    assert alt_from_payload("") is None
    with pytest.raises(ValueError):
        alt_from_payload({"kind": "robot"})


def test_alt_to_payload_is_tagged():
    assert alt_to_payload(EmployeeAlt(4)) == {"kind": "employee", "id": 4}
    assert alt_to_payload(ExternalAlt("Guest")) == {"kind": "external", "name": "Guest"}
    assert alt_to_payload(None) is None


def test_display_name_prefers_the_replacement():
    employees = [Employee(id=12, name="Alex Assistant")]
    plain = Snapshot.from_payload(_snapshot_payload())
    with_employee = Snapshot.from_payload(_snapshot_payload(alt_assignee={"kind": "employee", "id": 12}))
    with_external = Snapshot.from_payload(_snapshot_payload(alt_assignee={"kind": "external", "name": ""}))
    empty = Snapshot.from_payload(_snapshot_payload(assignee=None))

    assert display_name(plain, employees) == "Hana Host"
    assert display_name(with_employee, employees) == "Alex Assistant"
    assert display_name(with_external, employees) == "Other"
    assert display_name(empty) == "Unassigned"


def test_has_report_requires_every_field_but_accepts_zero():
    complete = {
        "income": 0,
        "click_rate": 1.5,
        "avg_viewing_duration": 30,
        "comments": 0,
        "orders_note": "",
    }
    assert has_report(Snapshot.from_payload(_snapshot_payload(report=complete)))
    partial = dict(complete, comments=None)
    assert not has_report(Snapshot.from_payload(_snapshot_payload(report=partial)))
    assert not has_report(Snapshot.from_payload(_snapshot_payload()))


def test_livestream_lookup_helpers():
    direct_period = dict(_snapshot_payload()["period"], id=None)
    direct_period["for"] = "assistant"
    livestream = Livestream.from_payload(
        {
            "id": 3,
            "date": "2024-04-01",
            "channel_id": 1,
            "fixed": True,
            "snapshots": [_snapshot_payload(), _snapshot_payload(id=8, period=direct_period)],
        }
    )
    assert livestream.date == datetime.date(2024, 4, 1)
    assert livestream.fixed
    assert livestream.snapshot(8).role == "assistant"
    assert [item.id for item in livestream.snapshots_for("host")] == [7]
    assert livestream.snapshot_for_period(2).id == 7
    assert livestream.snapshot(99) is None


def test_alt_request_state_flags():
    request = AltRequest.from_payload(
        {
            "id": 1,
            "livestream_id": 3,
            "snapshot_id": 7,
            "created_by": {"id": 11, "name": "Hana Host"},
            "alt_note": "sick",
            "status": "pending",
            "alt_assignee": None,
        }
    )
    assert request.is_pending and not request.is_terminal
    decided = AltRequest.from_payload(
        {"id": 1, "livestream_id": 3, "snapshot_id": 7, "created_by": None, "alt_note": "", "status": "rejected"}
    )
    assert decided.is_terminal


def test_alt_candidates_excludes_the_assignee():
    crew = [Employee(1, "A"), Employee(2, "B"), Employee(3, "C")]
    assert [item.id for item in alt_candidates(crew, 2)] == [1, 3]
    assert len(alt_candidates(crew, None)) == 3


def test_role_helpers():
    assert parse_roles("Host, livestream-emp,host") == ["host", "livestream-emp"]
    assert shift_role("Assistant") == "assistant"
    assert shift_role("cook") is None
    assert can_cover(["livestream-leader"], "assistant")
    assert can_cover(["host"], "host")
    assert not can_cover(["host"], "assistant")
    assert palette_for_role("mystery") == palette_for_role("Other")

    leader = CurrentUser(id=1, roles=("livestream-leader",))
    reporter = CurrentUser(id=2, roles=("livestream-ast",))
    employee = CurrentUser(id=11, roles=("livestream-emp", "host"))
    snapshot = Snapshot.from_payload(_snapshot_payload())
    assert leader.is_leader and leader.can_report
    assert reporter.can_report and not reporter.is_leader
    assert employee.owns(snapshot) and not leader.owns(snapshot)
    assert CurrentUser.from_payload({"id": "5", "name": "X", "roles": ["Admin"]}).is_leader
