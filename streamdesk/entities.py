"""Client-side view of the schedule as returned by the server of record.

Payloads are the plain dicts produced by ``database`` serializers (and returned
verbatim as JSON by ``api``); these value types give the timeline, the
alt-request workflow and the sync layer one shared vocabulary.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from .timegrid import format_time_string, time_to_minutes

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"
ALT_REQUEST_STATUSES = {PENDING, ACCEPTED, REJECTED}

# Legacy two-field encoding: altAssignee == "other" plus a free-text name.
ALT_OTHER_SENTINEL = "other"
EXTERNAL_FALLBACK_NAME = "Other"
UNASSIGNED_LABEL = "Unassigned"

REPORT_FIELDS: Tuple[str, ...] = (
    "income",
    "click_rate",
    "avg_viewing_duration",
    "comments",
    "orders_note",
)
OPTIONAL_REPORT_FIELDS: Tuple[str, ...] = ("real_income", "ads_cost", "orders")


@dataclass(frozen=True)
class EmployeeAlt:
    employee_id: int


@dataclass(frozen=True)
class ExternalAlt:
    name: str


AltAssignee = Union[EmployeeAlt, ExternalAlt]


def alt_to_payload(alt: Optional[AltAssignee]) -> Optional[Dict[str, Any]]:
    if alt is None:
        return None
    if isinstance(alt, EmployeeAlt):
        return {"kind": "employee", "id": alt.employee_id}
    return {"kind": "external", "name": alt.name}


def alt_from_payload(value: Any, other_name: Optional[str] = None) -> Optional[AltAssignee]:
    """Decode either the tagged form or the legacy ``"other"`` + name pair."""
    if value is None or value == "":
        return None
    if isinstance(value, Mapping):
        kind = value.get("kind")
        if kind == "employee" and value.get("id") is not None:
            return EmployeeAlt(int(value["id"]))
        if kind == "external":
            return ExternalAlt(str(value.get("name") or "").strip())
        raise ValueError(f"Unknown alt assignee kind '{kind}'.")
    if value == ALT_OTHER_SENTINEL:
        return ExternalAlt((other_name or "").strip())
    return EmployeeAlt(int(value))


def _parse_time(value: Any) -> datetime.time:
    if isinstance(value, datetime.time):
        return value
    if isinstance(value, Mapping):
        return datetime.time(int(value.get("hour", 0)), int(value.get("minute", 0)))
    return datetime.time.fromisoformat(str(value))


def _parse_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class Person:
    id: int
    name: str

    @classmethod
    def from_payload(cls, payload: Optional[Mapping[str, Any]]) -> Optional["Person"]:
        if not payload:
            return None
        return cls(id=int(payload["id"]), name=payload.get("name") or "")


@dataclass(frozen=True)
class Employee:
    id: int
    name: str
    roles: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Employee":
        return cls(id=int(payload["id"]), name=payload.get("name") or "", roles=tuple(payload.get("roles") or ()))


@dataclass(frozen=True)
class Channel:
    id: int
    name: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Channel":
        return cls(id=int(payload["id"]), name=payload.get("name") or "")


@dataclass(frozen=True)
class Period:
    """Time-slot template; also embedded in each snapshot with its own bounds."""

    id: Optional[int]
    start_time: datetime.time
    end_time: datetime.time
    channel_id: Optional[int]
    role: str
    channel_name: str = ""
    noon: bool = False

    @property
    def start_minute(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minute(self) -> int:
        return time_to_minutes(self.end_time)

    @property
    def label(self) -> str:
        return f"{format_time_string(self.start_time)} - {format_time_string(self.end_time)}"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Period":
        return cls(
            id=payload.get("id"),
            start_time=_parse_time(payload["start_time"]),
            end_time=_parse_time(payload["end_time"]),
            channel_id=payload.get("channel_id"),
            role=payload.get("for") or payload.get("role") or "",
            channel_name=payload.get("channel_name") or "",
            noon=bool(payload.get("noon")),
        )


@dataclass(frozen=True)
class Snapshot:
    id: int
    livestream_id: int
    period: Period
    assignee: Optional[Person] = None
    alt: Optional[AltAssignee] = None
    alt_note: Optional[str] = None
    goal: float = 0
    report: Dict[str, Any] = field(default_factory=dict)

    @property
    def role(self) -> str:
        return self.period.role

    @property
    def start_minute(self) -> int:
        return self.period.start_minute

    @property
    def end_minute(self) -> int:
        return self.period.end_minute

    @property
    def has_alt(self) -> bool:
        return self.alt is not None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], livestream_id: Optional[int] = None) -> "Snapshot":
        return cls(
            id=int(payload["id"]),
            livestream_id=int(payload.get("livestream_id") or livestream_id),
            period=Period.from_payload(payload["period"]),
            assignee=Person.from_payload(payload.get("assignee")),
            alt=alt_from_payload(payload.get("alt_assignee"), payload.get("alt_other_assignee")),
            alt_note=payload.get("alt_note"),
            goal=payload.get("goal") or 0,
            report=dict(payload.get("report") or {}),
        )


@dataclass(frozen=True)
class Livestream:
    """One channel's broadcast day; ``fixed`` freezes assignment changes."""

    id: int
    date: datetime.date
    channel_id: Optional[int]
    fixed: bool = False
    snapshots: Tuple[Snapshot, ...] = ()
    total_orders: float = 0
    total_income: float = 0
    ads: float = 0

    def snapshot(self, snapshot_id: int) -> Optional[Snapshot]:
        return next((item for item in self.snapshots if item.id == snapshot_id), None)

    def snapshots_for(self, role: str) -> Tuple[Snapshot, ...]:
        return tuple(item for item in self.snapshots if item.role == role)

    def snapshot_for_period(self, period_id: int) -> Optional[Snapshot]:
        return next((item for item in self.snapshots if item.period.id == period_id), None)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Livestream":
        livestream_id = int(payload["id"])
        return cls(
            id=livestream_id,
            date=_parse_date(payload["date"]),
            channel_id=payload.get("channel_id"),
            fixed=bool(payload.get("fixed")),
            snapshots=tuple(Snapshot.from_payload(item, livestream_id) for item in payload.get("snapshots") or []),
            total_orders=payload.get("total_orders") or 0,
            total_income=payload.get("total_income") or 0,
            ads=payload.get("ads") or 0,
        )


@dataclass(frozen=True)
class AltRequest:
    id: int
    livestream_id: int
    snapshot_id: int
    created_by: Optional[Person]
    alt_note: str
    status: str = PENDING
    alt_assignee: Optional[Person] = None

    @property
    def is_pending(self) -> bool:
        return self.status == PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status in {ACCEPTED, REJECTED}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AltRequest":
        return cls(
            id=int(payload["id"]),
            livestream_id=int(payload["livestream_id"]),
            snapshot_id=int(payload["snapshot_id"]),
            created_by=Person.from_payload(payload.get("created_by")),
            alt_note=payload.get("alt_note") or "",
            status=payload.get("status") or PENDING,
            alt_assignee=Person.from_payload(payload.get("alt_assignee")),
        )


def has_report(snapshot: Snapshot) -> bool:
    """True once every required performance field has been filled in.

    Zero and empty-string values count as reported; only missing (None) fields
    leave the report incomplete.
    """
    return all(snapshot.report.get(name) is not None for name in REPORT_FIELDS)


def display_name(snapshot: Snapshot, employees: Mapping[int, Employee] | Iterable[Employee] = ()) -> str:
    """Name shown on the shift card: replacement first, then the assignee."""
    if not isinstance(employees, Mapping):
        employees = {employee.id: employee for employee in employees}
    alt = snapshot.alt
    if isinstance(alt, ExternalAlt):
        return alt.name or EXTERNAL_FALLBACK_NAME
    if isinstance(alt, EmployeeAlt):
        employee = employees.get(alt.employee_id)
        if employee:
            return employee.name
    if snapshot.assignee:
        return snapshot.assignee.name
    return UNASSIGNED_LABEL


def alt_candidates(employees: Iterable[Employee], exclude_id: Optional[int]) -> list[Employee]:
    """Employees eligible as a replacement: everyone except the original assignee."""
    return [employee for employee in employees if employee.id != exclude_id]
