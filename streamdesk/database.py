from __future__ import annotations

import datetime
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    func,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker
from sqlalchemy.types import Time

from .entities import (
    ACCEPTED,
    PENDING,
    REJECTED,
    REPORT_FIELDS,
    AltAssignee,
    EmployeeAlt,
    ExternalAlt,
)
from .errors import NotAuthorized, NotFound, StateConflict, ValidationFailed
from .roles import CurrentUser, can_cover, format_roles, parse_roles, shift_role
from .timegrid import format_time_string, time_to_minutes


DATA_DIR = Path(os.environ.get("STREAMDESK_DATA_DIR") or Path(__file__).resolve().parent / "data")
DATA_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = os.environ.get("STREAMDESK_DATABASE_URL") or f"sqlite:///{(DATA_DIR / 'schedule.db').as_posix()}"
MAX_RANGE_DAYS = 62
LOCKED_MESSAGE = "This week is locked; assignments can no longer be changed."


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for every table living in schedule.db."""

    pass


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    roles: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    status: Mapped[str] = mapped_column(String(12), default="active", nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    @property
    def role_list(self) -> List[str]:
        return parse_roles(self.roles)

    @role_list.setter
    def role_list(self, roles: Iterable[str]) -> None:
        self.roles = format_roles(roles)


class Channel(Base):
    __tablename__ = "channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    periods: Mapped[List["Period"]] = relationship(back_populates="channel")


class Period(Base):
    __tablename__ = "periods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[int] = mapped_column(ForeignKey("channels.id"), nullable=False)
    start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    for_role: Mapped[str] = mapped_column(String(20), nullable=False)
    noon: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    channel: Mapped[Channel] = relationship(back_populates="periods")


class Livestream(Base):
    __tablename__ = "livestreams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[int] = mapped_column(ForeignKey("channels.id"), nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    fixed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    total_orders: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_income: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    ads: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    channel: Mapped[Channel] = relationship()
    snapshots: Mapped[List["Snapshot"]] = relationship(
        back_populates="livestream", cascade="all, delete-orphan"
    )

    __table_args__ = (UniqueConstraint("channel_id", "date", name="uq_livestream_channel_date"),)


class Snapshot(Base):
    __tablename__ = "snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    livestream_id: Mapped[int] = mapped_column(ForeignKey("livestreams.id", ondelete="CASCADE"))
    # None for shifts created directly on the timeline rather than from a template.
    period_id: Mapped[int | None] = mapped_column(ForeignKey("periods.id"), nullable=True)
    start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    for_role: Mapped[str] = mapped_column(String(20), nullable=False)
    noon: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assignee_id: Mapped[int | None] = mapped_column(ForeignKey("employees.id"), nullable=True)
    alt_assignee_id: Mapped[int | None] = mapped_column(ForeignKey("employees.id"), nullable=True)
    alt_other_assignee: Mapped[str | None] = mapped_column(String(120), nullable=True)
    alt_note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    goal: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    income: Mapped[float | None] = mapped_column(Float, nullable=True)
    real_income: Mapped[float | None] = mapped_column(Float, nullable=True)
    ads_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    click_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_viewing_duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    comments: Mapped[int | None] = mapped_column(Integer, nullable=True)
    orders: Mapped[int | None] = mapped_column(Integer, nullable=True)
    orders_note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    livestream: Mapped[Livestream] = relationship(back_populates="snapshots")
    period: Mapped[Optional[Period]] = relationship()
    assignee: Mapped[Optional[Employee]] = relationship(foreign_keys=[assignee_id])
    alt_employee: Mapped[Optional[Employee]] = relationship(foreign_keys=[alt_assignee_id])
    alt_requests: Mapped[List["AltRequest"]] = relationship(
        back_populates="snapshot", cascade="all, delete-orphan"
    )


class AltRequest(Base):
    __tablename__ = "alt_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    livestream_id: Mapped[int] = mapped_column(ForeignKey("livestreams.id", ondelete="CASCADE"))
    snapshot_id: Mapped[int] = mapped_column(ForeignKey("snapshots.id", ondelete="CASCADE"))
    created_by_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), nullable=False)
    alt_note: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(12), nullable=False, default=PENDING)
    alt_assignee_id: Mapped[int | None] = mapped_column(ForeignKey("employees.id"), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    snapshot: Mapped[Snapshot] = relationship(back_populates="alt_requests")
    livestream: Mapped[Livestream] = relationship()
    created_by: Mapped[Employee] = relationship(foreign_keys=[created_by_id])
    alt_assignee: Mapped[Optional[Employee]] = relationship(foreign_keys=[alt_assignee_id])


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Snapshot")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database(bind=None) -> None:
    Base.metadata.create_all(bind or engine)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _person(employee: Optional[Employee]) -> Optional[Dict[str, Any]]:
    if not employee:
        return None
    return {"id": employee.id, "name": employee.full_name}


def _employee_to_dict(employee: Employee) -> Dict[str, Any]:
    return {"id": employee.id, "name": employee.full_name, "roles": employee.role_list}


def _period_to_dict(period: Period) -> Dict[str, Any]:
    return {
        "id": period.id,
        "start_time": format_time_string(period.start_time),
        "end_time": format_time_string(period.end_time),
        "channel_id": period.channel_id,
        "channel_name": period.channel.name if period.channel else "",
        "for": period.for_role,
        "noon": period.noon,
        "active": period.active,
    }


def _alt_to_dict(snapshot: Snapshot) -> Optional[Dict[str, Any]]:
    if snapshot.alt_assignee_id is not None:
        employee = snapshot.alt_employee
        return {
            "kind": "employee",
            "id": snapshot.alt_assignee_id,
            "name": employee.full_name if employee else "",
        }
    if snapshot.alt_other_assignee is not None:
        return {"kind": "external", "name": snapshot.alt_other_assignee}
    return None


def _snapshot_to_dict(snapshot: Snapshot) -> Dict[str, Any]:
    livestream = snapshot.livestream
    channel = livestream.channel if livestream else None
    return {
        "id": snapshot.id,
        "livestream_id": snapshot.livestream_id,
        "date": livestream.date.isoformat() if livestream else None,
        "period": {
            "id": snapshot.period_id,
            "start_time": format_time_string(snapshot.start_time),
            "end_time": format_time_string(snapshot.end_time),
            "channel_id": livestream.channel_id if livestream else None,
            "channel_name": channel.name if channel else "",
            "for": snapshot.for_role,
            "noon": snapshot.noon,
        },
        "assignee": _person(snapshot.assignee),
        "alt_assignee": _alt_to_dict(snapshot),
        "alt_note": snapshot.alt_note,
        "goal": snapshot.goal,
        "report": {
            "income": snapshot.income,
            "real_income": snapshot.real_income,
            "ads_cost": snapshot.ads_cost,
            "click_rate": snapshot.click_rate,
            "avg_viewing_duration": snapshot.avg_viewing_duration,
            "comments": snapshot.comments,
            "orders": snapshot.orders,
            "orders_note": snapshot.orders_note,
        },
    }


def _livestream_to_dict(livestream: Livestream) -> Dict[str, Any]:
    snapshots = sorted(livestream.snapshots, key=lambda item: (item.start_time, item.end_time, item.id))
    return {
        "id": livestream.id,
        "date": livestream.date.isoformat(),
        "channel_id": livestream.channel_id,
        "fixed": livestream.fixed,
        "total_orders": livestream.total_orders,
        "total_income": livestream.total_income,
        "ads": livestream.ads,
        "snapshots": [_snapshot_to_dict(snapshot) for snapshot in snapshots],
    }


def _alt_request_to_dict(request: AltRequest) -> Dict[str, Any]:
    livestream = request.livestream
    return {
        "id": request.id,
        "livestream_id": request.livestream_id,
        "snapshot_id": request.snapshot_id,
        "created_by": _person(request.created_by),
        "alt_note": request.alt_note,
        "status": request.status,
        "alt_assignee": _person(request.alt_assignee),
        "channel_id": livestream.channel_id if livestream else None,
        "date": livestream.date.isoformat() if livestream else None,
        "created_at": request.created_at.isoformat() if request.created_at else None,
    }


# ---------------------------------------------------------------------------
# Guards and coercion
# ---------------------------------------------------------------------------


def _coerce_time(value: Any, label: str) -> datetime.time:
    if isinstance(value, datetime.time):
        return value.replace(second=0, microsecond=0)
    if isinstance(value, dict):
        try:
            return datetime.time(int(value.get("hour", 0)), int(value.get("minute", 0)))
        except (TypeError, ValueError) as exc:
            raise ValidationFailed(f"Invalid {label}.") from exc
    try:
        return datetime.time.fromisoformat(str(value)).replace(second=0, microsecond=0)
    except ValueError as exc:
        raise ValidationFailed(f"Invalid {label} '{value}'.") from exc


def _coerce_date(value: Any, label: str = "date") -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise ValidationFailed(f"Invalid {label} '{value}'.") from exc


def _validate_bounds(start: datetime.time, end: datetime.time) -> None:
    if time_to_minutes(end) <= time_to_minutes(start):
        raise ValidationFailed("End time must be after start time.")


def _date_range(start_date: Any, end_date: Any) -> List[datetime.date]:
    start = _coerce_date(start_date, "start date")
    end = _coerce_date(end_date, "end date")
    if end < start:
        raise ValidationFailed("End date must not be before start date.")
    days = (end - start).days + 1
    if days > MAX_RANGE_DAYS:
        raise ValidationFailed(f"Date ranges are limited to {MAX_RANGE_DAYS} days.")
    return [start + datetime.timedelta(days=offset) for offset in range(days)]


def _require_leader(actor: CurrentUser) -> None:
    if not actor.is_leader:
        raise NotAuthorized("Only admins and livestream leaders can do this.")


def _ensure_unlocked(livestream: Livestream) -> None:
    if livestream.fixed:
        raise StateConflict(LOCKED_MESSAGE)


def _get_snapshot(session, snapshot_id: int) -> Snapshot:
    snapshot = session.get(Snapshot, snapshot_id)
    if not snapshot:
        raise NotFound(f"Snapshot {snapshot_id} was not found.")
    return snapshot


def _get_employee(session, employee_id: int) -> Employee:
    employee = session.get(Employee, employee_id)
    if not employee or employee.status != "active":
        raise NotFound(f"Employee {employee_id} was not found.")
    return employee


def _get_alt_request(session, request_id: int) -> AltRequest:
    request = session.get(AltRequest, request_id)
    if not request:
        raise NotFound(f"Alt request {request_id} was not found.")
    return request


def _pending_request(session, snapshot_id: int) -> Optional[AltRequest]:
    stmt = (
        select(AltRequest)
        .where(AltRequest.snapshot_id == snapshot_id, AltRequest.status == PENDING)
        .order_by(AltRequest.id.desc())
    )
    return session.scalars(stmt).first()


def _check_assignable(actor: CurrentUser, employee: Employee, role: str, current_assignee_id: Optional[int]) -> None:
    if not actor.is_leader:
        if employee.id != actor.id:
            raise NotAuthorized("You can only assign yourself.")
        if current_assignee_id not in (None, actor.id):
            raise NotAuthorized("This shift is already taken.")
    if not can_cover(employee.role_list, role):
        raise ValidationFailed(f"{employee.full_name} cannot cover a {role} shift.")


def current_user_for(session, user_id: Any) -> CurrentUser:
    """Resolve the acting identity; unknown or inactive ids are refused."""
    try:
        employee = session.get(Employee, int(user_id))
    except (TypeError, ValueError):
        employee = None
    if not employee or employee.status != "active":
        raise NotAuthorized("Unknown user.")
    return CurrentUser(id=employee.id, name=employee.full_name, roles=tuple(employee.role_list))


# ---------------------------------------------------------------------------
# Directory and catalog
# ---------------------------------------------------------------------------


def create_employee(session, full_name: str, roles: Iterable[str] | str = (), status: str = "active") -> Employee:
    name = (full_name or "").strip()
    if not name:
        raise ValidationFailed("Employee name is required.")
    employee = Employee(full_name=name, status=status)
    employee.role_list = parse_roles(roles)
    session.add(employee)
    session.commit()
    session.refresh(employee)
    return employee


def search_employees(
    session,
    text: Optional[str] = None,
    role: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    stmt = select(Employee).where(Employee.status == "active").order_by(Employee.full_name.asc())
    if text:
        stmt = stmt.where(Employee.full_name.ilike(f"%{text.strip()}%"))
    employees = list(session.scalars(stmt))
    if role:
        employees = [employee for employee in employees if can_cover(employee.role_list, role)]
    page = max(1, int(page))
    limit = max(1, int(limit))
    window = employees[(page - 1) * limit : page * limit]
    return [_employee_to_dict(employee) for employee in window]


def create_channel(session, name: str) -> Channel:
    label = (name or "").strip()
    if not label:
        raise ValidationFailed("Channel name is required.")
    channel = Channel(name=label)
    session.add(channel)
    session.commit()
    session.refresh(channel)
    return channel


def list_channels(session) -> List[Dict[str, Any]]:
    return [{"id": channel.id, "name": channel.name} for channel in session.scalars(select(Channel).order_by(Channel.name))]


def create_period(
    session,
    channel_id: int,
    start_time: Any,
    end_time: Any,
    role: str,
    *,
    noon: bool = False,
) -> Period:
    if not session.get(Channel, channel_id):
        raise NotFound(f"Channel {channel_id} was not found.")
    start = _coerce_time(start_time, "start time")
    end = _coerce_time(end_time, "end time")
    _validate_bounds(start, end)
    normalized_role = shift_role(role)
    if not normalized_role:
        raise ValidationFailed(f"Unsupported shift role '{role}'.")
    period = Period(channel_id=channel_id, start_time=start, end_time=end, for_role=normalized_role, noon=noon)
    session.add(period)
    session.commit()
    session.refresh(period)
    return period


def delete_period(session, period_id: int) -> None:
    """Retire a template; existing snapshots stay until the next sync."""
    period = session.get(Period, period_id)
    if not period:
        return
    period.active = False
    session.commit()


def list_periods(session, channel_id: Optional[int] = None, include_inactive: bool = False) -> List[Dict[str, Any]]:
    stmt = select(Period).order_by(Period.start_time, Period.for_role)
    if channel_id:
        stmt = stmt.where(Period.channel_id == channel_id)
    if not include_inactive:
        stmt = stmt.where(Period.active.is_(True))
    return [_period_to_dict(period) for period in session.scalars(stmt)]


# ---------------------------------------------------------------------------
# Livestream days
# ---------------------------------------------------------------------------


def get_or_create_livestream(session, channel_id: int, date_value: Any) -> Livestream:
    day = _coerce_date(date_value)
    stmt = select(Livestream).where(Livestream.channel_id == channel_id, Livestream.date == day)
    livestream = session.scalars(stmt).first()
    if livestream:
        return livestream
    if not session.get(Channel, channel_id):
        raise NotFound(f"Channel {channel_id} was not found.")
    livestream = Livestream(channel_id=channel_id, date=day)
    session.add(livestream)
    session.flush()
    return livestream


def get_livestreams_by_range(
    session,
    start_date: Any,
    end_date: Any,
    channel_id: Optional[int] = None,
) -> List[Dict[str, Any]]:
    days = _date_range(start_date, end_date)
    stmt = (
        select(Livestream)
        .where(Livestream.date >= days[0], Livestream.date <= days[-1])
        .order_by(Livestream.date, Livestream.channel_id)
    )
    if channel_id:
        stmt = stmt.where(Livestream.channel_id == channel_id)
    return [_livestream_to_dict(livestream) for livestream in session.scalars(stmt)]


def _snapshot_from_period(livestream: Livestream, period: Period, assignee_id: Optional[int] = None) -> Snapshot:
    return Snapshot(
        livestream=livestream,
        period_id=period.id,
        start_time=period.start_time,
        end_time=period.end_time,
        for_role=period.for_role,
        noon=period.noon,
        assignee_id=assignee_id,
        goal=0.0,
    )


def _existing_days(session, channel_id: int, days: List[datetime.date]) -> List[Livestream]:
    stmt = select(Livestream).where(
        Livestream.channel_id == channel_id,
        Livestream.date >= days[0],
        Livestream.date <= days[-1],
    )
    return list(session.scalars(stmt))


def _fill_from_templates(session, channel_id: int, days: List[datetime.date], periods: List[Period]) -> int:
    added = 0
    for day in days:
        livestream = get_or_create_livestream(session, channel_id, day)
        present = {snapshot.period_id for snapshot in livestream.snapshots if snapshot.period_id}
        for period in periods:
            if period.id in present:
                continue
            session.add(_snapshot_from_period(livestream, period))
            added += 1
    return added


def create_range(
    session,
    actor: CurrentUser,
    start_date: Any,
    end_date: Any,
    channel_id: int,
    period_ids: Optional[Iterable[int]] = None,
) -> List[Dict[str, Any]]:
    """Instantiate one livestream per day and one unassigned snapshot per template."""
    _require_leader(actor)
    days = _date_range(start_date, end_date)
    if any(livestream.fixed for livestream in _existing_days(session, channel_id, days)):
        raise StateConflict(LOCKED_MESSAGE)
    stmt = select(Period).where(Period.channel_id == channel_id, Period.active.is_(True))
    if period_ids is not None:
        wanted = {int(period_id) for period_id in period_ids}
        stmt = stmt.where(Period.id.in_(wanted))
    periods = list(session.scalars(stmt))
    added = _fill_from_templates(session, channel_id, days, periods)
    record_audit_log(
        session,
        str(actor.id),
        "RANGE_CREATE",
        target_type="Channel",
        target_id=channel_id,
        payload={"start": days[0].isoformat(), "end": days[-1].isoformat(), "added": added},
    )
    return get_livestreams_by_range(session, days[0], days[-1], channel_id)


def sync_range(session, actor: CurrentUser, start_date: Any, end_date: Any, channel_id: int) -> Dict[str, int]:
    """Reconcile a range against the active templates of a channel.

    Missing template snapshots are added; unassigned snapshots whose template
    was retired are removed. Snapshots created directly on the timeline have no
    template and are left alone.
    """
    _require_leader(actor)
    days = _date_range(start_date, end_date)
    if any(livestream.fixed for livestream in _existing_days(session, channel_id, days)):
        raise StateConflict(LOCKED_MESSAGE)
    periods = list(
        session.scalars(select(Period).where(Period.channel_id == channel_id, Period.active.is_(True)))
    )
    active_ids = {period.id for period in periods}
    added = _fill_from_templates(session, channel_id, days, periods)
    removed = 0
    for livestream in _existing_days(session, channel_id, days):
        for snapshot in list(livestream.snapshots):
            if snapshot.period_id is None or snapshot.period_id in active_ids:
                continue
            if snapshot.assignee_id is not None:
                continue
            livestream.snapshots.remove(snapshot)
            removed += 1
    record_audit_log(
        session,
        str(actor.id),
        "RANGE_SYNC",
        target_type="Channel",
        target_id=channel_id,
        payload={"start": days[0].isoformat(), "end": days[-1].isoformat(), "added": added, "removed": removed},
    )
    return {"added": added, "removed": removed}


def fix_range(
    session,
    actor: CurrentUser,
    start_date: Any,
    end_date: Any,
    channel_id: int,
    fixed: bool = True,
) -> Dict[str, int]:
    """Lock or unlock a range; locking instantiates missing days so none of them stays editable."""
    _require_leader(actor)
    days = _date_range(start_date, end_date)
    if fixed:
        livestreams = [get_or_create_livestream(session, channel_id, day) for day in days]
    else:
        livestreams = _existing_days(session, channel_id, days)
    for livestream in livestreams:
        livestream.fixed = fixed
    record_audit_log(
        session,
        str(actor.id),
        "RANGE_FIX",
        target_type="Channel",
        target_id=channel_id,
        payload={"start": days[0].isoformat(), "end": days[-1].isoformat(), "fixed": fixed},
    )
    return {"fixed": len(livestreams)}


def set_metrics(
    session,
    actor: CurrentUser,
    livestream_id: int,
    *,
    total_orders: Optional[float] = None,
    ads: Optional[float] = None,
) -> Dict[str, Any]:
    if not actor.can_report:
        raise NotAuthorized("You cannot edit the metrics of this day.")
    livestream = session.get(Livestream, livestream_id)
    if not livestream:
        raise NotFound(f"Livestream {livestream_id} was not found.")
    for label, value in (("total orders", total_orders), ("ads cost", ads)):
        if value is not None and float(value) < 0:
            raise ValidationFailed(f"The {label} cannot be negative.")
    if total_orders is not None:
        livestream.total_orders = float(total_orders)
    if ads is not None:
        livestream.ads = float(ads)
    record_audit_log(
        session,
        str(actor.id),
        "LIVESTREAM_METRICS",
        target_type="Livestream",
        target_id=livestream.id,
        payload={"total_orders": total_orders, "ads": ads},
    )
    return _livestream_to_dict(livestream)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


def assign_snapshot(
    session,
    actor: CurrentUser,
    user_id: int,
    role: str,
    *,
    snapshot_id: Optional[int] = None,
    period_id: Optional[int] = None,
    date: Any = None,
) -> Dict[str, Any]:
    """Put ``user_id`` on a shift, instantiating the template's snapshot when needed."""
    employee = _get_employee(session, user_id)
    requested_role = shift_role(role)
    if snapshot_id is None:
        if period_id is None or date is None:
            raise ValidationFailed("A shift or a period and date are required.")
        period = session.get(Period, period_id)
        if not period:
            raise NotFound(f"Period {period_id} was not found.")
        livestream = get_or_create_livestream(session, period.channel_id, date)
        _ensure_unlocked(livestream)
        snapshot = next((item for item in livestream.snapshots if item.period_id == period.id), None)
        slot_role = snapshot.for_role if snapshot else period.for_role
    else:
        snapshot = _get_snapshot(session, snapshot_id)
        _ensure_unlocked(snapshot.livestream)
        slot_role = snapshot.for_role
    if requested_role and requested_role != slot_role:
        raise ValidationFailed(f"This shift is for a {slot_role}, not a {requested_role}.")
    _check_assignable(actor, employee, slot_role, snapshot.assignee_id if snapshot else None)
    if snapshot is None:
        snapshot = _snapshot_from_period(livestream, period)
        session.add(snapshot)
    snapshot.assignee_id = employee.id
    snapshot.assignee = employee
    session.flush()
    record_audit_log(
        session,
        str(actor.id),
        "SNAPSHOT_ASSIGN",
        target_id=snapshot.id,
        payload={"assignee_id": employee.id, "role": snapshot.for_role},
    )
    return _snapshot_to_dict(snapshot)


def unassign_snapshot(session, actor: CurrentUser, snapshot_id: int) -> Dict[str, Any]:
    snapshot = _get_snapshot(session, snapshot_id)
    _ensure_unlocked(snapshot.livestream)
    if not actor.is_leader and snapshot.assignee_id != actor.id:
        raise NotAuthorized("Only the assignee or a leader can leave this shift.")
    previous = snapshot.assignee_id
    snapshot.assignee_id = None
    snapshot.assignee = None
    record_audit_log(
        session,
        str(actor.id),
        "SNAPSHOT_UNASSIGN",
        target_id=snapshot.id,
        payload={"previous_assignee_id": previous},
    )
    return _snapshot_to_dict(snapshot)


def add_snapshot(
    session,
    actor: CurrentUser,
    *,
    channel_id: int,
    date: Any,
    start_time: Any,
    end_time: Any,
    role: str,
    assignee_id: Optional[int] = None,
    goal: float = 0.0,
) -> Dict[str, Any]:
    """Create a shift directly on the timeline, outside any template."""
    start = _coerce_time(start_time, "start time")
    end = _coerce_time(end_time, "end time")
    _validate_bounds(start, end)
    normalized_role = shift_role(role)
    if not normalized_role:
        raise ValidationFailed(f"Unsupported shift role '{role}'.")
    livestream = get_or_create_livestream(session, channel_id, date)
    _ensure_unlocked(livestream)
    if assignee_id is not None:
        _check_assignable(actor, _get_employee(session, assignee_id), normalized_role, None)
    snapshot = Snapshot(
        livestream=livestream,
        period_id=None,
        start_time=start,
        end_time=end,
        for_role=normalized_role,
        assignee_id=assignee_id,
        goal=float(goal or 0.0),
    )
    session.add(snapshot)
    session.flush()
    record_audit_log(
        session,
        str(actor.id),
        "SNAPSHOT_ADD",
        target_id=snapshot.id,
        payload={
            "date": livestream.date.isoformat(),
            "start": format_time_string(start),
            "end": format_time_string(end),
            "role": normalized_role,
        },
    )
    session.refresh(snapshot)
    return _snapshot_to_dict(snapshot)


def update_snapshot_time(session, actor: CurrentUser, snapshot_id: int, start_time: Any, end_time: Any) -> Dict[str, Any]:
    snapshot = _get_snapshot(session, snapshot_id)
    _ensure_unlocked(snapshot.livestream)
    if not actor.is_leader and snapshot.assignee_id != actor.id:
        raise NotAuthorized("Only the assignee or a leader can move this shift.")
    start = _coerce_time(start_time, "start time")
    end = _coerce_time(end_time, "end time")
    _validate_bounds(start, end)
    previous = (format_time_string(snapshot.start_time), format_time_string(snapshot.end_time))
    snapshot.start_time = start
    snapshot.end_time = end
    record_audit_log(
        session,
        str(actor.id),
        "SNAPSHOT_TIME",
        target_id=snapshot.id,
        payload={"from": list(previous), "to": [format_time_string(start), format_time_string(end)]},
    )
    return _snapshot_to_dict(snapshot)


def delete_snapshot(session, actor: CurrentUser, snapshot_id: int) -> None:
    _require_leader(actor)
    snapshot = _get_snapshot(session, snapshot_id)
    _ensure_unlocked(snapshot.livestream)
    livestream = snapshot.livestream
    livestream.snapshots.remove(snapshot)
    record_audit_log(session, str(actor.id), "SNAPSHOT_DELETE", target_id=snapshot_id, payload={})


def update_snapshot_alt(
    session,
    actor: CurrentUser,
    snapshot_id: int,
    alt: Optional[AltAssignee],
    alt_note: Optional[str] = None,
) -> Dict[str, Any]:
    """Administrative override of a locked snapshot's replacement.

    A pending request on the snapshot is resolved by the override: accepted when
    an employee is named, rejected otherwise.
    """
    _require_leader(actor)
    snapshot = _get_snapshot(session, snapshot_id)
    if not snapshot.livestream.fixed:
        raise StateConflict("Replacements can only be set once the week is locked.")
    if isinstance(alt, EmployeeAlt):
        employee = _get_employee(session, alt.employee_id)
        if employee.id == snapshot.assignee_id:
            raise ValidationFailed("The replacement must differ from the assignee.")
        snapshot.alt_assignee_id = employee.id
        snapshot.alt_employee = employee
        snapshot.alt_other_assignee = None
    elif isinstance(alt, ExternalAlt):
        name = (alt.name or "").strip()
        if not name:
            raise ValidationFailed("Enter the name of the external replacement.")
        snapshot.alt_assignee_id = None
        snapshot.alt_employee = None
        snapshot.alt_other_assignee = name
    else:
        snapshot.alt_assignee_id = None
        snapshot.alt_employee = None
        snapshot.alt_other_assignee = None
    if alt is None:
        snapshot.alt_note = None
    else:
        snapshot.alt_note = (alt_note or "").strip() or None

    pending = _pending_request(session, snapshot.id)
    if pending:
        if isinstance(alt, EmployeeAlt):
            pending.status = ACCEPTED
            pending.alt_assignee_id = alt.employee_id
        else:
            pending.status = REJECTED
        record_audit_log(
            session,
            str(actor.id),
            "ALT_REQUEST_SUPERSEDED",
            target_type="AltRequest",
            target_id=pending.id,
            payload={"status": pending.status},
        )
    record_audit_log(
        session,
        str(actor.id),
        "SNAPSHOT_ALT",
        target_id=snapshot.id,
        payload={"alt": _alt_to_dict(snapshot), "alt_note": snapshot.alt_note},
    )
    return _snapshot_to_dict(snapshot)


def report_snapshot(session, actor: CurrentUser, snapshot_id: int, report: Dict[str, Any]) -> Dict[str, Any]:
    """Record performance figures; allowed on locked weeks."""
    snapshot = _get_snapshot(session, snapshot_id)
    allowed = actor.can_report or actor.id in (snapshot.assignee_id, snapshot.alt_assignee_id)
    if not allowed:
        raise NotAuthorized("You cannot report on this shift.")
    missing = [name for name in REPORT_FIELDS if report.get(name) is None]
    if missing:
        raise ValidationFailed(f"Missing report fields: {', '.join(missing)}.")
    numeric = ("income", "real_income", "ads_cost", "click_rate", "avg_viewing_duration", "comments", "orders")
    for name in numeric:
        value = report.get(name)
        if value is None:
            continue
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise ValidationFailed(f"Report field '{name}' must be a number.") from exc
        if number < 0:
            raise ValidationFailed(f"Report field '{name}' cannot be negative.")
    snapshot.income = float(report["income"])
    snapshot.click_rate = float(report["click_rate"])
    snapshot.avg_viewing_duration = float(report["avg_viewing_duration"])
    snapshot.comments = int(float(report["comments"]))
    snapshot.orders_note = str(report["orders_note"])
    for name in ("real_income", "ads_cost"):
        if report.get(name) is not None:
            setattr(snapshot, name, float(report[name]))
    if report.get("orders") is not None:
        snapshot.orders = int(float(report["orders"]))
    livestream = snapshot.livestream
    livestream.total_income = sum(item.income or 0.0 for item in livestream.snapshots)
    record_audit_log(
        session,
        str(actor.id),
        "SNAPSHOT_REPORT",
        target_id=snapshot.id,
        payload={name: report.get(name) for name in REPORT_FIELDS},
    )
    return _snapshot_to_dict(snapshot)


# ---------------------------------------------------------------------------
# Alt requests
# ---------------------------------------------------------------------------


def create_alt_request(session, actor: CurrentUser, snapshot_id: int, note: str) -> Dict[str, Any]:
    snapshot = _get_snapshot(session, snapshot_id)
    if not snapshot.livestream.fixed:
        raise StateConflict("Replacements can only be requested once the week is locked.")
    if snapshot.assignee_id is None or snapshot.assignee_id != actor.id:
        raise NotAuthorized("Only the assignee can request a replacement.")
    if snapshot.alt_assignee_id is not None or snapshot.alt_other_assignee is not None:
        raise StateConflict("This shift already has a replacement.")
    if _pending_request(session, snapshot.id):
        raise StateConflict("A replacement request is already pending for this shift.")
    text = (note or "").strip()
    if not text:
        raise ValidationFailed("Please give a reason for the request.")
    request = AltRequest(
        livestream_id=snapshot.livestream_id,
        snapshot_id=snapshot.id,
        created_by_id=actor.id,
        alt_note=text,
        status=PENDING,
    )
    session.add(request)
    session.flush()
    record_audit_log(
        session,
        str(actor.id),
        "ALT_REQUEST_CREATE",
        target_type="AltRequest",
        target_id=request.id,
        payload={"snapshot_id": snapshot.id, "note": text},
    )
    session.refresh(request)
    return _alt_request_to_dict(request)


def get_alt_request_by_snapshot(session, snapshot_id: int) -> Optional[Dict[str, Any]]:
    """Latest request for a snapshot, pending or decided."""
    stmt = (
        select(AltRequest)
        .where(AltRequest.snapshot_id == snapshot_id)
        .order_by(AltRequest.id.desc())
    )
    request = session.scalars(stmt).first()
    return _alt_request_to_dict(request) if request else None


def update_alt_request_status(
    session,
    actor: CurrentUser,
    request_id: int,
    status: str,
    alt_assignee_id: Optional[int] = None,
) -> Dict[str, Any]:
    _require_leader(actor)
    request = _get_alt_request(session, request_id)
    if request.status != PENDING:
        raise StateConflict(f"This request was already {request.status}.")
    normalized = (status or "").strip().lower()
    if normalized not in {ACCEPTED, REJECTED}:
        raise ValidationFailed(f"Unsupported request status '{status}'.")
    snapshot = request.snapshot
    if normalized == ACCEPTED:
        if alt_assignee_id is None:
            raise ValidationFailed("Choose a replacement before accepting.")
        employee = _get_employee(session, alt_assignee_id)
        if employee.id == snapshot.assignee_id:
            raise ValidationFailed("The replacement must differ from the assignee.")
        request.alt_assignee_id = employee.id
        request.alt_assignee = employee
        snapshot.alt_assignee_id = employee.id
        snapshot.alt_employee = employee
        snapshot.alt_other_assignee = None
        snapshot.alt_note = request.alt_note
    request.status = normalized
    record_audit_log(
        session,
        str(actor.id),
        "ALT_REQUEST_ACCEPT" if normalized == ACCEPTED else "ALT_REQUEST_REJECT",
        target_type="AltRequest",
        target_id=request.id,
        payload={"snapshot_id": snapshot.id, "alt_assignee_id": request.alt_assignee_id},
    )
    return _alt_request_to_dict(request)


def update_alt_request_note(session, actor: CurrentUser, request_id: int, note: str) -> Dict[str, Any]:
    request = _get_alt_request(session, request_id)
    if request.created_by_id != actor.id:
        raise NotAuthorized("Only the requester can edit the reason.")
    if request.status != PENDING:
        raise StateConflict(f"This request was already {request.status}.")
    text = (note or "").strip()
    if not text:
        raise ValidationFailed("Please give a reason for the request.")
    request.alt_note = text
    record_audit_log(
        session,
        str(actor.id),
        "ALT_REQUEST_UPDATE",
        target_type="AltRequest",
        target_id=request.id,
        payload={"note": text},
    )
    return _alt_request_to_dict(request)


def delete_alt_request(session, actor: CurrentUser, request_id: int) -> None:
    request = _get_alt_request(session, request_id)
    if not actor.is_leader:
        if request.created_by_id != actor.id:
            raise NotAuthorized("Only the requester or a leader can delete this request.")
        if request.status != PENDING:
            raise StateConflict(f"This request was already {request.status}.")
    session.delete(request)
    record_audit_log(
        session,
        str(actor.id),
        "ALT_REQUEST_DELETE",
        target_type="AltRequest",
        target_id=request_id,
        payload={"snapshot_id": request.snapshot_id},
    )


def search_alt_requests(
    session,
    actor: CurrentUser,
    *,
    status: Optional[str] = None,
    requested_by: Optional[int] = None,
    channel_id: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    stmt = select(AltRequest).join(Livestream, AltRequest.livestream_id == Livestream.id)
    if not actor.is_leader:
        requested_by = actor.id
    if requested_by:
        stmt = stmt.where(AltRequest.created_by_id == requested_by)
    if status:
        stmt = stmt.where(AltRequest.status == status.strip().lower())
    if channel_id:
        stmt = stmt.where(Livestream.channel_id == channel_id)
    total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    page = max(1, int(page))
    limit = max(1, int(limit))
    stmt = stmt.order_by(AltRequest.created_at.desc(), AltRequest.id.desc()).offset((page - 1) * limit).limit(limit)
    return {
        "data": [_alt_request_to_dict(request) for request in session.scalars(stmt)],
        "total": int(total),
        "page": page,
        "limit": limit,
    }


def ensure_demo_data(session_factory) -> None:
    """Seed one channel, a morning/evening template pair and a small crew, once."""

    with session_factory() as session:
        if session.scalars(select(Channel)).first():
            return
        channel = create_channel(session, "Main channel")
        for start, end in (("09:00", "12:00"), ("12:00", "14:00"), ("19:00", "22:00")):
            noon = start == "12:00"
            create_period(session, channel.id, start, end, "host", noon=noon)
            create_period(session, channel.id, start, end, "assistant", noon=noon)
        create_employee(session, "Admin", ["admin"])
        create_employee(session, "Lena Leader", ["livestream-leader"])
        create_employee(session, "Hana Host", ["livestream-emp", "host"])
        create_employee(session, "Alex Assistant", ["livestream-emp", "assistant"])
        create_employee(session, "Riley Reporter", ["livestream-ast"])


def list_audit_log(session, *, action: Optional[str] = None, target_id: Optional[int] = None) -> List[AuditLog]:
    stmt = select(AuditLog).order_by(AuditLog.id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if target_id is not None:
        stmt = stmt.where(AuditLog.target_id == target_id)
    return list(session.scalars(stmt))


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Snapshot",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}),
    )
    session.add(log)
    session.commit()
    return log
