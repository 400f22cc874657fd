"""Keeps the cached week in step with the server of record.

The layer owns the only copy of the weekly schedule the view renders. Every
mutation is sent once, and the week is refetched only after the server has
confirmed it; a failure is turned into a notification and leaves the cache as
it was.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from .entities import AltAssignee, Channel, Employee, Livestream, Period, Snapshot
from .errors import ScheduleError
from .roles import CurrentUser
from .timegrid import format_time_string, time_to_minutes

logger = logging.getLogger(__name__)

Notify = Callable[[str, str], None]

LOCKED_NOTICE = "This week is locked; assignments can no longer be changed."
WEEK_DAYS = 7


def _silent(message: str, severity: str) -> None:
    return None


def week_bounds(day: datetime.date) -> Tuple[datetime.date, datetime.date]:
    """Monday through Sunday around ``day``."""
    start = day - datetime.timedelta(days=day.weekday())
    return start, start + datetime.timedelta(days=WEEK_DAYS - 1)


class ScheduleSyncLayer:
    def __init__(
        self,
        backend,
        user: CurrentUser,
        *,
        channel_id: Optional[int] = None,
        notify: Optional[Notify] = None,
    ) -> None:
        self.backend = backend
        self.user = user
        self.channel_id = channel_id
        self.notify: Notify = notify or _silent
        self.window: Optional[Tuple[datetime.date, datetime.date]] = None
        self.livestreams: Dict[int, Livestream] = {}
        self.employees: Dict[int, Employee] = {}
        self.channels: List[Channel] = []
        self.periods: List[Period] = []
        self.pending: Set[str] = set()

    # -- cache -------------------------------------------------------------

    async def load_week(
        self,
        start_date: datetime.date,
        end_date: Optional[datetime.date] = None,
        channel_id: Optional[int] = None,
    ) -> bool:
        if channel_id is not None:
            self.channel_id = channel_id
        end_date = end_date or start_date + datetime.timedelta(days=WEEK_DAYS - 1)
        self.window = (start_date, end_date)
        self.livestreams = {}
        return await self.refresh()

    async def refresh(self) -> bool:
        if self.window is None:
            return False
        start_date, end_date = self.window
        try:
            payload = await self.backend.fetch_livestreams(start_date, end_date, self.channel_id)
        except ScheduleError as exc:
            logger.warning("Refreshing %s..%s failed: %s", start_date, end_date, exc.message)
            self.notify(exc.message, "error")
            return False
        self.livestreams = {item.id: item for item in (Livestream.from_payload(entry) for entry in payload)}
        return True

    async def load_directory(self, role: Optional[str] = None) -> List[Employee]:
        try:
            payload = await self.backend.search_employees(role=role, limit=500)
        except ScheduleError as exc:
            logger.warning("Loading employees failed: %s", exc.message)
            self.notify(exc.message, "error")
            return []
        employees = [Employee.from_payload(entry) for entry in payload]
        self.employees.update({employee.id: employee for employee in employees})
        return employees

    async def load_catalog(self) -> bool:
        try:
            channels = await self.backend.list_channels()
            periods = await self.backend.list_periods(self.channel_id)
        except ScheduleError as exc:
            logger.warning("Loading channels failed: %s", exc.message)
            self.notify(exc.message, "error")
            return False
        self.channels = [Channel.from_payload(entry) for entry in channels]
        self.periods = [Period.from_payload(entry) for entry in periods]
        if self.channel_id is None and self.channels:
            self.channel_id = self.channels[0].id
        return True

    def days(self) -> List[datetime.date]:
        if self.window is None:
            return []
        start_date, end_date = self.window
        return [start_date + datetime.timedelta(days=offset) for offset in range((end_date - start_date).days + 1)]

    def livestream(self, livestream_id: int) -> Optional[Livestream]:
        return self.livestreams.get(livestream_id)

    def livestream_on(self, day: datetime.date) -> Optional[Livestream]:
        return next(
            (
                item
                for item in self.livestreams.values()
                if item.date == day and (self.channel_id is None or item.channel_id == self.channel_id)
            ),
            None,
        )

    def snapshot(self, snapshot_id: int) -> Optional[Snapshot]:
        for livestream in self.livestreams.values():
            found = livestream.snapshot(snapshot_id)
            if found:
                return found
        return None

    def snapshots_on(self, day: datetime.date, role: Optional[str] = None) -> Tuple[Snapshot, ...]:
        livestream = self.livestream_on(day)
        if not livestream:
            return ()
        return livestream.snapshots_for(role) if role else livestream.snapshots

    # -- gates -------------------------------------------------------------

    def is_locked(self, snapshot: Snapshot) -> bool:
        livestream = self.livestreams.get(snapshot.livestream_id)
        return bool(livestream and livestream.fixed)

    def is_day_locked(self, day: datetime.date) -> bool:
        """A day without a livestream row follows the lock state of the loaded week."""
        livestream = self.livestream_on(day)
        if livestream is None:
            return self.is_week_locked
        return livestream.fixed

    @property
    def is_week_locked(self) -> bool:
        """True when at least one day is loaded and every loaded day is fixed."""
        loaded = [item for item in self.livestreams.values() if self.channel_id in (None, item.channel_id)]
        return bool(loaded) and all(item.fixed for item in loaded)

    @property
    def any_day_locked(self) -> bool:
        return any(item.fixed for item in self.livestreams.values())

    def can_edit(self, snapshot: Snapshot) -> bool:
        """Whether drag handles and assignment controls are offered for ``snapshot``."""
        if self.is_locked(snapshot):
            return False
        return self.user.is_leader or self.user.owns(snapshot)

    def can_report(self, snapshot: Snapshot) -> bool:
        if self.user.can_report or self.user.owns(snapshot):
            return True
        alt = snapshot.alt
        return getattr(alt, "employee_id", None) == self.user.id

    def is_pending(self, key: str) -> bool:
        return key in self.pending

    def refuse(self, message: str) -> bool:
        logger.warning("Refused locally: %s", message)
        self.notify(message, "error")
        return False

    # -- mutation plumbing -------------------------------------------------

    async def run_mutation(
        self,
        key: str,
        call: Callable[[], Awaitable[Any]],
        success_message: Optional[str] = None,
    ) -> Optional[Any]:
        """Send ``call`` once; refetch on success, notify on failure.

        Returns the server payload, or None when the call failed or an identical
        mutation (same ``key``) was already in flight.
        """
        if key in self.pending:
            return None
        self.pending.add(key)
        try:
            result = await call()
        except ScheduleError as exc:
            logger.warning("%s failed: %s", key, exc.message)
            self.notify(exc.message, "error")
            return None
        finally:
            self.pending.discard(key)
        if success_message:
            self.notify(success_message, "success")
        await self.refresh()
        return {} if result is None else result

    # -- assignment-mutating operations ------------------------------------

    async def assign(
        self,
        snapshot_id: Optional[int],
        period_id: Optional[int],
        user_id: int,
        role: str,
        day: Optional[datetime.date] = None,
    ) -> bool:
        if snapshot_id is not None:
            snapshot = self.snapshot(snapshot_id)
            if snapshot and self.is_locked(snapshot):
                return self.refuse(LOCKED_NOTICE)
            key = f"assign:{snapshot_id}"
        else:
            if period_id is None or day is None:
                return self.refuse("Select a shift to assign.")
            if self.is_day_locked(day):
                return self.refuse(LOCKED_NOTICE)
            key = f"assign:{period_id}:{day.isoformat()}"
        result = await self.run_mutation(
            key,
            lambda: self.backend.assign(user_id, role, snapshot_id=snapshot_id, period_id=period_id, date=day),
            "Shift assigned.",
        )
        return result is not None

    async def unassign(self, snapshot_id: int) -> bool:
        snapshot = self.snapshot(snapshot_id)
        if snapshot and self.is_locked(snapshot):
            return self.refuse(LOCKED_NOTICE)
        result = await self.run_mutation(
            f"unassign:{snapshot_id}", lambda: self.backend.unassign(snapshot_id), "Shift released."
        )
        return result is not None

    async def resize_time(self, snapshot_id: int, start: datetime.time, end: datetime.time) -> bool:
        if time_to_minutes(end) <= time_to_minutes(start):
            return self.refuse("End time must be after start time.")
        snapshot = self.snapshot(snapshot_id)
        if snapshot and self.is_locked(snapshot):
            return self.refuse(LOCKED_NOTICE)
        result = await self.run_mutation(
            f"time:{snapshot_id}",
            lambda: self.backend.update_time(snapshot_id, start, end),
            f"Shift moved to {format_time_string(start)} - {format_time_string(end)}.",
        )
        return result is not None

    async def create_shift(
        self,
        day: datetime.date,
        start: datetime.time,
        end: datetime.time,
        role: str,
        assignee_id: Optional[int] = None,
    ) -> bool:
        if self.channel_id is None:
            return self.refuse("Select a channel first.")
        if time_to_minutes(end) <= time_to_minutes(start):
            return self.refuse("End time must be after start time.")
        if self.is_day_locked(day):
            return self.refuse(LOCKED_NOTICE)
        result = await self.run_mutation(
            f"create:{day.isoformat()}:{role}",
            lambda: self.backend.add_snapshot(self.channel_id, day, start, end, role, assignee_id),
            "Shift created.",
        )
        return result is not None

    async def delete_shift(self, snapshot_id: int) -> bool:
        snapshot = self.snapshot(snapshot_id)
        if snapshot and self.is_locked(snapshot):
            return self.refuse(LOCKED_NOTICE)
        result = await self.run_mutation(
            f"delete:{snapshot_id}", lambda: self.backend.delete_snapshot(snapshot_id), "Shift deleted."
        )
        return result is not None

    def _range_or_refuse(self) -> Optional[Tuple[datetime.date, datetime.date]]:
        if self.window is None or self.channel_id is None:
            self.refuse("Load a week and a channel first.")
            return None
        return self.window

    async def sync_from_templates(self) -> Optional[Dict[str, int]]:
        window = self._range_or_refuse()
        if window is None:
            return None
        if self.any_day_locked:
            self.refuse(LOCKED_NOTICE)
            return None
        start_date, end_date = window
        return await self.run_mutation(
            f"sync:{start_date.isoformat()}",
            lambda: self.backend.sync_range(start_date, end_date, self.channel_id),
            "Shifts synced with the period templates.",
        )

    async def create_range(self, period_ids: Optional[Iterable[int]] = None) -> bool:
        window = self._range_or_refuse()
        if window is None:
            return False
        if self.any_day_locked:
            return self.refuse(LOCKED_NOTICE)
        start_date, end_date = window
        selected = list(period_ids) if period_ids is not None else None
        result = await self.run_mutation(
            f"range:{start_date.isoformat()}",
            lambda: self.backend.create_range(start_date, end_date, self.channel_id, selected),
            "Week created from the period templates.",
        )
        return result is not None

    async def lock_week(self, fixed: bool = True) -> bool:
        window = self._range_or_refuse()
        if window is None:
            return False
        start_date, end_date = window
        result = await self.run_mutation(
            f"fix:{start_date.isoformat()}",
            lambda: self.backend.fix_range(start_date, end_date, self.channel_id, fixed),
            "Week locked." if fixed else "Week unlocked.",
        )
        return result is not None

    # -- overrides and reporting (allowed on locked weeks) -----------------

    async def update_alt(self, snapshot_id: int, alt: Optional[AltAssignee], alt_note: Optional[str] = None) -> bool:
        snapshot = self.snapshot(snapshot_id)
        if snapshot and not self.is_locked(snapshot):
            return self.refuse("Replacements can only be set once the week is locked.")
        result = await self.run_mutation(
            f"alt:{snapshot_id}",
            lambda: self.backend.update_alt(snapshot_id, alt, alt_note),
            "Replacement updated." if alt is not None else "Replacement cleared.",
        )
        return result is not None

    async def report(self, snapshot_id: int, report: Dict[str, Any]) -> bool:
        result = await self.run_mutation(
            f"report:{snapshot_id}", lambda: self.backend.report(snapshot_id, report), "Report saved."
        )
        return result is not None

    async def set_metrics(
        self,
        livestream_id: int,
        total_orders: Optional[float] = None,
        ads: Optional[float] = None,
    ) -> bool:
        result = await self.run_mutation(
            f"metrics:{livestream_id}",
            lambda: self.backend.set_metrics(livestream_id, total_orders, ads),
            "Day metrics saved.",
        )
        return result is not None
