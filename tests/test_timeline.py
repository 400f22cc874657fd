from __future__ import annotations

import asyncio
import datetime
import unittest

from sqlalchemy.exc import OperationalError

from streamdesk.backends import DATABASE_UNAVAILABLE, LocalBackend
from streamdesk.entities import Snapshot
from streamdesk.timegrid import ZoomState
from streamdesk.timeline import BOTTOM, IDLE, TOP, DragResizeController, Preview, new_shift_bounds

from scheduling_fixtures import WEEK_START, build_schedule, make_sync, seed_week

MONDAY = WEEK_START


def _snapshot(snapshot_id=7, start="09:00", end="10:00"):
    return Snapshot.from_payload(
        {
            "id": snapshot_id,
            "livestream_id": 3,
            "date": MONDAY.isoformat(),
            "period": {"id": 2, "start_time": start, "end_time": end, "channel_id": 1, "for": "host"},
            "assignee": {"id": 11, "name": "Hana Host"},
        }
    )


class FakeSurface:
    def __init__(self) -> None:
        self.listeners = None
        self.attached = 0
        self.detached = 0

    def attach(self, on_move, on_up) -> None:
        self.listeners = (on_move, on_up)
        self.attached += 1

    def detach(self) -> None:
        self.listeners = None
        self.detached += 1


class FakeSync:
    """Only the gates and the two commit calls the controller uses."""

    def __init__(self, *, editable=True, locked_days=(), commit_ok=True) -> None:
        self.editable = editable
        self.locked_days = set(locked_days)
        self.commit_ok = commit_ok
        self.resized = []
        self.created = []

    @property
    def is_week_locked(self) -> bool:
        return False

    def is_day_locked(self, day) -> bool:
        return day in self.locked_days

    def can_edit(self, snapshot) -> bool:
        return self.editable

    async def resize_time(self, snapshot_id, start, end) -> bool:
        self.resized.append((snapshot_id, start, end))
        return self.commit_ok

    async def create_shift(self, day, start, end, role) -> bool:
        self.created.append((day, start, end, role))
        return True


def _database_locked(session, actor, *args):
    raise OperationalError("UPDATE snapshot", {}, Exception("database is locked"))


class LockedDatabaseBackend(LocalBackend):
    """Every time change hits a busy SQLite file."""

    async def update_time(self, snapshot_id, start_time, end_time):
        return await self._run(_database_locked, snapshot_id, start_time, end_time)


class BrokenSync(FakeSync):
    async def resize_time(self, snapshot_id, start, end) -> bool:
        raise RuntimeError("commit exploded")


class ControllerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.sync = FakeSync()
        self.surface = FakeSurface()
        self.deferred = []
        self.spawned = []
        self.controller = self.make_controller(self.sync)

    def make_controller(self, sync):
        return DragResizeController(
            sync,
            self.surface,
            ZoomState(px_per_minute=2, scroll_top=0),
            defer=self.deferred.append,
            spawn=self.spawned.append,
        )

    def flush_deferred(self) -> None:
        pending, self.deferred[:] = list(self.deferred), []
        for callback in pending:
            callback()


class ResizeTests(ControllerTestCase):
    async def test_bottom_drag_snaps_and_commits_once(self) -> None:
        snapshot = _snapshot()
        self.assertTrue(self.controller.begin_resize(snapshot, BOTTOM))
        self.assertIsNone(self.controller.preview)

        preview = self.controller.pointer_move(1246)

        self.assertEqual(preview, Preview(7, 540, 625))
        self.assertEqual(self.controller.bounds_for(snapshot), (540, 625))
        self.assertEqual(self.sync.resized, [])
        self.assertTrue(await self.controller.pointer_up())
        self.assertEqual(self.sync.resized, [(7, datetime.time(9, 0), datetime.time(10, 25))])
        self.assertIs(self.controller.state, IDLE)
        self.assertEqual(self.controller.bounds_for(snapshot), (540, 600))

    async def test_edges_keep_a_minimum_duration_and_stay_in_the_day(self) -> None:
        snapshot = _snapshot()
        self.controller.begin_resize(snapshot, BOTTOM)
        self.assertEqual(self.controller.pointer_move(1000).end_minute, 545)
        self.assertEqual(self.controller.pointer_move(5000).end_minute, 1440)
        self.controller.cancel()

        self.controller.begin_resize(snapshot, TOP)
        self.assertEqual(self.controller.pointer_move(2000).start_minute, 595)
        self.assertEqual(self.controller.pointer_move(-300).start_minute, 0)
        self.assertEqual(self.controller.pointer_move(1085), Preview(7, 545, 600))

    async def test_end_of_day_commits_as_last_minute(self) -> None:
        self.controller.begin_resize(_snapshot(), BOTTOM)
        self.controller.pointer_move(4000)
        await self.controller.pointer_up()
        self.assertEqual(self.sync.resized[0][2], datetime.time(23, 59))

    async def test_release_without_movement_sends_nothing(self) -> None:
        self.controller.begin_resize(_snapshot(), TOP)
        self.assertFalse(await self.controller.pointer_up())
        self.assertEqual(self.sync.resized, [])
        self.assertEqual(self.surface.detached, 1)

    async def test_surface_listeners_live_for_one_gesture(self) -> None:
        self.controller.begin_resize(_snapshot(), BOTTOM)
        self.assertEqual(self.surface.attached, 1)
        on_move, on_up = self.surface.listeners

        on_move(1246)
        on_up()
        self.assertEqual(len(self.spawned), 1)
        self.assertTrue(await self.spawned.pop())

        self.assertIsNone(self.surface.listeners)
        self.assertEqual(self.surface.detached, 1)
        self.controller.cancel()
        self.assertEqual(self.surface.detached, 1)

    async def test_cancel_detaches_and_drops_the_preview(self) -> None:
        self.controller.begin_resize(_snapshot(), BOTTOM)
        self.controller.pointer_move(1300)
        self.controller.cancel()
        self.assertIsNone(self.surface.listeners)
        self.assertIsNone(self.controller.preview)
        self.assertIsNone(self.controller.pointer_move(1400))
        self.assertEqual(self.sync.resized, [])

    async def test_release_after_escape_commits_nothing(self) -> None:
        self.controller.begin_resize(_snapshot(), BOTTOM)
        on_move, on_up = self.surface.listeners
        on_move(1246)
        self.controller.cancel()

        on_up()
        self.assertFalse(await self.spawned.pop())
        self.assertEqual(self.sync.resized, [])
        self.assertEqual(self.surface.detached, 1)
        self.assertTrue(self.controller.begin_resize(_snapshot(8), TOP))

    async def test_only_one_drag_at_a_time(self) -> None:
        self.assertTrue(self.controller.begin_resize(_snapshot(7), BOTTOM))
        self.assertFalse(self.controller.begin_resize(_snapshot(8), TOP))
        self.assertEqual(self.controller.state.snapshot_id, 7)

    async def test_failed_commit_reverts_to_committed_bounds(self) -> None:
        sync = FakeSync(commit_ok=False)
        controller = self.make_controller(sync)
        snapshot = _snapshot()
        controller.begin_resize(snapshot, BOTTOM)
        controller.pointer_move(1300)
        self.assertFalse(await controller.pointer_up())
        self.assertIsNone(controller.preview)
        self.assertEqual(controller.bounds_for(snapshot), (540, 600))

    async def test_locked_or_foreign_shift_cannot_be_dragged(self) -> None:
        controller = self.make_controller(FakeSync(editable=False))
        self.assertFalse(controller.begin_resize(_snapshot(), BOTTOM))
        self.assertEqual(self.surface.attached, 0)

    async def test_unknown_edge_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.controller.begin_resize(_snapshot(), "left")


class ClickTests(ControllerTestCase):
    async def test_click_right_after_a_drag_is_swallowed(self) -> None:
        self.controller.begin_resize(_snapshot(), BOTTOM)
        self.assertFalse(self.controller.on_shift_click(7))
        self.controller.pointer_move(1246)
        await self.controller.pointer_up()

        self.assertFalse(self.controller.on_shift_click(7))
        self.assertTrue(self.controller.on_shift_click(8))
        self.flush_deferred()
        self.assertTrue(self.controller.on_shift_click(7))

    async def test_click_to_create_uses_a_default_hour(self) -> None:
        self.assertTrue(await self.controller.click_to_create(MONDAY, "host", 1246))
        self.assertEqual(
            self.sync.created,
            [(MONDAY, datetime.time(10, 25), datetime.time(11, 25), "host")],
        )

    async def test_click_late_in_the_day_is_clamped(self) -> None:
        self.assertEqual(new_shift_bounds(1438), (1430, 1439))
        self.assertEqual(new_shift_bounds(1400), (1400, 1439))
        await self.controller.click_to_create(MONDAY, "assistant", 2870)
        self.assertEqual(self.sync.created[0][1:3], (datetime.time(23, 50), datetime.time(23, 59)))

    async def test_click_to_create_respects_locks_and_drags(self) -> None:
        tuesday = MONDAY + datetime.timedelta(days=1)
        controller = self.make_controller(FakeSync(locked_days={MONDAY}))
        self.assertFalse(controller.can_click_create(MONDAY))
        self.assertTrue(controller.can_click_create(tuesday))

        controller.begin_resize(_snapshot(), BOTTOM)
        self.assertFalse(await controller.click_to_create(tuesday, "host", 100))
        controller.cancel()

        controller.edit_buttons_visible = False
        self.assertFalse(controller.can_click_create(tuesday))
        self.assertEqual(controller.sync.created, [])

    async def test_typed_times_go_through_the_same_commit(self) -> None:
        self.assertTrue(await self.controller.edit_time(_snapshot(), "9:30", "11:05"))
        self.assertEqual(self.sync.resized, [(7, datetime.time(9, 30), datetime.time(11, 5))])


class TrackedCommitTests(unittest.IsolatedAsyncioTestCase):
    """Commits spawned by the surface without an injected ``spawn``."""

    def setUp(self) -> None:
        self.surface = FakeSurface()

    def make_controller(self, sync):
        return DragResizeController(sync, self.surface, ZoomState(px_per_minute=2, scroll_top=0), defer=list().append)

    async def test_commit_task_is_held_until_it_finishes(self) -> None:
        sync = FakeSync()
        controller = self.make_controller(sync)
        controller.begin_resize(_snapshot(), BOTTOM)
        on_move, on_up = self.surface.listeners
        on_move(1246)
        on_up()

        self.assertEqual(len(controller.tasks), 1)
        (task,) = controller.tasks
        self.assertTrue(await task)
        await asyncio.sleep(0)
        self.assertEqual(controller.tasks, set())
        self.assertEqual(sync.resized, [(7, datetime.time(9, 0), datetime.time(10, 25))])

    async def test_failed_commit_task_is_logged(self) -> None:
        controller = self.make_controller(BrokenSync())
        controller.begin_resize(_snapshot(), BOTTOM)
        on_move, on_up = self.surface.listeners
        on_move(1246)

        with self.assertLogs("streamdesk.timeline", "ERROR") as logs:
            on_up()
            await asyncio.wait(set(controller.tasks))
            await asyncio.sleep(0)

        self.assertIn("Shift commit failed", logs.output[0])
        self.assertEqual(controller.tasks, set())
        self.assertIs(controller.state, IDLE)


class ScheduleResizeTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.schedule = build_schedule()
        self.monday = seed_week(self.schedule)

    def tearDown(self) -> None:
        self.schedule.engine.dispose()

    async def test_drag_commit_reaches_the_schedule(self) -> None:
        sync, backend, _ = make_sync(self.schedule, self.schedule.crew.host)
        await sync.load_week(WEEK_START)
        surface = FakeSurface()
        controller = DragResizeController(sync, surface, ZoomState(px_per_minute=2, scroll_top=0), defer=list().append)

        snapshot = sync.snapshot(self.monday["id"])
        self.assertTrue(controller.begin_resize(snapshot, BOTTOM))
        controller.pointer_move(1246)
        self.assertTrue(await controller.pointer_up())

        self.assertEqual(sync.snapshot(snapshot.id).end_minute, 625)
        self.assertEqual(backend.mutations(), ["update_time"])

    async def test_busy_database_becomes_a_notice(self) -> None:
        backend = LockedDatabaseBackend(self.schedule.session_factory, self.schedule.crew.host.id)
        sync, _, notices = make_sync(self.schedule, self.schedule.crew.host, backend=backend)
        await sync.load_week(WEEK_START)
        controller = DragResizeController(sync, FakeSurface(), ZoomState(px_per_minute=2, scroll_top=0), defer=list().append)

        snapshot = sync.snapshot(self.monday["id"])
        controller.begin_resize(snapshot, BOTTOM)
        controller.pointer_move(1246)
        self.assertFalse(await controller.pointer_up())

        self.assertEqual(notices[-1], ("error", DATABASE_UNAVAILABLE))
        self.assertIsNone(controller.preview)
        self.assertEqual(sync.snapshot(snapshot.id).end_minute, 600)
        self.assertFalse(sync.is_pending(f"time:{snapshot.id}"))

    async def test_other_employees_cannot_drag(self) -> None:
        sync, _, _ = make_sync(self.schedule, self.schedule.crew.other_host)
        await sync.load_week(WEEK_START)
        controller = DragResizeController(sync, FakeSurface(), defer=list().append)
        self.assertFalse(controller.begin_resize(sync.snapshot(self.monday["id"]), TOP))


if __name__ == "__main__":
    unittest.main()
