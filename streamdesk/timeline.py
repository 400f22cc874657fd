"""Drag-resize and click-to-create on the week timeline.

The controller never touches the committed schedule while a gesture is in
progress: it keeps a single drag slot plus a local preview, and only the
pointer-up hands the previewed bounds to the sync layer.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Set, Tuple, Union

from .entities import Snapshot
from .timegrid import (
    DAY_END_MINUTE,
    DAY_START_MINUTE,
    DEFAULT_NEW_SHIFT_MINUTES,
    LAST_MINUTE,
    MIN_DURATION_MINUTES,
    SNAP_STEP_MINUTES,
    ZoomState,
    clamp,
    minutes_to_time,
    parse_time_string,
    pixel_offset_to_minutes,
    snap,
)

logger = logging.getLogger(__name__)

TOP = "top"
BOTTOM = "bottom"
EDGES = (TOP, BOTTOM)

LATEST_NEW_START = (LAST_MINUTE - MIN_DURATION_MINUTES) // SNAP_STEP_MINUTES * SNAP_STEP_MINUTES


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Resizing:
    edge: str
    livestream_id: int
    snapshot_id: int
    baseline_start: int
    baseline_end: int


DragState = Union[Idle, Resizing]
IDLE = Idle()


@dataclass(frozen=True)
class Preview:
    snapshot_id: int
    start_minute: int
    end_minute: int


class PointerSurface(Protocol):
    """Whole-canvas pointer source; receives listeners only for the length of a gesture."""

    def attach(self, on_move: Callable[[float], None], on_up: Callable[[], None]) -> None:
        ...

    def detach(self) -> None:
        ...


def resize_preview(state: Resizing, raw_minutes: float) -> Preview:
    """Snap the pointer minute and keep the moving edge at least five minutes from the other."""
    snapped = snap(raw_minutes, SNAP_STEP_MINUTES)
    if state.edge == TOP:
        start = int(clamp(snapped, DAY_START_MINUTE, state.baseline_end - MIN_DURATION_MINUTES))
        return Preview(state.snapshot_id, start, state.baseline_end)
    end = int(clamp(snapped, state.baseline_start + MIN_DURATION_MINUTES, DAY_END_MINUTE))
    return Preview(state.snapshot_id, state.baseline_start, end)


def new_shift_bounds(raw_minutes: float) -> Tuple[int, int]:
    start = min(snap(raw_minutes, SNAP_STEP_MINUTES), LATEST_NEW_START)
    end = min(start + DEFAULT_NEW_SHIFT_MINUTES, LAST_MINUTE)
    return start, end


def _next_tick(callback: Callable[[], None]) -> None:
    asyncio.get_running_loop().call_soon(callback)


class GestureScope:
    """Pairs listener registration with guaranteed removal."""

    def __init__(self, surface: PointerSurface) -> None:
        self.surface = surface
        self.active = False

    def start(self, on_move: Callable[[float], None], on_up: Callable[[], None]) -> None:
        self.surface.attach(on_move, on_up)
        self.active = True

    def end(self) -> None:
        if self.active:
            self.active = False
            self.surface.detach()


class DragResizeController:
    def __init__(
        self,
        sync,
        surface: PointerSurface,
        zoom: Optional[ZoomState] = None,
        *,
        defer: Callable[[Callable[[], None]], Any] = _next_tick,
        spawn: Optional[Callable[[Any], Any]] = None,
    ) -> None:
        self.sync = sync
        self.zoom = zoom or ZoomState()
        self.gesture = GestureScope(surface)
        self.defer = defer
        self.spawn = spawn or self._track
        self.tasks: Set[asyncio.Future] = set()
        self.state: DragState = IDLE
        self.preview: Optional[Preview] = None
        self.suppressed_clicks: Set[int] = set()
        self.edit_buttons_visible = True

    @property
    def is_dragging(self) -> bool:
        return isinstance(self.state, Resizing)

    def bounds_for(self, snapshot: Snapshot) -> Tuple[int, int]:
        """Bounds to draw: the preview while it applies, otherwise the committed ones."""
        if self.preview and self.preview.snapshot_id == snapshot.id:
            return self.preview.start_minute, self.preview.end_minute
        return snapshot.start_minute, snapshot.end_minute

    def minutes_at(self, pixel_y: float) -> float:
        """Day-column pixel offset (scroll included) to a raw minute."""
        return pixel_offset_to_minutes(pixel_y, self.zoom.origin_minute, self.zoom.px_per_minute)

    def begin_resize(self, snapshot: Snapshot, edge: str) -> bool:
        if edge not in EDGES:
            raise ValueError(f"Unknown resize edge '{edge}'.")
        if self.is_dragging:
            return False
        if not self.sync.can_edit(snapshot):
            return False
        self.state = Resizing(
            edge=edge,
            livestream_id=snapshot.livestream_id,
            snapshot_id=snapshot.id,
            baseline_start=snapshot.start_minute,
            baseline_end=snapshot.end_minute,
        )
        self.preview = None
        self.suppressed_clicks.add(snapshot.id)
        self.gesture.start(self.pointer_move, self._surface_pointer_up)
        return True

    def pointer_move(self, pixel_y: float) -> Optional[Preview]:
        state = self.state
        if not isinstance(state, Resizing):
            return None
        self.preview = resize_preview(state, self.minutes_at(pixel_y))
        return self.preview

    def release(self) -> Optional[Preview]:
        """End the gesture and return the preview worth committing, if any."""
        state, preview = self.state, self.preview
        try:
            if not isinstance(state, Resizing):
                return None
            if preview is None or preview.snapshot_id != state.snapshot_id:
                return None
            return preview
        finally:
            self.state = IDLE
            self.preview = None
            self.gesture.end()
            if isinstance(state, Resizing):
                self._release_click_later(state.snapshot_id)

    def cancel(self) -> None:
        self.release()

    async def pointer_up(self) -> bool:
        preview = self.release()
        if preview is None:
            return False
        return await self.sync.resize_time(
            preview.snapshot_id,
            minutes_to_time(preview.start_minute),
            minutes_to_time(preview.end_minute),
        )

    def _track(self, coro) -> asyncio.Future:
        """Default spawn: hold the commit task until it finishes and log anything it raises."""
        task = asyncio.ensure_future(coro)
        self.tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Future) -> None:
        self.tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Shift commit failed", exc_info=task.exception())

    def _surface_pointer_up(self) -> None:
        self.spawn(self.pointer_up())

    def _release_click_later(self, snapshot_id: int) -> None:
        self.defer(lambda: self.suppressed_clicks.discard(snapshot_id))

    def on_shift_click(self, snapshot_id: int) -> bool:
        """True when a click on the shift should open it."""
        return not self.is_dragging and snapshot_id not in self.suppressed_clicks

    def can_click_create(self, day: datetime.date) -> bool:
        if not self.edit_buttons_visible or self.is_dragging:
            return False
        return not (self.sync.is_week_locked or self.sync.is_day_locked(day))

    async def click_to_create(self, day: datetime.date, role: str, pixel_y: float) -> bool:
        if not self.can_click_create(day):
            return False
        start, end = new_shift_bounds(self.minutes_at(pixel_y))
        logger.debug("Creating %s shift on %s at %s-%s", role, day, start, end)
        return await self.sync.create_shift(day, minutes_to_time(start), minutes_to_time(end), role)

    async def edit_time(self, snapshot: Snapshot, start_text: str, end_text: str) -> bool:
        """Typed bounds from the edit dialog; same validation as a drag commit."""
        if self.is_dragging:
            return False
        return await self.sync.resize_time(snapshot.id, parse_time_string(start_text), parse_time_string(end_text))
