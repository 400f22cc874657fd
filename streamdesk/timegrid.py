from __future__ import annotations

import datetime
import math
from typing import Tuple


MINUTES_PER_DAY = 24 * 60
LAST_MINUTE = MINUTES_PER_DAY - 1
DAY_START_MINUTE = 0
DAY_END_MINUTE = MINUTES_PER_DAY

SNAP_STEP_MINUTES = 5
MIN_DURATION_MINUTES = 5
DEFAULT_NEW_SHIFT_MINUTES = 60

MIN_PX_PER_MINUTE_FLOOR = 0.75
MAX_PX_PER_MINUTE = 6.0
DEFAULT_PX_PER_MINUTE = 2.0
ZOOM_STEP = 0.25
DEFAULT_VIEWPORT_HEIGHT_PX = 800
DEFAULT_VIEWPORT_START_MINUTE = 8 * 60


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def time_to_minutes(value: datetime.time) -> int:
    return value.hour * 60 + value.minute


def minutes_to_time(minutes: float) -> datetime.time:
    """Return the time of day for a minute offset, clamped into the day first."""
    clamped = int(math.floor(clamp(minutes, DAY_START_MINUTE, LAST_MINUTE)))
    hour, minute = divmod(clamped, 60)
    return datetime.time(hour, minute)


def snap(minutes: float, step: int = SNAP_STEP_MINUTES) -> int:
    """Round to the nearest multiple of ``step`` (halves round up), bounded to the day."""
    if step <= 0:
        raise ValueError("Snap step must be a positive number of minutes.")
    bounded = clamp(minutes, DAY_START_MINUTE, DAY_END_MINUTE)
    snapped = int(math.floor(bounded / step + 0.5)) * step
    return int(clamp(snapped, DAY_START_MINUTE, DAY_END_MINUTE))


def pixel_offset_to_minutes(pixel_y: float, origin_minute: float, px_per_minute: float) -> float:
    return origin_minute + pixel_y / px_per_minute


def minutes_to_pixel_offset(minutes: float, origin_minute: float, px_per_minute: float) -> float:
    return (minutes - origin_minute) * px_per_minute


def zoom_bounds(viewport_height_px: float = DEFAULT_VIEWPORT_HEIGHT_PX) -> Tuple[float, float]:
    """Smallest zoom still fills the viewport with the whole day; never below the floor."""
    lower = max(MIN_PX_PER_MINUTE_FLOOR, viewport_height_px / MINUTES_PER_DAY)
    return lower, MAX_PX_PER_MINUTE


def clamp_zoom(px_per_minute: float, viewport_height_px: float = DEFAULT_VIEWPORT_HEIGHT_PX) -> float:
    lower, upper = zoom_bounds(viewport_height_px)
    return clamp(px_per_minute, lower, upper)


def minute_at_pointer(scroll_top: float, pointer_y: float, px_per_minute: float, origin_minute: float = 0) -> float:
    return pixel_offset_to_minutes(scroll_top + pointer_y, origin_minute, px_per_minute)


def anchored_scroll_top(
    anchor_minute: float,
    pointer_y: float,
    px_per_minute: float,
    *,
    origin_minute: float = 0,
    viewport_height_px: float | None = None,
) -> float:
    """Scroll offset that keeps ``anchor_minute`` under the pointer at the given zoom."""
    scroll_top = minutes_to_pixel_offset(anchor_minute, origin_minute, px_per_minute) - pointer_y
    if viewport_height_px is None:
        return max(0.0, scroll_top)
    timeline_height = (DAY_END_MINUTE - origin_minute) * px_per_minute
    return clamp(scroll_top, 0.0, max(0.0, timeline_height - viewport_height_px))


def parse_time_string(value: str) -> datetime.time:
    """Lenient ``HH:MM`` parser used by typed time inputs; each part is clamped."""
    hour_text, _, minute_text = (value or "").strip().partition(":")
    try:
        hour = int(hour_text)
    except ValueError:
        hour = 0
    try:
        minute = int(minute_text)
    except ValueError:
        minute = 0
    return datetime.time(int(clamp(hour, 0, 23)), int(clamp(minute, 0, 59)))


def format_time_string(value: datetime.time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


class ZoomState:
    """Zoom factor and scroll offset of the timeline viewport."""

    def __init__(
        self,
        *,
        viewport_height_px: float = DEFAULT_VIEWPORT_HEIGHT_PX,
        px_per_minute: float = DEFAULT_PX_PER_MINUTE,
        origin_minute: float = DAY_START_MINUTE,
        scroll_top: float | None = None,
    ) -> None:
        self.viewport_height_px = viewport_height_px
        self.origin_minute = origin_minute
        self.px_per_minute = clamp_zoom(px_per_minute, viewport_height_px)
        if scroll_top is None:
            self.scroll_to_minute(DEFAULT_VIEWPORT_START_MINUTE)
        else:
            self.scroll_top = clamp(scroll_top, 0.0, self.max_scroll_top)

    @property
    def timeline_height(self) -> float:
        return (DAY_END_MINUTE - self.origin_minute) * self.px_per_minute

    @property
    def max_scroll_top(self) -> float:
        return max(0.0, self.timeline_height - self.viewport_height_px)

    def scroll_to_minute(self, minute: float) -> float:
        offset = minutes_to_pixel_offset(minute, self.origin_minute, self.px_per_minute)
        self.scroll_top = clamp(offset, 0.0, self.max_scroll_top)
        return self.scroll_top

    def minute_at(self, pointer_y: float) -> float:
        return minute_at_pointer(self.scroll_top, pointer_y, self.px_per_minute, self.origin_minute)

    def zoom_to(self, px_per_minute: float, pointer_y: float) -> bool:
        """Change zoom keeping the minute under ``pointer_y`` fixed; False when unchanged."""
        target = clamp_zoom(px_per_minute, self.viewport_height_px)
        if target == self.px_per_minute:
            return False
        pointer_y = clamp(pointer_y, 0.0, self.viewport_height_px)
        anchor = self.minute_at(pointer_y)
        self.px_per_minute = target
        self.scroll_top = anchored_scroll_top(
            anchor,
            pointer_y,
            target,
            origin_minute=self.origin_minute,
            viewport_height_px=self.viewport_height_px,
        )
        return True

    def wheel(self, delta_y: float, pointer_y: float) -> bool:
        # Wheel down zooms out, wheel up zooms in.
        direction = -1 if delta_y > 0 else 1
        return self.zoom_to(self.px_per_minute + direction * ZOOM_STEP, pointer_y)
