from __future__ import annotations

import datetime
import unittest

from streamdesk.timegrid import (
    DEFAULT_PX_PER_MINUTE,
    MAX_PX_PER_MINUTE,
    ZoomState,
    anchored_scroll_top,
    clamp_zoom,
    format_time_string,
    minutes_to_time,
    parse_time_string,
    pixel_offset_to_minutes,
    snap,
    time_to_minutes,
    zoom_bounds,
)


class CoordinateTests(unittest.TestCase):
    def test_minutes_round_trip_for_every_minute_of_the_day(self) -> None:
        for minute in range(1440):
            self.assertEqual(time_to_minutes(minutes_to_time(minute)), minute)

    def test_minutes_to_time_clamps_out_of_range_values(self) -> None:
        for raw in (-500.0, -0.1, 1439.9, 1440, 99999.5):
            value = minutes_to_time(raw)
            self.assertTrue(0 <= value.hour <= 23)
            self.assertTrue(0 <= value.minute <= 59)
        self.assertEqual(minutes_to_time(-30), datetime.time(0, 0))
        self.assertEqual(minutes_to_time(1440), datetime.time(23, 59))

    def test_snap_rounds_to_nearest_step(self) -> None:
        self.assertEqual(snap(10 * 60 + 23), 625)
        self.assertEqual(snap(10 * 60 + 22), 620)
        self.assertEqual(snap(2.5), 5)
        self.assertEqual(snap(61, 15), 60)

    def test_snap_is_idempotent_and_stays_in_the_day(self) -> None:
        samples = [-90.0, -2.4, 0, 3.3, 7.5, 512.49, 1437.6, 1440, 1502.2]
        for raw in samples:
            once = snap(raw)
            self.assertEqual(snap(once), once)
            self.assertTrue(0 <= once <= 1440)

    def test_snap_rejects_non_positive_step(self) -> None:
        with self.assertRaises(ValueError):
            snap(30, 0)

    def test_pixel_offset_uses_origin_and_zoom(self) -> None:
        self.assertEqual(pixel_offset_to_minutes(1246, 0, 2), 623)
        self.assertEqual(pixel_offset_to_minutes(30, 480, 1.5), 500)


class ZoomTests(unittest.TestCase):
    def test_zoom_bounds_follow_viewport_height(self) -> None:
        self.assertEqual(zoom_bounds(800), (0.75, MAX_PX_PER_MINUTE))
        self.assertEqual(zoom_bounds(2880), (2.0, MAX_PX_PER_MINUTE))
        self.assertEqual(clamp_zoom(0.1, 800), 0.75)
        self.assertEqual(clamp_zoom(40, 800), MAX_PX_PER_MINUTE)

    def test_initial_scroll_shows_eight_o_clock(self) -> None:
        zoom = ZoomState()
        self.assertEqual(zoom.px_per_minute, DEFAULT_PX_PER_MINUTE)
        self.assertEqual(zoom.scroll_top, 480 * DEFAULT_PX_PER_MINUTE)
        self.assertEqual(zoom.minute_at(0), 480)

    def test_zoom_keeps_the_pointer_minute_in_place(self) -> None:
        zoom = ZoomState(px_per_minute=1, scroll_top=480)
        pointer_y = 20
        self.assertEqual(zoom.minute_at(pointer_y), 500)

        self.assertTrue(zoom.zoom_to(2, pointer_y))

        self.assertEqual(zoom.px_per_minute, 2)
        self.assertAlmostEqual(zoom.scroll_top, 980)
        self.assertAlmostEqual(zoom.minute_at(pointer_y), 500)

    def test_anchored_scroll_is_clamped_to_the_timeline(self) -> None:
        self.assertEqual(anchored_scroll_top(5, 100, 2), 0.0)
        self.assertEqual(anchored_scroll_top(1439, 0, 1, viewport_height_px=800), 640)

    def test_wheel_steps_zoom_in_the_wheel_direction(self) -> None:
        zoom = ZoomState(px_per_minute=2)
        self.assertTrue(zoom.wheel(120, 100))
        self.assertEqual(zoom.px_per_minute, 1.75)
        self.assertTrue(zoom.wheel(-120, 100))
        self.assertEqual(zoom.px_per_minute, 2.0)

    def test_wheel_at_the_limit_is_a_no_op(self) -> None:
        zoom = ZoomState(px_per_minute=MAX_PX_PER_MINUTE)
        before = zoom.scroll_top
        self.assertFalse(zoom.wheel(-120, 50))
        self.assertEqual(zoom.scroll_top, before)


class TimeTextTests(unittest.TestCase):
    def test_parse_time_string_clamps_each_part(self) -> None:
        self.assertEqual(parse_time_string("9:5"), datetime.time(9, 5))
        self.assertEqual(parse_time_string("25:70"), datetime.time(23, 59))
        self.assertEqual(parse_time_string("-3:15"), datetime.time(0, 15))
        self.assertEqual(parse_time_string(""), datetime.time(0, 0))
        self.assertEqual(parse_time_string("ab:cd"), datetime.time(0, 0))

    def test_format_time_string_pads(self) -> None:
        self.assertEqual(format_time_string(datetime.time(7, 5)), "07:05")


if __name__ == "__main__":
    unittest.main()
