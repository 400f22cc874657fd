from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Callable, List, Optional, Tuple

from PySide6.QtCore import QRectF, Qt
from PySide6.QtGui import QColor, QFont, QPainter, QPen
from PySide6.QtWidgets import (
    QComboBox,
    QHBoxLayout,
    QLabel,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from ..altrequests import AltRequestWorkflow
from ..entities import Snapshot, display_name, has_report
from ..roles import ROLE_COLORS, SHIFT_ROLES, palette_for_role, role_label
from ..sync import ScheduleSyncLayer, week_bounds
from ..timegrid import MINUTES_PER_DAY, ZoomState, format_time_string, minutes_to_pixel_offset
from ..timeline import BOTTOM, TOP, DragResizeController
from .alt_request_dialog import ShiftDialog

logger = logging.getLogger(__name__)

DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
HEADER_HEIGHT = 28
GUTTER_WIDTH = 56
EDGE_GRAB_PX = 6
SEVERITY_COLORS = {"success": "#7bd88f", "error": "#ff7a7a", "info": "#c9cede"}


class TimelineCanvas(QWidget):
    """Seven day columns on a shared pixel-per-minute grid.

    The canvas is also the pointer surface of the drag controller: while a
    resize is active it grabs the mouse so moves outside the shift still land
    here.
    """

    def __init__(self, page: "WeekTimelinePage") -> None:
        super().__init__()
        self.page = page
        self.setMouseTracking(True)
        self.setFocusPolicy(Qt.StrongFocus)
        self.setMinimumHeight(480)
        self._on_move: Optional[Callable[[float], None]] = None
        self._on_up: Optional[Callable[[], None]] = None
        self._press: Optional[Tuple[int, Optional[Snapshot], float]] = None

    # PointerSurface
    def attach(self, on_move: Callable[[float], None], on_up: Callable[[], None]) -> None:
        self._on_move = on_move
        self._on_up = on_up
        self.grabMouse()

    def detach(self) -> None:
        self._on_move = None
        self._on_up = None
        self.releaseMouse()

    # geometry
    @property
    def zoom(self) -> ZoomState:
        return self.page.controller.zoom

    def column_width(self) -> float:
        return max(40.0, (self.width() - GUTTER_WIDTH) / len(DAY_NAMES))

    def column_at(self, x: float) -> Optional[int]:
        if x < GUTTER_WIDTH:
            return None
        index = int((x - GUTTER_WIDTH) // self.column_width())
        return index if 0 <= index < len(DAY_NAMES) else None

    def content_y(self, widget_y: float) -> float:
        return self.zoom.scroll_top + (widget_y - HEADER_HEIGHT)

    def widget_y(self, minute: float) -> float:
        offset = minutes_to_pixel_offset(minute, self.zoom.origin_minute, self.zoom.px_per_minute)
        return HEADER_HEIGHT + offset - self.zoom.scroll_top

    def shift_rect(self, column: int, snapshot: Snapshot) -> QRectF:
        start, end = self.page.controller.bounds_for(snapshot)
        left = GUTTER_WIDTH + column * self.column_width() + 2
        top = self.widget_y(start)
        return QRectF(left, top, self.column_width() - 4, max(4.0, self.widget_y(end) - top))

    def hit_test(self, column: int, x: float, y: float) -> Tuple[Optional[Snapshot], Optional[str]]:
        for snapshot in self.page.visible_snapshots(column):
            rect = self.shift_rect(column, snapshot)
            if not rect.contains(x, y):
                continue
            if y - rect.top() <= EDGE_GRAB_PX:
                return snapshot, TOP
            if rect.bottom() - y <= EDGE_GRAB_PX:
                return snapshot, BOTTOM
            return snapshot, None
        return None, None

    # events
    def resizeEvent(self, event) -> None:
        self.zoom.viewport_height_px = max(1, self.height() - HEADER_HEIGHT)
        self.zoom.zoom_to(self.zoom.px_per_minute, 0)
        self.zoom.scroll_top = min(self.zoom.scroll_top, self.zoom.max_scroll_top)
        super().resizeEvent(event)

    def wheelEvent(self, event) -> None:
        delta = event.angleDelta().y()
        pointer_y = event.position().y() - HEADER_HEIGHT
        if event.modifiers() & Qt.ControlModifier:
            self.zoom.wheel(-delta, pointer_y)
        else:
            self.zoom.scroll_top = min(max(0.0, self.zoom.scroll_top - delta / 2), self.zoom.max_scroll_top)
        self.update()

    def mousePressEvent(self, event) -> None:
        if event.button() != Qt.LeftButton:
            return
        x, y = event.position().x(), event.position().y()
        column = self.column_at(x)
        if column is None or y < HEADER_HEIGHT:
            return
        snapshot, edge = self.hit_test(column, x, y)
        if snapshot is not None and edge is not None:
            if self.page.controller.begin_resize(snapshot, edge):
                self._press = None
                return
        self._press = (column, snapshot, y)

    def keyPressEvent(self, event) -> None:
        if event.key() == Qt.Key_Escape and self.page.controller.is_dragging:
            self.cancel_drag()
            return
        super().keyPressEvent(event)

    def focusOutEvent(self, event) -> None:
        if self.page.controller.is_dragging:
            self.cancel_drag()
        super().focusOutEvent(event)

    def cancel_drag(self) -> None:
        self.page.controller.cancel()
        self._press = None
        self.update()

    def mouseMoveEvent(self, event) -> None:
        y = event.position().y()
        if self._on_move is not None:
            self._on_move(self.content_y(y))
            self.update()
            return
        column = self.column_at(event.position().x())
        if column is None:
            self.unsetCursor()
            return
        snapshot, edge = self.hit_test(column, event.position().x(), y)
        if edge and self.page.sync.can_edit(snapshot):
            self.setCursor(Qt.SizeVerCursor)
        else:
            self.unsetCursor()

    def mouseReleaseEvent(self, event) -> None:
        if self._on_up is not None:
            self._on_up()
            self.update()
        press, self._press = self._press, None
        if press is None:
            return
        column, snapshot, y = press
        if snapshot is not None:
            if self.page.controller.on_shift_click(snapshot.id):
                self.page.open_shift(snapshot)
            return
        day = self.page.day_for_column(column)
        if day is not None:
            self.page.spawn(self.page.controller.click_to_create(day, self.page.current_role, self.content_y(y)))

    def paintEvent(self, event) -> None:
        painter = QPainter(self)
        painter.setRenderHint(QPainter.Antialiasing)
        painter.fillRect(self.rect(), QColor("#111217"))
        width = self.column_width()
        self._paint_hours(painter)
        for column in range(len(DAY_NAMES)):
            left = GUTTER_WIDTH + column * width
            day = self.page.day_for_column(column)
            if day is not None and self.page.sync.is_day_locked(day):
                painter.fillRect(QRectF(left, HEADER_HEIGHT, width, self.height()), QColor("#1c1d23"))
            painter.setPen(QPen(QColor("#2a2c35")))
            painter.drawLine(int(left), 0, int(left), self.height())
            label = DAY_NAMES[column]
            if day is not None:
                label = f"{label} {day.strftime('%d/%m')}"
            painter.setPen(QColor("#f5f6fa"))
            painter.drawText(QRectF(left, 0, width, HEADER_HEIGHT), Qt.AlignCenter, label)
            for snapshot in self.page.visible_snapshots(column):
                self._paint_shift(painter, column, snapshot)
        painter.end()

    def _paint_hours(self, painter: QPainter) -> None:
        small = QFont()
        small.setPointSize(8)
        painter.setFont(small)
        for hour in range(0, MINUTES_PER_DAY // 60 + 1):
            y = self.widget_y(hour * 60)
            if y < HEADER_HEIGHT or y > self.height():
                continue
            painter.setPen(QPen(QColor("#1c1d23")))
            painter.drawLine(GUTTER_WIDTH, int(y), self.width(), int(y))
            painter.setPen(QColor("#8a8f9c"))
            painter.drawText(4, int(y) + 4, f"{hour:02d}:00")

    def _paint_shift(self, painter: QPainter, column: int, snapshot: Snapshot) -> None:
        rect = self.shift_rect(column, snapshot)
        if rect.bottom() < HEADER_HEIGHT or rect.top() > self.height():
            return
        color = QColor(ROLE_COLORS["alt"] if snapshot.has_alt else palette_for_role(snapshot.role))
        if snapshot.assignee is None:
            color.setAlpha(110)
        painter.setPen(Qt.NoPen)
        painter.setBrush(color)
        painter.drawRoundedRect(rect, 6, 6)
        start, end = self.page.controller.bounds_for(snapshot)
        text = f"{display_name(snapshot, self.page.sync.employees)}\n{_hhmm(start)} - {_hhmm(end)}"
        if has_report(snapshot):
            text += "\n✓ reported"
        painter.setPen(QColor("#ffffff"))
        painter.drawText(rect.adjusted(6, 4, -4, -4), Qt.AlignLeft | Qt.AlignTop, text)


def _hhmm(minute: int) -> str:
    minute = min(minute, MINUTES_PER_DAY)
    if minute == MINUTES_PER_DAY:
        return "24:00"
    return format_time_string(datetime.time(minute // 60, minute % 60))


class WeekTimelinePage(QWidget):
    def __init__(self, sync: ScheduleSyncLayer, *, start_date: Optional[datetime.date] = None) -> None:
        super().__init__()
        self.sync = sync
        self.sync.notify = self.show_feedback
        self.workflow = AltRequestWorkflow(sync)
        self.current_role = SHIFT_ROLES[0]
        self.week_start, _ = week_bounds(start_date or datetime.date.today())
        self._tasks: List[asyncio.Future] = []
        self.canvas = TimelineCanvas(self)
        self.controller = DragResizeController(sync, self.canvas, ZoomState(), spawn=self.spawn)
        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        layout.setSpacing(10)

        header = QHBoxLayout()
        self.prev_week_button = QPushButton("◀")
        self.prev_week_button.setFixedSize(30, 30)
        self.prev_week_button.clicked.connect(lambda: self.navigate_week(-7))
        header.addWidget(self.prev_week_button)
        self.week_label = QLabel("Week of --")
        header.addWidget(self.week_label)
        self.next_week_button = QPushButton("▶")
        self.next_week_button.setFixedSize(30, 30)
        self.next_week_button.clicked.connect(lambda: self.navigate_week(7))
        header.addWidget(self.next_week_button)

        self.channel_combo = QComboBox()
        self.channel_combo.currentIndexChanged.connect(self._handle_channel_change)
        header.addWidget(self.channel_combo)

        self.role_combo = QComboBox()
        for role in SHIFT_ROLES:
            self.role_combo.addItem(role_label(role), role)
        self.role_combo.currentIndexChanged.connect(self._handle_role_change)
        header.addWidget(self.role_combo)

        zoom_out = QPushButton("−")
        zoom_out.setFixedSize(30, 30)
        zoom_out.clicked.connect(lambda: self._zoom_step(1))
        header.addWidget(zoom_out)
        zoom_in = QPushButton("+")
        zoom_in.setFixedSize(30, 30)
        zoom_in.clicked.connect(lambda: self._zoom_step(-1))
        header.addWidget(zoom_in)
        header.addStretch()

        self.create_week_button = QPushButton("Create week")
        self.create_week_button.clicked.connect(lambda: self.spawn(self.sync.create_range()))
        header.addWidget(self.create_week_button)
        self.sync_button = QPushButton("Sync templates")
        self.sync_button.clicked.connect(lambda: self.spawn(self.sync.sync_from_templates()))
        header.addWidget(self.sync_button)
        self.lock_button = QPushButton("Lock week")
        self.lock_button.clicked.connect(self._handle_lock)
        header.addWidget(self.lock_button)
        for button in (self.create_week_button, self.sync_button, self.lock_button):
            button.setVisible(self.sync.user.is_leader)
        layout.addLayout(header)

        layout.addWidget(self.canvas, 1)
        self.feedback_label = QLabel()
        self.feedback_label.setStyleSheet(f"color:{SEVERITY_COLORS['info']};")
        layout.addWidget(self.feedback_label)

    # async plumbing
    def spawn(self, coro) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._tasks.append(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Future) -> None:
        if task in self._tasks:
            self._tasks.remove(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background schedule task failed", exc_info=task.exception())
            self.show_feedback("Something went wrong; please try again.", "error")
            return
        self.refresh_view()

    async def start(self) -> None:
        await self.sync.load_catalog()
        self.channel_combo.blockSignals(True)
        for channel in self.sync.channels:
            self.channel_combo.addItem(channel.name, channel.id)
        self.channel_combo.blockSignals(False)
        await self.sync.load_directory()
        await self.sync.load_week(*week_bounds(self.week_start))
        self.refresh_view()

    # view state
    def show_feedback(self, message: str, severity: str = "info") -> None:
        color = SEVERITY_COLORS.get(severity, SEVERITY_COLORS["info"])
        self.feedback_label.setStyleSheet(f"color:{color};")
        self.feedback_label.setText(message)

    def refresh_view(self) -> None:
        end = self.week_start + datetime.timedelta(days=6)
        suffix = " (locked)" if self.sync.is_week_locked else ""
        self.week_label.setText(f"Week of {self.week_start:%b %d} - {end:%b %d}{suffix}")
        self.controller.edit_buttons_visible = self.sync.user.is_leader or not self.sync.is_week_locked
        self.lock_button.setText("Unlock week" if self.sync.is_week_locked else "Lock week")
        self.sync_button.setEnabled(not self.sync.any_day_locked)
        self.create_week_button.setEnabled(not self.sync.any_day_locked)
        self.canvas.update()

    def day_for_column(self, column: int) -> Optional[datetime.date]:
        if not 0 <= column < len(DAY_NAMES):
            return None
        return self.week_start + datetime.timedelta(days=column)

    def visible_snapshots(self, column: int) -> Tuple[Snapshot, ...]:
        day = self.day_for_column(column)
        if day is None:
            return ()
        return self.sync.snapshots_on(day, self.current_role)

    def navigate_week(self, days: int) -> None:
        if self.controller.is_dragging:
            return
        self.week_start = self.week_start + datetime.timedelta(days=days)
        self.spawn(self.sync.load_week(*week_bounds(self.week_start)))

    def open_shift(self, snapshot: Snapshot) -> None:
        dialog = ShiftDialog(
            snapshot=snapshot,
            sync=self.sync,
            workflow=self.workflow,
            controller=self.controller,
            run=self.spawn,
            parent=self,
        )
        dialog.open()

    def _handle_channel_change(self) -> None:
        channel_id = self.channel_combo.currentData()
        if channel_id is None:
            return
        self.spawn(self.sync.load_week(*week_bounds(self.week_start), channel_id=channel_id))

    def _handle_role_change(self) -> None:
        self.current_role = self.role_combo.currentData() or SHIFT_ROLES[0]
        self.canvas.update()

    def _handle_lock(self) -> None:
        self.spawn(self.sync.lock_week(not self.sync.is_week_locked))

    def _zoom_step(self, direction: int) -> None:
        self.controller.zoom.wheel(direction, self.controller.zoom.viewport_height_px / 2)
        self.canvas.update()

