from __future__ import annotations

import argparse
import datetime
import logging
import os
import sys
from typing import List, Optional

from PySide6 import QtAsyncio
from PySide6.QtWidgets import QApplication, QMainWindow

from .backends import HttpBackend, LocalBackend
from .database import SessionLocal, ensure_demo_data, init_database
from .errors import ScheduleError
from .roles import CurrentUser
from .sync import ScheduleSyncLayer
from .ui.week_timeline import WeekTimelinePage

logger = logging.getLogger(__name__)

THEME_STYLESHEET = """
QWidget {
    background-color: #090a0e;
    color: #f5f6fa;
    font-family: 'Segoe UI', sans-serif;
    font-size: 14px;
}

QLabel {
    color: #f5f6fa;
}

QDialog, QMenu, QToolTip {
    background-color: #111217;
    border: 1px solid #1c1d23;
    border-radius: 12px;
}

QPushButton {
    background-color: #f5b942;
    color: #0b0b0f;
    border-radius: 10px;
    padding: 6px 16px;
    font-weight: 600;
    border: none;
    min-height: 28px;
}

QPushButton:hover {
    background-color: #ffd36a;
}

QPushButton:pressed {
    background-color: #e0a027;
}

QPushButton:disabled {
    background-color: #262730;
    color: #7d7f8f;
}

QLineEdit,
QComboBox,
QSpinBox,
QDoubleSpinBox,
QPlainTextEdit {
    background-color: #15161c;
    border: 1px solid #25262d;
    border-radius: 10px;
    padding: 6px 12px;
    color: #f5f6fa;
    selection-background-color: #f5b942;
    selection-color: #0b0b0f;
}

QLineEdit:focus,
QComboBox:focus,
QSpinBox:focus,
QDoubleSpinBox:focus,
QPlainTextEdit:focus {
    border: 1px solid #f5b942;
}

QComboBox QAbstractItemView {
    background-color: #0e0f13;
    border: 1px solid #25262d;
    selection-background-color: #f5b942;
    selection-color: #0b0b0f;
    color: #f5f6fa;
}
"""


class MainWindow(QMainWindow):
    def __init__(self, page: WeekTimelinePage, user: CurrentUser) -> None:
        super().__init__()
        self.page = page
        self.setWindowTitle(f"Streamdesk - {user.name or user.id}")
        self.setCentralWidget(page)
        self.resize(1280, 860)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="streamdesk", description="Livestream shift timeline")
    parser.add_argument(
        "--user",
        type=int,
        default=os.environ.get("STREAMDESK_USER_ID"),
        help="Employee id to act as (defaults to $STREAMDESK_USER_ID).",
    )
    parser.add_argument(
        "--api-url",
        default=os.environ.get("STREAMDESK_API_URL"),
        help="Talk to a running streamdesk API instead of the local database.",
    )
    parser.add_argument("--week", type=datetime.date.fromisoformat, default=None, help="Any date in the week to open.")
    parser.add_argument("--demo", action="store_true", help="Seed a demo channel and crew when the database is empty.")
    parser.add_argument("--verbose", action="store_true")
    return parser


async def _resolve_user(backend) -> Optional[CurrentUser]:
    try:
        return CurrentUser.from_payload(await backend.current_user())
    except ScheduleError as exc:
        logger.error("Could not resolve the current user: %s", exc.message)
        return None


def launch_app(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    if args.user is None:
        print("streamdesk: --user (or STREAMDESK_USER_ID) is required", file=sys.stderr)
        return 2

    if args.api_url:
        backend = HttpBackend(args.api_url, args.user)
    else:
        init_database()
        if args.demo:
            ensure_demo_data(SessionLocal)
        backend = LocalBackend(SessionLocal, args.user)

    app = QApplication(sys.argv[:1])
    app.setStyleSheet(THEME_STYLESHEET)
    windows: List[MainWindow] = []

    async def bootstrap() -> None:
        user = await _resolve_user(backend)
        if user is None:
            app.quit()
            return
        page = WeekTimelinePage(ScheduleSyncLayer(backend, user), start_date=args.week)
        window = MainWindow(page, user)
        windows.append(window)
        window.show()
        await page.start()

    QtAsyncio.run(bootstrap(), keep_running=True, quit_qapp=True, handle_sigint=True)
    return 0 if windows else 1


def main() -> None:
    sys.exit(launch_app())


if __name__ == "__main__":
    main()
