from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from PySide6.QtCore import Qt
from PySide6.QtWidgets import (
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QDoubleSpinBox,
    QFormLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QMessageBox,
    QPlainTextEdit,
    QPushButton,
    QSpinBox,
    QVBoxLayout,
)

from ..entities import (
    AltRequest,
    Employee,
    EmployeeAlt,
    ExternalAlt,
    Snapshot,
    alt_candidates,
    display_name,
)
from ..roles import can_cover, role_label
from ..timegrid import format_time_string

EXTERNAL_CHOICE = "external"


def _employee_combo(employees: List[Employee], placeholder: str) -> QComboBox:
    combo = QComboBox()
    combo.setEditable(True)
    combo.setInsertPolicy(QComboBox.NoInsert)
    combo.addItem(placeholder, None)
    for employee in employees:
        combo.addItem(employee.name, employee.id)
    if combo.completer():
        combo.completer().setCaseSensitivity(Qt.CaseInsensitive)
    return combo


class ShiftDialog(QDialog):
    """Actions available on one shift, gated by role and week lock."""

    def __init__(self, *, snapshot: Snapshot, sync, workflow, controller, run: Callable, parent=None) -> None:
        super().__init__(parent)
        self.setModal(True)
        self.snapshot = snapshot
        self.sync = sync
        self.workflow = workflow
        self.controller = controller
        self.run = run
        self.setWindowTitle(f"{role_label(snapshot.role)} shift")
        self._build_ui()
        self._refresh_buttons()
        task = self.run(self.workflow.load_request(snapshot.id))
        task.add_done_callback(lambda _: self._refresh_buttons())

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        snapshot = self.snapshot
        form = QFormLayout()
        form.addRow("Time", QLabel(snapshot.period.label))
        form.addRow("Assignee", QLabel(snapshot.assignee.name if snapshot.assignee else "Unassigned"))
        form.addRow("Covering", QLabel(display_name(snapshot, self.sync.employees)))
        if snapshot.alt_note:
            form.addRow("Reason", QLabel(snapshot.alt_note))
        self.request_label = QLabel("")
        form.addRow("Request", self.request_label)
        layout.addLayout(form)

        self.assign_combo = _employee_combo(
            [item for item in self.sync.employees.values() if can_cover(item.roles, snapshot.role)],
            "Choose a person",
        )
        self.assign_button = QPushButton("Assign")
        self.assign_button.clicked.connect(self._handle_assign)
        assign_row = QHBoxLayout()
        assign_row.addWidget(self.assign_combo)
        assign_row.addWidget(self.assign_button)
        layout.addLayout(assign_row)

        self.take_button = QPushButton("Take this shift")
        self.take_button.clicked.connect(self._handle_take)
        self.unassign_button = QPushButton("Unassign")
        self.unassign_button.clicked.connect(self._handle_unassign)
        self.time_button = QPushButton("Edit time")
        self.time_button.clicked.connect(self._handle_edit_time)
        self.delete_button = QPushButton("Delete")
        self.delete_button.clicked.connect(self._handle_delete)
        self.request_button = QPushButton("Request replacement")
        self.request_button.clicked.connect(self._handle_request)
        self.view_request_button = QPushButton("View request")
        self.view_request_button.clicked.connect(self._handle_view_request)
        self.alt_button = QPushButton("Set replacement")
        self.alt_button.clicked.connect(self._handle_direct_alt)
        self.report_button = QPushButton("Report")
        self.report_button.clicked.connect(self._handle_report)

        for row in (
            (self.take_button, self.unassign_button, self.time_button, self.delete_button),
            (self.request_button, self.view_request_button, self.alt_button, self.report_button),
        ):
            line = QHBoxLayout()
            for button in row:
                line.addWidget(button)
            line.addStretch()
            layout.addLayout(line)

        close_box = QDialogButtonBox(QDialogButtonBox.Close)
        close_box.rejected.connect(self.reject)
        layout.addWidget(close_box)

    def _refresh_buttons(self) -> None:
        snapshot = self.snapshot
        user = self.sync.user
        locked = self.sync.is_locked(snapshot)
        editable = self.sync.can_edit(snapshot)
        self.assign_combo.setVisible(user.is_leader and not locked)
        self.assign_button.setVisible(user.is_leader and not locked)
        self.take_button.setVisible(
            not locked and snapshot.assignee is None and can_cover(user.roles, snapshot.role)
        )
        self.unassign_button.setVisible(editable and snapshot.assignee is not None)
        self.time_button.setVisible(editable)
        self.delete_button.setVisible(user.is_leader and not locked)
        self.request_button.setVisible(self.workflow.can_create_request(snapshot))
        self.view_request_button.setVisible(self.workflow.can_view_request(snapshot))
        self.alt_button.setVisible(self.workflow.can_set_alt_directly(snapshot))
        self.report_button.setVisible(self.sync.can_report(snapshot))
        request = self.workflow.request_for(snapshot.id)
        self.request_label.setText(request.status.capitalize() if request else "None")

    def _finish(self, coro) -> None:
        self.run(coro)
        self.accept()

    def _handle_assign(self) -> None:
        employee_id = self.assign_combo.currentData()
        if employee_id is None:
            return
        self._finish(self.sync.assign(self.snapshot.id, self.snapshot.period.id, employee_id, self.snapshot.role))

    def _handle_take(self) -> None:
        self._finish(
            self.sync.assign(self.snapshot.id, self.snapshot.period.id, self.sync.user.id, self.snapshot.role)
        )

    def _handle_unassign(self) -> None:
        self._finish(self.sync.unassign(self.snapshot.id))

    def _handle_edit_time(self) -> None:
        dialog = EditTimeDialog(snapshot=self.snapshot, controller=self.controller, run=self.run, parent=self.parent())
        self.accept()
        dialog.open()

    def _handle_delete(self) -> None:
        confirm = QMessageBox.question(self, "Delete shift", "Remove this shift? This cannot be undone.")
        if confirm != QMessageBox.Yes:
            return
        self._finish(self.sync.delete_shift(self.snapshot.id))

    def _handle_request(self) -> None:
        dialog = AltRequestDialog(snapshot=self.snapshot, workflow=self.workflow, run=self.run, parent=self.parent())
        self.accept()
        dialog.open()

    def _handle_view_request(self) -> None:
        request = self.workflow.request_for(self.snapshot.id)
        if request is None:
            return
        dialog = AltRequestDialog(
            snapshot=self.snapshot,
            workflow=self.workflow,
            run=self.run,
            request=request,
            parent=self.parent(),
        )
        self.accept()
        dialog.open()

    def _handle_direct_alt(self) -> None:
        dialog = DirectAltDialog(snapshot=self.snapshot, workflow=self.workflow, run=self.run, parent=self.parent())
        self.accept()
        dialog.open()

    def _handle_report(self) -> None:
        dialog = ReportDialog(snapshot=self.snapshot, sync=self.sync, run=self.run, parent=self.parent())
        self.accept()
        dialog.open()


class AltRequestDialog(QDialog):
    """Create a replacement request, or review an existing one."""

    def __init__(
        self,
        *,
        snapshot: Snapshot,
        workflow,
        run: Callable,
        request: Optional[AltRequest] = None,
        parent=None,
    ) -> None:
        super().__init__(parent)
        self.setModal(True)
        self.snapshot = snapshot
        self.workflow = workflow
        self.run = run
        self.request = request
        self.setWindowTitle("Replacement request" if request else "Request a replacement")
        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        self.feedback_label = QLabel()
        self.feedback_label.setStyleSheet("color:#ff7a7a;")
        form = QFormLayout()
        user = self.workflow.user
        request = self.request
        is_author = bool(request and request.created_by and request.created_by.id == user.id)

        self.note_input = QPlainTextEdit()
        self.note_input.setPlaceholderText("Why do you need a replacement?")
        if request:
            self.note_input.setPlainText(request.alt_note)
            self.note_input.setReadOnly(not (is_author and request.is_pending))
            form.addRow("Requested by", QLabel(request.created_by.name if request.created_by else "-"))
            form.addRow("Status", QLabel(request.status.capitalize()))
            if request.alt_assignee:
                form.addRow("Replacement", QLabel(request.alt_assignee.name))
        form.addRow("Reason", self.note_input)

        self.alt_combo: Optional[QComboBox] = None
        if request and request.is_pending and user.is_leader:
            exclude = self.snapshot.assignee.id if self.snapshot.assignee else None
            candidates = alt_candidates(self.workflow.sync.employees.values(), exclude)
            self.alt_combo = _employee_combo(candidates, "Choose a replacement")
            form.addRow("Replacement", self.alt_combo)

        layout.addLayout(form)
        layout.addWidget(self.feedback_label)

        actions = QHBoxLayout()
        if request is None:
            submit = QPushButton("Send request")
            submit.clicked.connect(self._handle_create)
            actions.addWidget(submit)
        else:
            if self.alt_combo is not None:
                accept_button = QPushButton("Accept")
                accept_button.clicked.connect(self._handle_accept)
                actions.addWidget(accept_button)
                reject_button = QPushButton("Reject")
                reject_button.clicked.connect(self._handle_reject)
                actions.addWidget(reject_button)
            if is_author and request.is_pending:
                save_note = QPushButton("Save reason")
                save_note.clicked.connect(self._handle_note)
                actions.addWidget(save_note)
            if user.is_leader or (is_author and request.is_pending):
                delete_button = QPushButton("Delete request")
                delete_button.clicked.connect(self._handle_delete)
                actions.addWidget(delete_button)
        close_box = QDialogButtonBox(QDialogButtonBox.Close)
        close_box.rejected.connect(self.reject)
        actions.addStretch()
        actions.addWidget(close_box)
        layout.addLayout(actions)

    def _note(self) -> Optional[str]:
        note = self.note_input.toPlainText().strip()
        if not note:
            self.feedback_label.setText("Please give a reason for the request.")
            return None
        return note

    def _handle_create(self) -> None:
        note = self._note()
        if note is None:
            return
        self.run(self.workflow.create_request(self.snapshot.id, note))
        self.accept()

    def _handle_accept(self) -> None:
        alt_id = self.alt_combo.currentData() if self.alt_combo else None
        if alt_id is None:
            self.feedback_label.setText("Choose a replacement before accepting.")
            return
        self.run(self.workflow.accept(self.request.id, alt_id))
        self.accept()

    def _handle_reject(self) -> None:
        self.run(self.workflow.reject(self.request.id))
        self.accept()

    def _handle_note(self) -> None:
        note = self._note()
        if note is None:
            return
        self.run(self.workflow.update_note(self.request.id, note))
        self.accept()

    def _handle_delete(self) -> None:
        confirm = QMessageBox.question(self, "Delete request", "Delete this replacement request?")
        if confirm != QMessageBox.Yes:
            return
        self.run(self.workflow.delete_request(self.request.id))
        self.accept()


class DirectAltDialog(QDialog):
    """Leader override of a locked shift's replacement."""

    def __init__(self, *, snapshot: Snapshot, workflow, run: Callable, parent=None) -> None:
        super().__init__(parent)
        self.setModal(True)
        self.snapshot = snapshot
        self.workflow = workflow
        self.run = run
        self.setWindowTitle("Set replacement")
        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        self.feedback_label = QLabel()
        self.feedback_label.setStyleSheet("color:#ff7a7a;")
        form = QFormLayout()
        exclude = self.snapshot.assignee.id if self.snapshot.assignee else None
        candidates = alt_candidates(self.workflow.sync.employees.values(), exclude)
        self.alt_combo = _employee_combo(candidates, "No replacement")
        self.alt_combo.addItem("Someone else (external)", EXTERNAL_CHOICE)
        self.alt_combo.currentIndexChanged.connect(self._sync_external)
        form.addRow("Replacement", self.alt_combo)
        self.external_input = QLineEdit()
        self.external_input.setPlaceholderText("Name of the external replacement")
        form.addRow("Name", self.external_input)
        self.note_input = QLineEdit(self.snapshot.alt_note or "")
        form.addRow("Reason", self.note_input)
        layout.addLayout(form)
        layout.addWidget(self.feedback_label)

        alt = self.snapshot.alt
        if isinstance(alt, EmployeeAlt):
            index = self.alt_combo.findData(alt.employee_id)
            if index >= 0:
                self.alt_combo.setCurrentIndex(index)
        elif isinstance(alt, ExternalAlt):
            self.alt_combo.setCurrentIndex(self.alt_combo.findData(EXTERNAL_CHOICE))
            self.external_input.setText(alt.name)
        self._sync_external()

        button_box = QDialogButtonBox(QDialogButtonBox.Save | QDialogButtonBox.Cancel)
        button_box.accepted.connect(self._handle_save)
        button_box.rejected.connect(self.reject)
        clear_button = QPushButton("Clear replacement")
        clear_button.setVisible(alt is not None)
        clear_button.clicked.connect(self._handle_clear)
        row = QHBoxLayout()
        row.addWidget(button_box)
        row.addWidget(clear_button)
        row.addStretch()
        layout.addLayout(row)

    def _sync_external(self) -> None:
        self.external_input.setEnabled(self.alt_combo.currentData() == EXTERNAL_CHOICE)

    def _handle_save(self) -> None:
        choice = self.alt_combo.currentData()
        note = self.note_input.text().strip() or None
        if choice is None:
            alt = None
        elif choice == EXTERNAL_CHOICE:
            name = self.external_input.text().strip()
            if not name:
                self.feedback_label.setText("Enter the name of the external replacement.")
                return
            alt = ExternalAlt(name)
        else:
            alt = EmployeeAlt(int(choice))
        self.run(self.workflow.set_alt(self.snapshot.id, alt, note))
        self.accept()

    def _handle_clear(self) -> None:
        self.run(self.workflow.clear_alt(self.snapshot.id))
        self.accept()


class EditTimeDialog(QDialog):
    """Typed start/end; goes through the same commit path as a drag."""

    def __init__(self, *, snapshot: Snapshot, controller, run: Callable, parent=None) -> None:
        super().__init__(parent)
        self.setModal(True)
        self.snapshot = snapshot
        self.controller = controller
        self.run = run
        self.setWindowTitle("Edit shift time")
        layout = QVBoxLayout(self)
        form = QFormLayout()
        self.start_input = QLineEdit(format_time_string(snapshot.period.start_time))
        self.start_input.setPlaceholderText("HH:MM")
        self.end_input = QLineEdit(format_time_string(snapshot.period.end_time))
        self.end_input.setPlaceholderText("HH:MM")
        form.addRow("Start", self.start_input)
        form.addRow("End", self.end_input)
        layout.addLayout(form)
        button_box = QDialogButtonBox(QDialogButtonBox.Save | QDialogButtonBox.Cancel)
        button_box.accepted.connect(self._handle_save)
        button_box.rejected.connect(self.reject)
        layout.addWidget(button_box)

    def _handle_save(self) -> None:
        self.run(self.controller.edit_time(self.snapshot, self.start_input.text(), self.end_input.text()))
        self.accept()


class ReportDialog(QDialog):
    def __init__(self, *, snapshot: Snapshot, sync, run: Callable, parent=None) -> None:
        super().__init__(parent)
        self.setModal(True)
        self.snapshot = snapshot
        self.sync = sync
        self.run = run
        self.setWindowTitle("Shift report")
        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        report: Dict[str, Any] = self.snapshot.report
        form = QFormLayout()
        self.inputs: Dict[str, Any] = {}
        for name, label, decimals in (
            ("income", "Income", 2),
            ("real_income", "Real income", 2),
            ("ads_cost", "Ads cost", 2),
            ("click_rate", "Click rate (%)", 2),
            ("avg_viewing_duration", "Avg. viewing (s)", 1),
        ):
            spin = QDoubleSpinBox()
            spin.setDecimals(decimals)
            spin.setMaximum(1_000_000_000)
            spin.setValue(float(report.get(name) or 0))
            form.addRow(label, spin)
            self.inputs[name] = spin
        for name, label in (("comments", "Comments"), ("orders", "Orders")):
            spin = QSpinBox()
            spin.setMaximum(1_000_000)
            spin.setValue(int(report.get(name) or 0))
            form.addRow(label, spin)
            self.inputs[name] = spin
        self.orders_note = QLineEdit(report.get("orders_note") or "")
        form.addRow("Orders note", self.orders_note)
        layout.addLayout(form)
        button_box = QDialogButtonBox(QDialogButtonBox.Save | QDialogButtonBox.Cancel)
        button_box.accepted.connect(self._handle_save)
        button_box.rejected.connect(self.reject)
        layout.addWidget(button_box)

    def _handle_save(self) -> None:
        payload: Dict[str, Any] = {name: widget.value() for name, widget in self.inputs.items()}
        payload["orders_note"] = self.orders_note.text().strip()
        self.run(self.sync.report(self.snapshot.id, payload))
        self.accept()
