"""Replacement (alt-assignee) requests for locked weeks.

A request moves ``pending -> accepted | rejected`` and is never reopened; a new
cycle starts with a fresh request once the previous one is decided. Leaders may
also set or clear a replacement directly, which resolves any pending request.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .entities import AltAssignee, AltRequest, EmployeeAlt, Snapshot
from .errors import ScheduleError

logger = logging.getLogger(__name__)


class AltRequestWorkflow:
    def __init__(self, sync) -> None:
        self.sync = sync
        # snapshot id -> latest request (None once checked and none exists)
        self.requests: Dict[int, Optional[AltRequest]] = {}

    @property
    def user(self):
        return self.sync.user

    @property
    def backend(self):
        return self.sync.backend

    async def load_request(self, snapshot_id: int) -> Optional[AltRequest]:
        try:
            payload = await self.backend.get_alt_request(snapshot_id)
        except ScheduleError as exc:
            logger.warning("Loading the request for snapshot %s failed: %s", snapshot_id, exc.message)
            self.requests.pop(snapshot_id, None)
            self.sync.notify(exc.message, "error")
            return None
        request = AltRequest.from_payload(payload) if payload else None
        self.requests[snapshot_id] = request
        return request

    def request_for(self, snapshot_id: int) -> Optional[AltRequest]:
        return self.requests.get(snapshot_id)

    def _find(self, request_id: int) -> Optional[AltRequest]:
        return next(
            (request for request in self.requests.values() if request and request.id == request_id),
            None,
        )

    # -- visibility --------------------------------------------------------

    def can_create_request(self, snapshot: Snapshot) -> bool:
        """Offer "request replacement" only to the assignee of a locked, uncovered shift.

        The latest request must have been loaded and be decided (or absent), so a
        second pending request can never be emitted for the same shift.
        """
        if not self.sync.is_locked(snapshot):
            return False
        if snapshot.assignee is None or not self.user.owns(snapshot):
            return False
        if snapshot.alt is not None:
            return False
        if snapshot.id not in self.requests:
            return False
        if self.sync.is_pending(f"alt-request:{snapshot.id}"):
            return False
        current = self.requests[snapshot.id]
        return current is None or current.is_terminal

    def can_view_request(self, snapshot: Snapshot) -> bool:
        request = self.requests.get(snapshot.id)
        if request is None:
            return False
        creator = request.created_by.id if request.created_by else None
        return self.user.is_leader or creator == self.user.id

    def can_act_on_request(self, snapshot: Snapshot) -> bool:
        request = self.requests.get(snapshot.id)
        return bool(request and request.is_pending and self.user.is_leader)

    def can_set_alt_directly(self, snapshot: Snapshot) -> bool:
        return self.user.is_leader and self.sync.is_locked(snapshot)

    # -- transitions -------------------------------------------------------

    async def create_request(self, snapshot_id: int, note: str) -> Optional[AltRequest]:
        snapshot = self.sync.snapshot(snapshot_id)
        if snapshot is None or not self.can_create_request(snapshot):
            self.sync.refuse("A replacement cannot be requested for this shift.")
            return None
        text = (note or "").strip()
        if not text:
            self.sync.refuse("Please give a reason for the request.")
            return None
        payload = await self.sync.run_mutation(
            f"alt-request:{snapshot_id}",
            lambda: self.backend.create_alt_request(snapshot_id, text),
            "Replacement requested.",
        )
        if not payload:
            return None
        request = AltRequest.from_payload(payload)
        self.requests[snapshot_id] = request
        return request

    def _may_decide(self, request_id: int) -> bool:
        if not self.user.is_leader:
            return self.sync.refuse("Only admins and livestream leaders can decide requests.")
        request = self._find(request_id)
        if request is not None and not request.is_pending:
            return self.sync.refuse(f"This request was already {request.status}.")
        return True

    async def accept(self, request_id: int, alt_assignee_id: Optional[int]) -> Optional[AltRequest]:
        if not self._may_decide(request_id):
            return None
        if alt_assignee_id is None:
            self.sync.refuse("Choose a replacement before accepting.")
            return None
        request = self._find(request_id)
        snapshot = self.sync.snapshot(request.snapshot_id) if request else None
        if snapshot and snapshot.assignee and snapshot.assignee.id == alt_assignee_id:
            self.sync.refuse("The replacement must differ from the assignee.")
            return None
        payload = await self.sync.run_mutation(
            f"alt-request-status:{request_id}",
            lambda: self.backend.update_alt_request_status(request_id, "accepted", alt_assignee_id),
            "Request accepted.",
        )
        return self._store(payload)

    async def reject(self, request_id: int) -> Optional[AltRequest]:
        if not self._may_decide(request_id):
            return None
        payload = await self.sync.run_mutation(
            f"alt-request-status:{request_id}",
            lambda: self.backend.update_alt_request_status(request_id, "rejected", None),
            "Request rejected.",
        )
        return self._store(payload)

    async def update_note(self, request_id: int, note: str) -> Optional[AltRequest]:
        request = self._find(request_id)
        if request is not None:
            creator = request.created_by.id if request.created_by else None
            if creator != self.user.id or not request.is_pending:
                self.sync.refuse("Only a pending request's author can edit its reason.")
                return None
        text = (note or "").strip()
        if not text:
            self.sync.refuse("Please give a reason for the request.")
            return None
        payload = await self.sync.run_mutation(
            f"alt-request-note:{request_id}",
            lambda: self.backend.update_alt_request_note(request_id, text),
            "Request updated.",
        )
        return self._store(payload)

    async def delete_request(self, request_id: int) -> bool:
        request = self._find(request_id)
        payload = await self.sync.run_mutation(
            f"alt-request-delete:{request_id}",
            lambda: self.backend.delete_alt_request(request_id),
            "Request deleted.",
        )
        if payload is None:
            return False
        if request is not None:
            await self.load_request(request.snapshot_id)
        return True

    async def set_alt(
        self,
        snapshot_id: int,
        alt: Optional[AltAssignee],
        alt_note: Optional[str] = None,
    ) -> bool:
        """Leader override; a pending request on the shift is resolved server-side."""
        snapshot = self.sync.snapshot(snapshot_id)
        if snapshot is not None and not self.can_set_alt_directly(snapshot):
            return self.sync.refuse("Replacements can only be set by a leader once the week is locked.")
        if isinstance(alt, EmployeeAlt) and snapshot and snapshot.assignee and snapshot.assignee.id == alt.employee_id:
            return self.sync.refuse("The replacement must differ from the assignee.")
        ok = await self.sync.update_alt(snapshot_id, alt, alt_note)
        if ok and snapshot_id in self.requests:
            await self.load_request(snapshot_id)
        return ok

    async def clear_alt(self, snapshot_id: int) -> bool:
        return await self.set_alt(snapshot_id, None)

    async def search(self, **filters: Any) -> List[AltRequest]:
        try:
            payload = await self.backend.search_alt_requests(**filters)
        except ScheduleError as exc:
            logger.warning("Searching requests failed: %s", exc.message)
            self.sync.notify(exc.message, "error")
            return []
        return [AltRequest.from_payload(entry) for entry in payload.get("data", [])]

    def _store(self, payload: Optional[Dict[str, Any]]) -> Optional[AltRequest]:
        if not payload:
            return None
        request = AltRequest.from_payload(payload)
        self.requests[request.snapshot_id] = request
        return request
