"""Transports between the schedule view and the server of record.

Both backends expose the same coroutine methods and return the plain dict
payloads produced by ``database``. ``LocalBackend`` runs the operations
in-process against a session factory (the desktop app's default);
``HttpBackend`` talks to ``api`` over HTTP.
"""

from __future__ import annotations

import asyncio
import datetime
import functools
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from . import database
from .entities import AltAssignee, alt_to_payload
from .errors import TransportFailure, error_for_status
from .timegrid import format_time_string

logger = logging.getLogger(__name__)

SERVER_UNREACHABLE = "The schedule server could not be reached."
DATABASE_UNAVAILABLE = "The schedule database is unavailable; try again."


def _iso(value: Any) -> Any:
    if isinstance(value, datetime.date):
        return value.isoformat()
    return value


def _hhmm(value: Any) -> Any:
    if isinstance(value, datetime.time):
        return format_time_string(value)
    return value


class LocalBackend:
    """Runs every call in its own session, acting as ``user_id``."""

    def __init__(self, session_factory: Callable[[], Any], user_id: int) -> None:
        self.session_factory = session_factory
        self.user_id = user_id

    def _call(self, operation: Callable[..., Any], args, kwargs, as_actor: bool) -> Any:
        try:
            with self.session_factory() as session:
                if as_actor:
                    actor = database.current_user_for(session, self.user_id)
                    return operation(session, actor, *args, **kwargs)
                return operation(session, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.warning("%s failed in the local database: %s", operation.__name__, exc)
            raise TransportFailure(DATABASE_UNAVAILABLE) from exc

    async def _run(self, operation: Callable[..., Any], *args: Any, as_actor: bool = True, **kwargs: Any) -> Any:
        # session work blocks, so it runs on the default executor
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._call, operation, args, kwargs, as_actor))

    async def current_user(self) -> Dict[str, Any]:
        actor = await self._run(database.current_user_for, self.user_id, as_actor=False)
        return {"id": actor.id, "name": actor.name, "roles": list(actor.roles)}

    async def fetch_livestreams(self, start_date, end_date, channel_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self._run(database.get_livestreams_by_range, start_date, end_date, channel_id, as_actor=False)

    async def create_range(self, start_date, end_date, channel_id: int, period_ids: Optional[Iterable[int]] = None):
        return await self._run(database.create_range, start_date, end_date, channel_id, period_ids=period_ids)

    async def sync_range(self, start_date, end_date, channel_id: int) -> Dict[str, int]:
        return await self._run(database.sync_range, start_date, end_date, channel_id)

    async def fix_range(self, start_date, end_date, channel_id: int, fixed: bool = True) -> Dict[str, int]:
        return await self._run(database.fix_range, start_date, end_date, channel_id, fixed=fixed)

    async def assign(self, user_id: int, role: str, *, snapshot_id=None, period_id=None, date=None) -> Dict[str, Any]:
        return await self._run(
            database.assign_snapshot, user_id, role, snapshot_id=snapshot_id, period_id=period_id, date=date
        )

    async def unassign(self, snapshot_id: int) -> Dict[str, Any]:
        return await self._run(database.unassign_snapshot, snapshot_id)

    async def add_snapshot(self, channel_id: int, date, start_time, end_time, role: str, assignee_id=None):
        return await self._run(
            database.add_snapshot,
            channel_id=channel_id,
            date=date,
            start_time=start_time,
            end_time=end_time,
            role=role,
            assignee_id=assignee_id,
        )

    async def delete_snapshot(self, snapshot_id: int) -> Dict[str, Any]:
        await self._run(database.delete_snapshot, snapshot_id)
        return {"deleted": snapshot_id}

    async def update_time(self, snapshot_id: int, start_time, end_time) -> Dict[str, Any]:
        return await self._run(database.update_snapshot_time, snapshot_id, start_time, end_time)

    async def update_alt(self, snapshot_id: int, alt: Optional[AltAssignee], alt_note: Optional[str] = None):
        return await self._run(database.update_snapshot_alt, snapshot_id, alt, alt_note)

    async def report(self, snapshot_id: int, report: Dict[str, Any]) -> Dict[str, Any]:
        return await self._run(database.report_snapshot, snapshot_id, report)

    async def set_metrics(self, livestream_id: int, total_orders=None, ads=None) -> Dict[str, Any]:
        return await self._run(database.set_metrics, livestream_id, total_orders=total_orders, ads=ads)

    async def create_alt_request(self, snapshot_id: int, note: str) -> Dict[str, Any]:
        return await self._run(database.create_alt_request, snapshot_id, note)

    async def get_alt_request(self, snapshot_id: int) -> Optional[Dict[str, Any]]:
        return await self._run(database.get_alt_request_by_snapshot, snapshot_id, as_actor=False)

    async def update_alt_request_status(self, request_id: int, status: str, alt_assignee_id=None):
        return await self._run(database.update_alt_request_status, request_id, status, alt_assignee_id=alt_assignee_id)

    async def update_alt_request_note(self, request_id: int, note: str) -> Dict[str, Any]:
        return await self._run(database.update_alt_request_note, request_id, note)

    async def delete_alt_request(self, request_id: int) -> Dict[str, Any]:
        await self._run(database.delete_alt_request, request_id)
        return {"deleted": request_id}

    async def search_alt_requests(self, **filters: Any) -> Dict[str, Any]:
        return await self._run(database.search_alt_requests, **filters)

    async def search_employees(self, text=None, role=None, page: int = 1, limit: int = 50):
        return await self._run(database.search_employees, text=text, role=role, page=page, limit=limit, as_actor=False)

    async def list_channels(self) -> List[Dict[str, Any]]:
        return await self._run(database.list_channels, as_actor=False)

    async def list_periods(self, channel_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self._run(database.list_periods, channel_id=channel_id, as_actor=False)

    async def aclose(self) -> None:
        return None


class HttpBackend:
    """Same calls as ``LocalBackend``, over the REST endpoints in ``api``."""

    def __init__(
        self,
        base_url: str,
        user_id: int,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.user_id = user_id
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.client.headers["X-User-Id"] = str(user_id)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise TransportFailure(SERVER_UNREACHABLE) from exc
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = None
            detail = body.get("detail") if isinstance(body, dict) else None
            raise error_for_status(response.status_code, str(detail or response.reason_phrase))
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("%s %s returned a non-JSON body", method, path)
            raise TransportFailure("The schedule server sent an unreadable response.") from exc

    async def current_user(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/v1/me")

    async def fetch_livestreams(self, start_date, end_date, channel_id: Optional[int] = None):
        params = {"start_date": _iso(start_date), "end_date": _iso(end_date)}
        if channel_id:
            params["channel_id"] = channel_id
        return await self._request("GET", "/api/v1/livestreams/by-date-range", params=params)

    async def create_range(self, start_date, end_date, channel_id: int, period_ids: Optional[Iterable[int]] = None):
        payload = {"start_date": _iso(start_date), "end_date": _iso(end_date), "channel_id": channel_id}
        if period_ids is not None:
            payload["period_ids"] = list(period_ids)
        return await self._request("POST", "/api/v1/livestreams/range", json=payload)

    async def sync_range(self, start_date, end_date, channel_id: int):
        payload = {"start_date": _iso(start_date), "end_date": _iso(end_date), "channel_id": channel_id}
        return await self._request("POST", "/api/v1/livestreams/sync-snapshots", json=payload)

    async def fix_range(self, start_date, end_date, channel_id: int, fixed: bool = True):
        payload = {
            "start_date": _iso(start_date),
            "end_date": _iso(end_date),
            "channel_id": channel_id,
            "fixed": fixed,
        }
        return await self._request("POST", "/api/v1/livestreams/fix-by-date", json=payload)

    async def assign(self, user_id: int, role: str, *, snapshot_id=None, period_id=None, date=None):
        payload = {
            "user_id": user_id,
            "role": role,
            "snapshot_id": snapshot_id,
            "period_id": period_id,
            "date": _iso(date),
        }
        return await self._request("POST", "/api/v1/livestreams/snapshots/assign", json=payload)

    async def unassign(self, snapshot_id: int):
        return await self._request("POST", f"/api/v1/livestreams/snapshots/{snapshot_id}/unassign")

    async def add_snapshot(self, channel_id: int, date, start_time, end_time, role: str, assignee_id=None):
        payload = {
            "channel_id": channel_id,
            "date": _iso(date),
            "start_time": _hhmm(start_time),
            "end_time": _hhmm(end_time),
            "role": role,
            "assignee_id": assignee_id,
        }
        return await self._request("POST", "/api/v1/livestreams/snapshots", json=payload)

    async def delete_snapshot(self, snapshot_id: int):
        return await self._request("DELETE", f"/api/v1/livestreams/snapshots/{snapshot_id}")

    async def update_time(self, snapshot_id: int, start_time, end_time):
        payload = {"start_time": _hhmm(start_time), "end_time": _hhmm(end_time)}
        return await self._request("PUT", f"/api/v1/livestreams/snapshots/{snapshot_id}/time", json=payload)

    async def update_alt(self, snapshot_id: int, alt: Optional[AltAssignee], alt_note: Optional[str] = None):
        payload = {"alt_assignee": alt_to_payload(alt), "alt_note": alt_note}
        return await self._request("PUT", f"/api/v1/livestreams/snapshots/{snapshot_id}/alt", json=payload)

    async def report(self, snapshot_id: int, report: Dict[str, Any]):
        return await self._request("POST", f"/api/v1/livestreams/snapshots/{snapshot_id}/report", json=report)

    async def set_metrics(self, livestream_id: int, total_orders=None, ads=None):
        payload = {"total_orders": total_orders, "ads": ads}
        return await self._request("PUT", f"/api/v1/livestreams/{livestream_id}/metrics", json=payload)

    async def create_alt_request(self, snapshot_id: int, note: str):
        payload = {"snapshot_id": snapshot_id, "alt_note": note}
        return await self._request("POST", "/api/v1/alt-requests", json=payload)

    async def get_alt_request(self, snapshot_id: int):
        return await self._request("GET", f"/api/v1/alt-requests/by-snapshot/{snapshot_id}")

    async def update_alt_request_status(self, request_id: int, status: str, alt_assignee_id=None):
        payload = {"status": status, "alt_assignee_id": alt_assignee_id}
        return await self._request("PUT", f"/api/v1/alt-requests/{request_id}/status", json=payload)

    async def update_alt_request_note(self, request_id: int, note: str):
        return await self._request("PUT", f"/api/v1/alt-requests/{request_id}/note", json={"alt_note": note})

    async def delete_alt_request(self, request_id: int):
        return await self._request("DELETE", f"/api/v1/alt-requests/{request_id}")

    async def search_alt_requests(self, **filters: Any):
        params = {key: value for key, value in filters.items() if value is not None}
        return await self._request("GET", "/api/v1/alt-requests", params=params)

    async def search_employees(self, text=None, role=None, page: int = 1, limit: int = 50):
        params = {"page": page, "limit": limit}
        if text:
            params["text"] = text
        if role:
            params["role"] = role
        return await self._request("GET", "/api/v1/employees", params=params)

    async def list_channels(self):
        return await self._request("GET", "/api/v1/channels")

    async def list_periods(self, channel_id: Optional[int] = None):
        params = {"channel_id": channel_id} if channel_id else {}
        return await self._request("GET", "/api/v1/periods", params=params)

    async def aclose(self) -> None:
        await self.client.aclose()
