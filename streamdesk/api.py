"""FastAPI surface over the schedule database.

This is the server of record the desktop timeline talks to when it is pointed
at a remote instance. Every endpoint resolves the caller from the
``X-User-Id`` header and delegates to the session-level operations in
``database``; domain errors become ``{"detail": ...}`` responses.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from . import database
from .database import SessionLocal, current_user_for, init_database
from .entities import alt_from_payload
from .errors import ScheduleError, ValidationFailed
from .roles import CurrentUser


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    yield


app = FastAPI(title="Streamdesk Schedule API", version="0.1", lifespan=lifespan)


@app.exception_handler(ScheduleError)
async def schedule_error_handler(_: Request, exc: ScheduleError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(x_user_id: Optional[str] = Header(None), db=Depends(get_db)) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return current_user_for(db, x_user_id)


def _required(payload: Dict[str, Any], *keys: str) -> None:
    missing = [key for key in keys if payload.get(key) in (None, "")]
    if missing:
        raise HTTPException(status_code=400, detail=f"{', '.join(missing)} required")


def _optional_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationFailed(f"'{value}' is not a valid id.") from exc


def _respond(content: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/me")
def me(actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    return _respond({"id": actor.id, "name": actor.name, "roles": list(actor.roles)})


@app.get("/api/v1/employees")
def employees(
    text: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    page: int = Query(1),
    limit: int = Query(50),
    db=Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
) -> JSONResponse:
    return _respond(database.search_employees(db, text=text, role=role, page=page, limit=limit))


@app.get("/api/v1/channels")
def channels(db=Depends(get_db), actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    return _respond(database.list_channels(db))


@app.get("/api/v1/periods")
def periods(
    channel_id: Optional[int] = Query(None),
    db=Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
) -> JSONResponse:
    return _respond(database.list_periods(db, channel_id=channel_id))


@app.get("/api/v1/livestreams/by-date-range")
def livestreams_by_range(
    start_date: str = Query(...),
    end_date: str = Query(...),
    channel_id: Optional[int] = Query(None),
    db=Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
) -> JSONResponse:
    return _respond(database.get_livestreams_by_range(db, start_date, end_date, channel_id))


@app.post("/api/v1/livestreams/range")
def create_range(payload: Dict[str, Any], db=Depends(get_db), actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    _required(payload, "start_date", "end_date", "channel_id")
    period_ids = payload.get("period_ids")
    result = database.create_range(
        db,
        actor,
        payload["start_date"],
        payload["end_date"],
        int(payload["channel_id"]),
        period_ids=[int(item) for item in period_ids] if period_ids is not None else None,
    )
    return _respond(result, status_code=201)


@app.post("/api/v1/livestreams/sync-snapshots")
def sync_snapshots(payload: Dict[str, Any], db=Depends(get_db), actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    _required(payload, "start_date", "end_date", "channel_id")
    result = database.sync_range(db, actor, payload["start_date"], payload["end_date"], int(payload["channel_id"]))
    return _respond(result)


@app.post("/api/v1/livestreams/fix-by-date")
def fix_by_date(payload: Dict[str, Any], db=Depends(get_db), actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    _required(payload, "start_date", "end_date", "channel_id")
    result = database.fix_range(
        db,
        actor,
        payload["start_date"],
        payload["end_date"],
        int(payload["channel_id"]),
        fixed=bool(payload.get("fixed", True)),
    )
    return _respond(result)


@app.put("/api/v1/livestreams/{livestream_id}/metrics")
def set_metrics(
    livestream_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
) -> JSONResponse:
    result = database.set_metrics(
        db,
        actor,
        livestream_id,
        total_orders=payload.get("total_orders"),
        ads=payload.get("ads"),
    )
    return _respond(result)


@app.post("/api/v1/livestreams/snapshots/assign")
def assign_snapshot(payload: Dict[str, Any], db=Depends(get_db), actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    _required(payload, "user_id", "role")
    result = database.assign_snapshot(
        db,
        actor,
        int(payload["user_id"]),
        payload["role"],
        snapshot_id=_optional_int(payload.get("snapshot_id")),
        period_id=_optional_int(payload.get("period_id")),
        date=payload.get("date"),
    )
    return _respond(result)


@app.post("/api/v1/livestreams/snapshots/{snapshot_id}/unassign")
def unassign_snapshot(snapshot_id: int, db=Depends(get_db), actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    return _respond(database.unassign_snapshot(db, actor, snapshot_id))


@app.post("/api/v1/livestreams/snapshots")
def add_snapshot(payload: Dict[str, Any], db=Depends(get_db), actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    _required(payload, "channel_id", "date", "start_time", "end_time", "role")
    result = database.add_snapshot(
        db,
        actor,
        channel_id=int(payload["channel_id"]),
        date=payload["date"],
        start_time=payload["start_time"],
        end_time=payload["end_time"],
        role=payload["role"],
        assignee_id=_optional_int(payload.get("assignee_id")),
        goal=payload.get("goal") or 0.0,
    )
    return _respond(result, status_code=201)


@app.put("/api/v1/livestreams/snapshots/{snapshot_id}/time")
def update_snapshot_time(
    snapshot_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
) -> JSONResponse:
    _required(payload, "start_time", "end_time")
    result = database.update_snapshot_time(db, actor, snapshot_id, payload["start_time"], payload["end_time"])
    return _respond(result)


@app.delete("/api/v1/livestreams/snapshots/{snapshot_id}")
def delete_snapshot(snapshot_id: int, db=Depends(get_db), actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    database.delete_snapshot(db, actor, snapshot_id)
    return _respond({"deleted": snapshot_id})


@app.put("/api/v1/livestreams/snapshots/{snapshot_id}/alt")
def update_snapshot_alt(
    snapshot_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
) -> JSONResponse:
    try:
        alt = alt_from_payload(payload.get("alt_assignee"), payload.get("alt_other_assignee"))
    except (TypeError, ValueError) as exc:
        raise ValidationFailed(f"Invalid replacement: {exc}") from exc
    result = database.update_snapshot_alt(db, actor, snapshot_id, alt, payload.get("alt_note"))
    return _respond(result)


@app.post("/api/v1/livestreams/snapshots/{snapshot_id}/report")
def report_snapshot(
    snapshot_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
) -> JSONResponse:
    return _respond(database.report_snapshot(db, actor, snapshot_id, payload))


@app.post("/api/v1/alt-requests")
def create_alt_request(payload: Dict[str, Any], db=Depends(get_db), actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    _required(payload, "snapshot_id")
    result = database.create_alt_request(db, actor, int(payload["snapshot_id"]), payload.get("alt_note") or "")
    return _respond(result, status_code=201)


@app.get("/api/v1/alt-requests/by-snapshot/{snapshot_id}")
def alt_request_by_snapshot(snapshot_id: int, db=Depends(get_db), actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    return _respond(database.get_alt_request_by_snapshot(db, snapshot_id))


@app.get("/api/v1/alt-requests")
def search_alt_requests(
    status: Optional[str] = Query(None),
    requested_by: Optional[int] = Query(None),
    channel_id: Optional[int] = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    db=Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
) -> JSONResponse:
    result = database.search_alt_requests(
        db,
        actor,
        status=status,
        requested_by=requested_by,
        channel_id=channel_id,
        page=page,
        limit=limit,
    )
    return _respond(result)


@app.put("/api/v1/alt-requests/{request_id}/status")
def update_alt_request_status(
    request_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
) -> JSONResponse:
    _required(payload, "status")
    result = database.update_alt_request_status(
        db,
        actor,
        request_id,
        payload["status"],
        alt_assignee_id=_optional_int(payload.get("alt_assignee_id")),
    )
    return _respond(result)


@app.put("/api/v1/alt-requests/{request_id}/note")
def update_alt_request_note(
    request_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    actor: CurrentUser = Depends(get_actor),
) -> JSONResponse:
    return _respond(database.update_alt_request_note(db, actor, request_id, payload.get("alt_note") or ""))


@app.delete("/api/v1/alt-requests/{request_id}")
def delete_alt_request(request_id: int, db=Depends(get_db), actor: CurrentUser = Depends(get_actor)) -> JSONResponse:
    database.delete_alt_request(db, actor, request_id)
    return _respond({"deleted": request_id})
