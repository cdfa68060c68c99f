from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from backend.config import RECENT_CHECKINS_DEFAULT, RECENT_CHECKINS_MAX
from backend.deps import get_analytics, get_recorder, get_store
from backend.security import Actor, owner_scope, require_capability
from backend.services.analytics import AnalyticsEngine
from backend.services.recorder import AttendanceRecorder, OutcomeCode
from database.db import EntityStore

router = APIRouter()

OUTCOME_STATUS: dict[OutcomeCode, int] = {
    "CHECKED_IN": 201,
    "ALREADY_CHECKED_IN": 200,
    "INVALID_TOKEN_FORMAT": 400,
    "GUEST_NOT_FOUND": 404,
    "SESSION_NOT_FOUND": 404,
    "VIP_ACCESS_DENIED": 403,
    "CAPACITY_EXCEEDED": 403,
}


class CheckInRequest(BaseModel):
    guest_token: str
    session_id: str


@router.post("/attendance")
def record_check_in(
    payload: CheckInRequest,
    recorder: AttendanceRecorder = Depends(get_recorder),
    actor: Actor = Depends(require_capability("record_check_in")),
):
    session_id = payload.session_id.strip()
    if not session_id:
        raise HTTPException(status_code=400, detail="Session ID is required.")

    outcome = recorder.record_check_in(payload.guest_token, session_id, actor)
    return JSONResponse(status_code=OUTCOME_STATUS[outcome["code"]], content=dict(outcome))


@router.get("/attendance")
def attendance(
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("view_attendance")),
):
    return store.list_attendance(owner_scope(actor))


@router.get("/attendance/recent")
def recent_check_ins(
    count: int = Query(default=RECENT_CHECKINS_DEFAULT, ge=1, le=RECENT_CHECKINS_MAX),
    analytics: AnalyticsEngine = Depends(get_analytics),
    actor: Actor = Depends(require_capability("view_analytics")),
):
    return analytics.recent_check_ins(count, owner_id=owner_scope(actor))


@router.get("/attendance/guest/{guest_id}")
def guest_attendance(
    guest_id: str,
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("view_analytics")),
):
    if not store.get_guest(guest_id, owner_id=owner_scope(actor)):
        raise HTTPException(status_code=404, detail="Guest not found.")
    return store.list_guest_sessions(guest_id)


@router.get("/attendance/session/{session_id}")
def session_attendees(
    session_id: str,
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("view_analytics")),
):
    if not store.get_session(session_id, owner_id=owner_scope(actor)):
        raise HTTPException(status_code=404, detail="Session not found.")
    return store.list_session_attendees(session_id)


@router.delete("/attendance/{attendance_id}", status_code=204)
def delete_attendance(
    attendance_id: str,
    recorder: AttendanceRecorder = Depends(get_recorder),
    _actor: Actor = Depends(require_capability("delete_check_in")),
):
    recorder.delete_check_in(attendance_id)
    return Response(status_code=204)
