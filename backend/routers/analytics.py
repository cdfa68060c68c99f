from fastapi import APIRouter, Depends, HTTPException

from backend.deps import get_analytics, get_store
from backend.security import Actor, owner_scope, require_capability
from backend.services.analytics import AnalyticsEngine
from database.db import EntityStore

router = APIRouter()


def _require_guest(store: EntityStore, guest_id: str, actor: Actor) -> None:
    if not store.get_guest(guest_id, owner_id=owner_scope(actor)):
        raise HTTPException(status_code=404, detail="Guest not found.")


@router.get("/analytics/guests")
def guest_report(
    analytics: AnalyticsEngine = Depends(get_analytics),
    actor: Actor = Depends(require_capability("view_analytics")),
):
    return analytics.guest_report(owner_scope(actor))


@router.get("/analytics/guests/{guest_id}/percentage")
def guest_percentage(
    guest_id: str,
    store: EntityStore = Depends(get_store),
    analytics: AnalyticsEngine = Depends(get_analytics),
    actor: Actor = Depends(require_capability("view_analytics")),
):
    _require_guest(store, guest_id, actor)
    return {"percentage": analytics.guest_attendance_percentage(guest_id)}


@router.get("/analytics/guests/{guest_id}/eligibility")
def guest_eligibility(
    guest_id: str,
    store: EntityStore = Depends(get_store),
    analytics: AnalyticsEngine = Depends(get_analytics),
    actor: Actor = Depends(require_capability("view_analytics")),
):
    _require_guest(store, guest_id, actor)
    percentage = analytics.guest_attendance_percentage(guest_id)
    return {
        "eligible": analytics.is_eligible_for_certificate(guest_id),
        "percentage": percentage,
    }


@router.get("/analytics/guests/{guest_id}/certificate")
def guest_certificate_status(
    guest_id: str,
    store: EntityStore = Depends(get_store),
    analytics: AnalyticsEngine = Depends(get_analytics),
    actor: Actor = Depends(require_capability("view_analytics")),
):
    _require_guest(store, guest_id, actor)
    return analytics.certificate_status(guest_id)


@router.get("/analytics/sessions/{session_id}/percentage")
def session_percentage(
    session_id: str,
    store: EntityStore = Depends(get_store),
    analytics: AnalyticsEngine = Depends(get_analytics),
    actor: Actor = Depends(require_capability("view_analytics")),
):
    if not store.get_session(session_id, owner_id=owner_scope(actor)):
        raise HTTPException(status_code=404, detail="Session not found.")
    return {"percentage": analytics.session_attendance_percentage(session_id)}
