from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from backend.deps import get_gatekeeper, get_store
from backend.security import Actor, owner_scope, require_capability
from backend.services.gatekeeper import AccessGatekeeper
from database.db import EntityStore, SessionRow

router = APIRouter()


class SessionCreate(BaseModel):
    name: str
    description: str | None = None
    date: str | None = None
    location: str | None = None
    is_vip: bool = False
    max_capacity: int | None = None


class SessionUpdate(BaseModel):
    name: str
    description: str | None = None
    date: str | None = None
    location: str | None = None


class VipGrantCreate(BaseModel):
    guest_id: str


def _owned_session(store: EntityStore, session_id: str, actor: Actor) -> SessionRow:
    session = store.get_session(session_id, owner_id=owner_scope(actor))
    if not session:
        raise HTTPException(status_code=404, detail="Session not found.")
    return session


@router.get("/sessions")
def list_sessions(
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("view_sessions")),
):
    return store.list_sessions(owner_scope(actor))


@router.get("/sessions/{session_id}")
def session_detail(
    session_id: str,
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("view_sessions")),
):
    return _owned_session(store, session_id, actor)


@router.post("/sessions", status_code=201)
def create_session(
    payload: SessionCreate,
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("manage_sessions")),
):
    return store.create_session(
        name=payload.name,
        description=payload.description,
        date=payload.date,
        location=payload.location,
        is_vip=payload.is_vip,
        max_capacity=payload.max_capacity,
        owner_id=actor["user_id"],
    )


@router.put("/sessions/{session_id}")
def update_session(
    session_id: str,
    payload: SessionUpdate,
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("manage_sessions")),
):
    _owned_session(store, session_id, actor)
    return store.update_session(
        session_id,
        name=payload.name,
        description=payload.description,
        date=payload.date,
        location=payload.location,
    )


@router.delete("/sessions/{session_id}", status_code=204)
def delete_session(
    session_id: str,
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("manage_sessions")),
):
    _owned_session(store, session_id, actor)
    store.delete_session(session_id)
    return Response(status_code=204)


# -----------------------------
# VIP access
# -----------------------------
@router.get("/sessions/{session_id}/vip-access")
def list_vip_access(
    session_id: str,
    store: EntityStore = Depends(get_store),
    gatekeeper: AccessGatekeeper = Depends(get_gatekeeper),
    actor: Actor = Depends(require_capability("manage_vip")),
):
    session = _owned_session(store, session_id, actor)
    if not session["is_vip"]:
        raise HTTPException(status_code=400, detail="This is not a VIP session.")
    return gatekeeper.list_vip_guests(session_id)


@router.post("/sessions/{session_id}/vip-access", status_code=201)
def grant_vip_access(
    session_id: str,
    payload: VipGrantCreate,
    store: EntityStore = Depends(get_store),
    gatekeeper: AccessGatekeeper = Depends(get_gatekeeper),
    actor: Actor = Depends(require_capability("manage_vip")),
):
    _owned_session(store, session_id, actor)
    guest_id = payload.guest_id.strip()
    if not guest_id:
        raise HTTPException(status_code=400, detail="Guest ID is required.")
    if not store.get_guest(guest_id, owner_id=owner_scope(actor)):
        raise HTTPException(status_code=404, detail="Guest not found.")
    grant = gatekeeper.grant_vip(guest_id, session_id)
    return {"message": "VIP access granted.", **grant}


@router.delete("/sessions/{session_id}/vip-access/{guest_id}")
def revoke_vip_access(
    session_id: str,
    guest_id: str,
    store: EntityStore = Depends(get_store),
    gatekeeper: AccessGatekeeper = Depends(get_gatekeeper),
    actor: Actor = Depends(require_capability("manage_vip")),
):
    _owned_session(store, session_id, actor)
    removed = gatekeeper.revoke_vip(guest_id, session_id)
    return {"ok": True, "removed": removed}
