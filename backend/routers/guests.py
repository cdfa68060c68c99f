from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from backend.deps import get_gatekeeper, get_store
from backend.security import Actor, owner_scope, require_capability
from backend.services.gatekeeper import AccessGatekeeper
from database.db import EntityStore, GuestRow

router = APIRouter()


class GuestCreate(BaseModel):
    name: str
    email: str
    organization: str | None = None
    is_vip: bool = False


class GuestUpdate(BaseModel):
    name: str
    email: str
    organization: str | None = None
    is_vip: bool = False


def _owned_guest(store: EntityStore, guest_id: str, actor: Actor) -> GuestRow:
    guest = store.get_guest(guest_id, owner_id=owner_scope(actor))
    if not guest:
        raise HTTPException(status_code=404, detail="Guest not found.")
    return guest


@router.get("/guests")
def list_guests(
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("view_guests")),
):
    return store.list_guests(owner_scope(actor))


@router.get("/guests/qr/{qr_code}")
def guest_by_qr_code(
    qr_code: str,
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("lookup_guest_token")),
):
    guest = store.get_guest_by_qr_code(qr_code.strip(), owner_id=owner_scope(actor))
    if not guest:
        raise HTTPException(status_code=404, detail="Guest not found.")
    return guest


@router.get("/guests/{guest_id}")
def guest_detail(
    guest_id: str,
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("manage_guests")),
):
    return _owned_guest(store, guest_id, actor)


@router.post("/guests", status_code=201)
def create_guest(
    payload: GuestCreate,
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("manage_guests")),
):
    return store.create_guest(
        name=payload.name,
        email=payload.email,
        organization=payload.organization,
        is_vip=payload.is_vip,
        owner_id=actor["user_id"],
    )


@router.put("/guests/{guest_id}")
def update_guest(
    guest_id: str,
    payload: GuestUpdate,
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("manage_guests")),
):
    _owned_guest(store, guest_id, actor)
    return store.update_guest(
        guest_id,
        name=payload.name,
        email=payload.email,
        organization=payload.organization,
        is_vip=payload.is_vip,
    )


@router.delete("/guests/{guest_id}", status_code=204)
def delete_guest(
    guest_id: str,
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("manage_guests")),
):
    _owned_guest(store, guest_id, actor)
    store.delete_guest(guest_id)
    return Response(status_code=204)


@router.get("/guests/{guest_id}/vip-access")
def guest_vip_sessions(
    guest_id: str,
    store: EntityStore = Depends(get_store),
    gatekeeper: AccessGatekeeper = Depends(get_gatekeeper),
    actor: Actor = Depends(require_capability("manage_vip")),
):
    # Listed regardless of the guest's own VIP flag.
    _owned_guest(store, guest_id, actor)
    return gatekeeper.list_vip_sessions(guest_id)
