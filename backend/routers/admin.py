from fastapi import APIRouter, Depends

from backend.deps import get_store
from backend.security import Actor, owner_scope, require_capability
from database.db import EntityStore

router = APIRouter()


# Resets only touch the calling admin's own sessions and guests.
@router.post("/admin/reset/attendance")
def reset_attendance(
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("reset_data")),
):
    cleared = store.clear_attendance(owner_scope(actor))
    return {"ok": True, "cleared": cleared, "message": "Attendance records cleared"}


@router.post("/admin/reset/hard")
def reset_hard(
    store: EntityStore = Depends(get_store),
    actor: Actor = Depends(require_capability("reset_data")),
):
    store.clear_all_tables(owner_scope(actor))
    return {"ok": True, "message": "Reset complete: sessions, guests, attendance and VIP grants cleared"}
