import logging
import sqlite3

from backend.errors import CapacityExceededError, NotFoundError, NotVipSessionError
from database.db import EntityStore, GuestRow, SessionRow, VipAccessRow

logger = logging.getLogger(__name__)


class AccessGatekeeper:
    """
    Bookkeeping for per-session VIP grants.

    A grant is the only thing that admits a guest to a VIP session; the
    guest's own ``is_vip`` flag is display information. Each grant reserves
    one of the session's ``max_capacity`` slots.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def grant_vip(self, guest_id: str, session_id: str) -> VipAccessRow:
        with self.store.transaction(immediate=True) as conn:
            session = self.store.get_session(session_id, conn=conn)
            if not session:
                raise NotFoundError("Session", session_id)
            if not self.store.get_guest(guest_id, conn=conn):
                raise NotFoundError("Guest", guest_id)
            if not session["is_vip"]:
                raise NotVipSessionError(session_id)

            if self.store.has_vip_access(guest_id, session_id, conn=conn):
                # Granting twice is a no-op.
                return self.store.add_vip_access(guest_id, session_id, conn=conn)

            max_capacity = session["max_capacity"] or 0
            current = self.store.count_vip_access(session_id, conn=conn)
            if current >= max_capacity:
                logger.warning(
                    "VIP grant refused: session %s is full (%d/%d)",
                    session_id,
                    current,
                    max_capacity,
                )
                raise CapacityExceededError(session_id, max_capacity)

            grant = self.store.add_vip_access(guest_id, session_id, conn=conn)

        logger.info("VIP access granted: guest %s -> session %s", guest_id, session_id)
        return grant

    def revoke_vip(self, guest_id: str, session_id: str) -> bool:
        session = self.store.get_session(session_id)
        if not session:
            raise NotFoundError("Session", session_id)
        if not session["is_vip"]:
            raise NotVipSessionError(session_id)
        removed = self.store.remove_vip_access(guest_id, session_id)
        if removed:
            logger.info("VIP access revoked: guest %s -> session %s", guest_id, session_id)
        return removed

    def has_vip_access(
        self,
        guest_id: str,
        session_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        return self.store.has_vip_access(guest_id, session_id, conn=conn)

    def list_vip_guests(self, session_id: str) -> list[GuestRow]:
        return self.store.list_vip_guests(session_id)

    def list_vip_sessions(self, guest_id: str) -> list[SessionRow]:
        return self.store.list_guest_vip_sessions(guest_id)
