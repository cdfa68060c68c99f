import logging
import re
import sqlite3
from typing import Literal, TypedDict

from backend.config import GUEST_TOKEN_PREFIX
from backend.errors import NotFoundError
from backend.security import Actor, owner_scope
from backend.services.gatekeeper import AccessGatekeeper
from database.db import AttendanceRow, EntityStore

logger = logging.getLogger(__name__)

OutcomeCode = Literal[
    "CHECKED_IN",
    "ALREADY_CHECKED_IN",
    "GUEST_NOT_FOUND",
    "SESSION_NOT_FOUND",
    "VIP_ACCESS_DENIED",
    "CAPACITY_EXCEEDED",
    "INVALID_TOKEN_FORMAT",
]
Signal = Literal["success", "error"]

OUTCOME_MESSAGES: dict[OutcomeCode, str] = {
    "CHECKED_IN": "Check-in recorded.",
    "ALREADY_CHECKED_IN": "Guest is already checked in to this session.",
    "GUEST_NOT_FOUND": "Guest not found.",
    "SESSION_NOT_FOUND": "Session not found.",
    "VIP_ACCESS_DENIED": "Guest does not have VIP access to this session.",
    "CAPACITY_EXCEEDED": "Session has reached its maximum capacity.",
    "INVALID_TOKEN_FORMAT": "Unrecognized QR code.",
}

_TOKEN_PATTERN = re.compile(rf"^{re.escape(GUEST_TOKEN_PREFIX)}([A-Za-z0-9_-]+)$")


class NamedRef(TypedDict):
    id: str
    name: str


class CheckInOutcome(TypedDict):
    code: OutcomeCode
    success: bool
    created: bool
    message: str
    signal: Signal
    guest: NamedRef | None
    session: NamedRef | None
    attendance: AttendanceRow | None


def parse_guest_token(guest_token: str | None) -> str | None:
    """Return the guest id carried by a ``guest-<id>`` token, or None."""
    if not guest_token:
        return None
    match = _TOKEN_PATTERN.match(guest_token.strip())
    if not match:
        return None
    return match.group(1)


def _build_outcome(
    code: OutcomeCode,
    *,
    guest: NamedRef | None = None,
    session: NamedRef | None = None,
    attendance: AttendanceRow | None = None,
) -> CheckInOutcome:
    success = code in {"CHECKED_IN", "ALREADY_CHECKED_IN"}
    return {
        "code": code,
        "success": success,
        "created": code == "CHECKED_IN",
        "message": OUTCOME_MESSAGES[code],
        "signal": "success" if success else "error",
        "guest": guest,
        "session": session,
        "attendance": attendance,
    }


class AttendanceRecorder:
    def __init__(self, store: EntityStore, gatekeeper: AccessGatekeeper):
        self.store = store
        self.gatekeeper = gatekeeper

    def record_check_in(self, guest_token: str, session_id: str, actor: Actor) -> CheckInOutcome:
        """
        Validate one scan and commit at most one attendance row.

        Every business outcome is returned, not raised. Lookups, the VIP and
        capacity checks and the insert share one write-locked transaction, so
        concurrent scanners cannot push a session past its capacity or create
        a second row for the same guest.
        """
        if parse_guest_token(guest_token) is None:
            return self._log(_build_outcome("INVALID_TOKEN_FORMAT"), guest_token, session_id, actor)

        with self.store.transaction(immediate=True) as conn:
            outcome = self._check_in(conn, guest_token.strip(), session_id, actor)
        return self._log(outcome, guest_token, session_id, actor)

    def _check_in(
        self,
        conn: sqlite3.Connection,
        guest_token: str,
        session_id: str,
        actor: Actor,
    ) -> CheckInOutcome:
        # Admins check in only their own guests at their own sessions.
        scope = owner_scope(actor)
        guest = self.store.get_guest_by_qr_code(guest_token, owner_id=scope, conn=conn)
        if not guest:
            return _build_outcome("GUEST_NOT_FOUND")
        guest_ref: NamedRef = {"id": guest["id"], "name": guest["name"]}

        session = self.store.get_session(session_id, owner_id=scope, conn=conn)
        if not session:
            return _build_outcome("SESSION_NOT_FOUND", guest=guest_ref)
        session_ref: NamedRef = {"id": session["id"], "name": session["name"]}

        if session["is_vip"] and not self.gatekeeper.has_vip_access(guest["id"], session["id"], conn=conn):
            return _build_outcome("VIP_ACCESS_DENIED", guest=guest_ref, session=session_ref)

        existing = self.store.get_attendance_record(guest["id"], session["id"], conn=conn)
        if existing:
            return _build_outcome("ALREADY_CHECKED_IN", guest=guest_ref, session=session_ref, attendance=existing)

        max_capacity = session["max_capacity"]
        if max_capacity is not None:
            if self.store.count_session_attendance(session["id"], conn=conn) >= max_capacity:
                return _build_outcome("CAPACITY_EXCEEDED", guest=guest_ref, session=session_ref)

        try:
            record = self.store.create_attendance(
                guest_id=guest["id"],
                session_id=session["id"],
                recorded_by=actor["user_id"],
                conn=conn,
            )
        except sqlite3.IntegrityError:
            existing = self.store.get_attendance_record(guest["id"], session["id"], conn=conn)
            if not existing:
                raise
            return _build_outcome("ALREADY_CHECKED_IN", guest=guest_ref, session=session_ref, attendance=existing)

        return _build_outcome("CHECKED_IN", guest=guest_ref, session=session_ref, attendance=record)

    def delete_check_in(self, attendance_id: str) -> None:
        if not self.store.delete_attendance(attendance_id):
            raise NotFoundError("Attendance record", attendance_id)
        logger.info("Attendance record %s removed", attendance_id)

    @staticmethod
    def _log(outcome: CheckInOutcome, guest_token: str, session_id: str, actor: Actor) -> CheckInOutcome:
        level = logging.INFO if outcome["success"] else logging.WARNING
        logger.log(
            level,
            "check-in %s: token=%r session=%s by %s",
            outcome["code"],
            guest_token,
            session_id,
            actor["username"],
        )
        return outcome
