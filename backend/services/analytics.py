from typing import TypedDict

from backend.config import CERTIFICATE_THRESHOLD
from database.db import EntityStore, RecentCheckInRow


class CertificateStatus(TypedDict):
    guest_id: str
    issuable: bool
    eligible: bool
    percentage: float
    attended: int


class GuestReportRow(TypedDict):
    id: str
    name: str
    email: str
    percentage: float
    eligible: bool


def _percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return part * 100 / whole


class AnalyticsEngine:
    """
    Read-side attendance figures, recomputed from the store on every call.

    Unknown ids yield 0 / False / [] rather than errors; existence checks
    belong to the caller.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def guest_attendance_percentage(self, guest_id: str) -> float:
        with self.store.transaction() as conn:
            guest = self.store.get_guest(guest_id, conn=conn)
            if not guest:
                return 0.0
            total = self.store.count_sessions(guest["owner_id"], conn=conn)
            attended = self.store.count_guest_attendance_in_scope(guest_id, guest["owner_id"], conn=conn)
        return _percentage(attended, total)

    def session_attendance_percentage(self, session_id: str) -> float:
        with self.store.transaction() as conn:
            session = self.store.get_session(session_id, conn=conn)
            if not session:
                return 0.0
            total = self.store.count_guests(session["owner_id"], conn=conn)
            attendees = self.store.count_session_attendance_in_scope(session_id, session["owner_id"], conn=conn)
        return _percentage(attendees, total)

    def is_eligible_for_certificate(self, guest_id: str) -> bool:
        return self.guest_attendance_percentage(guest_id) >= CERTIFICATE_THRESHOLD

    def has_attended_any(self, guest_id: str) -> bool:
        return self.store.count_guest_attendance(guest_id) > 0

    def certificate_status(self, guest_id: str) -> CertificateStatus:
        # Issuance needs one attended session; the threshold is reported for display.
        attended = self.store.count_guest_attendance(guest_id)
        percentage = self.guest_attendance_percentage(guest_id)
        return {
            "guest_id": guest_id,
            "issuable": attended > 0,
            "eligible": percentage >= CERTIFICATE_THRESHOLD,
            "percentage": percentage,
            "attended": attended,
        }

    def recent_check_ins(self, n: int, owner_id: int | None = None) -> list[RecentCheckInRow]:
        return self.store.list_recent_attendance(n, owner_id=owner_id)

    def guest_report(self, owner_id: int | None = None) -> list[GuestReportRow]:
        report: list[GuestReportRow] = []
        for guest in self.store.list_guests(owner_id):
            percentage = self.guest_attendance_percentage(guest["id"])
            report.append(
                {
                    "id": guest["id"],
                    "name": guest["name"],
                    "email": guest["email"],
                    "percentage": percentage,
                    "eligible": percentage >= CERTIFICATE_THRESHOLD,
                }
            )
        return report
