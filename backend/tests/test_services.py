import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

from backend.errors import CapacityExceededError, NotFoundError, NotVipSessionError, ValidationFailure
from backend.security import Role
from backend.services.analytics import AnalyticsEngine
from backend.services.gatekeeper import AccessGatekeeper
from backend.services.recorder import AttendanceRecorder, parse_guest_token
from database.db import EntityStore


@pytest.fixture()
def store(tmp_path):
    s = EntityStore(tmp_path / "qrtrack_services.db")
    s.create_tables()
    return s


@pytest.fixture()
def owner(store):
    return store.create_user("organizer", "organizer-pass", "admin")


@pytest.fixture()
def actor(owner):
    return {"user_id": owner["id"], "username": owner["username"], "role": Role.ADMIN}


@pytest.fixture()
def gatekeeper(store):
    return AccessGatekeeper(store)


@pytest.fixture()
def recorder(store, gatekeeper):
    return AttendanceRecorder(store, gatekeeper)


@pytest.fixture()
def analytics(store):
    return AnalyticsEngine(store)


def _guest(store, owner, n: int = 0):
    return store.create_guest(name=f"Guest {n}", email=f"guest{n}@example.com", owner_id=owner["id"])


@pytest.mark.parametrize(
    "token, expected",
    [
        ("guest-abc123", "abc123"),
        ("  guest-abc_1-2  ", "abc_1-2"),
        ("guest-", None),
        ("GUEST-abc", None),
        ("guest-a b", None),
        ("visitor-abc", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_guest_token(token, expected):
    assert parse_guest_token(token) == expected


def test_session_validation(store, owner):
    with pytest.raises(ValidationFailure) as exc:
        store.create_session(name="VIP", owner_id=owner["id"], is_vip=True, max_capacity=32)
    assert exc.value.error_code == "INVALID_CAPACITY"

    with pytest.raises(ValidationFailure):
        store.create_session(name="   ", owner_id=owner["id"])

    # Capacity is dropped for regular sessions.
    session = store.create_session(name="Talk", owner_id=owner["id"], max_capacity=10)
    assert session["max_capacity"] is None


def test_cascade_delete_removes_dependents(store, owner, gatekeeper, recorder, actor):
    session = store.create_session(name="VIP", owner_id=owner["id"], is_vip=True, max_capacity=5)
    guest = _guest(store, owner)
    gatekeeper.grant_vip(guest["id"], session["id"])
    assert recorder.record_check_in(guest["qr_code"], session["id"], actor)["code"] == "CHECKED_IN"

    assert store.delete_session(session["id"]) is True
    assert store.count_guest_attendance(guest["id"]) == 0
    assert gatekeeper.list_vip_sessions(guest["id"]) == []


def test_duplicate_attendance_is_rejected_by_schema(store, owner):
    session = store.create_session(name="Talk", owner_id=owner["id"])
    guest = _guest(store, owner)
    store.create_attendance(guest_id=guest["id"], session_id=session["id"], recorded_by=owner["id"])
    with pytest.raises(sqlite3.IntegrityError):
        store.create_attendance(guest_id=guest["id"], session_id=session["id"], recorded_by=owner["id"])


def test_invalid_token_touches_nothing(store, owner, recorder, actor):
    session = store.create_session(name="Talk", owner_id=owner["id"])
    outcome = recorder.record_check_in("not a guest token", session["id"], actor)
    assert outcome["code"] == "INVALID_TOKEN_FORMAT"
    assert outcome["session"] is None
    assert store.count_session_attendance(session["id"]) == 0


def test_capacity_counts_existing_attendance(store, owner, gatekeeper, recorder, actor):
    session = store.create_session(name="VIP", owner_id=owner["id"], is_vip=True, max_capacity=1)
    first = _guest(store, owner, 1)
    second = _guest(store, owner, 2)

    gatekeeper.grant_vip(first["id"], session["id"])
    assert recorder.record_check_in(first["qr_code"], session["id"], actor)["code"] == "CHECKED_IN"

    # Revoking frees a grant slot but the seat is still taken.
    assert gatekeeper.revoke_vip(first["id"], session["id"]) is True
    gatekeeper.grant_vip(second["id"], session["id"])

    outcome = recorder.record_check_in(second["qr_code"], session["id"], actor)
    assert outcome["code"] == "CAPACITY_EXCEEDED"
    assert outcome["success"] is False
    assert store.count_session_attendance(session["id"]) == 1


def test_rescan_at_full_session_reports_already_checked_in(store, owner, gatekeeper, recorder, actor):
    session = store.create_session(name="VIP", owner_id=owner["id"], is_vip=True, max_capacity=1)
    guest = _guest(store, owner)
    gatekeeper.grant_vip(guest["id"], session["id"])
    recorder.record_check_in(guest["qr_code"], session["id"], actor)

    outcome = recorder.record_check_in(guest["qr_code"], session["id"], actor)
    assert outcome["code"] == "ALREADY_CHECKED_IN"
    assert outcome["attendance"]["guest_id"] == guest["id"]


def test_concurrent_scans_create_one_row(store, owner, recorder, actor):
    session = store.create_session(name="Talk", owner_id=owner["id"])
    guest = _guest(store, owner)

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(
            pool.map(
                lambda _: recorder.record_check_in(guest["qr_code"], session["id"], actor),
                range(8),
            )
        )

    codes = sorted(o["code"] for o in outcomes)
    assert codes.count("CHECKED_IN") == 1
    assert codes.count("ALREADY_CHECKED_IN") == 7
    assert store.count_session_attendance(session["id"]) == 1


def test_grant_vip_errors(store, owner, gatekeeper):
    regular = store.create_session(name="Talk", owner_id=owner["id"])
    vip = store.create_session(name="VIP", owner_id=owner["id"], is_vip=True, max_capacity=1)
    first = _guest(store, owner, 1)
    second = _guest(store, owner, 2)

    with pytest.raises(NotFoundError):
        gatekeeper.grant_vip(first["id"], "missing-session")
    with pytest.raises(NotFoundError):
        gatekeeper.grant_vip("missing-guest", vip["id"])
    with pytest.raises(NotVipSessionError):
        gatekeeper.grant_vip(first["id"], regular["id"])

    grant = gatekeeper.grant_vip(first["id"], vip["id"])
    assert gatekeeper.grant_vip(first["id"], vip["id"])["id"] == grant["id"]
    with pytest.raises(CapacityExceededError):
        gatekeeper.grant_vip(second["id"], vip["id"])
    assert store.count_vip_access(vip["id"]) == 1


def test_revoke_missing_grant_is_noop(store, owner, gatekeeper):
    vip = store.create_session(name="VIP", owner_id=owner["id"], is_vip=True, max_capacity=3)
    guest = _guest(store, owner)
    assert gatekeeper.revoke_vip(guest["id"], vip["id"]) is False
    with pytest.raises(NotFoundError):
        gatekeeper.revoke_vip(guest["id"], "missing-session")


@pytest.mark.parametrize("attended, eligible", [(7, True), (6, False), (10, True), (0, False)])
def test_eligibility_boundary(store, owner, recorder, analytics, actor, attended, eligible):
    sessions = [store.create_session(name=f"Day {i}", owner_id=owner["id"]) for i in range(10)]
    guest = _guest(store, owner)
    for session in sessions[:attended]:
        recorder.record_check_in(guest["qr_code"], session["id"], actor)

    assert analytics.guest_attendance_percentage(guest["id"]) == attended * 10.0
    assert analytics.is_eligible_for_certificate(guest["id"]) is eligible


def test_certificate_issuable_after_one_session(store, owner, recorder, analytics, actor):
    sessions = [store.create_session(name=f"Day {i}", owner_id=owner["id"]) for i in range(10)]
    guest = _guest(store, owner)

    status = analytics.certificate_status(guest["id"])
    assert status["issuable"] is False
    assert analytics.has_attended_any(guest["id"]) is False

    recorder.record_check_in(guest["qr_code"], sessions[0]["id"], actor)
    status = analytics.certificate_status(guest["id"])
    assert status["issuable"] is True
    assert status["eligible"] is False
    assert status["percentage"] == 10.0


def test_percentages_default_to_zero(store, owner, analytics):
    guest = _guest(store, owner)
    assert analytics.guest_attendance_percentage(guest["id"]) == 0.0
    assert analytics.guest_attendance_percentage("missing") == 0.0
    assert analytics.session_attendance_percentage("missing") == 0.0


def test_percentage_only_counts_owner_scope(store, owner, recorder, analytics, actor):
    other = store.create_user("other", "other-pass", "admin")
    scanner = {"user_id": None, "username": "door", "role": Role.SCANNER}
    mine = store.create_session(name="Mine", owner_id=owner["id"])
    store.create_session(name="Mine too", owner_id=owner["id"])
    theirs = store.create_session(name="Theirs", owner_id=other["id"])
    guest = _guest(store, owner)

    recorder.record_check_in(guest["qr_code"], mine["id"], actor)
    assert recorder.record_check_in(guest["qr_code"], theirs["id"], scanner)["code"] == "CHECKED_IN"

    assert analytics.guest_attendance_percentage(guest["id"]) == 50.0


def test_recent_check_ins_ordering(store, owner, analytics):
    session = store.create_session(name="Talk", owner_id=owner["id"])
    stamps = ["2026-03-01T09:00:00+00:00", "2026-03-01T11:00:00+00:00", "2026-03-01T10:00:00+00:00"]
    for n, stamp in enumerate(stamps):
        guest = _guest(store, owner, n)
        store.create_attendance(
            guest_id=guest["id"],
            session_id=session["id"],
            recorded_by=owner["id"],
            timestamp=stamp,
        )

    recent = analytics.recent_check_ins(2)
    assert [r["timestamp"] for r in recent] == [stamps[1], stamps[2]]
    assert recent[0]["guest_name"] == "Guest 1"
    assert analytics.recent_check_ins(0) == []
    assert len(analytics.recent_check_ins(50)) == 3


def test_vip_flag_is_irrelevant_for_regular_sessions(store, owner, recorder, actor):
    session = store.create_session(name="Talk", owner_id=owner["id"])
    guest = store.create_guest(name="Vera", email="vera@example.com", owner_id=owner["id"], is_vip=True)

    outcome = recorder.record_check_in(guest["qr_code"], session["id"], actor)
    assert outcome["code"] == "CHECKED_IN"


def test_deleting_session_recomputes_guest_percentage(store, owner, recorder, analytics, actor):
    first = store.create_session(name="Day 1", owner_id=owner["id"])
    store.create_session(name="Day 2", owner_id=owner["id"])
    guest = _guest(store, owner)
    recorder.record_check_in(guest["qr_code"], first["id"], actor)
    assert analytics.guest_attendance_percentage(guest["id"]) == 50.0

    store.delete_session(first["id"])
    assert analytics.guest_attendance_percentage(guest["id"]) == 0.0
    assert analytics.is_eligible_for_certificate(guest["id"]) is False


def test_admin_check_in_is_limited_to_own_records(store, owner, recorder, actor):
    other = store.create_user("other", "other-pass", "admin")
    other_actor = {"user_id": other["id"], "username": "other", "role": Role.ADMIN}
    session = store.create_session(name="Mine", owner_id=owner["id"])
    guest = _guest(store, owner)
    their_guest = store.create_guest(name="Theirs", email="theirs@example.com", owner_id=other["id"])

    assert recorder.record_check_in(guest["qr_code"], session["id"], other_actor)["code"] == "GUEST_NOT_FOUND"
    outcome = recorder.record_check_in(their_guest["qr_code"], session["id"], other_actor)
    assert outcome["code"] == "SESSION_NOT_FOUND"
    assert store.count_session_attendance(session["id"]) == 0


def test_session_percentage_ignores_guests_from_other_owners(store, owner, recorder, analytics, actor):
    other = store.create_user("other", "other-pass", "admin")
    scanner = {"user_id": None, "username": "door", "role": Role.SCANNER}
    session = store.create_session(name="Mine", owner_id=owner["id"])
    guest = _guest(store, owner)
    their_guest = store.create_guest(name="Theirs", email="theirs@example.com", owner_id=other["id"])

    recorder.record_check_in(guest["qr_code"], session["id"], scanner)
    recorder.record_check_in(their_guest["qr_code"], session["id"], scanner)

    assert store.count_session_attendance(session["id"]) == 2
    assert analytics.session_attendance_percentage(session["id"]) == 100.0


def test_revoke_on_regular_session_is_rejected(store, owner, gatekeeper):
    session = store.create_session(name="Talk", owner_id=owner["id"])
    guest = _guest(store, owner)
    with pytest.raises(NotVipSessionError):
        gatekeeper.revoke_vip(guest["id"], session["id"])


def test_scoped_resets_leave_other_owners_alone(store, owner, recorder, actor):
    other = store.create_user("other", "other-pass", "admin")
    other_actor = {"user_id": other["id"], "username": "other", "role": Role.ADMIN}
    mine = store.create_session(name="Mine", owner_id=owner["id"])
    theirs = store.create_session(name="Theirs", owner_id=other["id"])
    guest = _guest(store, owner)
    their_guest = store.create_guest(name="Theirs", email="theirs@example.com", owner_id=other["id"])
    recorder.record_check_in(guest["qr_code"], mine["id"], actor)
    recorder.record_check_in(their_guest["qr_code"], theirs["id"], other_actor)

    assert store.clear_attendance(other["id"]) == 1
    assert store.count_session_attendance(mine["id"]) == 1

    store.clear_all_tables(other["id"])
    assert store.list_sessions() == [mine]
    assert [g["id"] for g in store.list_guests()] == [guest["id"]]


def test_update_missing_guest_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.update_guest("missing", name="Nobody", email="nobody@example.com")


def test_login_history_keeps_latest_entries(store, owner):
    for n in range(12):
        history = store.record_login(owner["id"], ip=f"10.0.0.{n}", user_agent="scanner-app")

    assert len(history) == 10
    assert history[0]["ip"] == "10.0.0.2"
    assert history[-1]["ip"] == "10.0.0.11"
    assert store.get_login_history(owner["id"]) == history
    assert store.get_login_history(9999) == []
