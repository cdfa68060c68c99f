import hashlib
import hmac
import json
import logging
import secrets
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Literal, TypedDict

from backend.config import (
    ADMIN_PASSWORD,
    ADMIN_USERNAME,
    DB_BUSY_TIMEOUT_SECONDS,
    GUEST_TOKEN_PREFIX,
    VIP_MAX_CAPACITY,
)
from backend.errors import ConflictError, NotFoundError, ValidationFailure

logger = logging.getLogger(__name__)

PASSWORD_HASH_ALGO = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 120_000
LOGIN_HISTORY_LIMIT = 10

UserRole = Literal["admin", "scanner"]


class UserRow(TypedDict):
    id: int
    username: str
    role: UserRole


class SessionRow(TypedDict):
    id: str
    name: str
    description: str | None
    date: str | None
    location: str | None
    owner_id: int | None
    is_vip: bool
    max_capacity: int | None
    created_at: str
    updated_at: str


class GuestRow(TypedDict):
    id: str
    name: str
    email: str
    organization: str | None
    qr_code: str
    is_vip: bool
    owner_id: int | None
    created_at: str
    updated_at: str


class AttendanceRow(TypedDict):
    id: str
    guest_id: str
    session_id: str
    timestamp: str
    recorded_by: int | None


class RecentCheckInRow(AttendanceRow):
    guest_name: str
    session_name: str


class LoginEntry(TypedDict):
    timestamp: str
    ip: str | None
    user_agent: str | None


class VipAccessRow(TypedDict):
    id: str
    guest_id: str
    session_id: str
    created_at: str


_SESSION_COLUMNS = """
    s.id, s.name, s.description, s.date, s.location, s.owner_id,
    s.is_vip, s.max_capacity, s.created_at, s.updated_at
"""
_GUEST_COLUMNS = """
    g.id, g.name, g.email, g.organization, g.qr_code, g.is_vip,
    g.owner_id, g.created_at, g.updated_at
"""
_ATTENDANCE_COLUMNS = "a.id, a.guest_id, a.session_id, a.timestamp, a.recorded_by"


def _hash_password(password: str, *, salt: str | None = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"{PASSWORD_HASH_ALGO}${PASSWORD_HASH_ITERATIONS}${salt_value}${digest}"


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, rounds_text, salt_value, expected_digest = password_hash.split("$", 3)
        rounds = int(rounds_text)
    except (ValueError, TypeError):
        return False

    if algo != PASSWORD_HASH_ALGO or rounds <= 0:
        return False

    candidate_digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        rounds,
    ).hex()
    return hmac.compare_digest(candidate_digest, expected_digest)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _session_from_row(row: tuple) -> SessionRow:
    return {
        "id": str(row[0]),
        "name": str(row[1]),
        "description": row[2],
        "date": row[3],
        "location": row[4],
        "owner_id": int(row[5]) if row[5] is not None else None,
        "is_vip": bool(row[6]),
        "max_capacity": int(row[7]) if row[7] is not None else None,
        "created_at": str(row[8]),
        "updated_at": str(row[9]),
    }


def _guest_from_row(row: tuple) -> GuestRow:
    return {
        "id": str(row[0]),
        "name": str(row[1]),
        "email": str(row[2]),
        "organization": row[3],
        "qr_code": str(row[4]),
        "is_vip": bool(row[5]),
        "owner_id": int(row[6]) if row[6] is not None else None,
        "created_at": str(row[7]),
        "updated_at": str(row[8]),
    }


def _attendance_from_row(row: tuple) -> AttendanceRow:
    return {
        "id": str(row[0]),
        "guest_id": str(row[1]),
        "session_id": str(row[2]),
        "timestamp": str(row[3]),
        "recorded_by": int(row[4]) if row[4] is not None else None,
    }


def _parse_login_history(raw: str | None) -> list[LoginEntry]:
    try:
        history = json.loads(raw or "[]")
    except ValueError:
        return []
    return history if isinstance(history, list) else []


def validate_session_fields(name: str, is_vip: bool, max_capacity: int | None) -> int | None:
    """
    Check session invariants before anything is written.

    Returns the capacity to persist: the given value for VIP sessions,
    ``None`` otherwise.
    """
    if not name or not name.strip():
        raise ValidationFailure("name", "Session name is required.")
    if not is_vip:
        return None
    if max_capacity is None or max_capacity < 1 or max_capacity > VIP_MAX_CAPACITY:
        raise ValidationFailure(
            "max_capacity",
            f"VIP sessions must have a maximum capacity between 1 and {VIP_MAX_CAPACITY}.",
            "INVALID_CAPACITY",
        )
    return max_capacity


class EntityStore:
    """
    SQLite-backed store for users, sessions, guests, attendance and VIP grants.

    Uniqueness (one attendance row per guest/session, one grant per
    guest/session, unique email and QR token) and cascading deletes are
    declared in the schema, so they hold for every writer sharing the file.
    """

    def __init__(self, db_path: str | Path, *, busy_timeout: float = DB_BUSY_TIMEOUT_SECONDS):
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout, check_same_thread=False)
        # recommended with FK tables
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def transaction(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Yield a connection inside a single transaction.

        ``immediate=True`` takes the database write lock before the first read
        so a read-then-write sequence cannot interleave with another writer.
        """
        conn = self.connect()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _use(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.transaction() as own_conn:
            yield own_conn

    # -----------------------------
    # Schema
    # -----------------------------
    def create_tables(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.transaction() as conn:
            cur = conn.cursor()
            cur.execute(
                """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE COLLATE NOCASE,
                password_hash TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'scanner' CHECK (role IN ('admin', 'scanner')),
                login_history TEXT NOT NULL DEFAULT '[]',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
            )

            cur.execute(
                f"""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                date TEXT,
                location TEXT,
                owner_id INTEGER,
                is_vip INTEGER NOT NULL DEFAULT 0,
                max_capacity INTEGER,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (owner_id) REFERENCES users(id) ON DELETE SET NULL,
                CHECK (
                    is_vip = 0
                    OR (max_capacity IS NOT NULL AND max_capacity BETWEEN 1 AND {int(VIP_MAX_CAPACITY)})
                )
            )
            """
            )

            cur.execute(
                """
            CREATE TABLE IF NOT EXISTS guests (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                organization TEXT,
                qr_code TEXT NOT NULL UNIQUE,
                is_vip INTEGER NOT NULL DEFAULT 0,
                owner_id INTEGER,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (owner_id) REFERENCES users(id) ON DELETE SET NULL
            )
            """
            )

            cur.execute(
                """
            CREATE TABLE IF NOT EXISTS attendance (
                id TEXT PRIMARY KEY,
                guest_id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                recorded_by INTEGER,
                FOREIGN KEY (guest_id) REFERENCES guests(id) ON DELETE CASCADE,
                FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE,
                FOREIGN KEY (recorded_by) REFERENCES users(id) ON DELETE SET NULL,
                UNIQUE(guest_id, session_id)
            )
            """
            )

            cur.execute(
                """
            CREATE TABLE IF NOT EXISTS vip_access (
                id TEXT PRIMARY KEY,
                guest_id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (guest_id) REFERENCES guests(id) ON DELETE CASCADE,
                FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE,
                UNIQUE(guest_id, session_id)
            )
            """
            )

            cur.execute("CREATE INDEX IF NOT EXISTS idx_sessions_owner ON sessions(owner_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_guests_owner ON guests(owner_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_attendance_session ON attendance(session_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_attendance_timestamp ON attendance(timestamp)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_vip_access_session ON vip_access(session_id)")

            self._ensure_user_columns(cur)
            self._ensure_default_admin(cur)
        logger.info("Schema ready at %s", self.db_path)

    @staticmethod
    def _ensure_user_columns(cursor: sqlite3.Cursor) -> None:
        # Migration for databases created before login history was tracked.
        cursor.execute("PRAGMA table_info(users)")
        cols = {str(row[1]) for row in cursor.fetchall()}
        if "login_history" not in cols:
            cursor.execute("ALTER TABLE users ADD COLUMN login_history TEXT NOT NULL DEFAULT '[]'")

    def _ensure_default_admin(self, cursor: sqlite3.Cursor) -> None:
        username = (ADMIN_USERNAME or "").strip()
        password = (ADMIN_PASSWORD or "").strip()
        if not username or not password:
            return

        cursor.execute(
            """
            SELECT id
            FROM users
            WHERE username = ? COLLATE NOCASE
            """,
            (username,),
        )
        if cursor.fetchone():
            return

        cursor.execute(
            """
            INSERT INTO users (username, password_hash, role)
            VALUES (?, ?, 'admin')
            """,
            (username, _hash_password(password)),
        )
        logger.info("Seeded default admin user %r", username)

    # -----------------------------
    # Users
    # -----------------------------
    def create_user(self, username: str, password: str, role: UserRole = "scanner") -> UserRow:
        clean_username = username.strip()
        clean_password = password.strip()
        if not clean_username or not clean_password:
            raise ValidationFailure("username", "Username and password are required.")
        if role not in ("admin", "scanner"):
            raise ValidationFailure("role", f"Unknown role: {role}")

        try:
            with self.transaction() as conn:
                cur = conn.cursor()
                cur.execute(
                    """
                    INSERT INTO users (username, password_hash, role)
                    VALUES (?, ?, ?)
                    """,
                    (clean_username, _hash_password(clean_password), role),
                )
                user_id = int(cur.lastrowid)
        except sqlite3.IntegrityError:
            raise ConflictError("Username already exists.", "USERNAME_EXISTS")
        return {"id": user_id, "username": clean_username, "role": role}

    def get_user_by_id(self, user_id: int) -> UserRow | None:
        with self._use(None) as conn:
            cur = conn.cursor()
            cur.execute("SELECT id, username, role FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        if not row:
            return None
        return {"id": int(row[0]), "username": str(row[1]), "role": row[2]}

    def verify_user_credentials(self, username: str, password: str) -> UserRow | None:
        clean_username = username.strip()
        clean_password = password.strip()
        if not clean_username or not clean_password:
            return None

        with self._use(None) as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT id, username, password_hash, role
                FROM users
                WHERE username = ? COLLATE NOCASE
                """,
                (clean_username,),
            )
            row = cur.fetchone()

        if not row:
            return None

        user_id, saved_username, password_hash, role = row
        if not _verify_password(clean_password, password_hash):
            return None

        return {"id": int(user_id), "username": str(saved_username), "role": role}

    def get_login_history(self, user_id: int) -> list[LoginEntry]:
        with self._use(None) as conn:
            row = conn.execute("SELECT login_history FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            return []
        return _parse_login_history(row[0])

    def record_login(
        self,
        user_id: int,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> list[LoginEntry]:
        """Append a login to the user's history, keeping the newest ``LOGIN_HISTORY_LIMIT``."""
        entry: LoginEntry = {"timestamp": _utc_now(), "ip": ip, "user_agent": user_agent}
        with self.transaction(immediate=True) as conn:
            row = conn.execute("SELECT login_history FROM users WHERE id = ?", (user_id,)).fetchone()
            if not row:
                raise NotFoundError("User", user_id)
            history = _parse_login_history(row[0])
            history.append(entry)
            history = history[-LOGIN_HISTORY_LIMIT:]
            conn.execute(
                "UPDATE users SET login_history = ? WHERE id = ?",
                (json.dumps(history), user_id),
            )
        return history

    # -----------------------------
    # Sessions
    # -----------------------------
    def create_session(
        self,
        *,
        name: str,
        owner_id: int | None,
        description: str | None = None,
        date: str | None = None,
        location: str | None = None,
        is_vip: bool = False,
        max_capacity: int | None = None,
    ) -> SessionRow:
        capacity = validate_session_fields(name, is_vip, max_capacity)
        session_id = str(uuid.uuid4())
        now = _utc_now()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sessions (
                    id, name, description, date, location, owner_id,
                    is_vip, max_capacity, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    name.strip(),
                    _clean_optional(description),
                    _clean_optional(date),
                    _clean_optional(location),
                    owner_id,
                    1 if is_vip else 0,
                    capacity,
                    now,
                    now,
                ),
            )
            session = self.get_session(session_id, conn=conn)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def get_session(
        self,
        session_id: str,
        *,
        owner_id: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> SessionRow | None:
        query = f"SELECT {_SESSION_COLUMNS} FROM sessions s WHERE s.id = ?"
        params: list[Any] = [session_id]
        if owner_id is not None:
            query += " AND s.owner_id = ?"
            params.append(owner_id)
        with self._use(conn) as active:
            row = active.execute(query, params).fetchone()
        return _session_from_row(row) if row else None

    def list_sessions(self, owner_id: int | None = None) -> list[SessionRow]:
        query = f"SELECT {_SESSION_COLUMNS} FROM sessions s"
        params: list[Any] = []
        if owner_id is not None:
            query += " WHERE s.owner_id = ?"
            params.append(owner_id)
        query += " ORDER BY s.date IS NULL, s.date ASC, s.name ASC"
        with self._use(None) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_session_from_row(r) for r in rows]

    def update_session(
        self,
        session_id: str,
        *,
        name: str,
        description: str | None = None,
        date: str | None = None,
        location: str | None = None,
    ) -> SessionRow:
        if not name or not name.strip():
            raise ValidationFailure("name", "Session name is required.")
        with self.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE sessions
                SET name = ?,
                    description = ?,
                    date = ?,
                    location = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    name.strip(),
                    _clean_optional(description),
                    _clean_optional(date),
                    _clean_optional(location),
                    _utc_now(),
                    session_id,
                ),
            )
            if cur.rowcount == 0:
                raise NotFoundError("Session", session_id)
            session = self.get_session(session_id, conn=conn)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def delete_session(self, session_id: str) -> bool:
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            return cur.rowcount > 0

    def count_sessions(self, owner_id: int | None, *, conn: sqlite3.Connection | None = None) -> int:
        with self._use(conn) as active:
            row = active.execute(
                "SELECT COUNT(1) FROM sessions WHERE owner_id IS ?",
                (owner_id,),
            ).fetchone()
        return int(row[0] or 0)

    # -----------------------------
    # Guests
    # -----------------------------
    def create_guest(
        self,
        *,
        name: str,
        email: str,
        owner_id: int | None,
        organization: str | None = None,
        is_vip: bool = False,
    ) -> GuestRow:
        if not name or not name.strip():
            raise ValidationFailure("name", "Guest name is required.")
        if not email or not email.strip():
            raise ValidationFailure("email", "Guest email is required.")

        guest_id = str(uuid.uuid4())
        qr_code = f"{GUEST_TOKEN_PREFIX}{guest_id}"
        now = _utc_now()
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO guests (
                        id, name, email, organization, qr_code, is_vip,
                        owner_id, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        guest_id,
                        name.strip(),
                        email.strip(),
                        _clean_optional(organization),
                        qr_code,
                        1 if is_vip else 0,
                        owner_id,
                        now,
                        now,
                    ),
                )
                guest = self.get_guest(guest_id, conn=conn)
        except sqlite3.IntegrityError:
            raise ConflictError("Email already exists.", "EMAIL_EXISTS")
        if guest is None:
            raise NotFoundError("Guest", guest_id)
        return guest

    def get_guest(
        self,
        guest_id: str,
        *,
        owner_id: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> GuestRow | None:
        query = f"SELECT {_GUEST_COLUMNS} FROM guests g WHERE g.id = ?"
        params: list[Any] = [guest_id]
        if owner_id is not None:
            query += " AND g.owner_id = ?"
            params.append(owner_id)
        with self._use(conn) as active:
            row = active.execute(query, params).fetchone()
        return _guest_from_row(row) if row else None

    def get_guest_by_qr_code(
        self,
        qr_code: str,
        *,
        owner_id: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> GuestRow | None:
        query = f"SELECT {_GUEST_COLUMNS} FROM guests g WHERE g.qr_code = ?"
        params: list[Any] = [qr_code]
        if owner_id is not None:
            query += " AND g.owner_id = ?"
            params.append(owner_id)
        with self._use(conn) as active:
            row = active.execute(query, params).fetchone()
        return _guest_from_row(row) if row else None

    def get_guest_by_email(self, email: str) -> GuestRow | None:
        with self._use(None) as conn:
            row = conn.execute(
                f"SELECT {_GUEST_COLUMNS} FROM guests g WHERE g.email = ? COLLATE NOCASE",
                (email.strip(),),
            ).fetchone()
        return _guest_from_row(row) if row else None

    def list_guests(self, owner_id: int | None = None) -> list[GuestRow]:
        query = f"SELECT {_GUEST_COLUMNS} FROM guests g"
        params: list[Any] = []
        if owner_id is not None:
            query += " WHERE g.owner_id = ?"
            params.append(owner_id)
        query += " ORDER BY g.name ASC"
        with self._use(None) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_guest_from_row(r) for r in rows]

    def update_guest(
        self,
        guest_id: str,
        *,
        name: str,
        email: str,
        organization: str | None = None,
        is_vip: bool = False,
    ) -> GuestRow:
        if not name or not name.strip():
            raise ValidationFailure("name", "Guest name is required.")
        if not email or not email.strip():
            raise ValidationFailure("email", "Guest email is required.")
        try:
            with self.transaction() as conn:
                cur = conn.execute(
                    """
                    UPDATE guests
                    SET name = ?,
                        email = ?,
                        organization = ?,
                        is_vip = ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        name.strip(),
                        email.strip(),
                        _clean_optional(organization),
                        1 if is_vip else 0,
                        _utc_now(),
                        guest_id,
                    ),
                )
                if cur.rowcount == 0:
                    raise NotFoundError("Guest", guest_id)
                guest = self.get_guest(guest_id, conn=conn)
        except sqlite3.IntegrityError:
            raise ConflictError("Email already exists.", "EMAIL_EXISTS")
        if guest is None:
            raise NotFoundError("Guest", guest_id)
        return guest

    def delete_guest(self, guest_id: str) -> bool:
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM guests WHERE id = ?", (guest_id,))
            return cur.rowcount > 0

    def count_guests(self, owner_id: int | None, *, conn: sqlite3.Connection | None = None) -> int:
        with self._use(conn) as active:
            row = active.execute(
                "SELECT COUNT(1) FROM guests WHERE owner_id IS ?",
                (owner_id,),
            ).fetchone()
        return int(row[0] or 0)

    # -----------------------------
    # Attendance
    # -----------------------------
    def get_attendance_record(
        self,
        guest_id: str,
        session_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> AttendanceRow | None:
        with self._use(conn) as active:
            row = active.execute(
                f"""
                SELECT {_ATTENDANCE_COLUMNS}
                FROM attendance a
                WHERE a.guest_id = ? AND a.session_id = ?
                """,
                (guest_id, session_id),
            ).fetchone()
        return _attendance_from_row(row) if row else None

    def get_attendance_by_id(
        self,
        attendance_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> AttendanceRow | None:
        with self._use(conn) as active:
            row = active.execute(
                f"SELECT {_ATTENDANCE_COLUMNS} FROM attendance a WHERE a.id = ?",
                (attendance_id,),
            ).fetchone()
        return _attendance_from_row(row) if row else None

    def create_attendance(
        self,
        *,
        guest_id: str,
        session_id: str,
        recorded_by: int | None,
        timestamp: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> AttendanceRow:
        """
        Insert one attendance row.

        Raises ``sqlite3.IntegrityError`` when the (guest, session) pair is
        already recorded; callers decide what a collision means.
        """
        record: AttendanceRow = {
            "id": str(uuid.uuid4()),
            "guest_id": guest_id,
            "session_id": session_id,
            "timestamp": timestamp or _utc_now(),
            "recorded_by": recorded_by,
        }
        with self._use(conn) as active:
            active.execute(
                """
                INSERT INTO attendance (id, guest_id, session_id, timestamp, recorded_by)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    record["id"],
                    record["guest_id"],
                    record["session_id"],
                    record["timestamp"],
                    record["recorded_by"],
                ),
            )
        return record

    def delete_attendance(self, attendance_id: str) -> bool:
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM attendance WHERE id = ?", (attendance_id,))
            return cur.rowcount > 0

    def count_session_attendance(
        self,
        session_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        with self._use(conn) as active:
            row = active.execute(
                "SELECT COUNT(1) FROM attendance WHERE session_id = ?",
                (session_id,),
            ).fetchone()
        return int(row[0] or 0)

    def count_session_attendance_in_scope(
        self,
        session_id: str,
        owner_id: int | None,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        with self._use(conn) as active:
            row = active.execute(
                """
                SELECT COUNT(1)
                FROM attendance a
                JOIN guests g ON g.id = a.guest_id
                WHERE a.session_id = ? AND g.owner_id IS ?
                """,
                (session_id, owner_id),
            ).fetchone()
        return int(row[0] or 0)

    def count_guest_attendance(self, guest_id: str) -> int:
        with self._use(None) as conn:
            row = conn.execute(
                "SELECT COUNT(1) FROM attendance WHERE guest_id = ?",
                (guest_id,),
            ).fetchone()
        return int(row[0] or 0)

    def count_guest_attendance_in_scope(
        self,
        guest_id: str,
        owner_id: int | None,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        with self._use(conn) as active:
            row = active.execute(
                """
                SELECT COUNT(1)
                FROM attendance a
                JOIN sessions s ON s.id = a.session_id
                WHERE a.guest_id = ? AND s.owner_id IS ?
                """,
                (guest_id, owner_id),
            ).fetchone()
        return int(row[0] or 0)

    def list_attendance(self, owner_id: int | None = None) -> list[AttendanceRow]:
        query = f"""
            SELECT {_ATTENDANCE_COLUMNS}
            FROM attendance a
            JOIN sessions s ON s.id = a.session_id
            JOIN guests g ON g.id = a.guest_id
        """
        params: list[Any] = []
        if owner_id is not None:
            query += " WHERE s.owner_id = ? OR g.owner_id = ?"
            params.extend([owner_id, owner_id])
        query += " ORDER BY a.timestamp DESC, a.rowid DESC"
        with self._use(None) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_attendance_from_row(r) for r in rows]

    def list_guest_sessions(self, guest_id: str) -> list[SessionRow]:
        with self._use(None) as conn:
            rows = conn.execute(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM sessions s
                JOIN attendance a ON a.session_id = s.id
                WHERE a.guest_id = ?
                ORDER BY s.date ASC, s.name ASC
                """,
                (guest_id,),
            ).fetchall()
        return [_session_from_row(r) for r in rows]

    def list_session_attendees(self, session_id: str) -> list[GuestRow]:
        with self._use(None) as conn:
            rows = conn.execute(
                f"""
                SELECT {_GUEST_COLUMNS}
                FROM guests g
                JOIN attendance a ON a.guest_id = g.id
                WHERE a.session_id = ?
                ORDER BY g.name ASC
                """,
                (session_id,),
            ).fetchall()
        return [_guest_from_row(r) for r in rows]

    def list_recent_attendance(self, limit: int, owner_id: int | None = None) -> list[RecentCheckInRow]:
        if limit <= 0:
            return []
        query = f"""
            SELECT {_ATTENDANCE_COLUMNS}, g.name, s.name
            FROM attendance a
            JOIN sessions s ON s.id = a.session_id
            JOIN guests g ON g.id = a.guest_id
        """
        params: list[Any] = []
        if owner_id is not None:
            query += " WHERE s.owner_id = ?"
            params.append(owner_id)
        query += " ORDER BY a.timestamp DESC, a.rowid DESC LIMIT ?"
        params.append(limit)
        with self._use(None) as conn:
            rows = conn.execute(query, params).fetchall()

        out: list[RecentCheckInRow] = []
        for row in rows:
            base = _attendance_from_row(row[:5])
            out.append(
                {
                    **base,
                    "guest_name": str(row[5]),
                    "session_name": str(row[6]),
                }
            )
        return out

    # -----------------------------
    # VIP access
    # -----------------------------
    def add_vip_access(
        self,
        guest_id: str,
        session_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> VipAccessRow:
        """Insert a grant, or return the existing one for the pair."""
        with self._use(conn) as active:
            active.execute(
                """
                INSERT OR IGNORE INTO vip_access (id, guest_id, session_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (str(uuid.uuid4()), guest_id, session_id, _utc_now()),
            )
            row = active.execute(
                """
                SELECT id, guest_id, session_id, created_at
                FROM vip_access
                WHERE guest_id = ? AND session_id = ?
                """,
                (guest_id, session_id),
            ).fetchone()
        return {
            "id": str(row[0]),
            "guest_id": str(row[1]),
            "session_id": str(row[2]),
            "created_at": str(row[3]),
        }

    def remove_vip_access(self, guest_id: str, session_id: str) -> bool:
        with self.transaction() as conn:
            cur = conn.execute(
                "DELETE FROM vip_access WHERE guest_id = ? AND session_id = ?",
                (guest_id, session_id),
            )
            return cur.rowcount > 0

    def has_vip_access(
        self,
        guest_id: str,
        session_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        with self._use(conn) as active:
            row = active.execute(
                "SELECT 1 FROM vip_access WHERE guest_id = ? AND session_id = ?",
                (guest_id, session_id),
            ).fetchone()
        return row is not None

    def count_vip_access(self, session_id: str, *, conn: sqlite3.Connection | None = None) -> int:
        with self._use(conn) as active:
            row = active.execute(
                "SELECT COUNT(1) FROM vip_access WHERE session_id = ?",
                (session_id,),
            ).fetchone()
        return int(row[0] or 0)

    def list_vip_guests(self, session_id: str) -> list[GuestRow]:
        with self._use(None) as conn:
            rows = conn.execute(
                f"""
                SELECT {_GUEST_COLUMNS}
                FROM guests g
                JOIN vip_access va ON va.guest_id = g.id
                WHERE va.session_id = ?
                ORDER BY g.name ASC
                """,
                (session_id,),
            ).fetchall()
        return [_guest_from_row(r) for r in rows]

    def list_guest_vip_sessions(self, guest_id: str) -> list[SessionRow]:
        with self._use(None) as conn:
            rows = conn.execute(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM sessions s
                JOIN vip_access va ON va.session_id = s.id
                WHERE va.guest_id = ? AND s.is_vip = 1
                ORDER BY s.date ASC, s.name ASC
                """,
                (guest_id,),
            ).fetchall()
        return [_session_from_row(r) for r in rows]

    # -----------------------------
    # Resets
    # -----------------------------
    def clear_attendance(self, owner_id: int | None = None) -> int:
        """
        Delete attendance rows and return how many were removed.

        With ``owner_id`` only rows at sessions that owner holds are removed.
        """
        with self.transaction() as conn:
            if owner_id is None:
                cur = conn.execute("DELETE FROM attendance;")
            else:
                cur = conn.execute(
                    """
                    DELETE FROM attendance
                    WHERE session_id IN (SELECT id FROM sessions WHERE owner_id = ?)
                    """,
                    (owner_id,),
                )
            return int(cur.rowcount)

    def clear_all_tables(self, owner_id: int | None = None) -> None:
        """
        Delete sessions, guests, attendance and VIP grants; users are kept.

        With ``owner_id`` only that owner's sessions and guests go, and the
        schema cascades take their attendance and grants with them.
        """
        with self.transaction() as conn:
            cur = conn.cursor()
            if owner_id is None:
                cur.execute("DELETE FROM attendance;")
                cur.execute("DELETE FROM vip_access;")
                cur.execute("DELETE FROM guests;")
                cur.execute("DELETE FROM sessions;")
                return
            cur.execute("DELETE FROM sessions WHERE owner_id = ?", (owner_id,))
            cur.execute("DELETE FROM guests WHERE owner_id = ?", (owner_id,))
