import base64
import hashlib
import hmac
import json
import time
from enum import Enum
from typing import Any, Callable, TypedDict

from fastapi import Depends, Header, HTTPException

from backend import config


class Role(str, Enum):
    ADMIN = "admin"
    SCANNER = "scanner"


class Actor(TypedDict):
    user_id: int | None
    username: str
    role: Role


# operation -> roles allowed to perform it
CAPABILITIES: dict[str, frozenset[Role]] = {
    "record_check_in": frozenset({Role.ADMIN, Role.SCANNER}),
    "delete_check_in": frozenset({Role.ADMIN, Role.SCANNER}),
    "view_sessions": frozenset({Role.ADMIN, Role.SCANNER}),
    "view_guests": frozenset({Role.ADMIN, Role.SCANNER}),
    "view_attendance": frozenset({Role.ADMIN, Role.SCANNER}),
    "lookup_guest_token": frozenset({Role.ADMIN, Role.SCANNER}),
    "manage_sessions": frozenset({Role.ADMIN}),
    "manage_guests": frozenset({Role.ADMIN}),
    "manage_vip": frozenset({Role.ADMIN}),
    "view_analytics": frozenset({Role.ADMIN}),
    "manage_users": frozenset({Role.ADMIN}),
    "reset_data": frozenset({Role.ADMIN}),
}


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload_b64: str) -> str:
    digest = hmac.new(
        config.SIGNING_KEY.encode("utf-8"),
        payload_b64.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def issue_session_token(username: str, *, user_id: int, role: Role | str) -> tuple[str, dict[str, Any]]:
    now = int(time.time())
    exp = now + config.AUTH_TOKEN_TTL_SECONDS
    payload = {
        "sub": username.strip(),
        "uid": int(user_id),
        "role": Role(role).value,
        "iat": now,
        "exp": exp,
    }
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = _b64url_encode(payload_json.encode("utf-8"))
    token = f"{payload_b64}.{_sign(payload_b64)}"
    return token, payload


def decode_session_token(token: str) -> dict[str, Any] | None:
    if not token or "." not in token:
        return None

    payload_b64, signature = token.split(".", 1)
    expected = _sign(payload_b64)
    if not hmac.compare_digest(signature, expected):
        return None

    try:
        payload_raw = _b64url_decode(payload_b64).decode("utf-8")
        payload = json.loads(payload_raw)
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None

    sub = payload.get("sub")
    exp = payload.get("exp")
    role = payload.get("role")
    if not isinstance(sub, str) or not sub.strip():
        return None
    if not isinstance(exp, int):
        return None
    if exp < int(time.time()):
        return None
    if role not in {r.value for r in Role}:
        return None

    return payload


def require_session(authorization: str | None = Header(default=None)) -> dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token.")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization scheme.")

    payload = decode_session_token(token.strip())
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired session token.")

    return payload


def actor_from_session(session: dict[str, Any]) -> Actor:
    uid = session.get("uid")
    return {
        "user_id": int(uid) if isinstance(uid, int) else None,
        "username": str(session["sub"]),
        "role": Role(session["role"]),
    }


def require_capability(capability: str) -> Callable[..., Actor]:
    """Build a dependency that admits only roles listed for ``capability``."""
    allowed = CAPABILITIES[capability]

    def _dependency(session: dict[str, Any] = Depends(require_session)) -> Actor:
        actor = actor_from_session(session)
        if actor["role"] not in allowed:
            raise HTTPException(
                status_code=403,
                detail="Forbidden: insufficient permissions.",
            )
        return actor

    return _dependency


def owner_scope(actor: Actor) -> int | None:
    """Admins work inside their own records; scanners read across owners."""
    if actor["role"] == Role.ADMIN:
        return actor["user_id"]
    return None
