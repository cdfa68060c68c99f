import sqlite3
import time

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from backend.deps import get_store
from backend.security import Actor, Role, issue_session_token, require_capability, require_session
from database.db import EntityStore

router = APIRouter()


class UserLogin(BaseModel):
    username: str
    password: str


class UserCreate(BaseModel):
    username: str
    password: str
    role: Role = Role.SCANNER


@router.post("/auth/login")
def login(payload: UserLogin, request: Request, store: EntityStore = Depends(get_store)):
    username = payload.username.strip()
    password = payload.password.strip()

    if not username:
        raise HTTPException(status_code=400, detail="Username is required.")
    if not password:
        raise HTTPException(status_code=400, detail="Password is required.")

    try:
        user = store.verify_user_credentials(username, password)
    except sqlite3.OperationalError:
        # Self-heal when the schema is missing (e.g. lifespan skipped).
        try:
            store.create_tables()
            user = store.verify_user_credentials(username, password)
        except sqlite3.OperationalError:
            raise HTTPException(
                status_code=503,
                detail="Authentication service unavailable. Please retry.",
            )

    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    login_history = store.record_login(
        user["id"],
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    token, claims = issue_session_token(user["username"], user_id=user["id"], role=user["role"])
    now = int(time.time())
    return {
        "access_token": token,
        "token_type": "bearer",
        "user_id": user["id"],
        "username": claims["sub"],
        "role": claims["role"],
        "expires_at": claims["exp"],
        "expires_in": max(0, int(claims["exp"]) - now),
        "login_history": login_history,
    }


@router.get("/auth/me")
def auth_me(session: dict = Depends(require_session), store: EntityStore = Depends(get_store)):
    uid = session.get("uid")
    return {
        "user_id": uid,
        "username": session.get("sub"),
        "role": session.get("role"),
        "expires_at": session.get("exp"),
        "issued_at": session.get("iat"),
        "login_history": store.get_login_history(uid) if isinstance(uid, int) else [],
    }


@router.post("/auth/users", status_code=201)
def create_user(
    payload: UserCreate,
    store: EntityStore = Depends(get_store),
    _actor: Actor = Depends(require_capability("manage_users")),
):
    return store.create_user(payload.username, payload.password, payload.role.value)
