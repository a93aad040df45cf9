import time
import sqlite3
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from database.db import (
    create_tables,
    get_event_by_id,
    get_event_from_pin,
    validate_daily_pin,
    verify_admin_credentials,
)
from idscan.roles import CAPABILITIES, Role, ScanSessionContext, highest_role
from idscan.security import issue_session_token, require_context

router = APIRouter()


class AdminLogin(BaseModel):
    username: str
    password: str


class PinLogin(BaseModel):
    email: str
    pin: str
    role: Literal["rotc_officer", "usc_officer"] | None = None


def token_response(token: str, claims: dict[str, Any]) -> dict:
    now = int(time.time())
    return {
        "access_token": token,
        "token_type": "bearer",
        "username": claims["sub"],
        "role": claims["role"],
        "event_id": claims.get("event_id"),
        "expires_at": claims["exp"],
        "expires_in": max(0, int(claims["exp"]) - now),
    }


def _issue_admin_token(payload: AdminLogin) -> dict:
    username = payload.username.strip()
    password = payload.password.strip()

    if not username:
        raise HTTPException(status_code=400, detail="Username is required.")
    if not password:
        raise HTTPException(status_code=400, detail="Password is required.")

    try:
        admin = verify_admin_credentials(username, password)
    except sqlite3.OperationalError:
        # Self-heal when DB schema is missing (e.g., startup skipped).
        try:
            create_tables()
            admin = verify_admin_credentials(username, password)
        except sqlite3.OperationalError:
            raise HTTPException(
                status_code=503,
                detail="Authentication service unavailable. Please retry.",
            )

    if not admin:
        raise HTTPException(status_code=401, detail="Invalid admin credentials.")

    token, claims = issue_session_token(admin["username"], role="super_admin")
    return token_response(token, claims)


@router.post("/auth/login")
def admin_login(payload: AdminLogin):
    return _issue_admin_token(payload)


@router.post("/auth/pin")
def pin_login(payload: PinLogin):
    email = payload.email.strip().lower()
    pin = payload.pin.strip()

    if not email:
        raise HTTPException(status_code=400, detail="Email is required.")
    if not pin:
        raise HTTPException(status_code=400, detail="PIN is required.")

    # without a role, try every officer role and keep the strongest match
    candidates = [payload.role] if payload.role else [r.value for r in Role if r.is_officer]
    try:
        matched = [c for c in candidates if validate_daily_pin(email, pin, c)]
        role = highest_role(matched)
        event_id = get_event_from_pin(pin, role.value, email=email) if role else None
    except sqlite3.OperationalError:
        raise HTTPException(status_code=503, detail="Authentication service unavailable. Please retry.")

    if role is None:
        raise HTTPException(status_code=401, detail="Invalid or expired PIN.")

    if event_id is not None and get_event_by_id(event_id) is None:
        event_id = None

    token, claims = issue_session_token(email, role=role.value, event_id=event_id)
    return token_response(token, claims)


@router.get("/auth/me")
def auth_me(context: ScanSessionContext = Depends(require_context)):
    return {
        "username": context.subject,
        "role": context.role.value,
        "event_id": context.event_id,
        "capabilities": sorted(CAPABILITIES[context.role]),
    }
