import base64
import hashlib
import hmac
import json
import time
from typing import Any, Callable

from fastapi import Depends, Header, HTTPException

from idscan.config import AUTH_TOKEN_TTL_SECONDS, SIGNING_KEY
from idscan.roles import Role, ScanSessionContext


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload_b64: str) -> str:
    digest = hmac.new(
        SIGNING_KEY.encode("utf-8"),
        payload_b64.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def issue_session_token(
    subject: str,
    *,
    role: str = Role.SUPER_ADMIN.value,
    event_id: int | None = None,
) -> tuple[str, dict[str, Any]]:
    now = int(time.time())
    exp = now + AUTH_TOKEN_TTL_SECONDS
    payload: dict[str, Any] = {
        "sub": subject.strip(),
        "role": Role(role).value,
        "iat": now,
        "exp": exp,
    }
    if event_id is not None:
        payload["event_id"] = int(event_id)
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
    if not isinstance(sub, str) or not sub.strip():
        return None
    if not isinstance(exp, int):
        return None
    if exp < int(time.time()):
        return None
    if payload.get("role", Role.SUPER_ADMIN.value) not in Role._value2member_map_:
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


def require_context(claims: dict[str, Any] = Depends(require_session)) -> ScanSessionContext:
    return ScanSessionContext.from_claims(claims)


def require_capability(capability: str) -> Callable[..., ScanSessionContext]:
    """Dependency factory: 403 unless the session's role grants `capability`."""

    def dependency(context: ScanSessionContext = Depends(require_context)) -> ScanSessionContext:
        if not context.has(capability):
            raise HTTPException(
                status_code=403,
                detail=f"Role {context.role.value!r} is not allowed to {capability.replace('_', ' ')}.",
            )
        return context

    return dependency
