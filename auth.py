from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select

from cache_layer import cache_get, cache_set
from models import Session as DbSession, User
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, normalize_role, parse_datetime_maybe, sha256_hex


ROLES = ("ADMIN", "HR", "LEADERSHIP")

PUBLIC_ACTIONS: set[str] = set()

_ANY_STAFF = ["ADMIN", "HR", "LEADERSHIP"]

STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    "SESSION_VALIDATE": _ANY_STAFF,
    "GET_ME": _ANY_STAFF,
    "ONBOARDING_CONFIG_GET": _ANY_STAFF,
    "CONFIG_ITEMS_LIST": ["ADMIN", "HR"],
    "CONFIG_ITEM_CREATE": ["ADMIN"],
    "CONFIG_ITEM_UPDATE": ["ADMIN"],
    "CONFIG_ITEM_TOGGLE": ["ADMIN"],
    "CONFIG_ITEM_DELETE": ["ADMIN"],
    "CONFIG_ITEMS_REORDER": ["ADMIN"],
    "CONFIG_CACHE_INVALIDATE": ["ADMIN"],
    "APPLICANTS_LIST": _ANY_STAFF,
    "APPLICANT_GET": _ANY_STAFF,
    "APPLICANT_STATS": _ANY_STAFF,
    "APPLICANT_CREATE": ["ADMIN", "HR"],
    "APPLICANT_CRITERIA_UPDATE": ["ADMIN", "HR"],
    "APPLICANT_QUESTIONS_UPDATE": ["ADMIN", "HR"],
    "APPLICANT_ONBOARDING_UPDATE": ["ADMIN", "HR"],
    "APPLICANT_ASSIGN_ROLES": ["ADMIN", "HR"],
    "APPLICANT_INVITE_CREATE": ["ADMIN", "HR"],
    "APPLICANT_COMPLETE": ["ADMIN", "HR"],
    "APPLICANT_REJECT": ["ADMIN", "HR"],
    "APPLICANT_DELETE": ["ADMIN", "HR"],
    "DISCORD_MEMBER_SEARCH": ["ADMIN", "HR"],
    "BLACKLIST_LIST": _ANY_STAFF,
    "BLACKLIST_CHECK": _ANY_STAFF,
    "BLACKLIST_STATS": _ANY_STAFF,
    "BLACKLIST_CREATE": ["ADMIN", "HR", "LEADERSHIP"],
    "BLACKLIST_UPDATE": ["ADMIN", "LEADERSHIP"],
    "BLACKLIST_DELETE": ["ADMIN", "LEADERSHIP"],
    "EMPLOYEES_LIST": _ANY_STAFF,
    "EMPLOYEE_GET": _ANY_STAFF,
    "EMPLOYEE_TERMINATE": ["ADMIN", "LEADERSHIP"],
}


_SESSION_USER_PREFIX = "SESSION_USER:"


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def _invalid() -> AuthContext:
    return AuthContext(valid=False, userId="", username="", role="", expiresAt="")


def issue_session_token(
    db,
    *,
    user_id: str,
    username: str,
    role: str,
    session_ttl_minutes: int,
) -> dict[str, str]:
    token = "ST-" + uuid_hex_32() + uuid_hex_32()
    token_hash = sha256_hex(token)
    now = datetime.now(timezone.utc)
    expires = now + timedelta(minutes=session_ttl_minutes)

    issued_at = iso_utc_now()
    expires_at = expires.replace(microsecond=(expires.microsecond // 1000) * 1000).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )

    ses = DbSession(
        sessionId="SES-" + new_uuid(),
        tokenHash=token_hash,
        tokenPrefix=token[:12],
        userId=str(user_id or ""),
        username=str(username or ""),
        role=str(normalize_role(role) or ""),
        issuedAt=issued_at,
        expiresAt=expires_at,
        lastSeenAt=issued_at,
        revokedAt="",
        revokedBy="",
    )
    db.add(ses)
    return {"sessionToken": token, "expiresAt": expires_at}


def uuid_hex_32() -> str:
    return new_uuid().replace("-", "")


def _linked_employee_id(db, user_id: str) -> str:
    if not user_id:
        return ""
    key = f"{_SESSION_USER_PREFIX}{user_id}"
    cached = cache_get(key)
    if isinstance(cached, str):
        return cached
    user = db.execute(select(User).where(User.userId == user_id)).scalar_one_or_none()
    out = str(getattr(user, "employeeId", "") or "") if user else ""
    cache_set(key, out)
    return out


def validate_session_token(db, token: Any) -> AuthContext:
    if not token or not isinstance(token, str):
        return _invalid()

    token_hash = sha256_hex(token)
    ses = db.execute(select(DbSession).where(DbSession.tokenHash == token_hash)).scalar_one_or_none()
    if not ses:
        return _invalid()

    if getattr(ses, "revokedAt", ""):
        return _invalid()

    expires_at = getattr(ses, "expiresAt", "") or ""
    exp_dt = parse_datetime_maybe(expires_at)
    if exp_dt and exp_dt < datetime.now(timezone.utc):
        return _invalid()

    # Avoid writing on every request: update lastSeenAt at most once per interval.
    try:
        interval_s = int(str(os.getenv("SESSION_LAST_SEEN_UPDATE_SECONDS", "300") or "300"))
    except Exception:
        interval_s = 300

    if interval_s <= 0:
        ses.lastSeenAt = iso_utc_now()
    else:
        last_dt = parse_datetime_maybe(getattr(ses, "lastSeenAt", "") or "")
        if not last_dt or (datetime.now(timezone.utc) - last_dt).total_seconds() >= interval_s:
            ses.lastSeenAt = iso_utc_now()

    user_id = str(getattr(ses, "userId", "") or "")
    return AuthContext(
        valid=True,
        userId=user_id,
        username=str(getattr(ses, "username", "") or ""),
        role=str(normalize_role(getattr(ses, "role", "")) or ""),
        expiresAt=expires_at,
        employeeId=_linked_employee_id(db, user_id),
    )


def assert_permission(role: str, action: str) -> None:
    role_u = normalize_role(role) or ""
    action_u = str(action or "").upper().strip()

    if is_public_action(action_u):
        return

    allowed = STATIC_RBAC_PERMISSIONS.get(action_u)
    if not allowed:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")

    if not role_u:
        raise ApiError("AUTH_INVALID", "Login required")
    if role_u not in ROLES:
        raise ApiError("FORBIDDEN", f"Inactive or unknown role: {role_u}")

    if role_u not in allowed:
        raise ApiError("FORBIDDEN", f"Not allowed for role: {role_u}")


def serialize_auth(auth: AuthContext) -> dict[str, Any]:
    return {
        "valid": bool(auth.valid),
        "expiresAt": auth.expiresAt,
        "me": {"userId": auth.userId, "username": auth.username, "role": role_or_public(auth)},
    }


def role_or_public(auth: Optional[AuthContext]) -> str:
    if not auth or not auth.valid:
        return "PUBLIC"
    return normalize_role(auth.role) or "PUBLIC"
