from __future__ import annotations

import hashlib
import json
import os
import re
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from cachetools import TTLCache
from dateutil import parser as dt_parser

ALLOWED_ERROR_CODES = {
    "BAD_REQUEST",
    "AUTH_INVALID",
    "FORBIDDEN",
    "NOT_FOUND",
    "CONFLICT",
    "BLACKLISTED",
    "INTERNAL",
}

_CODE_MAP = {
    "BAD_JSON": "BAD_REQUEST",
    "VALIDATION_ERROR": "BAD_REQUEST",
    "UNKNOWN_ERROR": "INTERNAL",
    "ACTION_NOT_IMPLEMENTED": "BAD_REQUEST",
    "AUTH_REQUIRED": "AUTH_INVALID",
    "AUTH_USER_DISABLED": "AUTH_INVALID",
    "RBAC_DENIED": "FORBIDDEN",
    "ALREADY_EMPLOYED": "CONFLICT",
}


def map_error_code(code: str) -> str:
    c = str(code or "").upper().strip()
    if c in ALLOWED_ERROR_CODES:
        return c
    return _CODE_MAP.get(c, "INTERNAL")


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: int = 200, details: Optional[dict] = None):
        super().__init__(message)
        self.code = map_error_code(code)
        self.message = str(message or "")
        self.http_status = http_status
        self.details = details


class ValidationError(ApiError):
    """Malformed input or an operation that does not fit the record's current state."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("BAD_REQUEST", message, http_status=400, details=details)


class NotFoundError(ApiError):
    def __init__(self, message: str):
        super().__init__("NOT_FOUND", message, http_status=404)


class BlacklistedError(ApiError):
    """The identity has a live blacklist entry."""

    def __init__(self, reason: str, expires_at: str = ""):
        super().__init__(
            "BLACKLISTED",
            f"User is blacklisted: {reason}",
            http_status=400,
            details={"reason": reason, "expiresAt": expires_at or None},
        )
        self.reason = reason
        self.expires_at = expires_at


class ConflictError(ApiError):
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("CONFLICT", message, http_status=409, details=details)


def ok(data: Any, http_status: int = 200):
    return {"ok": True, "data": data}, http_status


def err(code: str, message: str, http_status: int = 200, details: Optional[dict] = None):
    body: dict[str, Any] = {"code": map_error_code(code), "message": str(message or "")}
    if details:
        body["details"] = details
    return {"ok": False, "error": body}, http_status


def iso_utc_now() -> str:
    dt = datetime.now(timezone.utc)
    # Match JS Date.toJSON() millisecond precision.
    dt = dt.replace(microsecond=(dt.microsecond // 1000) * 1000)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_iso_utc(dt: datetime) -> str:
    x = dt.astimezone(timezone.utc)
    x = x.replace(microsecond=(x.microsecond // 1000) * 1000)
    return x.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime_maybe(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value or "").strip()
        if not s:
            return None
        try:
            dt = dt_parser.parse(s)
        except Exception:
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def new_uuid() -> str:
    return str(uuid.uuid4())


def new_log_id() -> str:
    return f"LOG-{new_uuid()}"


def new_prefixed_id(prefix: str) -> str:
    return f"{prefix}-{os.urandom(8).hex()}"


def parse_json_body(raw_text: str) -> dict:
    try:
        obj = json.loads(raw_text or "{}")
    except Exception:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(obj, dict):
        raise ApiError("BAD_REQUEST", "JSON body must be an object")
    return obj


def safe_json_string(value: Any, fallback: str = "") -> str:
    try:
        return json.dumps(value)
    except Exception:
        return fallback


def parse_json_dict(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    try:
        obj = json.loads(str(raw or "") or "{}")
    except Exception:
        return {}
    return obj if isinstance(obj, dict) else {}


def redact_for_audit(obj: Any) -> Any:
    if not obj or not isinstance(obj, (dict, list)):
        return obj
    try:
        copy = json.loads(json.dumps(obj))
    except Exception:
        return obj

    secret_keys = {
        "token",
        "sessionToken",
        "botToken",
    }

    def _walk(x: Any) -> Any:
        if isinstance(x, dict):
            for k in list(x.keys()):
                if k in secret_keys:
                    x[k] = "[REDACTED]"
                else:
                    x[k] = _walk(x[k])
            return x
        if isinstance(x, list):
            return [_walk(v) for v in x]
        return x

    copy = _walk(copy)
    if isinstance(copy, dict) and isinstance(copy.get("items"), list):
        copy["items"] = f"[OMITTED:{len(copy['items'])}]"
    return copy


@dataclass(frozen=True)
class AuthContext:
    valid: bool
    userId: str
    username: str
    role: str
    expiresAt: str
    employeeId: str = ""


def normalize_role(role: Any) -> Optional[str]:
    r = str(role or "").strip().upper()
    return r or None


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "y", "on"}


class SimpleRateLimiter:
    def __init__(self):
        self._counts = TTLCache(maxsize=50_000, ttl=60)
        self._lock = threading.Lock()

    @staticmethod
    def _parse_limit_per_minute(limit: str) -> int:
        m = re.match(r"^\s*(\d+)\s+per\s+minute\s*$", str(limit or ""), re.IGNORECASE)
        if not m:
            return 300
        return int(m.group(1))

    def check(self, key: str, limit: str) -> None:
        max_per_minute = self._parse_limit_per_minute(limit)
        with self._lock:
            current = int(self._counts.get(key, 0)) + 1
            self._counts[key] = current
        if current > max_per_minute:
            raise ApiError("CONFLICT", "Rate limit exceeded", http_status=429)
