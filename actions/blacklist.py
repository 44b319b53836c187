from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, or_, select

from actions.helpers import actor_id, append_audit
from models import BlacklistEntry
from utils import (
    AuthContext,
    BlacklistedError,
    ConflictError,
    NotFoundError,
    ValidationError,
    iso_utc_now,
    new_prefixed_id,
    parse_datetime_maybe,
    to_iso_utc,
)


log = logging.getLogger(__name__)


def normalize_expiry(value: Any) -> str:
    """Empty means permanent; anything else must parse as a date/time."""
    if value is None or str(value).strip() == "":
        return ""
    dt = parse_datetime_maybe(value)
    if not dt:
        raise ValidationError("Invalid expiresAt")
    return to_iso_utc(dt)


def _is_expired(entry: BlacklistEntry, now: datetime) -> bool:
    exp = parse_datetime_maybe(entry.expiresAt)
    return bool(exp and exp <= now)


def find_entries(db, discord_id: Optional[str] = None, handle: Optional[str] = None) -> list[BlacklistEntry]:
    conds = []
    did = str(discord_id or "").strip()
    h = str(handle or "").strip().lower()
    if did:
        conds.append(BlacklistEntry.discordId == did)
    if h:
        conds.append(func.lower(BlacklistEntry.username) == h)
    if not conds:
        return []
    return list(db.execute(select(BlacklistEntry).where(or_(*conds))).scalars().all())


def check_blacklist(db, discord_id: Optional[str] = None, handle: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    """
    Look an identity up by Discord id OR handle (case-insensitive).

    A live entry blocks. An entry past its expiry does not block but is still
    reported with `expired=True`.
    """
    now = now or datetime.now(timezone.utc)
    entries = find_entries(db, discord_id, handle)
    if not entries:
        return {"blocked": False}

    live = [e for e in entries if not _is_expired(e, now)]
    if live:
        e = live[0]
        return {
            "blocked": True,
            "entryId": e.entryId,
            "reason": e.reason or "",
            "expiresAt": e.expiresAt or None,
            "username": e.username or "",
        }

    e = entries[0]
    return {
        "blocked": False,
        "expired": True,
        "entryId": e.entryId,
        "reason": e.reason or "",
        "expiresAt": e.expiresAt or None,
        "username": e.username or "",
    }


def assert_not_blacklisted(db, discord_id: Optional[str] = None, handle: Optional[str] = None) -> dict:
    res = check_blacklist(db, discord_id, handle)
    if res.get("blocked"):
        log.info("blacklist hit discordId=%s handle=%s entryId=%s", discord_id, handle, res.get("entryId"))
        raise BlacklistedError(res.get("reason") or "", res.get("expiresAt") or "")
    return res


def add_entry_if_absent(
    db,
    *,
    discord_id: Optional[str],
    username: str,
    reason: str,
    expires_at: str,
    added_by: str,
) -> tuple[BlacklistEntry, bool]:
    """Returns (entry, created). An existing entry for the identity is left untouched."""
    existing = find_entries(db, discord_id, username)
    if existing:
        return existing[0], False

    now = iso_utc_now()
    entry = BlacklistEntry(
        entryId=new_prefixed_id("BL"),
        discordId=str(discord_id or "").strip() or None,
        username=str(username or "").strip(),
        reason=str(reason or "").strip(),
        expiresAt=expires_at,
        addedBy=added_by,
        createdAt=now,
        updatedAt=now,
    )
    db.add(entry)
    db.flush()
    return entry, True


def serialize_entry(e: BlacklistEntry) -> dict[str, Any]:
    return {
        "entryId": e.entryId,
        "discordId": e.discordId,
        "username": e.username or "",
        "reason": e.reason or "",
        "expiresAt": e.expiresAt or None,
        "addedBy": e.addedBy or "",
        "createdAt": e.createdAt or "",
        "updatedAt": e.updatedAt or "",
    }


def _find_entry(db, entry_id: Any) -> BlacklistEntry:
    eid = str(entry_id or "").strip()
    if not eid:
        raise ValidationError("Missing entryId")
    e = db.execute(select(BlacklistEntry).where(BlacklistEntry.entryId == eid)).scalar_one_or_none()
    if not e:
        raise NotFoundError("Blacklist entry not found")
    return e


def blacklist_list(data, auth: AuthContext | None, db, cfg):
    rows = db.execute(select(BlacklistEntry).order_by(BlacklistEntry.createdAt.desc())).scalars().all()
    return {"items": [serialize_entry(e) for e in rows], "total": len(rows)}


def blacklist_check(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    discord_id = str(data.get("discordId") or "").strip()
    handle = str(data.get("username") or "").strip()
    if not discord_id and not handle:
        raise ValidationError("discordId or username is required")
    return check_blacklist(db, discord_id or None, handle or None)


def blacklist_stats(data, auth: AuthContext | None, db, cfg):
    now = datetime.now(timezone.utc)
    rows = db.execute(select(BlacklistEntry)).scalars().all()
    permanent = sum(1 for e in rows if not e.expiresAt)
    temporary = sum(1 for e in rows if e.expiresAt and not _is_expired(e, now))
    return {"total": len(rows), "permanent": permanent, "temporary": temporary, "expired": len(rows) - permanent - temporary}


def blacklist_create(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    discord_id = str(data.get("discordId") or "").strip()
    username = str(data.get("username") or "").strip()
    reason = str(data.get("reason") or "").strip()
    if not discord_id or not username or not reason:
        raise ValidationError("discordId, username and reason are required")

    expires_at = normalize_expiry(data.get("expiresAt"))
    dup = db.execute(select(BlacklistEntry).where(BlacklistEntry.discordId == discord_id)).scalar_one_or_none()
    if dup:
        raise ConflictError("This Discord ID is already blacklisted", details={"entryId": dup.entryId})

    entry, _ = add_entry_if_absent(
        db,
        discord_id=discord_id,
        username=username,
        reason=reason,
        expires_at=expires_at,
        added_by=actor_id(auth),
    )
    append_audit(
        db,
        entityType="BLACKLIST",
        entityId=entry.entryId,
        action="BLACKLIST_CREATE",
        stageTag="BLACKLIST",
        actor=auth,
        meta={"discordId": discord_id, "expiresAt": expires_at or None},
    )
    return serialize_entry(entry)


def blacklist_update(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    e = _find_entry(db, data.get("entryId"))
    if "reason" in data:
        reason = str(data.get("reason") or "").strip()
        if not reason:
            raise ValidationError("reason must not be empty")
        e.reason = reason
    if "expiresAt" in data:
        e.expiresAt = normalize_expiry(data.get("expiresAt"))
    e.updatedAt = iso_utc_now()
    append_audit(
        db,
        entityType="BLACKLIST",
        entityId=e.entryId,
        action="BLACKLIST_UPDATE",
        stageTag="BLACKLIST",
        actor=auth,
        meta={"expiresAt": e.expiresAt or None},
    )
    return serialize_entry(e)


def blacklist_delete(data, auth: AuthContext | None, db, cfg):
    e = _find_entry(db, (data or {}).get("entryId"))
    entry_id = e.entryId
    db.delete(e)
    append_audit(
        db,
        entityType="BLACKLIST",
        entityId=entry_id,
        action="BLACKLIST_DELETE",
        stageTag="BLACKLIST",
        actor=auth,
    )
    return {"entryId": entry_id, "deleted": True}
