from __future__ import annotations

from typing import Any, Optional

from models import AuditLog
from utils import AuthContext, iso_utc_now, new_log_id, parse_json_dict, safe_json_string


def append_audit(
    db,
    *,
    entityType: str,
    entityId: str,
    action: str,
    stageTag: str,
    actor: AuthContext | None,
    fromState: str = "",
    toState: str = "",
    remark: str = "",
    meta: Any = None,
    at: Optional[str] = None,
) -> None:
    if meta is None:
        meta_json = "{}"
    elif isinstance(meta, str):
        meta_json = meta
    else:
        meta_json = safe_json_string(meta, "{}")

    db.add(
        AuditLog(
            logId=new_log_id(),
            entityType=str(entityType or ""),
            entityId=str(entityId or ""),
            action=str(action or "").upper(),
            fromState=str(fromState or ""),
            toState=str(toState or ""),
            stageTag=str(stageTag or ""),
            remark=str(remark or ""),
            actorUserId=str(actor.userId if actor else "SYSTEM"),
            actorRole=str(actor.role if actor else "SYSTEM"),
            at=str(at or iso_utc_now()),
            metaJson=meta_json,
        )
    )


def actor_id(auth: AuthContext | None) -> str:
    if not auth or not auth.valid:
        return "SYSTEM"
    return str(auth.userId or auth.username or "SYSTEM")


def load_json_snapshot(raw: Any) -> dict[str, bool]:
    return {str(k): v is True for k, v in parse_json_dict(raw).items()}


def parse_paging(data: dict, *, default_size: int = 50, max_size: int = 200) -> tuple[int, int]:
    try:
        page = max(1, int(data.get("page") or 1))
    except Exception:
        page = 1
    try:
        size = int(data.get("pageSize") or default_size)
    except Exception:
        size = default_size
    size = max(1, min(max_size, size))
    return page, size
