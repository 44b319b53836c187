"""Admin-managed onboarding lists (criteria, questions, checklist) and their read cache."""

from __future__ import annotations

import math
import threading
import time
from typing import Any, Callable, Optional

from sqlalchemy import event, func, select

from actions.helpers import append_audit
from cache_layer import InMemoryTTLCache
from models import ConfigItem
from utils import ApiError, AuthContext, NotFoundError, ValidationError, as_bool, iso_utc_now, new_prefixed_id


CONFIG_KINDS = ("criteria", "questions", "onboarding")

DEFAULT_TTL_SECONDS = 300

_FALLBACK_LABELS: dict[str, list[str]] = {
    "criteria": [
        "Stabilisation licence checked",
        "Visa level checked",
        "No criminal record (7 days)",
        "Appropriate appearance",
        "No faction lock",
        "No outstanding invoices",
        "Searched",
        "Blacklist checked",
        "Service handbook handed out",
        "Recruitment test",
        "Roleplay scenario and small talk",
    ],
    "questions": [
        "What do you do before starting your shift?",
        "What is the crisis hotline number?",
        "Who is the chief of police?",
        "What are the speed limits inside and outside the city?",
        "What is the tackle command?",
        "Who has to follow an order and why? (chain of command)",
        "Who approves absences and time off?",
        "Name three patrol vehicles.",
        "Which faction radio frequency do we use?",
        "How do you behave at an accident scene?",
        "What is the difference between a reminder and a warning, and how long do they stay on record?",
    ],
    "onboarding": [
        "Discord account linked",
        "Rank roles assigned",
        "Uniform handed out",
        "Patrol vehicle briefing",
        "Radio and dispatch briefing",
    ],
}

FALLBACK_ITEMS: dict[str, tuple[dict[str, str], ...]] = {
    kind: tuple({"id": f"fallback-{kind}-{i + 1}", "label": label} for i, label in enumerate(labels))
    for kind, labels in _FALLBACK_LABELS.items()
}

# Loader used on a cache miss: (db, kind) -> active items in display order.
ConfigProvider = Callable[[Any, str], list[dict[str, str]]]


def normalize_kind(kind: Any) -> str:
    k = str(kind or "").strip().lower()
    if k not in CONFIG_KINDS:
        raise ValidationError(f"Invalid config kind: {kind}")
    return k


def load_active_items(db, kind: str) -> list[dict[str, str]]:
    rows = (
        db.execute(
            select(ConfigItem)
            .where(ConfigItem.kind == kind)
            .where(ConfigItem.isActive == True)  # noqa: E712
            .order_by(ConfigItem.sortOrder.asc(), ConfigItem.label.asc())
        )
        .scalars()
        .all()
    )
    return [{"id": r.itemId, "label": r.label or ""} for r in rows]


class ConfigCache:
    """
    Read-through cache over the three onboarding lists.

    Entries live for `ttl_seconds`; a kind with zero active items resolves to
    its fallback list so callers never see an empty list. Mutations must call
    `invalidate` so the next read goes back to the provider.
    """

    def __init__(
        self,
        provider: ConfigProvider = load_active_items,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._provider = provider
        self._store = InMemoryTTLCache(ttl=ttl_seconds, max_items=len(CONFIG_KINDS) * 4, timer=timer)

    def get(self, db, kind: str) -> list[dict[str, str]]:
        k = normalize_kind(kind)
        cached = self._store.get(k)
        if cached is None:
            items = tuple({"id": str(it["id"]), "label": str(it.get("label") or "")} for it in self._provider(db, k) or [])
            cached = items or FALLBACK_ITEMS[k]
            self._store.set(k, cached)
        return [dict(it) for it in cached]

    def get_ids(self, db, kind: str) -> list[str]:
        return [it["id"] for it in self.get(db, kind)]

    def invalidate(self, kind: Optional[str] = None) -> None:
        if kind is None:
            self._store.clear()
            return
        self._store.delete(normalize_kind(kind))


_cache_lock = threading.Lock()
_config_cache: Optional[ConfigCache] = None


def configure_config_cache(ttl_seconds: int = DEFAULT_TTL_SECONDS, provider: ConfigProvider = load_active_items) -> ConfigCache:
    global _config_cache
    with _cache_lock:
        _config_cache = ConfigCache(provider=provider, ttl_seconds=ttl_seconds)
        return _config_cache


def config_cache() -> ConfigCache:
    global _config_cache
    with _cache_lock:
        if _config_cache is None:
            _config_cache = ConfigCache()
        return _config_cache


def required_correct(total: int, ratio: float) -> int:
    # Epsilon keeps float noise (e.g. 0.7 * 30) from rounding up a whole number.
    return int(math.ceil(ratio * max(0, int(total)) - 1e-9))


def _invalidate_after_write(db, kind: Optional[str]) -> None:
    # A read racing this transaction may still cache the old list, so drop it
    # again once the new rows are visible.
    config_cache().invalidate(kind)
    event.listen(db, "after_commit", lambda _session: config_cache().invalidate(kind), once=True)


def _require_admin(auth: AuthContext | None) -> AuthContext:
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Login required")
    return auth


def _serialize_item(row: ConfigItem) -> dict[str, Any]:
    return {
        "itemId": row.itemId,
        "kind": row.kind,
        "label": row.label or "",
        "sortOrder": int(row.sortOrder or 0),
        "isActive": bool(row.isActive),
        "updatedAt": row.updatedAt or "",
        "updatedBy": row.updatedBy or "",
    }


def _find_item(db, item_id: Any) -> ConfigItem:
    iid = str(item_id or "").strip()
    if not iid:
        raise ValidationError("Missing itemId")
    row = db.execute(select(ConfigItem).where(ConfigItem.itemId == iid)).scalar_one_or_none()
    if not row:
        raise NotFoundError("Config item not found")
    return row


def _parse_sort_order(value: Any) -> int:
    try:
        return int(value)
    except Exception:
        raise ValidationError("sortOrder must be an integer")


def onboarding_config_get(data, auth: AuthContext | None, db, cfg):
    cache = config_cache()
    questions = cache.get(db, "questions")
    ratio = float(getattr(cfg, "QUESTIONS_PASS_RATIO", 0.7))
    return {
        "criteria": cache.get(db, "criteria"),
        "questions": questions,
        "onboarding": cache.get(db, "onboarding"),
        "questionsPassRatio": ratio,
        "questionsRequired": required_correct(len(questions), ratio),
    }


def config_items_list(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    q = select(ConfigItem)
    if data.get("kind"):
        q = q.where(ConfigItem.kind == normalize_kind(data.get("kind")))
    if not as_bool(data.get("includeInactive", True)):
        q = q.where(ConfigItem.isActive == True)  # noqa: E712
    rows = db.execute(q.order_by(ConfigItem.kind.asc(), ConfigItem.sortOrder.asc(), ConfigItem.label.asc())).scalars().all()
    return {"items": [_serialize_item(r) for r in rows]}


def config_item_create(data, auth: AuthContext | None, db, cfg):
    auth = _require_admin(auth)
    data = data or {}
    kind = normalize_kind(data.get("kind"))
    label = str(data.get("label") or "").strip()
    if not label:
        raise ValidationError("Missing label")

    dup = db.execute(select(ConfigItem).where(ConfigItem.kind == kind).where(ConfigItem.label == label)).scalar_one_or_none()
    if dup:
        raise ApiError("CONFLICT", "An item with this label already exists", http_status=409)

    if data.get("sortOrder") is not None:
        sort_order = _parse_sort_order(data.get("sortOrder"))
    else:
        current_max = db.execute(select(func.max(ConfigItem.sortOrder)).where(ConfigItem.kind == kind)).scalar()
        sort_order = int(current_max) + 1 if current_max is not None else 0

    now = iso_utc_now()
    row = ConfigItem(
        itemId=new_prefixed_id("CFG"),
        kind=kind,
        label=label,
        sortOrder=sort_order,
        isActive=as_bool(data.get("isActive", True)),
        createdAt=now,
        createdBy=auth.userId,
        updatedAt=now,
        updatedBy=auth.userId,
    )
    db.add(row)
    append_audit(
        db,
        entityType="CONFIG_ITEM",
        entityId=row.itemId,
        action="CONFIG_ITEM_CREATE",
        stageTag="ADMIN_ONBOARDING_CONFIG",
        actor=auth,
        meta={"kind": kind, "label": label},
        at=now,
    )
    _invalidate_after_write(db, kind)
    return _serialize_item(row)


def config_item_update(data, auth: AuthContext | None, db, cfg):
    auth = _require_admin(auth)
    data = data or {}
    row = _find_item(db, data.get("itemId"))

    if "label" in data:
        label = str(data.get("label") or "").strip()
        if not label:
            raise ValidationError("label must not be empty")
        row.label = label
    if "sortOrder" in data:
        row.sortOrder = _parse_sort_order(data.get("sortOrder"))
    if "isActive" in data:
        row.isActive = as_bool(data.get("isActive"))

    now = iso_utc_now()
    row.updatedAt = now
    row.updatedBy = auth.userId
    append_audit(
        db,
        entityType="CONFIG_ITEM",
        entityId=row.itemId,
        action="CONFIG_ITEM_UPDATE",
        stageTag="ADMIN_ONBOARDING_CONFIG",
        actor=auth,
        meta={k: data.get(k) for k in ("label", "sortOrder", "isActive") if k in data},
        at=now,
    )
    _invalidate_after_write(db, row.kind)
    return _serialize_item(row)


def config_item_toggle(data, auth: AuthContext | None, db, cfg):
    auth = _require_admin(auth)
    row = _find_item(db, (data or {}).get("itemId"))
    row.isActive = not bool(row.isActive)
    now = iso_utc_now()
    row.updatedAt = now
    row.updatedBy = auth.userId
    append_audit(
        db,
        entityType="CONFIG_ITEM",
        entityId=row.itemId,
        action="CONFIG_ITEM_TOGGLE",
        stageTag="ADMIN_ONBOARDING_CONFIG",
        actor=auth,
        toState="ACTIVE" if row.isActive else "INACTIVE",
        at=now,
    )
    _invalidate_after_write(db, row.kind)
    return _serialize_item(row)


def config_item_delete(data, auth: AuthContext | None, db, cfg):
    auth = _require_admin(auth)
    row = _find_item(db, (data or {}).get("itemId"))
    kind = row.kind
    item_id = row.itemId
    db.delete(row)
    append_audit(
        db,
        entityType="CONFIG_ITEM",
        entityId=item_id,
        action="CONFIG_ITEM_DELETE",
        stageTag="ADMIN_ONBOARDING_CONFIG",
        actor=auth,
        meta={"kind": kind},
    )
    _invalidate_after_write(db, kind)
    return {"itemId": item_id, "deleted": True}


def config_items_reorder(data, auth: AuthContext | None, db, cfg):
    auth = _require_admin(auth)
    data = data or {}
    kind = normalize_kind(data.get("kind"))
    item_ids = data.get("itemIds")
    if not isinstance(item_ids, list) or not item_ids:
        raise ValidationError("Missing itemIds")

    rows = {r.itemId: r for r in db.execute(select(ConfigItem).where(ConfigItem.kind == kind)).scalars().all()}
    unknown = [str(i) for i in item_ids if str(i) not in rows]
    if unknown:
        raise ValidationError("Unknown itemIds", details={"itemIds": unknown})

    now = iso_utc_now()
    for idx, iid in enumerate(item_ids):
        row = rows[str(iid)]
        row.sortOrder = idx
        row.updatedAt = now
        row.updatedBy = auth.userId

    append_audit(
        db,
        entityType="CONFIG_ITEM",
        entityId=kind,
        action="CONFIG_ITEMS_REORDER",
        stageTag="ADMIN_ONBOARDING_CONFIG",
        actor=auth,
        meta={"count": len(item_ids)},
        at=now,
    )
    _invalidate_after_write(db, kind)
    db.flush()
    return config_items_list({"kind": kind}, auth, db, cfg)


def config_cache_invalidate(data, auth: AuthContext | None, db, cfg):
    kind = (data or {}).get("kind")
    config_cache().invalidate(normalize_kind(kind) if kind else None)
    return {"invalidated": kind or "ALL"}
