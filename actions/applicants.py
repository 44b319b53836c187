"""Applicant onboarding pipeline: CRITERIA -> QUESTIONS -> ONBOARDING -> COMPLETED, or REJECTED."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sqlalchemy import func, or_, select

from actions.badges import badge_allocator
from actions.blacklist import add_entry_if_absent, assert_not_blacklisted, normalize_expiry, serialize_entry
from actions.config_items import config_cache, required_correct
from actions.employees import ACTIVE, find_employee_by_discord, serialize_employee
from actions.helpers import actor_id, append_audit, load_json_snapshot, parse_paging
from actions.identity_sync import badge_nickname, identity_sync_for
from actions.ranks import rank_name, team_for_level
from models import Applicant, Employee
from services import bonus
from services.broadcast import broadcast
from utils import (
    AuthContext,
    ConflictError,
    NotFoundError,
    ValidationError,
    as_bool,
    iso_utc_now,
    new_prefixed_id,
)


log = logging.getLogger(__name__)

CRITERIA = "CRITERIA"
QUESTIONS = "QUESTIONS"
ONBOARDING = "ONBOARDING"
COMPLETED = "COMPLETED"
REJECTED = "REJECTED"

STATUS_STEP = {CRITERIA: 1, QUESTIONS: 2, ONBOARDING: 3, COMPLETED: 4}
NEXT_STATUS = {CRITERIA: QUESTIONS, QUESTIONS: ONBOARDING, ONBOARDING: COMPLETED}
TERMINAL_STATUSES = {COMPLETED, REJECTED}
ALL_STATUSES = (CRITERIA, QUESTIONS, ONBOARDING, COMPLETED, REJECTED)


def _transition(app: Applicant, to_status: str, auth: AuthContext | None, db, *, now: str, meta: Any = None) -> None:
    """Only writer of status/currentStep. Moves one step forward, or to REJECTED from any open state."""
    from_status = str(app.status or "")
    if from_status in TERMINAL_STATUSES:
        raise ValidationError(f"Applicant is already {from_status}")
    if to_status != REJECTED and NEXT_STATUS.get(from_status) != to_status:
        raise ValidationError(f"Cannot move applicant from {from_status} to {to_status}")

    app.status = to_status
    if to_status != REJECTED:
        app.currentStep = STATUS_STEP[to_status]
    app.updatedAt = now
    app.updatedBy = actor_id(auth)

    append_audit(
        db,
        entityType="APPLICANT",
        entityId=app.applicantId,
        action="APPLICANT_STATUS_CHANGE",
        fromState=from_status,
        toState=to_status,
        stageTag=f"APPLICANT_{to_status}",
        actor=auth,
        meta=meta,
        at=now,
    )


def serialize_applicant(app: Applicant) -> dict[str, Any]:
    return {
        "applicantId": app.applicantId,
        "discordId": app.discordId,
        "discordUsername": app.discordUsername or "",
        "status": app.status,
        "currentStep": int(app.currentStep or 1),
        "criteria": load_json_snapshot(app.criteriaJson),
        "questions": load_json_snapshot(app.questionsJson),
        "onboarding": load_json_snapshot(app.onboardingJson),
        "discordRolesAssigned": bool(app.discordRolesAssigned),
        "notes": app.notes or "",
        "rejectionReason": app.rejectionReason or "",
        "processedBy": app.processedBy or "",
        "processedAt": app.processedAt or "",
        "employeeId": app.employeeId or "",
        "createdAt": app.createdAt or "",
        "createdBy": app.createdBy or "",
        "updatedAt": app.updatedAt or "",
    }


def _find_applicant(db, applicant_id: Any, *, for_update: bool = True) -> Applicant:
    aid = str(applicant_id or "").strip()
    if not aid:
        raise ValidationError("Missing applicantId")
    q = select(Applicant).where(Applicant.applicantId == aid)
    if for_update:
        q = q.with_for_update(of=Applicant)
    app = db.execute(q).scalar_one_or_none()
    if not app:
        raise NotFoundError("Applicant not found")
    return app


def _assert_at(app: Applicant, status: str) -> None:
    if app.status in TERMINAL_STATUSES:
        raise ValidationError(f"Applicant is already {app.status}")
    if app.status != status:
        raise ValidationError(
            f"Applicant is at step {int(app.currentStep or 1)} ({app.status}), not {status}",
            details={"status": app.status, "currentStep": int(app.currentStep or 1)},
        )


def _snapshot_from(data: dict, key: str) -> dict[str, bool]:
    raw = data.get(key)
    if not isinstance(raw, dict):
        raise ValidationError(f"{key} must be an object of item id -> boolean")
    return {str(k): v is True for k, v in raw.items()}


def _count_true(snapshot: dict[str, bool], ids: list[str]) -> int:
    # Keys that are not active item ids never count toward a step.
    return sum(1 for i in ids if snapshot.get(i) is True)


def _assert_no_open_applicant(db, discord_id: str, *, exclude_id: str = "") -> None:
    q = (
        select(Applicant)
        .where(Applicant.discordId == discord_id)
        .where(Applicant.status.not_in(sorted(TERMINAL_STATUSES)))
    )
    if exclude_id:
        q = q.where(Applicant.applicantId != exclude_id)
    other = db.execute(q).scalars().first()
    if other:
        raise ConflictError("An open application already exists for this Discord account", details={"applicantId": other.applicantId})


def create_applicant(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    username = str(data.get("discordUsername") or "").strip()
    discord_id = str(data.get("discordId") or "").strip()
    if not username:
        raise ValidationError("discordUsername is required")

    assert_not_blacklisted(db, discord_id or None, username)
    if discord_id:
        _assert_no_open_applicant(db, discord_id)

    now = iso_utc_now()
    app = Applicant(
        applicantId=new_prefixed_id("APP"),
        discordId=discord_id or None,
        discordUsername=username,
        status=CRITERIA,
        currentStep=STATUS_STEP[CRITERIA],
        criteriaJson="{}",
        questionsJson="{}",
        onboardingJson="{}",
        discordRolesAssigned=False,
        notes=str(data.get("notes") or "").strip(),
        createdAt=now,
        createdBy=actor_id(auth),
        updatedAt=now,
        updatedBy=actor_id(auth),
    )
    db.add(app)
    append_audit(
        db,
        entityType="APPLICANT",
        entityId=app.applicantId,
        action="APPLICANT_CREATE",
        toState=CRITERIA,
        stageTag="APPLICANT_CRITERIA",
        actor=auth,
        meta={"discordId": app.discordId},
        at=now,
    )
    return serialize_applicant(app)


def update_criteria(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    app = _find_applicant(db, data.get("applicantId"))
    _assert_at(app, CRITERIA)

    snapshot = _snapshot_from(data, "criteria")
    now = iso_utc_now()
    app.criteriaJson = json.dumps(snapshot)
    app.updatedAt = now
    app.updatedBy = actor_id(auth)

    ids = config_cache().get_ids(db, "criteria")
    met = _count_true(snapshot, ids)
    advanced = met == len(ids)
    if advanced:
        _transition(app, QUESTIONS, auth, db, now=now, meta={"criteriaMet": met})
    return {"applicant": serialize_applicant(app), "advanced": advanced, "met": met, "required": len(ids)}


def update_questions(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    app = _find_applicant(db, data.get("applicantId"))
    _assert_at(app, QUESTIONS)

    snapshot = _snapshot_from(data, "questions")
    now = iso_utc_now()
    app.questionsJson = json.dumps(snapshot)
    app.updatedAt = now
    app.updatedBy = actor_id(auth)

    ids = config_cache().get_ids(db, "questions")
    correct = _count_true(snapshot, ids)
    required = required_correct(len(ids), float(cfg.QUESTIONS_PASS_RATIO))
    advanced = correct >= required
    if advanced:
        _transition(app, ONBOARDING, auth, db, now=now, meta={"correct": correct, "total": len(ids)})
    return {
        "applicant": serialize_applicant(app),
        "advanced": advanced,
        "correct": correct,
        "required": required,
        "total": len(ids),
    }


def update_onboarding(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    app = _find_applicant(db, data.get("applicantId"))
    _assert_at(app, ONBOARDING)

    snapshot = _snapshot_from(data, "onboarding")
    now = iso_utc_now()

    discord_id = str(data.get("discordId") or "").strip()
    if discord_id and discord_id != (app.discordId or ""):
        _assert_no_open_applicant(db, discord_id, exclude_id=app.applicantId)
        app.discordId = discord_id
        # A different account may not carry the roles granted to the previous one.
        app.discordRolesAssigned = False
    username = str(data.get("discordUsername") or "").strip()
    if username:
        app.discordUsername = username

    app.onboardingJson = json.dumps(snapshot)
    app.updatedAt = now
    app.updatedBy = actor_id(auth)

    ids = config_cache().get_ids(db, "onboarding")
    total = len(ids)
    completed = _count_true(snapshot, ids)
    return {
        "applicant": serialize_applicant(app),
        "completed": completed,
        "total": total,
        "readyToComplete": completed >= total and bool(app.discordId),
    }


def _grant_hire_roles(sync, app: Applicant, cfg) -> dict[str, Any]:
    role_ids = list(cfg.DISCORD_HIRE_ROLE_IDS or [])
    if not role_ids:
        return {"granted": [], "failed": [], "ok": False, "partial": False, "error": "NO_ROLES_CONFIGURED"}
    res = sync.grant_roles(app.discordId, role_ids, reason=f"Onboarding {app.applicantId}")
    if res["granted"]:
        app.discordRolesAssigned = True
    return res


def assign_identity_roles_only(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    app = _find_applicant(db, data.get("applicantId"))
    if app.status == REJECTED:
        raise ValidationError("Applicant was rejected")
    if not app.discordId:
        raise ValidationError("Applicant has no linked Discord account")

    if app.discordRolesAssigned:
        return {"applicantId": app.applicantId, "alreadyAssigned": True, "discordRolesAssigned": True}

    res = _grant_hire_roles(identity_sync_for(cfg), app, cfg)
    if app.discordRolesAssigned:
        now = iso_utc_now()
        app.updatedAt = now
        app.updatedBy = actor_id(auth)
        append_audit(
            db,
            entityType="APPLICANT",
            entityId=app.applicantId,
            action="APPLICANT_ASSIGN_ROLES",
            stageTag="APPLICANT_ONBOARDING",
            actor=auth,
            meta={"granted": res["granted"], "failed": res["failed"]},
            at=now,
        )
        # The flag commits as soon as any role is granted remotely.
        db.commit()
    return {
        "applicantId": app.applicantId,
        "alreadyAssigned": False,
        "discordRolesAssigned": bool(app.discordRolesAssigned),
        "roles": res,
    }


def _hire(
    db, app: Applicant, existing: Optional[Employee], employee_id: str, badge: Optional[str], auth, cfg, now: str
) -> tuple[Employee, bool]:
    level = int(cfg.STARTING_RANK_LEVEL)
    fields = {
        "displayName": app.discordUsername or "",
        "rank": rank_name(level),
        "rankLevel": level,
        "badgeNumber": badge,
        "department": cfg.STARTING_DEPARTMENT,
        "status": ACTIVE,
        "hireDate": now,
        "notes": "",
        "updatedAt": now,
        "updatedBy": actor_id(auth),
    }
    if existing is None:
        emp = Employee(
            employeeId=employee_id,
            discordId=app.discordId,
            terminatedAt="",
            terminationReason="",
            createdAt=now,
            createdBy=actor_id(auth),
            **fields,
        )
        db.add(emp)
        return emp, False

    # Same row is reused so absences and evaluations stay attached.
    for k, v in fields.items():
        setattr(existing, k, v)
    existing.terminatedAt = ""
    existing.terminationReason = ""
    return existing, True


def _hire_side_effects(db, app: Applicant, emp: Employee, auth: AuthContext | None, cfg) -> dict[str, Any]:
    out: dict[str, Any] = {}
    sync = identity_sync_for(cfg)

    try:
        if app.discordRolesAssigned:
            out["roles"] = {"granted": [], "failed": [], "ok": True, "partial": False, "skipped": True}
        else:
            out["roles"] = _grant_hire_roles(sync, app, cfg)
            if app.discordRolesAssigned:
                db.commit()
    except Exception as e:
        db.rollback()
        log.exception("role grant failed for %s", app.applicantId)
        out["roles"] = {"granted": [], "failed": [], "ok": False, "partial": False, "error": str(e)}

    try:
        out["nickname"] = sync.set_display_name(app.discordId, badge_nickname(emp.badgeNumber, emp.displayName))
    except Exception as e:
        log.exception("nickname update failed for %s", emp.employeeId)
        out["nickname"] = {"ok": False, "error": str(e)}

    try:
        out["broadcast"] = broadcast(
            "employee:hired",
            {
                "id": emp.employeeId,
                "badgeNumber": emp.badgeNumber,
                "name": emp.displayName,
                "discordId": emp.discordId,
                "rank": emp.rank,
                "rankLevel": emp.rankLevel,
                "status": emp.status,
            },
        )
    except Exception:
        log.exception("hire broadcast failed for %s", emp.employeeId)
        out["broadcast"] = 0

    operator = getattr(auth, "employeeId", "") if auth else ""
    try:
        out["bonus"] = [
            bonus.trigger(bonus.APPLICATION_COMPLETED, operator, app.discordUsername, app.applicantId),
            bonus.trigger(bonus.APPLICATION_ONBOARDING, operator, app.discordUsername, app.applicantId),
        ]
    except Exception:
        log.exception("bonus trigger failed for %s", app.applicantId)
        out["bonus"] = []

    roles = out["roles"]
    out["partial"] = bool(roles.get("failed")) or not out["nickname"].get("ok")
    return out


def complete_applicant(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    app = _find_applicant(db, data.get("applicantId"))
    _assert_at(app, ONBOARDING)
    if not app.discordId:
        raise ValidationError("Applicant has no linked Discord account")

    ids = config_cache().get_ids(db, "onboarding")
    total = len(ids)
    completed = _count_true(load_json_snapshot(app.onboardingJson), ids)
    if completed < total:
        raise ValidationError("Onboarding checklist is incomplete", details={"completed": completed, "total": total})

    assert_not_blacklisted(db, app.discordId, app.discordUsername)

    existing = find_employee_by_discord(db, app.discordId, for_update=True)
    if existing is not None and existing.status == ACTIVE:
        raise ConflictError("This Discord account already belongs to an active employee", details={"employeeId": existing.employeeId})

    employee_id = existing.employeeId if existing is not None else new_prefixed_id("EMP")
    old_badge = existing.badgeNumber if existing is not None else None
    team = team_for_level(int(cfg.STARTING_RANK_LEVEL))
    allocator = badge_allocator()
    badge = allocator.allocate(team.badgeMin, team.badgeMax, team.badgePrefix, employee_id)
    warnings: list[dict[str, str]] = []
    if badge is None:
        warnings.append({"code": "ALLOCATION_EXHAUSTED", "message": f"No free badge number in team {team.name}"})

    now = iso_utc_now()
    try:
        emp, reactivated = _hire(db, app, existing, employee_id, badge, auth, cfg, now)
        app.employeeId = emp.employeeId
        app.processedBy = actor_id(auth)
        app.processedAt = now
        _transition(app, COMPLETED, auth, db, now=now, meta={"employeeId": emp.employeeId, "badgeNumber": badge})
        append_audit(
            db,
            entityType="EMPLOYEE",
            entityId=emp.employeeId,
            action="EMPLOYEE_REACTIVATE" if reactivated else "EMPLOYEE_HIRE",
            toState=ACTIVE,
            stageTag="EMPLOYEE_HIRE",
            actor=auth,
            meta={"applicantId": app.applicantId, "badgeNumber": badge},
            at=now,
        )
        db.commit()
    except Exception:
        db.rollback()
        allocator.release(badge)
        raise

    if old_badge and old_badge != badge:
        allocator.release(old_badge)
    log.info("applicant %s hired as %s badge=%s reactivated=%s", app.applicantId, emp.employeeId, badge, reactivated)
    side_effects = _hire_side_effects(db, app, emp, auth, cfg)
    if side_effects["partial"]:
        warnings.append({"code": "EXTERNAL_SYNC_PARTIAL", "message": "Some Discord updates failed"})

    return {
        "applicant": serialize_applicant(app),
        "employee": serialize_employee(emp),
        "reactivated": reactivated,
        "badgeExhausted": badge is None,
        "identitySync": side_effects,
        "warnings": warnings,
    }


def reject_applicant(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    app = _find_applicant(db, data.get("applicantId"))
    reason = str(data.get("rejectionReason") or "").strip()
    if not reason:
        raise ValidationError("rejectionReason is required")

    add_to_blacklist = as_bool(data.get("addToBlacklist"))
    expires_at = normalize_expiry(data.get("blacklistExpires")) if add_to_blacklist else ""

    now = iso_utc_now()
    _transition(app, REJECTED, auth, db, now=now, meta={"addToBlacklist": add_to_blacklist})
    app.rejectionReason = reason
    app.processedBy = actor_id(auth)
    app.processedAt = now

    blacklist = None
    if add_to_blacklist:
        entry, created = add_entry_if_absent(
            db,
            discord_id=app.discordId,
            username=app.discordUsername,
            reason=str(data.get("blacklistReason") or "").strip() or reason,
            expires_at=expires_at,
            added_by=actor_id(auth),
        )
        if created:
            append_audit(
                db,
                entityType="BLACKLIST",
                entityId=entry.entryId,
                action="BLACKLIST_CREATE",
                stageTag="APPLICANT_REJECTED",
                actor=auth,
                meta={"applicantId": app.applicantId},
                at=now,
            )
        blacklist = serialize_entry(entry) | {"created": created}

    db.commit()

    operator = getattr(auth, "employeeId", "") if auth else ""
    try:
        bonus.trigger(bonus.APPLICATION_REJECTED, operator, app.discordUsername, app.applicantId)
    except Exception:
        log.exception("bonus trigger failed for %s", app.applicantId)

    return {"applicant": serialize_applicant(app), "blacklist": blacklist}


def delete_applicant(data, auth: AuthContext | None, db, cfg):
    app = _find_applicant(db, (data or {}).get("applicantId"))
    applicant_id = app.applicantId
    status = app.status
    db.delete(app)
    append_audit(
        db,
        entityType="APPLICANT",
        entityId=applicant_id,
        action="APPLICANT_DELETE",
        fromState=status,
        stageTag="APPLICANT_DELETE",
        actor=auth,
    )
    return {"applicantId": applicant_id, "deleted": True}


def applicant_get(data, auth: AuthContext | None, db, cfg):
    app = _find_applicant(db, (data or {}).get("applicantId"), for_update=False)
    return serialize_applicant(app)


def applicants_list(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    q = select(Applicant)
    status = str(data.get("status") or "").strip().upper()
    if status:
        if status not in ALL_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        q = q.where(Applicant.status == status)
    search = str(data.get("search") or "").strip().lower()
    if search:
        q = q.where(or_(func.lower(Applicant.discordUsername).like(f"%{search}%"), Applicant.discordId == search))

    total = db.execute(select(func.count()).select_from(q.subquery())).scalar() or 0
    page, size = parse_paging(data)
    rows = db.execute(q.order_by(Applicant.createdAt.desc()).offset((page - 1) * size).limit(size)).scalars().all()
    return {"items": [serialize_applicant(a) for a in rows], "total": int(total), "page": page, "pageSize": size}


def applicant_stats(data, auth: AuthContext | None, db, cfg):
    rows = db.execute(select(Applicant.status, func.count()).group_by(Applicant.status)).all()
    counts = {s: 0 for s in ALL_STATUSES}
    for status, n in rows:
        counts[str(status)] = int(n or 0)
    open_count = sum(counts[s] for s in (CRITERIA, QUESTIONS, ONBOARDING))
    return {"byStatus": counts, "open": open_count, "total": sum(counts.values())}


def applicant_invite_create(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    applicant_id = str(data.get("applicantId") or "").strip()
    if applicant_id:
        _find_applicant(db, applicant_id, for_update=False)

    res = identity_sync_for(cfg).issue_invite(
        int(cfg.INVITE_TTL_SECONDS), int(cfg.INVITE_MAX_USES), reason=f"Applicant invite {applicant_id}".strip()
    )
    if res.get("ok") and applicant_id:
        append_audit(
            db,
            entityType="APPLICANT",
            entityId=applicant_id,
            action="APPLICANT_INVITE_CREATE",
            stageTag="APPLICANT_ONBOARDING",
            actor=auth,
        )
    return res


def discord_member_search(data, auth: AuthContext | None, db, cfg):
    query = str((data or {}).get("query") or "").strip()
    if len(query) < 2:
        raise ValidationError("query must be at least 2 characters")
    return identity_sync_for(cfg).find_member(query)
