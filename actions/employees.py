from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, or_, select

from actions.helpers import actor_id, append_audit, parse_paging
from actions.ranks import team_by_name, team_for_level
from models import Absence, Employee, Evaluation
from utils import AuthContext, NotFoundError, ValidationError, iso_utc_now


log = logging.getLogger(__name__)

ACTIVE = "ACTIVE"
TERMINATED = "TERMINATED"


def serialize_employee(e: Employee) -> dict[str, Any]:
    team = None
    try:
        team = team_for_level(int(e.rankLevel or 1)).name
    except ValidationError:
        pass
    return {
        "employeeId": e.employeeId,
        "discordId": e.discordId,
        "displayName": e.displayName or "",
        "rank": e.rank or "",
        "rankLevel": int(e.rankLevel or 0),
        "team": team,
        "badgeNumber": e.badgeNumber,
        "department": e.department or "",
        "status": e.status or "",
        "hireDate": e.hireDate or "",
        "notes": e.notes or "",
        "terminatedAt": e.terminatedAt or "",
        "terminationReason": e.terminationReason or "",
    }


def find_employee_by_discord(db, discord_id: str, *, for_update: bool = False) -> Employee | None:
    q = select(Employee).where(Employee.discordId == str(discord_id or ""))
    if for_update:
        q = q.with_for_update(of=Employee)
    return db.execute(q).scalar_one_or_none()


def _find_employee(db, employee_id: Any, *, for_update: bool = False) -> Employee:
    eid = str(employee_id or "").strip()
    if not eid:
        raise ValidationError("Missing employeeId")
    q = select(Employee).where(Employee.employeeId == eid)
    if for_update:
        q = q.with_for_update(of=Employee)
    e = db.execute(q).scalar_one_or_none()
    if not e:
        raise NotFoundError("Employee not found")
    return e


def history_counts(db, employee_id: str) -> dict[str, int]:
    absences = db.execute(select(func.count()).select_from(Absence).where(Absence.employeeId == employee_id)).scalar()
    evaluations = db.execute(select(func.count()).select_from(Evaluation).where(Evaluation.employeeId == employee_id)).scalar()
    return {"absences": int(absences or 0), "evaluations": int(evaluations or 0)}


def employee_get(data, auth: AuthContext | None, db, cfg):
    e = _find_employee(db, (data or {}).get("employeeId"))
    return serialize_employee(e) | {"history": history_counts(db, e.employeeId)}


def employees_list(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    q = select(Employee)
    status = str(data.get("status") or "").strip().upper()
    if status:
        q = q.where(Employee.status == status)
    if data.get("team"):
        team = team_by_name(data.get("team"))
        if not team:
            raise ValidationError("Unknown team")
        q = q.where(Employee.rankLevel >= team.minLevel).where(Employee.rankLevel <= team.maxLevel)
    search = str(data.get("search") or "").strip().lower()
    if search:
        like = f"%{search}%"
        q = q.where(or_(func.lower(Employee.displayName).like(like), Employee.badgeNumber.like(like), Employee.discordId == search))

    total = db.execute(select(func.count()).select_from(q.subquery())).scalar() or 0
    page, size = parse_paging(data)
    rows = (
        db.execute(q.order_by(Employee.rankLevel.desc(), Employee.displayName.asc()).offset((page - 1) * size).limit(size))
        .scalars()
        .all()
    )
    return {"items": [serialize_employee(e) for e in rows], "total": int(total), "page": page, "pageSize": size}


def employee_terminate(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    e = _find_employee(db, data.get("employeeId"), for_update=True)
    if e.status == TERMINATED:
        raise ValidationError("Employee is already terminated")

    now = iso_utc_now()
    e.status = TERMINATED
    e.terminatedAt = now
    e.terminationReason = str(data.get("reason") or "").strip()
    e.updatedAt = now
    e.updatedBy = actor_id(auth)

    append_audit(
        db,
        entityType="EMPLOYEE",
        entityId=e.employeeId,
        action="EMPLOYEE_TERMINATE",
        fromState=ACTIVE,
        toState=TERMINATED,
        stageTag="EMPLOYEE_TERMINATE",
        remark=e.terminationReason,
        actor=auth,
        meta={"badgeNumber": e.badgeNumber},
        at=now,
    )

    return serialize_employee(e)
