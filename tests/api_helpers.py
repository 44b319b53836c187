from __future__ import annotations

from typing import Any

from auth import issue_session_token
from db import SessionLocal
from models import Absence, BadgeClaim, ConfigItem, Employee, Evaluation, User
from services.discord_client import DiscordError
from utils import iso_utc_now


class FakeDiscordClient:
    """Records every call. Roles in `failing_roles` fail the way a 403 from Discord does."""

    def __init__(self):
        self.role_calls: list[tuple[str, str]] = []
        self.nick_calls: list[tuple[str, str]] = []
        self.invites: list[tuple[int, int]] = []
        self.failing_roles: set[str] = set()
        self.fail_nick = False
        self.members: list[dict] = []

    def add_member_role(self, user_id, role_id, reason=""):
        if role_id in self.failing_roles:
            raise DiscordError("Missing Permissions", 403, 50013)
        self.role_calls.append((user_id, role_id))

    def set_member_nick(self, user_id, nick, reason=""):
        if self.fail_nick:
            raise DiscordError("Missing Permissions", 403, 50013)
        self.nick_calls.append((user_id, nick))

    def create_invite(self, max_age, max_uses, reason=""):
        self.invites.append((max_age, max_uses))
        return f"https://discord.gg/test{len(self.invites)}"

    def search_members(self, query, limit=10):
        q = str(query).lower()
        return [m for m in self.members if q in m["user"]["username"].lower()][:limit]

    def get_member(self, user_id):
        return next((m for m in self.members if m["user"]["id"] == user_id), None)


def _api(client, *, action: str, token: str | None = None, data: dict[str, Any] | None = None):
    payload = {"action": action, "token": token or "", "data": data or {}}
    return client.post("/api", json=payload)


def api_ok(client, *, action: str, token: str, data: dict[str, Any] | None = None) -> Any:
    resp = _api(client, action=action, token=token, data=data)
    body = resp.get_json()
    assert resp.status_code == 200, body
    assert body["ok"] is True, body
    return body["data"]


def seed_user(*, user_id: str = "U-HR", discord_id: str = "900000000000000001", role: str = "HR", employee_id: str = "") -> str:
    """Creates an operator and returns a live session token for it."""
    now = iso_utc_now()
    db = SessionLocal()
    try:
        db.add(
            User(
                userId=user_id,
                discordId=discord_id,
                username=user_id.lower(),
                employeeId=employee_id,
                role=role,
                status="ACTIVE",
                lastLoginAt="",
                createdAt=now,
                createdBy="TEST",
                updatedAt=now,
                updatedBy="TEST",
            )
        )
        out = issue_session_token(db, user_id=user_id, username=user_id.lower(), role=role, session_ttl_minutes=60)
        db.commit()
        return out["sessionToken"]
    finally:
        db.close()


def seed_config_items(kind: str, labels: list[str], *, active: bool = True) -> list[str]:
    now = iso_utc_now()
    ids = []
    db = SessionLocal()
    try:
        for i, label in enumerate(labels):
            item_id = f"CFG-{kind}-{i}"
            db.add(
                ConfigItem(
                    itemId=item_id,
                    kind=kind,
                    label=label,
                    sortOrder=i,
                    isActive=active,
                    createdAt=now,
                    createdBy="TEST",
                    updatedAt=now,
                    updatedBy="TEST",
                )
            )
            ids.append(item_id)
        db.commit()
    finally:
        db.close()
    from actions.config_items import config_cache

    config_cache().invalidate()
    return ids


def seed_employee(
    *,
    employee_id: str,
    discord_id: str,
    status: str = "ACTIVE",
    badge: str | None = None,
    rank_level: int = 1,
    absences: int = 0,
    evaluations: int = 0,
) -> None:
    now = iso_utc_now()
    db = SessionLocal()
    try:
        db.add(
            Employee(
                employeeId=employee_id,
                discordId=discord_id,
                displayName=f"Officer {employee_id}",
                rank="Cadet",
                rankLevel=rank_level,
                badgeNumber=badge,
                department="Patrol",
                status=status,
                hireDate=now,
                notes="",
                terminatedAt=now if status != "ACTIVE" else "",
                terminationReason="left" if status != "ACTIVE" else "",
                createdAt=now,
                createdBy="TEST",
                updatedAt=now,
                updatedBy="TEST",
            )
        )
        for i in range(absences):
            db.add(Absence(absenceId=f"ABS-{employee_id}-{i}", employeeId=employee_id, createdAt=now))
        for i in range(evaluations):
            db.add(Evaluation(evaluationId=f"EVAL-{employee_id}-{i}", employeeId=employee_id, rating=3, createdAt=now))
        db.commit()
    finally:
        db.close()


def checklist(ids: list[str], value: bool = True) -> dict[str, bool]:
    return {i: value for i in ids}


def advance_to_onboarding(client, token: str, *, username: str, discord_id: str | None = None) -> str:
    """Creates an applicant and passes it through criteria and questions using the active lists."""
    cfg = api_ok(client, action="ONBOARDING_CONFIG_GET", token=token)
    data = {"discordUsername": username}
    if discord_id:
        data["discordId"] = discord_id
    app = api_ok(client, action="APPLICANT_CREATE", token=token, data=data)
    aid = app["applicantId"]

    res = api_ok(
        client,
        action="APPLICANT_CRITERIA_UPDATE",
        token=token,
        data={"applicantId": aid, "criteria": checklist([i["id"] for i in cfg["criteria"]])},
    )
    assert res["advanced"] is True
    res = api_ok(
        client,
        action="APPLICANT_QUESTIONS_UPDATE",
        token=token,
        data={"applicantId": aid, "questions": checklist([i["id"] for i in cfg["questions"]])},
    )
    assert res["advanced"] is True
    return aid


def finish_checklist(client, token: str, applicant_id: str, *, discord_id: str | None = None) -> dict:
    cfg = api_ok(client, action="ONBOARDING_CONFIG_GET", token=token)
    data: dict[str, Any] = {"applicantId": applicant_id, "onboarding": checklist([i["id"] for i in cfg["onboarding"]])}
    if discord_id:
        data["discordId"] = discord_id
    return api_ok(client, action="APPLICANT_ONBOARDING_UPDATE", token=token, data=data)


def seed_badge_claims(prefix: str, numbers: range) -> None:
    from actions.ranks import format_badge

    now = iso_utc_now()
    db = SessionLocal()
    try:
        for n in numbers:
            db.add(BadgeClaim(badgeNumber=format_badge(prefix, n), employeeId="SEED", claimedAt=now))
        db.commit()
    finally:
        db.close()
