from __future__ import annotations

from sqlalchemy import select

from auth import serialize_auth
from models import Employee, User
from utils import ApiError, AuthContext, normalize_role


def session_validate(data, auth: AuthContext | None, db, cfg):
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Invalid or expired session")
    return serialize_auth(auth)


def get_me(data, auth: AuthContext | None, db, cfg):
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Invalid or expired session")

    user = db.execute(select(User).where(User.userId == auth.userId)).scalar_one_or_none()
    if not user:
        raise ApiError("AUTH_INVALID", "User missing")
    if str(user.status or "").upper() != "ACTIVE":
        raise ApiError("AUTH_INVALID", "User is disabled")

    employee = None
    if user.employeeId:
        emp = db.execute(select(Employee).where(Employee.employeeId == user.employeeId)).scalar_one_or_none()
        if emp:
            employee = {
                "employeeId": emp.employeeId,
                "rank": emp.rank or "",
                "badgeNumber": emp.badgeNumber,
                "status": emp.status or "",
            }

    return {
        "me": {
            "userId": user.userId,
            "discordId": user.discordId,
            "username": user.username or "",
            "role": normalize_role(user.role),
            "employee": employee,
        }
    }
