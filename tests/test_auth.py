from __future__ import annotations

import pytest

from api_helpers import _api, api_ok, seed_employee, seed_user
from auth import assert_permission
from utils import ApiError


def test_session_validate_and_get_me(app_client):
    _app, client = app_client
    seed_employee(employee_id="EMP-HR", discord_id="900000000000000001", badge="PD-300")
    token = seed_user(employee_id="EMP-HR")

    out = api_ok(client, action="SESSION_VALIDATE", token=token)
    assert out["valid"] is True
    assert out["me"]["role"] == "HR"

    me = api_ok(client, action="GET_ME", token=token)["me"]
    assert me["userId"] == "U-HR"
    assert me["employee"] == {"employeeId": "EMP-HR", "rank": "Cadet", "badgeNumber": "PD-300", "status": "ACTIVE"}


def test_invalid_token_is_rejected(app_client):
    _app, client = app_client
    resp = _api(client, action="APPLICANTS_LIST", token="ST-not-a-token")
    body = resp.get_json()
    assert body["ok"] is False
    assert body["error"]["code"] == "AUTH_INVALID"


def test_unknown_action(app_client):
    _app, client = app_client
    token = seed_user()
    resp = _api(client, action="PAYROLL_RUN", token=token)
    assert resp.get_json()["error"]["code"] == "BAD_REQUEST"


def test_permissions_by_role():
    assert_permission("ADMIN", "CONFIG_ITEM_CREATE")
    assert_permission("LEADERSHIP", "EMPLOYEE_TERMINATE")

    for role, action in (
        ("HR", "CONFIG_ITEM_CREATE"),
        ("HR", "EMPLOYEE_TERMINATE"),
        ("LEADERSHIP", "APPLICANT_COMPLETE"),
        ("PUBLIC", "APPLICANTS_LIST"),
    ):
        with pytest.raises(ApiError) as exc:
            assert_permission(role, action)
        assert exc.value.code == "FORBIDDEN"
