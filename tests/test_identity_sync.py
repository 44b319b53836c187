from __future__ import annotations

from types import SimpleNamespace

import requests

import app as api_app
from actions.identity_sync import IdentitySync, badge_nickname
from api_helpers import FakeDiscordClient, _api, api_ok, seed_user
from config import Config
from services.discord_client import DiscordClient


class _Resp:
    def __init__(self, status_code: int, text: str):
        self.status_code = status_code
        self.text = text


def _cfg(**overrides) -> SimpleNamespace:
    base = {
        "DISCORD_BOT_TOKEN": "bot-token",
        "DISCORD_GUILD_ID": "guild-1",
        "DISCORD_INVITE_CHANNEL_ID": "chan-1",
        "DISCORD_API_BASE": "https://discord.test/api/v10",
        "DISCORD_TIMEOUT_SECONDS": 5,
    }
    base.update(overrides)
    return SimpleNamespace(**base)


def test_grant_roles_reports_partial_failure():
    fake = FakeDiscordClient()
    fake.failing_roles = {"r2"}

    res = IdentitySync(fake).grant_roles("42", ["r1", "r2", "r3"])

    assert res["granted"] == ["r1", "r3"]
    assert res["failed"] == [{"roleId": "r2", "error": "Missing Permissions"}]
    assert res["ok"] is False
    assert res["partial"] is True


def test_disabled_client_fails_every_call_without_raising(monkeypatch):
    monkeypatch.delenv("DISCORD_BOT_TOKEN", raising=False)
    sync = IdentitySync(DiscordClient(Config()))

    roles = sync.grant_roles("42", ["r1"])
    assert roles["granted"] == []
    assert roles["failed"] == [{"roleId": "r1", "error": "DISCORD_DISABLED"}]

    assert sync.set_display_name("42", "Name") == {"ok": False, "nick": "Name", "error": "DISCORD_DISABLED"}
    assert sync.issue_invite(3600, 1)["ok"] is False
    assert sync.find_member("someone")["ok"] is False


def test_badge_nickname_is_truncated():
    assert badge_nickname("PD-104", "Jane Doe") == "[PD-104] Jane Doe"
    assert badge_nickname(None, "Jane Doe") == "Jane Doe"
    long = badge_nickname("PD-104", "A" * 40)
    assert len(long) == 32
    assert long.startswith("[PD-104] AAA")


def test_client_sends_bot_auth_and_maps_errors(monkeypatch):
    calls = []

    def fake_request(method, url, **kwargs):
        calls.append((method, url, kwargs))
        if url.endswith("/roles/bad"):
            return _Resp(403, '{"message": "Missing Permissions", "code": 50013}')
        if url.endswith("/invites"):
            return _Resp(200, '{"code": "abc123"}')
        return _Resp(204, "")

    monkeypatch.setattr(requests, "request", fake_request)
    sync = IdentitySync(DiscordClient(_cfg()))

    res = sync.grant_roles("42", ["good", "bad"], reason="Onboarding APP-1")
    assert res["granted"] == ["good"]
    assert "HTTP 403" in res["failed"][0]["error"]

    method, url, kwargs = calls[0]
    assert method == "PUT"
    assert url == "https://discord.test/api/v10/guilds/guild-1/members/42/roles/good"
    assert kwargs["headers"]["Authorization"] == "Bot bot-token"
    assert kwargs["headers"]["X-Audit-Log-Reason"] == "Onboarding APP-1"
    assert kwargs["timeout"] == 5.0

    invite = sync.issue_invite(86400, 1)
    assert invite == {"ok": True, "url": "https://discord.gg/abc123", "maxAgeSeconds": 86400, "maxUses": 1}
    assert calls[-1][2]["json"] == {"max_age": 86400, "max_uses": 1, "unique": True}


def test_member_lookup_by_id_returns_none_on_404(monkeypatch):
    monkeypatch.setattr(requests, "request", lambda *_a, **_k: _Resp(404, '{"message": "Unknown Member"}'))
    sync = IdentitySync(DiscordClient(_cfg()))
    assert sync.find_member("123456") == {"ok": True, "members": []}


def test_invite_and_member_search_actions(app_client, fake_discord):
    _app, client = app_client
    token = seed_user()
    fake_discord.members = [{"user": {"id": "42", "username": "rookie", "global_name": "Rookie"}, "nick": None}]

    invite = api_ok(client, action="APPLICANT_INVITE_CREATE", token=token)
    assert invite["url"] == "https://discord.gg/test1"
    assert fake_discord.invites == [(86400, 1)]

    found = api_ok(client, action="DISCORD_MEMBER_SEARCH", token=token, data={"query": "rook"})
    assert found["members"] == [{"id": "42", "username": "rookie", "displayName": "Rookie", "avatar": None}]

    by_id = api_ok(client, action="DISCORD_MEMBER_SEARCH", token=token, data={"query": "42"})
    assert [m["id"] for m in by_id["members"]] == ["42"]

    resp = _api(client, action="DISCORD_MEMBER_SEARCH", token=token, data={"query": "r"})
    assert resp.status_code == 400


def test_assign_roles_without_configured_roles(app_client, fake_discord, monkeypatch):
    app, client = app_client
    token = seed_user()
    monkeypatch.setattr(app.config["CFG"], "DISCORD_HIRE_ROLE_IDS", [])

    created = api_ok(client, action="APPLICANT_CREATE", token=token, data={"discordUsername": "rookie", "discordId": "42"})
    out = api_ok(client, action="APPLICANT_ASSIGN_ROLES", token=token, data={"applicantId": created["applicantId"]})

    assert out["discordRolesAssigned"] is False
    assert out["roles"]["error"] == "NO_ROLES_CONFIGURED"
    assert fake_discord.role_calls == []


def test_unexpected_client_error_is_reported_as_failed_role(fake_discord):
    def broken(*_a, **_k):
        raise RuntimeError("connection reset")

    fake_discord.add_member_role = broken
    fake_discord.set_member_nick = broken
    sync = IdentitySync(fake_discord)

    res = sync.grant_roles("42", ["r1"])
    assert res["failed"] == [{"roleId": "r1", "error": "connection reset"}]
    assert sync.set_display_name("42", "Name")["ok"] is False


def test_assigned_roles_flag_survives_a_later_request_failure(app_client, fake_discord, monkeypatch):
    _app, client = app_client
    token = seed_user()
    created = api_ok(client, action="APPLICANT_CREATE", token=token, data={"discordUsername": "rookie", "discordId": "42"})
    aid = created["applicantId"]

    real_audit = api_app._audit_api_call
    pending = {"fail": True}

    def audit_once_failing(*args, **kwargs):
        if pending.pop("fail", False):
            raise RuntimeError("audit store unavailable")
        return real_audit(*args, **kwargs)

    monkeypatch.setattr(api_app, "_audit_api_call", audit_once_failing)

    resp = _api(client, action="APPLICANT_ASSIGN_ROLES", token=token, data={"applicantId": aid})
    assert resp.status_code == 500
    assert len(fake_discord.role_calls) == 2

    again = api_ok(client, action="APPLICANT_ASSIGN_ROLES", token=token, data={"applicantId": aid})
    assert again["alreadyAssigned"] is True
    assert len(fake_discord.role_calls) == 2
