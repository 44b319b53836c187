from __future__ import annotations

import logging
from typing import Any, Optional

from config import Config
from services.discord_client import MAX_NICK_LENGTH, DiscordClient, DiscordError

log = logging.getLogger(__name__)


def _error_text(e: Exception) -> str:
    code = getattr(e, "code", None)
    if code == "DISCORD_DISABLED":
        return "DISCORD_DISABLED"
    return str(e) or e.__class__.__name__


def badge_nickname(badge_number: Optional[str], name: str) -> str:
    base = str(name or "").strip()
    nick = f"[{badge_number}] {base}" if badge_number else base
    return nick[:MAX_NICK_LENGTH]


def _serialize_member(m: dict[str, Any]) -> dict[str, Any]:
    user = m.get("user") if isinstance(m.get("user"), dict) else {}
    return {
        "id": str(user.get("id") or ""),
        "username": str(user.get("username") or ""),
        "displayName": str(m.get("nick") or user.get("global_name") or user.get("username") or ""),
        "avatar": user.get("avatar"),
    }


class IdentitySync:
    """
    Result-returning facade over the Discord client.

    No method raises for remote failures: callers get `ok`/`error` data and
    decide what to persist.
    """

    def __init__(self, client: Any):
        self.client = client

    def grant_roles(self, discord_id: str, role_ids: list[str], reason: str = "") -> dict[str, Any]:
        granted: list[str] = []
        failed: list[dict[str, str]] = []
        for role_id in role_ids or []:
            try:
                self.client.add_member_role(discord_id, role_id, reason=reason)
                granted.append(role_id)
            except DiscordError as e:
                failed.append({"roleId": role_id, "error": _error_text(e)})
            except Exception as e:
                log.exception("unexpected error granting role %s to %s", role_id, discord_id)
                failed.append({"roleId": role_id, "error": _error_text(e)})
        if failed:
            log.warning("role grant partial discordId=%s granted=%s failed=%s", discord_id, len(granted), len(failed))
        return {"granted": granted, "failed": failed, "ok": not failed, "partial": bool(granted and failed)}

    def set_display_name(self, discord_id: str, name: str, reason: str = "") -> dict[str, Any]:
        nick = str(name or "")[:MAX_NICK_LENGTH]
        try:
            self.client.set_member_nick(discord_id, nick, reason=reason)
        except DiscordError as e:
            log.warning("nickname update failed discordId=%s: %s", discord_id, e)
            return {"ok": False, "nick": nick, "error": _error_text(e)}
        except Exception as e:
            log.exception("unexpected error setting nickname for %s", discord_id)
            return {"ok": False, "nick": nick, "error": _error_text(e)}
        return {"ok": True, "nick": nick}

    def issue_invite(self, ttl_seconds: int, max_uses: int, reason: str = "") -> dict[str, Any]:
        try:
            url = self.client.create_invite(ttl_seconds, max_uses, reason=reason)
        except DiscordError as e:
            log.warning("invite creation failed: %s", e)
            return {"ok": False, "error": _error_text(e)}
        return {"ok": True, "url": url, "maxAgeSeconds": int(ttl_seconds), "maxUses": int(max_uses)}

    def find_member(self, query: str, limit: int = 10) -> dict[str, Any]:
        q = str(query or "").strip()
        if not q:
            return {"ok": True, "members": []}
        try:
            if q.isdigit():
                m = self.client.get_member(q)
                members = [m] if m else []
            else:
                members = self.client.search_members(q, limit=limit)
        except DiscordError as e:
            log.warning("member search failed query=%s: %s", q, e)
            return {"ok": False, "members": [], "error": _error_text(e)}
        return {"ok": True, "members": [_serialize_member(m) for m in members[:limit]]}


_client_override: Any = None


def set_identity_client(client: Any) -> None:
    """Replace the Discord client used by `identity_sync_for` (None restores the default)."""
    global _client_override
    _client_override = client


def identity_sync_for(cfg: Config) -> IdentitySync:
    if _client_override is not None:
        return IdentitySync(_client_override)
    return IdentitySync(DiscordClient(cfg))
