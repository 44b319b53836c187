from __future__ import annotations

import json
import logging
from typing import Any, Optional

import requests

from config import Config

log = logging.getLogger(__name__)

# Discord rejects nicknames longer than this.
MAX_NICK_LENGTH = 32


class DiscordError(Exception):
    def __init__(self, message: str, status: int = 0, code: Any = None):
        super().__init__(message)
        self.status = status
        self.code = code


def _parse_json_maybe(text: str) -> Any:
    s = str(text or "").strip()
    if not s:
        return None
    try:
        return json.loads(s)
    except Exception:
        return None


class DiscordClient:
    """Thin wrapper over the Discord REST API using the bot token."""

    def __init__(self, cfg: Config):
        self.token = str(cfg.DISCORD_BOT_TOKEN or "").strip()
        self.guild_id = str(cfg.DISCORD_GUILD_ID or "").strip()
        self.invite_channel_id = str(cfg.DISCORD_INVITE_CHANNEL_ID or "").strip()
        self.api_base = str(cfg.DISCORD_API_BASE or "https://discord.com/api/v10").rstrip("/")
        self.timeout = float(cfg.DISCORD_TIMEOUT_SECONDS or 10)

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.guild_id)

    def _request(self, method: str, path: str, *, json_body: Any = None, params: Optional[dict] = None, reason: str = "") -> Any:
        if not self.enabled:
            raise DiscordError("Discord bot is not configured", code="DISCORD_DISABLED")

        headers = {"Authorization": f"Bot {self.token}"}
        if reason:
            headers["X-Audit-Log-Reason"] = reason[:512]

        url = f"{self.api_base}{path}"
        try:
            resp = requests.request(method, url, json=json_body, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise DiscordError(f"Discord request failed: {e}")

        raw_text = str(resp.text or "")
        parsed = _parse_json_maybe(raw_text)
        if resp.status_code >= 400:
            code = parsed.get("code") if isinstance(parsed, dict) else None
            msg = parsed.get("message") if isinstance(parsed, dict) else raw_text.strip()[:300]
            log.warning("discord %s %s failed status=%s code=%s", method, path, resp.status_code, code)
            raise DiscordError(f"Discord API error (HTTP {resp.status_code}): {msg or 'no response body'}", resp.status_code, code)
        return parsed

    def add_member_role(self, user_id: str, role_id: str, reason: str = "") -> None:
        self._request("PUT", f"/guilds/{self.guild_id}/members/{user_id}/roles/{role_id}", reason=reason)

    def set_member_nick(self, user_id: str, nick: str, reason: str = "") -> None:
        self._request(
            "PATCH",
            f"/guilds/{self.guild_id}/members/{user_id}",
            json_body={"nick": str(nick or "")[:MAX_NICK_LENGTH]},
            reason=reason,
        )

    def create_invite(self, max_age: int, max_uses: int, reason: str = "") -> str:
        if not self.invite_channel_id:
            raise DiscordError("DISCORD_INVITE_CHANNEL_ID is not configured", code="INVITE_CHANNEL_MISSING")
        body = {"max_age": int(max_age), "max_uses": int(max_uses), "unique": True}
        out = self._request("POST", f"/channels/{self.invite_channel_id}/invites", json_body=body, reason=reason)
        code = str((out or {}).get("code") or "").strip() if isinstance(out, dict) else ""
        if not code:
            raise DiscordError("Discord returned no invite code")
        return f"https://discord.gg/{code}"

    def search_members(self, query: str, limit: int = 10) -> list[dict[str, Any]]:
        out = self._request(
            "GET",
            f"/guilds/{self.guild_id}/members/search",
            params={"query": str(query or ""), "limit": max(1, min(1000, int(limit)))},
        )
        return out if isinstance(out, list) else []

    def get_member(self, user_id: str) -> Optional[dict[str, Any]]:
        try:
            out = self._request("GET", f"/guilds/{self.guild_id}/members/{user_id}")
        except DiscordError as e:
            if e.status == 404:
                return None
            raise
        return out if isinstance(out, dict) else None
