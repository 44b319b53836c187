import os


def _csv(raw: str) -> list[str]:
    return [s.strip() for s in (raw or "").split(",") if s.strip()]


class Config:
    def __init__(self) -> None:
        self.APP_ENV = os.getenv("APP_ENV", "development")
        self.HOST = os.getenv("HOST", "0.0.0.0")
        self.PORT = int(os.getenv("PORT", "5002"))

        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./onboarding.db")

        self.SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", "720"))

        self.ALLOWED_ORIGINS = _csv(os.getenv("ALLOWED_ORIGINS", "*") or "*")

        # Onboarding rules. The admin-managed lists are cached for this long.
        self.CONFIG_CACHE_TTL_SECONDS = int(os.getenv("CONFIG_CACHE_TTL_SECONDS", "300"))
        self.QUESTIONS_PASS_RATIO = float(os.getenv("QUESTIONS_PASS_RATIO", "0.7"))
        self.STARTING_RANK_LEVEL = int(os.getenv("STARTING_RANK_LEVEL", "1"))
        self.STARTING_DEPARTMENT = os.getenv("STARTING_DEPARTMENT", "Patrol").strip() or "Patrol"
        self.BADGE_CLAIM_MAX_ATTEMPTS = int(os.getenv("BADGE_CLAIM_MAX_ATTEMPTS", "5"))

        # Discord bot (identity sync). Empty token disables every Discord call.
        self.DISCORD_BOT_TOKEN = os.getenv("DISCORD_BOT_TOKEN", "").strip()
        self.DISCORD_GUILD_ID = os.getenv("DISCORD_GUILD_ID", "").strip()
        self.DISCORD_INVITE_CHANNEL_ID = os.getenv("DISCORD_INVITE_CHANNEL_ID", "").strip()
        self.DISCORD_HIRE_ROLE_IDS = _csv(os.getenv("DISCORD_HIRE_ROLE_IDS", ""))
        self.DISCORD_API_BASE = os.getenv("DISCORD_API_BASE", "https://discord.com/api/v10").strip().rstrip("/")
        self.DISCORD_TIMEOUT_SECONDS = float(os.getenv("DISCORD_TIMEOUT_SECONDS", "10"))
        self.INVITE_TTL_SECONDS = int(os.getenv("INVITE_TTL_SECONDS", "86400"))
        self.INVITE_MAX_USES = int(os.getenv("INVITE_MAX_USES", "1"))

        self.RATE_LIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "300 per minute")
        self.RATE_LIMIT_GLOBAL = os.getenv("RATE_LIMIT_GLOBAL", "2000 per minute")

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def IS_PRODUCTION(self) -> bool:
        return str(self.APP_ENV or "").strip().lower() in {"prod", "production"}

    @property
    def DISCORD_ENABLED(self) -> bool:
        return bool(self.DISCORD_BOT_TOKEN)

    def validate(self) -> None:
        if self.IS_PRODUCTION and str(self.DATABASE_URL or "").startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production")

        if self.IS_PRODUCTION and any(str(o or "").strip() == "*" for o in (self.ALLOWED_ORIGINS or [])):
            raise RuntimeError("ALLOWED_ORIGINS must not contain '*' in production")

        if self.DISCORD_ENABLED and not self.DISCORD_GUILD_ID:
            raise RuntimeError("DISCORD_GUILD_ID must be set when DISCORD_BOT_TOKEN is configured")

        if not (0 < self.QUESTIONS_PASS_RATIO <= 1):
            raise RuntimeError("QUESTIONS_PASS_RATIO must be in (0, 1]")

        if self.CONFIG_CACHE_TTL_SECONDS < 0:
            raise RuntimeError("CONFIG_CACHE_TTL_SECONDS must not be negative")

        if self.BADGE_CLAIM_MAX_ATTEMPTS < 1:
            raise RuntimeError("BADGE_CLAIM_MAX_ATTEMPTS must be at least 1")
