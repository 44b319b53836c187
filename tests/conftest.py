import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


@pytest.fixture()
def fake_discord():
    from actions.identity_sync import set_identity_client
    from api_helpers import FakeDiscordClient

    client = FakeDiscordClient()
    set_identity_client(client)
    yield client
    set_identity_client(None)


@pytest.fixture()
def app_client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fake_discord):
    db_path = tmp_path / "test.db"

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path.as_posix()}")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("DISCORD_HIRE_ROLE_IDS", "role-officer,role-department")

    # Prevent accidental pollution from any existing env config.
    monkeypatch.delenv("DISCORD_BOT_TOKEN", raising=False)
    monkeypatch.delenv("ALLOWED_ORIGINS", raising=False)
    monkeypatch.delenv("QUESTIONS_PASS_RATIO", raising=False)
    monkeypatch.delenv("STARTING_RANK_LEVEL", raising=False)

    from app import create_app
    from cache_layer import cache_clear
    from services.bonus import bonus_events
    from services.broadcast import realtime

    cache_clear()
    realtime.clear()
    bonus_events.clear()

    app = create_app()
    app.testing = True

    with app.test_client() as client:
        yield app, client

    realtime.clear()
    bonus_events.clear()
