from __future__ import annotations

import pytest

from actions.config_items import FALLBACK_ITEMS, ConfigCache, required_correct
from api_helpers import _api, api_ok, seed_user
from utils import ValidationError


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _Provider:
    def __init__(self, items=None):
        self.items = items or {}
        self.calls: list[str] = []

    def __call__(self, db, kind):
        self.calls.append(kind)
        return list(self.items.get(kind, []))


def test_cache_serves_within_ttl_and_reloads_after():
    clock = _Clock()
    provider = _Provider({"criteria": [{"id": "c1", "label": "Licence"}]})
    cache = ConfigCache(provider=provider, ttl_seconds=300, timer=clock)

    assert cache.get_ids(None, "criteria") == ["c1"]
    clock.now += 299
    assert cache.get_ids(None, "criteria") == ["c1"]
    assert provider.calls == ["criteria"]

    provider.items["criteria"] = [{"id": "c2", "label": "Visa"}]
    clock.now += 2
    assert cache.get_ids(None, "criteria") == ["c2"]
    assert provider.calls == ["criteria", "criteria"]


def test_empty_kind_resolves_to_fallback():
    cache = ConfigCache(provider=_Provider(), ttl_seconds=300, timer=_Clock())

    items = cache.get(None, "onboarding")
    assert items == [dict(it) for it in FALLBACK_ITEMS["onboarding"]]
    assert len(cache.get(None, "questions")) == 11


def test_invalidate_forces_reload():
    provider = _Provider({"questions": [{"id": "q1", "label": "Q"}]})
    cache = ConfigCache(provider=provider, ttl_seconds=300, timer=_Clock())

    cache.get(None, "questions")
    cache.get(None, "criteria")
    cache.invalidate("questions")
    cache.get(None, "questions")
    cache.get(None, "criteria")
    assert provider.calls == ["questions", "criteria", "questions"]

    cache.invalidate()
    cache.get(None, "criteria")
    assert provider.calls[-1] == "criteria"
    assert len(provider.calls) == 4


def test_returned_lists_are_copies():
    cache = ConfigCache(provider=_Provider({"criteria": [{"id": "c1", "label": "Licence"}]}), timer=_Clock())

    items = cache.get(None, "criteria")
    items[0]["label"] = "changed"
    items.append({"id": "x", "label": "x"})
    assert cache.get(None, "criteria") == [{"id": "c1", "label": "Licence"}]


def test_unknown_kind_is_rejected():
    cache = ConfigCache(provider=_Provider(), timer=_Clock())
    with pytest.raises(ValidationError):
        cache.get(None, "bonus")


def test_required_correct_rounds_up():
    assert required_correct(10, 0.7) == 7
    assert required_correct(11, 0.7) == 8
    assert required_correct(30, 0.7) == 21
    assert required_correct(0, 0.7) == 0
    assert required_correct(3, 1.0) == 3


def test_admin_edits_invalidate_cached_lists(app_client):
    _app, client = app_client
    admin = seed_user(user_id="U-ADMIN", discord_id="900000000000000009", role="ADMIN")

    before = api_ok(client, action="ONBOARDING_CONFIG_GET", token=admin)
    assert before["criteria"][0]["id"].startswith("fallback-criteria-")
    assert before["questionsRequired"] == 8

    item = api_ok(client, action="CONFIG_ITEM_CREATE", token=admin, data={"kind": "criteria", "label": "Licence"})
    after = api_ok(client, action="ONBOARDING_CONFIG_GET", token=admin)
    assert after["criteria"] == [{"id": item["itemId"], "label": "Licence"}]

    api_ok(client, action="CONFIG_ITEM_TOGGLE", token=admin, data={"itemId": item["itemId"]})
    toggled = api_ok(client, action="ONBOARDING_CONFIG_GET", token=admin)
    assert toggled["criteria"][0]["id"].startswith("fallback-criteria-")


def test_config_item_rules(app_client):
    _app, client = app_client
    admin = seed_user(user_id="U-ADMIN", discord_id="900000000000000009", role="ADMIN")
    hr = seed_user()

    resp = _api(client, action="CONFIG_ITEM_CREATE", token=hr, data={"kind": "criteria", "label": "Licence"})
    assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    a = api_ok(client, action="CONFIG_ITEM_CREATE", token=admin, data={"kind": "questions", "label": "Q1"})
    b = api_ok(client, action="CONFIG_ITEM_CREATE", token=admin, data={"kind": "questions", "label": "Q2"})
    assert (a["sortOrder"], b["sortOrder"]) == (0, 1)

    resp = _api(client, action="CONFIG_ITEM_CREATE", token=admin, data={"kind": "questions", "label": "Q1"})
    assert resp.status_code == 409

    resp = _api(client, action="CONFIG_ITEM_CREATE", token=admin, data={"kind": "perks", "label": "Q1"})
    assert resp.status_code == 400

    reordered = api_ok(
        client, action="CONFIG_ITEMS_REORDER", token=admin, data={"kind": "questions", "itemIds": [b["itemId"], a["itemId"]]}
    )
    assert [i["label"] for i in reordered["items"]] == ["Q2", "Q1"]

    cfg = api_ok(client, action="ONBOARDING_CONFIG_GET", token=hr)
    assert [i["label"] for i in cfg["questions"]] == ["Q2", "Q1"]
    assert cfg["questionsRequired"] == 2

    api_ok(client, action="CONFIG_ITEM_DELETE", token=admin, data={"itemId": a["itemId"]})
    cfg = api_ok(client, action="ONBOARDING_CONFIG_GET", token=hr)
    assert [i["label"] for i in cfg["questions"]] == ["Q2"]
