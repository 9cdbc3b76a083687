import sys
import importlib
import pytest


def _load_app(monkeypatch):
    monkeypatch.setenv("APP_ENV", "testing")
    for m in ["wsgi", "app.config", "app.test_support"]:
        if m in sys.modules:
            del sys.modules[m]
    import wsgi as entry
    importlib.reload(entry)
    return entry.app


def test_test_support_unversioned_still_works(monkeypatch):
    app = _load_app(monkeypatch)
    c = app.test_client()
    r = c.get("/__ok")
    assert r.status_code == 200
    js = r.get_json()
    assert js["status"] == "success"
    assert js["data"]["ping"] == "pong"


def test_test_support_also_available_under_api_v1(monkeypatch):
    app = _load_app(monkeypatch)
    c = app.test_client()
    r = c.get("/api/v1/test_support/__ok")
    assert r.status_code == 200
    js = r.get_json()
    assert js["status"] == "success"
    assert js["data"]["ping"] == "pong"


@pytest.mark.parametrize("rule", [
    "/api/v1/availability",
    "/api/v1/checkout",
    "/api/v1/orders/cancel",
    "/api/v1/webhooks/payments",
    "/api/v1/admin/inventory",
    "/api/v1/driver/route",
])
def test_booking_routes_are_versioned(monkeypatch, rule):
    app = _load_app(monkeypatch)
    rules = {str(r.rule) for r in app.url_map.iter_rules()}
    assert rule in rules
