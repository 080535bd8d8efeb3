# tests/test_api.py
import time
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from dispatch.api import create_app
from dispatch.config import settings
from dispatch.rate_limit import RateLimiter


@pytest.fixture
def limiter():
    return RateLimiter(10)


@pytest.fixture
def client(limiter, monkeypatch):
    monkeypatch.setattr(settings, "api_key", None)
    with TestClient(create_app(limiter)) as c:
        yield c


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_metrics_exposes_limiter_series(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "rate_limiter_rate" in resp.text


def test_limiter_status(client):
    assert client.get("/limiter").json() == {"rate": 10, "tokens_available": 10, "running": True}


def test_update_rate(client, limiter):
    resp = client.put("/limiter/rate", json={"messages_per_second": 4})
    assert resp.status_code == 200
    assert resp.json()["rate"] == 4
    assert resp.json()["tokens_available"] == 4
    assert limiter.rate == 4


@pytest.mark.parametrize("rate", [0, 1001])
def test_update_rate_rejects_out_of_range(client, limiter, rate):
    resp = client.put("/limiter/rate", json={"messages_per_second": rate})
    assert resp.status_code == 422
    assert limiter.rate == 10


def test_reset(client):
    resp = client.post("/limiter/reset")
    assert resp.status_code == 200
    assert resp.json()["tokens_available"] == 10


def test_mutations_require_api_key_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "api_key", "s3cret")
    assert client.put("/limiter/rate", json={"messages_per_second": 5}).status_code == 401
    assert client.post("/limiter/reset").status_code == 401
    ok = client.put("/limiter/rate", json={"messages_per_second": 5}, headers={"X-API-Key": "s3cret"})
    assert ok.status_code == 200
    # reads stay open
    assert client.get("/limiter").status_code == 200


def test_shutdown_stops_limiter(limiter, monkeypatch):
    monkeypatch.setattr(settings, "api_key", None)
    with TestClient(create_app(limiter)):
        assert limiter.running
    assert not limiter.running


def _campaign(campaign_id="camp-api", n=3):
    return {
        "campaignId": campaign_id,
        "templateName": "promo",
        "templateVariables": ["{{name}}"],
        "contacts": [{"phone": f"55119999900{i:02d}", "name": f"c{i}"} for i in range(n)],
    }


def _wa_client():
    wa = MagicMock()
    wa.send_template.side_effect = lambda to, template, **kw: f"wamid.{to}"
    return wa


def _wait_done(client, campaign_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/campaigns/{campaign_id}").json()
        if body["status"] != "running":
            return body
        time.sleep(0.02)
    raise AssertionError(f"campaign {campaign_id} still running")


def test_dispatch_campaign(monkeypatch):
    monkeypatch.setattr(settings, "api_key", None)
    wa = _wa_client()
    with TestClient(create_app(RateLimiter(1000), client=wa)) as c:
        resp = c.post("/campaigns/dispatch", json=_campaign(n=3))
        assert resp.status_code == 202
        assert resp.json() == {"status": "queued", "campaignId": "camp-api", "count": 3}

        body = _wait_done(c, "camp-api")
    assert body == {"campaignId": "camp-api", "status": "done", "sent": 3, "failed": 0, "skipped": 0}
    assert wa.send_template.call_count == 3
    sent_vars = sorted(call.kwargs["variables"] for call in wa.send_template.call_args_list)
    assert sent_vars == [("c0",), ("c1",), ("c2",)]


def test_rate_update_slows_running_campaign(monkeypatch):
    monkeypatch.setattr(settings, "api_key", None)
    wa = _wa_client()
    limiter = RateLimiter(5)
    with TestClient(create_app(limiter, client=wa)) as c:
        start = time.monotonic()
        assert c.post("/campaigns/dispatch", json=_campaign(n=6)).status_code == 202
        # 5 burst tokens, then 2/s instead of 5/s for what is left
        assert c.put("/limiter/rate", json={"messages_per_second": 2}).status_code == 200

        body = _wait_done(c, "camp-api")
        elapsed = time.monotonic() - start
    assert body["sent"] == 6
    assert wa.send_template.call_count == 6
    # at 5/s the sixth message would have gone out after 0.2s
    assert elapsed >= 0.4


def test_duplicate_running_campaign_is_rejected(monkeypatch):
    monkeypatch.setattr(settings, "api_key", None)
    with TestClient(create_app(RateLimiter(1), client=_wa_client())) as c:
        assert c.post("/campaigns/dispatch", json=_campaign(n=3)).status_code == 202
        resp = c.post("/campaigns/dispatch", json=_campaign(n=3))
        assert resp.status_code == 409


def test_shutdown_skips_pending_campaign_messages(monkeypatch):
    monkeypatch.setattr(settings, "api_key", None)
    wa = _wa_client()
    app = create_app(RateLimiter(1), client=wa)
    with TestClient(app) as c:
        assert c.post("/campaigns/dispatch", json=_campaign(n=4)).status_code == 202
    summary = app.state.campaigns["camp-api"].result()
    assert summary.skipped >= 1
    assert summary.sent + summary.skipped == 4


def test_dispatch_requires_credentials(client, monkeypatch):
    monkeypatch.setattr(settings, "phone_number_id", "")
    monkeypatch.setattr(settings, "access_token", "")
    assert client.post("/campaigns/dispatch", json=_campaign()).status_code == 503


def test_dispatch_validates_body(client):
    resp = client.post("/campaigns/dispatch", json={**_campaign(), "contacts": []})
    assert resp.status_code == 422


def test_dispatch_requires_api_key_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "api_key", "s3cret")
    assert client.post("/campaigns/dispatch", json=_campaign()).status_code == 401


def test_unknown_campaign(client):
    assert client.get("/campaigns/nope").status_code == 404
