"""Tests for the per-phone and per-IP webhook rate limits."""

import pytest
from limits.storage import storage_from_string

from prima.core.config import settings
from prima.core.rate_limit import PhoneRateLimiter


def test_phone_limiter_blocks_after_limit():
    limiter = PhoneRateLimiter(storage_from_string("memory://"), "3/minute")
    phone = "6281333852187"
    assert [limiter.hit(phone) for _ in range(4)] == [True, True, True, False]
    assert limiter.remaining(phone) == 0


def test_phone_limiter_is_per_number():
    limiter = PhoneRateLimiter(storage_from_string("memory://"), "1/minute")
    assert limiter.hit("6281333852187") is True
    assert limiter.hit("6281333852187") is False
    assert limiter.hit("6281200000000") is True


def test_phone_limiter_fails_open(monkeypatch):
    limiter = PhoneRateLimiter(storage_from_string("memory://"), "1/minute")

    def broken(*args, **kwargs):
        raise ConnectionError("redis down")

    monkeypatch.setattr(limiter._strategy, "hit", broken)
    assert limiter.hit("6281333852187") is True


@pytest.mark.asyncio
async def test_ip_limit_returns_429_with_retry_after(client, monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_WEBHOOK_PER_IP", "2/minute")
    body = {"sender": "6281200000000", "message": "halo"}

    for _ in range(2):
        response = await client.post("/webhooks/fonnte", json=body)
        assert response.status_code == 200

    response = await client.post("/webhooks/fonnte", json=body)
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) > 0
    assert response.json()["ok"] is False
    assert response.json()["error"] == "rate_limited"


@pytest.mark.asyncio
async def test_phone_limit_soft_drops(client, make_patient, monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_PER_PHONE", "2/minute")
    make_patient()

    statuses = []
    for i in range(3):
        response = await client.post(
            "/webhooks/fonnte",
            json={"sender": "6281333852187", "message": f"pertanyaan {i}", "id": f"m{i}"},
        )
        assert response.status_code == 200
        statuses.append(response.json())

    assert statuses[2] == {"ok": True, "processed": False, "action": "rate_limited"}
