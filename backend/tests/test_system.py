import pytest


@pytest.mark.asyncio
async def test_health_ok(api):
    r = await api.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok" and data["db"] is True
    assert "request_id" in data
    assert r.headers["X-Request-ID"] == data["request_id"]


@pytest.mark.asyncio
async def test_request_id_is_echoed(api):
    r = await api.get("/health", headers={"x-request-id": "abc-123"})
    assert r.json()["request_id"] == "abc-123"
    assert r.headers["X-Request-ID"] == "abc-123"


@pytest.mark.asyncio
async def test_version_ok(api):
    r = await api.get("/version")
    assert r.status_code == 200
    data = r.json()
    assert "version" in data and "git_sha" in data
