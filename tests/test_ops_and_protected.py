import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.anyio

# --- Monitoring & Health ---
async def test_metrics_and_health(client: AsyncClient):
    """測試 /metrics, /healthz, /readyz 都能正確回應"""
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "# HELP" in r.text  # Prometheus metrics 格式驗證

    r = await client.get("/healthz")
    assert r.status_code == 200
    assert r.json().get("ok") is True

    r = await client.get("/readyz")
    assert r.status_code == 200
    assert r.json().get("ready") is True

async def test_root_and_api_health(client: AsyncClient):
    r = await client.get("/")
    assert r.status_code == 200
    assert r.json()["app"] == "FileRunner API"

    r = await client.get("/api/health/")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"

async def test_security_headers_present(client: AsyncClient):
    r = await client.get("/healthz")
    assert r.headers.get("x-content-type-options") == "nosniff"

async def test_unknown_route_uses_error_envelope(client: AsyncClient):
    r = await client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert "error" in r.json()

# --- Protected: 需要登入的管理路由 ---
@pytest.mark.parametrize("method,path", [
    ("GET", "/api/projects"),
    ("POST", "/api/projects"),
    ("GET", "/api/folders?project_id=00000000-0000-0000-0000-000000000000"),
    ("POST", "/api/auth/logout-all"),
    ("PUT", "/api/auth/change-password"),
])
async def test_management_routes_require_session(client: AsyncClient, method, path):
    r = await client.request(method, path, json={})
    assert r.status_code in (400, 401)
