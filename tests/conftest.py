import asyncio

import pytest
from fastapi.testclient import TestClient

from shopfront.config import Settings
from shopfront.model.schemas import ProductIn
from shopfront.model.storage import open_storage

ADMIN_PASSWORD = "test-admin-pw"
MOCK_SECRET = "test-mock-secret"

SHOE = {"id": "shoe-1", "name": "Trail Runner", "price_cents": 2000,
        "inventory": 5, "active": True}


@pytest.fixture(params=["json", "sql"])
def settings(request, tmp_path):
    return Settings(
        store_backend=request.param,
        data_file=str(tmp_path / "store.json"),
        database_url=f"sqlite:///{tmp_path / 'shop.db'}",
    )


@pytest.fixture
def json_settings(tmp_path):
    return Settings(store_backend="json",
                    data_file=str(tmp_path / "store.json"))


@pytest.fixture
def run_with_storage():
    """Run `scenario(storage)` inside a fresh event loop and open storage."""
    def _run(settings, scenario, products=(SHOE,)):
        async def _main():
            async with open_storage(settings) as storage:
                for p in products:
                    await storage.catalog.create_product(ProductIn(**p))
                return await scenario(storage)
        return asyncio.run(_main())
    return _run


# ----------------------------
# HTTP
# ----------------------------
@pytest.fixture
def client(monkeypatch, tmp_path):
    monkeypatch.setenv("STORE_BACKEND", "json")
    monkeypatch.setenv("DATA_FILE", str(tmp_path / "store.json"))
    monkeypatch.setenv("CREDENTIAL_BACKEND", "memory")
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setenv("MOCK_SECRET", MOCK_SECRET)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    from shopfront.server import app
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers(client):
    response = client.post("/api/admin/login",
                           json={"password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}
