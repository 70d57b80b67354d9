import copy

import pytest
from fastapi.testclient import TestClient

from conftest import STATEMENT_TSV
from spendlens.cache import TTLCache
from spendlens.config import DEFAULT_CONFIG
from spendlens.web import _check_api_key, _extract_bearer, create_app

API_KEY = "test-import-key"


@pytest.fixture
def config():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["import"]["api_key"] = API_KEY
    return cfg


@pytest.fixture
def client(config, store):
    app = create_app(config, store, TTLCache(300))
    return TestClient(app)


def test_import_with_valid_key(client, store):
    resp = client.post(
        "/api/import",
        json={"filename": "july.tsv", "content": STATEMENT_TSV},
        headers={"x-api-key": API_KEY},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["filename"] == "july.tsv"
    assert body["detected"]["headerIndex"] == 2
    assert body["detected"]["delimiter"] == "\t"
    assert body["inserted_count"] == 5
    assert body["processed_count"] == 4
    assert body["skipped_count"] == 1
    assert len(store.select("transactions")) == 4


@pytest.mark.parametrize("headers", [{}, {"x-api-key": "wrong"}])
def test_import_rejects_bad_credentials(client, store, headers):
    resp = client.post("/api/import", json={"content": STATEMENT_TSV}, headers=headers)
    assert resp.status_code == 401
    assert resp.json()["ok"] is False
    assert store.select("staging_import") == []


def test_import_rejects_non_ascii_key(client, store):
    resp = client.post(
        "/api/import",
        json={"content": STATEMENT_TSV},
        headers={"x-api-key": "t\xe9st-import-key".encode("latin-1")},
    )
    assert resp.status_code == 401
    assert store.select("staging_import") == []


def test_import_locked_without_configured_key(store):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    client = TestClient(create_app(cfg, store))
    resp = client.post(
        "/api/import", json={"content": STATEMENT_TSV}, headers={"x-api-key": ""}
    )
    assert resp.status_code == 401


def test_import_bad_header_returns_400(client, store):
    resp = client.post(
        "/api/import",
        json={"content": "just\nsome\nnotes"},
        headers={"x-api-key": API_KEY},
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["ok"] is False
    assert body["error"]
    assert store.select("staging_import") == []


def test_import_empty_content_returns_400(client):
    resp = client.post("/api/import", json={}, headers={"x-api-key": API_KEY})
    assert resp.status_code == 400


def test_import_all_invalid_rows_returns_422(client):
    content = "Transaction Type,Date Posted,Transaction Amount,Description\nDEBIT,nope,1.00,X\n"
    resp = client.post("/api/import", json={"content": content}, headers={"x-api-key": API_KEY})
    assert resp.status_code == 422
    body = resp.json()
    assert body["processed_count"] == 0
    assert body["skipped_count"] == 1
    assert body["inserted_count"] == 1


def test_dashboard_requires_bearer(client):
    resp = client.get("/api/dashboard-summary")
    assert resp.status_code == 401
    assert resp.json()["error"] == "Missing Authorization Bearer token"


def test_dashboard_summary_and_cache(client):
    client.post("/api/seed-demo", headers={"x-api-key": API_KEY})
    headers = {"Authorization": "Bearer local-token"}

    first = client.get("/api/dashboard-summary", headers=headers)
    assert first.status_code == 200
    body = first.json()
    assert body["cached"] is False
    assert len(body["charts"]["weeklySeries26"]) == 26
    for key in (
        "tiles",
        "topCategories",
        "topPayees",
        "recurring",
        "upcomingBills",
        "savingsScenarios",
        "unmappedPayees",
    ):
        assert key in body

    second = client.get("/api/dashboard-summary", headers=headers)
    assert second.json()["cached"] is True


def test_import_invalidates_cached_summary(client):
    headers = {"Authorization": "Bearer local-token"}
    client.get("/api/dashboard-summary", headers=headers)
    client.post(
        "/api/import", json={"content": STATEMENT_TSV}, headers={"x-api-key": API_KEY}
    )
    assert client.get("/api/dashboard-summary", headers=headers).json()["cached"] is False


def test_seed_demo_requires_key(client, store):
    assert client.post("/api/seed-demo").status_code == 401
    resp = client.post("/api/seed-demo", headers={"x-api-key": API_KEY})
    assert resp.status_code == 200
    assert resp.json()["processed_count"] == 10
    assert len(store.select("transactions")) == 10


def test_spend_by_category_route(client):
    resp = client.get(
        "/api/analytics/spend-by-category",
        params={"days": 30},
        headers={"Authorization": "Bearer local-token"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "data": []}


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, None),
        ("", None),
        ("Bearer abc.def", "abc.def"),
        ("Bearer   ", None),
        ("Basic abc", None),
    ],
)
def test_extract_bearer(value, expected):
    assert _extract_bearer(value) == expected


def test_check_api_key():
    _check_api_key("k", "k")
    _check_api_key("cl\xe9", "cl\xe9")
    for expected, provided in (
        ("k", "x"),
        ("k", None),
        (None, "k"),
        ("", ""),
        ("secret", "s\xe9cret"),
    ):
        with pytest.raises(Exception) as info:
            _check_api_key(expected, provided)
        assert info.value.status_code == 401
