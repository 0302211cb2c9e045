from concurrent.futures import Executor, Future

import pytest
from fastapi.testclient import TestClient

from src.delivery_billing.api.deps import CurrentAccount, get_current_account
from src.delivery_billing.main import create_app
from src.delivery_billing.services.distance.resolver import DistanceResolver
from src.delivery_billing.services.processing.locks import InMemoryLeaseRegistry
from src.delivery_billing.services.processing.orchestrator import ProcessingOrchestrator

ROWS = [
    {
        "client_name": "Acme",
        "number": "12",
        "street": "Rue de la Paix",
        "postal_code": "75002",
        "city": "Paris",
        "country": "FRA",
        "date": "05/03/2024",
        "warehouse": "LYON-1",
    },
    {
        "client_name": "Bistro",
        "number": "3",
        "street": "Place Bellecour",
        "postal_code": "690",
        "city": "Lyon",
        "warehouse": "LYON-1",
    },
]

TIERS = [
    {"range_start": "0", "range_end": "5", "price_ht": "8", "tva_rate": "20"},
    {"range_start": "5", "range_end": "10", "price_ht": "10", "tva_rate": "20"},
    {"range_start": "10", "range_end": None, "price_ht": "12", "tva_rate": "20"},
]


class ImmediateExecutor(Executor):
    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        future.set_result(fn(*args, **kwargs))
        return future


@pytest.fixture
def account() -> dict:
    return {"id": "acct-1"}


@pytest.fixture
def api_client(fake_db, stub_provider, account: dict, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    from src.delivery_billing.services.uploads import service as uploads_service

    orchestrator = ProcessingOrchestrator(
        resolver=DistanceResolver(provider=stub_provider, cache_timeout=2),
        locks=InMemoryLeaseRegistry(),
        watchdog_seconds=30,
        rate_limit_delay=0,
        executor=ImmediateExecutor(),
    )
    monkeypatch.setattr(uploads_service, "get_orchestrator", lambda: orchestrator)
    fake_db.tables["profiles"] = [{"id": "acct-1", "credits_remaining": 10}]

    app = create_app()
    app.dependency_overrides[get_current_account] = lambda: CurrentAccount(id=account["id"])
    return TestClient(app)


def _create(api_client: TestClient) -> str:
    response = api_client.post(
        "/api/uploads",
        json={"filename": "march.xlsx", "warehouse_address": "1 Quai du Depot, 69007 Lyon", "rows": ROWS},
    )
    assert response.status_code == 201
    return response.json()["upload_id"]


def test_health(api_client: TestClient) -> None:
    response = api_client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_routing_health_without_credential(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    from src.delivery_billing.config import settings

    monkeypatch.setattr(settings, "google_maps_api_key", None)

    assert api_client.get("/api/health/routing").status_code == 503


def test_full_billing_flow(api_client: TestClient, fake_db) -> None:
    upload_id = _create(api_client)

    mine = api_client.get("/api/uploads/mine").json()["uploads"]
    assert [item["id"] for item in mine] == [upload_id]
    assert mine[0]["status"] == "pending_validation"

    refused = api_client.post(f"/api/uploads/{upload_id}/process")
    assert refused.status_code == 409
    assert refused.json()["detail"]["outcome"] == "rejected"
    assert refused.json()["detail"]["invalid_count"] == 1

    invalid = api_client.get(f"/api/uploads/{upload_id}/invalid-addresses").json()
    assert invalid["invalid_count"] == 1
    pending = invalid["addresses"][0]
    assert pending["issues"] == ["CODE_POSTAL_INVALIDE"]

    fixed = api_client.patch(
        f"/api/uploads/{upload_id}/addresses/{pending['id']}",
        json={"number": "3", "street": "Place Bellecour", "postal_code": "69002", "city": "Lyon"},
    )
    assert fixed.status_code == 200
    assert fixed.json()["all_valid"] is True

    started = api_client.post(f"/api/uploads/{upload_id}/process")
    assert started.status_code == 202
    assert started.json()["outcome"] == "accepted"
    assert started.json()["total_deliveries"] == 2

    status = api_client.get(f"/api/uploads/{upload_id}/status").json()["upload"]
    assert status["status"] == "distances_done"

    again = api_client.post(f"/api/uploads/{upload_id}/process")
    assert again.status_code == 200
    assert again.json()["outcome"] == "already_done"

    legs = api_client.get(f"/api/uploads/{upload_id}/legs").json()
    assert sorted(leg["client_name"] for leg in legs) == ["Acme", "Bistro"]
    assert all(leg["distance_km"] == 5.0 for leg in legs)

    applied = api_client.post(f"/api/pricing/{upload_id}/apply", json={"tiers": TIERS})
    assert applied.status_code == 200
    body = applied.json()
    assert body["non_priced"] == 0
    assert body["summary"]["upload"]["total_amount"] == 24.0

    clients = api_client.get(f"/api/uploads/{upload_id}/clients").json()
    assert {client["name"]: client["total_amount_ttc"] for client in clients} == {"Acme": 12.0, "Bistro": 12.0}

    config = api_client.get(f"/api/pricing/{upload_id}/config").json()
    assert [tier["label"] for tier in config["tiers"]] == ["0-5 km", "5-10 km", "10+ km"]

    summary = api_client.get(f"/api/pricing/{upload_id}/summary").json()
    assert [client["name"] for client in summary["clients"]] == ["Acme", "Bistro"]

    assert next(row for row in fake_db.rows("profiles"))["credits_remaining"] == 8


def test_numeric_spreadsheet_cells_are_accepted(api_client: TestClient, fake_db) -> None:
    row = dict(ROWS[0], number=12, postal_code=75002.0, task_id=4411)

    response = api_client.post("/api/uploads", json={"filename": "numbers.xlsx", "rows": [row]})

    assert response.status_code == 201
    assert response.json()["invalid_count"] == 0
    pending = fake_db.rows("pending_deliveries")[0]
    assert pending["original_number"] == "12"
    assert pending["original_postal_code"] == "75002"
    assert pending["task_id"] == "4411"


def test_invalid_tier_list_is_bad_request(api_client: TestClient) -> None:
    upload_id = _create(api_client)

    response = api_client.post(f"/api/pricing/{upload_id}/apply", json={"tiers": [{"range_start": "x"}]})

    assert response.status_code == 400


def test_insufficient_credits_is_payment_required(api_client: TestClient, fake_db) -> None:
    fake_db.tables["profiles"][0]["credits_remaining"] = 0
    response = api_client.post(
        "/api/uploads", json={"filename": "small.xlsx", "rows": [ROWS[0]]}
    )
    upload_id = response.json()["upload_id"]

    started = api_client.post(f"/api/uploads/{upload_id}/process")

    assert started.status_code == 402
    assert started.json()["detail"]["outcome"] == "insufficient_credits"


def test_other_accounts_cannot_see_upload(api_client: TestClient, account: dict) -> None:
    upload_id = _create(api_client)
    account["id"] = "intruder"

    assert api_client.get(f"/api/uploads/{upload_id}/status").status_code == 403
    assert api_client.post(f"/api/uploads/{upload_id}/process").status_code == 403
    assert api_client.get(f"/api/pricing/{upload_id}/summary").status_code == 403
    assert api_client.get("/api/uploads/mine").json()["uploads"] == []


def test_unknown_upload_is_not_found(api_client: TestClient) -> None:
    assert api_client.get("/api/uploads/missing/status").status_code == 404


def test_bearer_token_is_verified_against_supabase_auth(fake_db) -> None:
    fake_db.auth.tokens["good-token"] = "acct-9"
    client = TestClient(create_app())

    assert client.get("/api/uploads/mine").status_code == 401
    assert client.get("/api/uploads/mine", headers={"Authorization": "Bearer bad"}).status_code == 401
    response = client.get("/api/uploads/mine", headers={"Authorization": "Bearer good-token"})
    assert response.status_code == 200
    assert response.json() == {"uploads": []}
