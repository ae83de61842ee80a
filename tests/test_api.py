from fastapi.testclient import TestClient

from api.server import create_app
from core.ledger import LedgerRecorder
from core.scheduler import CycleScheduler
from fakes import FakeDatastore


def test_health_reports_scheduler_state():
    scheduler = CycleScheduler([], FakeDatastore(), worker_id="tempo-test")
    scheduler.processed_count = 7
    client = TestClient(create_app(scheduler.get_status))

    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["worker_id"] == "tempo-test"
    assert body["chain"] == "tempo"
    assert body["processed_count"] == 7
    assert body["last_poll"] is None


def test_no_mutation_routes():
    client = TestClient(create_app(lambda: {}))
    assert client.post("/health").status_code == 405
    assert client.get("/transfer").status_code == 404


def test_health_includes_executor_status():
    scheduler = CycleScheduler([], FakeDatastore())
    client = TestClient(create_app(lambda: {**scheduler.get_status(), "executor": {"tx_count": 3}}))

    assert client.get("/health").json()["executor"] == {"tx_count": 3}


def test_health_includes_ledger_counters():
    scheduler = CycleScheduler([], FakeDatastore())
    ledger = LedgerRecorder(FakeDatastore())
    ledger.conflicts = 2
    client = TestClient(create_app(lambda: {**scheduler.get_status(), "ledger": ledger.get_status()}))

    assert client.get("/health").json()["ledger"] == {"records_written": 0, "conflicts": 2}
