import asyncio
from typing import Any

import pytest
from fastapi.testclient import TestClient

from ledger_service.main import app, reload_extraction_provider_for_tests
from ledger_service.session import LedgerSession

client = TestClient(app)

JANUARY_STATEMENT = b"Date,Description,Debit\n2024-01-11,POS IMTIAZ SUPER MARKET,500\n"


@pytest.fixture
def mock_provider(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXTRACTION_PROVIDER", "mock")
    monkeypatch.setenv("LEDGER_RETRY_BASE_DELAY_SECONDS", "0")
    reload_extraction_provider_for_tests()


@pytest.fixture
def deterministic_provider(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXTRACTION_PROVIDER", "deterministic")
    monkeypatch.setenv("LEDGER_RETRY_BASE_DELAY_SECONDS", "0")
    reload_extraction_provider_for_tests()


def _create_session() -> str:
    response = client.post("/sessions")
    assert response.status_code == 201
    return response.json()["session_id"]


def _upload_receipts(session_id: str, *names: str) -> dict[str, Any]:
    files = [("files", (name, f"bytes-{name}".encode(), "image/jpeg")) for name in names]
    response = client.post(
        f"/sessions/{session_id}/receipts",
        files=files,
        data={"last_modified": [str(1704844800000 + index) for index in range(len(names))]},
    )
    assert response.status_code == 200
    return response.json()


def _by_description(transactions: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    return {tx["description"]: tx for tx in transactions}


def test_health_reports_active_provider(mock_provider) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "ledger-service", "extraction_provider": "mock"}


def test_full_reconciliation_flow(mock_provider) -> None:
    session_id = _create_session()

    uploaded = _upload_receipts(session_id, "imtiaz.jpg", "pharmacy.jpg")
    assert [item["status"] for item in uploaded["added"]] == ["queued", "queued"]

    processed = client.post(f"/sessions/{session_id}/receipts/process").json()
    assert processed == {"processed": 2, "accepted": 1, "needs_review": 1, "failed": 0, "last_match_count": 0}

    statement = client.post(
        f"/sessions/{session_id}/statement",
        files={"file": ("statement.csv", JANUARY_STATEMENT, "text/csv")},
    )
    assert statement.status_code == 200
    body = statement.json()
    assert body["matched_count"] == 1
    transactions = _by_description(body["transactions"])
    assert transactions["POS IMTIAZ SUPER MARKET"]["match_status"] == "matched"
    assert transactions["ATM CASH WITHDRAWAL"]["category"] == "Other"

    pharmacy_id = uploaded["added"][1]["id"]
    accepted = client.post(f"/sessions/{session_id}/receipts/{pharmacy_id}/accept", json={"category": "medical"})
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"
    assert accepted.json()["fields"]["category"] == "Medical"

    pharmacy_tx = transactions["FAZAL DIN PHARMA"]
    matched = client.post(
        f"/sessions/{session_id}/transactions/{pharmacy_tx['id']}/match",
        json={"receipt_id": pharmacy_id},
    )
    assert matched.status_code == 200
    assert matched.json()["match_status"] == "manual"
    assert matched.json()["matched_receipt_id"] == pharmacy_id

    expenses = client.get(f"/sessions/{session_id}/expenses").json()
    sources = sorted(expense["source"] for expense in expenses)
    assert sources == ["bank", "bank", "receipt", "receipt"]
    bank_rows = [expense for expense in expenses if expense["source"] == "bank"]
    assert {row["merchant_name"] for row in bank_rows} == {"PSO FUEL STATION", "ATM CASH WITHDRAWAL"}
    assert all(row["location"] == "Bank Transaction" for row in bank_rows)


def test_manual_match_conflict_returns_409(mock_provider) -> None:
    session_id = _create_session()
    uploaded = _upload_receipts(session_id, "imtiaz.jpg")
    client.post(f"/sessions/{session_id}/receipts/process")
    transactions = _by_description(
        client.post(
            f"/sessions/{session_id}/statement",
            files={"file": ("statement.csv", JANUARY_STATEMENT, "text/csv")},
        ).json()["transactions"]
    )

    response = client.post(
        f"/sessions/{session_id}/transactions/{transactions['PSO FUEL STATION']['id']}/match",
        json={"receipt_id": uploaded["added"][0]["id"]},
    )

    assert response.status_code == 409
    assert response.json()["error"] == "match_conflict"


def test_duplicate_upload_is_reported(mock_provider) -> None:
    session_id = _create_session()
    _upload_receipts(session_id, "imtiaz.jpg")

    second = _upload_receipts(session_id, "imtiaz.jpg")

    assert second["added"] == []
    assert second["duplicates"] == ["imtiaz.jpg"]


def test_unsupported_receipt_is_rejected_not_failed(mock_provider) -> None:
    session_id = _create_session()

    response = client.post(
        f"/sessions/{session_id}/receipts",
        files=[("files", ("notes.txt", b"hello", "text/plain"))],
    )

    assert response.status_code == 200
    assert response.json()["added"] == []
    assert response.json()["rejected"][0]["name"] == "notes.txt"


def test_manual_expense_and_reports(mock_provider) -> None:
    session_id = _create_session()

    created = client.post(
        f"/sessions/{session_id}/manual-expenses",
        json={
            "amount": 25000,
            "date": "2024-03-05",
            "description": "School fees",
            "category": "Education",
            "payment_method": "Bank Transfer",
        },
    )
    assert created.status_code == 201
    assert created.json()["fields"]["merchant_name"] == "Manual Entry"
    assert created.json()["fields"]["location"] == "Bank Transfer"

    summary = client.get(f"/sessions/{session_id}/reports/expense-summary").json()
    assert summary["total_expenses"] == 25000
    assert summary["deductible_expenses"] == 25000

    fbr = client.get(f"/sessions/{session_id}/reports/fbr", params={"annual_income": 1_000_000}).json()
    assert fbr["education_deduction_eligible"] is True
    assert fbr["expenses"][0]["deductible"] is True

    profit = client.get(f"/sessions/{session_id}/reports/profit-loss", params={"month": "2024-03"}).json()
    assert profit["total_expenses"] == 25000
    assert profit["available_months"] == ["2024-03"]


def test_manual_expense_rejects_unknown_category(mock_provider) -> None:
    session_id = _create_session()

    response = client.post(
        f"/sessions/{session_id}/manual-expenses",
        json={"amount": 100, "date": "2024-03-05", "description": "Snacks", "category": "Snacks"},
    )

    assert response.status_code == 422


def test_profit_loss_rejects_malformed_month(mock_provider) -> None:
    session_id = _create_session()

    response = client.get(f"/sessions/{session_id}/reports/profit-loss", params={"month": "March"})

    assert response.status_code == 422


def test_recategorize_applies_to_similar_transactions(deterministic_provider) -> None:
    session_id = _create_session()
    statement = (
        b"Date,Description,Debit\n"
        b"2024-01-02,ALFALAH CARD PAYMENT,1000\n"
        b"2024-01-09,ALFALAH INSURANCE,2000\n"
        b"2024-01-10,PTCL BILL,2200\n"
    )
    transactions = client.post(
        f"/sessions/{session_id}/statement",
        files={"file": ("statement.csv", statement, "text/csv")},
    ).json()["transactions"]
    first = _by_description(transactions)["ALFALAH CARD PAYMENT"]

    similar = client.get(f"/sessions/{session_id}/transactions/{first['id']}/similar").json()
    assert [tx["description"] for tx in similar] == ["ALFALAH CARD PAYMENT", "ALFALAH INSURANCE"]

    updated = client.patch(
        f"/sessions/{session_id}/transactions/{first['id']}/category",
        json={"category": "Business Expenses", "apply_to_similar": True},
    ).json()
    assert sorted(tx["description"] for tx in updated) == ["ALFALAH CARD PAYMENT", "ALFALAH INSURANCE"]
    assert all(tx["category"] == "Business Expenses" for tx in updated)


def test_deterministic_provider_receipt_failure_is_recorded(deterministic_provider) -> None:
    session_id = _create_session()
    uploaded = _upload_receipts(session_id, "receipt.jpg")

    processed = client.post(f"/sessions/{session_id}/receipts/process").json()

    assert processed["failed"] == 1
    session = client.get(f"/sessions/{session_id}").json()
    item = session["items"][0]
    assert item["id"] == uploaded["added"][0]["id"]
    assert item["status"] == "error"
    assert item["error_message"].startswith("AI processing failed.")


def test_unknown_session_and_item_errors(mock_provider) -> None:
    missing = client.get("/sessions/does-not-exist")
    assert missing.status_code == 404
    assert missing.json()["error"] == "session_not_found"

    session_id = _create_session()
    unknown_item = client.post(f"/sessions/{session_id}/receipts/nope/accept")
    assert unknown_item.status_code == 404
    assert unknown_item.json()["error"] == "receipt_not_found"

    unknown_tx = client.get(f"/sessions/{session_id}/transactions/nope/similar")
    assert unknown_tx.status_code == 404
    assert unknown_tx.json()["error"] == "transaction_not_found"


def test_delete_session(mock_provider) -> None:
    session_id = _create_session()

    assert client.delete(f"/sessions/{session_id}").status_code == 204
    assert client.get(f"/sessions/{session_id}").status_code == 404


def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def test_session_mutations_run_on_the_event_loop(mock_provider, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[str, bool]] = []
    for name in ("add_uploads", "add_manual_expense", "accept_item", "remove_item", "recategorize", "_after_mutation"):
        original = getattr(LedgerSession, name)

        def recording(self, *args, _original=original, _name=name, **kwargs):
            calls.append((_name, _on_event_loop()))
            return _original(self, *args, **kwargs)

        monkeypatch.setattr(LedgerSession, name, recording)

    session_id = _create_session()
    uploaded = _upload_receipts(session_id, "imtiaz.jpg", "pharmacy.jpg")
    client.post(f"/sessions/{session_id}/receipts/process")
    transactions = client.post(
        f"/sessions/{session_id}/statement",
        files={"file": ("statement.csv", JANUARY_STATEMENT, "text/csv")},
    ).json()["transactions"]
    client.post(
        f"/sessions/{session_id}/manual-expenses",
        json={"amount": 100, "date": "2024-01-20", "description": "Tea", "category": "Other"},
    )
    pharmacy_id = uploaded["added"][1]["id"]
    assert client.post(f"/sessions/{session_id}/receipts/{pharmacy_id}/accept", json={}).status_code == 200
    client.patch(
        f"/sessions/{session_id}/transactions/{transactions[0]['id']}/category",
        json={"category": "Other"},
    )
    assert client.delete(f"/sessions/{session_id}/receipts/{pharmacy_id}").status_code == 204

    assert {name for name, _ in calls} >= {"add_uploads", "add_manual_expense", "accept_item", "remove_item", "recategorize"}
    assert all(on_loop for _, on_loop in calls)
