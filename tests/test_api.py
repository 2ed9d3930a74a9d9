from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from budget_scanner.config import Settings
from budget_scanner.domain.errors import LlmError, OcrError
from budget_scanner.interfaces import api
from budget_scanner.services.receipt_ingestion import ReceiptPipeline
from fakes import FakeLlm, FakeOcr

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


class FakeVision:
    def __init__(self, response):
        self.response = response
        self.seen = []

    def annotate(self, image_b64):
        self.seen.append(image_b64)
        return self.response


@pytest.fixture
def gateways():
    return {"ocr": FakeOcr("Bread 2.00\nSales Tax 0.20\n"), "llm": FakeLlm("")}


@pytest.fixture
def client(tmp_path: Path, gateways):
    settings = Settings(db_path=str(tmp_path / "api.db"), llm_model="gpt-test")

    api.app.dependency_overrides[api.get_settings] = lambda: settings
    api.app.dependency_overrides[api.get_llm] = lambda: gateways["llm"]
    api.app.dependency_overrides[api.get_pipeline] = lambda: ReceiptPipeline(
        ocr=gateways["ocr"], llm=gateways["llm"], resize=False
    )
    with TestClient(api.app) as c:
        yield c
    api.app.dependency_overrides.clear()


def _seed(client, headers=ALICE):
    client.post("/categories/defaults", headers=headers)
    return {c["name"]: c for c in client.get("/categories", headers=headers).json()}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_user_header_required(client):
    assert client.get("/categories").status_code == 422


def test_manual_entry_and_user_isolation(client):
    cats = _seed(client)
    _seed(client, BOB)

    r = client.post("/spending-items", json={"category": "groceries", "amount": 4.5, "name": "Eggs"}, headers=ALICE)
    assert r.status_code == 201

    alice = {c["name"]: c for c in client.get("/categories", headers=ALICE).json()}
    bob = {c["name"]: c for c in client.get("/categories", headers=BOB).json()}
    assert alice["Groceries"]["total_spent"] == 4.5
    assert bob["Groceries"]["total_spent"] == 0

    items = client.get(f"/categories/{cats['Groceries']['id']}/items", headers=ALICE).json()
    assert [i["item_name"] for i in items] == ["Eggs"]
    assert client.get(f"/categories/{cats['Groceries']['id']}/items", headers=BOB).status_code == 404


def test_manual_entry_unknown_category(client):
    _seed(client)
    r = client.post("/spending-items", json={"category": "Yachts", "amount": 1, "name": "Sail"}, headers=ALICE)
    assert r.status_code == 404
    assert "Yachts" in r.json()["detail"]


def test_totals_set_adjust_reset(client):
    cats = _seed(client)
    cid = cats["Dining"]["id"]

    assert client.put(f"/categories/{cid}/total", json={"amount": 50}, headers=ALICE).json()["total_spent"] == 50
    assert client.post(f"/categories/{cid}/adjust", json={"delta": -20}, headers=ALICE).json()["total_spent"] == 30
    assert client.post(f"/categories/{cid}/adjust", json={"delta": -100}, headers=ALICE).status_code == 400

    client.post("/categories/reset", headers=ALICE)
    assert all(c["total_spent"] == 0 for c in client.get("/categories", headers=ALICE).json())


def test_budget_progress_and_alerts(client):
    cats = _seed(client)
    gid = cats["Groceries"]["id"]

    budget = client.post("/budgets", json={"category_id": gid, "budget_amount": 100}, headers=ALICE).json()
    client.put(f"/categories/{gid}/total", json={"amount": 85}, headers=ALICE)

    progress = client.get("/budgets/progress", headers=ALICE).json()
    assert progress[0]["budget_id"] == budget["id"]
    assert progress[0]["alert_level"] == "warning"
    assert progress[0]["remaining_amount"] == pytest.approx(15)

    assert [a["category_name"] for a in client.get("/budgets/alerts", headers=ALICE).json()] == ["Groceries"]

    client.put(f"/budgets/{budget['id']}", json={"budget_amount": 1000}, headers=ALICE)
    assert client.get("/budgets/alerts", headers=ALICE).json() == []

    assert client.delete(f"/budgets/{budget['id']}", headers=BOB).status_code == 404
    assert client.delete(f"/budgets/{budget['id']}", headers=ALICE).json() == {"ok": True}


def test_process_receipt(client, gateways):
    cats = _seed(client)
    client.post("/budgets", json={"category_id": cats["Groceries"]["id"], "budget_amount": 10}, headers=ALICE)
    gateways["llm"].reply = json.dumps(
        {
            "storeName": "Corner Market",
            "total": 2.2,
            "items": [
                {"description": "Bread", "price": "2.00", "category": "Groceries"},
                {"description": "Sales Tax", "price": "0.20", "category": "Tax"},
                {"description": "Bag", "price": "n/a", "category": "Other"},
            ],
        }
    )

    r = client.post("/receipts/process", files={"file": ("r.jpg", b"jpeg", "image/jpeg")}, headers=ALICE)

    assert r.status_code == 200
    body = r.json()
    assert body["store_name"] == "Corner Market"
    assert [a["category_name"] for a in body["applied"]] == ["Groceries", "Tax"]
    assert len(body["skipped"]) == 1
    assert body["total_applied"] == pytest.approx(2.2)
    assert body["budget_progress"][0]["spent_amount"] == pytest.approx(2.0)


def test_process_receipt_bad_reply_keeps_ocr_text(client, gateways):
    _seed(client)
    gateways["llm"].reply = "I cannot help with that."

    r = client.post("/receipts/process", files={"file": ("r.jpg", b"jpeg", "image/jpeg")}, headers=ALICE)

    assert r.status_code == 422
    assert r.json()["ocr_text"].startswith("Bread 2.00")
    assert client.get("/spending-items", headers=ALICE).json() == []


def test_process_receipt_ocr_failure(client, gateways):
    _seed(client)
    gateways["ocr"].error = OcrError("No text detected in the image.")

    r = client.post("/receipts/process", files={"file": ("r.jpg", b"jpeg", "image/jpeg")}, headers=ALICE)
    assert r.status_code == 502


def test_llm_proxy_wraps_simple_prompt(client, gateways):
    gateways["llm"].reply = '"Cook at home twice a week."'

    body = client.post("/api/llm", json={"prompt": "tips please"}).json()

    assert body["tip"] == "Cook at home twice a week."
    assert body["id"] == "chatcmpl-fake"
    sent = gateways["llm"].payloads[0]
    assert sent["max_tokens"] == 256
    assert sent["model"] == "gpt-test"
    assert sent["messages"] == [{"role": "user", "content": "tips please"}]


def test_llm_proxy_rejects_unknown_body(client):
    assert client.post("/api/llm", json={"foo": 1}).status_code == 400


def test_vision_proxy(client):
    vision = FakeVision({"responses": [{"fullTextAnnotation": {"text": "hi", "pages": []}}]})
    api.app.dependency_overrides[api.get_vision] = lambda: vision

    body = client.post("/api/vision", json={"imageBase64": "aGk="}).json()

    assert body["responses"][0]["fullTextAnnotation"]["text"] == "hi"
    assert vision.seen == ["aGk="]


def test_tips(client, gateways):
    _seed(client)
    client.post("/spending-items", json={"category": "Dining", "amount": 120, "name": "Dinner"}, headers=ALICE)
    gateways["llm"].reply = "- Cook at home\n- Set a dining budget\n"

    assert client.post("/tips", headers=ALICE).json() == {"tips": ["Cook at home", "Set a dining budget"]}
    assert "Dining: $120.00" in gateways["llm"].prompts[0]


def test_process_receipt_llm_failure_keeps_ocr_text(client, gateways):
    _seed(client)
    gateways["llm"].error = LlmError("timeout")

    r = client.post("/receipts/process", files={"file": ("r.jpg", b"jpeg", "image/jpeg")}, headers=ALICE)

    assert r.status_code == 502
    assert r.json()["error"] == "LlmError"
    assert r.json()["ocr_text"].startswith("Bread 2.00")
    assert client.get("/spending-items", headers=ALICE).json() == []


class LoopCheckingOcr(FakeOcr):
    def extract_text(self, image_bytes: bytes) -> str:
        try:
            asyncio.get_running_loop()
            self.on_event_loop = True
        except RuntimeError:
            self.on_event_loop = False
        return super().extract_text(image_bytes)


def test_process_receipt_runs_off_the_event_loop(client, gateways):
    _seed(client)
    gateways["ocr"] = LoopCheckingOcr("Bread 2.00\n")
    gateways["llm"].reply = json.dumps({"storeName": "S", "total": 2, "items": []})

    r = client.post("/receipts/process", files={"file": ("r.jpg", b"jpeg", "image/jpeg")}, headers=ALICE)

    assert r.status_code == 200
    assert gateways["ocr"].on_event_loop is False


def test_non_finite_amounts_rejected(client):
    cats = _seed(client)
    cid = cats["Dining"]["id"]
    client.put(f"/categories/{cid}/total", json={"amount": 12.5}, headers=ALICE)

    assert client.put(f"/categories/{cid}/total", json={"amount": "inf"}, headers=ALICE).status_code == 422
    assert client.post(f"/categories/{cid}/adjust", json={"delta": "-inf"}, headers=ALICE).status_code == 422
    r = client.post("/spending-items", json={"category": "Dining", "amount": "nan", "name": "x"}, headers=ALICE)
    assert r.status_code == 422
    r = client.post("/budgets", json={"category_id": cid, "budget_amount": "inf"}, headers=ALICE)
    assert r.status_code == 422

    r = client.get("/categories", headers=ALICE)
    assert r.status_code == 200
    assert {c["name"]: c for c in r.json()}["Dining"]["total_spent"] == 12.5


def test_duplicate_category_is_a_conflict(client):
    _seed(client)

    r = client.post("/categories", json={"name": "groceries"}, headers=ALICE)

    assert r.status_code == 409
    assert "groceries" in r.json()["detail"]
    assert client.post("/categories", json={"name": "groceries"}, headers=BOB).status_code == 201


def test_llm_proxy_uses_server_model_for_full_payload(client, gateways):
    gateways["llm"].reply = "ok"
    payload = {"model": "gpt-4o-mini", "max_tokens": 2048, "messages": [{"role": "user", "content": "hi"}]}

    body = client.post("/api/llm", json=payload).json()

    assert body["tip"] == "ok"
    sent = gateways["llm"].payloads[0]
    assert sent["model"] == "gpt-test"
    assert sent["max_tokens"] == 2048
    assert sent["messages"] == payload["messages"]
