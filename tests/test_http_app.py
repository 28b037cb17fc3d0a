# tests/test_http_app.py
"""Tests for the HTTP endpoints (service wired to in-memory fakes)"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from lotbot.config import settings
from lotbot.core.domain import LotStatus
from lotbot.transport.http_app import app

URL = "https://youtu.be/abc12345678"
DISPATCH_AUTH = {"Authorization": "Bearer dispatch-secret"}
TG_SECRET = {"X-Telegram-Bot-Api-Secret-Token": "tg-secret"}


@pytest.fixture
def client(service, monkeypatch):
    monkeypatch.setattr(settings, "dispatch_token", "dispatch-secret")
    monkeypatch.setattr(settings, "telegram_webhook_secret", "tg-secret")
    monkeypatch.setattr(settings, "metrics_token", None)
    # No context manager: lifespan (database, bucket) is not started
    app.state.service = service
    return TestClient(app)


def dispatch_body(*ids, destination="public"):
    return {
        "destination": destination,
        "questions": [{"id": qid, "author": "Maria", "text": f"Pergunta {qid}"} for qid in ids],
    }


def telegram_update(text, sender=100, update_id=5001):
    return {
        "update_id": update_id,
        "message": {
            "message_id": 1,
            "from": {"id": sender, "first_name": "Op"},
            "chat": {"id": sender, "type": "private"},
            "text": text,
        },
    }


class TestOps:
    def test_health(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "status": "ok"}

    def test_request_id_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-123"})

        assert resp.headers["X-Request-ID"] == "req-123"

    def test_metrics_open_without_token(self, client):
        client.get("/health")

        resp = client.get("/metrics")

        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        assert "http_request_duration_ms{path=/health}" in resp.json()["histograms"]

    def test_metrics_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "metrics_token", "m-token")

        assert client.get("/metrics").status_code == 401
        assert client.get("/metrics", headers={"Authorization": "Bearer nope"}).status_code == 401
        assert client.get("/metrics", headers={"Authorization": "Bearer m-token"}).status_code == 200


class TestDispatchEndpoint:
    def test_dispatch(self, client, lot_store, messenger):
        resp = client.post("/bot", json=dispatch_body(10, 11), headers=DISPATCH_AUTH)

        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["destination"] == "Live Gratuita"
        assert body["messageCount"] == 1
        assert lot_store.lots[body["lotCode"]].status == LotStatus.PENDING
        assert [cid for cid, _ in messenger.sent] == ["100", "101"]

    def test_selection_target_alias_on_root(self, client, lot_store):
        body = {"selectionTarget": "despertos", "questions": [{"id": 12, "text": "x"}]}

        resp = client.post("/", json=body, headers=DISPATCH_AUTH)

        assert resp.status_code == 200
        assert resp.json()["destination"] == "Despertos"

    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "Basic x"}])
    def test_unauthorized(self, client, lot_store, headers):
        resp = client.post("/bot", json=dispatch_body(10), headers=headers)

        assert resp.status_code == 401
        assert resp.json()["ok"] is False
        assert lot_store.lots == {}

    def test_open_when_no_token_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "dispatch_token", None)

        assert client.post("/bot", json=dispatch_body(10)).status_code == 200

    @pytest.mark.parametrize("body", [
        {"destination": "public", "questions": []},
        {"destination": "public", "questions": [{"id": 10, "text": "a"}, {"id": 10, "text": "b"}]},
        {"destination": "public", "questions": [{"id": 10, "text": "   "}]},
        {"destination": "public", "questions": [{"id": "10", "text": "a"}]},
        {"destination": "public", "questions": [{"id": 10.5, "text": "a"}]},
        {"destination": "vip", "questions": [{"id": 10, "text": "a"}]},
        {"questions": [{"id": 10, "text": "a"}]},
    ])
    def test_bad_requests(self, client, lot_store, messenger, body):
        resp = client.post("/bot", json=body, headers=DISPATCH_AUTH)

        assert resp.status_code == 400
        assert resp.json()["ok"] is False
        assert lot_store.lots == {}
        assert messenger.sent == []

    def test_unknown_question(self, client, lot_store):
        resp = client.post("/bot", json=dispatch_body(10, 404), headers=DISPATCH_AUTH)

        assert resp.status_code == 404
        assert "404" in resp.json()["error"]
        assert lot_store.lots == {}

    def test_gateway_failure_is_500(self, client, messenger):
        messenger.fail_for = {"100"}

        resp = client.post("/bot", json=dispatch_body(10), headers=DISPATCH_AUTH)

        assert resp.status_code == 500
        assert resp.json()["ok"] is False


class TestBotEndpointDeliveries:
    def test_normalized_delivery_applies_lot(self, client, lot_store, question_repo):
        dispatched = client.post("/bot", json=dispatch_body(10, 11), headers=DISPATCH_AUTH).json()
        delivery = {"deliveryId": "d-1", "sender": {"id": 100}, "text": URL}

        first = client.post("/bot", json=delivery, headers=TG_SECRET)
        second = client.post("/bot", json=delivery, headers=TG_SECRET)

        assert first.json() == {"ok": True, "command": "apply_destination", "replied": True}
        assert second.json() == {"ok": True, "duplicate": True}
        assert lot_store.lots[dispatched["lotCode"]].status == LotStatus.APPLIED
        assert question_repo.records[10].video_url == URL

    def test_normalized_delivery_from_stranger(self, client, messenger):
        resp = client.post("/bot", json={"sender": {"id": "999"}, "text": URL}, headers=TG_SECRET)

        assert resp.json() == {"ok": True, "ignored": True}
        assert messenger.sent == []

    @pytest.mark.parametrize("headers", [{}, {"X-Telegram-Bot-Api-Secret-Token": "x"}])
    def test_normalized_delivery_without_secret(self, client, lot_store, deliveries, headers):
        dispatched = client.post("/bot", json=dispatch_body(10), headers=DISPATCH_AUTH).json()

        resp = client.post("/bot", json={"deliveryId": "d-9", "sender": {"id": 100}, "text": URL}, headers=headers)

        assert resp.status_code == 403
        assert resp.json() == {"ok": False, "error": "Invalid secret token"}
        assert lot_store.lots[dispatched["lotCode"]].status == LotStatus.PENDING
        assert deliveries.seen == set()

    def test_normalized_delivery_open_without_configured_secret(self, client, monkeypatch, lot_store):
        monkeypatch.setattr(settings, "telegram_webhook_secret", None)
        dispatched = client.post("/bot", json=dispatch_body(10), headers=DISPATCH_AUTH).json()

        resp = client.post("/bot", json={"sender": {"id": 100}, "text": URL})

        assert resp.json()["command"] == "apply_destination"
        assert lot_store.lots[dispatched["lotCode"]].status == LotStatus.APPLIED

    def test_raw_telegram_update(self, client, messenger):
        resp = client.post("/bot", json=telegram_update("/undo"), headers=TG_SECRET)

        assert resp.status_code == 200
        assert resp.json()["command"] == "help"
        assert messenger.to("100")

    def test_raw_telegram_update_wrong_secret(self, client, messenger):
        resp = client.post("/bot", json=telegram_update("/undo"), headers={"X-Telegram-Bot-Api-Secret-Token": "x"})

        assert resp.status_code == 403
        assert resp.json() == {"ok": False, "error": "Invalid secret token"}
        assert messenger.sent == []

    def test_check_access(self, client, leads):
        resp = client.post("/bot", json={"action": "CHECK_ACCESS", "email": "VIP@example.com", "name": "Ana"})

        assert resp.json() == {"ok": True, "allowed": True, "source": "allow_list"}
        assert leads.leads[0]["name"] == "Ana"

    def test_check_access_invalid_email(self, client, leads):
        resp = client.post("/bot", json={"action": "CHECK_ACCESS", "email": "nope"})

        assert resp.status_code == 400
        assert leads.leads == []

    @pytest.mark.parametrize("body", [{"action": "DELETE_ALL"}, {}, {"text": "oi"}])
    def test_unrecognized_bodies(self, client, body):
        resp = client.post("/bot", json=body)

        assert resp.status_code == 400
        assert resp.json()["ok"] is False

    def test_non_object_body(self, client):
        assert client.post("/bot", json=[1, 2]).status_code == 400
        assert client.post("/bot", content=b"not json", headers={"Content-Type": "application/json"}).status_code == 400


class TestTelegramWebhook:
    def test_update_processed(self, client, messenger):
        resp = client.post("/webhooks/telegram", json=telegram_update("oi"), headers=TG_SECRET)

        assert resp.status_code == 200
        assert resp.json()["command"] == "help"
        assert len(messenger.to("100")) == 1

    def test_missing_secret(self, client, messenger):
        resp = client.post("/webhooks/telegram", json=telegram_update("oi"))

        assert resp.status_code == 403
        assert messenger.sent == []

    def test_malformed_json_acknowledged(self, client):
        resp = client.post(
            "/webhooks/telegram",
            content=b"{broken",
            headers={**TG_SECRET, "Content-Type": "application/json"},
        )

        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "ignored": True}

    def test_non_message_update_ignored(self, client):
        resp = client.post("/webhooks/telegram", json={"update_id": 1, "edited_message": {}}, headers=TG_SECRET)

        assert resp.json() == {"ok": True, "ignored": True}
