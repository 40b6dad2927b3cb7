import os

from volapi.services.record_store import StoreError


def test_ping(client):
    response = client.get("/ping")

    assert response.status_code == 200
    assert response.json() == {"pid": os.getpid(), "status": "OK", "healthy": True}


def test_ping_rejects_params(client):
    response = client.get("/v1/ping", params={"verbose": "true"})

    assert response.status_code == 409
    assert response.json()["errors"] == ["invalid parameter: verbose"]


def test_ping_reports_store_failure(client, context, monkeypatch):
    def broken_ping():
        raise StoreError("connection refused")

    monkeypatch.setattr(context.store, "ping", broken_ping)

    body = client.get("/ping").json()
    assert body["healthy"] is False
    assert body["status"] != "OK"


def test_unexpected_errors_are_rendered(client, context, monkeypatch):
    def explode(**kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(context.volumes, "list_volumes", explode)

    response = client.get("/volumes")
    assert response.status_code == 500
    assert response.json()["code"] == "InternalError"


def test_malformed_body_is_a_validation_error(client):
    response = client.post("/volumes", json={"owner_uuid": ["not", "a", "string"]})

    assert response.status_code == 409
    assert response.json()["code"] == "ValidationError"
