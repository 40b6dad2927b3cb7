import uuid

import pytest

from tests.conftest import OTHER_OWNER_UUID, OWNER_UUID
from volapi.errors import ConcurrentUpdateError
from volapi.services.record_store import VOLUMES_RESERVATIONS_BUCKET

VM_UUID = "5b0c6e3e-1f7a-4f0e-8d5c-9a2b3c4d5e6f"
JOB_UUID = "9d8c7b6a-5f4e-4d3c-8b2a-1f0e9d8c7b6a"


def reservation_params(**overrides):
    params = {
        "volume_name": "myvolume",
        "owner_uuid": OWNER_UUID,
        "vm_uuid": VM_UUID,
        "job_uuid": JOB_UUID,
    }
    params.update(overrides)
    return params


def test_create_reservation(client):
    response = client.post("/volumereservations", json=reservation_params())

    assert response.status_code == 201
    body = response.json()
    assert body["volume_name"] == "myvolume"
    assert body["vm_uuid"] == VM_UUID
    assert body["create_timestamp"].endswith("Z")
    assert uuid.UUID(body["uuid"])


def test_second_reservation_supersedes_first(client):
    first = client.post("/volumereservations", json=reservation_params()).json()
    second = client.post(
        "/volumereservations", json=reservation_params(job_uuid=str(uuid.uuid4()))
    ).json()

    listed = client.get("/volumereservations", params={"vm_uuid": VM_UUID}).json()
    assert [r["uuid"] for r in listed] == [second["uuid"]]
    assert second["uuid"] != first["uuid"]


def test_reservations_for_other_triples_are_kept(client):
    client.post("/volumereservations", json=reservation_params())
    client.post("/volumereservations", json=reservation_params(volume_name="othervolume"))
    client.post("/volumereservations", json=reservation_params(vm_uuid=str(uuid.uuid4())))

    assert len(client.get("/volumereservations").json()) == 3
    assert len(client.get("/volumereservations", params={"vm_uuid": VM_UUID}).json()) == 2


def test_reservation_for_missing_volume_then_ready_volume(client, context, make_volume):
    client.post("/volumereservations", json=reservation_params())

    volume = make_volume(name="myvolume", state="ready")
    assert context.references.get_references(volume["uuid"]) == []

    client.post("/volumereservations", json=reservation_params(job_uuid=str(uuid.uuid4())))
    assert context.references.get_references(volume["uuid"]) == [VM_UUID]


def test_reservation_ignores_volumes_not_ready(client, context, make_volume):
    volume = make_volume(name="myvolume")
    assert volume["state"] == "creating"

    client.post("/volumereservations", json=reservation_params())
    assert context.references.get_references(volume["uuid"]) == []


def test_reservation_ignores_volumes_of_other_owners(client, context, make_volume):
    volume = make_volume(name="myvolume", owner_uuid=OTHER_OWNER_UUID, state="ready")

    client.post("/volumereservations", json=reservation_params())
    assert context.references.get_references(volume["uuid"]) == []


def test_failed_reference_rolls_back_reservation(context, make_volume, monkeypatch):
    make_volume(name="myvolume", state="ready")

    def fail(vm_uuid, volume_uuid):
        raise ConcurrentUpdateError(uuid=volume_uuid, tries=5)

    monkeypatch.setattr(context.references, "add_reference", fail)

    with pytest.raises(ConcurrentUpdateError):
        context.reservations.create_reservation("myvolume", OWNER_UUID, VM_UUID, JOB_UUID)
    assert context.store.find_objects(VOLUMES_RESERVATIONS_BUCKET, "(uuid=*)") == []


def test_failed_reload_removes_added_reference(context, make_volume, monkeypatch):
    volume = make_volume(name="myvolume", state="ready")

    def fail(reservation_uuid):
        raise RuntimeError("store went away")

    monkeypatch.setattr(context.reservations, "get_reservation", fail)

    with pytest.raises(RuntimeError):
        context.reservations.create_reservation("myvolume", OWNER_UUID, VM_UUID, JOB_UUID)
    assert context.references.get_references(volume["uuid"]) == []
    assert context.store.find_objects(VOLUMES_RESERVATIONS_BUCKET, "(uuid=*)") == []


def test_create_reservation_validation(client):
    response = client.post(
        "/volumereservations",
        json={"volume_name": "-bad", "owner_uuid": "nope", "color": "blue"},
    )

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "ValidationError"
    assert "missing mandatory parameter: vm_uuid" in body["errors"]
    assert "missing mandatory parameter: job_uuid" in body["errors"]
    assert "invalid parameter: color" in body["errors"]
    assert len(body["errors"]) == 5


def test_delete_reservation(client):
    reservation = client.post("/volumereservations", json=reservation_params()).json()

    response = client.delete(
        f"/volumereservations/{reservation['uuid']}", params={"owner_uuid": OTHER_OWNER_UUID}
    )
    assert response.status_code == 409
    assert response.json()["code"] == "VolumeReservationOwnerMismatch"

    response = client.delete(f"/volumereservations/{reservation['uuid']}", params={"owner_uuid": OWNER_UUID})
    assert response.status_code == 204

    response = client.delete(f"/volumereservations/{reservation['uuid']}", params={"owner_uuid": OWNER_UUID})
    assert response.status_code == 404
    assert response.json()["code"] == "VolumeReservationNotFound"


def test_delete_reservation_requires_owner(client):
    reservation = client.post("/volumereservations", json=reservation_params()).json()

    response = client.delete(f"/volumereservations/{reservation['uuid']}")
    assert response.status_code == 409
    assert "missing mandatory parameter: owner_uuid" in response.json()["errors"]


def test_delete_reservation_keeps_reference(client, context, make_volume):
    volume = make_volume(name="myvolume", state="ready")
    reservation = client.post("/volumereservations", json=reservation_params()).json()

    client.delete(f"/volumereservations/{reservation['uuid']}", params={"owner_uuid": OWNER_UUID})
    assert context.references.get_references(volume["uuid"]) == [VM_UUID]


def test_list_reservations_with_predicate(client):
    client.post("/volumereservations", json=reservation_params())
    client.post("/volumereservations", json=reservation_params(volume_name="othervolume"))

    response = client.get(
        "/volumereservations", params={"predicate": '{"eq": ["volume_name", "othervolume"]}'}
    )
    assert response.status_code == 200
    assert [r["volume_name"] for r in response.json()] == ["othervolume"]

    response = client.get("/volumereservations", params={"predicate": '{"eq": ["size", 1]}'})
    assert response.status_code == 409


def test_list_reservations_rejects_unknown_params(client):
    response = client.get("/volumereservations", params={"foo": "bar"})
    assert response.status_code == 409
    assert response.json()["errors"] == ["invalid parameter: foo"]
