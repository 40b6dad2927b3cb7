import pytest

from volapi.services.record_store import (
    ANY_ETAG,
    VOLUMES_BUCKET,
    VOLUMES_RESERVATIONS_BUCKET,
    BatchDelete,
    BucketNotFoundError,
    EtagConflictError,
    InvalidFilterError,
    ObjectNotFoundError,
    StoreError,
    read_modify_write,
)

OWNER = "7a3e9c4e-6a43-4c1b-9b2f-1d0f5b1c2e3a"


def volume_value(uuid, name="vol", state="ready", size=10240, refs=None, networks=None, ts=1):
    value = {
        "uuid": uuid,
        "name": name,
        "owner_uuid": OWNER,
        "size": size,
        "type": "tritonnfs",
        "state": state,
        "create_timestamp": ts,
        "networks": networks or [],
    }
    if refs:
        value["refs"] = refs
    return value


def keys(objects):
    return [obj.key for obj in objects]


def test_put_get_round_trip(store):
    etag = store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1", refs=["vm-b", "vm-a"], networks=["n1"]))

    stored = store.get_object(VOLUMES_BUCKET, "v1")
    assert stored.etag == etag
    assert stored.value["refs"] == ["vm-a", "vm-b"]
    assert stored.value["networks"] == ["n1"]
    assert stored.value["size"] == 10240


def test_empty_refs_are_stored_as_absent(store):
    store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1", refs=["vm-a"]))
    value = store.get_object(VOLUMES_BUCKET, "v1").value
    value["refs"] = []
    store.put_object(VOLUMES_BUCKET, "v1", value)

    assert "refs" not in store.get_object(VOLUMES_BUCKET, "v1").value


def test_get_missing_object(store):
    with pytest.raises(ObjectNotFoundError):
        store.get_object(VOLUMES_BUCKET, "nope")


def test_unknown_bucket(store):
    with pytest.raises(BucketNotFoundError):
        store.get_object("nope", "v1")


def test_unknown_attribute_is_rejected(store):
    value = volume_value("v1")
    value["color"] = "blue"
    with pytest.raises(StoreError):
        store.put_object(VOLUMES_BUCKET, "v1", value)


def test_etag_none_requires_absent_object(store):
    store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1"), etag=None)
    with pytest.raises(EtagConflictError):
        store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1"), etag=None)


def test_stale_etag_is_rejected(store):
    first = store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1"))
    second = store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1", name="renamed"), etag=first)
    assert second != first

    with pytest.raises(EtagConflictError) as excinfo:
        store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1", name="stale"), etag=first)
    assert excinfo.value.actual == second
    assert store.get_object(VOLUMES_BUCKET, "v1").value["name"] == "renamed"


def test_etag_on_missing_object_is_a_conflict(store):
    with pytest.raises(EtagConflictError):
        store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1"), etag="abc")


def test_unconditional_write(store):
    store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1"))
    store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1", name="other"), etag=ANY_ETAG)
    assert store.get_object(VOLUMES_BUCKET, "v1").value["name"] == "other"


def test_find_objects(store):
    store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1", name="alpha", refs=["vm-a"], networks=["n1"], ts=1))
    store.put_object(VOLUMES_BUCKET, "v2", volume_value("v2", name="beta", state="creating", ts=2))
    store.put_object(VOLUMES_BUCKET, "v3", volume_value("v3", name="alphabet", size=20480, networks=["n2"], ts=3))

    assert keys(store.find_objects(VOLUMES_BUCKET, "(uuid=*)")) == ["v1", "v2", "v3"]
    assert keys(store.find_objects(VOLUMES_BUCKET, "(refs=*)")) == ["v1"]
    assert keys(store.find_objects(VOLUMES_BUCKET, "(!(refs=*))")) == ["v2", "v3"]
    assert keys(store.find_objects(VOLUMES_BUCKET, "(refs=vm-a)")) == ["v1"]
    assert keys(store.find_objects(VOLUMES_BUCKET, "(networks=n2)")) == ["v3"]
    assert keys(store.find_objects(VOLUMES_BUCKET, "(name=alpha*)")) == ["v1", "v3"]
    assert keys(store.find_objects(VOLUMES_BUCKET, "(size=20480)")) == ["v3"]
    assert keys(store.find_objects(VOLUMES_BUCKET, "(size=big)")) == []
    assert keys(store.find_objects(
        VOLUMES_BUCKET, "(&(owner_uuid=%s)(|(state=ready)(state=creating))(!(name=beta)))" % OWNER
    )) == ["v1", "v3"]


def test_find_with_invalid_filter(store):
    with pytest.raises(InvalidFilterError):
        store.find_objects(VOLUMES_BUCKET, "(&(name=foo)")
    with pytest.raises(InvalidFilterError):
        store.find_objects(VOLUMES_BUCKET, "(color=blue)")


def reservation_value(uuid, vm_uuid="vm-1"):
    return {
        "uuid": uuid,
        "volume_name": "vol",
        "owner_uuid": OWNER,
        "vm_uuid": vm_uuid,
        "job_uuid": "job-1",
        "create_timestamp": 1,
    }


def test_batch_delete_is_all_or_nothing(store):
    etag1 = store.put_object(VOLUMES_RESERVATIONS_BUCKET, "r1", reservation_value("r1"))
    store.put_object(VOLUMES_RESERVATIONS_BUCKET, "r2", reservation_value("r2"))

    with pytest.raises(EtagConflictError):
        store.batch([
            BatchDelete(VOLUMES_RESERVATIONS_BUCKET, "r1", etag1),
            BatchDelete(VOLUMES_RESERVATIONS_BUCKET, "r2", "stale"),
        ])
    assert len(store.find_objects(VOLUMES_RESERVATIONS_BUCKET, "(uuid=*)")) == 2

    with pytest.raises(ObjectNotFoundError):
        store.batch([
            BatchDelete(VOLUMES_RESERVATIONS_BUCKET, "r1"),
            BatchDelete(VOLUMES_RESERVATIONS_BUCKET, "missing"),
        ])
    assert len(store.find_objects(VOLUMES_RESERVATIONS_BUCKET, "(uuid=*)")) == 2

    store.batch([
        BatchDelete(VOLUMES_RESERVATIONS_BUCKET, "r1", etag1),
        BatchDelete(VOLUMES_RESERVATIONS_BUCKET, "r2"),
    ])
    assert store.find_objects(VOLUMES_RESERVATIONS_BUCKET, "(uuid=*)") == []


def test_delete_object_removes_array_rows(store):
    store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1", refs=["vm-a"], networks=["n1"]))
    store.delete_object(VOLUMES_BUCKET, "v1")

    assert store.find_objects(VOLUMES_BUCKET, "(refs=vm-a)") == []
    with pytest.raises(ObjectNotFoundError):
        store.delete_object(VOLUMES_BUCKET, "v1")


def test_read_modify_write_retries_on_conflict(store):
    store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1"))
    calls = []

    def mutate(value):
        calls.append(value["name"])
        if len(calls) == 1:
            # Concurrent writer sneaks in between our read and our write
            store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1", name="concurrent"))
        value["size"] = 20480
        return value

    result = read_modify_write(store, VOLUMES_BUCKET, "v1", mutate, retry_delay=0)

    assert calls == ["vol", "concurrent"]
    assert result["size"] == 20480
    stored = store.get_object(VOLUMES_BUCKET, "v1").value
    assert stored["name"] == "concurrent"
    assert stored["size"] == 20480


def test_read_modify_write_gives_up(store):
    store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1"))

    def mutate(value):
        store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1"))
        return value

    with pytest.raises(EtagConflictError):
        read_modify_write(store, VOLUMES_BUCKET, "v1", mutate, max_tries=3, retry_delay=0)


def test_read_modify_write_noop(store):
    etag = store.put_object(VOLUMES_BUCKET, "v1", volume_value("v1"))
    read_modify_write(store, VOLUMES_BUCKET, "v1", lambda value: None)
    assert store.get_object(VOLUMES_BUCKET, "v1").etag == etag
