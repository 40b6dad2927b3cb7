import uuid

import pytest
from fastapi.testclient import TestClient

from volapi.config import VolapiConfig
from volapi.context import build_context
from volapi.service import create_app
from volapi.services.clients import ApiClientError, JobFailedError

OWNER_UUID = "7a3e9c4e-6a43-4c1b-9b2f-1d0f5b1c2e3a"
OTHER_OWNER_UUID = "0b7d2f0e-8e61-4e2a-a4d5-3f9c8b7a6e5d"


class FakeVmapi:
    def __init__(self):
        self.vms = {}
        self.create_payloads = []
        self.fail_create = False

    def create_vm(self, payload, sync=True, request_id=None):
        self.create_payloads.append(payload)
        if self.fail_create:
            raise JobFailedError("VMAPI", "job provision failed")
        vm_uuid = str(uuid.uuid4())
        self.vms[vm_uuid] = {"uuid": vm_uuid, "state": "running", "alias": payload["alias"]}
        return {"vm_uuid": vm_uuid, "job_uuid": str(uuid.uuid4())}

    def get_vm(self, vm_uuid):
        if vm_uuid not in self.vms:
            raise ApiClientError("VMAPI", "GET /vms returned 404", status_code=404)
        return self.vms[vm_uuid]

    def delete_vm(self, vm_uuid, owner_uuid=None, sync=True):
        self.get_vm(vm_uuid)["state"] = "destroyed"
        return {"job_uuid": str(uuid.uuid4())}

    def close(self):
        pass


class FakePapi:
    def __init__(self):
        self.packages = [
            {"uuid": str(uuid.uuid4()), "name": "sdc_volume_nfs_20", "quota": 20480, "active": True},
            {"uuid": str(uuid.uuid4()), "name": "sdc_volume_nfs_10", "quota": 10240, "active": True},
            {"uuid": str(uuid.uuid4()), "name": "sdc_volume_nfs_100", "quota": 102400, "active": True},
            {"uuid": str(uuid.uuid4()), "name": "sdc_volume_nfs_1000", "quota": 1024000, "active": False},
        ]

    def list_packages(self, name, active=True):
        return [pkg for pkg in self.packages if active is None or pkg["active"] == active]

    def close(self):
        pass


class FakeImgapi:
    def __init__(self):
        self.images = [{"uuid": str(uuid.uuid4()), "name": "nfsserver"}]

    def list_images(self, name):
        return [image for image in self.images if image["name"] == name]

    def close(self):
        pass


class FakeNapi:
    def __init__(self):
        self.networks = {}

    def add_network(self, fabric=True, owner_uuids=(OWNER_UUID,)):
        network_uuid = str(uuid.uuid4())
        self.networks[network_uuid] = {
            "uuid": network_uuid,
            "fabric": fabric,
            "owner_uuids": list(owner_uuids),
        }
        return network_uuid

    def get_network(self, network_uuid):
        if network_uuid not in self.networks:
            raise ApiClientError("NAPI", "GET /networks returned 404", status_code=404)
        return self.networks[network_uuid]

    def close(self):
        pass


@pytest.fixture
def config():
    return VolapiConfig(
        database_url="sqlite://",
        ref_update_retry_delay_seconds=0.0,
        log_level="DEBUG",
    )


@pytest.fixture
def vmapi():
    return FakeVmapi()


@pytest.fixture
def papi():
    return FakePapi()


@pytest.fixture
def imgapi():
    return FakeImgapi()


@pytest.fixture
def napi():
    return FakeNapi()


@pytest.fixture
def context(config, vmapi, papi, imgapi, napi):
    ctx = build_context(config, vmapi=vmapi, papi=papi, imgapi=imgapi, napi=napi)
    yield ctx
    ctx.engine.dispose()


@pytest.fixture
def store(context):
    return context.store


@pytest.fixture
def client(context):
    app = create_app(context=context)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def make_volume(context):
    """Create a volume through the manager, optionally moving it to a state"""

    def _make(name="myvolume", owner_uuid=OWNER_UUID, state=None, **kwargs):
        volume = context.volumes.create_volume(owner_uuid=owner_uuid, name=name, **kwargs)
        if state is not None:
            volume = context.volumes.update_volume_state(volume["uuid"], state)
        return volume

    return _make
