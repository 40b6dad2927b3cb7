import pytest
import requests

from volapi.services.clients import (
    ApiClientError,
    JobFailedError,
    JobTimeoutError,
    NapiClient,
    PapiClient,
    VmapiClient,
)


class FakeResponse:
    def __init__(self, status_code=200, json_body=None):
        self.status_code = status_code
        self._json = json_body
        self.content = b"" if json_body is None else b"{}"
        self.text = ""

    def json(self):
        if self._json is None:
            raise ValueError("no JSON")
        return self._json


class FakeSession:
    """requests.Session replacement answering from a queue of responses"""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        pass


def test_create_vm_waits_for_job():
    session = FakeSession([
        FakeResponse(202, {"vm_uuid": "vm-1", "job_uuid": "job-1"}),
        FakeResponse(200, {"execution": "running"}),
        FakeResponse(200, {"execution": "succeeded"}),
    ])
    client = VmapiClient("http://vmapi/", job_poll_interval=0, session=session)

    result = client.create_vm({"alias": "x"}, request_id="req-1")

    assert result == {"vm_uuid": "vm-1", "job_uuid": "job-1"}
    assert [call[:2] for call in session.calls] == [
        ("POST", "http://vmapi/vms"),
        ("GET", "http://vmapi/jobs/job-1"),
        ("GET", "http://vmapi/jobs/job-1"),
    ]
    assert session.calls[0][2]["headers"] == {"x-request-id": "req-1"}


def test_failed_job():
    session = FakeSession([
        FakeResponse(202, {"vm_uuid": "vm-1", "job_uuid": "job-1"}),
        FakeResponse(200, {"execution": "failed"}),
    ])
    client = VmapiClient("http://vmapi", job_poll_interval=0, session=session)

    with pytest.raises(JobFailedError):
        client.create_vm({"alias": "x"})


def test_job_timeout():
    session = FakeSession([
        FakeResponse(202, {"vm_uuid": "vm-1", "job_uuid": "job-1"}),
        FakeResponse(200, {"execution": "running"}),
    ])
    client = VmapiClient("http://vmapi", job_poll_interval=0, job_timeout=0, session=session)

    with pytest.raises(JobTimeoutError):
        client.create_vm({"alias": "x"})


def test_error_status_is_raised():
    session = FakeSession([FakeResponse(404, {"code": "ResourceNotFound"})])
    client = NapiClient("http://napi", session=session)

    with pytest.raises(ApiClientError) as excinfo:
        client.get_network("net-1")
    assert excinfo.value.not_found
    assert excinfo.value.body == {"code": "ResourceNotFound"}


def test_connection_error_is_raised():
    session = FakeSession([requests.ConnectionError("refused")])
    client = PapiClient("http://papi", session=session)

    with pytest.raises(ApiClientError) as excinfo:
        client.list_packages("sdc_volume_nfs*")
    assert excinfo.value.status_code is None


def test_list_packages_params():
    session = FakeSession([FakeResponse(200, [{"name": "sdc_volume_nfs_10", "quota": 10240}])])
    client = PapiClient("http://papi", timeout=3, session=session)

    packages = client.list_packages("sdc_volume_nfs*")

    assert packages[0]["quota"] == 10240
    method, url, kwargs = session.calls[0]
    assert kwargs["params"] == {"name": "sdc_volume_nfs*", "active": "true"}
    assert kwargs["timeout"] == 3


def test_create_vm_with_empty_response():
    session = FakeSession([FakeResponse(202)])
    client = VmapiClient("http://vmapi", job_poll_interval=0, session=session)

    assert client.create_vm({"alias": "x"}) == {}
    assert len(session.calls) == 1
