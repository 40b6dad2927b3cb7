"""
HTTP clients for the platform APIs VOLAPI depends on.

- VmapiClient: create/get/delete the storage VMs backing volumes
- PapiClient: list the packages that size storage VMs
- ImgapiClient: list the images storage VMs boot from
- NapiClient: load networks to check their ownership

All calls are synchronous; VM creation and deletion can optionally wait for
the VMAPI job they start to complete.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class ApiClientError(Exception):
    """Error response (or no response) from a platform API"""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None, body: Any = None):
        self.service = service
        self.status_code = status_code
        self.body = body
        super().__init__(f"{service}: {message}")

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class JobFailedError(ApiClientError):
    pass


class JobTimeoutError(ApiClientError):
    pass


class _JsonApiClient:
    service = "API"

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method, url, params=params, json=json_body, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise ApiClientError(self.service, f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            raise ApiClientError(
                self.service,
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiClientError(self.service, f"{method} {path} returned invalid JSON") from exc

    def close(self) -> None:
        self._session.close()


class VmapiClient(_JsonApiClient):
    service = "VMAPI"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        job_poll_interval: float = 1.0,
        job_timeout: float = 600.0,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(base_url, timeout=timeout, session=session)
        self.job_poll_interval = job_poll_interval
        self.job_timeout = job_timeout

    def get_job(self, job_uuid: str) -> Dict[str, Any]:
        return self._request("GET", f"/jobs/{job_uuid}")

    def wait_for_job(self, job_uuid: str) -> Dict[str, Any]:
        """
        Poll a workflow job until it finishes.

        Raises:
            JobFailedError: job ended in any state other than 'succeeded'
            JobTimeoutError: job still running after job_timeout seconds
        """
        deadline = time.monotonic() + self.job_timeout
        while True:
            job = self.get_job(job_uuid)
            execution = job.get("execution")
            if execution == "succeeded":
                return job
            if execution in ("failed", "canceled"):
                raise JobFailedError(self.service, f"job {job_uuid} {execution}", body=job)
            if time.monotonic() >= deadline:
                raise JobTimeoutError(
                    self.service, f"job {job_uuid} not finished after {self.job_timeout}s", body=job
                )
            time.sleep(self.job_poll_interval)

    def create_vm(
        self, payload: Dict[str, Any], sync: bool = True, request_id: Optional[str] = None
    ) -> Dict[str, Any]:
        headers = {"x-request-id": request_id} if request_id else None
        result = self._request("POST", "/vms", json_body=payload, headers=headers) or {}
        logger.debug("VMAPI createVm returned %s", result)
        if sync and result.get("job_uuid"):
            self.wait_for_job(result["job_uuid"])
        return result

    def get_vm(self, vm_uuid: str) -> Dict[str, Any]:
        return self._request("GET", f"/vms/{vm_uuid}")

    def delete_vm(self, vm_uuid: str, owner_uuid: Optional[str] = None, sync: bool = True) -> Dict[str, Any]:
        params = {"owner_uuid": owner_uuid} if owner_uuid else None
        result = self._request("DELETE", f"/vms/{vm_uuid}", params=params) or {}
        if sync and result.get("job_uuid"):
            self.wait_for_job(result["job_uuid"])
        return result


class PapiClient(_JsonApiClient):
    service = "PAPI"

    def list_packages(self, name: str, active: Optional[bool] = True) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"name": name}
        if active is not None:
            params["active"] = "true" if active else "false"
        return self._request("GET", "/packages", params=params) or []


class ImgapiClient(_JsonApiClient):
    service = "IMGAPI"

    def list_images(self, name: str) -> List[Dict[str, Any]]:
        return self._request("GET", "/images", params={"name": name}) or []


class NapiClient(_JsonApiClient):
    service = "NAPI"

    def get_network(self, network_uuid: str) -> Dict[str, Any]:
        return self._request("GET", f"/networks/{network_uuid}")
