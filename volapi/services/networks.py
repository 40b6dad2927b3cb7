"""
Fabric network ownership checks for volume creation.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List

from volapi.errors import InternalError, InvalidNetworksError
from volapi.services.clients import ApiClientError, NapiClient

logger = logging.getLogger(__name__)


class NetworkValidator:
    """Checks that networks exist, are fabrics and belong to an owner"""

    def __init__(self, napi: NapiClient, max_workers: int = 4):
        self.napi = napi
        self.max_workers = max_workers

    def validate(self, networks: List[str], owner_uuid: str) -> None:
        """
        Raises:
            InvalidNetworksError: some networks are missing, not fabrics, or
                not owned by owner_uuid
            InternalError: NAPI could not be queried
        """
        if not networks:
            return

        missing: List[str] = []
        non_owned: List[str] = []
        non_fabric: List[str] = []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(networks))) as executor:
            futures = {net: executor.submit(self.napi.get_network, net) for net in networks}

        for network_uuid, future in futures.items():
            try:
                network = future.result()
            except ApiClientError as exc:
                if exc.not_found:
                    missing.append(network_uuid)
                    continue
                raise InternalError(f"Error when loading network {network_uuid}: {exc}") from exc

            if network.get("fabric") is not True:
                non_fabric.append(network_uuid)
            if owner_uuid not in (network.get("owner_uuids") or []):
                non_owned.append(network_uuid)

        if missing or non_owned or non_fabric:
            logger.info(
                "Rejected networks for owner %s: missing=%s non_owned=%s non_fabric=%s",
                owner_uuid, missing, non_owned, non_fabric,
            )
            raise InvalidNetworksError(missing, non_owned, non_fabric)
