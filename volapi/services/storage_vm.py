"""
Storage VM selection and payload.

A tritonnfs volume is served by a dedicated NFS server zone. Its package is
the smallest 'sdc_volume_nfs*' package large enough for the requested size,
and its image is the 'nfsserver' image.
"""

import json
from typing import Any, Dict, List

from volapi.errors import ImageNotFoundError, VolumeSizeNotAvailableError

VOLUME_PACKAGE_NAME_PATTERN = "sdc_volume_nfs*"
STORAGE_VM_IMAGE_NAME = "nfsserver"
STORAGE_VM_ALIAS_PREFIX = "nfs-shared-volume"
STORAGE_VM_BRAND = "joyent-minimal"
STORAGE_VM_SMARTDC_ROLE = "nfsserver"
EXPORTS_DIRNAME = "data"

STORAGE_VM_USER_SCRIPT = """#!/usr/bin/bash

export PS4='[\\D{%FT%TZ}] ${BASH_SOURCE}:${LINENO}: ${FUNCNAME[0]:+${FUNCNAME[0]}(): }'

set -o xtrace
set -o errexit
set -o pipefail

# /var/svc/.ran-user-script exists once the zone has been set up.
SENTINEL=/var/svc/.ran-user-script

DIR=/opt/smartdc/boot

if [[ ! -e ${SENTINEL} ]]; then
    if [[ -f ${DIR}/setup.sh ]]; then
        ${DIR}/setup.sh 2>&1 | tee /var/svc/setup.log
    else
        /usr/sbin/svcadm enable bind
        /usr/sbin/zfs set sharenfs='anon=0,root_mapping=nobody' "zones/$(/usr/bin/zonename)/data"
    fi

    touch ${SENTINEL}
fi

if [[ -f ${DIR}/configure.sh ]]; then
    exec ${DIR}/configure.sh
fi
"""


def select_package(requested_size: int, packages: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Pick the smallest package whose quota fits requested_size (MiB).

    Raises:
        VolumeSizeNotAvailableError: no package is large enough
    """
    candidates = [pkg for pkg in packages if pkg.get("quota", 0) >= requested_size]
    if not candidates:
        available = sorted({pkg["quota"] for pkg in packages if "quota" in pkg})
        raise VolumeSizeNotAvailableError(requested_size, available)
    return min(candidates, key=lambda pkg: pkg["quota"])


def select_image(images: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not images:
        raise ImageNotFoundError(name=STORAGE_VM_IMAGE_NAME)
    return images[0]


def build_payload(
    volume_uuid: str,
    owner_uuid: str,
    networks: List[str],
    package: Dict[str, Any],
    image: Dict[str, Any],
) -> Dict[str, Any]:
    """VMAPI CreateVm payload for the storage VM of a volume."""
    payload = {
        "billing_id": package["uuid"],
        "alias": f"{STORAGE_VM_ALIAS_PREFIX}-{volume_uuid}",
        "brand": STORAGE_VM_BRAND,
        "customer_metadata": {
            "export-volumes": json.dumps([EXPORTS_DIRNAME]),
            "user-script": STORAGE_VM_USER_SCRIPT,
        },
        # Data survives the loss of the storage VM
        "delegate_dataset": True,
        "owner_uuid": owner_uuid,
        "tags": {"smartdc_role": STORAGE_VM_SMARTDC_ROLE},
        "image_uuid": image["uuid"],
    }
    if networks:
        payload["networks"] = list(networks)
    return payload
