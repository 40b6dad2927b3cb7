"""
Reference Tracker

Maintains the set of VMs referencing a volume (the volume's 'refs'
attribute). A volume with at least one reference is in use and cannot be
deleted.

Every mutation is a read-modify-write of the volume object guarded by its
etag, retried a bounded number of times when a concurrent writer changed
the volume in between. A reference added concurrently by another request is
therefore never lost.
"""

import logging
from typing import List

from volapi.errors import ConcurrentUpdateError, InternalError, VolumeNotFoundError
from volapi.services.record_store import (
    VOLUMES_BUCKET,
    EtagConflictError,
    ObjectNotFoundError,
    RecordStore,
    StoreError,
    read_modify_write,
)

logger = logging.getLogger(__name__)


class ReferenceTracker:
    """
    Add, remove and list the VM references of volumes.
    """

    def __init__(self, store: RecordStore, max_tries: int = 5, retry_delay: float = 0.1):
        """
        Initialize reference tracker.

        Args:
            store: Record store holding the volumes bucket
            max_tries: Attempts of a read-modify-write before giving up
            retry_delay: Seconds to wait between two attempts
        """
        self.store = store
        self.max_tries = max_tries
        self.retry_delay = retry_delay

    def add_reference(self, vm_uuid: str, volume_uuid: str) -> dict:
        """
        Record that vm_uuid uses volume_uuid. Adding an existing reference is
        a no-op.

        Returns:
            The volume as stored after the update
        """
        def mutate(value: dict):
            refs = list(value.get("refs") or [])
            if vm_uuid in refs:
                return None
            refs.append(vm_uuid)
            value["refs"] = refs
            return value

        volume = self._update(volume_uuid, mutate)
        logger.info("Added reference from VM %s to volume %s", vm_uuid, volume_uuid)
        return volume

    def remove_reference(self, vm_uuid: str, volume_uuid: str) -> dict:
        """
        Remove vm_uuid from the references of volume_uuid. Removing a missing
        reference is a no-op.

        Returns:
            The volume as stored after the update
        """
        def mutate(value: dict):
            refs = list(value.get("refs") or [])
            if vm_uuid not in refs:
                return None
            refs.remove(vm_uuid)
            value["refs"] = refs
            return value

        volume = self._update(volume_uuid, mutate)
        logger.info("Removed reference from VM %s to volume %s", vm_uuid, volume_uuid)
        return volume

    def get_references(self, volume_uuid: str) -> List[str]:
        try:
            stored = self.store.get_object(VOLUMES_BUCKET, volume_uuid)
        except ObjectNotFoundError:
            raise VolumeNotFoundError(volume=volume_uuid)
        except StoreError as exc:
            raise InternalError(f"Error when loading volume {volume_uuid}: {exc}") from exc
        return list(stored.value.get("refs") or [])

    def _update(self, volume_uuid: str, mutate) -> dict:
        try:
            return read_modify_write(
                self.store,
                VOLUMES_BUCKET,
                volume_uuid,
                mutate,
                max_tries=self.max_tries,
                retry_delay=self.retry_delay,
            )
        except ObjectNotFoundError:
            raise VolumeNotFoundError(volume=volume_uuid)
        except EtagConflictError as exc:
            raise ConcurrentUpdateError(uuid=volume_uuid, tries=self.max_tries) from exc
        except StoreError as exc:
            raise InternalError(f"Error when updating references of volume {volume_uuid}: {exc}") from exc
