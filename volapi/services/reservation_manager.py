"""
Volume Reservations
A reservation records that a VM being provisioned intends to use a volume,
before that VM exists. Creating a reservation supersedes every previous
reservation for the same (volume name, VM, owner) triple and, when the volume
is already ready, adds the VM to the volume's references.
"""

import logging
import time
import uuid as uuid_lib
from typing import Dict, List, Optional

from volapi.errors import (
    InternalError,
    VolapiError,
    VolumeReservationNotFoundError,
    VolumeReservationOwnerMismatchError,
)
from volapi.models import VolumeState
from volapi.services import ldap_filter, predicate as predicate_mod
from volapi.services.record_store import (
    VOLUMES_BUCKET,
    VOLUMES_RESERVATIONS_BUCKET,
    BatchDelete,
    ObjectNotFoundError,
    RecordStore,
    StoreError,
    StoredObject,
)
from volapi.services.reference_tracker import ReferenceTracker

logger = logging.getLogger(__name__)

RESERVATION_FILTER_FIELDS = ("owner_uuid", "volume_name", "vm_uuid", "job_uuid")


def _eq_filter(params: Dict[str, Optional[str]]) -> str:
    leaves = [
        ldap_filter.EqualityFilter(name, value)
        for name, value in params.items()
        if value is not None
    ]
    return ldap_filter.conjunction(leaves).to_string()


class ReservationManager:
    """
    Manages volume reservations: creation with supersession, lookup, removal.
    """

    def __init__(self, store: RecordStore, reference_tracker: ReferenceTracker):
        """
        Initialize reservation manager.

        Args:
            store: Record store holding both volumes and reservations
            reference_tracker: Writer of the volumes' reference sets
        """
        self.store = store
        self.references = reference_tracker

    # ========================================================================
    # RESERVATION CREATION
    # ========================================================================

    def create_reservation(self, volume_name: str, owner_uuid: str, vm_uuid: str, job_uuid: str) -> dict:
        """
        Create a reservation superseding previous ones for the same triple.

        Steps:
        1. Find previous reservations for (volume_name, vm_uuid, owner_uuid)
        2. Store the new reservation
        3. Delete previous reservations (best effort)
        4. Find the ready volume named volume_name owned by owner_uuid
        5. If it exists, reference it from vm_uuid
        6. Reload the new reservation

        When a step after 2 fails, the new reservation and the reference it
        may have added are removed before the error is raised.

        Returns:
            The stored reservation
        """
        try:
            previous = self.store.find_objects(
                VOLUMES_RESERVATIONS_BUCKET,
                _eq_filter({"volume_name": volume_name, "vm_uuid": vm_uuid, "owner_uuid": owner_uuid}),
            )
        except StoreError as exc:
            raise InternalError(f"Error when listing previous volume reservations: {exc}") from exc

        reservation_uuid = str(uuid_lib.uuid4())
        value = {
            "uuid": reservation_uuid,
            "volume_name": volume_name,
            "owner_uuid": owner_uuid,
            "vm_uuid": vm_uuid,
            "job_uuid": job_uuid,
            "create_timestamp": int(time.time() * 1000),
        }
        try:
            self.store.put_object(VOLUMES_RESERVATIONS_BUCKET, reservation_uuid, value, etag=None)
        except StoreError as exc:
            raise InternalError(f"Error when creating volume reservation: {exc}") from exc

        logger.info(
            "Created volume reservation %s (volume=%s vm=%s owner=%s job=%s)",
            reservation_uuid, volume_name, vm_uuid, owner_uuid, job_uuid,
        )

        self._delete_previous(previous)

        referenced_volume_uuid = None
        try:
            volume = self._find_ready_volume(volume_name, owner_uuid)
            if volume is None:
                logger.info(
                    "No ready volume %s for owner %s, not adding reference from VM %s",
                    volume_name, owner_uuid, vm_uuid,
                )
            else:
                self.references.add_reference(vm_uuid, volume.key)
                referenced_volume_uuid = volume.key

            return self.get_reservation(reservation_uuid)
        except Exception:
            self._rollback(reservation_uuid, vm_uuid, referenced_volume_uuid)
            raise

    def _delete_previous(self, previous: List[StoredObject]) -> None:
        if not previous:
            return
        try:
            self.store.batch([
                BatchDelete(VOLUMES_RESERVATIONS_BUCKET, obj.key, obj.etag) for obj in previous
            ])
            logger.info("Deleted %d superseded volume reservations", len(previous))
        except StoreError as exc:
            # Leftovers are reaped by the reservation reconciler
            logger.error(
                "Error when deleting previous volume reservations %s: %s",
                [obj.key for obj in previous], exc,
            )

    def _find_ready_volume(self, volume_name: str, owner_uuid: str) -> Optional[StoredObject]:
        try:
            volumes = self.store.find_objects(
                VOLUMES_BUCKET,
                _eq_filter({"name": volume_name, "owner_uuid": owner_uuid, "state": VolumeState.READY.value}),
            )
        except StoreError as exc:
            raise InternalError(f"Error when loading volume {volume_name}: {exc}") from exc

        if len(volumes) > 1:
            raise InternalError(
                f"Found {len(volumes)} ready volumes named {volume_name} for owner {owner_uuid}"
            )
        return volumes[0] if volumes else None

    def _rollback(self, reservation_uuid: str, vm_uuid: str, volume_uuid: Optional[str]) -> None:
        try:
            self.store.delete_object(VOLUMES_RESERVATIONS_BUCKET, reservation_uuid)
        except StoreError as exc:
            logger.error("Error when cleaning up volume reservation %s: %s", reservation_uuid, exc)

        if volume_uuid is None:
            return
        try:
            self.references.remove_reference(vm_uuid, volume_uuid)
        except VolapiError as exc:
            logger.error(
                "Error when removing reference from VM %s to volume %s: %s",
                vm_uuid, volume_uuid, exc,
            )

    # ========================================================================
    # LOOKUP / REMOVAL
    # ========================================================================

    def get_reservation(self, reservation_uuid: str) -> dict:
        try:
            return self.store.get_object(VOLUMES_RESERVATIONS_BUCKET, reservation_uuid).value
        except ObjectNotFoundError:
            raise VolumeReservationNotFoundError(uuid=reservation_uuid)
        except StoreError as exc:
            raise InternalError(f"Error when loading volume reservation {reservation_uuid}: {exc}") from exc

    def remove_reservation(self, reservation_uuid: str, owner_uuid: str) -> None:
        """
        Delete a reservation. References added when it was created are left
        untouched.

        Raises:
            VolumeReservationNotFoundError: no such reservation
            VolumeReservationOwnerMismatchError: reservation owned by someone else
        """
        reservation = self.get_reservation(reservation_uuid)
        if reservation["owner_uuid"] != owner_uuid:
            raise VolumeReservationOwnerMismatchError(owner_uuid=owner_uuid, uuid=reservation_uuid)

        try:
            self.store.delete_object(VOLUMES_RESERVATIONS_BUCKET, reservation_uuid)
        except ObjectNotFoundError:
            raise VolumeReservationNotFoundError(uuid=reservation_uuid)
        except StoreError as exc:
            raise InternalError(f"Error when deleting volume reservation {reservation_uuid}: {exc}") from exc

        logger.info("Deleted volume reservation %s", reservation_uuid)

    def list_reservations(self, predicate: Optional[predicate_mod.Node] = None, **params: Optional[str]) -> List[dict]:
        """
        List reservations matching every given field and the predicate.

        Args:
            predicate: Parsed predicate, None matches every reservation
            params: any of owner_uuid, volume_name, vm_uuid, job_uuid
        """
        unknown = set(params) - set(RESERVATION_FILTER_FIELDS)
        if unknown:
            raise ValueError(f"unknown reservation fields: {sorted(unknown)}")

        leaves = [predicate_mod.Eq(name, value) for name, value in params.items() if value is not None]
        if predicate is not None:
            leaves.append(predicate)
        filter_string = predicate_mod.to_filter_string(predicate_mod.conjunction(leaves))

        try:
            found = self.store.find_objects(VOLUMES_RESERVATIONS_BUCKET, filter_string)
        except StoreError as exc:
            raise InternalError(f"Error when listing volume reservations: {exc}") from exc
        return [obj.value for obj in found]
