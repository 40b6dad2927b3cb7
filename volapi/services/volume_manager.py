"""
Volume Operations
Lifecycle of NFS shared volumes: creation of the backing storage VM and the
volume record, lookup and search, renaming, state transitions and deletion.
A volume referenced by at least one VM is never deleted.
"""

import logging
import secrets
import time
import uuid as uuid_lib
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional

from volapi.config import DEFAULT_VOLUME_SIZE_MB
from volapi.errors import (
    ConcurrentUpdateError,
    InternalError,
    InvalidStateTransitionError,
    VolumeAlreadyExistsError,
    VolumeInUseError,
    VolumeNotFoundError,
)
from volapi.models import VOLUME_STATE_TRANSITIONS, VolumeState, VolumeType
from volapi.services import ldap_filter, predicate as predicate_mod, storage_vm
from volapi.services.clients import ApiClientError, ImgapiClient, PapiClient, VmapiClient
from volapi.services.networks import NetworkValidator
from volapi.services.record_store import (
    VOLUMES_BUCKET,
    EtagConflictError,
    ObjectNotFoundError,
    RecordStore,
    StoreError,
    read_modify_write,
)
from volapi.services.reference_tracker import ReferenceTracker
from volapi.units import parse_volume_size

logger = logging.getLogger(__name__)

# Every volume holds on to its name until it is being deleted
NAMED_STATES = tuple(s.value for s in VolumeState if s != VolumeState.DELETING)


def generate_volume_name(volume_uuid: str) -> str:
    """Name of a volume created without one: 64 lowercase hex characters."""
    return volume_uuid.replace("-", "") + secrets.token_hex(16)


def _name_filter(name: str) -> ldap_filter.Filter:
    """'name' search value, with an optional leading and/or trailing '*'."""
    leading = len(name) > 1 and name.startswith("*")
    trailing = len(name) > 1 and name.endswith("*")
    core = name[1 if leading else 0:len(name) - 1 if trailing else len(name)]
    if leading and trailing:
        return ldap_filter.SubstringFilter("name", any=(core,))
    if leading:
        return ldap_filter.SubstringFilter("name", final=core)
    if trailing:
        return ldap_filter.SubstringFilter("name", initial=core)
    return ldap_filter.EqualityFilter("name", name)


class VolumeManager:
    """
    Manages volume lifecycle: creation, lookup, update and deletion.
    """

    def __init__(
        self,
        store: RecordStore,
        reference_tracker: ReferenceTracker,
        vmapi: VmapiClient,
        papi: PapiClient,
        imgapi: ImgapiClient,
        network_validator: NetworkValidator,
        default_volume_size_mb: int = DEFAULT_VOLUME_SIZE_MB,
    ):
        """
        Initialize volume manager.

        Args:
            store: Record store holding the volumes bucket
            reference_tracker: Writer of the volumes' reference sets
            vmapi: Client used to create and delete storage VMs
            papi: Client used to list volume packages
            imgapi: Client used to find the storage VM image
            network_validator: Checks networks requested for a volume
            default_volume_size_mb: Size of volumes created without a size
        """
        self.store = store
        self.references = reference_tracker
        self.vmapi = vmapi
        self.papi = papi
        self.imgapi = imgapi
        self.network_validator = network_validator
        self.default_volume_size_mb = default_volume_size_mb

    # ========================================================================
    # VOLUME CREATION
    # ========================================================================

    def create_volume(
        self,
        owner_uuid: str,
        name: Optional[str] = None,
        size: Any = None,
        type: str = VolumeType.TRITONNFS.value,
        networks: Optional[List[str]] = None,
        state: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> dict:
        """
        Create new volume and its storage VM.

        Steps:
        1. Generate the volume uuid, and its name if none was given
        2. Reject names held by another volume of the owner (any state but deleting)
        3. Check networks against NAPI
        4. Select package and image (in parallel)
        5. Create the storage VM and wait for its job
        6. Store the volume record

        Nothing is stored when the storage VM could not be created.

        Args:
            owner_uuid: Owner of the volume
            name: Volume name, generated when empty
            size: Requested size, MiB or a string with a unit
            type: Volume type
            networks: Networks the storage VM is attached to
            state: Initial state, 'creating' by default

        Returns:
            The stored volume
        """
        networks = list(networks or [])
        volume_uuid = str(uuid_lib.uuid4())
        if not name:
            name = generate_volume_name(volume_uuid)

        self._check_name_available(name, owner_uuid)
        self.network_validator.validate(networks, owner_uuid)

        requested_size = parse_volume_size(size)
        if requested_size is None:
            requested_size = self.default_volume_size_mb

        package, image = self._select_package_and_image(requested_size)
        logger.info(
            "Creating volume %s (%s) for owner %s with package %s (quota=%s) and image %s",
            volume_uuid, name, owner_uuid, package.get("name"), package["quota"], image["uuid"],
        )

        payload = storage_vm.build_payload(volume_uuid, owner_uuid, networks, package, image)
        try:
            created = self.vmapi.create_vm(payload, sync=True, request_id=request_id)
        except ApiClientError as exc:
            logger.error("Storage VM creation failed for volume %s: %s", volume_uuid, exc)
            raise InternalError(f"Error when creating storage VM for volume {volume_uuid}: {exc}") from exc
        if not created.get("vm_uuid"):
            raise InternalError(f"VMAPI did not return a storage VM uuid for volume {volume_uuid}")

        value = {
            "uuid": volume_uuid,
            "name": name,
            "owner_uuid": owner_uuid,
            "size": package["quota"],
            "type": type,
            "state": state or VolumeState.CREATING.value,
            "vm_uuid": created["vm_uuid"],
            "networks": networks,
            "create_timestamp": int(time.time() * 1000),
        }
        try:
            self.store.put_object(VOLUMES_BUCKET, volume_uuid, value, etag=None)
        except StoreError as exc:
            logger.error(
                "Storage VM %s created but volume %s could not be stored: %s",
                created["vm_uuid"], volume_uuid, exc,
            )
            raise InternalError(f"Error when storing volume {volume_uuid}: {exc}") from exc

        logger.info("Created volume %s with storage VM %s", volume_uuid, created["vm_uuid"])
        return self.get_volume(volume_uuid)

    def _check_name_available(self, name: str, owner_uuid: str, exclude_uuid: Optional[str] = None) -> None:
        existing = [
            volume for volume in self.find_volumes_by_name(name, owner_uuid, states=NAMED_STATES)
            if volume["uuid"] != exclude_uuid
        ]
        if existing:
            raise VolumeAlreadyExistsError(name=name)

    def _select_package_and_image(self, requested_size: int):
        def get_package():
            try:
                packages = self.papi.list_packages(storage_vm.VOLUME_PACKAGE_NAME_PATTERN, active=True)
            except ApiClientError as exc:
                raise InternalError(f"Error when listing volume packages: {exc}") from exc
            return storage_vm.select_package(requested_size, packages)

        def get_image():
            try:
                images = self.imgapi.list_images(storage_vm.STORAGE_VM_IMAGE_NAME)
            except ApiClientError as exc:
                raise InternalError(f"Error when listing storage VM images: {exc}") from exc
            return storage_vm.select_image(images)

        with ThreadPoolExecutor(max_workers=2) as executor:
            package_future = executor.submit(get_package)
            image_future = executor.submit(get_image)
            # First error to come back wins
            for future in as_completed([package_future, image_future]):
                future.result()

        return package_future.result(), image_future.result()

    # ========================================================================
    # LOOKUP
    # ========================================================================

    def get_volume(self, volume_uuid: str, owner_uuid: Optional[str] = None) -> dict:
        """
        Load one volume. A volume owned by someone other than owner_uuid is
        reported as not found.
        """
        try:
            volume = self.store.get_object(VOLUMES_BUCKET, volume_uuid).value
        except ObjectNotFoundError:
            raise VolumeNotFoundError(volume=volume_uuid)
        except StoreError as exc:
            raise InternalError(f"Error when loading volume {volume_uuid}: {exc}") from exc

        if owner_uuid is not None and volume["owner_uuid"] != owner_uuid:
            raise VolumeNotFoundError(volume=volume_uuid)
        return volume

    def list_volumes(
        self,
        name: Optional[str] = None,
        owner_uuid: Optional[str] = None,
        state: Optional[str] = None,
        size: Optional[Any] = None,
        type: Optional[str] = None,
        uuid: Optional[str] = None,
        vm_uuid: Optional[str] = None,
        predicate: Optional[predicate_mod.Node] = None,
    ) -> List[dict]:
        """
        List volumes matching every given field and the predicate.

        Args:
            name: Exact name, or a name with a leading/trailing '*' wildcard
            predicate: Parsed predicate, None matches every volume
        """
        filters: List[ldap_filter.Filter] = []
        if name is not None:
            filters.append(_name_filter(name))
        for field, value in (
            ("owner_uuid", owner_uuid),
            ("state", state),
            ("size", size),
            ("type", type),
            ("uuid", uuid),
            ("vm_uuid", vm_uuid),
        ):
            if value is not None:
                filters.append(ldap_filter.EqualityFilter(field, str(value)))
        if predicate is not None:
            filters.append(predicate_mod.to_filter(predicate, predicate_mod.volume_leaf))

        return self._find(ldap_filter.conjunction(filters).to_string())

    def find_volumes_by_name(
        self, name: str, owner_uuid: str, states: Optional[tuple] = None
    ) -> List[dict]:
        filters: List[ldap_filter.Filter] = [
            ldap_filter.EqualityFilter("name", name),
            ldap_filter.EqualityFilter("owner_uuid", owner_uuid),
        ]
        if states:
            state_filters = tuple(ldap_filter.EqualityFilter("state", s) for s in states)
            filters.append(state_filters[0] if len(state_filters) == 1 else ldap_filter.OrFilter(state_filters))
        return self._find(ldap_filter.conjunction(filters).to_string())

    def _find(self, filter_string: str) -> List[dict]:
        try:
            return [obj.value for obj in self.store.find_objects(VOLUMES_BUCKET, filter_string)]
        except StoreError as exc:
            raise InternalError(f"Error when listing volumes: {exc}") from exc

    def get_volume_references(self, volume_uuid: str, owner_uuid: Optional[str] = None) -> List[str]:
        self.get_volume(volume_uuid, owner_uuid)
        return self.references.get_references(volume_uuid)

    def list_volume_sizes(self, type: str = VolumeType.TRITONNFS.value) -> List[dict]:
        """Sizes volumes can be created with, smallest first."""
        try:
            packages = self.papi.list_packages(storage_vm.VOLUME_PACKAGE_NAME_PATTERN, active=True)
        except ApiClientError as exc:
            raise InternalError(f"Error when listing volume packages: {exc}") from exc

        sizes = []
        for package in sorted(packages, key=lambda pkg: pkg.get("quota", 0)):
            if "quota" not in package:
                continue
            sizes.append({
                "size": package["quota"],
                "description": package.get("description") or package.get("name"),
                "type": type,
            })
        return sizes

    # ========================================================================
    # UPDATES
    # ========================================================================

    def update_volume(self, volume_uuid: str, owner_uuid: Optional[str] = None, name: Optional[str] = None) -> dict:
        """
        Rename a volume. Only the name of a volume can be changed.

        Returns:
            The volume after the update
        """
        volume = self.get_volume(volume_uuid, owner_uuid)
        if name is None or name == volume["name"]:
            return volume

        self._check_name_available(name, volume["owner_uuid"], exclude_uuid=volume_uuid)

        def mutate(value: dict):
            value["name"] = name
            return value

        self._modify(volume_uuid, mutate)
        logger.info("Renamed volume %s from %s to %s", volume_uuid, volume["name"], name)
        return self.get_volume(volume_uuid)

    def update_volume_state(self, volume_uuid: str, state: str) -> dict:
        """
        Move a volume to state, following VOLUME_STATE_TRANSITIONS.

        Raises:
            InvalidStateTransitionError: transition is not allowed
        """
        target = VolumeState(state)

        def mutate(value: dict):
            current = VolumeState(value["state"])
            if current == target:
                return None
            if target not in VOLUME_STATE_TRANSITIONS[current]:
                raise InvalidStateTransitionError(uuid=volume_uuid, current=current.value, target=target.value)
            value["state"] = target.value
            return value

        volume = self._modify(volume_uuid, mutate)
        logger.info("Volume %s is now %s", volume_uuid, volume["state"])
        return volume

    def _modify(self, volume_uuid: str, mutate) -> dict:
        try:
            return read_modify_write(
                self.store,
                VOLUMES_BUCKET,
                volume_uuid,
                mutate,
                max_tries=self.references.max_tries,
                retry_delay=self.references.retry_delay,
            )
        except ObjectNotFoundError:
            raise VolumeNotFoundError(volume=volume_uuid)
        except EtagConflictError as exc:
            raise ConcurrentUpdateError(uuid=volume_uuid, tries=self.references.max_tries) from exc
        except StoreError as exc:
            raise InternalError(f"Error when updating volume {volume_uuid}: {exc}") from exc

    # ========================================================================
    # VOLUME DELETION
    # ========================================================================

    def delete_volume(
        self,
        volume_uuid: Optional[str] = None,
        name: Optional[str] = None,
        owner_uuid: Optional[str] = None,
    ) -> None:
        """
        Delete a volume and its storage VM.

        Steps:
        1. Load the volume by uuid, or by name and owner
        2. Refuse if any VM references it
        3. Mark it 'deleting'
        4. Delete the storage VM
        5. Delete the volume record

        Raises:
            VolumeNotFoundError: no such volume for this owner
            VolumeInUseError: volume is referenced, nothing was changed
        """
        if volume_uuid is not None:
            volume = self.get_volume(volume_uuid, owner_uuid)
        else:
            volume = self._find_volume_to_delete(name, owner_uuid)
            volume_uuid = volume["uuid"]

        def mark_deleting(value: dict):
            refs = value.get("refs") or []
            if refs:
                raise VolumeInUseError(uuid=volume_uuid, refs=", ".join(refs))
            if value["state"] == VolumeState.DELETING.value:
                return None
            value["state"] = VolumeState.DELETING.value
            return value

        volume = self._modify(volume_uuid, mark_deleting)
        logger.info("Deleting volume %s", volume_uuid)

        vm_uuid = volume.get("vm_uuid")
        if vm_uuid:
            self._delete_storage_vm(vm_uuid, volume["owner_uuid"])

        try:
            self.store.delete_object(VOLUMES_BUCKET, volume_uuid)
        except ObjectNotFoundError:
            logger.info("Volume %s already deleted", volume_uuid)
        except StoreError as exc:
            raise InternalError(f"Error when deleting volume {volume_uuid}: {exc}") from exc

        logger.info("Deleted volume %s", volume_uuid)

    def _find_volume_to_delete(self, name: str, owner_uuid: str) -> dict:
        """
        Volume a delete by name applies to: the one volume holding the name,
        or else a volume left in 'deleting' by an earlier delete that failed.
        """
        matches = self.find_volumes_by_name(name, owner_uuid)
        if not matches:
            raise VolumeNotFoundError(volume=name)

        named = [v for v in matches if v["state"] != VolumeState.DELETING.value]
        if len(named) > 1:
            raise InternalError(f"Found {len(named)} volumes named {name} for owner {owner_uuid}")
        if named:
            return named[0]
        return min(matches, key=lambda v: v.get("create_timestamp", 0))

    def _delete_storage_vm(self, vm_uuid: str, owner_uuid: str) -> None:
        try:
            vm = self.vmapi.get_vm(vm_uuid)
            if vm.get("state") == "destroyed":
                logger.info("Storage VM %s already destroyed", vm_uuid)
                return
            self.vmapi.delete_vm(vm_uuid, owner_uuid=owner_uuid, sync=True)
        except ApiClientError as exc:
            if exc.not_found:
                logger.info("Storage VM %s not found", vm_uuid)
                return
            raise InternalError(f"Error when deleting storage VM {vm_uuid}: {exc}") from exc
        logger.info("Deleted storage VM %s", vm_uuid)
