"""
Record Store Adapter

Bucket-oriented key/value access on top of the SQL database:
- put/get/delete of one object by key, optionally guarded by an etag
- find of all objects matching an LDAP filter string
- batch deletion of several objects in a single transaction

Etag semantics for writes:
- ANY_ETAG: unconditional write
- None: the object must not exist yet
- a string: the stored object must still carry that etag
A write whose condition does not hold raises EtagConflictError. Every
successful write stores a fresh etag.
"""

import logging
import time
import uuid as uuid_lib
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import Integer, BigInteger, and_, delete as sql_delete, false, not_, or_, select, true
from sqlalchemy import update as sql_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from volapi.models import Volume, VolumeNetwork, VolumeReference, VolumeReservation
from volapi.services import ldap_filter

logger = logging.getLogger(__name__)

VOLUMES_BUCKET = "volapi_volumes"
VOLUMES_RESERVATIONS_BUCKET = "volapi_volumes_reservations"


class _AnyEtag:
    def __repr__(self) -> str:
        return "ANY_ETAG"


ANY_ETAG: Any = _AnyEtag()


# ============================================================================
# ERRORS
# ============================================================================

class StoreError(Exception):
    """Record store failure not covered by a more specific error"""


class BucketNotFoundError(StoreError):
    pass


class ObjectNotFoundError(StoreError):
    def __init__(self, bucket: str, key: str):
        self.bucket = bucket
        self.key = key
        super().__init__(f"{bucket}::{key} does not exist")


class EtagConflictError(StoreError):
    def __init__(self, bucket: str, key: str, expected: Any, actual: Optional[str]):
        self.bucket = bucket
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{bucket}::{key} has etag {actual}, expected {expected}"
        )


class UniqueAttributeError(StoreError):
    def __init__(self, bucket: str, key: str):
        self.bucket = bucket
        self.key = key
        super().__init__(f"{bucket}::{key} already exists")


class InvalidFilterError(StoreError):
    pass


# ============================================================================
# BUCKETS
# ============================================================================

@dataclass
class ArrayAttribute:
    """Multi-valued attribute stored as rows of an association table."""
    model: Any
    owner_column: str
    value_column: str


@dataclass
class Bucket:
    name: str
    model: Any
    key_column: str = "uuid"
    arrays: Dict[str, ArrayAttribute] = field(default_factory=dict)

    def scalar_columns(self) -> Dict[str, Any]:
        return {
            column.name: column
            for column in self.model.__table__.columns
            if column.name != "etag"
        }


BUCKETS: Dict[str, Bucket] = {
    VOLUMES_BUCKET: Bucket(
        name=VOLUMES_BUCKET,
        model=Volume,
        arrays={
            "networks": ArrayAttribute(VolumeNetwork, "volume_uuid", "network_uuid"),
            "refs": ArrayAttribute(VolumeReference, "volume_uuid", "vm_uuid"),
        },
    ),
    VOLUMES_RESERVATIONS_BUCKET: Bucket(name=VOLUMES_RESERVATIONS_BUCKET, model=VolumeReservation),
}


@dataclass
class StoredObject:
    bucket: str
    key: str
    value: Dict[str, Any]
    etag: str


@dataclass
class BatchDelete:
    bucket: str
    key: str
    etag: Any = ANY_ETAG


def _new_etag() -> str:
    return uuid_lib.uuid4().hex


# ============================================================================
# FILTER COMPILATION
# ============================================================================

def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _coerce(column, value: str):
    if isinstance(column.type, (Integer, BigInteger)):
        try:
            return int(value)
        except ValueError:
            return None
    return value


def _compile_filter(node: ldap_filter.Filter, bucket: Bucket):
    if isinstance(node, ldap_filter.AndFilter):
        return and_(*[_compile_filter(child, bucket) for child in node.filters])
    if isinstance(node, ldap_filter.OrFilter):
        return or_(*[_compile_filter(child, bucket) for child in node.filters])
    if isinstance(node, ldap_filter.NotFilter):
        return not_(_compile_filter(node.filter, bucket))

    attribute = node.attribute
    key_column = getattr(bucket.model, bucket.key_column)

    if attribute in bucket.arrays:
        array = bucket.arrays[attribute]
        owner_column = getattr(array.model, array.owner_column)
        value_column = getattr(array.model, array.value_column)
        if isinstance(node, ldap_filter.PresenceFilter):
            return key_column.in_(select(owner_column))
        return key_column.in_(select(owner_column).where(_compile_match(node, value_column)))

    columns = bucket.scalar_columns()
    if attribute not in columns:
        raise InvalidFilterError(f"attribute '{attribute}' is not indexed in bucket {bucket.name}")

    column = getattr(bucket.model, attribute)
    if isinstance(node, ldap_filter.PresenceFilter):
        if attribute == bucket.key_column:
            return true()
        return column.isnot(None)
    return _compile_match(node, column)


def _compile_match(node: ldap_filter.Filter, column):
    if isinstance(node, ldap_filter.EqualityFilter):
        value = _coerce(column, node.value)
        if value is None:
            return false()
        return column == value

    if isinstance(node, ldap_filter.SubstringFilter):
        pattern = _like_escape(node.initial or "") + "%"
        for part in node.any:
            pattern += _like_escape(part) + "%"
        pattern += _like_escape(node.final or "")
        return column.like(pattern, escape="\\")

    raise InvalidFilterError(f"unsupported filter {node}")


# ============================================================================
# STORE
# ============================================================================

class RecordStore:
    """
    Key/value object store over the volumes and reservations buckets.
    """

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize record store.

        Args:
            session_factory: SQLAlchemy sessionmaker; each operation runs in
                its own session and transaction
        """
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _bucket(name: str) -> Bucket:
        try:
            return BUCKETS[name]
        except KeyError:
            raise BucketNotFoundError(f"bucket {name} does not exist")

    @staticmethod
    def _to_stored(bucket: Bucket, record) -> StoredObject:
        return StoredObject(
            bucket=bucket.name,
            key=getattr(record, bucket.key_column),
            value=record.to_value(),
            etag=record.etag,
        )

    def ping(self) -> None:
        try:
            with self._session() as db:
                db.execute(select(true()))
        except SQLAlchemyError as exc:
            raise StoreError(f"ping failed: {exc}") from exc

    # ------------------------------------------------------------------------
    # single objects
    # ------------------------------------------------------------------------

    def get_object(self, bucket_name: str, key: str) -> StoredObject:
        bucket = self._bucket(bucket_name)
        try:
            with self._session() as db:
                record = db.get(bucket.model, key)
                if record is None:
                    raise ObjectNotFoundError(bucket_name, key)
                return self._to_stored(bucket, record)
        except SQLAlchemyError as exc:
            raise StoreError(f"getObject {bucket_name}::{key} failed: {exc}") from exc

    def put_object(self, bucket_name: str, key: str, value: Dict[str, Any], etag: Any = ANY_ETAG) -> str:
        """
        Store value under key.

        Returns:
            The new etag of the object
        """
        bucket = self._bucket(bucket_name)
        columns = bucket.scalar_columns()

        unknown = set(value) - set(columns) - set(bucket.arrays)
        if unknown:
            raise StoreError(f"unknown attributes for bucket {bucket_name}: {sorted(unknown)}")

        scalars = {name: value.get(name) for name in columns if name != bucket.key_column}
        new_etag = _new_etag()

        logger.debug("putObject %s::%s (etag=%r)", bucket_name, key, etag)

        try:
            with self._session() as db:
                key_column = getattr(bucket.model, bucket.key_column)
                current = db.scalars(
                    select(bucket.model.etag).where(key_column == key)
                ).first()

                if etag is None and current is not None:
                    raise EtagConflictError(bucket_name, key, etag, current)
                if etag is not None and etag is not ANY_ETAG and current != etag:
                    raise EtagConflictError(bucket_name, key, etag, current)

                if current is None:
                    db.add(bucket.model(**{bucket.key_column: key}, etag=new_etag, **scalars))
                    db.flush()
                else:
                    # Compare-and-swap on the etag read above
                    result = db.execute(
                        sql_update(bucket.model)
                        .where(key_column == key, bucket.model.etag == current)
                        .values(etag=new_etag, **scalars)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise EtagConflictError(bucket_name, key, etag, None)

                for attribute, array in bucket.arrays.items():
                    self._replace_array(db, array, key, value.get(attribute) or [])
        except IntegrityError as exc:
            # Lost an insert race against another writer of the same key
            if etag is ANY_ETAG:
                raise UniqueAttributeError(bucket_name, key) from exc
            raise EtagConflictError(bucket_name, key, etag, None) from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"putObject {bucket_name}::{key} failed: {exc}") from exc

        return new_etag

    @staticmethod
    def _replace_array(db: Session, array: ArrayAttribute, key: str, values: List[str]) -> None:
        owner_column = getattr(array.model, array.owner_column)
        db.execute(
            sql_delete(array.model)
            .where(owner_column == key)
            .execution_options(synchronize_session=False)
        )
        for item in sorted(set(values)):
            db.add(array.model(**{array.owner_column: key, array.value_column: item}))

    def delete_object(self, bucket_name: str, key: str, etag: Any = ANY_ETAG) -> None:
        logger.debug("deleteObject %s::%s (etag=%r)", bucket_name, key, etag)
        self.batch([BatchDelete(bucket_name, key, etag)])

    # ------------------------------------------------------------------------
    # several objects
    # ------------------------------------------------------------------------

    def batch(self, operations: List[BatchDelete]) -> None:
        """Delete every object of operations, all or nothing."""
        if not operations:
            return

        try:
            with self._session() as db:
                for op in operations:
                    bucket = self._bucket(op.bucket)
                    record = db.get(bucket.model, op.key)
                    if record is None:
                        raise ObjectNotFoundError(op.bucket, op.key)
                    if op.etag is not ANY_ETAG and record.etag != op.etag:
                        raise EtagConflictError(op.bucket, op.key, op.etag, record.etag)
                    db.delete(record)
        except SQLAlchemyError as exc:
            raise StoreError(f"batch of {len(operations)} operations failed: {exc}") from exc

    def find_objects(self, bucket_name: str, filter_string: str) -> List[StoredObject]:
        bucket = self._bucket(bucket_name)
        try:
            parsed = ldap_filter.parse(filter_string)
        except ldap_filter.FilterParseError as exc:
            raise InvalidFilterError(str(exc)) from exc

        clause = _compile_filter(parsed, bucket)
        logger.debug("findObjects %s %s", bucket_name, filter_string)

        try:
            with self._session() as db:
                records = db.scalars(
                    select(bucket.model)
                    .where(clause)
                    .order_by(bucket.model.create_timestamp, getattr(bucket.model, bucket.key_column))
                ).all()
                return [self._to_stored(bucket, record) for record in records]
        except SQLAlchemyError as exc:
            raise StoreError(f"findObjects {bucket_name} failed: {exc}") from exc


def read_modify_write(
    store: RecordStore,
    bucket_name: str,
    key: str,
    mutate: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
    max_tries: int = 5,
    retry_delay: float = 0.1,
) -> Dict[str, Any]:
    """
    Apply mutate to the stored value of key, guarded by its etag.

    mutate receives a copy of the current value and returns the new value, or
    None when nothing needs to be written. The whole read-modify-write cycle
    is retried on EtagConflictError only; any other error propagates.

    Returns:
        The value as stored after the update

    Raises:
        EtagConflictError: when every try lost against a concurrent writer
    """
    last_conflict = None
    for attempt in range(1, max_tries + 1):
        current = store.get_object(bucket_name, key)
        new_value = mutate(dict(current.value))
        if new_value is None:
            return current.value
        try:
            store.put_object(bucket_name, key, new_value, etag=current.etag)
            return new_value
        except EtagConflictError as exc:
            last_conflict = exc
            logger.warning(
                "Etag conflict updating %s::%s (try %d/%d), retrying",
                bucket_name, key, attempt, max_tries,
            )
            if attempt < max_tries:
                time.sleep(retry_delay)
    raise last_conflict
