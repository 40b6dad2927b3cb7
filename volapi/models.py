from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base, relationship
import enum

Base = declarative_base()

# ============================================================================
# ENUM DEFINITIONS
# ============================================================================

class VolumeState(str, enum.Enum):
    """Volume lifecycle state"""
    CREATING = "creating"
    READY = "ready"
    FAILED = "failed"
    ROLLING_BACK = "rolling_back"
    DELETING = "deleting"


class VolumeType(str, enum.Enum):
    """Supported volume types"""
    TRITONNFS = "tritonnfs"


# Allowed volume state transitions. Anything can go to DELETING once the
# volume has no references left.
VOLUME_STATE_TRANSITIONS = {
    VolumeState.CREATING: {VolumeState.READY, VolumeState.FAILED, VolumeState.DELETING},
    VolumeState.READY: {VolumeState.ROLLING_BACK, VolumeState.DELETING},
    VolumeState.FAILED: {VolumeState.ROLLING_BACK, VolumeState.DELETING},
    VolumeState.ROLLING_BACK: {VolumeState.READY, VolumeState.FAILED, VolumeState.DELETING},
    VolumeState.DELETING: {VolumeState.DELETING},
}


# ============================================================================
# VOLUMES
# ============================================================================

class Volume(Base):
    """NFS shared volume backed by a storage VM"""
    __tablename__ = "volumes"

    uuid = Column(String(36), primary_key=True)
    name = Column(String(256), nullable=False, index=True)
    owner_uuid = Column(String(36), nullable=False, index=True)

    size = Column(Integer, index=True)
    type = Column(String, index=True)
    state = Column(String, index=True)

    # Storage VM provisioned for this volume
    vm_uuid = Column(String(36), index=True)

    # Epoch milliseconds
    create_timestamp = Column(BigInteger, index=True)

    # Version token for optimistic concurrency, changed on every write
    etag = Column(String(32), nullable=False)

    # Relationships
    networks = relationship("VolumeNetwork", back_populates="volume", cascade="all, delete-orphan")
    references = relationship("VolumeReference", back_populates="volume", cascade="all, delete-orphan")

    def to_value(self) -> dict:
        value = {
            "uuid": self.uuid,
            "name": self.name,
            "owner_uuid": self.owner_uuid,
            "size": self.size,
            "type": self.type,
            "state": self.state,
            "create_timestamp": self.create_timestamp,
            "networks": sorted(net.network_uuid for net in self.networks),
        }
        if self.vm_uuid is not None:
            value["vm_uuid"] = self.vm_uuid
        refs = sorted(ref.vm_uuid for ref in self.references)
        if refs:
            value["refs"] = refs
        return value


class VolumeNetwork(Base):
    """Network the storage VM of a volume is attached to"""
    __tablename__ = "volume_networks"

    id = Column(Integer, primary_key=True)
    volume_uuid = Column(String(36), ForeignKey("volumes.uuid", ondelete="CASCADE"), nullable=False, index=True)
    network_uuid = Column(String(36), nullable=False, index=True)

    volume = relationship("Volume", back_populates="networks")


class VolumeReference(Base):
    """VM depending on a volume - a volume with references cannot be deleted"""
    __tablename__ = "volume_references"

    id = Column(Integer, primary_key=True)
    volume_uuid = Column(String(36), ForeignKey("volumes.uuid", ondelete="CASCADE"), nullable=False, index=True)
    vm_uuid = Column(String(36), nullable=False, index=True)

    volume = relationship("Volume", back_populates="references")


# ============================================================================
# VOLUME RESERVATIONS
# ============================================================================

class VolumeReservation(Base):
    """Intention of a VM being provisioned to use a volume, by volume name"""
    __tablename__ = "volume_reservations"

    uuid = Column(String(36), primary_key=True)
    volume_name = Column(String(256), nullable=False, index=True)
    owner_uuid = Column(String(36), nullable=False, index=True)
    vm_uuid = Column(String(36), nullable=False, index=True)
    job_uuid = Column(String(36), nullable=False, index=True)
    create_timestamp = Column(BigInteger, index=True)

    etag = Column(String(32), nullable=False)

    def to_value(self) -> dict:
        return {
            "uuid": self.uuid,
            "volume_name": self.volume_name,
            "owner_uuid": self.owner_uuid,
            "vm_uuid": self.vm_uuid,
            "job_uuid": self.job_uuid,
            "create_timestamp": self.create_timestamp,
        }
