"""
VOLAPI error taxonomy.

Every error that can reach a client derives from VolapiError and knows its
HTTP status, its stable machine-readable code and how to render itself as a
JSON body. Errors carrying structured data (available sizes, failed networks,
validation causes) expose it as named attributes instead of ad-hoc fields.
"""

from typing import Any, Dict, List, Optional


class VolapiError(Exception):
    """Base VOLAPI exception

    Subclasses define a 'message' template that is formatted with the keyword
    arguments given to the constructor.
    """

    message = "An unknown error occurred"
    code = "InternalError"
    status_code = 500

    def __init__(self, message: Optional[str] = None, **kwargs):
        self.kwargs = kwargs
        if message is None:
            try:
                message = self.message % kwargs
            except (KeyError, TypeError):
                message = self.message
        self.msg = message
        super().__init__(message)

    def body(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.msg}


class ValidationError(VolapiError):
    code = "ValidationError"
    status_code = 409

    def __init__(self, causes: List[str]):
        self.causes = list(causes)
        super().__init__(
            "Validation error, causes: " + ", ".join("Error: " + cause for cause in self.causes)
        )

    def body(self) -> Dict[str, Any]:
        body = super().body()
        body["errors"] = self.causes
        return body


class NotFoundError(VolapiError):
    code = "ResourceNotFound"
    status_code = 404
    message = "Resource not found"


class VolumeNotFoundError(NotFoundError):
    code = "VolumeNotFound"
    message = "Volume %(volume)s not found"


class VolumeReservationNotFoundError(NotFoundError):
    code = "VolumeReservationNotFound"
    message = "Volume reservation %(uuid)s not found"


class ImageNotFoundError(NotFoundError):
    code = "ImageNotFound"
    message = "Could not find image %(name)s"


class ConflictError(VolapiError):
    code = "Conflict"
    status_code = 409
    message = "Conflict"


class VolumeAlreadyExistsError(ConflictError):
    code = "VolumeAlreadyExists"
    message = "Volume with name %(name)s already exists"


class VolumeInUseError(ConflictError):
    code = "VolumeInUse"
    message = "Volume with uuid %(uuid)s is used by %(refs)s"


class VolumeReservationOwnerMismatchError(ConflictError):
    code = "VolumeReservationOwnerMismatch"
    message = (
        "owner_uuid: %(owner_uuid)s does not match owner_uuid for volume "
        "reservation %(uuid)s"
    )


class ConcurrentUpdateError(ConflictError):
    code = "ConcurrentUpdate"
    message = "Could not update volume %(uuid)s after %(tries)d tries"


class InvalidStateTransitionError(ConflictError):
    code = "InvalidStateTransition"
    message = "Volume %(uuid)s cannot go from state %(current)s to %(target)s"


class VolumeSizeNotAvailableError(VolapiError):
    code = "VolumeSizeNotAvailable"
    status_code = 409
    message = "Volume size %(size)s is not available"

    def __init__(self, size: int, available_sizes: List[int]):
        self.size = size
        self.available_sizes = sorted(available_sizes)
        super().__init__(size=size)

    def body(self) -> Dict[str, Any]:
        body = super().body()
        body["available_sizes"] = self.available_sizes
        return body


class InvalidNetworksError(VolapiError):
    code = "InvalidNetworks"
    status_code = 409

    def __init__(self, missing: List[str], non_owned: List[str], non_fabric: List[str]):
        self.missing = sorted(missing)
        self.non_owned = sorted(non_owned)
        self.non_fabric = sorted(non_fabric)
        parts = []
        if self.missing:
            parts.append("missing networks: " + ", ".join(self.missing))
        if self.non_owned:
            parts.append("non-owned networks: " + ", ".join(self.non_owned))
        if self.non_fabric:
            parts.append("non-fabric networks: " + ", ".join(self.non_fabric))
        super().__init__("Invalid networks: " + "; ".join(parts))

    def body(self) -> Dict[str, Any]:
        body = super().body()
        body["missing"] = self.missing
        body["non_owned"] = self.non_owned
        body["non_fabric"] = self.non_fabric
        return body


class InternalError(VolapiError):
    code = "InternalError"
    status_code = 500
    message = "Internal error"
