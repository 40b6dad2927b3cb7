"""
Input validation helpers.

Each validate_* function returns None when the value is valid and an error
message otherwise, so that callers can collect every violation of a request
before rejecting it.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from volapi.models import VolumeState, VolumeType
from volapi.services import predicate as predicate_mod
from volapi.units import parse_volume_size

UUID_RE = re.compile(r"^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$")
VALID_VOLUME_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]+$")
VALID_VOLUME_NAME_CHARS_RE = re.compile(r"^[a-zA-Z0-9_.\-]+$")
VALID_VOLUME_SIZE_SEARCH_RE = re.compile(r"^[1-9][0-9]*$")
MAX_VOLUME_NAME_LENGTH = 256


def valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and UUID_RE.match(value) is not None


def validate_uuid(value: Any, param_name: str) -> Optional[str]:
    if not valid_uuid(value):
        return f"{value} is not a valid {param_name} UUID"
    return None


def validate_volume_name(name: Any, param_name: str = "name") -> Optional[str]:
    if (
        not isinstance(name, str)
        or len(name) > MAX_VOLUME_NAME_LENGTH
        or not VALID_VOLUME_NAME_RE.match(name)
    ):
        return f"{param_name} must match {VALID_VOLUME_NAME_RE.pattern} and be at most {MAX_VOLUME_NAME_LENGTH} characters"
    return None


def validate_volume_name_search_param(name: Any) -> Optional[str]:
    """'name' search values may start and/or end with a '*' wildcard."""
    if not isinstance(name, str) or not name:
        return "invalid value for name search parameter"

    core = name
    if len(core) > 1 and core.startswith("*"):
        core = core[1:]
    if len(core) > 1 and core.endswith("*"):
        core = core[:-1]

    if not VALID_VOLUME_NAME_CHARS_RE.match(core):
        return "invalid value for name search parameter"
    return None


def validate_volume_type(volume_type: Any) -> Optional[str]:
    if volume_type not in {t.value for t in VolumeType}:
        return f"Volume type: {volume_type} is not supported"
    return None


def validate_volume_size(size: Any) -> Optional[str]:
    """Sizes as used in predicates: a number of MiB > 0."""
    if isinstance(size, bool) or not isinstance(size, (int, float)) or size <= 0:
        return f"Volume size: \"{size}\" is not a valid volume size. Size must be a number > 0"
    return None


def validate_volume_size_param(size: Any) -> Optional[str]:
    """Sizes as requested at creation time: MiB or a string with a unit."""
    try:
        parse_volume_size(size)
    except ValueError as exc:
        return str(exc)
    return None


def validate_volume_size_search_param(size: Any) -> Optional[str]:
    if not isinstance(size, str) or not VALID_VOLUME_SIZE_SEARCH_RE.match(size):
        return f"invalid value for size search parameter, must match {VALID_VOLUME_SIZE_SEARCH_RE.pattern}"
    return None


def validate_volume_state(state: Any) -> Optional[str]:
    if state not in {s.value for s in VolumeState}:
        return f"Volume state: {state} is invalid"
    return None


def validate_volume_network(network_uuid: Any) -> Optional[str]:
    if not valid_uuid(network_uuid):
        return f"{network_uuid} is not a valid volume network UUID"
    return None


def validate_volume_networks(networks: Any) -> List[str]:
    if not isinstance(networks, list):
        return ["networks must be an array of network UUIDs"]
    return [err for err in (validate_volume_network(net) for net in networks) if err]


def validate_dangling(value: Any) -> Optional[str]:
    if not isinstance(value, bool):
        return f"dangling must be a boolean, got {value}"
    return None


_VOLUME_PREDICATE_VALIDATORS = {
    "dangling": validate_dangling,
    "name": validate_volume_name,
    "network": validate_volume_network,
    "size": validate_volume_size,
    "state": validate_volume_state,
    "type": validate_volume_type,
    "uuid": lambda value: validate_uuid(value, "uuid"),
}

_RESERVATION_PREDICATE_VALIDATORS = {
    "job_uuid": lambda value: validate_uuid(value, "job_uuid"),
    "owner_uuid": lambda value: validate_uuid(value, "owner_uuid"),
    "vm_uuid": lambda value: validate_uuid(value, "vm_uuid"),
    "volume_name": lambda value: validate_volume_name(value, "volume_name"),
}


def _parse_predicate(text: str, field_types, validators):
    try:
        node = predicate_mod.parse_predicate_json(text, field_types)
    except predicate_mod.PredicateError as exc:
        return None, [str(exc)]

    errs = []
    for field, values in predicate_mod.fields_and_values(node).items():
        validator = validators[field]
        for value in values:
            err = validator(value)
            if err:
                errs.append(err)

    if errs:
        return None, ["Invalid values in predicate: " + "; ".join(errs)]
    return node, []


def parse_volume_predicate(text: str):
    """
    Parse and validate a JSON volume predicate.

    Returns:
        (predicate node or None, list of error messages)
    """
    return _parse_predicate(text, predicate_mod.VOLUME_PREDICATE_TYPES, _VOLUME_PREDICATE_VALIDATORS)


def parse_reservation_predicate(text: str):
    return _parse_predicate(
        text, predicate_mod.RESERVATION_PREDICATE_TYPES, _RESERVATION_PREDICATE_VALIDATORS
    )


def check_mandatory_params(params: Dict[str, Any], mandatory: Iterable[str]) -> List[str]:
    return [f"missing mandatory parameter: {name}" for name in mandatory if name not in params]


def check_invalid_params(params: Dict[str, Any], valid: Iterable[str]) -> List[str]:
    allowed = set(valid)
    return [f"invalid parameter: {name}" for name in params if name not in allowed]
