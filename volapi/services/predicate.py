"""
Query/Predicate Translator

A predicate is a small JSON boolean expression over equality leaves:

    {"eq": ["state", "ready"]}
    {"and": [{"eq": ["name", "foo"]}, {"eq": ["size", 10240]}]}
    {"or": [{"eq": ["state", "ready"]}, {"eq": ["state", "creating"]}]}
    {}                                  (trivial, matches everything)

parse_predicate() turns the JSON form into Eq/And/Or nodes, checking field
names against a per-entity allow-list and value types against the declared
field type. to_filter() translates nodes into the record store's LDAP filter
syntax; it is a pure function and knows nothing about HTTP.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from volapi.services import ldap_filter

STRING = "string"
NUMBER = "number"
BOOLEAN = "boolean"

VOLUME_PREDICATE_TYPES = {
    "dangling": BOOLEAN,
    "name": STRING,
    "network": STRING,
    "size": NUMBER,
    "state": STRING,
    "type": STRING,
    "uuid": STRING,
}

RESERVATION_PREDICATE_TYPES = {
    "job_uuid": STRING,
    "owner_uuid": STRING,
    "vm_uuid": STRING,
    "volume_name": STRING,
}


class PredicateError(ValueError):
    pass


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class And:
    children: Tuple["Node", ...]


@dataclass(frozen=True)
class Or:
    children: Tuple["Node", ...]


Node = Union[Eq, And, Or]


def _check_type(field: str, value: Any, expected: str) -> None:
    if expected == STRING:
        valid = isinstance(value, str)
    elif expected == NUMBER:
        valid = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif expected == BOOLEAN:
        valid = isinstance(value, bool)
    else:
        valid = False
    if not valid:
        raise PredicateError(f"predicate value for field '{field}' must be a {expected}, got {value!r}")


def _parse_node(obj: Any, field_types: Dict[str, str]) -> Node:
    if not isinstance(obj, dict) or len(obj) != 1:
        raise PredicateError(f"predicate node must be an object with exactly one key: {obj!r}")

    (operator, operands), = obj.items()

    if operator == "eq":
        if not isinstance(operands, list) or len(operands) != 2:
            raise PredicateError("'eq' takes a [field, value] array")
        field, value = operands
        if not isinstance(field, str):
            raise PredicateError(f"predicate field must be a string, got {field!r}")
        if field not in field_types:
            raise PredicateError(f"predicate field '{field}' is not allowed")
        _check_type(field, value, field_types[field])
        return Eq(field, value)

    if operator in ("and", "or"):
        if not isinstance(operands, list) or not operands:
            raise PredicateError(f"'{operator}' takes a non-empty array of predicates")
        children = tuple(_parse_node(child, field_types) for child in operands)
        return And(children) if operator == "and" else Or(children)

    raise PredicateError(f"unknown predicate operator '{operator}'")


def parse_predicate(obj: Any, field_types: Dict[str, str]) -> Optional[Node]:
    """
    Parse a decoded JSON predicate.

    Returns:
        The predicate tree, or None when the predicate is trivial ({})
    """
    if isinstance(obj, dict) and not obj:
        return None
    return _parse_node(obj, field_types)


def parse_predicate_json(text: str, field_types: Dict[str, str]) -> Optional[Node]:
    try:
        obj = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise PredicateError(f"Could not parse JSON predicate {text}: {exc}")
    return parse_predicate(obj, field_types)


def fields_and_values(node: Optional[Node]) -> Dict[str, List[Any]]:
    """Map every field used in the predicate to the values compared to it."""
    result: Dict[str, List[Any]] = {}

    def walk(current: Node) -> None:
        if isinstance(current, Eq):
            result.setdefault(current.field, []).append(current.value)
        else:
            for child in current.children:
                walk(child)

    if node is not None:
        walk(node)
    return result


def _render_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def default_leaf(leaf: Eq) -> ldap_filter.Filter:
    return ldap_filter.EqualityFilter(leaf.field, _render_value(leaf.value))


def to_filter(
    node: Optional[Node],
    leaf_to_filter: Callable[[Eq], ldap_filter.Filter] = default_leaf,
) -> ldap_filter.Filter:
    if node is None:
        return ldap_filter.MATCH_ALL
    if isinstance(node, Eq):
        return leaf_to_filter(node)
    children = tuple(to_filter(child, leaf_to_filter) for child in node.children)
    if len(children) == 1:
        return children[0]
    if isinstance(node, And):
        return ldap_filter.AndFilter(children)
    return ldap_filter.OrFilter(children)


def volume_leaf(leaf: Eq) -> ldap_filter.Filter:
    """Volume predicate fields that are not stored under the same name."""
    if leaf.field == "dangling":
        refs_present = ldap_filter.PresenceFilter("refs")
        return ldap_filter.NotFilter(refs_present) if leaf.value else refs_present
    if leaf.field == "network":
        return ldap_filter.EqualityFilter("networks", leaf.value)
    return default_leaf(leaf)


def conjunction(leaves: List[Node]) -> Optional[Node]:
    if not leaves:
        return None
    if len(leaves) == 1:
        return leaves[0]
    return And(tuple(leaves))


def to_filter_string(
    node: Optional[Node],
    leaf_to_filter: Callable[[Eq], ldap_filter.Filter] = default_leaf,
) -> str:
    return to_filter(node, leaf_to_filter).to_string()
