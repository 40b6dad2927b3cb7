"""
LDAP search filter strings (RFC 4515 subset).

This is the native query language of the record store: list and search
operations take a filter string such as

    (&(owner_uuid=930896af-bf8c-48d4-885c-6573a94b1853)(|(state=ready)(state=creating)))

Supported forms are AND, OR and NOT groups, equality, presence (attr=*) and
substring matches with '*' wildcards. Values use backslash-hex escaping for
the characters that have a meaning in the syntax.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

_SPECIAL_CHARS = {
    "\\": "\\5c",
    "*": "\\2a",
    "(": "\\28",
    ")": "\\29",
    "\0": "\\00",
}


class FilterParseError(ValueError):
    pass


def escape_value(value: str) -> str:
    return "".join(_SPECIAL_CHARS.get(char, char) for char in str(value))


def _unescape(raw: str) -> str:
    out = []
    idx = 0
    while idx < len(raw):
        char = raw[idx]
        if char == "\\":
            hex_digits = raw[idx + 1:idx + 3]
            if len(hex_digits) != 2:
                raise FilterParseError(f"invalid escape sequence in '{raw}'")
            try:
                out.append(chr(int(hex_digits, 16)))
            except ValueError:
                raise FilterParseError(f"invalid escape sequence in '{raw}'")
            idx += 3
            continue
        out.append(char)
        idx += 1
    return "".join(out)


# ============================================================================
# FILTER NODES
# ============================================================================

class Filter:
    def to_string(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.to_string()


@dataclass(frozen=True)
class EqualityFilter(Filter):
    attribute: str
    value: str

    def to_string(self) -> str:
        return f"({self.attribute}={escape_value(self.value)})"


@dataclass(frozen=True)
class PresenceFilter(Filter):
    attribute: str

    def to_string(self) -> str:
        return f"({self.attribute}=*)"


@dataclass(frozen=True)
class SubstringFilter(Filter):
    attribute: str
    initial: Optional[str] = None
    any: Tuple[str, ...] = ()
    final: Optional[str] = None

    def to_string(self) -> str:
        parts = [escape_value(self.initial or "")]
        parts.extend(escape_value(part) for part in self.any)
        parts.append(escape_value(self.final or ""))
        return f"({self.attribute}={'*'.join(parts)})"


@dataclass(frozen=True)
class AndFilter(Filter):
    filters: Tuple[Filter, ...]

    def to_string(self) -> str:
        return "(&" + "".join(f.to_string() for f in self.filters) + ")"


@dataclass(frozen=True)
class OrFilter(Filter):
    filters: Tuple[Filter, ...]

    def to_string(self) -> str:
        return "(|" + "".join(f.to_string() for f in self.filters) + ")"


@dataclass(frozen=True)
class NotFilter(Filter):
    filter: Filter

    def to_string(self) -> str:
        return "(!" + self.filter.to_string() + ")"


MATCH_ALL = PresenceFilter("uuid")


def conjunction(filters: List[Filter]) -> Filter:
    """AND together a list of filters; an empty list matches everything."""
    if not filters:
        return MATCH_ALL
    if len(filters) == 1:
        return filters[0]
    return AndFilter(tuple(filters))


# ============================================================================
# PARSER
# ============================================================================

class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def parse(self) -> Filter:
        result = self._parse_filter()
        if self.pos != len(self.text):
            raise FilterParseError(f"unexpected trailing data in filter '{self.text}'")
        return result

    def _expect(self, char: str) -> None:
        if self.pos >= len(self.text) or self.text[self.pos] != char:
            raise FilterParseError(f"expected '{char}' at position {self.pos} in filter '{self.text}'")
        self.pos += 1

    def _parse_filter(self) -> Filter:
        self._expect("(")
        if self.pos >= len(self.text):
            raise FilterParseError(f"unterminated filter '{self.text}'")

        char = self.text[self.pos]
        if char in "&|":
            self.pos += 1
            children = []
            while self.pos < len(self.text) and self.text[self.pos] == "(":
                children.append(self._parse_filter())
            if not children:
                raise FilterParseError(f"empty '{char}' group in filter '{self.text}'")
            node = AndFilter(tuple(children)) if char == "&" else OrFilter(tuple(children))
        elif char == "!":
            self.pos += 1
            node = NotFilter(self._parse_filter())
        else:
            node = self._parse_item()

        self._expect(")")
        return node

    def _parse_item(self) -> Filter:
        end = self.text.find(")", self.pos)
        if end == -1:
            raise FilterParseError(f"unterminated filter '{self.text}'")
        item = self.text[self.pos:end]
        self.pos = end

        attribute, sep, raw_value = item.partition("=")
        if not sep or not attribute or "(" in raw_value:
            raise FilterParseError(f"invalid filter item '{item}'")

        if raw_value == "*":
            return PresenceFilter(attribute)

        if "*" not in raw_value:
            return EqualityFilter(attribute, _unescape(raw_value))

        pieces = raw_value.split("*")
        initial = _unescape(pieces[0]) or None
        final = _unescape(pieces[-1]) or None
        middle = tuple(_unescape(piece) for piece in pieces[1:-1] if piece)
        return SubstringFilter(attribute, initial, middle, final)


def parse(text: str) -> Filter:
    if not isinstance(text, str) or not text:
        raise FilterParseError("filter must be a non-empty string")
    return _Parser(text.strip()).parse()
