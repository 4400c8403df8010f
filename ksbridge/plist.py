"""Typed view over a decoded property-list document.

``plistlib`` hands back plain dicts, lists and scalars.  Articulation-set
files come from several vendors and disagree about key casing and value
types, so the parser reads them through :class:`Node`, which records the
value's kind and only yields a value when the kind is the one asked for.
"""

from __future__ import annotations

import plistlib
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from xml.parsers.expat import ExpatError

from ksbridge.errors import ParseError


class Kind(Enum):
    STRING = "string"
    INTEGER = "integer"
    REAL = "real"
    BOOL = "bool"
    MAPPING = "mapping"
    SEQUENCE = "sequence"
    OTHER = "other"  # <data>, <date>


def _kind_of(value: Any) -> Kind:
    # bool before int: True is an int in Python.
    if isinstance(value, bool):
        return Kind.BOOL
    if isinstance(value, int):
        return Kind.INTEGER
    if isinstance(value, float):
        return Kind.REAL
    if isinstance(value, str):
        return Kind.STRING
    if isinstance(value, dict):
        return Kind.MAPPING
    if isinstance(value, (list, tuple)):
        return Kind.SEQUENCE
    return Kind.OTHER


@dataclass(frozen=True)
class Node:
    kind: Kind
    value: Any

    @classmethod
    def wrap(cls, value: Any) -> "Node":
        return cls(_kind_of(value), value)

    @property
    def is_mapping(self) -> bool:
        return self.kind is Kind.MAPPING

    def lookup(self, *keys: str) -> Optional["Node"]:
        """Return the child under the first of ``keys`` present, if any."""
        if self.kind is not Kind.MAPPING:
            return None
        for key in keys:
            if key in self.value:
                return Node.wrap(self.value[key])
        return None

    def as_str(self) -> Optional[str]:
        return self.value if self.kind is Kind.STRING else None

    def as_int(self) -> Optional[int]:
        """Integer value; reals are accepted when they hold a whole number."""
        if self.kind is Kind.INTEGER:
            return self.value
        if self.kind is Kind.REAL and self.value.is_integer():
            return int(self.value)
        return None

    def as_sequence(self) -> list["Node"]:
        if self.kind is not Kind.SEQUENCE:
            return []
        return [Node.wrap(item) for item in self.value]


def lookup_str(node: Optional[Node], *keys: str) -> Optional[str]:
    child = node.lookup(*keys) if node is not None else None
    return child.as_str() if child is not None else None


def lookup_int(node: Optional[Node], *keys: str) -> Optional[int]:
    child = node.lookup(*keys) if node is not None else None
    return child.as_int() if child is not None else None


def lookup_sequence(node: Optional[Node], *keys: str) -> list[Node]:
    child = node.lookup(*keys) if node is not None else None
    return child.as_sequence() if child is not None else []


def decode(document: bytes) -> Node:
    """Decode an XML or binary plist whose root must be a dictionary."""
    try:
        root = plistlib.loads(document)
    # A malformed <date> or binary offset escapes plistlib as a builtin error.
    except (plistlib.InvalidFileException, ExpatError, ValueError, TypeError,
            OverflowError, AttributeError, IndexError, KeyError, struct.error) as exc:
        raise ParseError(f"invalid property list: {exc}") from exc
    node = Node.wrap(root)
    if not node.is_mapping:
        raise ParseError(f"property list root is a {node.kind.value}, expected a dictionary")
    return node
