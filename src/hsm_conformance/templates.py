from __future__ import annotations

import ctypes
from dataclasses import dataclass
from typing import Any, Iterable, Sequence, Tuple, Union

from pkcs11 import Attribute

from .exceptions import TemplateError

BOOLEAN_SIZE = ctypes.sizeof(ctypes.c_ubyte)
ULONG_SIZE = ctypes.sizeof(ctypes.c_ulong)

DEFAULT_MODULUS_BITS = 1024
DEFAULT_PUBLIC_EXPONENT = b"\x01\x00\x01"
DEFAULT_LABEL = "pkcs11test"

BOOLEAN_KINDS = frozenset(
    {
        Attribute.ENCRYPT,
        Attribute.DECRYPT,
        Attribute.TOKEN,
        Attribute.SENSITIVE,
        Attribute.PRIVATE,
        Attribute.EXTRACTABLE,
        Attribute.SIGN,
        Attribute.VERIFY,
        Attribute.WRAP,
        Attribute.UNWRAP,
        Attribute.MODIFIABLE,
    }
)

# Read capacities for kinds that are not flags.
_QUERY_CAPACITIES: dict[Attribute, int] = {
    Attribute.MODULUS: 512,
    Attribute.PUBLIC_EXPONENT: 16,
    Attribute.PRIVATE_EXPONENT: 1024,
    Attribute.PRIME_1: 1024,
    Attribute.PRIME_2: 1024,
    Attribute.EXPONENT_1: 1024,
    Attribute.EXPONENT_2: 1024,
    Attribute.COEFFICIENT: 1024,
    Attribute.LABEL: 256,
    Attribute.MODULUS_BITS: ULONG_SIZE,
    Attribute.KEY_TYPE: ULONG_SIZE,
    Attribute.CLASS: ULONG_SIZE,
}


@dataclass(frozen=True)
class TemplateEntry:
    """One (kind, value, length) triple of a generation template."""

    kind: Attribute
    value: Any
    length: int


@dataclass(frozen=True)
class QueryEntry:
    """One attribute read request with the capacity reserved for its value."""

    kind: Attribute
    capacity: int


TemplateItem = Union[Attribute, Tuple[Attribute, Any], TemplateEntry]

_NO_VALUE = object()


def encoded_length(kind: Attribute, value: Any) -> int:
    """Byte length ``value`` occupies as the PKCS#11 value of ``kind``."""
    if isinstance(value, bool):
        return BOOLEAN_SIZE
    if isinstance(value, int):
        return ULONG_SIZE
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    raise TemplateError(f"Cannot size value of type {type(value).__name__} for {kind.name}.")


def template_entry(kind: Attribute, value: Any = _NO_VALUE) -> TemplateEntry:
    """
    Build a typed, sized entry for ``kind``.

    Flags default to true, the modulus size to 1024 bits, the public exponent
    to 65537 (three bytes) and the label to ``pkcs11test``.
    """
    if kind in BOOLEAN_KINDS:
        resolved = True if value is _NO_VALUE else value
        if not isinstance(resolved, bool):
            raise TemplateError(f"{kind.name} takes a bool, got {resolved!r}.")
        return TemplateEntry(kind, resolved, BOOLEAN_SIZE)

    if kind == Attribute.MODULUS_BITS:
        resolved = DEFAULT_MODULUS_BITS if value is _NO_VALUE else value
        if isinstance(resolved, bool) or not isinstance(resolved, int) or resolved <= 0:
            raise TemplateError(f"MODULUS_BITS must be a positive int, got {resolved!r}.")
        return TemplateEntry(kind, resolved, ULONG_SIZE)

    if kind == Attribute.PUBLIC_EXPONENT:
        resolved = DEFAULT_PUBLIC_EXPONENT if value is _NO_VALUE else value
        if not isinstance(resolved, (bytes, bytearray)) or not resolved:
            raise TemplateError("PUBLIC_EXPONENT must be non-empty big-endian bytes.")
        resolved = bytes(resolved)
        return TemplateEntry(kind, resolved, len(resolved))

    if kind == Attribute.LABEL:
        resolved = DEFAULT_LABEL if value is _NO_VALUE else value
        if isinstance(resolved, (bytes, bytearray)):
            try:
                resolved = bytes(resolved).decode("utf-8")
            except UnicodeDecodeError as exc:
                raise TemplateError(f"LABEL bytes must be UTF-8, got {resolved!r}.") from exc
        if not isinstance(resolved, str):
            raise TemplateError(f"LABEL takes str or bytes, got {resolved!r}.")
        return TemplateEntry(kind, resolved, len(resolved.encode("utf-8")))

    raise TemplateError(f"Unsupported template attribute kind: {kind!r}")


def build_template(items: Iterable[TemplateItem]) -> tuple[TemplateEntry, ...]:
    entries: list[TemplateEntry] = []
    seen: set[Attribute] = set()
    for item in items:
        if isinstance(item, TemplateEntry):
            entry = item
        elif isinstance(item, tuple):
            kind, value = item
            entry = template_entry(kind, value)
        else:
            entry = template_entry(item)
        if entry.kind in seen:
            raise TemplateError(f"Attribute {entry.kind.name} appears more than once.")
        seen.add(entry.kind)
        entries.append(entry)
    return tuple(entries)


def find_entry(entries: Sequence[TemplateEntry], kind: Attribute) -> TemplateEntry | None:
    for entry in entries:
        if entry.kind == kind:
            return entry
    return None


def template_as_mapping(entries: Sequence[TemplateEntry]) -> dict[Attribute, Any]:
    return {entry.kind: entry.value for entry in entries}


def build_query(
    kinds: Iterable[Attribute], capacity: int | None = None
) -> tuple[QueryEntry, ...]:
    """Build attribute read requests, reserving default capacity per kind."""
    entries: list[QueryEntry] = []
    for kind in kinds:
        if kind in BOOLEAN_KINDS:
            default = BOOLEAN_SIZE
        elif kind in _QUERY_CAPACITIES:
            default = _QUERY_CAPACITIES[kind]
        else:
            raise TemplateError(f"Unsupported query attribute kind: {kind!r}")
        resolved = default if capacity is None else capacity
        if resolved < 0:
            raise TemplateError("Query capacity must be >= 0.")
        entries.append(QueryEntry(kind, resolved))
    return tuple(entries)
