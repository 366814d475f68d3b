"""
EIP-712 type grammar.

Classifies the type tags that may appear in a schema field descriptor:

- atomic types, encoded in place as a single 32-byte word
  (``address``, ``bool``, ``bytes1`` .. ``bytes32``, ``int8`` .. ``int256``,
  ``uint8`` .. ``uint256``)
- dynamic types, hashed before inclusion (``string``, ``bytes``)
- arrays of any of the above, or of a struct (``T[]`` and ``T[n]``)
- struct references, resolved against a schema registry
"""

from __future__ import annotations

import re
from typing import Optional, Tuple

_BYTES_N = re.compile(r"^bytes([0-9]+)$")
_INT_N = re.compile(r"^(u?)int([0-9]+)$")
_ARRAY = re.compile(r"^(.+)\[([0-9]*)\]$")
_IDENTIFIER = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")

DYNAMIC_TYPES = frozenset({"string", "bytes"})


def bytes_size(type_: str) -> Optional[int]:
    """Return N for a ``bytesN`` tag, or None."""
    match = _BYTES_N.match(type_)
    if not match:
        return None
    size = int(match.group(1))
    if 1 <= size <= 32:
        return size
    return None


def int_bounds(type_: str) -> Optional[Tuple[int, int]]:
    """Return the inclusive (min, max) range of an ``intN``/``uintN`` tag."""
    match = _INT_N.match(type_)
    if not match:
        return None

    bits = int(match.group(2))
    if bits % 8 != 0 or not 8 <= bits <= 256:
        return None

    if match.group(1) == "u":
        return 0, 2**bits - 1
    return -(2 ** (bits - 1)), 2 ** (bits - 1) - 1


def is_atomic_type(type_: str) -> bool:
    return (
        type_ in ("address", "bool")
        or bytes_size(type_) is not None
        or int_bounds(type_) is not None
    )


def is_dynamic_type(type_: str) -> bool:
    return type_ in DYNAMIC_TYPES


def is_primitive_type(type_: str) -> bool:
    return is_atomic_type(type_) or is_dynamic_type(type_)


def parse_array_type(type_: str) -> Optional[Tuple[str, Optional[int]]]:
    """
    Split an array tag into (element type, fixed length).

    ``"address[]"`` -> ``("address", None)``,
    ``"Person[2][]"`` -> ``("Person[2]", None)``.
    Returns None for non-array tags.
    """
    match = _ARRAY.match(type_)
    if not match:
        return None
    length = match.group(2)
    return match.group(1), (int(length) if length else None)


def base_type(type_: str) -> str:
    """Strip every array suffix: ``"Person[2][]"`` -> ``"Person"``."""
    while True:
        parsed = parse_array_type(type_)
        if parsed is None:
            return type_
        type_ = parsed[0]


def is_identifier(name: str) -> bool:
    return bool(_IDENTIFIER.match(name))
