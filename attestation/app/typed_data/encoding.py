"""
EIP-712 structured data hashing.

Implements the typed structured data hashing scheme bit-for-bit:

    typeHash(T)      = keccak256(encodeType(T))
    hashStruct(T, v) = keccak256(typeHash(T) ‖ encodeData(T, v))
    digest           = keccak256(0x19 ‖ 0x01 ‖ domainSeparator ‖ hashStruct)

where ``domainSeparator = hashStruct(EIP712Domain, domain)``.

Every function here is pure. Values are validated and coerced to a
canonical Python form (``coerce_value``) before any byte is encoded, so
textually different spellings of the same value (address case, hex vs
bytes) always produce the same hash.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Union

from eth_utils import (
    is_checksum_address,
    is_hex_address,
    keccak,
    to_checksum_address,
)

from attestation.app.typed_data.schemas import (
    DOMAIN_FIELDS,
    SchemaRegistry,
)
from attestation.app.typed_data.types import (
    bytes_size,
    int_bounds,
    parse_array_type,
)

if TYPE_CHECKING:
    from attestation.app.typed_data.domain import DomainDescriptor

EIP191_TYPED_DATA_PREFIX = b"\x19\x01"


class TypedValueError(ValueError):
    """A value does not conform to its declared EIP-712 type."""

    def __init__(self, path: str, type_: str, reason: str) -> None:
        super().__init__(f"{path}: expected {type_}, {reason}")
        self.path = path
        self.type_ = type_
        self.reason = reason


# ----------------------------------------------------------------------
# Primitive helpers
# ----------------------------------------------------------------------

def keccak256(data: Union[bytes, bytearray]) -> bytes:
    return keccak(bytes(data))


def to_hex(data: Union[bytes, bytearray]) -> str:
    return "0x" + bytes(data).hex()


def _hex_to_bytes(value: str) -> bytes:
    if not value.startswith(("0x", "0X")):
        raise ValueError("hex value must be 0x-prefixed")
    body = value[2:]
    if len(body) % 2:
        raise ValueError("hex value has an odd number of digits")
    return bytes.fromhex(body)


def normalize_address(value: Any, *, strict_checksum: bool = True) -> str:
    """
    Return the EIP-55 checksum form of a 20-byte address.

    Accepts raw bytes or 0x-prefixed hex. With ``strict_checksum``, a
    mixed-case hex string must already carry a valid checksum; all-lower
    and all-upper spellings are accepted as-is.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise ValueError(f"address must be 20 bytes, got {len(value)}")
        return to_checksum_address(bytes(value))

    if (
        not isinstance(value, str)
        or not value.startswith(("0x", "0X"))
        or not is_hex_address(value)
    ):
        raise ValueError("address must be 0x-prefixed 40 hex digits")

    digits = value[2:]
    mixed_case = digits != digits.lower() and digits != digits.upper()
    if strict_checksum and mixed_case and not is_checksum_address(value):
        raise ValueError("address has an invalid EIP-55 checksum")

    return to_checksum_address(value)


# ----------------------------------------------------------------------
# Value coercion
# ----------------------------------------------------------------------

def coerce_value(
    type_: str,
    value: Any,
    registry: Optional[SchemaRegistry] = None,
    *,
    path: str = "value",
) -> Any:
    """
    Validate ``value`` against ``type_`` and return its canonical form.

    Canonical forms: checksum ``str`` for addresses, ``bytes`` for
    ``bytesN``/``bytes``, ``int`` for integers, ``bool``, ``str``,
    ``list`` for arrays and ``dict`` (declared field order) for structs.
    """
    if value is None:
        raise TypedValueError(path, type_, "got nothing")

    array = parse_array_type(type_)
    if array is not None:
        element_type, length = array
        if isinstance(value, (str, bytes, bytearray)) or not isinstance(
            value, (list, tuple)
        ):
            raise TypedValueError(path, type_, "not an array")
        if length is not None and len(value) != length:
            raise TypedValueError(
                path, type_, f"got {len(value)} elements"
            )
        return [
            coerce_value(element_type, item, registry, path=f"{path}[{i}]")
            for i, item in enumerate(value)
        ]

    if registry is not None and registry.is_struct(type_):
        return coerce_struct(type_, value, registry, path=path)

    if type_ == "address":
        try:
            return normalize_address(value)
        except ValueError as exc:
            raise TypedValueError(path, type_, str(exc)) from exc

    if type_ == "bool":
        if not isinstance(value, bool):
            raise TypedValueError(path, type_, f"got {type(value).__name__}")
        return value

    if type_ == "string":
        if not isinstance(value, str):
            raise TypedValueError(path, type_, f"got {type(value).__name__}")
        return value

    if type_ == "bytes":
        return _coerce_bytes(type_, value, path, size=None)

    size = bytes_size(type_)
    if size is not None:
        return _coerce_bytes(type_, value, path, size=size)

    bounds = int_bounds(type_)
    if bounds is not None:
        return _coerce_int(type_, value, path, bounds)

    raise TypedValueError(path, type_, "type is not registered")


def coerce_struct(
    primary: str,
    values: Any,
    registry: SchemaRegistry,
    *,
    path: Optional[str] = None,
) -> Dict[str, Any]:
    """Coerce a struct value; the key set must equal the declared fields."""
    path = path or primary

    if not isinstance(values, Mapping):
        raise TypedValueError(path, primary, "not a mapping")

    fields = registry[primary]
    declared = {f.name for f in fields}
    unexpected = sorted(set(values) - declared)
    if unexpected:
        raise TypedValueError(
            path, primary, f"unexpected fields {unexpected}"
        )

    coerced: Dict[str, Any] = {}
    for field in fields:
        if field.name not in values:
            raise TypedValueError(
                f"{path}.{field.name}", field.type, "field is missing"
            )
        coerced[field.name] = coerce_value(
            field.type,
            values[field.name],
            registry,
            path=f"{path}.{field.name}",
        )
    return coerced


def _coerce_bytes(
    type_: str, value: Any, path: str, *, size: Optional[int]
) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        try:
            raw = _hex_to_bytes(value)
        except ValueError as exc:
            raise TypedValueError(path, type_, str(exc)) from exc
    else:
        raise TypedValueError(path, type_, f"got {type(value).__name__}")

    if size is not None and len(raw) != size:
        raise TypedValueError(path, type_, f"got {len(raw)} bytes")
    return raw


def _coerce_int(type_: str, value: Any, path: str, bounds: tuple) -> int:
    if isinstance(value, bool):
        raise TypedValueError(path, type_, "got bool")

    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        try:
            if value.startswith(("0x", "0X")):
                number = int(value, 16)
            else:
                number = int(value, 10)
        except ValueError as exc:
            raise TypedValueError(path, type_, "not a number") from exc
    else:
        raise TypedValueError(path, type_, f"got {type(value).__name__}")

    low, high = bounds
    if not low <= number <= high:
        raise TypedValueError(path, type_, f"{number} is out of range")
    return number


# ----------------------------------------------------------------------
# Encoding
# ----------------------------------------------------------------------

def encode_type(primary: str, registry: SchemaRegistry) -> str:
    """
    ``Primary(type name,...)`` followed by referenced struct types
    sorted by name.
    """
    def _one(name: str) -> str:
        members = ",".join(f"{f.type} {f.name}" for f in registry[name])
        return f"{name}({members})"

    deps = sorted(registry.dependencies(primary))
    return "".join(_one(name) for name in [primary, *deps])


def type_hash(primary: str, registry: SchemaRegistry) -> bytes:
    return keccak256(encode_type(primary, registry).encode("utf-8"))


def domain_type_hash() -> bytes:
    members = ",".join(f"{f.type} {f.name}" for f in DOMAIN_FIELDS)
    return keccak256(f"EIP712Domain({members})".encode("utf-8"))


def encode_value(
    type_: str,
    value: Any,
    registry: Optional[SchemaRegistry] = None,
) -> bytes:
    """Encode one already-coerced value as a 32-byte word."""
    array = parse_array_type(type_)
    if array is not None:
        element_type = array[0]
        return keccak256(
            b"".join(encode_value(element_type, item, registry) for item in value)
        )

    if registry is not None and registry.is_struct(type_):
        return hash_struct(type_, value, registry)

    if type_ == "string":
        return keccak256(value.encode("utf-8"))

    if type_ == "bytes":
        return keccak256(value)

    if type_ == "address":
        return bytes(12) + bytes.fromhex(value[2:])

    if type_ == "bool":
        return int(value).to_bytes(32, "big")

    if bytes_size(type_) is not None:
        return value.ljust(32, b"\x00")

    if int_bounds(type_) is not None:
        return (value % 2**256).to_bytes(32, "big")

    raise ValueError(f"Cannot encode type {type_!r}")


def encode_data(
    primary: str,
    values: Mapping[str, Any],
    registry: SchemaRegistry,
) -> bytes:
    coerced = coerce_struct(primary, values, registry)
    return type_hash(primary, registry) + b"".join(
        encode_value(field.type, coerced[field.name], registry)
        for field in registry[primary]
    )


def hash_struct(
    primary: str,
    values: Mapping[str, Any],
    registry: SchemaRegistry,
) -> bytes:
    return keccak256(encode_data(primary, values, registry))


def domain_separator(domain: "DomainDescriptor") -> bytes:
    values = domain.as_typed_data()
    return keccak256(
        domain_type_hash()
        + b"".join(
            encode_value(field.type, coerce_value(field.type, values[field.name]))
            for field in DOMAIN_FIELDS
        )
    )


def typed_data_digest(
    domain: "DomainDescriptor",
    primary: str,
    values: Mapping[str, Any],
    registry: SchemaRegistry,
) -> bytes:
    """The 32-byte digest a key holder signs for this claim."""
    return keccak256(
        EIP191_TYPED_DATA_PREFIX
        + domain_separator(domain)
        + hash_struct(primary, values, registry)
    )


# ----------------------------------------------------------------------
# Wallet payload
# ----------------------------------------------------------------------

def to_json_value(type_: str, value: Any, registry: SchemaRegistry) -> Any:
    """Render a coerced value the way ``eth_signTypedData_v4`` expects it."""
    array = parse_array_type(type_)
    if array is not None:
        return [to_json_value(array[0], item, registry) for item in value]

    if registry.is_struct(type_):
        return {
            field.name: to_json_value(field.type, value[field.name], registry)
            for field in registry[type_]
        }

    if isinstance(value, (bytes, bytearray)):
        return to_hex(value)

    if int_bounds(type_) is not None and not -(2**53) < value < 2**53:
        # JSON numbers lose precision past 2**53; wallets accept decimal strings
        return str(value)

    return value


def typed_data_payload(
    domain: "DomainDescriptor",
    primary: str,
    values: Mapping[str, Any],
    registry: SchemaRegistry,
) -> Dict[str, Any]:
    """Build the full ``eth_signTypedData_v4`` request body."""
    coerced = coerce_struct(primary, values, registry)
    return {
        "types": registry.typed_data_types(primary),
        "primaryType": primary,
        "domain": domain.as_typed_data(),
        "message": to_json_value(primary, coerced, registry),
    }
