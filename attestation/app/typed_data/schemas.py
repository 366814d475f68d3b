"""
Schema registry for typed claims.

A schema is an ordered sequence of field descriptors. Field order is part
of the EIP-712 type string and therefore of every hash derived from it:
reordering fields silently invalidates all signatures already issued
under that schema, so a reordered schema must ship under a new name.

The registry is built once at startup and is read-only afterwards.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from attestation.app.typed_data.types import (
    base_type,
    is_identifier,
    is_primitive_type,
    parse_array_type,
)

EIP712_DOMAIN = "EIP712Domain"

PATIENT_DATA_UPDATE = "PatientDataUpdate"
FEEDBACK_SUBMISSION = "FeedbackSubmission"


class FieldDescriptor(BaseModel):
    """A single named, typed member of a schema."""

    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    def as_typed_data(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type}


FieldSpec = Union[FieldDescriptor, Tuple[str, str], Mapping[str, str]]


def _coerce_field(spec: FieldSpec) -> FieldDescriptor:
    if isinstance(spec, FieldDescriptor):
        return spec
    if isinstance(spec, tuple):
        name, type_ = spec
        return FieldDescriptor(name=name, type=type_)
    return FieldDescriptor(**dict(spec))


# EIP712Domain members in canonical order. Every domain descriptor used by
# this service carries all four.
DOMAIN_FIELDS: Tuple[FieldDescriptor, ...] = (
    FieldDescriptor(name="name", type="string"),
    FieldDescriptor(name="version", type="string"),
    FieldDescriptor(name="chainId", type="uint256"),
    FieldDescriptor(name="verifyingContract", type="address"),
)


class SchemaRegistry:
    """
    Immutable mapping from schema name to its ordered field descriptors.

    Construction validates that:
    - schema and field names are identifiers
    - field names are unique within a schema
    - every field type is primitive, an array, or a registered schema
    - ``EIP712Domain`` is not redefined
    """

    def __init__(self, schemas: Mapping[str, Sequence[FieldSpec]]) -> None:
        normalized: Dict[str, Tuple[FieldDescriptor, ...]] = {}

        for name, fields in schemas.items():
            if name == EIP712_DOMAIN:
                raise ValueError(f"{EIP712_DOMAIN} is reserved")
            if not is_identifier(name):
                raise ValueError(f"Invalid schema name: {name!r}")

            descriptors = tuple(_coerce_field(f) for f in fields)
            if not descriptors:
                raise ValueError(f"Schema {name} declares no fields")

            seen: set[str] = set()
            for field in descriptors:
                if not is_identifier(field.name):
                    raise ValueError(
                        f"Invalid field name {field.name!r} in schema {name}"
                    )
                if field.name in seen:
                    raise ValueError(
                        f"Duplicate field {field.name!r} in schema {name}"
                    )
                seen.add(field.name)

            normalized[name] = descriptors

        for name, descriptors in normalized.items():
            for field in descriptors:
                resolved = base_type(field.type)
                if is_primitive_type(resolved) or resolved in normalized:
                    continue
                raise ValueError(
                    f"Field {name}.{field.name} has unknown type {field.type!r}"
                )

        self._schemas: Mapping[str, Tuple[FieldDescriptor, ...]] = (
            MappingProxyType(normalized)
        )

    # ------------------------------------------------------------------
    # Mapping protocol
    # ------------------------------------------------------------------

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __getitem__(self, name: str) -> Tuple[FieldDescriptor, ...]:
        return self._schemas[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._schemas)

    def __len__(self) -> int:
        return len(self._schemas)

    def names(self) -> List[str]:
        return list(self._schemas)

    def is_struct(self, type_: str) -> bool:
        return parse_array_type(type_) is None and type_ in self._schemas

    # ------------------------------------------------------------------
    # Dependency resolution
    # ------------------------------------------------------------------

    def dependencies(self, primary: str) -> List[str]:
        """
        Every struct type reachable from ``primary``, excluding itself,
        in first-seen order.
        """
        if primary not in self._schemas:
            raise KeyError(primary)

        found: List[str] = []
        pending = [primary]

        while pending:
            current = pending.pop()
            for field in self._schemas[current]:
                dep = base_type(field.type)
                if dep in self._schemas and dep != primary and dep not in found:
                    found.append(dep)
                    pending.append(dep)

        return found

    def typed_data_types(self, primary: str) -> Dict[str, List[Dict[str, str]]]:
        """
        The ``types`` member of an ``eth_signTypedData_v4`` payload for
        ``primary``: the domain type, the primary type and its dependencies.
        """
        types: Dict[str, List[Dict[str, str]]] = {
            EIP712_DOMAIN: [f.as_typed_data() for f in DOMAIN_FIELDS],
        }
        for name in [primary, *self.dependencies(primary)]:
            types[name] = [f.as_typed_data() for f in self._schemas[name]]
        return types

    def as_dict(self) -> Dict[str, Any]:
        return {
            name: [f.as_typed_data() for f in fields]
            for name, fields in self._schemas.items()
        }


def default_registry() -> SchemaRegistry:
    """The two claim schemas the healthcare verifier contract accepts."""
    return SchemaRegistry(
        {
            PATIENT_DATA_UPDATE: [
                ("patient", "address"),
                ("metadataHash", "bytes32"),
            ],
            FEEDBACK_SUBMISSION: [
                ("hospital", "address"),
                ("patient", "address"),
                ("feedback", "string"),
            ],
        }
    )
