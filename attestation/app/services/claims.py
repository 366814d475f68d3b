"""
Typed-data commitment builder.

Turns raw submitted fields plus a content identifier into a claim record
that conforms exactly to one registered schema.

The two built-in schemas commit to published content differently, and
the difference is part of the on-chain contract:
- PatientDataUpdate commits to keccak256(utf8(CID)) as ``metadataHash``
- FeedbackSubmission commits to the raw CID string as ``feedback``
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator

from attestation.app.services.errors import ValidationError, ValidationErrorKind
from attestation.app.typed_data.encoding import (
    TypedValueError,
    coerce_struct,
    keccak256,
    to_hex,
    to_json_value,
)
from attestation.app.typed_data.schemas import (
    FEEDBACK_SUBMISSION,
    PATIENT_DATA_UPDATE,
    SchemaRegistry,
)


class ClaimRecord(BaseModel):
    """
    A claim conforming to one schema.

    ``values`` hold the wallet-facing JSON form: checksum addresses and
    0x-prefixed hex for byte strings. They are read-only all the way down
    (mappings become proxies, arrays become tuples); use ``as_dict()`` for
    a mutable copy.
    """

    schema_name: str
    values: Mapping[str, Any]

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @field_validator("values", mode="after")
    @classmethod
    def freeze_values(cls, v: Mapping[str, Any]) -> Mapping[str, Any]:
        return _freeze(v)

    @field_serializer("values")
    def serialize_values(self, v: Mapping[str, Any]) -> Dict[str, Any]:
        return _thaw(v)

    def as_dict(self) -> Dict[str, Any]:
        return _thaw(self.values)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


Derivation = Callable[[Mapping[str, Any], Optional[str]], Dict[str, Any]]


def _require_content_id(content_id: Optional[str]) -> str:
    if content_id is None or (isinstance(content_id, str) and not content_id):
        raise ValidationError(
            ValidationErrorKind.MISSING_FIELD,
            "A content identifier is required",
            field="content_id",
        )
    if not isinstance(content_id, str):
        raise ValidationError(
            ValidationErrorKind.TYPE_MISMATCH,
            "Content identifier must be a string",
            field="content_id",
        )
    return content_id


def _patient_data_update(
    raw_inputs: Mapping[str, Any], content_id: Optional[str]
) -> Dict[str, Any]:
    cid = _require_content_id(content_id)
    return {
        "patient": raw_inputs.get("patient"),
        "metadataHash": to_hex(keccak256(cid.encode("utf-8"))),
    }


def _feedback_submission(
    raw_inputs: Mapping[str, Any], content_id: Optional[str]
) -> Dict[str, Any]:
    cid = _require_content_id(content_id)
    return {
        "hospital": raw_inputs.get("hospital"),
        "patient": raw_inputs.get("patient"),
        "feedback": cid,
    }


_DERIVATIONS: Dict[str, Derivation] = {
    PATIENT_DATA_UPDATE: _patient_data_update,
    FEEDBACK_SUBMISSION: _feedback_submission,
}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def build_claim(
    schema_name: str,
    raw_inputs: Mapping[str, Any],
    *,
    registry: SchemaRegistry,
    content_id: Optional[str] = None,
) -> ClaimRecord:
    """
    Build a claim record for ``schema_name``.

    Schemas without a dedicated derivation take their field values from
    ``raw_inputs`` directly.

    Raises:
        ValidationError: UNKNOWN_SCHEMA, MISSING_FIELD or TYPE_MISMATCH.
    """
    if schema_name not in registry:
        raise ValidationError(
            ValidationErrorKind.UNKNOWN_SCHEMA,
            f"Unknown schema: {schema_name!r}",
        )

    derive = _DERIVATIONS.get(schema_name)
    if derive is not None:
        values = derive(raw_inputs, content_id)
    else:
        values = dict(raw_inputs)

    for field in registry[schema_name]:
        if _is_blank(values.get(field.name)):
            raise ValidationError(
                ValidationErrorKind.MISSING_FIELD,
                f"{schema_name}.{field.name} is required",
                field=field.name,
            )

    try:
        coerced = coerce_struct(schema_name, values, registry)
    except TypedValueError as exc:
        raise ValidationError(
            ValidationErrorKind.TYPE_MISMATCH,
            str(exc),
            field=exc.path.split(".", 1)[-1],
        ) from exc

    return ClaimRecord(
        schema_name=schema_name,
        values=to_json_value(schema_name, coerced, registry),
    )
