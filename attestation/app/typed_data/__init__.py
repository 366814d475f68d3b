from .domain import DomainDescriptor
from .encoding import (
    TypedValueError,
    coerce_struct,
    coerce_value,
    domain_separator,
    encode_type,
    hash_struct,
    keccak256,
    normalize_address,
    type_hash,
    typed_data_digest,
    typed_data_payload,
)
from .schemas import (
    FEEDBACK_SUBMISSION,
    PATIENT_DATA_UPDATE,
    FieldDescriptor,
    SchemaRegistry,
    default_registry,
)
from .signature import SignatureComponents, recover_signer, split_signature

__all__ = [
    "DomainDescriptor",
    "TypedValueError",
    "coerce_struct",
    "coerce_value",
    "domain_separator",
    "encode_type",
    "hash_struct",
    "keccak256",
    "normalize_address",
    "type_hash",
    "typed_data_digest",
    "typed_data_payload",
    "FEEDBACK_SUBMISSION",
    "PATIENT_DATA_UPDATE",
    "FieldDescriptor",
    "SchemaRegistry",
    "default_registry",
    "SignatureComponents",
    "recover_signer",
    "split_signature",
]
