"""
Tests for EIP-712 structured data hashing.

Coverage:

  Reference vector   "Ether Mail" example (nested structs)  → exact hashes
  Determinism        same inputs, same digest; address case irrelevant
  Field order        reordered schema                      → different hash
  Schema name        identical fields, different name      → different hash
  Domain binding     chainId change                        → different digest
  Interop            digest matches eth-account's encoder
"""

import pytest
from eth_account.messages import encode_typed_data
from eth_utils import keccak

from attestation.app.typed_data import (
    DomainDescriptor,
    SchemaRegistry,
    TypedValueError,
    coerce_value,
    default_registry,
    domain_separator,
    encode_type,
    hash_struct,
    type_hash,
    typed_data_digest,
    typed_data_payload,
)
from attestation.app.typed_data.encoding import (
    domain_type_hash,
    encode_value,
    to_hex,
)
from attestation.tests.doubles import LOCAL_DOMAIN, PATIENT


# ---------------------------------------------------------------------------
# Reference vector
# ---------------------------------------------------------------------------

MAIL_REGISTRY = SchemaRegistry(
    {
        "Person": [("name", "string"), ("wallet", "address")],
        "Mail": [("from", "Person"), ("to", "Person"), ("contents", "string")],
    }
)

MAIL_DOMAIN = DomainDescriptor(
    name="Ether Mail",
    version="1",
    chain_id=1,
    verifying_contract="0xcccccccccccccccccccccccccccccccccccccccc",
)

MAIL = {
    "from": {
        "name": "Cow",
        "wallet": "0xcd2a3d9f938e13cd947ec05abc7fe734df8dd826",
    },
    "to": {
        "name": "Bob",
        "wallet": "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb",
    },
    "contents": "Hello, Bob!",
}


def test_encode_type_appends_sorted_dependencies():
    assert encode_type("Mail", MAIL_REGISTRY) == (
        "Mail(Person from,Person to,string contents)"
        "Person(string name,address wallet)"
    )


def test_reference_type_hashes():
    assert to_hex(type_hash("Mail", MAIL_REGISTRY)) == (
        "0xa0cedeb2dc280ba39b857546d74f5549c3a1d7bdc2dd96bf881f76108e23dac2"
    )
    assert to_hex(domain_type_hash()) == (
        "0x8b73c3c69bb8fe3d512ecc4cf759cc79239f7b179b0ffacaa9a75d522b39400f"
    )


def test_reference_domain_separator():
    assert to_hex(domain_separator(MAIL_DOMAIN)) == (
        "0xf2cee375fa42b42143804025fc449deafd50cc031ca257e0b194a650a912090f"
    )


def test_reference_hash_struct_and_digest():
    assert to_hex(hash_struct("Mail", MAIL, MAIL_REGISTRY)) == (
        "0xc52c0ee5d84264471806290a3f2c4cecfc5490626bf912d01f240d7a274b371e"
    )
    assert to_hex(typed_data_digest(MAIL_DOMAIN, "Mail", MAIL, MAIL_REGISTRY)) == (
        "0xbe609aee343fb3c4b28e1df9e632fca64fcfaede20f02e86244efddf30957bd2"
    )


# ---------------------------------------------------------------------------
# Claim schemas
# ---------------------------------------------------------------------------

def _patient_claim(cid: str = "Qm123") -> dict:
    return {"patient": PATIENT, "metadataHash": keccak(text=cid)}


def test_digest_is_deterministic():
    registry = default_registry()

    first = typed_data_digest(
        LOCAL_DOMAIN, "PatientDataUpdate", _patient_claim(), registry
    )
    second = typed_data_digest(
        LOCAL_DOMAIN, "PatientDataUpdate", _patient_claim(), registry
    )

    assert first == second
    assert len(first) == 32


def test_address_spelling_does_not_change_hash():
    registry = default_registry()

    checksummed = _patient_claim()
    lowered = dict(checksummed, patient=PATIENT.lower())
    hexed = dict(checksummed, metadataHash=to_hex(checksummed["metadataHash"]))

    expected = hash_struct("PatientDataUpdate", checksummed, registry)
    assert hash_struct("PatientDataUpdate", lowered, registry) == expected
    assert hash_struct("PatientDataUpdate", hexed, registry) == expected


def test_chain_id_is_bound_into_digest():
    registry = default_registry()
    mainnet = LOCAL_DOMAIN.model_copy(update={"chain_id": 1})

    local_digest = typed_data_digest(
        LOCAL_DOMAIN, "PatientDataUpdate", _patient_claim(), registry
    )
    mainnet_digest = typed_data_digest(
        mainnet, "PatientDataUpdate", _patient_claim(), registry
    )

    assert local_digest != mainnet_digest


def test_field_order_changes_hash():
    forward = SchemaRegistry({"Pair": [("a", "uint256"), ("b", "uint256")]})
    reverse = SchemaRegistry({"Pair": [("b", "uint256"), ("a", "uint256")]})
    values = {"a": 1, "b": 2}

    assert encode_type("Pair", forward) != encode_type("Pair", reverse)
    assert hash_struct("Pair", values, forward) != hash_struct(
        "Pair", values, reverse
    )


def test_schema_name_changes_hash():
    registry = SchemaRegistry(
        {
            "Admission": [("patient", "address")],
            "Discharge": [("patient", "address")],
        }
    )
    values = {"patient": PATIENT}

    assert hash_struct("Admission", values, registry) != hash_struct(
        "Discharge", values, registry
    )


def test_different_content_ids_give_different_digests():
    registry = default_registry()

    assert typed_data_digest(
        LOCAL_DOMAIN, "PatientDataUpdate", _patient_claim("Qm123"), registry
    ) != typed_data_digest(
        LOCAL_DOMAIN, "PatientDataUpdate", _patient_claim("Qm124"), registry
    )


# ---------------------------------------------------------------------------
# Atomic encodings
# ---------------------------------------------------------------------------

def test_atomic_values_encode_as_single_words():
    assert encode_value("int256", -1) == b"\xff" * 32
    assert encode_value("uint8", 255) == bytes(31) + b"\xff"
    assert encode_value("bool", True) == bytes(31) + b"\x01"
    assert encode_value("bytes4", b"\xde\xad\xbe\xef") == (
        b"\xde\xad\xbe\xef" + bytes(28)
    )
    assert encode_value("address", PATIENT) == (
        bytes(12) + bytes.fromhex(PATIENT[2:])
    )


def test_dynamic_values_are_hashed():
    assert encode_value("string", "Qm123") == keccak(text="Qm123")
    assert encode_value("bytes", b"\x01\x02") == keccak(b"\x01\x02")


@pytest.mark.parametrize(
    "type_, value",
    [
        ("address", "0x1234"),
        ("address", PATIENT[2:]),
        ("address", PATIENT[2:].lower()),
        ("address", "00" + PATIENT[2:]),
        ("bytes32", "0x" + "00" * 31),
        ("bytes32", "not hex"),
        ("uint8", 256),
        ("uint256", -1),
        ("uint256", True),
        ("string", 42),
        ("bool", "true"),
        ("address[]", PATIENT),
        ("uint256[2]", [1, 2, 3]),
    ],
)
def test_coerce_rejects_values_outside_their_type(type_, value):
    with pytest.raises(TypedValueError):
        coerce_value(type_, value)


def test_mixed_case_address_requires_valid_checksum():
    # Flip the case of one letter in a checksummed address
    index = next(i for i, c in enumerate(PATIENT) if i > 1 and c.isalpha())
    flipped = PATIENT[:index] + PATIENT[index].swapcase() + PATIENT[index + 1:]

    with pytest.raises(TypedValueError):
        coerce_value("address", flipped)


def test_struct_rejects_extra_and_missing_fields():
    registry = default_registry()

    with pytest.raises(TypedValueError):
        hash_struct(
            "PatientDataUpdate",
            {**_patient_claim(), "extra": "x"},
            registry,
        )

    with pytest.raises(TypedValueError):
        hash_struct("PatientDataUpdate", {"patient": PATIENT}, registry)


# ---------------------------------------------------------------------------
# Interop with eth-account
# ---------------------------------------------------------------------------

BATCH_REGISTRY = SchemaRegistry(
    {
        "Batch": [
            ("patients", "address[]"),
            ("count", "uint256"),
            ("note", "string"),
        ],
    }
)


@pytest.mark.parametrize(
    "domain, primary, values, registry",
    [
        (MAIL_DOMAIN, "Mail", MAIL, MAIL_REGISTRY),
        (LOCAL_DOMAIN, "PatientDataUpdate", _patient_claim(), default_registry()),
        (
            LOCAL_DOMAIN,
            "FeedbackSubmission",
            {"hospital": PATIENT, "patient": PATIENT, "feedback": "Qm123"},
            default_registry(),
        ),
        (
            LOCAL_DOMAIN,
            "Batch",
            {"patients": [PATIENT, PATIENT.lower()], "count": 2, "note": ""},
            BATCH_REGISTRY,
        ),
    ],
)
def test_digest_matches_eth_account(domain, primary, values, registry):
    payload = typed_data_payload(domain, primary, values, registry)
    signable = encode_typed_data(full_message=payload)

    assert bytes(signable.header) == domain_separator(domain)
    assert bytes(signable.body) == hash_struct(primary, values, registry)
    assert keccak(
        b"\x19" + bytes(signable.version) + bytes(signable.header)
        + bytes(signable.body)
    ) == typed_data_digest(domain, primary, values, registry)


def test_payload_carries_only_the_primary_type_tree():
    payload = typed_data_payload(
        LOCAL_DOMAIN, "PatientDataUpdate", _patient_claim(), default_registry()
    )

    assert payload["primaryType"] == "PatientDataUpdate"
    assert set(payload["types"]) == {"EIP712Domain", "PatientDataUpdate"}
    assert payload["domain"] == {
        "name": "X",
        "version": "1",
        "chainId": 31337,
        "verifyingContract": "0x0000000000000000000000000000000000000001",
    }
    assert payload["message"]["metadataHash"] == to_hex(keccak(text="Qm123"))
