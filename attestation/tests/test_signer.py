"""
Tests for the typed-data signer.

Coverage matrix:

  Local key          components recover to the signing account
  No key holder      → NO_KEY_HOLDER
  No account         → NO_KEY_HOLDER
  User rejection     → USER_REJECTED
  Provider failure   → PROVIDER_ERROR
  Bad signature      → MALFORMED_SIGNATURE (length, v byte, wrong signer)
  Foreign schema     → ValidationError UNKNOWN_SCHEMA, key holder untouched
  Off-registry claim → ValidationError TYPE_MISMATCH, key holder untouched
"""

import anyio
import pytest
from eth_utils import keccak

from attestation.app.services.claims import ClaimRecord, build_claim
from attestation.app.services.errors import (
    SigningError,
    SigningErrorKind,
    ValidationError,
    ValidationErrorKind,
)
from attestation.app.services.key_holder import (
    KeyHolderError,
    KeyHolderRejected,
    KeyHolderUnavailable,
)
from attestation.app.services.signer import TypedDataSigner
from attestation.app.typed_data import (
    default_registry,
    domain_separator,
    hash_struct,
    recover_signer,
    typed_data_digest,
)
from attestation.app.typed_data.encoding import to_hex
from attestation.tests.doubles import (
    DEV_ADDRESS,
    LOCAL_DOMAIN,
    PATIENT,
    ScriptedKeyHolder,
)

REGISTRY = default_registry()


def _claim(cid: str = "Qm123"):
    return build_claim(
        "PatientDataUpdate",
        {"patient": PATIENT},
        registry=REGISTRY,
        content_id=cid,
    )


def _sign(key_holder, claim=None, domain=LOCAL_DOMAIN, **kwargs):
    signer = TypedDataSigner(
        key_holder=key_holder,
        registry=REGISTRY,
        **kwargs,
    )
    return anyio.run(
        lambda: signer.sign(domain, "PatientDataUpdate", claim or _claim())
    )


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

def test_sign_returns_hashes_and_components_together():
    claim = _claim()
    signed = _sign(ScriptedKeyHolder(), claim)

    digest = typed_data_digest(
        LOCAL_DOMAIN, "PatientDataUpdate", claim.values, REGISTRY
    )

    assert signed.struct_hash == to_hex(digest)
    assert signed.domain_separator == to_hex(domain_separator(LOCAL_DOMAIN))
    assert signed.message_hash == to_hex(
        hash_struct("PatientDataUpdate", claim.values, REGISTRY)
    )
    assert signed.signer == DEV_ADDRESS
    assert signed.v in (27, 28)
    assert len(signed.r) == 66 and len(signed.s) == 66
    assert recover_signer(digest, signed.components()) == DEV_ADDRESS


def test_end_to_end_scenario_binds_cid_and_chain():
    claim = _claim("Qm123")
    assert claim.values["metadataHash"] == to_hex(keccak(text="Qm123"))

    local = _sign(ScriptedKeyHolder(), claim)
    mainnet = _sign(
        ScriptedKeyHolder(),
        claim,
        domain=LOCAL_DOMAIN.model_copy(update={"chain_id": 1}),
    )

    assert local.message_hash == mainnet.message_hash
    assert local.struct_hash != mainnet.struct_hash


def test_wallet_receives_exactly_the_hashed_typed_data():
    holder = ScriptedKeyHolder()
    claim = _claim()
    _sign(holder, claim)

    [request] = holder.requests
    assert request["primaryType"] == "PatientDataUpdate"
    assert request["message"] == claim.values
    assert request["domain"]["chainId"] == 31337


def test_native_recovery_id_signature_is_normalized():
    holder = ScriptedKeyHolder()
    signed = _sign(holder)

    raw = bytearray(bytes.fromhex(signed.signature[2:]))
    raw[64] -= 27

    resigned = _sign(ScriptedKeyHolder(signature=bytes(raw)))

    assert resigned.v == signed.v
    assert resigned.r == signed.r
    assert resigned.s == signed.s


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

def _signing_kind(key_holder, **kwargs) -> SigningErrorKind:
    with pytest.raises(SigningError) as excinfo:
        _sign(key_holder, **kwargs)
    return excinfo.value.signing_kind


def test_missing_key_holder():
    assert _signing_kind(None) == SigningErrorKind.NO_KEY_HOLDER


def test_no_granted_account():
    assert _signing_kind(ScriptedKeyHolder(accounts=[])) == (
        SigningErrorKind.NO_KEY_HOLDER
    )


def test_unavailable_key_holder():
    holder = ScriptedKeyHolder(error=KeyHolderUnavailable("disconnected"))
    assert _signing_kind(holder) == SigningErrorKind.NO_KEY_HOLDER


def test_user_rejection():
    holder = ScriptedKeyHolder(error=KeyHolderRejected("User rejected"))
    assert _signing_kind(holder) == SigningErrorKind.USER_REJECTED


def test_provider_error():
    holder = ScriptedKeyHolder(error=KeyHolderError("internal error"))
    assert _signing_kind(holder) == SigningErrorKind.PROVIDER_ERROR


@pytest.mark.parametrize(
    "signature",
    [
        b"\x01" * 64,
        b"\x01" * 66,
        b"\x01" * 64 + b"\x05",
        "0xnothex",
    ],
)
def test_malformed_signature(signature):
    holder = ScriptedKeyHolder(signature=signature)
    assert _signing_kind(holder) == SigningErrorKind.MALFORMED_SIGNATURE


def test_signature_from_another_account_is_rejected():
    # Well-formed signature over a different claim
    other = _sign(ScriptedKeyHolder(), _claim("QmOther"))
    holder = ScriptedKeyHolder(signature=other.signature)

    assert _signing_kind(holder) == SigningErrorKind.MALFORMED_SIGNATURE


def test_recovery_check_can_be_disabled():
    other = _sign(ScriptedKeyHolder(), _claim("QmOther"))
    signed = _sign(
        ScriptedKeyHolder(signature=other.signature),
        verify_recovered_signer=False,
    )

    assert signed.signature == other.signature


# ---------------------------------------------------------------------------
# Claims that do not fit the registry
# ---------------------------------------------------------------------------

def _validation_error(holder, schema_name, claim):
    signer = TypedDataSigner(key_holder=holder, registry=REGISTRY)
    with pytest.raises(ValidationError) as excinfo:
        anyio.run(lambda: signer.sign(LOCAL_DOMAIN, schema_name, claim))
    return excinfo.value


@pytest.mark.parametrize("schema_name", ["Prescription", "FeedbackSubmission"])
def test_claim_for_another_schema_is_rejected_before_signing(schema_name):
    holder = ScriptedKeyHolder()

    error = _validation_error(holder, schema_name, _claim())

    assert error.validation_kind == ValidationErrorKind.UNKNOWN_SCHEMA
    assert holder.requests == []


@pytest.mark.parametrize(
    "values, field",
    [
        ({"patient": PATIENT}, "metadataHash"),
        ({"patient": PATIENT, "metadataHash": "0x1234"}, "metadataHash"),
        ({"patient": "0x1234", "metadataHash": "0x" + "00" * 32}, "patient"),
    ],
)
def test_claim_not_matching_registry_is_a_type_mismatch(values, field):
    holder = ScriptedKeyHolder()
    claim = ClaimRecord(schema_name="PatientDataUpdate", values=values)

    error = _validation_error(holder, "PatientDataUpdate", claim)

    assert error.validation_kind == ValidationErrorKind.TYPE_MISMATCH
    assert error.field == field
    assert holder.requests == []


def test_signed_claim_cannot_be_altered_afterwards():
    claim = _claim()
    signed = _sign(ScriptedKeyHolder(), claim)

    with pytest.raises(TypeError):
        claim.values["metadataHash"] = "0x" + "11" * 32

    digest = typed_data_digest(
        LOCAL_DOMAIN, "PatientDataUpdate", claim.values, REGISTRY
    )
    assert signed.struct_hash == to_hex(digest)
