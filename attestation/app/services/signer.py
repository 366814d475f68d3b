"""
Typed-data signer.

Computes the EIP-712 digest of a claim, obtains a signature over it
from an external key holder, and decomposes the signature into r, s, v.

HARD GUARANTEES:
- The digest is a pure function of (domain, schema, claim)
- The signature is requested for exactly the typed data that was hashed
- Results are all-or-nothing: hashes and components are returned
  together or a SigningError is raised
- A claim that does not fit the signer's registry is a ValidationError,
  raised before the key holder is contacted
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict

from attestation.app.services.claims import ClaimRecord
from attestation.app.services.errors import (
    SigningError,
    SigningErrorKind,
    ValidationError,
    ValidationErrorKind,
)
from attestation.app.services.key_holder import (
    KeyHolder,
    KeyHolderRejected,
    KeyHolderUnavailable,
)
from attestation.app.typed_data.domain import DomainDescriptor
from attestation.app.typed_data.encoding import (
    EIP191_TYPED_DATA_PREFIX,
    TypedValueError,
    domain_separator,
    hash_struct,
    keccak256,
    normalize_address,
    to_hex,
    typed_data_payload,
)
from attestation.app.typed_data.schemas import SchemaRegistry
from attestation.app.typed_data.signature import (
    SignatureComponents,
    recover_signer,
    split_signature,
)

logger = logging.getLogger("attestation.signer")


class SignedClaim(BaseModel):
    """
    A claim signature ready for on-chain submission.

    ``struct_hash`` is the full EIP-712 digest (what the key holder
    signed); ``message_hash`` is ``hashStruct`` of the claim alone.
    """

    schema_name: str
    struct_hash: str
    domain_separator: str
    message_hash: str
    signer: str
    signature: str
    r: str
    s: str
    v: int

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    def components(self) -> SignatureComponents:
        return split_signature(self.signature)


class TypedDataSigner:
    """
    Signs claim records through an injected key holder.

    The key holder is optional at construction so that a service without
    a signing capability still starts; every sign attempt then fails with
    NO_KEY_HOLDER.
    """

    def __init__(
        self,
        *,
        key_holder: Optional[KeyHolder],
        registry: SchemaRegistry,
        verify_recovered_signer: bool = True,
    ) -> None:
        self._key_holder = key_holder
        self._registry = registry
        self._verify_recovered_signer = verify_recovered_signer

    async def sign(
        self,
        domain: DomainDescriptor,
        schema_name: str,
        claim: ClaimRecord,
        *,
        correlation_id: Optional[str] = None,
    ) -> SignedClaim:
        if schema_name not in self._registry:
            raise ValidationError(
                ValidationErrorKind.UNKNOWN_SCHEMA,
                f"Unknown schema: {schema_name!r}",
            )
        if claim.schema_name != schema_name:
            raise ValidationError(
                ValidationErrorKind.UNKNOWN_SCHEMA,
                f"Claim was built for {claim.schema_name}, not {schema_name}",
            )

        # ------------------------------------------------------------------
        # 1-3. Digest (pure)
        # ------------------------------------------------------------------
        separator = domain_separator(domain)
        try:
            message_hash = hash_struct(schema_name, claim.values, self._registry)
            typed_data = typed_data_payload(
                domain, schema_name, claim.values, self._registry
            )
        except TypedValueError as exc:
            # Claim built against a different definition of this schema
            raise ValidationError(
                ValidationErrorKind.TYPE_MISMATCH,
                str(exc),
                field=exc.path.split(".", 1)[-1],
            ) from exc
        digest = keccak256(EIP191_TYPED_DATA_PREFIX + separator + message_hash)

        # ------------------------------------------------------------------
        # 4. Signature (suspends on user interaction)
        # ------------------------------------------------------------------
        if self._key_holder is None:
            raise SigningError(
                SigningErrorKind.NO_KEY_HOLDER,
                "No signing capability is configured",
            )

        try:
            accounts = await self._key_holder.request_accounts()
            if not accounts:
                raise KeyHolderUnavailable("Key holder granted no accounts")
            account = normalize_address(accounts[0], strict_checksum=False)

            logger.info(
                "signature_requested",
                extra={
                    "trace_id": correlation_id,
                    "schema": schema_name,
                    "account": account,
                    "digest": to_hex(digest),
                },
            )

            raw_signature = await self._key_holder.sign_typed_data(
                account, typed_data
            )

        except KeyHolderRejected as exc:
            logger.info(
                "signature_rejected",
                extra={"trace_id": correlation_id, "schema": schema_name},
            )
            raise SigningError(
                SigningErrorKind.USER_REJECTED,
                f"Key holder declined to sign: {exc}",
            ) from exc

        except KeyHolderUnavailable as exc:
            raise SigningError(
                SigningErrorKind.NO_KEY_HOLDER,
                f"Signing capability unavailable: {exc}",
            ) from exc

        except Exception as exc:
            logger.exception(
                "signature_request_failed",
                extra={
                    "trace_id": correlation_id,
                    "error_type": type(exc).__name__,
                },
            )
            raise SigningError(
                SigningErrorKind.PROVIDER_ERROR,
                f"Key holder failed: {exc}",
            ) from exc

        # ------------------------------------------------------------------
        # 5. Decomposition
        # ------------------------------------------------------------------
        try:
            components = split_signature(raw_signature)
        except ValueError as exc:
            raise SigningError(
                SigningErrorKind.MALFORMED_SIGNATURE,
                f"Key holder returned a malformed signature: {exc}",
            ) from exc

        if self._verify_recovered_signer:
            try:
                recovered = recover_signer(digest, components)
            except ValueError as exc:
                raise SigningError(
                    SigningErrorKind.MALFORMED_SIGNATURE, str(exc)
                ) from exc

            if recovered != account:
                logger.warning(
                    "signature_signer_mismatch",
                    extra={
                        "trace_id": correlation_id,
                        "account": account,
                        "recovered": recovered,
                    },
                )
                raise SigningError(
                    SigningErrorKind.MALFORMED_SIGNATURE,
                    f"Signature recovers to {recovered}, not {account}; "
                    "the key holder signed different typed data",
                )

        signed = SignedClaim(
            schema_name=schema_name,
            struct_hash=to_hex(digest),
            domain_separator=to_hex(separator),
            message_hash=to_hex(message_hash),
            signer=account,
            signature=components.to_hex(),
            r=components.r,
            s=components.s,
            v=components.v,
        )

        # ------------------------------------------------------------------
        # 6. Result
        # ------------------------------------------------------------------
        logger.info(
            "typed_data_signed",
            extra={
                "trace_id": correlation_id,
                "schema": schema_name,
                "struct_hash": signed.struct_hash,
                "signer": signed.signer,
            },
        )
        return signed
