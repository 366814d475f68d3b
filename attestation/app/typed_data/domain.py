"""
EIP-712 domain descriptor.

The domain binds every signature to one verifier contract on one chain.
It must match the on-chain verifier's expectation exactly: a mismatched
domain yields signatures that are cryptographically valid but that the
verifier will never accept.
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from attestation.app.typed_data.encoding import normalize_address


class DomainDescriptor(BaseModel):
    """Immutable {name, version, chainId, verifyingContract} tuple."""

    name: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    chain_id: int = Field(..., alias="chainId", ge=0)
    verifying_contract: str = Field(..., alias="verifyingContract")

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
    )

    @field_validator("verifying_contract", mode="before")
    @classmethod
    def checksum_verifying_contract(cls, v: Any) -> str:
        return normalize_address(v, strict_checksum=False)

    def as_typed_data(self) -> Dict[str, Any]:
        """The ``domain`` member of an ``eth_signTypedData_v4`` payload."""
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }
