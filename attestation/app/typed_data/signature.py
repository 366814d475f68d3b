"""
secp256k1 signature decomposition.

A key holder returns 65 bytes ``r ‖ s ‖ v``. Wallets disagree on the
encoding of ``v``: most return 27/28, some hardware wallets and raw
signers return the bare recovery id 0/1. Components are always exposed
with ``v`` in {27, 28}; the holder's native byte is kept so the original
signature can be reproduced exactly.
"""

from __future__ import annotations

from typing import Union

from eth_keys import keys
from eth_keys.exceptions import BadSignature
from pydantic import BaseModel, ConfigDict, Field

from attestation.app.typed_data.encoding import to_hex

SIGNATURE_LENGTH = 65

_HEX32 = r"^0x[0-9a-f]{64}$"


class SignatureComponents(BaseModel):
    """The (r, s, v) triple of a recoverable ECDSA signature."""

    r: str = Field(..., pattern=_HEX32)
    s: str = Field(..., pattern=_HEX32)
    v: int = Field(..., ge=27, le=28)

    # The v byte exactly as the key holder produced it (0, 1, 27 or 28)
    native_v: int = Field(..., exclude=True)

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @property
    def recovery_id(self) -> int:
        return self.v - 27

    def to_bytes(self, *, native: bool = False) -> bytes:
        """Re-concatenate ``r ‖ s ‖ v``; ``native`` restores the holder's v."""
        v = self.native_v if native else self.v
        return bytes.fromhex(self.r[2:]) + bytes.fromhex(self.s[2:]) + bytes([v])

    def to_hex(self, *, native: bool = False) -> str:
        return to_hex(self.to_bytes(native=native))


def split_signature(signature: Union[bytes, bytearray, str]) -> SignatureComponents:
    """
    Parse a 65-byte signature into its components.

    Raises ValueError if the input is not exactly 65 bytes (or 0x-prefixed
    hex of 65 bytes) or if ``v`` is not one of 0, 1, 27, 28.
    """
    if isinstance(signature, str):
        if not signature.startswith(("0x", "0X")):
            raise ValueError("signature hex must be 0x-prefixed")
        try:
            raw = bytes.fromhex(signature[2:])
        except ValueError as exc:
            raise ValueError("signature is not valid hex") from exc
    elif isinstance(signature, (bytes, bytearray)):
        raw = bytes(signature)
    else:
        raise ValueError(
            f"signature must be bytes or hex, got {type(signature).__name__}"
        )

    if len(raw) != SIGNATURE_LENGTH:
        raise ValueError(
            f"signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}"
        )

    native_v = raw[64]
    if native_v in (0, 1):
        v = native_v + 27
    elif native_v in (27, 28):
        v = native_v
    else:
        raise ValueError(f"signature has invalid recovery byte {native_v}")

    return SignatureComponents(
        r=to_hex(raw[:32]),
        s=to_hex(raw[32:64]),
        v=v,
        native_v=native_v,
    )


def recover_signer(digest: bytes, components: SignatureComponents) -> str:
    """Checksum address of the key that produced ``components`` over ``digest``."""
    try:
        signature = keys.Signature(
            vrs=(
                components.recovery_id,
                int(components.r, 16),
                int(components.s, 16),
            )
        )
        public_key = signature.recover_public_key_from_msg_hash(digest)
    except (BadSignature, ValueError) as exc:
        raise ValueError(f"signature does not recover: {exc}") from exc

    return public_key.to_checksum_address()
