"""
Centralized configuration management for the attestation service.

Pydantic v2 settings management to enforce strict validation,
zero secret leakage, and fast-failure on invalid configuration.

The pinning credential is read from the environment (or a local ``.env``
file that is never distributed to clients). It is held as a ``SecretStr``
and is redacted from logs and reprs.
"""

from functools import lru_cache
from typing import Annotated, Literal, Optional

from pydantic import AnyHttpUrl, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from attestation.app.typed_data.domain import DomainDescriptor
from attestation.app.typed_data.encoding import normalize_address


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

SensitiveEnv = Annotated[
    SecretStr,
    Field(description="Sensitive credential, redacted from logs"),
]

NetworkName = Literal["localhost", "polygon", "sepolia", "amoy"]

KeyHolderBackend = Literal["none", "local", "json_rpc"]


# Chain ids of the networks the verifier contract is deployed to
NETWORK_CHAIN_IDS: dict[str, int] = {
    "localhost": 31337,
    "polygon": 137,
    "sepolia": 11155111,
    "amoy": 80002,
}


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Fails fast at startup if the pinning credential is missing, the
    verifying contract is not an address, or the selected key holder
    backend lacks its parameters.
    """

    # ---------------------------------------------------------------------
    # Content store (IPFS pinning service)
    # ---------------------------------------------------------------------

    pinning_endpoint: Annotated[
        AnyHttpUrl,
        Field(
            default="https://api.pinata.cloud/pinning/pinJSONToIPFS",
            description="JSON pinning endpoint of the content store",
        ),
    ]

    pinning_jwt: SensitiveEnv

    pinning_timeout_seconds: Annotated[
        float,
        Field(
            default=30.0,
            gt=0,
            le=300,
            description="Upper bound on a single pinning request",
        ),
    ]

    # ---------------------------------------------------------------------
    # EIP-712 domain
    # ---------------------------------------------------------------------

    network: Annotated[
        NetworkName,
        Field(
            default="localhost",
            description="Deployment network of the verifier contract",
        ),
    ]

    chain_id: Annotated[
        Optional[int],
        Field(
            default=None,
            ge=0,
            description="Explicit chain id; overrides the network default",
        ),
    ]

    domain_name: Annotated[
        str,
        Field(default="HealthcareManagementSystem", min_length=1),
    ]

    domain_version: Annotated[
        str,
        Field(default="1", min_length=1),
    ]

    verifying_contract: Annotated[
        str,
        Field(
            default="0x5f5f4A35A3d1aefA3E0f9d5F703496f51686C297",
            description="Address of the on-chain signature verifier",
        ),
    ]

    # ---------------------------------------------------------------------
    # Key holder
    # ---------------------------------------------------------------------

    key_holder: Annotated[
        KeyHolderBackend,
        Field(
            default="none",
            description=(
                "Signing capability: 'json_rpc' for an EIP-1193 wallet "
                "bridge, 'local' for a development key, 'none' to disable"
            ),
        ),
    ]

    local_private_key: Annotated[
        Optional[SecretStr],
        Field(
            default=None,
            description="Development-only secp256k1 key for key_holder=local",
        ),
    ]

    wallet_rpc_url: Annotated[
        Optional[AnyHttpUrl],
        Field(
            default=None,
            description="JSON-RPC endpoint of the wallet for key_holder=json_rpc",
        ),
    ]

    verify_recovered_signer: Annotated[
        bool,
        Field(
            default=True,
            description=(
                "Reject signatures that do not recover to the account "
                "the signature was requested from"
            ),
        ),
    ]

    # ---------------------------------------------------------------------
    # Observability
    # ---------------------------------------------------------------------

    log_level: Annotated[
        Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        Field(default="INFO"),
    ]

    model_config = SettingsConfigDict(
        env_prefix="ATTESTATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    # ---------------------------------------------------------------------
    # Validators (Pydantic v2)
    # ---------------------------------------------------------------------

    @field_validator("verifying_contract")
    @classmethod
    def validate_verifying_contract(cls, v: str) -> str:
        return normalize_address(v, strict_checksum=False)

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def key_holder_parameters(self) -> "Settings":
        if self.key_holder == "local" and self.local_private_key is None:
            raise ValueError(
                "key_holder=local requires ATTESTATION_LOCAL_PRIVATE_KEY"
            )
        if self.key_holder == "json_rpc" and self.wallet_rpc_url is None:
            raise ValueError(
                "key_holder=json_rpc requires ATTESTATION_WALLET_RPC_URL"
            )
        return self

    # ---------------------------------------------------------------------
    # Derived configuration
    # ---------------------------------------------------------------------

    @property
    def effective_chain_id(self) -> int:
        if self.chain_id is not None:
            return self.chain_id
        return NETWORK_CHAIN_IDS[self.network]

    def domain(self) -> DomainDescriptor:
        """The process-wide EIP-712 domain, derived once from settings."""
        return DomainDescriptor(
            name=self.domain_name,
            version=self.domain_version,
            chain_id=self.effective_chain_id,
            verifying_contract=self.verifying_contract,
        )


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.

    Uses an explicit singleton pattern within the FastAPI lifecycle.
    """
    return Settings()  # singleton within process
