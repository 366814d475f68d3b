"""
Test doubles for the submission workflow.

Deterministic, in-process stand-ins for the content store and the key
holder. They record every call so tests can assert what did (and did
not) happen.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from attestation.app.services.errors import PublishError
from attestation.app.services.key_holder import LocalAccountKeyHolder
from attestation.app.typed_data.domain import DomainDescriptor

# Well-known development key (Hardhat / Anvil account #0). Never funded.
DEV_PRIVATE_KEY = (
    "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
)
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

PATIENT = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
HOSPITAL = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"

LOCAL_DOMAIN = DomainDescriptor(
    name="X",
    version="1",
    chain_id=31337,
    verifying_contract="0x0000000000000000000000000000000000000001",
)


class RecordingPublisher:
    def __init__(
        self,
        *,
        content_id: str = "Qm123",
        error: Optional[Exception] = None,
    ) -> None:
        self._content_id = content_id
        self._error = error
        self.published: List[Any] = []

    async def publish(
        self,
        record: Any,
        *,
        correlation_id: Optional[str] = None,
    ) -> str:
        self.published.append(record)
        if self._error is not None:
            raise self._error
        return self._content_id


def failing_publisher(status_code: int = 500) -> RecordingPublisher:
    return RecordingPublisher(
        error=PublishError(
            f"Content store returned HTTP {status_code}",
            status_code=status_code,
        )
    )


class ScriptedKeyHolder:
    """
    Key holder with a scripted outcome.

    By default it signs with the development key. ``signature`` replaces
    the produced signature; ``error`` is raised from the signing call;
    ``accounts`` overrides the granted account list.
    """

    def __init__(
        self,
        *,
        signature: Union[bytes, str, None] = None,
        error: Optional[Exception] = None,
        accounts: Optional[List[str]] = None,
    ) -> None:
        self._local = LocalAccountKeyHolder(DEV_PRIVATE_KEY)
        self._signature = signature
        self._error = error
        self._accounts = accounts
        self.requests: List[Dict[str, Any]] = []

    async def request_accounts(self) -> List[str]:
        if self._accounts is not None:
            return list(self._accounts)
        return await self._local.request_accounts()

    async def sign_typed_data(
        self,
        account: str,
        typed_data: Dict[str, Any],
    ) -> Union[bytes, str]:
        self.requests.append(typed_data)
        if self._error is not None:
            raise self._error
        if self._signature is not None:
            return self._signature
        return await self._local.sign_typed_data(account, typed_data)
