"""
Key holder capabilities.

The attestation service never holds user keys itself. It calls out to a
key holder that can (a) grant access to an account and (b) sign EIP-712
typed data with it. The signing request is the single point in a
submission that waits on a human: it may be approved, rejected, or left
pending indefinitely.

Implementations:
- JsonRpcKeyHolder: an EIP-1193 wallet reached over JSON-RPC
  (``eth_requestAccounts`` / ``eth_signTypedData_v4``)
- LocalAccountKeyHolder: an in-process eth-account key.
  DEVELOPMENT ONLY.
"""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any, Dict, List, Protocol, Union

import httpx
from eth_account import Account
from eth_account.messages import encode_typed_data

from attestation.app.typed_data.encoding import normalize_address

logger = logging.getLogger("attestation.key_holder")

# EIP-1193 provider error codes
USER_REJECTED_REQUEST = 4001
UNAUTHORIZED = 4100
UNSUPPORTED_METHOD = 4200
DISCONNECTED = 4900
CHAIN_DISCONNECTED = 4901


class KeyHolderError(RuntimeError):
    """The key holder failed to serve a request."""


class KeyHolderRejected(KeyHolderError):
    """The user declined the request."""


class KeyHolderUnavailable(KeyHolderError):
    """No signing capability or no authorized account."""


class KeyHolder(Protocol):
    """Interface of an external signing capability."""

    async def request_accounts(self) -> List[str]:
        ...

    async def sign_typed_data(
        self,
        account: str,
        typed_data: Dict[str, Any],
    ) -> Union[bytes, str]:
        ...


# ----------------------------------------------------------------------
# EIP-1193 wallet over JSON-RPC
# ----------------------------------------------------------------------

class JsonRpcKeyHolder:
    """
    Async client for a wallet exposing the EIP-1193 request interface
    over JSON-RPC.

    Requests carry no timeout: a signing request stays open for as long
    as the wallet waits on its user. Callers that need a deadline wrap
    the submission in their own timeout.
    """

    def __init__(
        self,
        *,
        rpc_url: str,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.rpc_url = str(rpc_url)
        self.client = http_client
        self._ids = itertools.count(1)

    async def request_accounts(self) -> List[str]:
        result = await self._call("eth_requestAccounts", [])
        if not isinstance(result, list):
            raise KeyHolderError("eth_requestAccounts returned no account list")
        return [str(account) for account in result]

    async def sign_typed_data(
        self,
        account: str,
        typed_data: Dict[str, Any],
    ) -> Union[bytes, str]:
        result = await self._call(
            "eth_signTypedData_v4",
            [account, json.dumps(typed_data, separators=(",", ":"))],
        )
        if not isinstance(result, str):
            raise KeyHolderError("eth_signTypedData_v4 returned no signature")
        return result

    async def _call(self, method: str, params: List[Any]) -> Any:
        request_id = next(self._ids)
        payload = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params,
        }

        try:
            response = await self.client.post(
                self.rpc_url,
                json=payload,
                timeout=None,
            )
        except httpx.TransportError as exc:
            logger.warning(
                "wallet_unreachable",
                extra={"method": method, "error_type": type(exc).__name__},
            )
            raise KeyHolderUnavailable(f"Wallet unreachable: {exc}") from exc
        except httpx.RequestError as exc:
            raise KeyHolderError(
                f"Wallet response to {method} could not be read: {exc}"
            ) from exc

        try:
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPStatusError, ValueError) as exc:
            raise KeyHolderError(
                f"Wallet returned an invalid response to {method} "
                f"(status={response.status_code})"
            ) from exc

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = (
                error.get("message", "") if isinstance(error, dict) else str(error)
            )
            logger.info(
                "wallet_request_declined",
                extra={"method": method, "code": code},
            )
            if code == USER_REJECTED_REQUEST:
                raise KeyHolderRejected(message or "User rejected the request")
            if code in (
                UNAUTHORIZED,
                UNSUPPORTED_METHOD,
                DISCONNECTED,
                CHAIN_DISCONNECTED,
            ):
                raise KeyHolderUnavailable(message or f"Wallet error {code}")
            raise KeyHolderError(f"Wallet error {code}: {message}")

        if not isinstance(body, dict) or "result" not in body:
            raise KeyHolderError(f"Wallet response to {method} has no result")

        return body["result"]


# ----------------------------------------------------------------------
# In-process development key
# ----------------------------------------------------------------------

class LocalAccountKeyHolder:
    """
    Signs with a private key held in process memory.

    DEVELOPMENT ONLY.
    The typed data is re-encoded by eth-account, independently of this
    service's own encoder, exactly as a browser wallet would.
    """

    def __init__(self, private_key: Union[str, bytes]) -> None:
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    async def request_accounts(self) -> List[str]:
        return [self._account.address]

    async def sign_typed_data(
        self,
        account: str,
        typed_data: Dict[str, Any],
    ) -> Union[bytes, str]:
        if normalize_address(account, strict_checksum=False) != self._account.address:
            raise KeyHolderUnavailable(f"Account {account} is not held here")

        signable = encode_typed_data(full_message=typed_data)
        signed = self._account.sign_message(signable)
        return bytes(signed.signature)
