"""
Content publisher for an IPFS pinning service.

Uploads a JSON document and returns its content identifier (CID). The
CID is what a signed claim commits to; the document itself never enters
the signed structure.

HARD GUARANTEES:
- Canonical request body: identical records are sent as identical bytes
- Bearer credential sourced from settings, never logged
- No automatic retries: the caller decides whether to publish again
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

import httpx
from pydantic import SecretStr

from attestation.app.services.errors import PublishError

logger = logging.getLogger("attestation.pinning")

CONTENT_ID_FIELD = "IpfsHash"


class ContentPublisher(Protocol):
    async def publish(
        self,
        record: Any,
        *,
        correlation_id: Optional[str] = None,
    ) -> str:
        ...


def canonical_json_bytes(record: Any) -> bytes:
    """
    Serialize a JSON-compatible value deterministically.

    Sorted keys, compact separators, UTF-8, and no NaN/Infinity.
    """
    return json.dumps(
        record,
        ensure_ascii=False,
        allow_nan=False,
        sort_keys=True,
        separators=(",", ":"),
    ).encode("utf-8")


class PinningServiceClient:
    """
    Async client for a JSON pinning endpoint (Pinata ``pinJSONToIPFS``
    compatible).

    Success contract: 2xx with a JSON object carrying a non-empty string
    ``IpfsHash``. Anything else is a PublishError.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        credential: SecretStr,
        http_client: httpx.AsyncClient,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.endpoint = str(endpoint)
        self._credential = credential
        self.client = http_client
        self.timeout_seconds = timeout_seconds

    def _headers(self, correlation_id: Optional[str]) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._credential.get_secret_value()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers

    async def publish(
        self,
        record: Any,
        *,
        correlation_id: Optional[str] = None,
    ) -> str:
        try:
            body = canonical_json_bytes(record)
        except (TypeError, ValueError) as exc:
            raise PublishError(
                f"Record is not JSON-serializable: {exc}"
            ) from exc

        try:
            response = await self.client.post(
                self.endpoint,
                headers=self._headers(correlation_id),
                content=body,
                timeout=self.timeout_seconds,
            )
        except httpx.RequestError as exc:
            # Transport failures and undecodable response bodies alike
            logger.error(
                "pinning_transport_failed",
                extra={
                    "trace_id": correlation_id,
                    "error_type": type(exc).__name__,
                },
            )
            raise PublishError(
                f"Content store request failed: {exc}"
            ) from exc

        try:
            result = response.json()
        except ValueError:
            result = None

        if not response.is_success:
            logger.error(
                "pinning_request_failed",
                extra={
                    "trace_id": correlation_id,
                    "status_code": response.status_code,
                    "response_body": response.text,
                },
            )
            raise PublishError(
                f"Content store returned HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=result if result is not None else response.text,
            )

        content_id = (
            result.get(CONTENT_ID_FIELD) if isinstance(result, dict) else None
        )
        if not isinstance(content_id, str) or not content_id:
            logger.error(
                "pinning_response_malformed",
                extra={
                    "trace_id": correlation_id,
                    "status_code": response.status_code,
                },
            )
            raise PublishError(
                f"Content store response has no {CONTENT_ID_FIELD}",
                status_code=response.status_code,
                response_body=result if result is not None else response.text,
            )

        logger.info(
            "content_published",
            extra={
                "trace_id": correlation_id,
                "content_id": content_id,
                "size_bytes": len(body),
            },
        )
        return content_id
