"""
Submission orchestrator.

Wires one user submission through the workflow:

    publish document -> build claim -> sign claim

Each step is awaited in order and the first failure is terminal for the
submission: nothing after the failing step runs, and no partial claim or
signature is returned. Nothing is submitted on-chain here; the signed
components are handed back to the caller.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from attestation.app.events import (
    NullEventEmitter,
    SubmissionEvent,
    SubmissionEventEmitter,
    SubmissionEventType,
)
from attestation.app.services.claims import ClaimRecord, build_claim
from attestation.app.services.errors import AttestationError
from attestation.app.services.pinning import ContentPublisher
from attestation.app.services.signer import SignedClaim, TypedDataSigner
from attestation.app.typed_data.domain import DomainDescriptor
from attestation.app.typed_data.schemas import (
    FEEDBACK_SUBMISSION,
    PATIENT_DATA_UPDATE,
    SchemaRegistry,
)

logger = logging.getLogger("attestation.orchestrator")


# ----------------------------------------------------------------------
# Submission inputs
# ----------------------------------------------------------------------

class PatientDataForm(BaseModel):
    """Inputs of the patient record update form."""

    patient_address: str = Field(..., alias="patientAddress")
    patient_name: str = Field("", alias="patientName")
    patient_age: str = Field("", alias="patientAge")

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
    )


class FeedbackForm(BaseModel):
    """Inputs of the feedback form."""

    hospital_address: str = Field(..., alias="hospitalAddress")
    patient_address: str = Field(..., alias="patientAddress")
    feedback_text: str = Field("", alias="feedbackText")

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
    )


class SubmissionResult(BaseModel):
    submission_id: str
    schema_name: str
    content_id: str
    claim: ClaimRecord
    signature: SignedClaim

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    def as_response(self) -> Dict[str, Any]:
        """Wallet-facing camelCase form, ready for on-chain submission."""
        signature = self.signature
        return {
            "submissionId": self.submission_id,
            "schema": self.schema_name,
            "contentId": self.content_id,
            "claim": self.claim.as_dict(),
            "structHash": signature.struct_hash,
            "domainSeparator": signature.domain_separator,
            "messageHash": signature.message_hash,
            "signer": signature.signer,
            "signature": signature.signature,
            "r": signature.r,
            "s": signature.s,
            "v": signature.v,
        }


# ----------------------------------------------------------------------
# Orchestrator
# ----------------------------------------------------------------------

class SubmissionOrchestrator:
    """
    Runs submissions against shared, read-only configuration.

    Holds no per-submission state, so concurrent submissions on one
    instance are independent.
    """

    def __init__(
        self,
        *,
        publisher: ContentPublisher,
        signer: TypedDataSigner,
        domain: DomainDescriptor,
        registry: SchemaRegistry,
    ) -> None:
        self._publisher = publisher
        self._signer = signer
        self._domain = domain
        self._registry = registry

    @property
    def domain(self) -> DomainDescriptor:
        return self._domain

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    async def submit_patient_data(
        self,
        form: PatientDataForm,
        *,
        correlation_id: Optional[str] = None,
        emitter: Optional[SubmissionEventEmitter] = None,
    ) -> SubmissionResult:
        return await self._submit(
            schema_name=PATIENT_DATA_UPDATE,
            document=form.model_dump(by_alias=True),
            claim_inputs={"patient": form.patient_address},
            correlation_id=correlation_id,
            emitter=emitter,
        )

    async def submit_feedback(
        self,
        form: FeedbackForm,
        *,
        correlation_id: Optional[str] = None,
        emitter: Optional[SubmissionEventEmitter] = None,
    ) -> SubmissionResult:
        return await self._submit(
            schema_name=FEEDBACK_SUBMISSION,
            document=form.model_dump(by_alias=True),
            claim_inputs={
                "hospital": form.hospital_address,
                "patient": form.patient_address,
            },
            correlation_id=correlation_id,
            emitter=emitter,
        )

    async def _submit(
        self,
        *,
        schema_name: str,
        document: Dict[str, Any],
        claim_inputs: Dict[str, Any],
        correlation_id: Optional[str],
        emitter: Optional[SubmissionEventEmitter],
    ) -> SubmissionResult:
        emitter = emitter or NullEventEmitter()
        submission_id = correlation_id or str(uuid.uuid4())
        step = "publish"

        async def _emit(
            event_type: SubmissionEventType, **details: Any
        ) -> None:
            try:
                await emitter.emit(
                    SubmissionEvent(
                        submission_id=submission_id,
                        event_type=event_type,
                        details={"schema": schema_name, **details},
                    )
                )
            except Exception:
                # Fail-safe: never let observability break the submission
                logger.warning(
                    "event_emission_failed",
                    extra={"trace_id": submission_id, "event": event_type.value},
                )

        await _emit(SubmissionEventType.SUBMISSION_STARTED)
        logger.info(
            "submission_started",
            extra={"trace_id": submission_id, "schema": schema_name},
        )

        try:
            content_id = await self._publisher.publish(
                document, correlation_id=submission_id
            )
            await _emit(
                SubmissionEventType.CONTENT_PUBLISHED, content_id=content_id
            )

            step = "build_claim"
            claim = build_claim(
                schema_name,
                claim_inputs,
                registry=self._registry,
                content_id=content_id,
            )
            await _emit(SubmissionEventType.CLAIM_BUILT)

            step = "sign"
            await _emit(SubmissionEventType.SIGNATURE_REQUESTED)
            signature = await self._signer.sign(
                self._domain,
                schema_name,
                claim,
                correlation_id=submission_id,
            )

        except Exception as exc:
            kind = getattr(exc, "kind", "unexpected_error")
            logger.warning(
                "submission_failed",
                extra={
                    "trace_id": submission_id,
                    "schema": schema_name,
                    "step": step,
                    "error_kind": kind,
                    "error_message": str(exc),
                },
            )
            await _emit(
                SubmissionEventType.SUBMISSION_FAILED,
                step=step,
                error=type(exc).__name__,
                kind=kind,
                message=(
                    exc.message
                    if isinstance(exc, AttestationError)
                    else "Submission failed."
                ),
            )
            raise

        result = SubmissionResult(
            submission_id=submission_id,
            schema_name=schema_name,
            content_id=content_id,
            claim=claim,
            signature=signature,
        )

        await _emit(
            SubmissionEventType.SUBMISSION_COMPLETED,
            result=result.as_response(),
        )
        logger.info(
            "submission_completed",
            extra={
                "trace_id": submission_id,
                "schema": schema_name,
                "content_id": content_id,
                "struct_hash": signature.struct_hash,
            },
        )
        return result
