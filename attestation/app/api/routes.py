import asyncio
import logging
import uuid
from typing import (
    Annotated,
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    NoReturn,
    Optional,
    Set,
)

from fastapi import (
    APIRouter,
    Depends,
    Header,
    HTTPException,
    Request,
    Response,
    status,
)
from fastapi.responses import StreamingResponse

from attestation.app.events import SubmissionEventStream
from attestation.app.services.errors import (
    AttestationError,
    PublishError,
    SigningError,
    SigningErrorKind,
    ValidationError,
)
from attestation.app.services.orchestrator import (
    FeedbackForm,
    PatientDataForm,
    SubmissionOrchestrator,
)
from attestation.app.typed_data.schemas import DOMAIN_FIELDS, EIP712_DOMAIN

logger = logging.getLogger("attestation.api")

router = APIRouter(tags=["Attestation"])

# =============================================================================
# Dependency providers
# =============================================================================

def get_correlation_id(
    x_correlation_id: Annotated[
        Optional[str],
        Header(description="Audit trace ID"),
    ] = None,
) -> str:
    """Extract or generate a correlation ID for end-to-end traceability."""
    if x_correlation_id and len(x_correlation_id) > 128:
        return str(uuid.uuid4())
    return x_correlation_id or str(uuid.uuid4())


async def get_orchestrator(request: Request) -> SubmissionOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise RuntimeError("orchestrator not initialized")
    return orchestrator


# =============================================================================
# Error mapping
# =============================================================================

_SIGNING_STATUS = {
    SigningErrorKind.NO_KEY_HOLDER: status.HTTP_503_SERVICE_UNAVAILABLE,
    SigningErrorKind.USER_REJECTED: status.HTTP_409_CONFLICT,
    SigningErrorKind.MALFORMED_SIGNATURE: status.HTTP_502_BAD_GATEWAY,
    SigningErrorKind.PROVIDER_ERROR: status.HTTP_502_BAD_GATEWAY,
}


def status_for_error(exc: AttestationError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, PublishError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, SigningError):
        return _SIGNING_STATUS[exc.signing_kind]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _raise_http(exc: Exception, correlation_id: str) -> NoReturn:
    if isinstance(exc, AttestationError):
        raise HTTPException(
            status_code=status_for_error(exc),
            detail=exc.to_dict(),
            headers={"X-Correlation-ID": correlation_id},
        ) from exc

    logger.exception(
        "submission_pipeline_failure",
        extra={
            "trace_id": correlation_id,
            "error_type": type(exc).__name__,
        },
    )
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Submission failed.",
        headers={"X-Correlation-ID": correlation_id},
    ) from exc


# =============================================================================
# POST /submissions/*
# =============================================================================

_SUBMISSION_RESPONSES: Dict[int, Dict[str, Any]] = {
    409: {"description": "Key holder declined to sign"},
    422: {"description": "Invalid submission input"},
    502: {"description": "Content store or key holder failure"},
    503: {"description": "No signing capability available"},
}


@router.post(
    "/submissions/patient-data",
    summary="Publish a patient record update and sign its claim",
    responses=_SUBMISSION_RESPONSES,
)
async def submit_patient_data(
    form: PatientDataForm,
    response: Response,
    orchestrator: Annotated[
        SubmissionOrchestrator,
        Depends(get_orchestrator),
    ],
    correlation_id: Annotated[
        str,
        Depends(get_correlation_id),
    ],
) -> Dict[str, Any]:
    """
    Publish the form to the content store, commit to the returned CID as
    ``metadataHash`` and return the signature components for on-chain
    submission.
    """
    try:
        result = await orchestrator.submit_patient_data(
            form, correlation_id=correlation_id
        )
    except Exception as exc:
        _raise_http(exc, correlation_id)

    response.headers["X-Correlation-ID"] = correlation_id
    return result.as_response()


@router.post(
    "/submissions/feedback",
    summary="Publish hospital feedback and sign its claim",
    responses=_SUBMISSION_RESPONSES,
)
async def submit_feedback(
    form: FeedbackForm,
    response: Response,
    orchestrator: Annotated[
        SubmissionOrchestrator,
        Depends(get_orchestrator),
    ],
    correlation_id: Annotated[
        str,
        Depends(get_correlation_id),
    ],
) -> Dict[str, Any]:
    """
    Publish the feedback to the content store, commit to the raw CID and
    return the signature components for on-chain submission.
    """
    try:
        result = await orchestrator.submit_feedback(
            form, correlation_id=correlation_id
        )
    except Exception as exc:
        _raise_http(exc, correlation_id)

    response.headers["X-Correlation-ID"] = correlation_id
    return result.as_response()


# =============================================================================
# POST /submissions/*/stream
# =============================================================================

# The event loop holds running tasks only weakly
_background_submissions: Set[asyncio.Task] = set()


def _stream_submission(
    submit: Callable[[SubmissionEventStream], Awaitable[Any]],
    correlation_id: str,
) -> StreamingResponse:
    """
    Run a submission in the background and stream its events as SSE.

    A client that disconnects does not cancel the submission. The last
    frame is always submission_completed or submission_failed.
    """
    events = SubmissionEventStream()

    async def run_submission() -> None:
        try:
            await submit(events)
        except Exception:
            # Already emitted as submission_failed and logged
            pass
        finally:
            events.close()

    task = asyncio.create_task(run_submission())
    _background_submissions.add(task)
    task.add_done_callback(_background_submissions.discard)

    async def event_stream() -> AsyncIterator[str]:
        try:
            async for event in events.stream():
                yield event.to_sse_payload()
        except asyncio.CancelledError:
            logger.info(
                "submission_stream_disconnected",
                extra={"trace_id": correlation_id},
            )
            raise

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-Correlation-ID": correlation_id,
        },
    )


@router.post(
    "/submissions/patient-data/stream",
    summary="Patient record update with streamed progress",
    response_class=StreamingResponse,
)
async def stream_patient_data(
    form: PatientDataForm,
    orchestrator: Annotated[
        SubmissionOrchestrator,
        Depends(get_orchestrator),
    ],
    correlation_id: Annotated[
        str,
        Depends(get_correlation_id),
    ],
) -> StreamingResponse:
    return _stream_submission(
        lambda events: orchestrator.submit_patient_data(
            form, correlation_id=correlation_id, emitter=events
        ),
        correlation_id,
    )


@router.post(
    "/submissions/feedback/stream",
    summary="Hospital feedback with streamed progress",
    response_class=StreamingResponse,
)
async def stream_feedback(
    form: FeedbackForm,
    orchestrator: Annotated[
        SubmissionOrchestrator,
        Depends(get_orchestrator),
    ],
    correlation_id: Annotated[
        str,
        Depends(get_correlation_id),
    ],
) -> StreamingResponse:
    return _stream_submission(
        lambda events: orchestrator.submit_feedback(
            form, correlation_id=correlation_id, emitter=events
        ),
        correlation_id,
    )


# =============================================================================
# GET /typed-data
# =============================================================================

@router.get(
    "/typed-data",
    summary="Domain and schemas a wallet signs against",
)
async def typed_data(
    orchestrator: Annotated[
        SubmissionOrchestrator,
        Depends(get_orchestrator),
    ],
) -> Dict[str, Any]:
    types = {EIP712_DOMAIN: [f.as_typed_data() for f in DOMAIN_FIELDS]}
    types.update(orchestrator.registry.as_dict())
    return {
        "domain": orchestrator.domain.as_typed_data(),
        "types": types,
        "schemas": orchestrator.registry.names(),
    }
