from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class SubmissionEventType(str, Enum):
    """Steps a submission passes through, in emission order."""

    SUBMISSION_STARTED = "submission_started"
    CONTENT_PUBLISHED = "content_published"
    CLAIM_BUILT = "claim_built"
    SIGNATURE_REQUESTED = "signature_requested"

    # Exactly one of these ends every submission
    SUBMISSION_COMPLETED = "submission_completed"
    SUBMISSION_FAILED = "submission_failed"


TERMINAL_EVENT_TYPES = frozenset(
    {
        SubmissionEventType.SUBMISSION_COMPLETED,
        SubmissionEventType.SUBMISSION_FAILED,
    }
)


class SubmissionEvent(BaseModel):
    """
    One observed step of a submission.

    Events never influence the workflow. ``details`` carries the schema
    name and step context; the completed event carries the same body the
    synchronous endpoints return, the failed event the error kind and
    message.
    """

    event_id: UUID = Field(default_factory=uuid4)
    submission_id: str
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    event_type: SubmissionEventType
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @property
    def is_terminal(self) -> bool:
        return self.event_type in TERMINAL_EVENT_TYPES

    def to_sse_payload(self) -> str:
        """Render as one ``text/event-stream`` frame."""
        return (
            f"id: {self.event_id}\n"
            f"event: {self.event_type.value}\n"
            f"data: {self.model_dump_json()}\n\n"
        )
