from .models import SubmissionEvent, SubmissionEventType
from .emitter import (
    NullEventEmitter,
    SubmissionEventEmitter,
    SubmissionEventStream,
)

__all__ = [
    "SubmissionEvent",
    "SubmissionEventType",
    "SubmissionEventEmitter",
    "NullEventEmitter",
    "SubmissionEventStream",
]
