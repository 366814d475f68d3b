from __future__ import annotations

import math
from typing import AsyncIterator, List, Protocol

import anyio

from attestation.app.events.models import SubmissionEvent


class SubmissionEventEmitter(Protocol):
    """
    Receives the progress of one submission.

    ``emit`` must not block on slow listeners. The orchestrator logs and
    discards anything it raises.
    """

    async def emit(self, event: SubmissionEvent) -> None:
        ...


class NullEventEmitter:
    """Used when nobody is listening."""

    async def emit(self, event: SubmissionEvent) -> None:
        return


class SubmissionEventStream:
    """
    Buffers the events of one submission for a single reader.

    The writer side is an unbounded anyio memory stream, so ``emit`` never
    waits on the reader. The stream ends after the first terminal event;
    anything emitted afterwards is dropped.
    """

    def __init__(self) -> None:
        self._send, self._receive = anyio.create_memory_object_stream(
            math.inf
        )
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def emit(self, event: SubmissionEvent) -> None:
        if self._closed:
            return
        try:
            self._send.send_nowait(event)
        except anyio.BrokenResourceError:
            # Reader has gone away
            self.close()
            return
        if event.is_terminal:
            self.close()

    def close(self) -> None:
        """End the stream without a terminal event, e.g. on cancellation."""
        if not self._closed:
            self._closed = True
            self._send.close()

    async def stream(self) -> AsyncIterator[SubmissionEvent]:
        async with self._receive:
            async for event in self._receive:
                yield event

    async def drain(self) -> List[SubmissionEvent]:
        return [event async for event in self.stream()]
