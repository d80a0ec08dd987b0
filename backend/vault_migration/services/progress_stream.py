"""
Push stream of progress events for a single consumer.

The orchestrator pushes ``ProgressEvent`` objects through ``emit`` and ends the
stream with a ``MigrationFinishedEvent``. A consumer iterates with
``async for`` until the finished event has been delivered.
"""

import asyncio
from typing import AsyncIterator, Optional, Union

from logconfig.logger import get_logger
from vault_migration.schemas.migration import MigrationFinishedEvent, ProgressEvent

logger = get_logger()

StreamEvent = Union[ProgressEvent, MigrationFinishedEvent]


class ProgressStream:
    """asyncio.Queue backed progress stream."""

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue(maxsize=maxsize)
        self._finished = False
        self.last_event: Optional[StreamEvent] = None

    @property
    def finished(self) -> bool:
        return self._finished

    def emit(self, event: StreamEvent) -> None:
        """Push a progress event; ignored once the stream is finished."""
        if isinstance(event, MigrationFinishedEvent):
            self.finish(event)
            return
        if self._finished:
            logger.debug(f"Progress event after finish ignored: {event.event_type}")
            return
        self.last_event = event
        self._queue.put_nowait(event)

    def finish(self, event: MigrationFinishedEvent) -> None:
        """Push the terminal event and close the stream."""
        if self._finished:
            logger.debug("Progress stream already finished")
            return
        self._finished = True
        self.last_event = event
        self._queue.put_nowait(event)

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if isinstance(event, MigrationFinishedEvent):
                return
