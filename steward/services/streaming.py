"""Ordered, cancellable event streams for query responses.

A producer task runs the dispatch pipeline and pushes events into a bounded
queue; the consumer drains it. Every stream starts with one ``start`` event
and ends with exactly one ``complete`` or ``error`` event. If the consumer
stops reading, the producer task is cancelled, which also closes any
in-flight LLM stream.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable

from steward.config import settings
from steward.models import AgentResponse, StreamingEvent

logger = logging.getLogger(__name__)

START_MESSAGE = "Analyzing your request..."
ERROR_MESSAGE = "I encountered an error while processing your request. Please try again."

Emit = Callable[[StreamingEvent], Awaitable[None]]
Pipeline = Callable[[Emit], Awaitable[AgentResponse]]


def error_event(error: BaseException, started: float) -> StreamingEvent:
    return StreamingEvent(
        type="error",
        message=ERROR_MESSAGE,
        error=str(error) or type(error).__name__,
        execution_time=(time.perf_counter() - started) * 1000,
    )


class StreamingResponder:
    """Wraps a pipeline in the start/progress/terminal event protocol."""

    def __init__(self, queue_size: int | None = None):
        self.queue_size = queue_size if queue_size is not None else settings.stream_queue_size

    async def stream(self, pipeline: Pipeline) -> AsyncIterator[StreamingEvent]:
        started = time.perf_counter()
        queue: asyncio.Queue[StreamingEvent] = asyncio.Queue(maxsize=self.queue_size)

        async def emit(event: StreamingEvent) -> None:
            if event.is_terminal:
                raise ValueError("Pipelines report results by returning, not emitting terminal events")
            await queue.put(event)

        async def produce() -> None:
            await queue.put(StreamingEvent(type="start", message=START_MESSAGE))
            try:
                response = await pipeline(emit)
                terminal = StreamingEvent(
                    type="complete",
                    message=response.message,
                    response=response,
                    execution_time=response.execution_time,
                )
            except Exception as e:
                logger.exception("Streaming pipeline failed")
                terminal = error_event(e, started)
            await queue.put(terminal)

        producer = asyncio.create_task(produce())
        try:
            while True:
                event = await queue.get()
                yield event
                if event.is_terminal:
                    return
        finally:
            if not producer.done():
                logger.info("Stream consumer went away, cancelling producer")
                producer.cancel()
                await asyncio.gather(producer, return_exceptions=True)
