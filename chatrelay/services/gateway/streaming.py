"""Streaming primitives shared by all executors.

``ChunkStream`` is a single-producer/single-consumer channel: a background task
owns the upstream response and writes ``StreamItem``s into a one-slot queue, the
caller iterates. ``BaseStreamTranslator`` is the per-provider incremental parser
and state machine; ``pump_lines`` connects the two.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, List, Optional

import httpx

from chatrelay.services.gateway.audit import SafeAuditRecorder
from chatrelay.services.gateway.errors import GatewayError, StreamCancelled, UpstreamProtocolError
from chatrelay.services.gateway.models import CanonicalStreamChunk
from chatrelay.services.gateway.reporting import UsageTracker

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_TERMINATOR = "[DONE]"


@dataclass(frozen=True)
class StreamItem:
    """One item on a ChunkStream: a chunk or a final error."""
    chunk: Optional[CanonicalStreamChunk] = None
    error: Optional[GatewayError] = None


class ChunkStream:
    """Single-producer/single-consumer channel of StreamItems.

    The producer blocks on ``send`` until the consumer has taken the previous
    item. Iteration ends once the producer has finished and every sent item has
    been read. ``aclose`` cancels the producer; nothing is delivered afterwards.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._finished = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._consumer_closed = False
        self._producer_started = False
        self._on_abandon: Optional[Callable[[], Awaitable[None]]] = None

    def start(
        self,
        producer: Callable[["ChunkStream"], Awaitable[None]],
        on_abandon: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        """Run ``producer`` in a background task.

        ``on_abandon`` runs if the stream is closed before the producer got to
        execute at all, so resources handed to the producer are still released.
        """
        if self._task is not None:
            raise RuntimeError("stream already started")
        self._on_abandon = on_abandon
        self._task = asyncio.create_task(self._run(producer))

    async def _run(self, producer: Callable[["ChunkStream"], Awaitable[None]]) -> None:
        self._producer_started = True
        try:
            await producer(self)
        finally:
            self._finished.set()

    @property
    def closed(self) -> bool:
        return self._finished.is_set() and self._queue.empty()

    async def send(self, item: StreamItem) -> None:
        if self._consumer_closed:
            raise StreamCancelled("stream closed by consumer")
        await self._queue.put(item)

    def __aiter__(self) -> AsyncIterator[StreamItem]:
        return self

    async def __anext__(self) -> StreamItem:
        while True:
            if self._consumer_closed:
                raise StopAsyncIteration
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self._finished.is_set():
                raise StopAsyncIteration
            getter = asyncio.ensure_future(self._queue.get())
            finisher = asyncio.ensure_future(self._finished.wait())
            try:
                await asyncio.wait({getter, finisher}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                finisher.cancel()
                if not getter.done():
                    getter.cancel()
            if getter.done() and not getter.cancelled():
                return getter.result()

    async def aclose(self) -> None:
        """Close from the consumer side, cancelling the producer task."""
        if self._consumer_closed:
            return
        self._consumer_closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if not self._producer_started and self._on_abandon is not None:
            await self._on_abandon()
        self._finished.set()

    async def collect(self) -> List[StreamItem]:
        """Drain the stream into a list."""
        return [item async for item in self]


class StreamState(enum.Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    DRAINING = "draining"
    CLOSED = "closed"
    ERROR = "error"


def extract_sse_data(line: str) -> Optional[str]:
    """Return the payload of a ``data:`` line, or None for any other line."""
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    return line[len(SSE_DATA_PREFIX):].strip()


class BaseStreamTranslator:
    """Incremental line parser and state machine for one upstream stream.

    Subclasses implement ``handle_data`` for a single ``data:`` payload and call
    ``emit`` for every canonical delta. Indices start at 0 and grow by one per
    emitted chunk.
    """

    def __init__(self, max_line_bytes: int = 20 * 1024 * 1024):
        self.state = StreamState.CONNECTING
        self.max_line_bytes = max_line_bytes
        self._next_index = 0
        self._pending: List[CanonicalStreamChunk] = []

    def connected(self) -> None:
        self._transition(StreamState.CONNECTING, StreamState.STREAMING)

    def _transition(self, expected: StreamState, target: StreamState) -> None:
        if self.state is not expected:
            raise RuntimeError(f"invalid stream transition {self.state.value} -> {target.value}")
        self.state = target

    def emit(self, delta: str, terminal: bool = False, finish_reason: Optional[str] = None) -> None:
        chunk = CanonicalStreamChunk(
            index=self._next_index,
            delta=delta,
            terminal=terminal,
            finish_reason=finish_reason,
        )
        self._next_index += 1
        self._pending.append(chunk)

    def feed_line(self, line: str) -> List[CanonicalStreamChunk]:
        """Consume one upstream line and return the chunks it produced."""
        if self.state is not StreamState.STREAMING:
            return []
        if len(line.encode("utf-8")) > self.max_line_bytes:
            raise UpstreamProtocolError(f"upstream event line exceeds {self.max_line_bytes} bytes")
        data = extract_sse_data(line)
        if data is None:
            return []
        if data == SSE_TERMINATOR:
            self.state = StreamState.DRAINING
            return []
        self.handle_data(data)
        return self._drain_pending()

    def handle_data(self, data: str) -> None:
        raise NotImplementedError

    def finish(self) -> List[CanonicalStreamChunk]:
        """End of upstream body: emit the terminal chunk and close."""
        if self.state in (StreamState.STREAMING, StreamState.DRAINING):
            self.state = StreamState.DRAINING
            self.emit("", terminal=True, finish_reason="stop")
            self.state = StreamState.CLOSED
        return self._drain_pending()

    def fail(self) -> None:
        if self.state is not StreamState.CLOSED:
            self.state = StreamState.ERROR

    @property
    def draining(self) -> bool:
        return self.state is StreamState.DRAINING

    def _drain_pending(self) -> List[CanonicalStreamChunk]:
        pending, self._pending = self._pending, []
        return pending


async def pump_lines(
    stream: ChunkStream,
    response: httpx.Response,
    translator: BaseStreamTranslator,
    tracker: UsageTracker,
    audit: SafeAuditRecorder,
    label: str,
) -> None:
    """Producer body: read upstream lines, translate, and send canonical chunks.

    Owns ``response`` exclusively and always closes it. Reports exactly once:
    success on a clean close, failure on read errors or cancellation.
    """
    try:
        translator.connected()
        async for line in response.aiter_lines():
            audit.append_chunk(line.encode("utf-8"))
            for chunk in translator.feed_line(line):
                await stream.send(StreamItem(chunk=chunk))
            if translator.draining:
                break
        for chunk in translator.finish():
            await stream.send(StreamItem(chunk=chunk))
        tracker.success()
        logger.debug(f"{label}: stream closed cleanly")
    except asyncio.CancelledError:
        translator.fail()
        logger.info(f"{label}: stream cancelled by consumer")
        tracker.failure(StreamCancelled("stream cancelled"))
        raise
    except StreamCancelled as e:
        translator.fail()
        tracker.failure(e)
    except Exception as e:
        translator.fail()
        if isinstance(e, GatewayError):
            error = e
        else:
            error = UpstreamProtocolError(f"upstream read failed: {type(e).__name__}: {e}")
        audit.record_error(error)
        logger.error(f"{label}: stream read error: {error}")
        tracker.failure(error)
        await stream.send(StreamItem(error=error))
    finally:
        await response.aclose()
