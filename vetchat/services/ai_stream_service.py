"""
Streaming bridge: relays model text fragments to the HTTP client as they arrive.
The sync Gemini stream runs in a worker thread and feeds an asyncio.Queue; fragments
are re-emitted unbuffered and in arrival order. Closing the stream (client disconnect
or explicit abort) sets a stop event that ends and closes the upstream request.
"""
import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable, Iterable

from fastapi.responses import StreamingResponse

from vetchat.errors import Overloaded, UpstreamFailure
from vetchat.services import ai_service

logger = logging.getLogger(__name__)

# End-of-stream marker
_DONE = object()

Producer = Callable[[threading.Event], Iterable[str]]


def _put(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue, item) -> None:
    try:
        loop.call_soon_threadsafe(queue.put_nowait, item)
    except RuntimeError:
        # Event loop already closed; nobody is listening any more
        pass


def _sync_producer(
    produce: Producer,
    stop: threading.Event,
    queue: asyncio.Queue,
    loop: asyncio.AbstractEventLoop,
) -> None:
    """
    Run in thread: iterate the sync stream, put each non-empty delta into queue via loop.
    Puts _DONE when the stream ends, or the Exception on error.
    """
    iterator = None
    try:
        iterator = iter(produce(stop))
        for delta in iterator:
            if stop.is_set():
                break
            if delta:
                _put(loop, queue, delta)
        _put(loop, queue, _DONE)
    except Exception as e:
        logger.warning("Model stream producer failed: %s", e)
        _put(loop, queue, e)
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()


class FragmentStream:
    """
    One upstream streaming call. `start()` waits for the first item so failures surface
    before any response bytes are sent; iterating yields the remaining fragments.
    """

    def __init__(self, produce: Producer):
        self._produce = produce
        self._stop = threading.Event()
        self._queue: asyncio.Queue | None = None
        self._future: asyncio.Future | None = None
        self._first = None

    @property
    def aborted(self) -> bool:
        return self._stop.is_set()

    async def start(self) -> None:
        loop = asyncio.get_event_loop()
        self._queue = asyncio.Queue()
        self._future = loop.run_in_executor(
            None,
            _sync_producer,
            self._produce,
            self._stop,
            self._queue,
            loop,
        )
        item = await self._queue.get()
        if isinstance(item, Exception):
            self.abort()
            raise item
        self._first = item

    def abort(self) -> None:
        """Stop relaying; the worker closes the upstream stream at its next step."""
        self._stop.set()
        future, self._future = self._future, None
        if future is not None:
            future.add_done_callback(_log_producer_result)

    async def aclose(self) -> None:
        self.abort()

    async def fragments(self) -> AsyncIterator[str]:
        if self._queue is None:
            await self.start()
        item, self._first = self._first, None
        try:
            while item is not _DONE:
                if isinstance(item, Exception):
                    raise item
                if self._stop.is_set():
                    return
                yield item
                item = await self._queue.get()
        finally:
            self.abort()

    def __aiter__(self) -> AsyncIterator[str]:
        return self.fragments()


def _log_producer_result(future: asyncio.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.warning("Model stream worker ended with error: %s", exc)


async def open_fragment_stream(produce: Producer) -> FragmentStream:
    """
    Start an upstream stream and wait for its first item. Upstream 429 raises Overloaded;
    any other failure before the first fragment raises UpstreamFailure.
    """
    stream = FragmentStream(produce)
    try:
        await stream.start()
    except Exception as e:
        if ai_service.is_overload_error(e):
            logger.warning("Model API overloaded: %s", e)
            raise Overloaded() from e
        logger.exception("Model stream failed to start")
        raise UpstreamFailure() from e
    return stream


async def _relay(stream: FragmentStream, close: Callable[[], None]) -> AsyncIterator[str]:
    try:
        async for fragment in stream:
            yield fragment
    except Exception:
        # Headers are already out; re-raising breaks the body so the client sees a failure
        logger.exception("Model stream failed mid-response")
        raise
    finally:
        close()


class TextStreamResponse(StreamingResponse):
    """StreamingResponse that runs `close` once the ASGI call ends, even if the body never started."""

    def __init__(self, content, close: Callable[[], None], **kwargs):
        super().__init__(content, **kwargs)
        self._close = close

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self._close()


def stream_text_response(
    stream: FragmentStream,
    on_close: Callable[[], None] | None = None,
) -> StreamingResponse:
    """
    Plain-text streaming response. on_close runs exactly once when the body ends, fails,
    or the client disconnects before or during the body (used to release analysis slots).
    """
    closed = False

    def close() -> None:
        nonlocal closed
        if closed:
            return
        closed = True
        stream.abort()
        if on_close is not None:
            on_close()

    return TextStreamResponse(
        _relay(stream, close),
        close,
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
