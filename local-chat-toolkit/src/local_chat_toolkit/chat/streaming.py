"""
Streaming response accumulation.

'StreamingResponseHandler' collects the chunks of one model response in arrival
order and forwards each chunk to the registered listeners (the UI's partial-text
callback). It has two states: ACCUMULATING and DONE. Once DONE the accumulated text
is final and late chunks are ignored, so a backend that keeps emitting after an
error or a cancellation cannot change the result.

'consume_stream' drives a backend's async iterator into a handler while watching
the request's cancellation token. Each pull from the iterator races against the
token, so cancellation takes effect even while the model is still thinking about
the next chunk. On cancellation the iterator is closed and the text received so far
is kept.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from enum import StrEnum

from loguru import logger

from local_chat_toolkit.llms.base import CancellationToken

ChunkListener = Callable[[str], None]

_END = object()


class StreamState(StrEnum):
    ACCUMULATING = "accumulating"
    DONE = "done"


class StreamingResponseHandler:
    def __init__(self) -> None:
        self.state = StreamState.ACCUMULATING
        self.error: str | None = None
        self._chunks: list[str] = []
        self._listeners: list[ChunkListener] = []
        self._final: str | None = None

    def add_listener(self, listener: ChunkListener) -> None:
        self._listeners.append(listener)

    @property
    def is_done(self) -> bool:
        return self.state == StreamState.DONE

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def has_content(self) -> bool:
        return bool(self.full_response.strip())

    @property
    def full_response(self) -> str:
        if self._final is not None:
            return self._final
        return "".join(self._chunks)

    def on_chunk(self, text: str) -> None:
        if self.is_done:
            logger.debug("Ignoring chunk received after the stream finished")
            return
        if not text:
            return
        self._chunks.append(text)
        for listener in self._listeners:
            try:
                listener(text)
            except Exception:
                logger.exception("Chunk listener failed")

    def on_error(self, message: str) -> None:
        if self.is_done:
            return
        self.error = message
        self._mark_done()

    def finish(self) -> None:
        if not self.is_done:
            self._mark_done()

    def _mark_done(self) -> None:
        self._final = "".join(self._chunks)
        self.state = StreamState.DONE


def create_handler(listener: ChunkListener | None = None) -> StreamingResponseHandler:
    handler = StreamingResponseHandler()
    if listener is not None:
        handler.add_listener(listener)
    return handler


async def _next_chunk(iterator: AsyncIterator[str]) -> object:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


async def _close(stream: AsyncIterator[str]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


async def _cancel_pending(*tasks: asyncio.Future | None) -> None:
    pending = [task for task in tasks if task is not None and not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def consume_stream(
    stream: AsyncIterator[str],
    handler: StreamingResponseHandler,
    cancellation: CancellationToken | None = None,
) -> bool:
    """Feed 'stream' into 'handler' until it is exhausted or cancelled.

    Errors raised by the stream propagate to the caller; the handler is left in
    ACCUMULATING state so the caller can decide between 'on_error' and a retry.

    Returns:
        True if the stream was stopped by cancellation.
    """
    iterator = stream.__aiter__()
    exhausted = False
    next_task: asyncio.Future | None = None
    cancel_task: asyncio.Future | None = None
    try:
        while True:
            if cancellation is not None and cancellation.is_cancelled:
                break

            next_task = asyncio.ensure_future(_next_chunk(iterator))
            if cancellation is not None:
                cancel_task = asyncio.ensure_future(cancellation.wait())
                await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
                cancel_task.cancel()
                if not next_task.done():
                    break

            chunk = await next_task
            if chunk is _END:
                exhausted = True
                break
            if cancellation is not None and cancellation.is_cancelled:
                break
            handler.on_chunk(chunk)  # type: ignore[arg-type]
    finally:
        # A pull still in flight must be cancelled before the generator can be closed.
        await _cancel_pending(next_task, cancel_task)
        if not exhausted:
            await _close(iterator)

    cancelled = not exhausted
    if cancelled:
        logger.info(f"Stream cancelled after {handler.chunk_count} chunk(s)")
    handler.finish()
    return cancelled
