"""Buffered writer that streams response bytes to a client with back-pressure."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator
from typing import Union

logger = logging.getLogger(__name__)

BytesLike = Union[bytes, bytearray, memoryview, str]


class RowLimitExceeded(BlockingIOError):
    """Too many chunks are waiting to be sent to the client."""


class ClientDisconnected(BrokenPipeError):
    """The client stopped receiving data."""


class ResponseWriter:
    """Append-only buffer whose contents are sent to the client on flush.

    ``write`` only appends to memory. ``flush`` hands the buffer over at
    once and fails when ``max_pending`` chunks are already waiting;
    ``async_flush`` waits until the client has consumed some data.
    Iterating the writer with ``async for`` yields the chunks in order and
    ends once the writer is closed; leaving that iteration early counts as
    the client disconnecting.
    """

    def __init__(self, max_pending: int) -> None:
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self.max_pending = max_pending
        self.disconnected = False
        self._buffer = bytearray()
        self._pending: deque[bytes] = deque()
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._closed = False

    def write(self, data: BytesLike) -> int:
        """Append data to the buffer and return how many bytes were added."""
        chunk = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        self._buffer += chunk
        return len(chunk)

    def _take(self) -> bytes:
        chunk = bytes(self._buffer)
        self._buffer.clear()
        return chunk

    def _push(self, chunk: bytes) -> None:
        self._pending.append(chunk)
        self._readable.set()

    def flush(self) -> None:
        """Hand the buffer to the client without waiting.

        The buffer is emptied even when sending fails.
        """
        if not self._buffer:
            return
        logger.debug("Flushing data to client: %r", bytes(self._buffer))
        chunk = self._take()
        if self.disconnected:
            raise ClientDisconnected("channel closed: the client is no longer receiving data")
        if len(self._pending) >= self.max_pending:
            raise RowLimitExceeded(
                "no available capacity: Row limit exceeded. The server cannot store "
                f"more than {self.max_pending} pending messages in memory. Try again "
                "later or increase max_pending_rows in the configuration."
            )
        self._push(chunk)

    async def _reserve(self) -> None:
        while not self.disconnected and len(self._pending) >= self.max_pending:
            self._writable.clear()
            await self._writable.wait()
        if self.disconnected:
            raise ClientDisconnected("the client is no longer receiving data")

    async def async_flush(self) -> None:
        """Send the buffer, waiting while the client lags behind."""
        if not self._buffer:
            return
        logger.debug("Flushing data to client: %r", bytes(self._buffer))
        await self._reserve()
        self._push(self._take())

    async def close_with_error(self, message: str) -> None:
        """Send what is buffered followed by an error message, then close."""
        if self.disconnected:
            return
        try:
            await self.async_flush()
        except ClientDisconnected as exc:
            message += f"Unable to flush data: {exc}"
        try:
            await self._reserve()
            self._push(message.encode("utf-8"))
        except ClientDisconnected as exc:
            logger.error("Unable to send error back to client: %s", exc)
        self.close()

    def close(self) -> None:
        """Flush what remains without waiting and end the stream."""
        if self._closed:
            return
        try:
            self.flush()
        except OSError as exc:
            logger.debug("Could not flush data to client: %s", exc)
        self._closed = True
        self._readable.set()

    def __enter__(self) -> ResponseWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            while True:
                if self._pending:
                    chunk = self._pending.popleft()
                    self._writable.set()
                    yield chunk
                elif self._closed:
                    return
                else:
                    self._readable.clear()
                    await self._readable.wait()
        finally:
            self.disconnected = True
            self._writable.set()