"""
Chunked writer for batch upserts.

Buffers items and hands them to a flush callable in chunks no larger than the
backing store's batch limit. Partial progress after a crash is safe as long as
the flush callable is an idempotent upsert.
"""

from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from wellness_os.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

FlushFn = Callable[[list[T]], Awaitable[int]]


class ChunkedWriter(Generic[T]):
    """
    Accumulate writes and flush them in chunks of at most `batch_size`.

    Usage:
        async with ChunkedWriter(repo.upsert_entries, batch_size=400) as writer:
            for entry in entries:
                await writer.add(entry)
        writer.written  # rows acknowledged by the store
    """

    def __init__(self, flush_fn: FlushFn, batch_size: int, name: str = "batch"):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._flush_fn = flush_fn
        self.batch_size = batch_size
        self.name = name
        self._buffer: list[T] = []
        self.written = 0
        self.flush_count = 0

    @property
    def pending(self) -> int:
        return len(self._buffer)

    async def add(self, item: T) -> None:
        self._buffer.append(item)
        if len(self._buffer) >= self.batch_size:
            await self.flush()

    async def extend(self, items) -> None:
        for item in items:
            await self.add(item)

    async def flush(self) -> int:
        """
        Write the buffered chunk.

        The buffer is only cleared after the store acknowledges the write, so a
        failing flush raises with the chunk intact for the invoker to retry.
        """
        if not self._buffer:
            return 0

        chunk = list(self._buffer)
        written = await self._flush_fn(chunk)
        self._buffer.clear()
        self.written += written
        self.flush_count += 1

        logger.debug(
            "Chunk flushed",
            writer=self.name,
            chunk_size=len(chunk),
            written=written,
            flush_count=self.flush_count,
        )
        return written

    async def __aenter__(self) -> "ChunkedWriter[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        # Only the final flush on a clean exit; an error mid-run leaves the tail unwritten
        if exc_type is None:
            await self.flush()
