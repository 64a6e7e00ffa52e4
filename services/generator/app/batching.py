"""Fixed-size concurrent batches with cooperative cancellation."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from photobook_observability import observe_chunk

from .settings import SERVICE_NAME

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[T], Awaitable[Any]]
CancelCheck = Callable[[], bool]


@dataclass(slots=True)
class FailedItem(Generic[T]):
    item: T
    error: BaseException


@dataclass(slots=True)
class BatchResult(Generic[T]):
    """Items partitioned by outcome, each list in input order."""

    succeeded: list[T] = field(default_factory=list)
    failed: list[FailedItem[T]] = field(default_factory=list)
    values: list[Any] = field(default_factory=list)
    chunks_run: int = 0
    cancelled: bool = False

    @property
    def failed_items(self) -> list[T]:
        return [entry.item for entry in self.failed]

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)


ChunkCallback = Callable[[int, BatchResult[Any]], Optional[Awaitable[None]]]


class BatchedTaskRunner(Generic[T]):
    """Run ``op`` over items in consecutive chunks of ``concurrency``.

    Every item of a chunk is started together and the chunk settles only when
    all of them have finished, successfully or not. The next chunk starts
    after that (plus ``delay_seconds``). ``is_cancelled`` is consulted before
    each chunk; an in-flight chunk always completes. There is no retry here.
    """

    def __init__(
        self,
        name: str,
        concurrency: int,
        *,
        delay_seconds: float = 0.0,
        on_chunk: ChunkCallback | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.name = name
        self.concurrency = concurrency
        self.delay_seconds = delay_seconds
        self.on_chunk = on_chunk

    def chunks(self, items: Sequence[T]) -> list[list[T]]:
        return [
            list(items[start : start + self.concurrency])
            for start in range(0, len(items), self.concurrency)
        ]

    async def run(
        self,
        items: Sequence[T],
        op: Operation[T],
        is_cancelled: CancelCheck | None = None,
    ) -> BatchResult[T]:
        result: BatchResult[T] = BatchResult()
        chunks = self.chunks(list(items))

        for index, chunk in enumerate(chunks):
            if is_cancelled is not None and is_cancelled():
                result.cancelled = True
                logger.info(
                    "Batch cancelled before chunk",
                    extra={"runner": self.name, "chunk_index": index, "remaining_chunks": len(chunks) - index},
                )
                break

            outcomes = await asyncio.gather(*(op(item) for item in chunk), return_exceptions=True)
            chunk_ok = 0
            for item, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    result.failed.append(FailedItem(item=item, error=outcome))
                else:
                    chunk_ok += 1
                    result.succeeded.append(item)
                    result.values.append(outcome)
            result.chunks_run += 1

            observe_chunk(
                runner=self.name,
                succeeded=chunk_ok,
                failed=len(chunk) - chunk_ok,
                service_name=SERVICE_NAME,
            )
            logger.debug(
                "Chunk settled",
                extra={
                    "runner": self.name,
                    "chunk_index": index,
                    "succeeded": chunk_ok,
                    "failed": len(chunk) - chunk_ok,
                },
            )

            if self.on_chunk is not None:
                maybe_awaitable = self.on_chunk(index, result)
                if inspect.isawaitable(maybe_awaitable):
                    await maybe_awaitable

            if self.delay_seconds and index + 1 < len(chunks):
                await asyncio.sleep(self.delay_seconds)

        return result
