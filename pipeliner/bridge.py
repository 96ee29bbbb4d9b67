"""Services that expose a Source or a Sink through a streaming call interface."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from pipeliner.connector import LoadResult, Sink, Source
from pipeliner.errors import (
    ChannelClosedError,
    DiscoveryError,
    ExtractionError,
    LoadError,
    ServiceError,
    StatusCode,
    ValidationError,
)
from pipeliner.messages import (
    ExtractResponse,
    LoadMetadata,
    PartitionsResponse,
    RuntimeParams,
    SchemaRequirementResponse,
    SchemaResponse,
    SinkConfig,
    SinkDescriptor,
    SourceConfig,
    SourceDescriptor,
    ValidationResult,
)

CHANNEL_CAPACITY = 32

_END = object()


class SourceService:
    """Delegates service calls to a :class:`Source`."""

    def __init__(self, source: Source) -> None:
        self._source = source

    def describe(self) -> SourceDescriptor:
        """Return the source's metadata."""
        return self._source.describe()

    async def validate(self, config: SourceConfig) -> ValidationResult:
        """Validate a configuration, reporting failure in the result."""
        try:
            await self._source.validate(config)
        except ValidationError as exc:
            return ValidationResult(valid=False, errors=[str(exc)])
        return ValidationResult(valid=True, errors=[])

    async def discover_schema(
        self, config: SourceConfig | None = None, params: RuntimeParams | None = None
    ) -> SchemaResponse:
        """Discover the source schema."""
        try:
            return await self._source.discover_schema(
                config if config is not None else SourceConfig(),
                params if params is not None else RuntimeParams(),
            )
        except DiscoveryError as exc:
            raise ServiceError(StatusCode.INTERNAL, str(exc)) from exc

    async def discover_partitions(
        self, config: SourceConfig | None = None, params: RuntimeParams | None = None
    ) -> PartitionsResponse:
        """Discover the source partitions."""
        try:
            partitions = await self._source.discover_partitions(
                config if config is not None else SourceConfig(),
                params if params is not None else RuntimeParams(),
            )
        except DiscoveryError as exc:
            raise ServiceError(StatusCode.INTERNAL, str(exc)) from exc
        return PartitionsResponse(partitions=list(partitions))

    async def extract(
        self, config: SourceConfig | None = None, params: RuntimeParams | None = None
    ) -> AsyncIterator[ExtractResponse]:
        """Stream extracted batches, then one response carrying the watermark.

        Closing the stream early stops the extraction.
        """
        config = config if config is not None else SourceConfig()
        params = params if params is not None else RuntimeParams()
        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=CHANNEL_CAPACITY)
        receiver_closed = asyncio.Event()

        async def send(batch: Any) -> None:
            if receiver_closed.is_set():
                raise ChannelClosedError()
            await queue.put(batch)

        task = asyncio.create_task(self._source.extract(config, params, send))
        getter: asyncio.Future[Any] | None = None
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {getter, task}, return_when=asyncio.FIRST_COMPLETED
                )
                if getter in done:
                    batch = getter.result()
                    getter = None
                    yield ExtractResponse(batch=batch)
                    continue
                getter.cancel()
                getter = None
                break
            while not queue.empty():
                yield ExtractResponse(batch=queue.get_nowait())
            try:
                watermark = task.result()
            except ExtractionError as exc:
                raise ServiceError(StatusCode.INTERNAL, str(exc)) from exc
            except Exception as exc:
                raise ServiceError(
                    StatusCode.INTERNAL, f"extract task panicked: {exc}"
                ) from exc
            yield ExtractResponse(batch=None, watermark=watermark)
        finally:
            receiver_closed.set()
            if getter is not None:
                getter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)


class SinkService:
    """Delegates service calls to a :class:`Sink`."""

    def __init__(self, sink: Sink) -> None:
        self._sink = sink

    def describe(self) -> SinkDescriptor:
        """Return the sink's metadata."""
        return self._sink.describe()

    async def validate(self, config: SinkConfig) -> ValidationResult:
        """Validate a configuration, reporting failure in the result."""
        try:
            await self._sink.validate(config)
        except ValidationError as exc:
            return ValidationResult(valid=False, errors=[str(exc)])
        return ValidationResult(valid=True, errors=[])

    def schema_requirement(self) -> SchemaRequirementResponse:
        """Return the sink's schema requirement."""
        return self._sink.schema_requirement()

    async def load(self, messages: AsyncIterable[Any]) -> LoadResult:
        """Load a stream whose first message is :class:`LoadMetadata` and the rest batches.

        Metadata messages after the first are ignored.
        """
        stream = aiter(messages)
        try:
            first = await anext(stream)
        except StopAsyncIteration:
            raise ServiceError(StatusCode.INVALID_ARGUMENT, "empty load stream") from None
        if not isinstance(first, LoadMetadata):
            raise ServiceError(
                StatusCode.INVALID_ARGUMENT, "first load message must be LoadMetadata"
            )
        config = first.config if first.config is not None else SinkConfig()
        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=CHANNEL_CAPACITY)

        async def receive() -> AsyncIterator[Any]:
            while (batch := await queue.get()) is not _END:
                yield batch

        task = asyncio.create_task(self._sink.load(config, first.schema, receive()))
        try:
            async for message in stream:
                if message is None or isinstance(message, LoadMetadata):
                    continue
                if not await _deliver(queue, message, task):
                    break
            await _deliver(queue, _END, task)
        except BaseException:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise

        try:
            return await task
        except LoadError as exc:
            raise ServiceError(StatusCode.INTERNAL, str(exc)) from exc
        except Exception as exc:
            raise ServiceError(StatusCode.INTERNAL, f"load task panicked: {exc}") from exc


async def _deliver(queue: asyncio.Queue[Any], item: Any, consumer: asyncio.Task[Any]) -> bool:
    """Put ``item`` on ``queue``; return False if the consumer finished first."""
    if consumer.done():
        return False
    putter = asyncio.ensure_future(queue.put(item))
    try:
        done, _ = await asyncio.wait({putter, consumer}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        putter.cancel()
        raise
    if putter in done:
        return True
    putter.cancel()
    return False