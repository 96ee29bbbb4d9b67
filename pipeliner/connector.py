"""The interfaces that source and sink connectors implement."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pipeliner.messages import (
    Partition,
    RuntimeParams,
    SchemaRequirementResponse,
    SchemaResponse,
    SinkConfig,
    SinkDescriptor,
    SourceConfig,
    SourceDescriptor,
)

BatchSender = Callable[[Any], Awaitable[None]]


@dataclass
class LoadResult:
    """Result of a sink load operation."""

    rows_written: int = 0
    rows_errored: int = 0
    error_message: str = ""


class Source(ABC):
    """A connector that reads record batches from an external system."""

    @abstractmethod
    def describe(self) -> SourceDescriptor:
        """Return metadata about this source."""

    @abstractmethod
    async def validate(self, config: SourceConfig) -> None:
        """Check the configuration; raise ``ValidationError`` if it is invalid."""

    @abstractmethod
    async def discover_schema(
        self, config: SourceConfig, params: RuntimeParams
    ) -> SchemaResponse:
        """Discover the source schema; raise ``DiscoveryError`` on failure."""

    @abstractmethod
    async def discover_partitions(
        self, config: SourceConfig, params: RuntimeParams
    ) -> list[Partition]:
        """Discover partitions for parallel extraction; raise ``DiscoveryError`` on failure."""

    @abstractmethod
    async def extract(
        self, config: SourceConfig, params: RuntimeParams, tx: BatchSender
    ) -> str:
        """Send batches with ``await tx(batch)`` and return a watermark.

        ``tx`` raises ``ChannelClosedError`` once the receiver has gone away;
        failures are raised as ``ExtractionError``.
        """


class Sink(ABC):
    """A connector that writes record batches to an external system."""

    @abstractmethod
    def describe(self) -> SinkDescriptor:
        """Return metadata about this sink."""

    @abstractmethod
    async def validate(self, config: SinkConfig) -> None:
        """Check the configuration; raise ``ValidationError`` if it is invalid."""

    @abstractmethod
    def schema_requirement(self) -> SchemaRequirementResponse:
        """Declare how this sink constrains incoming schemas."""

    @abstractmethod
    async def load(
        self,
        config: SinkConfig,
        schema: SchemaResponse | None,
        rx: AsyncIterator[Any],
    ) -> LoadResult:
        """Consume batches from ``rx``; raise ``LoadError`` on failure."""