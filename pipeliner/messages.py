"""Messages exchanged between the engine and its connectors."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


@dataclass
class SourceConfig:
    """Configuration handed to a source connector, as JSON text."""

    config_json: str = ""


@dataclass
class SinkConfig:
    """Configuration handed to a sink connector, as JSON text."""

    config_json: str = ""


@dataclass
class RuntimeParams:
    """Key/value parameters supplied for a single run."""

    params: dict[str, str] = field(default_factory=dict)


@dataclass
class SourceDescriptor:
    """Metadata describing a source connector."""

    name: str = ""
    version: str = ""
    description: str = ""


@dataclass
class SinkDescriptor:
    """Metadata describing a sink connector."""

    name: str = ""
    version: str = ""
    description: str = ""


@dataclass
class Column:
    """One column of a discovered schema."""

    name: str = ""
    data_type: str = ""


@dataclass
class SchemaResponse:
    """A discovered schema; no columns means a schema-less source."""

    columns: list[Column] = field(default_factory=list)


@dataclass
class Partition:
    """A unit of parallel extraction, described by its parameters."""

    params: dict[str, str] = field(default_factory=dict)


@dataclass
class PartitionsResponse:
    """The partitions a source exposes."""

    partitions: list[Partition] = field(default_factory=list)


@dataclass
class ValidationResult:
    """Outcome of validating a configuration."""

    valid: bool = False
    errors: list[str] = field(default_factory=list)


class SchemaRequirement(IntEnum):
    """How strictly a sink constrains the schema of incoming data."""

    FLEXIBLE = 0
    MATCH_SOURCE = 1
    FIXED = 2


@dataclass
class SchemaRequirementResponse:
    """A sink's schema requirement, with its schema when fixed."""

    requirement: SchemaRequirement = SchemaRequirement.FLEXIBLE
    fixed_schema: list[Column] = field(default_factory=list)


@dataclass
class ExtractResponse:
    """One item of an extraction stream: a batch, or the final watermark."""

    batch: Any = None
    watermark: str = ""


@dataclass
class LoadMetadata:
    """The first message of a load stream: sink config and schema."""

    config: SinkConfig | None = None
    schema: SchemaResponse | None = None