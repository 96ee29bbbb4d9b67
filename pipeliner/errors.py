"""Error types raised by connectors and by the services that wrap them."""

from __future__ import annotations

from enum import IntEnum


class ValidationError(Exception):
    """A connector configuration failed validation."""


class InvalidConfigError(ValidationError):
    """The configuration is invalid."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"invalid config: {detail}")


class MissingFieldError(ValidationError):
    """A required field is missing from the configuration."""

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"missing required field: {field_name}")


class DiscoveryError(Exception):
    """Schema or partition discovery failed."""


class DiscoveryFailedError(DiscoveryError):
    """Discovery failed for an unspecified reason."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"discovery failed: {detail}")


class DiscoveryConnectionError(DiscoveryError):
    """A connection error occurred during discovery."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"connection error: {detail}")


class ExtractionError(Exception):
    """Data extraction failed."""


class ExtractionFailedError(ExtractionError):
    """Extraction failed for an unspecified reason."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"extraction failed: {detail}")


class ChannelClosedError(ExtractionError):
    """The output channel was closed before extraction completed."""

    def __init__(self) -> None:
        super().__init__("channel closed")


class ExtractionConnectionError(ExtractionError):
    """A connection error occurred during extraction."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"connection error: {detail}")


class LoadError(Exception):
    """Loading data into a sink failed."""


class LoadFailedError(LoadError):
    """Load failed for an unspecified reason."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"load failed: {detail}")


class LoadConnectionError(LoadError):
    """A connection error occurred during loading."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"connection error: {detail}")


class StatusCode(IntEnum):
    """Status codes reported by services, numbered as in gRPC."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


class ServiceError(Exception):
    """A service call failed with a status code and a message."""

    def __init__(self, code: StatusCode, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"ServiceError({self.code.name}, {self.message!r})"