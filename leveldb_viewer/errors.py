"""Error types for the viewer. Batch errors are collected as values, not raised."""

from dataclasses import dataclass


class ViewerError(Exception):
    """Base class for viewer errors."""


class ConfigError(ViewerError):
    pass


class ProducerError(ViewerError):
    """External parser failed for one dropped file."""


@dataclass(frozen=True)
class BatchError:
    table: str


@dataclass(frozen=True)
class MalformedRecord(BatchError):
    """Data line whose field count disagrees with the header."""
    line_number: int
    expected: int
    actual: int
    text: str

    def message(self) -> str:
        return (
            f"{self.table}: line {self.line_number} has {self.actual} fields, "
            f"expected {self.expected}"
        )


@dataclass(frozen=True)
class SchemaViolation(BatchError):
    """Batch header differs from the columns its table requires."""
    expected: tuple[str, ...]
    received: tuple[str, ...]

    def message(self) -> str:
        return (
            f"{self.table}: header {','.join(self.received)} does not match "
            f"expected columns {','.join(self.expected)}"
        )
