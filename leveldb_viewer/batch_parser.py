"""
Batch translator: one producer chunk (header line + data lines) into typed rows.
Known tables must carry their TABLE_COLUMNS header; for other tables the first
header seen fixes the schema. Later batches must match the established schema.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from .csv_codec import decode_line
from .errors import MalformedRecord, SchemaViolation

logger = logging.getLogger(__name__)

TABLE_RECORDS = "records"
TABLE_MANIFEST = "manifest"
TABLE_LOG = "log"
TABLE_NAMES = (TABLE_RECORDS, TABLE_MANIFEST, TABLE_LOG)

# Producer event name -> table
EVENT_TABLES = {
    "records_csv": TABLE_RECORDS,
    "manifest_csv": TABLE_MANIFEST,
    "log_text_csv": TABLE_LOG,
}


class ColumnKind(str, Enum):
    TEXT = "text"
    INTEGER = "integer"
    BOOLEAN = "boolean"


BOOLEAN_KEYS = {"C"}
INTEGER_KEYS = {"Seq", "BO", "BlockOffset"}

# Header key -> column header shown in the grid
DISPLAY_NAMES = {
    "Seq": "Seq.#",
    "K": "Key",
    "V": "Value",
    "Cr": "CRC32",
    "St": "State",
    "BO": "Block Offset",
    "C": "Compressed",
    "F": "File",
    "FP": "File Path",
    "Tag": "Tag",
    "TagValue": "Tag Value",
    "CRC": "CRC32",
    "BlockOffset": "Block Offset",
    "File": "File",
    "FilePath": "File Path",
    "Date": "Date",
    "ThreadId": "Thread",
    "Msg": "Message",
}

# Expected header per table
TABLE_COLUMNS = {
    TABLE_RECORDS: ("Seq", "K", "V", "Cr", "St", "BO", "C", "F", "FP"),
    TABLE_MANIFEST: ("Tag", "TagValue", "CRC", "BlockOffset", "File", "FilePath"),
    TABLE_LOG: ("Date", "ThreadId", "Msg", "File", "FilePath"),
}

Row = Mapping[str, object]


@dataclass(frozen=True)
class Column:
    key: str
    display_name: str
    kind: ColumnKind


@dataclass(frozen=True)
class ColumnSchema:
    columns: tuple[Column, ...]

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(c.key for c in self.columns)

    def __len__(self) -> int:
        return len(self.columns)

    def index_of(self, key: str) -> int:
        return self.keys.index(key)

    def column(self, key: str) -> Column | None:
        for c in self.columns:
            if c.key == key:
                return c
        return None


@dataclass
class Batch:
    """Result of translating one chunk. rows is empty when schema_error is set."""
    table: str
    schema: ColumnSchema | None
    rows: list[Row] = field(default_factory=list)
    malformed: list[MalformedRecord] = field(default_factory=list)
    schema_error: SchemaViolation | None = None


def column_kind(key: str) -> ColumnKind:
    if key in BOOLEAN_KEYS:
        return ColumnKind.BOOLEAN
    if key in INTEGER_KEYS:
        return ColumnKind.INTEGER
    return ColumnKind.TEXT


def derive_schema(keys: list[str] | tuple[str, ...]) -> ColumnSchema:
    return ColumnSchema(tuple(Column(k, DISPLAY_NAMES.get(k, k), column_kind(k)) for k in keys))


def coerce_value(raw: str, kind: ColumnKind):
    """Booleans become bool; integers keep their exact text (compared numerically elsewhere)."""
    if kind is ColumnKind.BOOLEAN:
        return raw == "true"
    return raw


def parse_integer(text) -> int | None:
    """Value of plain decimal text (ASCII digits, optional leading '-'), else None."""
    if not isinstance(text, str):
        return None
    digits = text[1:] if text.startswith("-") else text
    if not (digits.isascii() and digits.isdigit()):
        return None
    return int(text)


def integer_sort_key(value) -> tuple[int, int, str]:
    """Numbers first in numeric order, then non-numeric text."""
    text = "" if value is None else str(value)
    number = parse_integer(text)
    if number is None:
        return (1, 0, text.lower())
    return (0, number, "")


def make_row(schema: ColumnSchema, values: list[str]) -> Row:
    return MappingProxyType({
        col.key: coerce_value(v, col.kind) for col, v in zip(schema.columns, values)
    })


def _split_lines(chunk: str) -> list[tuple[int, str]]:
    out = []
    # Only "\n" ends a line; values may carry other control characters that splitlines() would break on.
    for number, line in enumerate(chunk.strip().split("\n"), start=1):
        line = line.rstrip("\r")
        if line.strip():
            out.append((number, line))
    return out


def parse_batch(table: str, chunk: str, schema: ColumnSchema | None = None) -> Batch:
    """Translate one chunk. Pass the table's established schema, or None for the first batch."""
    lines = _split_lines(chunk or "")
    if not lines:
        return Batch(table, schema)
    _, header_line = lines[0]
    keys = tuple(k.strip() for k in decode_line(header_line))
    expected_keys = schema.keys if schema is not None else TABLE_COLUMNS.get(table)
    if expected_keys is not None and keys != expected_keys:
        violation = SchemaViolation(table, expected_keys, keys)
        logger.warning("Rejected batch: %s", violation.message())
        return Batch(table, schema, schema_error=violation)
    if schema is None:
        schema = derive_schema(keys)

    batch = Batch(table, schema)
    expected = len(schema)
    for number, line in lines[1:]:
        values = decode_line(line)
        if len(values) != expected:
            bad = MalformedRecord(table, number, expected, len(values), line)
            logger.warning("Skipped malformed record: %s", bad.message())
            batch.malformed.append(bad)
            continue
        batch.rows.append(make_row(schema, values))
    return batch
