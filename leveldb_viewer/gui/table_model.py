"""
Append-only table model for one named view (records / manifest / log).
Rows are published a whole batch at a time; the visible subset is derived from
the active filter predicate and never touches stored rows.
"""

import logging
from collections.abc import Sequence
from typing import Callable

from PySide6.QtCore import QAbstractTableModel, QModelIndex, QObject, Qt, Signal
from PySide6.QtGui import QColor, QFont

from ..batch_parser import ColumnKind, ColumnSchema, Row, integer_sort_key
from ..csv_codec import encode_line

logger = logging.getLogger(__name__)

ROW_INDEX_ROLE = Qt.ItemDataRole.UserRole + 1
ROW_STYLE_ROLE = Qt.ItemDataRole.UserRole + 2

STYLE_ERROR = "error"
STYLE_TOMBSTONE = "tombstone"

# Designated status fields per style
ERROR_FIELD = "Cr"
TOMBSTONE_FIELD = "St"

# style -> (background rgb, foreground rgb)
_ROW_STYLE_COLORS = {
    STYLE_ERROR: ((0x63, 0x1F, 0x2E), (0xFF, 0xE1, 0xE7)),
    STYLE_TOMBSTONE: ((0x2A, 0x2A, 0x3A), (0x93, 0x99, 0xB2)),
}

STATE_LOADING = "loading"
STATE_EMPTY = "empty"
STATE_READY = "ready"

_TOOLTIP_MAX = 1000

Predicate = Callable[[Row], bool]


class RowsSnapshot(Sequence):
    """Read-only view of the first `length` rows. The backing list only grows, so a
    snapshot taken before an append keeps seeing the pre-append sequence."""

    __slots__ = ("_rows", "_length")

    def __init__(self, rows: list, length: int):
        self._rows = rows
        self._length = length

    def __len__(self) -> int:
        return self._length

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self._rows[i] for i in range(*index.indices(self._length))]
        if index < 0:
            index += self._length
        if index < 0 or index >= self._length:
            raise IndexError("row index out of range")
        return self._rows[index]


def field_text(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def row_style(row: Row, error_marker: str = "fail", tombstone_marker: str = "deleted") -> str | None:
    """Presentational classifier; the error flag wins over tombstone."""
    if error_marker and error_marker in field_text(row.get(ERROR_FIELD)).lower():
        return STYLE_ERROR
    if tombstone_marker and tombstone_marker in field_text(row.get(TOMBSTONE_FIELD)).lower():
        return STYLE_TOMBSTONE
    return None


def visible_indices(rows: Sequence, predicate: Predicate | None, start: int = 0) -> list[int]:
    """Indices (from start) of rows passing predicate. Pure."""
    if predicate is None:
        return list(range(start, len(rows)))
    return [i for i in range(start, len(rows)) if predicate(rows[i])]


class TableModel(QAbstractTableModel):
    """
    One named table. rowCount() is the number of visible rows; Qt only asks data()
    for rows on screen, so large tables stay cheap to display.
    """
    loading_changed = Signal(bool)
    schema_changed = Signal()

    def __init__(
        self,
        name: str,
        parent: QObject | None = None,
        error_marker: str = "fail",
        tombstone_marker: str = "deleted",
    ):
        super().__init__(parent)
        self.name = name
        self._error_marker = (error_marker or "").lower()
        self._tombstone_marker = (tombstone_marker or "").lower()
        self._schema: ColumnSchema | None = None
        self._rows: list[Row] = []
        self._published = 0
        self._visible: list[int] = []
        self._predicate: Predicate | None = None
        self._sort: tuple[int, Qt.SortOrder] | None = None
        self._loading = False

    # --- schema / rows -------------------------------------------------------

    @property
    def schema(self) -> ColumnSchema | None:
        return self._schema

    def ensure_schema(self, schema: ColumnSchema) -> None:
        """Establish the schema once; later calls are no-ops."""
        if self._schema is not None:
            return
        self.beginResetModel()
        self._schema = schema
        self.endResetModel()
        self.schema_changed.emit()

    def rows(self) -> RowsSnapshot:
        return RowsSnapshot(self._rows, self._published)

    def total_count(self) -> int:
        return self._published

    def append_rows(self, new_rows: list[Row]) -> int:
        """Append a batch in arrival order and publish it in one step. Returns rows added."""
        if not new_rows:
            return 0
        if self._schema is None:
            raise RuntimeError(f"Table {self.name!r} has no schema; call ensure_schema first")
        start = self._published
        self._rows.extend(new_rows)
        self._published = len(self._rows)
        added = visible_indices(self._rows, self._predicate, start)
        if not added:
            return len(new_rows)
        if self._sort is not None:
            def merge():
                self._visible.extend(added)
                self._sort_visible()
            self._relayout(merge)
        else:
            first = len(self._visible)
            self.beginInsertRows(QModelIndex(), first, first + len(added) - 1)
            self._visible.extend(added)
            self.endInsertRows()
        return len(new_rows)

    def reset(self) -> None:
        """Full reload: drop rows, schema, sort and visible set."""
        self.beginResetModel()
        self._rows = []
        self._published = 0
        self._visible = []
        self._schema = None
        self._sort = None
        self.endResetModel()
        self.schema_changed.emit()
        logger.debug("Table %s reset", self.name)

    # --- display state -------------------------------------------------------

    def set_loading(self, loading: bool) -> None:
        loading = bool(loading)
        if loading != self._loading:
            self._loading = loading
            self.loading_changed.emit(loading)

    @property
    def is_loading(self) -> bool:
        return self._loading

    def display_state(self) -> str:
        if self._published:
            return STATE_READY
        return STATE_LOADING if self._loading else STATE_EMPTY

    def row_style(self, row: Row) -> str | None:
        return row_style(row, self._error_marker, self._tombstone_marker)

    # --- filtering -----------------------------------------------------------

    def set_visible_predicate(self, predicate: Predicate | None) -> int:
        """Recompute the visible subset for predicate (None shows every row)."""
        self.beginResetModel()
        self._predicate = predicate
        self._visible = visible_indices(self.rows(), predicate)
        if self._sort is not None:
            self._sort_visible()
        self.endResetModel()
        return len(self._visible)

    def visible_row_count(self) -> int:
        return len(self._visible)

    def visible_rows(self):
        for idx in self._visible:
            yield self._rows[idx]

    def row_at(self, view_row: int) -> Row | None:
        if view_row < 0 or view_row >= len(self._visible):
            return None
        return self._rows[self._visible[view_row]]

    def cell_value(self, view_row: int, column_key: str):
        """Typed value at (visible row, column key), or None when out of range."""
        row = self.row_at(view_row)
        if row is None:
            return None
        return row.get(column_key)

    def export_visible_csv(self) -> str:
        """Header plus visible rows, in current view order."""
        if self._schema is None:
            return ""
        keys = self._schema.keys
        lines = [encode_line(keys)]
        for row in self.visible_rows():
            lines.append(encode_line(row.get(k) for k in keys))
        return "\n".join(lines) + "\n"

    # --- Qt model ------------------------------------------------------------

    def rowCount(self, parent=QModelIndex()):
        if parent.isValid():
            return 0
        return len(self._visible)

    def columnCount(self, parent=QModelIndex()):
        if parent.isValid() or self._schema is None:
            return 0
        return len(self._schema)

    def data(self, index, role=Qt.ItemDataRole.DisplayRole):
        if not index.isValid() or self._schema is None:
            return None
        row = self.row_at(index.row())
        if row is None or index.column() >= len(self._schema):
            return None
        column = self._schema.columns[index.column()]
        value = row.get(column.key)
        if role == Qt.ItemDataRole.DisplayRole:
            return field_text(value)
        if role == Qt.ItemDataRole.ToolTipRole:
            text = field_text(value)
            if len(text) > 60:
                return text[:_TOOLTIP_MAX]
            return None
        if role == Qt.ItemDataRole.TextAlignmentRole:
            if column.kind is ColumnKind.INTEGER:
                return int(Qt.AlignmentFlag.AlignRight | Qt.AlignmentFlag.AlignVCenter)
            if column.kind is ColumnKind.BOOLEAN:
                return int(Qt.AlignmentFlag.AlignCenter)
            return None
        if role == ROW_INDEX_ROLE:
            return self._visible[index.row()]
        if role == ROW_STYLE_ROLE:
            return self.row_style(row)
        if role in (Qt.ItemDataRole.BackgroundRole, Qt.ItemDataRole.ForegroundRole):
            style = self.row_style(row)
            if style in _ROW_STYLE_COLORS:
                bg, fg = _ROW_STYLE_COLORS[style]
                rgb = bg if role == Qt.ItemDataRole.BackgroundRole else fg
                return QColor(rgb[0], rgb[1], rgb[2])
            return None
        if role == Qt.ItemDataRole.FontRole and self.row_style(row) == STYLE_TOMBSTONE:
            font = QFont()
            font.setItalic(True)
            return font
        return None

    def headerData(self, section: int, orientation: Qt.Orientation, role=Qt.ItemDataRole.DisplayRole):
        if self._schema is None or orientation != Qt.Orientation.Horizontal:
            return None
        if not 0 <= section < len(self._schema):
            return None
        column = self._schema.columns[section]
        if role == Qt.ItemDataRole.DisplayRole:
            return column.display_name
        if role == Qt.ItemDataRole.ToolTipRole:
            return f"{column.key} ({column.kind.value})"
        return None

    def _sort_key(self, column: int):
        col = self._schema.columns[column]
        rows = self._rows
        if col.kind is ColumnKind.INTEGER:
            return lambda idx: integer_sort_key(rows[idx].get(col.key))
        # Ties keep arrival order: sort() is stable and indices start in ascending order.
        return lambda idx: field_text(rows[idx].get(col.key)).lower()

    def _relayout(self, reorder: Callable[[], None]) -> None:
        """Run reorder() inside a layout change, moving persistent indexes (current cell,
        selection) along with the stored rows they point at."""
        self.layoutAboutToBeChanged.emit()
        old = self.persistentIndexList()
        stored = [self._visible[i.row()] if 0 <= i.row() < len(self._visible) else None for i in old]
        reorder()
        if old:
            position = {idx: row for row, idx in enumerate(self._visible)}
            new = []
            for index, stored_idx in zip(old, stored):
                row = position.get(stored_idx)
                new.append(self.index(row, index.column()) if row is not None else QModelIndex())
            self.changePersistentIndexList(old, new)
        self.layoutChanged.emit()

    def _sort_visible(self) -> None:
        column, order = self._sort
        self._visible.sort()
        self._visible.sort(key=self._sort_key(column), reverse=order == Qt.SortOrder.DescendingOrder)

    def sort(self, column: int, order=Qt.SortOrder.AscendingOrder):
        if self._schema is None or column < 0 or column >= len(self._schema):
            return
        def apply():
            self._sort = (column, order)
            self._sort_visible()
        self._relayout(apply)

    def clear_sort(self) -> None:
        """Back to arrival order."""
        if self._sort is None:
            return
        def restore():
            self._sort = None
            self._visible.sort()
        self._relayout(restore)


class TableRegistry(QObject):
    """Creates table models lazily by name and hands out the same model afterwards."""
    table_created = Signal(str)

    def __init__(self, parent: QObject | None = None, error_marker: str = "fail", tombstone_marker: str = "deleted"):
        super().__init__(parent)
        self._tables: dict[str, TableModel] = {}
        self._error_marker = error_marker
        self._tombstone_marker = tombstone_marker

    def create_or_get(self, name: str) -> TableModel:
        model = self._tables.get(name)
        if model is None:
            model = TableModel(name, self, self._error_marker, self._tombstone_marker)
            self._tables[name] = model
            self.table_created.emit(name)
        return model

    def get(self, name: str) -> TableModel | None:
        return self._tables.get(name)

    def names(self) -> list[str]:
        return list(self._tables)

    def models(self) -> list[TableModel]:
        return list(self._tables.values())

    def reset_all(self) -> None:
        for model in self._tables.values():
            model.reset()
