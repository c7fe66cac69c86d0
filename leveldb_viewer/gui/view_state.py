"""
Tab state machine: which of records / manifest / log is shown.

Auto-activation uses one latch per table so each table can take focus at most once
per session:
  - first records batch            -> records
  - manifest batch, records not active -> manifest
  - log batch, records and manifest not active -> log
A manual selection switches immediately and stops auto-activation until the next
session begins.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from PySide6.QtCore import QObject, Signal

from ..batch_parser import TABLE_LOG, TABLE_MANIFEST, TABLE_NAMES, TABLE_RECORDS
from .query import FilterState, QueryEngine
from .table_model import TableModel, TableRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ViewState:
    active_table: str | None = None
    per_table_filter: Mapping[str, FilterState] = field(default_factory=lambda: MappingProxyType({}))

    def filter_for(self, table: str) -> FilterState:
        return self.per_table_filter.get(table, FilterState())


class ViewController(QObject):
    active_changed = Signal(str)
    row_count_changed = Signal(int, int)  # visible, total of the active table
    reset_enabled_changed = Signal(bool)

    def __init__(self, registry: TableRegistry, query: QueryEngine, parent: QObject | None = None):
        super().__init__(parent)
        self._registry = registry
        self._query = query
        self._active: str | None = None
        self._auto_fired: set[str] = set()
        self._manual = False
        self._reset_enabled = False
        query.filter_applied.connect(self._on_filter_applied)

    # --- state ---------------------------------------------------------------

    @property
    def active_table(self) -> str | None:
        return self._active

    def state(self) -> ViewState:
        return ViewState(self._active, MappingProxyType(self._query.filter_states()))

    def active_model(self) -> TableModel | None:
        if self._active is None:
            return None
        return self._registry.create_or_get(self._active)

    def reset_enabled(self) -> bool:
        return self._active is not None and self._query.is_filtered(self._active)

    # --- transitions ---------------------------------------------------------

    def reset_first_load(self) -> None:
        """New session: every table may auto-activate once again."""
        self._auto_fired.clear()
        self._manual = False

    def on_batch_arrived(self, table: str) -> None:
        if not self._manual and table not in self._auto_fired:
            if table == TABLE_RECORDS:
                self._auto_activate(table)
            elif table == TABLE_MANIFEST and self._active != TABLE_RECORDS:
                self._auto_activate(table)
            elif table == TABLE_LOG and self._active not in (TABLE_RECORDS, TABLE_MANIFEST):
                self._auto_activate(table)
        if table == self._active:
            self.refresh()

    def _auto_activate(self, table: str) -> None:
        self._auto_fired.add(table)
        logger.debug("Auto-activating %s", table)
        self._activate(table)

    def select(self, table: str) -> None:
        """Explicit user tab choice."""
        if table not in TABLE_NAMES:
            raise ValueError(f"Unknown table {table!r}")
        self._manual = True
        self._activate(table)

    def _activate(self, table: str) -> None:
        changed = table != self._active
        self._active = table
        if changed:
            self.active_changed.emit(table)
        self.refresh()

    def refresh(self) -> None:
        """Recompute row count and reset-filters availability for the active table."""
        model = self.active_model()
        if model is None:
            return
        self.row_count_changed.emit(model.visible_row_count(), model.total_count())
        enabled = self.reset_enabled()
        if enabled != self._reset_enabled:
            self._reset_enabled = enabled
            self.reset_enabled_changed.emit(enabled)

    def _on_filter_applied(self, table: str, _visible: int) -> None:
        if table == self._active:
            self.refresh()

    # --- cross-cutting actions on the active table ---------------------------

    def clear_filters(self) -> None:
        if self._active is not None:
            self._query.clear_all(self._active)

    def export_active_csv(self) -> str:
        model = self.active_model()
        if model is None:
            return ""
        self._query.flush(model.name)
        return model.export_visible_csv()

    def active_cell_value(self, row_index: int, column_key: str):
        model = self.active_model()
        if model is None:
            return None
        return model.cell_value(row_index, column_key)
