"""
Query engine: per-table quick filter (debounced) and structured column filters.
Visibility is a pure function of (rows, FilterState); the engine only reads rows.
"""

import fnmatch
import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Callable, Mapping

from PySide6.QtCore import QObject, QTimer, Signal

from ..batch_parser import ColumnKind, Row, parse_integer
from .table_model import TableRegistry, field_text

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 300

OPERATORS_TEXT = ["contains", "equals", "starts with", "ends with", "glob (* ?)"]
OPERATORS_NUMBER = ["equals", "not equals", "<", ">", "<=", ">="]
OPERATORS_BOOLEAN = ["is"]

Predicate = Callable[[Row], bool]


def operators_for(kind: ColumnKind) -> list[str]:
    if kind is ColumnKind.INTEGER:
        return OPERATORS_NUMBER
    if kind is ColumnKind.BOOLEAN:
        return OPERATORS_BOOLEAN
    return OPERATORS_TEXT


def criterion_matches(cell_value, operator: str, value: str, kind: ColumnKind) -> bool:
    """Return True if the cell value satisfies the criterion. Empty value means no filter (match all)."""
    value = (value or "").strip()
    if not value:
        return True
    if kind is ColumnKind.BOOLEAN:
        wanted = value.lower() in ("true", "yes", "1")
        return bool(cell_value) == wanted

    if kind is ColumnKind.INTEGER:
        cell_num = parse_integer(field_text(cell_value))
        val_num = parse_integer(value)
        if cell_num is None or val_num is None:
            return False
        if operator == "equals":
            return cell_num == val_num
        if operator == "not equals":
            return cell_num != val_num
        if operator == "<":
            return cell_num < val_num
        if operator == ">":
            return cell_num > val_num
        if operator == "<=":
            return cell_num <= val_num
        if operator == ">=":
            return cell_num >= val_num
        return False

    cell_lower = field_text(cell_value).strip().lower()
    val_lower = value.lower()
    if operator == "contains":
        return val_lower in cell_lower
    if operator == "equals":
        return cell_lower == val_lower
    if operator == "starts with":
        return cell_lower.startswith(val_lower)
    if operator == "ends with":
        return cell_lower.endswith(val_lower)
    if operator == "glob (* ?)":
        return fnmatch.fnmatch(cell_lower, val_lower)
    return False


@dataclass(frozen=True)
class ColumnCriterion:
    """Single structured filter: column key, operator, value. Callable as a row predicate."""
    key: str
    kind: ColumnKind
    operator: str
    value: str

    def __call__(self, row: Row) -> bool:
        return criterion_matches(row.get(self.key), self.operator, self.value, self.kind)


@dataclass(frozen=True)
class AllOf:
    """Several criteria on one column, ANDed."""
    criteria: tuple

    def __call__(self, row: Row) -> bool:
        return all(c(row) for c in self.criteria)


def criterion_to_dict(criterion: ColumnCriterion) -> dict:
    return {
        "key": criterion.key,
        "kind": criterion.kind.value,
        "operator": criterion.operator,
        "value": criterion.value or "",
    }


def dict_to_criterion(d: dict) -> ColumnCriterion:
    return ColumnCriterion(
        key=str(d["key"]),
        kind=ColumnKind(d.get("kind", ColumnKind.TEXT.value)),
        operator=str(d["operator"]),
        value=str(d.get("value", "")),
    )


@dataclass(frozen=True)
class FilterState:
    quick_filter_text: str = ""
    column_filters: Mapping[str, Predicate] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def is_active(self) -> bool:
        return bool(self.quick_filter_text) or bool(self.column_filters)

    def with_column(self, key: str, predicate: Predicate | None) -> "FilterState":
        filters = dict(self.column_filters)
        if predicate is None:
            filters.pop(key, None)
        else:
            filters[key] = predicate
        return replace(self, column_filters=MappingProxyType(filters))


def row_matches_quick(row: Row, needle_lower: str) -> bool:
    if not needle_lower:
        return True
    return any(needle_lower in field_text(v).lower() for v in row.values())


def row_visible(row: Row, state: FilterState) -> bool:
    """Every column predicate holds AND the quick text (if any) occurs in some field."""
    for predicate in state.column_filters.values():
        if not predicate(row):
            return False
    return row_matches_quick(row, state.quick_filter_text.lower())


def make_predicate(state: FilterState) -> Predicate | None:
    """Predicate for state, or None when nothing filters."""
    if not state.is_active:
        return None
    return lambda row: row_visible(row, state)


class Debouncer(QObject):
    """Single pending-timer slot: every trigger() restarts the wait; only the last one fires."""
    fired = Signal()

    def __init__(self, interval_ms: int, callback: Callable[[], None] | None = None, parent: QObject | None = None):
        super().__init__(parent)
        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setInterval(max(0, int(interval_ms)))
        self._timer.timeout.connect(self._on_timeout)
        if callback is not None:
            self.fired.connect(callback)

    def trigger(self) -> None:
        self._timer.start()

    def cancel(self) -> None:
        self._timer.stop()

    def is_pending(self) -> bool:
        return self._timer.isActive()

    def flush(self) -> bool:
        """Fire now if pending. Returns True if it fired."""
        if not self._timer.isActive():
            return False
        self._timer.stop()
        self.fired.emit()
        return True

    def _on_timeout(self) -> None:
        self.fired.emit()


class QueryEngine(QObject):
    """Owns the FilterState and debounce slot of every table."""
    filter_applied = Signal(str, int)  # table name, visible count

    def __init__(self, registry: TableRegistry, debounce_ms: int = DEFAULT_DEBOUNCE_MS, parent: QObject | None = None):
        super().__init__(parent)
        self._registry = registry
        self._debounce_ms = debounce_ms
        self._states: dict[str, FilterState] = {}
        self._debouncers: dict[str, Debouncer] = {}

    def filter_state(self, table: str) -> FilterState:
        return self._states.get(table, FilterState())

    def filter_states(self) -> dict[str, FilterState]:
        return dict(self._states)

    def _debouncer(self, table: str) -> Debouncer:
        deb = self._debouncers.get(table)
        if deb is None:
            deb = Debouncer(self._debounce_ms, lambda t=table: self.recompute(t), self)
            self._debouncers[table] = deb
        return deb

    def set_quick_filter(self, table: str, text: str) -> None:
        self._states[table] = replace(self.filter_state(table), quick_filter_text=text or "")
        self._debouncer(table).trigger()

    def set_column_filter(self, table: str, column_key: str, predicate: Predicate | None) -> None:
        self._states[table] = self.filter_state(table).with_column(column_key, predicate)
        self.recompute(table)

    def replace_column_filters(self, table: str, filters: Mapping[str, Predicate]) -> None:
        """Swap the whole set of column predicates with one recomputation."""
        self._states[table] = replace(self.filter_state(table), column_filters=MappingProxyType(dict(filters)))
        self.recompute(table)

    def clear_all(self, table: str) -> None:
        self._debouncer(table).cancel()
        self._states[table] = FilterState()
        self.recompute(table)

    def flush(self, table: str) -> None:
        """Run a pending quick-filter recomputation now."""
        deb = self._debouncers.get(table)
        if deb is not None:
            deb.flush()

    def is_pending(self, table: str) -> bool:
        deb = self._debouncers.get(table)
        return deb is not None and deb.is_pending()

    def is_filtered(self, table: str) -> bool:
        return self.filter_state(table).is_active

    def recompute(self, table: str) -> int:
        model = self._registry.create_or_get(table)
        visible = model.set_visible_predicate(make_predicate(self.filter_state(table)))
        logger.debug("Filter on %s: %d of %d rows visible", table, visible, model.total_count())
        self.filter_applied.emit(table, visible)
        return visible

    def visible_count(self, table: str) -> int:
        model = self._registry.get(table)
        return model.visible_row_count() if model is not None else 0

    def filter_model(self, table: str) -> dict | None:
        """Serializable column filters ({key: [criterion dict, ...]}), or None when there are none."""
        out: dict[str, list[dict]] = {}
        for key, predicate in self.filter_state(table).column_filters.items():
            if isinstance(predicate, ColumnCriterion):
                out[key] = [criterion_to_dict(predicate)]
            elif isinstance(predicate, AllOf):
                out[key] = [criterion_to_dict(c) for c in predicate.criteria if isinstance(c, ColumnCriterion)]
        return out or None

    def set_filter_model(self, table: str, model: dict | None) -> None:
        """Replace column filters from a filter model; None clears them. Quick text is kept."""
        filters: dict[str, Predicate] = {}
        for key, items in (model or {}).items():
            criteria = tuple(dict_to_criterion(d) for d in items)
            if len(criteria) == 1:
                filters[key] = criteria[0]
            elif criteria:
                filters[key] = AllOf(criteria)
        self.replace_column_filters(table, filters)
