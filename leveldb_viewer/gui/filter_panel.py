"""
Column filter panel: one row per criterion (column, operator, value). All criteria
are ANDed; several criteria on the same column are combined with AllOf.
"""

from PySide6.QtWidgets import (
    QWidget,
    QVBoxLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QComboBox,
    QPushButton,
    QListWidget,
    QListWidgetItem,
    QFrame,
    QSizePolicy,
    QMenu,
    QStyle,
)
from PySide6.QtCore import Qt, Signal

from ..batch_parser import Column, ColumnKind, ColumnSchema
from .query import AllOf, ColumnCriterion, operators_for


def criteria_by_column(criteria: list[ColumnCriterion]) -> dict:
    """Group criteria into one predicate per column key."""
    grouped: dict[str, list[ColumnCriterion]] = {}
    for c in criteria:
        if c.value:
            grouped.setdefault(c.key, []).append(c)
    return {key: items[0] if len(items) == 1 else AllOf(tuple(items)) for key, items in grouped.items()}


class FilterRowWidget(QWidget):
    """One row: column name (label), operator combo, value edit, remove button."""
    remove_clicked = Signal()
    value_committed = Signal()

    def __init__(self, column: Column, parent=None):
        super().__init__(parent)
        self.setObjectName("filterRow")
        self.column = column
        layout = QHBoxLayout(self)
        layout.setContentsMargins(6, 4, 6, 4)
        layout.setSpacing(6)
        name_label = QLabel(column.display_name + ":")
        name_label.setObjectName("filterColumnLabel")
        name_label.setFixedWidth(120)
        name_label.setToolTip(column.key)
        layout.addWidget(name_label)
        self._op_combo = QComboBox()
        self._op_combo.addItems(operators_for(column.kind))
        self._op_combo.setFixedWidth(128)
        layout.addWidget(self._op_combo)
        if column.kind is ColumnKind.BOOLEAN:
            self._value_edit = None
            self._bool_combo = QComboBox()
            self._bool_combo.addItems(["true", "false"])
            self._bool_combo.currentIndexChanged.connect(lambda _i: self.value_committed.emit())
            layout.addWidget(self._bool_combo, 1)
        else:
            self._bool_combo = None
            self._value_edit = QLineEdit()
            self._value_edit.setPlaceholderText("Value…")
            self._value_edit.setClearButtonEnabled(True)
            self._value_edit.setMinimumWidth(160)
            self._value_edit.setMaximumWidth(320)
            self._value_edit.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Fixed)
            self._value_edit.returnPressed.connect(self.value_committed.emit)
            layout.addWidget(self._value_edit, 1)
        btn = QPushButton()
        btn.setIcon(self.style().standardIcon(QStyle.StandardPixmap.SP_TabCloseButton))
        btn.setFixedWidth(30)
        btn.setToolTip("Remove this filter")
        btn.clicked.connect(self.remove_clicked.emit)
        layout.addWidget(btn)

    def get_criterion(self) -> ColumnCriterion:
        if self._bool_combo is not None:
            value = self._bool_combo.currentText()
        else:
            value = self._value_edit.text().strip()
        return ColumnCriterion(self.column.key, self.column.kind, self._op_combo.currentText(), value)

    def set_value(self, value: str, operator: str | None = None):
        if self._bool_combo is not None:
            self._bool_combo.setCurrentText("true" if str(value).lower() == "true" else "false")
        else:
            self._value_edit.setText(value or "")
        if operator in operators_for(self.column.kind):
            self._op_combo.setCurrentText(operator)


class CompoundFilterPanel(QFrame):
    """
    Collapsible panel listing column criteria. '+ Add' picks a column; Apply (or Enter
    in a value box) emits filters_changed.
    """
    filters_changed = Signal()

    def __init__(self, table_name: str, parent=None):
        super().__init__(parent)
        self.setObjectName("compoundFilterPanel")
        self._table_name = table_name
        self._schema: ColumnSchema | None = None
        self._expanded = True
        self.setFrameStyle(QFrame.Shape.StyledPanel | QFrame.Shadow.Raised)
        root = QVBoxLayout(self)
        root.setContentsMargins(8, 6, 8, 6)
        root.setSpacing(4)

        hdr = QHBoxLayout()
        hdr.setSpacing(6)
        self._toggle_btn = QPushButton("▼  Filters")
        self._toggle_btn.setObjectName("compoundFilterToggle")
        self._toggle_btn.setFlat(True)
        self._toggle_btn.setFixedHeight(22)
        self._toggle_btn.setCursor(Qt.CursorShape.PointingHandCursor)
        self._toggle_btn.clicked.connect(self._toggle)
        hdr.addWidget(self._toggle_btn)
        hdr.addStretch()

        self._add_btn = QPushButton("+ Add")
        self._add_btn.setObjectName("compoundFilterBtn")
        self._add_btn.setFixedHeight(22)
        self._add_btn.setToolTip("Add a filter for any column")
        self._add_btn.clicked.connect(self._on_add_filter)
        hdr.addWidget(self._add_btn)

        self._apply_btn = QPushButton("Apply")
        self._apply_btn.setObjectName("compoundFilterBtn")
        self._apply_btn.setFixedHeight(22)
        self._apply_btn.setToolTip("Apply the current filter criteria to the table")
        self._apply_btn.clicked.connect(self.filters_changed.emit)
        hdr.addWidget(self._apply_btn)

        self._clear_btn = QPushButton("Clear all")
        self._clear_btn.setObjectName("compoundFilterBtn")
        self._clear_btn.setFixedHeight(22)
        self._clear_btn.setToolTip("Remove all column filters")
        self._clear_btn.clicked.connect(self._clear_all)
        hdr.addWidget(self._clear_btn)
        root.addLayout(hdr)

        self._content_widget = QWidget()
        content_layout = QVBoxLayout(self._content_widget)
        content_layout.setContentsMargins(0, 2, 0, 0)
        content_layout.setSpacing(4)
        self._hint = QLabel("Use + Add or right-click a column header.")
        self._hint.setObjectName("filterDropHint")
        content_layout.addWidget(self._hint)
        self._list = QListWidget(self)
        self._list.setObjectName("compoundFilterList")
        self._list.setMinimumHeight(48)
        self._list.setMaximumHeight(140)
        self._list.setSpacing(2)
        content_layout.addWidget(self._list)
        root.addWidget(self._content_widget)
        self.set_schema(None)

    def set_schema(self, schema: ColumnSchema | None) -> None:
        """Columns available for filtering; None drops every row."""
        self._schema = schema
        self._add_btn.setEnabled(schema is not None)
        if schema is None:
            self._list.clear()
        self._update_empty_state()

    def _toggle(self):
        self._expanded = not self._expanded
        self._content_widget.setVisible(self._expanded)
        self._add_btn.setVisible(self._expanded)
        self._apply_btn.setVisible(self._expanded)
        self._clear_btn.setVisible(self._expanded)
        self._refresh_toggle_text()

    def _refresh_toggle_text(self):
        n = self._list.count()
        arrow = "▼" if self._expanded else "▶"
        suffix = f"  ({n} active)" if n else ""
        self._toggle_btn.setText(f"{arrow}  Filters{suffix}")

    def _clear_all(self):
        self._list.clear()
        self._update_empty_state()
        self.filters_changed.emit()

    def clear(self) -> None:
        """Drop every row without emitting filters_changed."""
        self._list.clear()
        self._update_empty_state()

    def _update_empty_state(self):
        self._hint.setVisible(self._list.count() == 0)
        self._refresh_toggle_text()

    def _on_add_filter(self):
        if self._schema is None:
            return
        menu = QMenu(self)
        for column in self._schema.columns:
            action = menu.addAction(column.display_name)
            action.setData(column.key)
        pos = self._add_btn.mapToGlobal(self._add_btn.rect().bottomLeft())
        action = menu.exec(pos)
        if action and action.data() is not None:
            self.add_filter(action.data())

    def add_filter(self, key: str, value: str | None = None, operator: str | None = None) -> FilterRowWidget | None:
        column = self._schema.column(key) if self._schema is not None else None
        if column is None:
            return None
        row_w = FilterRowWidget(column)
        if value is not None:
            row_w.set_value(value, operator or "equals")
        row_w.remove_clicked.connect(lambda w=row_w: self._remove_row(w))
        row_w.value_committed.connect(self.filters_changed.emit)
        item = QListWidgetItem(self._list)
        item.setSizeHint(row_w.sizeHint())
        self._list.addItem(item)
        self._list.setItemWidget(item, row_w)
        self._update_empty_state()
        return row_w

    def _remove_row(self, row_w: QWidget):
        for i in range(self._list.count()):
            if self._list.itemWidget(self._list.item(i)) == row_w:
                self._list.takeItem(i)
                self._update_empty_state()
                self.filters_changed.emit()
                break

    def get_filters(self) -> list[ColumnCriterion]:
        result = []
        for i in range(self._list.count()):
            w = self._list.itemWidget(self._list.item(i))
            if isinstance(w, FilterRowWidget):
                result.append(w.get_criterion())
        return result

    def set_filters(self, criteria: list[ColumnCriterion]) -> None:
        """Replace all rows with the given criteria (unknown columns are skipped)."""
        self._list.clear()
        for c in criteria or []:
            self.add_filter(c.key, c.value, c.operator)
        self._update_empty_state()
