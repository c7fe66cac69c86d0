"""Main window: three table tabs (records, manifest, log), search, column filters, export and clipboard."""

from pathlib import Path

from PySide6.QtWidgets import (
    QMainWindow,
    QWidget,
    QVBoxLayout,
    QHBoxLayout,
    QTableView,
    QHeaderView,
    QLineEdit,
    QLabel,
    QPushButton,
    QTabWidget,
    QStatusBar,
    QFileDialog,
    QMessageBox,
    QAbstractItemView,
    QApplication,
    QMenu,
    QDialog,
    QTextEdit,
    QStyle,
)
from PySide6.QtCore import Qt
from PySide6.QtGui import QAction, QKeySequence

from ..batch_parser import TABLE_LOG, TABLE_MANIFEST, TABLE_NAMES, TABLE_RECORDS
from ..config import ViewerConfig
from ..csv_codec import encode_line
from ..producer import ProducerThread
from .filter_panel import CompoundFilterPanel, criteria_by_column
from .query import QueryEngine
from .session import IngestionSession, ProducerBridge
from .table_model import STATE_LOADING, STATE_EMPTY, TableModel, TableRegistry, field_text
from .view_state import ViewController

APP_TITLE = "LevelDB Viewer"

TAB_TITLES = {
    TABLE_RECORDS: "Records",
    TABLE_MANIFEST: "Manifest",
    TABLE_LOG: "Log",
}

# Column keys hidden until the user turns them on from the header menu
DEFAULT_HIDDEN_KEYS = {"FP", "FilePath"}

_COL_WIDTHS = {
    "Seq": 80,
    "Cr": 80,
    "St": 80,
    "BO": 110,
    "C": 100,
    "F": 120,
    "Tag": 140,
    "CRC": 80,
    "BlockOffset": 110,
    "File": 120,
    "Date": 190,
    "ThreadId": 90,
}


class ValueInspectorDialog(QDialog):
    """Read-only view of one full field value (long values are elided in the grid)."""

    def __init__(self, title: str, value: str, parent: QWidget | None = None):
        super().__init__(parent)
        self.setWindowTitle(title)
        self.setMinimumSize(480, 320)
        self.resize(720, 480)
        layout = QVBoxLayout(self)
        self._text = QTextEdit(self)
        self._text.setReadOnly(True)
        self._text.setPlainText(value)
        layout.addWidget(self._text, 1)
        row = QHBoxLayout()
        row.addStretch()
        copy_btn = QPushButton("Copy")
        copy_btn.clicked.connect(lambda: QApplication.clipboard().setText(value))
        row.addWidget(copy_btn)
        close_btn = QPushButton("Close")
        close_btn.clicked.connect(self.accept)
        row.addWidget(close_btn)
        layout.addLayout(row)


class TablePane(QWidget):
    """Search box, filter panel, state label and grid for one table."""

    def __init__(self, model: TableModel, parent: QWidget | None = None):
        super().__init__(parent)
        self.model = model
        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 6, 0, 0)
        layout.setSpacing(6)

        self.search_edit = QLineEdit()
        self.search_edit.setPlaceholderText("Search all columns…")
        self.search_edit.setClearButtonEnabled(True)
        layout.addWidget(self.search_edit)

        self.filter_panel = CompoundFilterPanel(model.name)
        layout.addWidget(self.filter_panel)

        self.state_label = QLabel()
        self.state_label.setObjectName("tableStateLabel")
        self.state_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        layout.addWidget(self.state_label)

        self.table = QTableView()
        self.table.setModel(model)
        self.table.setSelectionBehavior(QAbstractItemView.SelectionBehavior.SelectRows)
        self.table.setSelectionMode(QAbstractItemView.SelectionMode.ExtendedSelection)
        self.table.setTextElideMode(Qt.TextElideMode.ElideRight)
        self.table.setWordWrap(False)
        self.table.verticalHeader().setDefaultSectionSize(24)
        self.table.verticalHeader().setVisible(False)
        self.table.setContextMenuPolicy(Qt.ContextMenuPolicy.CustomContextMenu)
        hdr = self.table.horizontalHeader()
        hdr.setSortIndicatorShown(True)
        hdr.setSectionsClickable(True)
        # No indicator until the user clicks a header: rows start in arrival order.
        hdr.setSortIndicator(-1, Qt.SortOrder.AscendingOrder)
        self.table.setSortingEnabled(True)
        hdr.setContextMenuPolicy(Qt.ContextMenuPolicy.CustomContextMenu)
        layout.addWidget(self.table, 1)

        model.schema_changed.connect(self._on_schema_changed)
        model.loading_changed.connect(lambda _loading: self.refresh_state())
        model.modelReset.connect(self.refresh_state)
        model.rowsInserted.connect(lambda *_args: self.refresh_state())
        self.refresh_state()

    def _on_schema_changed(self):
        schema = self.model.schema
        self.filter_panel.set_schema(schema)
        if schema is None:
            return
        hdr = self.table.horizontalHeader()
        for col, column in enumerate(schema.columns):
            if column.key in _COL_WIDTHS:
                self.table.setColumnWidth(col, _COL_WIDTHS[column.key])
            self.table.setColumnHidden(col, column.key in DEFAULT_HIDDEN_KEYS)
        if "V" in schema.keys:
            hdr.setSectionResizeMode(schema.index_of("V"), QHeaderView.ResizeMode.Stretch)
        elif "Msg" in schema.keys:
            hdr.setSectionResizeMode(schema.index_of("Msg"), QHeaderView.ResizeMode.Stretch)

    def refresh_state(self):
        state = self.model.display_state()
        if state == STATE_LOADING:
            self.state_label.setText("Loading…")
        elif state == STATE_EMPTY:
            self.state_label.setText("No rows. Drop LevelDB files or a folder here.")
        elif self.model.visible_row_count() == 0:
            self.state_label.setText("No rows match the current filters.")
        else:
            self.state_label.setText("")
        self.state_label.setVisible(bool(self.state_label.text()))

    def current_key(self) -> str | None:
        schema = self.model.schema
        index = self.table.currentIndex()
        if schema is None or not index.isValid() or index.column() >= len(schema):
            return None
        return schema.columns[index.column()].key

    def selected_rows(self) -> list[int]:
        return sorted(set(idx.row() for idx in self.table.selectionModel().selectedRows()))


class LevelDBViewerMainWindow(QMainWindow):
    def __init__(self, config: ViewerConfig | None = None):
        super().__init__()
        self._config = config or ViewerConfig()
        self.setWindowTitle(f"{APP_TITLE} | records, manifest & log")
        self.setMinimumSize(1000, 640)
        self.resize(1280, 800)
        self.setAcceptDrops(True)

        self._registry = TableRegistry(
            self,
            error_marker=self._config.error_marker,
            tombstone_marker=self._config.tombstone_marker,
        )
        self._query = QueryEngine(self._registry, self._config.debounce_ms, self)
        self._controller = ViewController(self._registry, self._query, self)
        self._session = IngestionSession(self._registry, self._controller, self._query, self)
        self._bridge = ProducerBridge(self)
        self._session.attach(self._bridge)
        self._producer: ProducerThread | None = None
        self._panes: dict[str, TablePane] = {}
        self._syncing_tab = False

        self._setup_ui()
        self._apply_style()

        self._controller.active_changed.connect(self._on_active_changed)
        self._controller.row_count_changed.connect(self._on_row_count_changed)
        self._controller.reset_enabled_changed.connect(self._on_reset_enabled_changed)
        self._session.busy_changed.connect(self._on_busy_changed)
        self._session.finished.connect(self._on_session_finished)
        self._session.schema_rejected.connect(self._on_schema_rejected)

    @property
    def bridge(self) -> ProducerBridge:
        return self._bridge

    def _setup_ui(self):
        menubar = self.menuBar()
        file_menu = menubar.addMenu("&File")
        open_files_act = QAction("Open files...", self)
        open_files_act.setShortcut("Ctrl+O")
        open_files_act.triggered.connect(self._on_open_files)
        file_menu.addAction(open_files_act)
        open_dir_act = QAction("Open folder...", self)
        open_dir_act.setShortcut("Ctrl+Shift+O")
        open_dir_act.triggered.connect(self._on_open_folder)
        file_menu.addAction(open_dir_act)
        file_menu.addSeparator()
        reload_act = QAction("Clear all tables", self)
        reload_act.setShortcut("Ctrl+R")
        reload_act.triggered.connect(self._on_reload)
        file_menu.addAction(reload_act)
        self._menu_reload_act = reload_act
        export_csv_act = QAction("Export CSV...", self)
        export_csv_act.setShortcut("Ctrl+E")
        export_csv_act.triggered.connect(self._on_export_csv)
        file_menu.addAction(export_csv_act)
        file_menu.addSeparator()
        exit_act = QAction("E&xit", self)
        exit_act.setShortcut("Ctrl+Q")
        exit_act.triggered.connect(self.close)
        file_menu.addAction(exit_act)

        edit_menu = menubar.addMenu("&Edit")
        copy_cell_act = QAction("Copy cell value", self)
        copy_cell_act.setShortcut(QKeySequence.StandardKey.Copy)
        copy_cell_act.triggered.connect(self._copy_cell)
        edit_menu.addAction(copy_cell_act)
        copy_rows_act = QAction("Copy selected row(s) as CSV", self)
        copy_rows_act.setShortcut("Ctrl+Shift+C")
        copy_rows_act.triggered.connect(self._copy_selection_csv)
        edit_menu.addAction(copy_rows_act)
        inspect_act = QAction("Inspect value...", self)
        inspect_act.setShortcut("Ctrl+I")
        inspect_act.triggered.connect(self._inspect_value)
        edit_menu.addAction(inspect_act)
        edit_menu.addSeparator()
        reset_act = QAction("Reset filters", self)
        reset_act.setEnabled(False)
        reset_act.triggered.connect(self._on_reset_filters)
        edit_menu.addAction(reset_act)
        self._menu_reset_act = reset_act

        help_menu = menubar.addMenu("&Help")
        about_act = QAction("&About", self)
        about_act.triggered.connect(self._on_about)
        help_menu.addAction(about_act)

        central = QWidget()
        self.setCentralWidget(central)
        layout = QVBoxLayout(central)
        layout.setContentsMargins(10, 10, 10, 10)
        layout.setSpacing(8)

        toolbar = QWidget()
        tlayout = QHBoxLayout(toolbar)
        tlayout.setContentsMargins(0, 0, 0, 0)
        self._btn_reset_filters = QPushButton("Reset filters")
        self._btn_reset_filters.setIcon(self.style().standardIcon(QStyle.StandardPixmap.SP_DialogResetButton))
        self._btn_reset_filters.setEnabled(False)
        self._btn_reset_filters.setToolTip("Clear the search text and all column filters of the current tab")
        self._btn_reset_filters.clicked.connect(self._on_reset_filters)
        tlayout.addWidget(self._btn_reset_filters)
        tlayout.addStretch()
        self._row_count_label = QLabel("")
        self._row_count_label.setObjectName("rowCountLabel")
        tlayout.addWidget(self._row_count_label)
        layout.addWidget(toolbar)

        self._main_tabs = QTabWidget()
        self._main_tabs.setDocumentMode(True)
        for name in TABLE_NAMES:
            pane = TablePane(self._registry.create_or_get(name))
            pane.search_edit.textChanged.connect(lambda text, n=name: self._query.set_quick_filter(n, text))
            pane.filter_panel.filters_changed.connect(lambda n=name: self._on_column_filters_changed(n))
            pane.table.customContextMenuRequested.connect(lambda pos, n=name: self._on_table_context_menu(n, pos))
            pane.table.horizontalHeader().customContextMenuRequested.connect(
                lambda pos, n=name: self._on_header_context_menu(n, pos)
            )
            pane.table.doubleClicked.connect(lambda _idx: self._inspect_value())
            self._panes[name] = pane
            self._main_tabs.addTab(pane, TAB_TITLES[name])
        self._main_tabs.currentChanged.connect(self._on_main_tab_changed)
        layout.addWidget(self._main_tabs, 1)

        self._status = QStatusBar()
        self.setStatusBar(self._status)
        self._status.showMessage("Ready. Drop .ldb, .log, MANIFEST or LOG files (or a folder) to begin.")

    # --- producer / session -------------------------------------------------

    def dragEnterEvent(self, event):
        if event.mimeData().hasUrls():
            event.acceptProposedAction()
        else:
            event.ignore()

    def dropEvent(self, event):
        paths = [Path(u.toLocalFile()) for u in event.mimeData().urls() if u.isLocalFile()]
        if paths:
            event.acceptProposedAction()
            self.process_paths(paths)

    def _on_open_files(self):
        paths, _ = QFileDialog.getOpenFileNames(self, "Select LevelDB files", str(Path.home()), "All files (*)")
        if paths:
            self.process_paths([Path(p) for p in paths])

    def _on_open_folder(self):
        path = QFileDialog.getExistingDirectory(self, "Select LevelDB folder", str(Path.home()))
        if path:
            self.process_paths([Path(path)])

    def process_paths(self, paths: list[Path]):
        if self._producer is not None and self._producer.isRunning():
            self._status.showMessage("Still processing the previous drop; please wait.")
            return
        self._producer = ProducerThread(paths, self._config.parser_command)
        self._producer.processing_started.connect(self._bridge.processing_started)
        self._producer.batch_ready.connect(self._bridge.emit_batch)
        self._producer.processing_finished.connect(self._bridge.processing_finished)
        self._producer.error.connect(self._on_producer_error)
        self._producer.start()

    def _on_producer_error(self, msg: str):
        self._status.showMessage(msg)

    def _on_busy_changed(self, busy: bool):
        self._menu_reload_act.setEnabled(not busy)
        if busy:
            QApplication.setOverrideCursor(Qt.CursorShape.BusyCursor)
            self._status.showMessage("Processing…")
        else:
            QApplication.restoreOverrideCursor()

    def _on_session_finished(self, elapsed: float):
        totals = ", ".join(
            f"{TAB_TITLES[n]}: {self._registry.create_or_get(n).total_count():,}" for n in TABLE_NAMES
        )
        self._status.showMessage(f"Finished in {elapsed:.2f} s  |  {totals}")

    def _on_schema_rejected(self, table: str, message: str):
        self._status.showMessage(f"Rejected a {TAB_TITLES.get(table, table)} batch: {message}")

    def _on_reload(self):
        if self._session.is_active:
            self._status.showMessage("Cannot clear tables while processing.")
            return
        for pane in self._panes.values():
            pane.search_edit.blockSignals(True)
            pane.search_edit.clear()
            pane.search_edit.blockSignals(False)
            pane.filter_panel.clear()
            pane.table.horizontalHeader().setSortIndicator(-1, Qt.SortOrder.AscendingOrder)
        self._session.reload()
        self._status.showMessage("All tables cleared.")

    # --- tabs ---------------------------------------------------------------

    def _on_active_changed(self, table: str):
        self._syncing_tab = True
        try:
            self._main_tabs.setCurrentIndex(TABLE_NAMES.index(table))
        finally:
            self._syncing_tab = False

    def _on_main_tab_changed(self, index: int):
        if self._syncing_tab or not 0 <= index < len(TABLE_NAMES):
            return
        self._controller.select(TABLE_NAMES[index])

    def _on_row_count_changed(self, visible: int, total: int):
        self._row_count_label.setText(f"Showing {visible:,} of {total:,} rows")

    def _on_reset_enabled_changed(self, enabled: bool):
        self._btn_reset_filters.setEnabled(enabled)
        self._menu_reset_act.setEnabled(enabled)

    def _active_pane(self) -> TablePane | None:
        table = self._controller.active_table
        return self._panes.get(table) if table else None

    # --- filters ------------------------------------------------------------

    def _on_column_filters_changed(self, table: str):
        pane = self._panes[table]
        self._query.replace_column_filters(table, criteria_by_column(pane.filter_panel.get_filters()))

    def _on_reset_filters(self):
        pane = self._active_pane()
        if pane is None:
            return
        pane.search_edit.blockSignals(True)
        pane.search_edit.clear()
        pane.search_edit.blockSignals(False)
        pane.filter_panel.clear()
        self._controller.clear_filters()

    def _on_header_context_menu(self, table: str, pos):
        pane = self._panes[table]
        schema = pane.model.schema
        if schema is None:
            return
        hdr = pane.table.horizontalHeader()
        menu = QMenu(self)
        section = hdr.logicalIndexAt(pos)
        if 0 <= section < len(schema):
            column = schema.columns[section]
            add_act = QAction(f"Filter on {column.display_name}", self)
            add_act.triggered.connect(lambda: pane.filter_panel.add_filter(column.key))
            menu.addAction(add_act)
            menu.addSeparator()
        for col, column in enumerate(schema.columns):
            action = QAction(column.display_name, self)
            action.setCheckable(True)
            action.setChecked(not pane.table.isColumnHidden(col))
            action.toggled.connect(lambda checked, c=col: pane.table.setColumnHidden(c, not checked))
            menu.addAction(action)
        menu.addSeparator()
        arrival_act = QAction("Arrival order", self)
        arrival_act.triggered.connect(lambda: (hdr.setSortIndicator(-1, Qt.SortOrder.AscendingOrder), pane.model.clear_sort()))
        menu.addAction(arrival_act)
        menu.exec(hdr.mapToGlobal(pos))

    def _on_table_context_menu(self, table: str, pos):
        pane = self._panes[table]
        menu = QMenu(self)
        copy_cell_act = QAction("Copy cell value", self)
        copy_cell_act.triggered.connect(self._copy_cell)
        menu.addAction(copy_cell_act)
        copy_act = QAction("Copy selected row(s) as CSV", self)
        copy_act.triggered.connect(self._copy_selection_csv)
        menu.addAction(copy_act)
        inspect_act = QAction("Inspect value...", self)
        inspect_act.triggered.connect(self._inspect_value)
        menu.addAction(inspect_act)
        key = pane.current_key()
        if key is not None:
            value = pane.model.cell_value(pane.table.currentIndex().row(), key)
            filter_act = QAction("Filter by this value", self)
            filter_act.triggered.connect(lambda: self._filter_by_value(table, key, value))
            menu.addAction(filter_act)
        menu.exec(pane.table.viewport().mapToGlobal(pos))

    def _filter_by_value(self, table: str, key: str, value):
        pane = self._panes[table]
        pane.filter_panel.add_filter(key, field_text(value), "equals")
        self._on_column_filters_changed(table)

    # --- clipboard / inspection / export ------------------------------------

    def _copy_cell(self):
        pane = self._active_pane()
        if pane is None:
            return
        key = pane.current_key()
        if key is None:
            return
        value = self._controller.active_cell_value(pane.table.currentIndex().row(), key)
        QApplication.clipboard().setText(field_text(value))
        self._status.showMessage("Copied to clipboard.")

    def _copy_selection_csv(self):
        pane = self._active_pane()
        if pane is None or pane.model.schema is None:
            return
        keys = pane.model.schema.keys
        lines = []
        for row_index in pane.selected_rows():
            row = pane.model.row_at(row_index)
            if row is not None:
                lines.append(encode_line(row.get(k) for k in keys))
        if lines:
            QApplication.clipboard().setText("\n".join(lines))
            self._status.showMessage(f"Copied {len(lines):,} row(s) to clipboard.")

    def _inspect_value(self):
        pane = self._active_pane()
        if pane is None:
            return
        key = pane.current_key()
        if key is None:
            return
        value = self._controller.active_cell_value(pane.table.currentIndex().row(), key)
        column = pane.model.schema.column(key)
        dlg = ValueInspectorDialog(column.display_name if column else key, field_text(value), self)
        dlg.exec()

    def _on_export_csv(self):
        model = self._controller.active_model()
        if model is None or model.schema is None:
            self._status.showMessage("Nothing to export yet.")
            return
        path, _ = QFileDialog.getSaveFileName(
            self, "Export CSV", str(Path.home() / f"{model.name}_export.csv"), "CSV (*.csv);;All (*)"
        )
        if not path:
            return
        try:
            text = self._controller.export_active_csv()
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(text)
            self._status.showMessage(f"Exported to {path}")
            QMessageBox.information(
                self, APP_TITLE, f"Exported {model.visible_row_count():,} rows to:\n{path}"
            )
        except OSError as e:
            QMessageBox.critical(self, APP_TITLE, f"Export failed: {e}")

    def _on_about(self):
        QMessageBox.about(
            self,
            APP_TITLE,
            "Inspect LevelDB .ldb tables, .log write-ahead logs, MANIFEST files and LOG info logs.\n\n"
            "Drop files or folders onto the window. Rows in red failed their CRC check; "
            "grey italic rows are deletion markers.",
        )

    def closeEvent(self, event):
        if self._producer is not None and self._producer.isRunning():
            self._producer.wait(2000)
        super().closeEvent(event)

    def _apply_style(self):
        font_family = "Ubuntu"
        font_size = "10pt"
        self.setStyleSheet(f"""
            QMainWindow {{
                background-color: #1e1e2e;
                font-family: {font_family};
                font-size: {font_size};
            }}
            QWidget {{
                background-color: #1e1e2e;
                color: #cdd6f4;
                font-family: {font_family};
                font-size: {font_size};
            }}
            QTableView {{
                background-color: #313244;
                gridline-color: #45475a;
                color: #cdd6f4;
                border: 1px solid #313244;
                border-radius: 6px;
            }}
            QTableView::item:selected {{
                background-color: #45475a;
                color: #cdd6f4;
            }}
            QHeaderView::section {{
                background-color: #45475a;
                color: #a6adc8;
                padding: 8px;
                border: none;
                font-weight: bold;
            }}
            QPushButton {{
                background-color: #45475a;
                color: #cdd6f4;
                border: none;
                padding: 8px 14px;
                border-radius: 6px;
            }}
            QPushButton:hover {{ background-color: #585b70; }}
            QPushButton:pressed {{ background-color: #89b4fa; color: #1e1e2e; }}
            QPushButton:disabled {{ color: #6c7086; }}
            QLineEdit, QComboBox {{
                background-color: #313244;
                color: #cdd6f4;
                border: 1px solid #45475a;
                border-radius: 4px;
                padding: 6px;
                min-height: 20px;
            }}
            QComboBox::drop-down {{ border: none; }}
            QTextEdit {{
                background-color: #11111b;
                color: #a6adc8;
                border: 1px solid #313244;
                border-radius: 4px;
                padding: 8px;
            }}
            QTabWidget::pane {{
                border: 1px solid #313244;
                border-radius: 6px;
                top: -1px;
                background-color: #1e1e2e;
            }}
            QTabBar::tab {{
                background-color: #313244;
                color: #a6adc8;
                padding: 10px 20px;
                margin-right: 2px;
                border-top-left-radius: 6px;
                border-top-right-radius: 6px;
            }}
            QTabBar::tab:selected {{
                background-color: #45475a;
                color: #89b4fa;
                font-weight: bold;
            }}
            QTabBar::tab:hover:!selected {{ background-color: #3a3a4a; }}
            QLabel {{ color: #a6adc8; }}
            QLabel#tableStateLabel {{
                color: #9399b2;
                padding: 12px;
            }}
            QLabel#rowCountLabel {{ color: #bac2de; }}
            QStatusBar {{
                background-color: #181825;
                color: #6c7086;
                border-top: 1px solid #313244;
            }}
            QListWidget {{
                background-color: #313244;
                color: #cdd6f4;
                border: 1px solid #45475a;
                border-radius: 4px;
            }}
            QFrame#compoundFilterPanel {{
                background-color: #252637;
                border: 1px solid #45475a;
                border-radius: 8px;
            }}
            QPushButton#compoundFilterToggle {{
                color: #89b4fa;
                font-weight: bold;
                text-align: left;
                padding: 2px 6px;
                background: transparent;
            }}
            QPushButton#compoundFilterBtn {{ padding: 2px 10px; }}
            QLabel#filterDropHint {{
                color: #9399b2;
                padding-left: 2px;
            }}
            QListWidget#compoundFilterList {{
                background-color: #2a2b3d;
                border: 1px dashed #585b70;
                border-radius: 6px;
                padding: 2px;
            }}
            QWidget#filterRow {{
                background-color: #313244;
                border: 1px solid #45475a;
                border-radius: 6px;
            }}
            QLabel#filterColumnLabel {{
                color: #bac2de;
                font-weight: 600;
            }}
        """)
