from __future__ import annotations

import pytest

from leveldb_viewer.batch_parser import TABLE_MANIFEST, TABLE_NAMES, TABLE_RECORDS
from leveldb_viewer.config import ViewerConfig
from leveldb_viewer.gui.main_window import LevelDBViewerMainWindow


@pytest.fixture()
def window(qapp):
    w = LevelDBViewerMainWindow(ViewerConfig(debounce_ms=0))
    yield w
    w.close()
    w.deleteLater()


def test_tab_follows_auto_activation(window, records_chunk, manifest_chunk, make_record):
    window.bridge.emit_event("processing_started")
    window.bridge.emit_event("manifest_csv", manifest_chunk([["LogNumber", "3", "valid", "0", "M", "/M"]]))
    assert window._main_tabs.currentIndex() == TABLE_NAMES.index(TABLE_MANIFEST)
    window.bridge.emit_event("records_csv", records_chunk([make_record(1), make_record(2)]))
    window.bridge.emit_event("processing_finished")
    assert window._main_tabs.currentIndex() == TABLE_NAMES.index(TABLE_RECORDS)
    assert window._row_count_label.text() == "Showing 2 of 2 rows"


def test_clicking_a_tab_is_a_manual_selection(window, records_chunk, make_record):
    window.bridge.emit_event("processing_started")
    window._main_tabs.setCurrentIndex(TABLE_NAMES.index(TABLE_MANIFEST))
    window.bridge.emit_event("records_csv", records_chunk([make_record(1)]))
    assert window._controller.active_table == TABLE_MANIFEST


def test_search_box_drives_quick_filter(window, records_chunk, make_record, wait):
    window.bridge.emit_event("records_csv", records_chunk([make_record(1, key="alpha"), make_record(2, key="beta")]))
    pane = window._panes[TABLE_RECORDS]
    pane.search_edit.setText("beta")
    wait(50)
    assert pane.model.visible_row_count() == 1
    assert window._btn_reset_filters.isEnabled()
    window._on_reset_filters()
    assert pane.search_edit.text() == ""
    assert pane.model.visible_row_count() == 2
    assert not window._btn_reset_filters.isEnabled()


def test_reload_clears_everything(window, records_chunk, make_record):
    window.bridge.emit_event("records_csv", records_chunk([make_record(1)]))
    window.bridge.emit_event("processing_finished")
    window._on_reload()
    assert all(window._registry.create_or_get(n).total_count() == 0 for n in TABLE_NAMES)
