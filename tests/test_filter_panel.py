from __future__ import annotations

import pytest

from leveldb_viewer.batch_parser import ColumnKind, TABLE_COLUMNS, TABLE_RECORDS, derive_schema
from leveldb_viewer.gui.filter_panel import CompoundFilterPanel, criteria_by_column
from leveldb_viewer.gui.query import AllOf, ColumnCriterion


@pytest.fixture()
def panel(qapp):
    p = CompoundFilterPanel(TABLE_RECORDS)
    p.set_schema(derive_schema(TABLE_COLUMNS[TABLE_RECORDS]))
    yield p
    p.close()
    p.deleteLater()


def test_criteria_grouped_per_column():
    a = ColumnCriterion("Seq", ColumnKind.INTEGER, ">", "1")
    b = ColumnCriterion("Seq", ColumnKind.INTEGER, "<", "9")
    c = ColumnCriterion("K", ColumnKind.TEXT, "contains", "x")
    blank = ColumnCriterion("V", ColumnKind.TEXT, "contains", "")
    grouped = criteria_by_column([a, b, c, blank])
    assert grouped == {"Seq": AllOf((a, b)), "K": c}


def test_add_filter_and_read_back(panel):
    panel.add_filter("Seq", "20", ">=")
    panel.add_filter("C", "true")
    assert panel.add_filter("NoSuchColumn", "x") is None
    assert panel.get_filters() == [
        ColumnCriterion("Seq", ColumnKind.INTEGER, ">=", "20"),
        ColumnCriterion("C", ColumnKind.BOOLEAN, "is", "true"),
    ]


def test_remove_row_emits_change(panel):
    changes = []
    panel.filters_changed.connect(lambda: changes.append(1))
    row = panel.add_filter("K", "alpha")
    row.remove_clicked.emit()
    assert panel.get_filters() == []
    assert changes == [1]


def test_set_filters_replaces_rows_quietly(panel):
    changes = []
    panel.filters_changed.connect(lambda: changes.append(1))
    panel.add_filter("K", "alpha")
    panel.set_filters([ColumnCriterion("V", ColumnKind.TEXT, "starts with", "ab")])
    assert panel.get_filters() == [ColumnCriterion("V", ColumnKind.TEXT, "starts with", "ab")]
    panel.clear()
    assert panel.get_filters() == []
    assert changes == []


def test_without_schema_nothing_can_be_added(qapp):
    p = CompoundFilterPanel(TABLE_RECORDS)
    assert p.add_filter("Seq", "1") is None
