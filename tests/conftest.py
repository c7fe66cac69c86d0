# Shared pytest fixtures: one offscreen QApplication and a wired-up viewer core.
from __future__ import annotations

import os
from types import SimpleNamespace

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PySide6.QtCore import QEventLoop, QTimer
from PySide6.QtWidgets import QApplication

from leveldb_viewer.csv_codec import encode_line
from leveldb_viewer.gui.query import QueryEngine
from leveldb_viewer.gui.session import IngestionSession, ProducerBridge
from leveldb_viewer.gui.table_model import TableRegistry
from leveldb_viewer.gui.view_state import ViewController

RECORDS_HEADER = "Seq,K,V,Cr,St,BO,C,F,FP"
MANIFEST_HEADER = "Tag,TagValue,CRC,BlockOffset,File,FilePath"
LOG_HEADER = "Date,ThreadId,Msg,File,FilePath"


class FakeClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def qapp():
    app = QApplication.instance() or QApplication([])
    yield app


def _wait_ms(ms: int) -> None:
    loop = QEventLoop()
    QTimer.singleShot(ms, loop.quit)
    loop.exec()


@pytest.fixture()
def wait(qapp):
    """Spin the Qt event loop for the given number of milliseconds."""
    return _wait_ms


@pytest.fixture()
def records_chunk():
    """Build a records batch: records_chunk(rows) with rows as lists of 9 values."""
    def build(rows, header: str = RECORDS_HEADER) -> str:
        return "\n".join([header] + [encode_line(r) for r in rows]) + "\n"
    return build


@pytest.fixture()
def manifest_chunk():
    def build(rows) -> str:
        return "\n".join([MANIFEST_HEADER] + [encode_line(r) for r in rows]) + "\n"
    return build


@pytest.fixture()
def log_chunk():
    def build(rows) -> str:
        return "\n".join([LOG_HEADER] + [encode_line(r) for r in rows]) + "\n"
    return build


def record_row(seq: int, key: str = "k", value: str = "v", crc: str = "valid", state: str = "live", compressed: str = "false"):
    return [str(seq), key, value, crc, state, "0", compressed, "000005.ldb", "/db/000005.ldb"]


@pytest.fixture()
def make_record():
    return record_row


@pytest.fixture()
def core(qapp):
    """Registry, query engine, view controller, session and bridge wired together."""
    clock = FakeClock()
    registry = TableRegistry()
    query = QueryEngine(registry, debounce_ms=300)
    controller = ViewController(registry, query)
    session = IngestionSession(registry, controller, query, clock=clock)
    bridge = ProducerBridge()
    session.attach(bridge)
    return SimpleNamespace(
        clock=clock,
        registry=registry,
        query=query,
        controller=controller,
        session=session,
        bridge=bridge,
    )
