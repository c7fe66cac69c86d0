"""
Ingestion session and the producer event bridge.

ProducerBridge carries the producer's events (processing_started, records_csv,
manifest_csv, log_text_csv, processing_finished) as Qt signals; IngestionSession
subscribes to it and routes each batch to its table.
"""

import logging
import time
from typing import Callable

from PySide6.QtCore import QObject, Signal, Slot

from ..batch_parser import EVENT_TABLES, TABLE_LOG, TABLE_MANIFEST, TABLE_NAMES, TABLE_RECORDS, parse_batch
from .query import QueryEngine
from .table_model import TableRegistry
from .view_state import ViewController

logger = logging.getLogger(__name__)

EVENT_STARTED = "processing_started"
EVENT_FINISHED = "processing_finished"


class ProducerBridge(QObject):
    """Subscription point for producer events; the transport behind it is not our concern."""
    processing_started = Signal()
    records_csv = Signal(str)
    manifest_csv = Signal(str)
    log_text_csv = Signal(str)
    processing_finished = Signal()

    def _batch_signal(self, table_name: str):
        if table_name == TABLE_RECORDS:
            return self.records_csv
        if table_name == TABLE_MANIFEST:
            return self.manifest_csv
        if table_name == TABLE_LOG:
            return self.log_text_csv
        raise ValueError(f"Unknown table {table_name!r}")

    def on_batch(self, table_name: str, handler: Callable[[str, str], None]) -> None:
        """handler(table_name, chunk) is called for every batch of table_name."""
        self._batch_signal(table_name).connect(lambda chunk: handler(table_name, chunk))

    def on_session_event(self, handler: Callable[[str], None]) -> None:
        """handler(event_name) for processing_started / processing_finished."""
        self.processing_started.connect(lambda: handler(EVENT_STARTED))
        self.processing_finished.connect(lambda: handler(EVENT_FINISHED))

    @Slot(str, str)
    def emit_batch(self, table_name: str, chunk: str) -> None:
        self._batch_signal(table_name).emit(chunk)

    def emit_event(self, event: str, payload: str = "") -> None:
        """Dispatch by producer event name."""
        if event == EVENT_STARTED:
            self.processing_started.emit()
        elif event == EVENT_FINISHED:
            self.processing_finished.emit()
        elif event in EVENT_TABLES:
            self.emit_batch(EVENT_TABLES[event], payload)
        else:
            logger.warning("Ignoring unknown producer event %r", event)


class IngestionSession(QObject):
    """Busy/idle lifecycle of one file drop; routes batches to table models."""
    busy_changed = Signal(bool)
    finished = Signal(float)  # elapsed seconds
    batch_ingested = Signal(str, int, int)  # table, rows appended, malformed lines skipped
    schema_rejected = Signal(str, str)  # table, message

    def __init__(
        self,
        registry: TableRegistry,
        controller: ViewController,
        query: QueryEngine,
        parent: QObject | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(parent)
        self._registry = registry
        self._controller = controller
        self._query = query
        self._clock = clock
        self._active = False
        self._started_at: float | None = None
        self._elapsed: float | None = None
        self.rows_ingested = 0
        self.malformed_count = 0
        self.schema_violations = 0
        for name in TABLE_NAMES:
            registry.create_or_get(name)

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def started_at(self) -> float | None:
        return self._started_at

    @property
    def elapsed(self) -> float | None:
        """Duration of the last completed session in seconds."""
        return self._elapsed

    def attach(self, bridge: ProducerBridge) -> None:
        for name in TABLE_NAMES:
            bridge.on_batch(name, self.on_batch)
        bridge.on_session_event(self._on_session_event)

    def _on_session_event(self, event: str) -> None:
        if event == EVENT_STARTED:
            self.begin()
        elif event == EVENT_FINISHED:
            self.end()

    def begin(self) -> None:
        if self._active:
            logger.warning("processing_started while a session is active; continuing current session")
            return
        self._active = True
        self._started_at = self._clock()
        self._elapsed = None
        self.rows_ingested = 0
        self.malformed_count = 0
        self.schema_violations = 0
        self._controller.reset_first_load()
        for model in self._registry.models():
            model.set_loading(True)
        logger.info("Ingestion session started")
        self.busy_changed.emit(True)

    def on_batch(self, table_name: str, chunk: str) -> None:
        if not self._active:
            logger.info("Batch for %s arrived outside a session; starting one", table_name)
            self.begin()
        model = self._registry.create_or_get(table_name)
        model.set_loading(True)
        batch = parse_batch(table_name, chunk, model.schema)
        self.malformed_count += len(batch.malformed)
        if batch.schema_error is not None:
            self.schema_violations += 1
            self.schema_rejected.emit(table_name, batch.schema_error.message())
            return
        if batch.schema is None:
            return
        model.ensure_schema(batch.schema)
        added = model.append_rows(batch.rows)
        self.rows_ingested += added
        logger.debug("%s: +%d rows (%d skipped)", table_name, added, len(batch.malformed))
        self.batch_ingested.emit(table_name, added, len(batch.malformed))
        self._controller.on_batch_arrived(table_name)

    def end(self) -> float | None:
        if not self._active:
            logger.warning("processing_finished without an active session")
            return self._elapsed
        self._active = False
        self._elapsed = self._clock() - (self._started_at or 0.0)
        for model in self._registry.models():
            model.set_loading(False)
        logger.info(
            "Ingestion finished in %.2fs: %d rows, %d malformed, %d rejected batches",
            self._elapsed, self.rows_ingested, self.malformed_count, self.schema_violations,
        )
        self.busy_changed.emit(False)
        self.finished.emit(self._elapsed)
        self._controller.refresh()
        return self._elapsed

    def reload(self) -> None:
        """Full reload: clear every table and its filters before new data is accepted."""
        for model in self._registry.models():
            model.reset()
            self._query.clear_all(model.name)
        self._controller.reset_first_load()
        self._controller.refresh()
        logger.info("All tables cleared")
