"""
Dropped-path producer: walks files, runs the external LevelDB parser on binary
artifacts and parses plain-text info logs itself, emitting one batch per file.
"""

import csv
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Iterable, Iterator

from PySide6.QtCore import QThread, Signal

from .batch_parser import TABLE_COLUMNS, TABLE_LOG, TABLE_MANIFEST, TABLE_RECORDS
from .csv_codec import decode_line, encode_line
from .errors import ProducerError

logger = logging.getLogger(__name__)

INFO_LOG_NAMES = {"LOG", "LOG.old"}

# Header of the parser CLI's CSV listing for .ldb and .log files
CLI_RECORDS_HEADER = ("seq", "state", "key", "value")


def classify_artifact(path: Path) -> str | None:
    """Table a file feeds, or None when it is not a LevelDB artifact."""
    name = path.name
    if name in INFO_LOG_NAMES:
        return TABLE_LOG
    if name.startswith("MANIFEST-"):
        return TABLE_MANIFEST
    if name.endswith(".ldb") or name.endswith(".log"):
        return TABLE_RECORDS
    return None


def iter_artifact_files(paths: Iterable[Path | str]) -> Iterator[Path]:
    """Dropped paths with directories expanded recursively (sorted); missing paths are skipped."""
    for p in paths:
        path = Path(p)
        if path.is_dir():
            try:
                children = sorted(path.iterdir())
            except OSError as e:
                logger.error("Error reading directory %s: %s", path, e)
                continue
            yield from iter_artifact_files(children)
        elif path.is_file():
            yield path
        else:
            logger.warning("Skipping missing path %s", path)


def parse_info_log(text: str) -> list[tuple[str, str, str]]:
    """Split each info-log line into (date, thread id, message); shorter lines are skipped."""
    entries = []
    for line in text.splitlines():
        parts = line.split(" ", 2)
        if len(parts) >= 3:
            entries.append((parts[0], parts[1], parts[2]))
    return entries


def info_log_csv(path: Path) -> str:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ProducerError(f"Cannot read {path}: {e}") from e
    lines = [encode_line(TABLE_COLUMNS[TABLE_LOG])]
    for date, thread_id, message in parse_info_log(text):
        lines.append(encode_line((date, thread_id, message, path.name, str(path))))
    return "\n".join(lines) + "\n"


def run_parser(command: str, path: Path, timeout: float | None = None) -> str:
    """Run the external parser on one file and return its CSV stdout."""
    argv = shlex.split(command) + [str(path)]
    try:
        result = subprocess.run(argv, capture_output=True, text=True, check=True, timeout=timeout)
    except FileNotFoundError as e:
        raise ProducerError(f"Parser command not found: {argv[0]}") from e
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
        raise ProducerError(f"Error parsing {path}: {detail}") from e
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ProducerError(f"Error parsing {path}: {e}") from e
    return result.stdout


def records_csv(output: str, path: Path) -> str:
    """Bring parser output onto the records header.

    Accepts the records header itself, the same header with a trailing Kind column
    (dropped), or the parser CLI's plain `seq,state,key,value` listing, which is
    widened with the file name and path; CRC, block offset and compression are not
    reported by that listing and stay empty (not compressed). Data lines whose field
    count does not fit are passed through untouched so the batch translator reports
    them as malformed.
    """
    lines = [line.rstrip("\r") for line in output.strip().split("\n") if line.strip()]
    if not lines:
        return ""
    header = tuple(k.strip() for k in decode_line(lines[0]))
    columns = TABLE_COLUMNS[TABLE_RECORDS]
    if header == columns:
        return "\n".join(lines) + "\n"
    out = [encode_line(columns)]
    if header == columns + ("Kind",):
        for line in lines[1:]:
            values = decode_line(line)
            out.append(encode_line(values[:-1]) if len(values) == len(header) else line)
    elif tuple(k.lower() for k in header) == CLI_RECORDS_HEADER:
        # The listing quotes every field, so an empty value arrives as a bare pair of quotes.
        for line, values in zip(lines[1:], csv.reader(lines[1:])):
            if len(values) != len(header):
                out.append(line)
                continue
            seq, state, key, value = values
            out.append(encode_line((seq, key, value, "", state.lower(), "", "false", path.name, str(path))))
    else:
        raise ProducerError(f"Unrecognised parser output for {path}: header {','.join(header)}")
    return "\n".join(out) + "\n"


def produce_chunk(path: Path, table: str, command: str) -> str:
    if table == TABLE_LOG:
        return info_log_csv(path)
    output = run_parser(command, path)
    if table == TABLE_RECORDS:
        return records_csv(output, path)
    return output


class ProducerThread(QThread):
    """Process dropped paths in the background; batches reach the GUI thread through queued signals."""
    processing_started = Signal()
    batch_ready = Signal(str, str)  # table, chunk
    error = Signal(str)
    processing_finished = Signal()

    def __init__(self, paths: list[Path | str], parser_command: str, parent=None):
        super().__init__(parent)
        self.paths = list(paths)
        self.parser_command = parser_command

    def run(self):
        self.processing_started.emit()
        try:
            for path in iter_artifact_files(self.paths):
                table = classify_artifact(path)
                if table is None:
                    logger.debug("Skipping %s: not a LevelDB artifact", path)
                    continue
                try:
                    chunk = produce_chunk(path, table, self.parser_command)
                except ProducerError as e:
                    logger.error("%s", e)
                    self.error.emit(str(e))
                    continue
                if chunk.strip():
                    self.batch_ready.emit(table, chunk)
        finally:
            self.processing_finished.emit()
