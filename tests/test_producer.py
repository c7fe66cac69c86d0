from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from leveldb_viewer import producer
from leveldb_viewer.batch_parser import TABLE_LOG, TABLE_MANIFEST, TABLE_RECORDS, parse_batch
from leveldb_viewer.errors import ProducerError
from leveldb_viewer.producer import (
    ProducerThread,
    classify_artifact,
    info_log_csv,
    iter_artifact_files,
    parse_info_log,
    produce_chunk,
    records_csv,
    run_parser,
)

RECORDS_OUTPUT = "Seq,K,V,Cr,St,BO,C,F,FP\n1,k,v,valid,live,0,false,000005.ldb,/db/000005.ldb\n"


@pytest.mark.parametrize(
    "name, table",
    [
        ("000005.ldb", TABLE_RECORDS),
        ("000003.log", TABLE_RECORDS),
        ("MANIFEST-000001", TABLE_MANIFEST),
        ("LOG", TABLE_LOG),
        ("LOG.old", TABLE_LOG),
        ("CURRENT", None),
        ("LOCK", None),
        ("notes.txt", None),
    ],
)
def test_classify_artifact(name, table):
    assert classify_artifact(Path("/db") / name) == table


def test_iter_artifact_files_expands_directories(tmp_path):
    db = tmp_path / "db"
    (db / "nested").mkdir(parents=True)
    for name in ("LOG", "000005.ldb", "nested/MANIFEST-000001"):
        (db / name).write_text("x")
    single = tmp_path / "single.ldb"
    single.write_text("x")
    found = list(iter_artifact_files([db, single, tmp_path / "missing"]))
    assert found == [db / "000005.ldb", db / "LOG", db / "nested" / "MANIFEST-000001", single]


def test_parse_info_log_splits_on_first_two_spaces():
    text = (
        "2024/01/01-10:00:00.000001 7f12 Recovering log #3\n"
        "short line\n"
        "\n"
        "2024/01/01-10:00:01.000000 7f12 Delete type=0 #1\n"
    )
    assert parse_info_log(text) == [
        ("2024/01/01-10:00:00.000001", "7f12", "Recovering log #3"),
        ("2024/01/01-10:00:01.000000", "7f12", "Delete type=0 #1"),
    ]


def test_info_log_csv_is_a_valid_log_batch(tmp_path):
    log = tmp_path / "LOG"
    log.write_text('2024/01/01-10:00:00.000001 7f12 Level-0 table #5: "a,b" started\n')
    batch = parse_batch(TABLE_LOG, info_log_csv(log))
    assert batch.malformed == []
    row = batch.rows[0]
    assert row["Msg"] == 'Level-0 table #5: "a,b" started'
    assert row["File"] == "LOG"
    assert row["FilePath"] == str(log)


def test_info_log_csv_unreadable_file(tmp_path):
    with pytest.raises(ProducerError):
        info_log_csv(tmp_path / "LOG")


def test_run_parser_returns_stdout(monkeypatch):
    calls = []

    def fake_run(argv, **kwargs):
        calls.append(argv)
        return subprocess.CompletedProcess(argv, 0, stdout=RECORDS_OUTPUT, stderr="")

    monkeypatch.setattr(producer.subprocess, "run", fake_run)
    assert run_parser("leveldb-parser-cli --csv", Path("/db/000005.ldb")) == RECORDS_OUTPUT
    assert calls == [["leveldb-parser-cli", "--csv", "/db/000005.ldb"]]


@pytest.mark.parametrize(
    "exc, text",
    [
        (FileNotFoundError("nope"), "not found"),
        (subprocess.CalledProcessError(1, "p", stderr="bad magic\n"), "bad magic"),
        (subprocess.CalledProcessError(3, "p", stderr=""), "exit status 3"),
        (subprocess.TimeoutExpired("p", 5), "timed out"),
    ],
)
def test_run_parser_failures_become_producer_errors(monkeypatch, exc, text):
    def fake_run(argv, **kwargs):
        raise exc

    monkeypatch.setattr(producer.subprocess, "run", fake_run)
    with pytest.raises(ProducerError, match=text):
        run_parser("leveldb-parser-cli", Path("/db/000005.ldb"))


def test_producer_thread_emits_batches_and_errors(qapp, tmp_path, monkeypatch):
    (tmp_path / "000005.ldb").write_text("x")
    (tmp_path / "MANIFEST-000001").write_text("x")
    (tmp_path / "LOG").write_text("2024/01/01-10:00:00.000001 7f12 hello world\n")
    (tmp_path / "CURRENT").write_text("MANIFEST-000001\n")

    def fake_run(argv, **kwargs):
        if argv[-1].endswith(".ldb"):
            return subprocess.CompletedProcess(argv, 0, stdout=RECORDS_OUTPUT, stderr="")
        raise subprocess.CalledProcessError(2, argv, stderr="corrupt manifest")

    monkeypatch.setattr(producer.subprocess, "run", fake_run)
    thread = ProducerThread([tmp_path], "leveldb-parser-cli")
    events = []
    thread.processing_started.connect(lambda: events.append("started"))
    thread.batch_ready.connect(lambda table, chunk: events.append(table))
    thread.error.connect(lambda message: events.append("error"))
    thread.processing_finished.connect(lambda: events.append("finished"))
    thread.run()
    assert events == ["started", TABLE_RECORDS, TABLE_LOG, "error", "finished"]


def test_producer_thread_finishes_on_unexpected_error(qapp, monkeypatch):
    def boom(paths):
        raise RuntimeError("walk failed")

    monkeypatch.setattr(producer, "iter_artifact_files", boom)
    thread = ProducerThread(["/nowhere"], "leveldb-parser-cli")
    finished = []
    thread.processing_finished.connect(lambda: finished.append(True))
    with pytest.raises(RuntimeError):
        thread.run()
    assert finished == [True]


CLI_OUTPUT = (
    '"seq","state","key","value"\n'
    '"12","Live","_chrome://settings\\x00\\x01theme","{""mode"":""dark""}"\n'
    '"13","Deleted","_chrome://settings\\x00\\x01old",""\n'
)


def test_cli_listing_is_widened_to_records_header(tmp_path, monkeypatch):
    ldb = tmp_path / "000005.ldb"

    def fake_run(argv, **kwargs):
        return subprocess.CompletedProcess(argv, 0, stdout=CLI_OUTPUT, stderr="")

    monkeypatch.setattr(producer.subprocess, "run", fake_run)
    batch = parse_batch(TABLE_RECORDS, produce_chunk(ldb, TABLE_RECORDS, "leveldb-parser-cli"))
    assert batch.schema_error is None
    assert batch.malformed == []
    live, deleted = batch.rows
    assert live["Seq"] == "12"
    assert live["V"] == '{"mode":"dark"}'
    assert live["St"] == "live"
    assert live["C"] is False
    assert (live["F"], live["FP"]) == ("000005.ldb", str(ldb))
    assert deleted["St"] == "deleted"
    assert deleted["V"] == ""


def test_cli_listing_keeps_bad_lines_for_the_translator():
    chunk = records_csv('"seq","state","key","value"\n"1","Live","k","v"\n"2","Live","k"\n', Path("/db/000003.log"))
    batch = parse_batch(TABLE_RECORDS, chunk)
    assert [r["Seq"] for r in batch.rows] == ["1"]
    assert batch.malformed[0].actual == 3


def test_kind_column_is_dropped():
    output = '"Seq","K","V","Cr","St","BO","C","F","FP","Kind"\n"1","k","v","failed","live","4096","true","a.ldb","/db/a.ldb","string"\n'
    batch = parse_batch(TABLE_RECORDS, records_csv(output, Path("/db/a.ldb")))
    assert batch.schema.keys == ("Seq", "K", "V", "Cr", "St", "BO", "C", "F", "FP")
    assert batch.rows[0]["Cr"] == "failed"
    assert batch.rows[0]["C"] is True


def test_records_header_passes_through_unchanged():
    assert records_csv(RECORDS_OUTPUT, Path("/db/000005.ldb")) == RECORDS_OUTPUT


def test_unknown_parser_output_is_an_error():
    with pytest.raises(ProducerError, match="Unrecognised parser output"):
        records_csv("offset,size\n0,10\n", Path("/db/000005.ldb"))
