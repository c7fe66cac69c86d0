from __future__ import annotations

import pytest

from leveldb_viewer.batch_parser import (
    ColumnKind,
    TABLE_COLUMNS,
    TABLE_LOG,
    TABLE_MANIFEST,
    TABLE_RECORDS,
    derive_schema,
    integer_sort_key,
    parse_batch,
    parse_integer,
)


def test_records_example_decodes_to_typed_row():
    chunk = 'Seq,K,V,Cr,St,BO,C,F,FP\n1,"k1","v,1",crc1,live,0,true,f1,/p1\n'
    batch = parse_batch(TABLE_RECORDS, chunk)
    assert batch.schema_error is None
    assert batch.malformed == []
    assert len(batch.rows) == 1
    assert dict(batch.rows[0]) == {
        "Seq": "1", "K": "k1", "V": "v,1", "Cr": "crc1", "St": "live",
        "BO": "0", "C": True, "F": "f1", "FP": "/p1",
    }


@pytest.mark.parametrize("table", [TABLE_RECORDS, TABLE_MANIFEST, TABLE_LOG])
def test_schema_follows_header_order(table):
    keys = TABLE_COLUMNS[table]
    batch = parse_batch(table, ",".join(keys) + "\n")
    assert batch.schema.keys == keys
    assert batch.rows == []


def test_column_kinds_derived_from_key_names():
    records = derive_schema(TABLE_COLUMNS[TABLE_RECORDS])
    kinds = {c.key: c.kind for c in records.columns}
    assert kinds["Seq"] is ColumnKind.INTEGER
    assert kinds["BO"] is ColumnKind.INTEGER
    assert kinds["C"] is ColumnKind.BOOLEAN
    assert kinds["V"] is ColumnKind.TEXT
    manifest = derive_schema(TABLE_COLUMNS[TABLE_MANIFEST])
    assert manifest.column("BlockOffset").kind is ColumnKind.INTEGER
    assert manifest.column("Tag").kind is ColumnKind.TEXT
    assert records.column("Seq").display_name == "Seq.#"
    assert records.column("missing") is None


def test_quoted_header_is_decoded():
    chunk = '"Seq","K","V","Cr","St","BO","C","F","FP"\n"7","a","b","valid","live","12","false","x.log","/x.log"\n'
    batch = parse_batch(TABLE_RECORDS, chunk)
    assert batch.schema.keys == TABLE_COLUMNS[TABLE_RECORDS]
    assert batch.rows[0]["Seq"] == "7"
    assert batch.rows[0]["C"] is False


def test_one_bad_line_does_not_discard_batch():
    chunk = "\n".join([
        "Seq,K,V,Cr,St,BO,C,F,FP",
        "1,a,x,valid,live,0,false,f,/f",
        "2,b,x,valid,live,0,false,f",  # one field short
        "3,c,x,valid,live,0,false,f,/f",
        "4,d,x,valid,live,0,false,f,/f",
    ])
    batch = parse_batch(TABLE_RECORDS, chunk)
    assert [r["Seq"] for r in batch.rows] == ["1", "3", "4"]
    assert len(batch.malformed) == 1
    bad = batch.malformed[0]
    assert bad.line_number == 3
    assert bad.expected == 9
    assert bad.actual == 8
    assert "line 3" in bad.message()


def test_extra_fields_are_malformed():
    chunk = "Date,ThreadId,Msg,File,FilePath\na,b,c,d,e,f\n"
    batch = parse_batch(TABLE_LOG, chunk)
    assert batch.rows == []
    assert batch.malformed[0].actual == 6


def test_schema_violation_rejects_batch():
    established = derive_schema(TABLE_COLUMNS[TABLE_LOG])
    batch = parse_batch(TABLE_LOG, "Date,Msg\n2024,hello\n", established)
    assert batch.rows == []
    assert batch.schema is established
    assert batch.schema_error is not None
    assert batch.schema_error.received == ("Date", "Msg")
    assert batch.schema_error.expected == TABLE_COLUMNS[TABLE_LOG]


def test_matching_schema_is_reused():
    established = derive_schema(TABLE_COLUMNS[TABLE_LOG])
    batch = parse_batch(TABLE_LOG, "Date,ThreadId,Msg,File,FilePath\nd,t,m,LOG,/LOG\n", established)
    assert batch.schema is established
    assert batch.rows[0]["Msg"] == "m"


def test_empty_chunk_has_no_schema():
    batch = parse_batch(TABLE_RECORDS, "  \n\n")
    assert batch.schema is None
    assert batch.rows == []


def test_crlf_and_blank_lines_are_tolerated():
    chunk = "\r\nTag,TagValue,CRC,BlockOffset,File,FilePath\r\n\r\nLogNumber,3,valid,0,MANIFEST-000001,/m\r\n"
    batch = parse_batch(TABLE_MANIFEST, chunk)
    assert batch.malformed == []
    assert batch.rows[0]["FilePath"] == "/m"


def test_integer_text_is_preserved_exactly():
    big = "18446744073709551615"
    batch = parse_batch(TABLE_RECORDS, f"Seq,K,V,Cr,St,BO,C,F,FP\n{big},k,v,valid,live,007,false,f,/f\n")
    assert batch.rows[0]["Seq"] == big
    assert batch.rows[0]["BO"] == "007"


def test_rows_are_read_only():
    batch = parse_batch(TABLE_LOG, "Date,ThreadId,Msg,File,FilePath\nd,t,m,LOG,/LOG\n")
    with pytest.raises(TypeError):
        batch.rows[0]["Msg"] = "changed"


def test_integer_sort_key_orders_numerically_then_text():
    values = ["10", "9", "abc", "18446744073709551616", "-1"]
    assert sorted(values, key=integer_sort_key) == ["-1", "9", "10", "18446744073709551616", "abc"]


def test_first_batch_must_carry_the_table_header():
    batch = parse_batch(TABLE_RECORDS, '"seq","state","key","value"\n"1","Live","k","v"\n')
    assert batch.schema is None
    assert batch.rows == []
    assert batch.schema_error.expected == TABLE_COLUMNS[TABLE_RECORDS]
    assert batch.schema_error.received == ("seq", "state", "key", "value")


def test_unknown_table_takes_its_first_header():
    batch = parse_batch("blocks", "Offset,Size\n0,4096\n")
    assert batch.schema.keys == ("Offset", "Size")
    assert batch.rows[0]["Size"] == "4096"


@pytest.mark.parametrize(
    "text, number",
    [("10", 10), ("-7", -7), ("007", 7), ("1_0", None), (" 5", None), ("٣", None), ("-", None), ("", None), ("--1", None)],
)
def test_parse_integer_accepts_plain_decimal_only(text, number):
    assert parse_integer(text) == number


def test_underscored_digits_sort_as_text():
    assert sorted(["1_0", "9", "10"], key=integer_sort_key) == ["9", "10", "1_0"]
