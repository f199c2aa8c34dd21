from __future__ import annotations

import io
import logging

import pytest

from bulkload.core.config import ExtractConfig
from bulkload.core.detect import RecordFormat
from bulkload.core.extract import iter_raw_records, make_record_source
from bulkload.sources.csv_source import CSVRecordSource
from bulkload.sources.json_array_source import JSONArrayRecordSource
from bulkload.sources.jsonl_source import JSONLRecordSource


def _csv(text: str, **kwargs) -> list:
    return list(CSVRecordSource(io.StringIO(text, newline=""), **kwargs).iter_records())


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

def test_csv_maps_header_to_cells_and_skips_blank_lines():
    records = _csv("RECORD_ID, DATA_SOURCE ,NAME\n\n1,CRM, Ann \n2,,Bob\n\n")

    assert [r.record_id for r in records] == ["1", "2"]
    assert records[0].fields == {"RECORD_ID": "1", "DATA_SOURCE": "CRM", "NAME": "Ann"}
    assert records[0].original_data_source == "CRM"
    # Empty cells are dropped, so the second row has no data source.
    assert "DATA_SOURCE" not in records[1].fields
    assert records[1].original_data_source is None
    assert records[1].line_number == 4


def test_csv_keeps_empty_values_when_configured():
    cfg = ExtractConfig(drop_empty_csv_values=False, csv_trim=False)
    records = _csv("A,B\n x ,\n", config=cfg)
    assert records[0].fields == {"A": " x ", "B": ""}


def test_csv_ragged_row_is_malformed_and_sequence_continues(caplog):
    text = "RECORD_ID,DATA_SOURCE,NAME\n1,CRM,Ann\n2,CRM\n3,CRM,Cid,extra\n4,CRM,Dee\n"
    with caplog.at_level(logging.INFO, logger="bulkload.sources.csv_source"):
        records = _csv(text, label="people.csv")

    assert [r.is_malformed for r in records] == [False, True, True, False]
    assert records[1].original_data_source == "CRM"
    assert records[1].line_number == 3
    assert "Expected 3 cells but found 2" in records[1].error.reason
    assert any(
        "Finished people.csv" in r.getMessage() and "malformed=2" in r.getMessage()
        for r in caplog.records
    )


def test_csv_quoted_cells_with_delimiters_and_newlines():
    records = _csv('ID;NOTE\n1;"a;b"\n2;"multi\nline"\n', delimiter=";")
    assert records[0].fields["NOTE"] == "a;b"
    assert records[1].fields["NOTE"] == "multi\nline"


def test_csv_malformed_warnings_are_capped(caplog):
    text = "A,B\n" + "1\n" * 10
    with caplog.at_level(logging.WARNING, logger="bulkload.sources.csv_source"):
        records = _csv(text, config=ExtractConfig(max_malformed_warnings=3))

    assert len(records) == 10
    assert all(r.is_malformed for r in records)
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 3


# ---------------------------------------------------------------------------
# JSON lines
# ---------------------------------------------------------------------------

def test_jsonl_skips_blank_and_comment_lines(caplog):
    text = '# header\n{"RECORD_ID": "1", "DATA_SOURCE": "CRM"}\n\n[]\n{bad\n{"RECORD_ID": 2}\n'
    with caplog.at_level(logging.INFO, logger="bulkload.sources.jsonl_source"):
        records = list(JSONLRecordSource(io.StringIO(text), label="mix.jsonl").iter_records())

    assert [r.is_malformed for r in records] == [False, True, True, False]
    assert [r.line_number for r in records] == [2, 4, 5, 6]
    assert records[0].original_data_source == "CRM"
    assert records[3].record_id == "2"
    assert "list" in records[1].error.reason
    summary = [r.getMessage() for r in caplog.records if r.levelno == logging.INFO]
    assert any("malformed=2" in m and "comments=1" in m for m in summary)


def test_jsonl_keeps_nested_values():
    text = '{"RECORD_ID": "1", "ADDRESSES": [{"CITY": "Oslo"}]}\n'
    (record,) = JSONLRecordSource(io.StringIO(text)).iter_records()
    assert record.fields["ADDRESSES"] == [{"CITY": "Oslo"}]


# ---------------------------------------------------------------------------
# JSON array
# ---------------------------------------------------------------------------

def _array(text: str, chunk_chars: int = 64 * 1024) -> list:
    return list(JSONArrayRecordSource(io.StringIO(text), chunk_chars=chunk_chars).iter_records())


@pytest.mark.parametrize("chunk_chars", [1, 3, 7, 64 * 1024])
def test_json_array_streams_elements_across_chunk_boundaries(chunk_chars):
    text = ' [ {"RECORD_ID": "1", "N": 12345}, {"RECORD_ID": "2", "N": true} ,\n{"RECORD_ID": "3"} ] '
    records = _array(text, chunk_chars=chunk_chars)

    assert [r.record_id for r in records] == ["1", "2", "3"]
    assert records[0].fields["N"] == 12345
    assert records[1].fields["N"] is True
    assert [r.line_number for r in records] == [1, 2, 3]


def test_json_array_empty():
    assert _array("[]") == []
    assert _array("  [ \n ]  ") == []


def test_json_array_non_object_element_is_malformed_and_scan_continues():
    records = _array('[{"RECORD_ID": "1"}, 42, "x", {"RECORD_ID": "4"}]')
    assert [r.is_malformed for r in records] == [False, True, True, False]
    assert records[3].line_number == 4


def test_json_array_syntax_error_ends_sequence():
    records = _array('[{"RECORD_ID": "1"}, {"RECORD_ID": }, {"RECORD_ID": "3"}]')
    assert [r.is_malformed for r in records] == [False, True]


def test_json_array_syntax_error_stops_reading_the_stream():
    class CountingReader(io.StringIO):
        consumed = 0

        def read(self, size=-1):
            chunk = super().read(size)
            self.consumed += len(chunk)
            return chunk

    tail = ", ".join('{"RECORD_ID": "%d", "NAME": "padding"}' % i for i in range(20000))
    text = '[{"A": 1}, {"B": tru }, ' + tail + "]"
    fp = CountingReader(text)

    records = list(JSONArrayRecordSource(fp, chunk_chars=4096).iter_records())

    assert [r.is_malformed for r in records] == [False, True]
    assert fp.consumed <= 2 * 4096


@pytest.mark.parametrize("chunk_chars", [1, 5, 64 * 1024])
def test_json_array_long_string_across_chunks(chunk_chars):
    name = "x" * 200 + "\\u00e9"
    records = _array('[{"NAME": "%s", "N": -1.5e+3}]' % name, chunk_chars=chunk_chars)
    assert records[0].fields["NAME"] == "x" * 200 + "é"
    assert records[0].fields["N"] == -1500.0


def test_json_array_missing_comma_ends_sequence():
    records = _array('[{"RECORD_ID": "1"} {"RECORD_ID": "2"}]')
    assert [r.is_malformed for r in records] == [False, True]
    assert "','" in records[1].error.reason


def test_json_array_unterminated():
    records = _array('[{"RECORD_ID": "1"},')
    assert [r.is_malformed for r in records] == [False, True]
    assert "Unterminated" in records[1].error.reason


def test_json_array_requires_array():
    (record,) = _array('{"RECORD_ID": "1"}')
    assert record.is_malformed


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def test_make_record_source_dispatches_by_format():
    fp = io.StringIO("")
    assert isinstance(make_record_source(fp, RecordFormat.CSV), CSVRecordSource)
    assert isinstance(make_record_source(fp, RecordFormat.JSON_ARRAY), JSONArrayRecordSource)
    assert isinstance(make_record_source(fp, RecordFormat.JSON_LINES), JSONLRecordSource)


def test_iter_raw_records_uses_delimiter():
    records = list(iter_raw_records(io.StringIO("A\tB\n1\t2\n"), RecordFormat.CSV, delimiter="\t"))
    assert records[0].fields == {"A": "1", "B": "2"}
