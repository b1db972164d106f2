# tests/unit/records/test_unit_parser.py - v1
"""Tests for records/parser.py - cleaning, headers, limits, lazy stream."""

from __future__ import annotations

import pytest

from bulkdoc.core.errors import (
    DuplicateColumn,
    InvalidOptions,
    SchemaMismatch,
    SourceTooLarge,
    UnsupportedEncoding,
)
from bulkdoc.records.models import ParseOptions
from bulkdoc.records.parser import RecordStream, clean_value, parse_records


class TestCleanValue:
    def test_trims_and_nulls_blank(self):
        assert clean_value("  hello ") == "hello"
        assert clean_value("   ") is None
        assert clean_value(None) is None

    def test_numbers(self):
        assert clean_value("42") == 42
        assert isinstance(clean_value("42"), int)
        assert clean_value("-3.5") == -3.5
        assert clean_value("1,000") == "1,000"
        assert clean_value("1e5") == "1e5"

    def test_booleans_case_insensitive(self):
        assert clean_value("TRUE") is True
        assert clean_value("false") is False
        assert clean_value("yes") == "yes"


class TestParseRecords:
    def test_basic_csv(self):
        headers, stream, meta = parse_records(b"name,amount\nAlice,10\nBob,2.5\n")
        assert headers == ["name", "amount"]
        assert len(stream) == 2
        records = list(stream)
        assert records[0].row_index == 1
        assert records[0].values == {"name": "Alice", "amount": 10}
        assert records[1].values["amount"] == 2.5
        assert meta.delimiter == ","
        assert meta.encoding == "utf-8"
        assert meta.total_rows == 2

    def test_semicolon_detected(self):
        headers, stream, meta = parse_records(b"a;b;c\n1;2;3\n4;5;6\n")
        assert meta.delimiter == ";"
        assert headers == ["a", "b", "c"]

    def test_tab_detected(self):
        _, _, meta = parse_records(b"a\tb\n1\t2\n")
        assert meta.delimiter == "\t"

    def test_utf8_bom(self):
        headers, stream, meta = parse_records(b"\xef\xbb\xbfname,city\nJos\xc3\xa9,Paris\n")
        assert headers == ["name", "city"]
        assert list(stream)[0].values["name"] == "José"
        assert meta.encoding == "utf-8"

    def test_latin1_fallback(self):
        headers, stream, meta = parse_records(b"name,city\nJos\xe9,Paris\n")
        assert meta.encoding == "latin-1"
        assert list(stream)[0].values["name"] == "José"

    def test_utf16le_bom(self):
        data = "\ufeffname,age\nAda,36\n".encode("utf-16le")
        headers, stream, meta = parse_records(data)
        assert meta.encoding == "utf-16le"
        assert list(stream)[0].values == {"name": "Ada", "age": 36}

    def test_empty_rows_dropped_by_default(self):
        _, stream, meta = parse_records(b"a,b\n1,2\n,\n\n3,4\n")
        assert meta.total_rows == 2
        assert [r.row_index for r in stream] == [1, 2]

    def test_keep_empty_rows(self):
        _, stream, _ = parse_records(
            b"a,b\n1,2\n,\n3,4\n", ParseOptions(keep_empty_rows=True),
        )
        records = list(stream)
        assert len(records) == 3
        assert records[1].values == {"a": None, "b": None}

    def test_duplicate_header(self):
        with pytest.raises(DuplicateColumn):
            parse_records(b"a,b,a\n1,2,3\n")

    def test_blank_header_named_by_position(self):
        headers, _, meta = parse_records(b"a,,c\n1,2,3\n")
        assert headers == ["a", "Column_2", "c"]
        assert any("Column_2" in w for w in meta.warnings)

    def test_no_header_option(self):
        headers, stream, _ = parse_records(b"1,2\n3,4\n", ParseOptions(has_header=False))
        assert headers == ["Column_1", "Column_2"]
        assert len(stream) == 2

    def test_short_rows_fill_null(self):
        _, stream, meta = parse_records(b"a,b,c\n1,2\n4,5,6\n")
        assert list(stream)[0].values["c"] is None
        assert meta.warnings

    def test_headers_only_rejected(self):
        with pytest.raises(SchemaMismatch):
            parse_records(b"a,b\n")

    def test_size_limit(self):
        with pytest.raises(SourceTooLarge):
            parse_records(b"a\n" + b"1\n" * 100, max_bytes=50)

    def test_row_limit(self):
        with pytest.raises(SourceTooLarge):
            parse_records(b"a\n" + b"1\n" * 11, max_rows=10)

    def test_max_rows_truncates_with_warning(self):
        _, stream, meta = parse_records(b"a\n1\n2\n3\n", ParseOptions(max_rows=2))
        assert len(stream) == 2
        assert len(list(stream)) == 2
        assert any("limit" in w.lower() for w in meta.warnings)

    def test_max_rows_above_limit_is_invalid(self):
        with pytest.raises(InvalidOptions):
            parse_records(b"a\n1\n", ParseOptions(max_rows=20), max_rows=10)

    def test_invalid_encoding_option(self):
        with pytest.raises(InvalidOptions):
            parse_records(b"a\n1\n", ParseOptions(encoding="ebcdic"))

    def test_invalid_delimiter_option(self):
        with pytest.raises(InvalidOptions):
            parse_records(b"a\n1\n", ParseOptions(delimiter=":"))

    def test_undecodable_with_explicit_encoding(self):
        with pytest.raises(UnsupportedEncoding):
            parse_records(b"a,b\n\xff\xfe\xfa,1\n", ParseOptions(encoding="utf-8"))

    def test_required_columns(self):
        with pytest.raises(SchemaMismatch) as exc_info:
            parse_records(b"a,b\n1,2\n", ParseOptions(required_columns=["a", "z"]))
        assert exc_info.value.missing == ["z"]

    def test_column_mapping(self):
        headers, stream, _ = parse_records(
            b"First Name,Mail\nAda,ada@x\n",
            ParseOptions(column_mapping={"name": "First Name", "email": "Mail"}),
        )
        assert headers == ["name", "email"]
        assert list(stream)[0].values == {"name": "Ada", "email": "ada@x"}

    def test_column_mapping_unknown_source(self):
        with pytest.raises(SchemaMismatch):
            parse_records(b"a\n1\n", ParseOptions(column_mapping={"x": "nope"}))

    def test_empty_columns_reported(self):
        _, _, meta = parse_records(b"a,b\n1,\n2,\n")
        assert meta.empty_columns == ["b"]

    def test_records_are_immutable(self):
        _, stream, _ = parse_records(b"a\n1\n")
        record = next(iter(stream))
        with pytest.raises(TypeError):
            record.values["a"] = 2  # type: ignore[index]


class TestRecordStream:
    def test_single_pass(self):
        _, stream, _ = parse_records(b"a\n1\n2\n")
        assert len(list(stream)) == 2
        assert stream.consumed
        with pytest.raises(RuntimeError):
            iter(stream)

    def test_from_rows(self):
        stream = RecordStream.from_rows(["x"], [{"x": 1}, {"x": 2}])
        assert len(stream) == 2
        assert not stream.consumed
        assert [(r.row_index, r.values["x"]) for r in stream] == [(1, 1), (2, 2)]
