# tests/unit/notify/test_unit_formatting.py - v1

from __future__ import annotations

import pytest

from bulkdoc.notify.formatting import format_duration, format_file_size


class TestFormatFileSize:
    @pytest.mark.parametrize(
        ("size", "expected"),
        [
            (None, "0 Bytes"),
            (0, "0 Bytes"),
            (512, "512 Bytes"),
            (1536, "1.5 KB"),
            (1024 * 1024, "1 MB"),
            (5 * 1024 ** 3 + 1024 ** 3 // 4, "5.25 GB"),
        ],
    )
    def test_units(self, size, expected):
        assert format_file_size(size) == expected


class TestFormatDuration:
    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(None, "Calculating..."), (9, "9s"), (75, "1m 15s"), (3725, "1h 2m"), (-3, "0s")],
    )
    def test_buckets(self, seconds, expected):
        assert format_duration(seconds) == expected
