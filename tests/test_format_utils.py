import pytest

from inline_transcoder.utils.format_utils import (
    format_duration,
    formatted_size,
    reduction_percent,
    size_in_mb,
    truncate_diagnostic,
)


@pytest.mark.parametrize(
    "size, expected",
    [(0, "0 B"), (512, "512 B"), (1536, "1.50 KB"), (2 * 1024 * 1024, "2 MB"), (-5, "0 B")],
)
def test_formatted_size(size, expected):
    assert formatted_size(size) == expected


def test_size_in_mb():
    assert size_in_mb(50 * 1024 * 1024) == "50.00MB"
    assert size_in_mb(1024 * 1024 + 1024 * 1024 // 2) == "1.50MB"


def test_format_duration():
    assert format_duration(0.25) == "250ms"
    assert format_duration(12.34) == "12.3s"


def test_reduction_percent():
    assert reduction_percent(200, 50) == "75.0%"
    assert reduction_percent(0, 50) == "0.0%"


def test_truncate_diagnostic():
    assert truncate_diagnostic("  short  ") == "short"
    assert truncate_diagnostic("x" * 20, limit=5) == "xxxxx..."
    assert truncate_diagnostic(None) == ""
