"""Tests for formatting utilities."""

import pytest

from helibuffer.formatting import format_epoch_ms, format_span, format_statistic


class TestFormatEpochMs:
    """Tests for format_epoch_ms."""

    def test_epoch_zero(self) -> None:
        assert format_epoch_ms(0) == "1970-01-01T00:00:00.000Z"

    def test_millisecond_precision(self) -> None:
        assert format_epoch_ms(1_700_000_000_250) == "2023-11-14T22:13:20.250Z"


class TestFormatSpan:
    """Tests for format_span."""

    @pytest.mark.parametrize(
        "start,end,expected",
        [
            (0, 250, "250ms"),
            (1000, 2500, "1.5s"),
            (0, 125_000, "2m05s"),
            (0, 3_600_000, "60m00s"),
        ],
    )
    def test_ranges(self, start, end, expected) -> None:
        assert format_span(start, end) == expected

    def test_negative_clamped(self) -> None:
        assert format_span(5000, 1000) == "0ms"


class TestFormatStatistic:
    """Tests for format_statistic."""

    def test_undefined(self) -> None:
        assert format_statistic(None) == "-"

    def test_fractional_float(self) -> None:
        assert format_statistic(2.5) == "2.50"

    def test_integral_values(self) -> None:
        assert format_statistic(3.0) == "3"
        assert format_statistic(-7) == "-7"
