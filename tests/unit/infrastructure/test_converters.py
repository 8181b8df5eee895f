"""Tests for infrastructure converters."""

from __future__ import annotations

from definarr.infrastructure.common.converters import to_float, to_int


class TestToInt:
    def test_none_returns_none(self) -> None:
        assert to_int(None) is None

    def test_int_passthrough(self) -> None:
        assert to_int(42) == 42
        assert to_int(-5) == -5

    def test_bool_is_not_a_number(self) -> None:
        assert to_int(True) is None

    def test_float_truncates(self) -> None:
        assert to_int(3.9) == 3

    def test_string_with_separators(self) -> None:
        assert to_int("1,234") == 1234
        assert to_int("1 234") == 1234

    def test_empty_or_non_numeric(self) -> None:
        assert to_int("") is None
        assert to_int("abc") is None

    def test_mixed_string_extracts_digits(self) -> None:
        assert to_int("v1.2.3") == 123


class TestToFloat:
    def test_numbers(self) -> None:
        assert to_float(3) == 3.0
        assert to_float(0.5) == 0.5

    def test_first_number_in_text(self) -> None:
        assert to_float("1,5x") == 1.5
        assert to_float("ratio: -2.25") == -2.25

    def test_invalid(self) -> None:
        assert to_float(None) is None
        assert to_float(False) is None
        assert to_float("n/a") is None
