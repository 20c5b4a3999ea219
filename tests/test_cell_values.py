"""
Tests for cell value parsing, validation and number formatting.

Run tests:
    pytest tests/test_cell_values.py -v
"""

import math

import pytest

from api.shared.cell_values import (
    CellKind,
    find_invalid_cells,
    format_number,
    parse_cell_value,
    parse_float_prefix,
    validate_cell_value,
)


class TestParseFloatPrefix:

    @pytest.mark.parametrize("text,expected", [
        ("12.5", 12.5),
        ("0.00", 0.0),
        ("-4", -4.0),
        (".5", 0.5),
        ("3e2x", 300.0),
        ("12abc", 12.0),
        ("  7", 7.0),
    ])
    def test_numeric_prefix(self, text, expected):
        assert parse_float_prefix(text) == expected

    @pytest.mark.parametrize("text", ["abc", "", "-", ".", "e5"])
    def test_no_numeric_prefix(self, text):
        assert parse_float_prefix(text) is None

    def test_infinity(self):
        assert parse_float_prefix("Infinity") == math.inf
        assert parse_float_prefix("-Infinity") == -math.inf


class TestParseCellValue:

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_blank(self, text):
        cell = parse_cell_value(text)
        assert cell.kind == CellKind.BLANK
        assert not cell.is_savable

    @pytest.mark.parametrize("text", ["NaN", "nan", " NAN "])
    def test_explicit_null(self, text):
        cell = parse_cell_value(text)
        assert cell.kind == CellKind.EXPLICIT_NULL
        assert cell.number is None
        assert cell.is_savable

    def test_number(self):
        cell = parse_cell_value(" 42.25 ")
        assert cell.kind == CellKind.NUMBER
        assert cell.number == 42.25

    @pytest.mark.parametrize("text", ["abc", "Infinity", "1e999"])
    def test_unparseable(self, text):
        cell = parse_cell_value(text)
        assert cell.kind == CellKind.UNPARSEABLE
        assert not cell.is_savable


class TestValidateCellValue:

    @pytest.mark.parametrize("text", [None, "", "NaN", "0", "999999", "12.5"])
    def test_acceptable(self, text):
        assert validate_cell_value(text) is None

    @pytest.mark.parametrize("text,message", [
        ("abc", "Value must be a number or NaN"),
        ("-1", "Value cannot be negative"),
        ("1000000", "Value cannot exceed 999,999"),
    ])
    def test_invalid(self, text, message):
        assert validate_cell_value(text) == message

    def test_find_invalid_cells_orders_by_group(self):
        values = {
            6: {"T9_0": "x"},
            4: {"T1_0": "-1", "T1_1": "5"},
        }
        invalid = find_invalid_cells(values)
        assert [(c.jm, c.key) for c in invalid] == [(4, "T1_0"), (6, "T9_0")]
        assert invalid[0].to_dict() == {
            "jm": 4,
            "key": "T1_0",
            "value": "-1",
            "error": "Value cannot be negative",
        }


class TestFormatNumber:

    @pytest.mark.parametrize("value,expected", [
        (7, "7"),
        (7.0, "7"),
        (12.5, "12.5"),
        (0.1 + 0.2, "0.30000000000000004"),
        (-3.0, "-3"),
        ("7.00", "7.00"),
        (float("nan"), "NaN"),
    ])
    def test_matches_browser_rendering(self, value, expected):
        assert format_number(value) == expected
