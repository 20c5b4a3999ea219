"""
Cell value parsing and validation for manual input grids.

A grid cell holds whatever text the operator typed. Before it is sent to the
backend it is classified as one of:

- ``blank``: nothing to save
- ``number``: a finite float, parsed with the same prefix rules as the
  browser's ``parseFloat`` ("12.5", "0.00", "12abc" -> 12)
- ``explicit_null``: the literal ``NaN`` (any case), meaning "no reading"
- ``unparseable``: text with no numeric prefix

Validation is advisory: it flags cells for display but never drops them.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

NULL_SENTINEL = "NaN"
MAX_INPUT_VALUE = 999_999

_FLOAT_PREFIX = re.compile(r"[+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


class CellKind(str, Enum):
    """Classification of a cell's text."""

    BLANK = "blank"
    NUMBER = "number"
    EXPLICIT_NULL = "explicit_null"
    UNPARSEABLE = "unparseable"


@dataclass(frozen=True)
class CellValue:
    """Tagged cell value: ``Number(n) | ExplicitNull`` plus the non-savable kinds."""

    kind: CellKind
    number: Optional[float] = None

    @property
    def is_savable(self) -> bool:
        return self.kind in (CellKind.NUMBER, CellKind.EXPLICIT_NULL)


def parse_float_prefix(text: str) -> Optional[float]:
    """Parse the longest numeric prefix of ``text`` like JavaScript ``parseFloat``.

    Returns None where ``parseFloat`` would return NaN.
    """
    match = _FLOAT_PREFIX.match(text.lstrip())
    if not match:
        return None
    token = match.group(0)
    if token.lstrip("+-") == "Infinity":
        return -math.inf if token.startswith("-") else math.inf
    return float(token)


def parse_cell_value(text: Optional[str]) -> CellValue:
    """Classify the text of one grid cell."""
    if text is None:
        return CellValue(CellKind.BLANK)
    stripped = str(text).strip()
    if not stripped:
        return CellValue(CellKind.BLANK)
    if stripped.lower() == "nan":
        return CellValue(CellKind.EXPLICIT_NULL)

    number = parse_float_prefix(stripped)
    if number is None or not math.isfinite(number):
        return CellValue(CellKind.UNPARSEABLE)
    return CellValue(CellKind.NUMBER, number)


def validate_cell_value(text: Optional[str]) -> Optional[str]:
    """Return an error message for an invalid cell, or None when it is acceptable.

    Empty cells and ``NaN`` are always acceptable.
    """
    if text is None or str(text).strip() == "":
        return None
    stripped = str(text).strip()
    if stripped.lower() == "nan":
        return None

    number = parse_float_prefix(stripped)
    if number is None:
        return "Value must be a number or NaN"
    if number < 0:
        return "Value cannot be negative"
    if number > MAX_INPUT_VALUE:
        return f"Value cannot exceed {MAX_INPUT_VALUE:,}"
    return None


@dataclass
class InvalidCell:
    jm: int
    key: str
    value: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"jm": self.jm, "key": self.key, "value": self.value, "error": self.error}


def find_invalid_cells(values_by_jm: Dict[int, Dict[str, str]]) -> List[InvalidCell]:
    """Collect every invalid cell of a grid value map, in key order per group."""
    invalid: List[InvalidCell] = []
    for jm in sorted(values_by_jm):
        for key, value in values_by_jm[jm].items():
            error = validate_cell_value(value)
            if error:
                invalid.append(InvalidCell(jm=jm, key=key, value=value, error=error))
    return invalid


def format_number(value: Any) -> str:
    """Render a persisted value the way the browser's ``String(value)`` does.

    ``7.0 -> "7"``, ``12.5 -> "12.5"``; strings (the backend may send
    decimals as "7.00") are kept verbatim.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return NULL_SENTINEL
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    return str(value)
