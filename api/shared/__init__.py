"""
Shared utilities for the manual input backend.

Pure data-shaping helpers used by the manual input endpoints and service.
"""
from .cell_values import CellKind, CellValue, find_invalid_cells, parse_cell_value, validate_cell_value
from .tag_filters import FilterConfig, SortConfig, get_filtered_and_sorted_tags, toggle_sort
from .time_slots import (
    GroupedTags,
    collect_save_records,
    compute_time_slots,
    format_date_rec,
    group_tags_by_jm_input,
    reconcile_existing_inputs,
)
from .types import ExistingInput, InputTag, PerformanceRecord, SaveRecord, TimeSlotSet

__all__ = [
    "compute_time_slots",
    "group_tags_by_jm_input",
    "reconcile_existing_inputs",
    "collect_save_records",
    "format_date_rec",
    "GroupedTags",
    "parse_cell_value",
    "validate_cell_value",
    "find_invalid_cells",
    "CellKind",
    "CellValue",
    "FilterConfig",
    "SortConfig",
    "get_filtered_and_sorted_tags",
    "toggle_sort",
    "InputTag",
    "ExistingInput",
    "SaveRecord",
    "PerformanceRecord",
    "TimeSlotSet",
]
