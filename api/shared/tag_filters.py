"""
Per-group filtering and sorting of input tags.

Each ``jm_input`` group of a manual input tab has its own filter row and sort
header. Only the tags that survive the filter are visible, and only visible
tags are saved.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

from .types import InputTag

SORTABLE_FIELDS = ("tag_no", "description", "unit_name")


@dataclass
class FilterConfig:
    """Case-insensitive substring filters; empty fields match everything."""
    tag_no: str = ""
    description: str = ""
    unit_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FilterConfig":
        data = data or {}
        return cls(
            tag_no=str(data.get("tag_no") or ""),
            description=str(data.get("description") or ""),
            unit_name=str(data.get("unit_name") or ""),
        )


@dataclass
class SortConfig:
    field: str = "tag_no"
    direction: str = "asc"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SortConfig":
        data = data or {}
        direction = str(data.get("direction") or "asc").lower()
        return cls(
            field=str(data.get("field") or "tag_no"),
            direction="desc" if direction == "desc" else "asc",
        )


def toggle_sort(current: Optional[SortConfig], field: str) -> SortConfig:
    """Clicking a header sorts ascending, clicking it again flips to descending."""
    if current is not None and current.field == field and current.direction == "asc":
        return SortConfig(field=field, direction="desc")
    return SortConfig(field=field, direction="asc")


def _matches(tag: InputTag, filters: FilterConfig) -> bool:
    for name in SORTABLE_FIELDS:
        needle = getattr(filters, name)
        if needle and needle.lower() not in (getattr(tag, name) or "").lower():
            return False
    return True


def get_filtered_and_sorted_tags(
    tags: Sequence[InputTag],
    filters: Optional[FilterConfig] = None,
    sort: Optional[SortConfig] = None,
) -> List[InputTag]:
    """Return the visible tags of one group, in display order.

    An unknown sort field keeps the incoming order.
    """
    filters = filters or FilterConfig()
    sort = sort or SortConfig()

    visible = [tag for tag in tags if _matches(tag, filters)]
    if sort.field not in SORTABLE_FIELDS:
        return visible

    # sorted() is stable, so ties keep their backend order in both directions
    return sorted(
        visible,
        key=lambda tag: (getattr(tag, sort.field) or "").casefold(),
        reverse=sort.direction == "desc",
    )
