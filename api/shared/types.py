"""
Data model shared by the manual input endpoints.

These mirror the JSON shapes exchanged with the plant backend
(``/api/input-tags``, ``/api/performance-records`` and
``/api/data-analysis/save-manual-input``).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

DEFAULT_JM_INPUT = 6


def _to_int(value: Any, default: int = 0) -> int:
    """Best-effort integer coercion for loosely typed backend fields."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _to_str(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class InputTag:
    """A sensor/measurement point eligible for manual entry."""
    tag_no: str
    description: str = ""
    unit_name: str = ""
    jm_input: int = 0
    group_id: Optional[int] = None
    urutan: Optional[int] = None
    m_input: Optional[int] = None

    @property
    def jm_key(self) -> int:
        """Group key: the sample count, falling back to 6 when unset."""
        return self.jm_input or DEFAULT_JM_INPUT

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InputTag":
        data = data or {}
        return cls(
            tag_no=_to_str(data.get("tag_no")),
            description=_to_str(data.get("description")),
            # the backend names the column "satuan"; the tabs receive "unit_name"
            unit_name=_to_str(data.get("unit_name", data.get("satuan"))),
            jm_input=_to_int(data.get("jm_input")),
            group_id=_to_int(data["group_id"]) if data.get("group_id") is not None else None,
            urutan=_to_int(data["urutan"]) if data.get("urutan") is not None else None,
            m_input=_to_int(data["m_input"]) if data.get("m_input") is not None else None,
        )


@dataclass
class ExistingInput:
    """A previously persisted value for a (tag_no, timestamp) pair."""
    tag_no: str
    value: Union[float, int, str, None]
    date_rec: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExistingInput":
        return cls(
            tag_no=_to_str(data.get("tag_no")),
            value=data.get("value"),
            date_rec=_to_str(data.get("date_rec")),
        )


@dataclass(frozen=True)
class TimeSlotSet:
    """Time axis for one ``jm_input`` group."""
    headers: List[str] = field(default_factory=list)
    slots: List[datetime] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.slots)


@dataclass
class SaveRecord:
    """One value to submit to ``/api/data-analysis/save-manual-input``.

    ``value`` is ``None`` when the user explicitly typed ``NaN``.
    """
    tag_no: str
    value: Optional[float]
    date_rec: str
    perf_id: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PerformanceRecord:
    """A performance test as listed by the plant backend."""
    perf_id: int
    description: str = ""
    date_perfomance: Optional[str] = None
    date_created: Optional[str] = None
    status: str = "Editable"
    unit_id: Optional[int] = None
    unit_name: str = ""
    formatted_label: str = ""

    @property
    def is_editable(self) -> bool:
        return self.status == "Editable"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceRecord":
        description = _to_str(data.get("description"))
        date_perf = data.get("date_perfomance")
        label = data.get("formatted_label") or f"{description} - {date_perf or 'No Date'}"
        return cls(
            perf_id=_to_int(data.get("perf_id", data.get("id"))),
            description=description,
            date_perfomance=date_perf,
            date_created=data.get("date_created"),
            status=_to_str(data.get("status")) or "Editable",
            unit_id=_to_int(data["unit_id"]) if data.get("unit_id") is not None else None,
            unit_name=_to_str(data.get("unit_name")),
            formatted_label=label,
        )


# jm -> "{row_key}_{time_index}" -> text shown in the cell
InputValueMap = Dict[int, Dict[str, str]]
