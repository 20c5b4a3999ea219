"""
Time-slot grouping and manual input reconciliation.

Every manual input tag expects ``jm_input`` samples inside a fixed two hour
window that starts at the performance test's date/time. Tags are grouped by
that sample count, each group gets one time axis, and previously saved values
are projected onto ``"{tag_no}_{time_index}"`` cell keys so the grid can be
pre-populated. Saving runs the same mapping in reverse.

The slot spacing is ``120 / (jm - 1)`` minutes so that the first and the last
slot sit on the window's endpoints; ``jm == 1`` yields a single slot at the
base time. Save and reconcile both go through :func:`compute_time_slots` and
:func:`format_date_rec`, otherwise saved values would not be found again on
the next load.

Nothing here raises on malformed input: bad dates, empty tag numbers and
unknown keys degrade to empty results.

Example:
    >>> slots = compute_time_slots("2024-01-01T08:00", 4)
    >>> slots.headers
    ['08:00', '08:40', '09:20', '10:00']
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .cell_values import NULL_SENTINEL, format_number, parse_cell_value
from .logger import get_logger
from .tag_filters import FilterConfig, SortConfig, get_filtered_and_sorted_tags
from .types import ExistingInput, InputTag, InputValueMap, SaveRecord, TimeSlotSet

logger = get_logger(__name__)

WINDOW_MINUTES = 120
DATE_REC_FORMAT = "%Y-%m-%d %H:%M:%S"

# Zone used to turn offset-aware timestamps into wall-clock slots.
# None means the server process' local zone.
_display_tz: Optional[tzinfo] = None

BaseDateTime = Union[str, datetime, None]


def set_display_timezone(tz: Optional[tzinfo]) -> None:
    """Set the viewer time zone used for offset-aware base timestamps."""
    global _display_tz
    _display_tz = tz


def set_display_timezone_name(name: Optional[str]) -> None:
    """Set the viewer time zone from an IANA name; unknown names fall back to local time."""
    if not name:
        set_display_timezone(None)
        return
    try:
        set_display_timezone(ZoneInfo(name))
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown display time zone %r, using the server's local zone", name)
        set_display_timezone(None)


def parse_base_datetime(value: BaseDateTime) -> Optional[datetime]:
    """Parse a base timestamp into a naive local datetime.

    Accepts ``datetime`` objects and ISO-8601 strings such as
    ``2024-01-01T08:00``, ``2024-01-01 08:00:00`` or ``2024-01-01T01:00:00Z``.
    Returns None for empty or unparseable input.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(_display_tz).replace(tzinfo=None)
    return parsed


def format_date_rec(slot: datetime) -> str:
    """Format a slot the way the backend stores ``date_rec`` (``YYYY-MM-DD HH:MM:SS``)."""
    return (
        f"{slot.year:04d}-{slot.month:02d}-{slot.day:02d} "
        f"{slot.hour:02d}:{slot.minute:02d}:{slot.second:02d}"
    )


def format_header(slot: datetime) -> str:
    return f"{slot.hour:02d}:{slot.minute:02d}"


def compute_time_slots(base_datetime: BaseDateTime, jm: Any) -> TimeSlotSet:
    """Compute the time axis of a ``jm``-sample group.

    Returns an empty set when the base is missing/unparseable or ``jm <= 0``.
    """
    try:
        count = int(jm)
    except (TypeError, ValueError):
        return TimeSlotSet()
    if count <= 0:
        return TimeSlotSet()

    base = parse_base_datetime(base_datetime)
    if base is None:
        return TimeSlotSet()

    headers: List[str] = []
    slots: List[datetime] = []
    for i in range(count):
        # whole minutes only: fractional offsets are truncated
        offset = 0 if count == 1 else (i * WINDOW_MINUTES) // (count - 1)
        slot = base + timedelta(minutes=offset)
        headers.append(format_header(slot))
        slots.append(slot)

    return TimeSlotSet(headers=headers, slots=slots)


def coerce_tags(tags: Iterable[Union[InputTag, Mapping[str, Any]]]) -> List[InputTag]:
    """Accept ``InputTag`` objects or raw backend dicts."""
    result = []
    for tag in tags or []:
        if isinstance(tag, InputTag):
            result.append(tag)
        elif isinstance(tag, Mapping):
            result.append(InputTag.from_dict(dict(tag)))
    return result


def row_key(tag: InputTag, index: int) -> str:
    """Identifier of a tag's grid row; malformed rows get a placeholder."""
    return tag.tag_no or f"empty-tag-{index}"


def cell_key(row: str, time_index: int) -> str:
    return f"{row}_{time_index}"


@dataclass
class GroupedTags:
    """Tags partitioned by ``jm_input`` with one time axis per group."""
    grouped: Dict[int, List[InputTag]] = field(default_factory=dict)
    headers_by_jm: Dict[int, List[str]] = field(default_factory=dict)
    slots_by_jm: Dict[int, List[datetime]] = field(default_factory=dict)

    def __len__(self) -> int:
        return sum(len(tags) for tags in self.grouped.values())


def group_tags_by_jm_input(
    tags: Sequence[Union[InputTag, Mapping[str, Any]]],
    base_datetime: BaseDateTime,
) -> GroupedTags:
    """Partition tags by sample count, keeping their incoming order.

    Groups appear in first-seen order; each group's slots are computed once.
    """
    result = GroupedTags()
    for tag in coerce_tags(tags):
        jm = tag.jm_key
        if jm not in result.grouped:
            result.grouped[jm] = []
            slot_set = compute_time_slots(base_datetime, jm)
            result.headers_by_jm[jm] = slot_set.headers
            result.slots_by_jm[jm] = slot_set.slots
        result.grouped[jm].append(tag)
    return result


def normalize_existing_inputs(existing_inputs: Any) -> Dict[str, ExistingInput]:
    """Key persisted values by ``"{tag_no}_{date_rec}"``.

    The backend sends a keyed object, or an empty JSON list when there is
    nothing saved yet; lists of records are re-keyed the same way.
    """
    if not existing_inputs:
        return {}

    normalized: Dict[str, ExistingInput] = {}
    if isinstance(existing_inputs, Mapping):
        for key, record in existing_inputs.items():
            if isinstance(record, ExistingInput):
                normalized[str(key)] = record
            elif isinstance(record, Mapping):
                normalized[str(key)] = ExistingInput.from_dict(dict(record))
        return normalized

    if isinstance(existing_inputs, (list, tuple)):
        for record in existing_inputs:
            if isinstance(record, Mapping):
                record = ExistingInput.from_dict(dict(record))
            if isinstance(record, ExistingInput) and record.tag_no:
                normalized[f"{record.tag_no}_{record.date_rec}"] = record
        return normalized

    logger.warning("Ignoring existing inputs of type %s", type(existing_inputs).__name__)
    return {}


def reconcile_existing_inputs(
    tags: Sequence[Union[InputTag, Mapping[str, Any]]],
    existing_inputs: Any,
    base_datetime: BaseDateTime,
) -> InputValueMap:
    """Project saved values onto grid cell keys, per ``jm`` group.

    A saved ``null`` becomes the literal ``"NaN"``. Cells without a matching
    record are left out entirely, so an unset cell stays distinguishable from
    an explicit null.
    """
    existing = normalize_existing_inputs(existing_inputs)
    values_by_jm: InputValueMap = {}
    slot_cache: Dict[int, TimeSlotSet] = {}

    for index, tag in enumerate(coerce_tags(tags)):
        if not tag.tag_no:
            continue
        jm = tag.jm_key
        if jm not in slot_cache:
            slot_cache[jm] = compute_time_slots(base_datetime, jm)
        values = values_by_jm.setdefault(jm, {})
        row = row_key(tag, index)

        for time_index, slot in enumerate(slot_cache[jm].slots):
            record = existing.get(f"{tag.tag_no}_{format_date_rec(slot)}")
            if record is None:
                continue
            text = NULL_SENTINEL if record.value is None else format_number(record.value)
            values[cell_key(row, time_index)] = text

    return values_by_jm


def normalize_value_map(values_by_jm: Optional[Mapping[Any, Mapping[str, Any]]]) -> InputValueMap:
    """Coerce JSON-decoded value maps (string ``jm`` keys, non-string values)."""
    normalized: InputValueMap = {}
    for jm, values in (values_by_jm or {}).items():
        try:
            key = int(jm)
        except (TypeError, ValueError):
            logger.warning("Ignoring value group with non-numeric key %r", jm)
            continue
        normalized[key] = {
            str(k): "" if v is None else str(v) for k, v in (values or {}).items()
        }
    return normalized


def collect_save_records(
    grouped: Mapping[int, Sequence[InputTag]],
    slots_by_jm: Mapping[int, Sequence[datetime]],
    values_by_jm: InputValueMap,
    perf_id: int,
    filters_by_jm: Optional[Mapping[int, FilterConfig]] = None,
    sort_by_jm: Optional[Mapping[int, SortConfig]] = None,
) -> List[SaveRecord]:
    """Build the records to submit from the current grid values.

    Only visible (filtered) tags are saved, in display order. Blank cells and
    cells with no numeric content are skipped; ``NaN`` is kept as an explicit
    null (``value=None``).
    """
    filters_by_jm = filters_by_jm or {}
    sort_by_jm = sort_by_jm or {}
    records: List[SaveRecord] = []

    for jm, tags in grouped.items():
        visible = get_filtered_and_sorted_tags(tags, filters_by_jm.get(jm), sort_by_jm.get(jm))
        slots = slots_by_jm.get(jm) or []
        values = values_by_jm.get(jm) or {}

        for tag in visible:
            if not tag.tag_no:
                continue
            for time_index, slot in enumerate(slots):
                cell = parse_cell_value(values.get(cell_key(tag.tag_no, time_index)))
                if not cell.is_savable:
                    continue
                records.append(
                    SaveRecord(
                        tag_no=tag.tag_no,
                        value=cell.number,
                        date_rec=format_date_rec(slot),
                        perf_id=perf_id,
                    )
                )

    return records
