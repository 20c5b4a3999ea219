"""
Manual input data/actions service.

One service instance backs every manual input tab; the tab is selected by
its ``m_input`` number instead of a dedicated component per tab. The service
fetches tags and saved values from the plant backend, turns them into a grid
(one table per ``jm_input`` group) and turns edited grids back into save
records.

Dependencies (backend client, notifier) are passed in, so routes get the
service through a FastAPI dependency and tests can swap both.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Set

from websocket.manager import (
    Notifier,
    WebSocketMessage,
    manual_input_save_failed_message,
    manual_input_saved_message,
)

from .backend_client import BackendClient, BackendError, SaveResult
from .shared.cell_values import InvalidCell, find_invalid_cells
from .shared.logger import get_logger
from .shared.tag_filters import FilterConfig, SortConfig
from .shared.time_slots import (
    coerce_tags,
    collect_save_records,
    format_date_rec,
    group_tags_by_jm_input,
    normalize_value_map,
    reconcile_existing_inputs,
    row_key,
)
from .shared.types import InputValueMap, PerformanceRecord, SaveRecord

if TYPE_CHECKING:
    from .app_config import ManualInputSettings

logger = get_logger(__name__)


class ManualInputError(Exception):
    """Base class for manual input failures reported to the user."""


class SaveInProgressError(ManualInputError):
    """A save for the same performance test is already running."""


class NothingToSaveError(ManualInputError):
    """No visible cell holds a value that can be saved."""


class InvalidInputError(ManualInputError):
    """Invalid cells were found and the caller asked to block on them."""

    def __init__(self, invalid_cells: List[InvalidCell]):
        self.invalid_cells = invalid_cells
        super().__init__(f"{len(invalid_cells)} invalid value(s) in the grid")


@dataclass
class GridGroup:
    """One table of the manual input grid."""
    jm: int
    headers: List[str]
    slots: List[str]
    tags: List[Dict[str, Any]]
    values: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jm": self.jm,
            "headers": self.headers,
            "slots": self.slots,
            "tags": self.tags,
            "values": self.values,
        }


@dataclass
class ManualInputGrid:
    """Everything a manual input tab needs to render its tables."""
    datetime: Optional[str]
    groups: List[GridGroup] = field(default_factory=list)
    perf_id: Optional[int] = None
    m_input: Optional[int] = None

    @property
    def no_data(self) -> bool:
        return not self.groups

    @property
    def tag_count(self) -> int:
        return sum(len(group.tags) for group in self.groups)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "perf_id": self.perf_id,
            "datetime": self.datetime,
            "m_input": self.m_input,
            "no_data": self.no_data,
            "tag_count": self.tag_count,
            "groups": [group.to_dict() for group in self.groups],
        }


@dataclass
class SaveOutcome:
    records: List[SaveRecord]
    result: SaveResult
    invalid_cells: List[InvalidCell] = field(default_factory=list)
    grid: Optional[ManualInputGrid] = None

    @property
    def message(self) -> str:
        return f"Successfully saved {len(self.records)} records!"


class ManualInputService:
    """Shared data/actions service behind every manual input tab."""

    def __init__(self, backend: BackendClient, notifier: Notifier):
        self.backend = backend
        self.notifier = notifier
        self._saving: Set[int] = set()
        self._retired: List[BackendClient] = []
        self._lock = asyncio.Lock()

    async def aclose(self) -> None:
        for old in self._retired:
            await old.aclose()
        self._retired = []
        await self.backend.aclose()

    async def replace_backend(self, backend: BackendClient) -> None:
        """Switch to a new backend client.

        Saves already running keep the client they started with; it is closed
        once the last of them finishes.
        """
        async with self._lock:
            old, self.backend = self.backend, backend
            if self._saving:
                self._retired.append(old)
                logger.info("Backend client replaced, closing the old one after %d running save(s)", len(self._saving))
                return
        await old.aclose()

    # ============= Performance records =============

    async def list_performances(self) -> List[PerformanceRecord]:
        return await self.backend.get_performance_records()

    async def get_performance(self, perf_id: int) -> Optional[PerformanceRecord]:
        for record in await self.backend.get_performance_records():
            if record.perf_id == perf_id:
                return record
        return None

    # ============= Grid =============

    def build_grid(
        self,
        tags: Sequence[Any],
        existing_inputs: Any,
        datetime: Optional[str],
        perf_id: Optional[int] = None,
        m_input: Optional[int] = None,
    ) -> ManualInputGrid:
        """Group tags, compute time axes and pre-populate saved values."""
        coerced = coerce_tags(tags)
        grouped = group_tags_by_jm_input(coerced, datetime)
        values_by_jm = reconcile_existing_inputs(coerced, existing_inputs, datetime)

        rows_by_jm: Dict[int, List[Dict[str, Any]]] = {}
        for index, tag in enumerate(coerced):
            row = tag.to_dict()
            row["row_key"] = row_key(tag, index)
            rows_by_jm.setdefault(tag.jm_key, []).append(row)

        groups = [
            GridGroup(
                jm=jm,
                headers=grouped.headers_by_jm[jm],
                slots=[format_date_rec(slot) for slot in grouped.slots_by_jm[jm]],
                tags=rows_by_jm.get(jm, []),
                values=values_by_jm.get(jm, {}),
            )
            for jm in grouped.grouped
        ]
        return ManualInputGrid(datetime=datetime, groups=groups, perf_id=perf_id, m_input=m_input)

    async def load_grid(
        self,
        perf_id: int,
        datetime: str,
        m_input: Optional[int] = None,
    ) -> ManualInputGrid:
        """Fetch a tab's tags and saved values from the backend and build its grid."""
        payload = await self.backend.get_input_tags(datetime, perf_id, m_input)
        grid = self.build_grid(
            payload.input_tags,
            payload.existing_inputs,
            datetime,
            perf_id=perf_id,
            m_input=m_input,
        )
        if grid.no_data:
            logger.info("No input tags for perf %s (m_input=%s)", perf_id, m_input)
        return grid

    # ============= Save =============

    def collect_records(
        self,
        perf_id: int,
        datetime: Optional[str],
        tags: Sequence[Any],
        values_by_jm: Mapping[Any, Mapping[str, Any]],
        filters_by_jm: Optional[Mapping[int, FilterConfig]] = None,
        sort_by_jm: Optional[Mapping[int, SortConfig]] = None,
    ) -> List[SaveRecord]:
        """Turn an edited grid into save records without sending them."""
        grouped = group_tags_by_jm_input(tags, datetime)
        return collect_save_records(
            grouped.grouped,
            grouped.slots_by_jm,
            normalize_value_map(values_by_jm),
            perf_id,
            filters_by_jm=filters_by_jm,
            sort_by_jm=sort_by_jm,
        )

    def is_saving(self, perf_id: int) -> bool:
        return perf_id in self._saving

    async def save(
        self,
        perf_id: int,
        datetime: Optional[str],
        tags: Sequence[Any],
        values_by_jm: Mapping[Any, Mapping[str, Any]],
        filters_by_jm: Optional[Mapping[int, FilterConfig]] = None,
        sort_by_jm: Optional[Mapping[int, SortConfig]] = None,
        m_input: Optional[int] = None,
        block_invalid: bool = False,
    ) -> SaveOutcome:
        """Submit the visible grid values and refresh the grid from the backend.

        A failed save leaves nothing changed server-side beyond what the
        backend itself committed; the caller keeps its edits and may retry.
        """
        values: InputValueMap = normalize_value_map(values_by_jm)
        invalid_cells = find_invalid_cells(values)
        if invalid_cells and block_invalid:
            raise InvalidInputError(invalid_cells)

        records = self.collect_records(perf_id, datetime, tags, values, filters_by_jm, sort_by_jm)
        if not records:
            raise NothingToSaveError("No values to save")

        async with self._lock:
            if perf_id in self._saving:
                raise SaveInProgressError(f"A save for performance {perf_id} is already in progress")
            self._saving.add(perf_id)

        try:
            try:
                result = await self.backend.save_manual_input(records)
            except BackendError as e:
                logger.error("Saving %d records for perf %s failed: %s", len(records), perf_id, e)
                await self._notify(manual_input_save_failed_message(perf_id, e.message))
                raise

            outcome = SaveOutcome(records=records, result=result, invalid_cells=invalid_cells)
            await self._notify(manual_input_saved_message(perf_id, len(records), outcome.message))

            if datetime:
                try:
                    outcome.grid = await self.load_grid(perf_id, datetime, m_input)
                except BackendError as e:
                    logger.warning("Saved perf %s but could not refresh the grid: %s", perf_id, e)
            return outcome
        finally:
            retired: List[BackendClient] = []
            async with self._lock:
                self._saving.discard(perf_id)
                if not self._saving:
                    retired, self._retired = self._retired, []
            for old in retired:
                await old.aclose()

    async def _notify(self, message: WebSocketMessage) -> None:
        try:
            await self.notifier.notify(message)
        except Exception as e:
            logger.warning("Failed to deliver %s notification: %s", message.type.value, e)


def create_backend_client(settings: "ManualInputSettings") -> BackendClient:
    """Build a backend client from the connection settings."""
    return BackendClient(
        settings.backend_url,
        timeout=settings.request_timeout,
        save_timeout=settings.save_timeout,
        api_token=settings.api_token,
    )


def create_manual_input_service(settings: "ManualInputSettings", notifier: Notifier) -> ManualInputService:
    """Build the service and its backend client from settings."""
    logger.info("Manual input service using backend %s", settings.backend_url)
    return ManualInputService(create_backend_client(settings), notifier)
