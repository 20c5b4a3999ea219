"""
Manual input API routes.

A single family of endpoints serves every manual input tab; the tab is
chosen with ``m_input``. The browser keeps the grid values while the user
edits them and posts them back to ``/manual-input/save``.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from websocket.manager import WebSocketNotifier, ws_manager

from .app_config import app_config
from .backend_client import BackendError, BackendTimeoutError
from .manual_input_service import (
    InvalidInputError,
    ManualInputService,
    NothingToSaveError,
    SaveInProgressError,
    create_manual_input_service,
)
from .shared.cell_values import find_invalid_cells
from .shared.logger import get_logger
from .shared.tag_filters import FilterConfig, SortConfig
from .shared.time_slots import compute_time_slots, format_date_rec, normalize_value_map

logger = get_logger(__name__)

router = APIRouter(prefix="/manual-input", tags=["manual-input"])


# ============= Data Models =============


class FilterModel(BaseModel):
    tag_no: str = ""
    description: str = ""
    unit_name: str = ""


class SortModel(BaseModel):
    field: str = "tag_no"
    direction: Literal["asc", "desc"] = "asc"


class TimeSlotsRequest(BaseModel):
    """Base date/time and sample count of one group."""
    datetime: Optional[str] = None
    jm: int = 0


class GridPreviewRequest(BaseModel):
    """Build a grid from tags and saved values the caller already holds."""
    datetime: Optional[str] = None
    tags: List[Dict[str, Any]] = Field(default_factory=list)
    existing_inputs: Union[Dict[str, Any], List[Any]] = Field(default_factory=dict)
    perf_id: Optional[int] = None
    m_input: Optional[int] = None


class ValidateRequest(BaseModel):
    values_by_jm: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class SaveRequest(BaseModel):
    """Edited grid of one manual input tab."""
    perf_id: int
    datetime: Optional[str] = None
    m_input: Optional[int] = None
    tags: List[Dict[str, Any]] = Field(default_factory=list)
    values_by_jm: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    filters_by_jm: Dict[str, FilterModel] = Field(default_factory=dict)
    sort_by_jm: Dict[str, SortModel] = Field(default_factory=dict)
    block_invalid: bool = False


# ============= Dependencies =============


def get_manual_input_service(request: Request) -> ManualInputService:
    """Return the app-wide service, creating it on first use."""
    service = getattr(request.app.state, "manual_input_service", None)
    if service is None:
        service = create_manual_input_service(app_config.get_settings(), WebSocketNotifier(ws_manager))
        request.app.state.manual_input_service = service
    return service


def backend_http_error(error: BackendError) -> HTTPException:
    """Map a backend failure onto a gateway error for the browser."""
    status_code = 504 if isinstance(error, BackendTimeoutError) else 502
    return HTTPException(status_code=status_code, detail=error.message)


def _by_jm(configs: Dict[str, BaseModel], factory) -> Dict[int, Any]:
    result = {}
    for key, model in configs.items():
        try:
            result[int(key)] = factory(model.model_dump())
        except (TypeError, ValueError):
            logger.warning("Ignoring configuration for non-numeric group %r", key)
    return result


# ============= Routes =============


@router.post("/time-slots")
async def time_slots(body: TimeSlotsRequest):
    """Compute the time axis of one ``jm_input`` group."""
    slot_set = compute_time_slots(body.datetime, body.jm)
    return {
        "headers": slot_set.headers,
        "slots": [format_date_rec(slot) for slot in slot_set.slots],
    }


@router.get("/grid")
async def get_grid(
    perf_id: int = Query(..., description="Performance test id"),
    datetime: Optional[str] = Query(None, description="Base date/time; defaults to the test's date"),
    m_input: Optional[int] = Query(None, description="Manual input tab number"),
    service: ManualInputService = Depends(get_manual_input_service),
):
    """Load the grid of one manual input tab from the backend."""
    try:
        if not datetime:
            performance = await service.get_performance(perf_id)
            if performance is None:
                raise HTTPException(status_code=404, detail=f"Performance {perf_id} not found")
            datetime = performance.date_perfomance or ""
        grid = await service.load_grid(perf_id, datetime, m_input)
    except BackendError as e:
        raise backend_http_error(e)
    return {"success": True, **grid.to_dict()}


@router.post("/grid/preview")
async def preview_grid(
    body: GridPreviewRequest,
    service: ManualInputService = Depends(get_manual_input_service),
):
    """Build a grid without calling the backend."""
    grid = service.build_grid(
        body.tags,
        body.existing_inputs,
        body.datetime,
        perf_id=body.perf_id,
        m_input=body.m_input,
    )
    return {"success": True, **grid.to_dict()}


@router.post("/validate")
async def validate_values(body: ValidateRequest):
    """List the cells that would be flagged as invalid."""
    invalid = find_invalid_cells(normalize_value_map(body.values_by_jm))
    return {
        "valid": not invalid,
        "invalid_cells": [cell.to_dict() for cell in invalid],
    }


@router.post("/records")
async def preview_records(
    body: SaveRequest,
    service: ManualInputService = Depends(get_manual_input_service),
):
    """Return the records a save would submit, without submitting them."""
    records = service.collect_records(
        body.perf_id,
        body.datetime,
        body.tags,
        body.values_by_jm,
        filters_by_jm=_by_jm(body.filters_by_jm, FilterConfig.from_dict),
        sort_by_jm=_by_jm(body.sort_by_jm, SortConfig.from_dict),
    )
    return {
        "records": [record.to_dict() for record in records],
        "count": len(records),
    }


@router.post("/save")
async def save_manual_input(
    body: SaveRequest,
    service: ManualInputService = Depends(get_manual_input_service),
):
    """Save the visible values of a manual input tab and return the refreshed grid."""
    try:
        outcome = await service.save(
            body.perf_id,
            body.datetime,
            body.tags,
            body.values_by_jm,
            filters_by_jm=_by_jm(body.filters_by_jm, FilterConfig.from_dict),
            sort_by_jm=_by_jm(body.sort_by_jm, SortConfig.from_dict),
            m_input=body.m_input,
            block_invalid=body.block_invalid,
        )
    except InvalidInputError as e:
        raise HTTPException(
            status_code=422,
            detail={
                "message": str(e),
                "invalid_cells": [cell.to_dict() for cell in e.invalid_cells],
            },
        )
    except NothingToSaveError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SaveInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except BackendError as e:
        raise backend_http_error(e)

    return {
        "success": True,
        "message": outcome.message,
        "records_saved": len(outcome.records),
        "records_created": outcome.result.records_created,
        "records_updated": outcome.result.records_updated,
        "invalid_cells": [cell.to_dict() for cell in outcome.invalid_cells],
        "grid": outcome.grid.to_dict() if outcome.grid else None,
    }
