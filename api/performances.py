"""
Performance test API routes.

Proxies the plant backend's performance records and the manual input tab
names configured for a test's unit.
"""

from fastapi import APIRouter, Depends, HTTPException

from .app_config import app_config
from .backend_client import BackendError
from .manual_input import backend_http_error, get_manual_input_service
from .manual_input_service import ManualInputService
from .shared.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/performances", tags=["performances"])


@router.get("")
async def list_performances(service: ManualInputService = Depends(get_manual_input_service)):
    """List performance tests."""
    try:
        records = await service.list_performances()
    except BackendError as e:
        raise backend_http_error(e)
    return {
        "success": True,
        "performances": [record.to_dict() for record in records],
        "total": len(records),
    }


@router.get("/{perf_id}")
async def get_performance(perf_id: int, service: ManualInputService = Depends(get_manual_input_service)):
    """Get a single performance test."""
    try:
        record = await service.get_performance(perf_id)
    except BackendError as e:
        raise backend_http_error(e)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Performance {perf_id} not found")
    return {"success": True, "performance": record.to_dict()}


@router.get("/{perf_id}/tabs")
async def get_tab_names(perf_id: int, service: ManualInputService = Depends(get_manual_input_service)):
    """Names of the manual input tabs, falling back to "Tab {i}"."""
    settings = app_config.get_settings()
    try:
        remote = await service.backend.get_tab_names(perf_id)
    except BackendError as e:
        logger.warning("Could not load tab names for perf %s, using defaults: %s", perf_id, e)
        remote = {}

    names = {i: settings.get_tab_name(i) for i in range(1, settings.tab_count + 1)}
    names.update({num: name for num, name in remote.items() if name})
    return {
        "success": True,
        "tab_names": {str(num): names[num] for num in sorted(names)},
    }
