"""
System API routes for the manual input backend.

This module provides FastAPI routes for system health and information, and
keeps a small in-memory log of recent server errors.
"""

import platform
import sys
import traceback
from collections import deque
from datetime import datetime
from importlib import metadata
from typing import Any, Deque, Dict, List, Optional

from fastapi import APIRouter, Query

from .shared.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

MAX_ERROR_ENTRIES = 200

_error_log: Deque[Dict[str, Any]] = deque(maxlen=MAX_ERROR_ENTRIES)

_LOG_LEVELS = {
    "warning": logger.warning,
    "error": logger.error,
    "critical": logger.critical,
}


def log_error(
    endpoint: str,
    message: str,
    level: str = "error",
    details: Optional[str] = None,
    exc: Optional[BaseException] = None,
) -> Dict[str, Any]:
    """Record a server error so it can be reviewed from the UI."""
    entry = {
        "timestamp": datetime.now().isoformat(),
        "endpoint": endpoint,
        "message": message,
        "level": level,
        "details": details,
        "traceback": None,
    }
    if exc is not None:
        entry["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    _error_log.append(entry)

    log = _LOG_LEVELS.get(level, logger.error)
    log("%s: %s%s", endpoint, message, f" ({details})" if details else "")
    return entry


def get_recent_errors(limit: int = 50) -> List[Dict[str, Any]]:
    """Most recent errors first."""
    return list(reversed(_error_log))[:limit]


def clear_errors() -> None:
    _error_log.clear()


def _get_package_versions() -> Dict[str, str]:
    """Get versions of key packages."""
    packages = {}
    for name in ("fastapi", "uvicorn", "pydantic", "httpx", "platformdirs", "orjson"):
        try:
            packages[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            pass
    return packages


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "message": "Manual input backend is running",
    }


@router.get("/system/info")
async def system_info():
    """Get system and environment information."""
    return {
        "python": {
            "version": sys.version,
            "platform": sys.platform,
            "executable": sys.executable,
        },
        "system": {
            "os": platform.system(),
            "release": platform.release(),
            "machine": platform.machine(),
        },
        "packages": _get_package_versions(),
    }


@router.get("/system/errors")
async def system_errors(limit: int = Query(50, ge=1, le=MAX_ERROR_ENTRIES)):
    """Get recent server errors."""
    errors = get_recent_errors(limit)
    return {"errors": errors, "total": len(_error_log)}


@router.delete("/system/errors")
async def delete_system_errors():
    """Clear the error log."""
    clear_errors()
    return {"success": True}
