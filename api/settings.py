"""
Settings API routes.

Reads and updates ``settings.json`` through the app config manager. The
API token is never returned in clear text.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from websocket.manager import system_notification_message, ws_manager

from .app_config import app_config
from .manual_input_service import create_backend_client
from .shared.logger import get_logger, setup_logging
from .shared.time_slots import set_display_timezone_name

logger = get_logger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])


class UiPreferencesRequest(BaseModel):
    preferences: Dict[str, Any] = Field(default_factory=dict)


class SettingsUpdateRequest(BaseModel):
    """Partial settings update; omitted fields keep their value."""
    backend_url: Optional[str] = None
    api_token: Optional[str] = None
    request_timeout: Optional[float] = Field(None, gt=0)
    save_timeout: Optional[float] = Field(None, gt=0)
    tab_count: Optional[int] = Field(None, ge=1)
    tab_names: Optional[Dict[str, str]] = None
    display_timezone: Optional[str] = None
    log_level: Optional[str] = None


# Changing these requires a new backend client
_CONNECTION_FIELDS = ("backend_url", "api_token", "request_timeout", "save_timeout")


@router.get("")
async def get_settings():
    """Get the current settings."""
    settings = app_config.get_settings()
    return {
        "settings": settings.to_dict(redact=True),
        "config_dir": str(app_config.config_dir),
    }


@router.put("")
async def update_settings(body: SettingsUpdateRequest, request: Request):
    """Update settings and swap the backend client when the connection changed."""
    updates = body.model_dump(exclude_none=True)
    settings = app_config.update_settings(updates)

    if "log_level" in updates:
        setup_logging(settings.log_level)
    if "display_timezone" in updates:
        set_display_timezone_name(settings.display_timezone)

    changed: List[str] = [name for name in _CONNECTION_FIELDS if name in updates]
    service = getattr(request.app.state, "manual_input_service", None)
    if changed:
        logger.info("Backend connection settings changed (%s)", ", ".join(changed))
        if service is not None:
            await service.replace_backend(create_backend_client(settings))
        await ws_manager.broadcast_to_all(
            system_notification_message(f"Backend connection updated: {settings.backend_url}")
        )

    return {"success": True, "settings": settings.to_dict(redact=True)}


@router.get("/ui-preferences")
async def get_ui_preferences():
    """Get UI preferences."""
    return {"ui_preferences": app_config.get_ui_preferences()}


@router.put("/ui-preferences")
async def update_ui_preferences(body: UiPreferencesRequest):
    """Save UI preferences (theme, density, ...)."""
    preferences = app_config.save_ui_preferences(body.preferences)
    return {"success": True, "ui_preferences": preferences}
