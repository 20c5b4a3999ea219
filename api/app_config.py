"""
Global app configuration manager for the manual input backend.

This module manages the configuration folder that stores ``settings.json``:
backend connection, timeouts, tab layout and UI preferences.

The config folder location is determined by (in order of priority):
1. PERFTEST_CONFIG environment variable
2. Default platform-specific location (platformdirs user config dir)

Individual settings can be overridden with environment variables:
PERFTEST_BACKEND_URL, PERFTEST_API_TOKEN, PERFTEST_LOG_LEVEL and
PERFTEST_TIMEZONE.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import platformdirs

from .shared.logger import get_logger

logger = get_logger(__name__)

APP_NAME = "perftest-dashboard"
APP_AUTHOR = "perftest"
_SETTINGS_FILE_NAME = "settings.json"

_ENV_OVERRIDES = {
    "PERFTEST_BACKEND_URL": "backend_url",
    "PERFTEST_API_TOKEN": "api_token",
    "PERFTEST_LOG_LEVEL": "log_level",
    "PERFTEST_TIMEZONE": "display_timezone",
}


@dataclass
class ManualInputSettings:
    """Settings of the manual input backend."""
    backend_url: str = "http://127.0.0.1:8080"
    api_token: Optional[str] = None
    request_timeout: float = 10.0
    save_timeout: float = 30.0
    tab_count: int = 3
    tab_names: Dict[int, str] = field(default_factory=dict)
    display_timezone: Optional[str] = None
    log_level: str = "INFO"
    ui_preferences: Dict[str, Any] = field(
        default_factory=lambda: {"theme": "system", "density": "comfortable"}
    )

    def to_dict(self, redact: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        data["tab_names"] = {str(k): v for k, v in self.tab_names.items()}
        if redact and data.get("api_token"):
            data["api_token"] = "***"
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManualInputSettings":
        defaults = cls()
        tab_names = {}
        for key, name in (data.get("tab_names") or {}).items():
            try:
                tab_names[int(key)] = str(name)
            except (TypeError, ValueError):
                logger.warning("Ignoring tab name with non-numeric key %r", key)
        return cls(
            backend_url=str(data.get("backend_url") or defaults.backend_url).rstrip("/"),
            api_token=data.get("api_token") or None,
            request_timeout=float(data.get("request_timeout", defaults.request_timeout)),
            save_timeout=float(data.get("save_timeout", defaults.save_timeout)),
            tab_count=max(1, int(data.get("tab_count", defaults.tab_count))),
            tab_names=tab_names,
            display_timezone=data.get("display_timezone") or None,
            log_level=str(data.get("log_level") or defaults.log_level).upper(),
            ui_preferences={**defaults.ui_preferences, **(data.get("ui_preferences") or {})},
        )

    def get_tab_name(self, tab_num: int) -> str:
        return self.tab_names.get(tab_num) or f"Tab {tab_num}"


class AppConfigManager:
    """Manages the app configuration folder and its ``settings.json``."""

    def __init__(self, config_dir: Optional[Path] = None):
        self._config_dir = Path(config_dir) if config_dir else self._get_config_dir()
        self._config_dir.mkdir(parents=True, exist_ok=True)
        self._settings_path = self._config_dir / _SETTINGS_FILE_NAME

    def _get_config_dir(self) -> Path:
        """Get the config directory following priority order."""
        env_config = os.environ.get("PERFTEST_CONFIG")
        if env_config:
            return Path(env_config)
        return Path(platformdirs.user_config_dir(APP_NAME, APP_AUTHOR))

    @property
    def config_dir(self) -> Path:
        """Get the config directory path."""
        return self._config_dir

    @property
    def settings_path(self) -> Path:
        return self._settings_path

    # ============================================================================
    # Settings
    # ============================================================================

    def _load_raw(self) -> Dict[str, Any]:
        if self._settings_path.exists():
            try:
                with open(self._settings_path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error("Failed to load settings from %s: %s", self._settings_path, e)
        return {}

    def get_settings(self) -> ManualInputSettings:
        """Load settings from disk and apply environment overrides."""
        raw = self._load_raw()
        for env_name, key in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                raw[key] = value
        return ManualInputSettings.from_dict(raw)

    def save_settings(self, settings: ManualInputSettings) -> bool:
        """Save settings to disk."""
        try:
            data = settings.to_dict()
            data["last_updated"] = datetime.now().isoformat()
            with open(self._settings_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            return True
        except OSError as e:
            logger.error("Failed to save settings: %s", e)
            return False

    def update_settings(self, updates: Dict[str, Any]) -> ManualInputSettings:
        """Update stored settings with a deep merge and return the result."""
        merged = self._deep_merge(self._load_raw(), updates)
        settings = ManualInputSettings.from_dict(merged)
        self.save_settings(settings)
        return settings

    def _deep_merge(self, base: Dict, updates: Dict) -> Dict:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in updates.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    # ============================================================================
    # UI Preferences
    # ============================================================================

    def get_ui_preferences(self) -> Dict[str, Any]:
        """Get UI preferences."""
        return self.get_settings().ui_preferences

    def save_ui_preferences(self, preferences: Dict[str, Any]) -> Dict[str, Any]:
        """Save UI preferences."""
        return self.update_settings({"ui_preferences": preferences}).ui_preferences


app_config = AppConfigManager()
