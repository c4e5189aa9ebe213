"""Configuration and constants for Rewind."""
import json
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

def get_app_data_dir() -> Path:
    """Get the application data directory for the current platform."""
    home = Path.home()
    if sys.platform == "win32":
        return Path(os.getenv("APPDATA") or home / "AppData" / "Roaming") / "rewind"
    elif sys.platform == "darwin":
        return home / "Library" / "Application Support" / "rewind"
    return Path(os.getenv("XDG_CONFIG_HOME") or home / ".config") / "rewind"

APP_DATA_DIR = get_app_data_dir()
APP_DATA_DIR.mkdir(parents=True, exist_ok=True)
STORE_DIR = str(APP_DATA_DIR / "store")

# _TOOL_DIR is relative to this file (rewind/config.py) -> parent (rewind) -> parent (project)
_TOOL_DIR = Path(__file__).parent.parent.resolve()

SETTINGS_FILENAME = "settings.json"
DEFAULT_SETTINGS_FILENAME = "default_settings.json"
SETTINGS_PATH = APP_DATA_DIR / SETTINGS_FILENAME
DEFAULT_SETTINGS_PATH = _TOOL_DIR / DEFAULT_SETTINGS_FILENAME

DEFAULT_HANDLER_PRIORITY = 50

def load_json_file(path: Path | str, default: Any = None) -> Any:
    """Load a JSON file safely."""
    try:
        p = Path(path)
        if p.exists():
            with open(p, "r", encoding="utf-8") as f:
                return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read JSON {path}: {e}")
    return default

def save_json_file(path: Path | str, data: Any, indent: int = 2) -> bool:
    """Save data to a JSON file safely."""
    try:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with open(p, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to save JSON {path}: {e}")
        return False

def _load_settings() -> dict:
    """Load settings from settings.json."""
    if not SETTINGS_PATH.exists() and DEFAULT_SETTINGS_PATH.exists():
        try:
            shutil.copy2(DEFAULT_SETTINGS_PATH, SETTINGS_PATH)
        except OSError: pass

    data = load_json_file(SETTINGS_PATH)
    if data: return data

    data = load_json_file(DEFAULT_SETTINGS_PATH)
    return data or {}

def _save_settings(settings: dict) -> None:
    """Save settings to settings.json."""
    save_json_file(SETTINGS_PATH, settings)

_settings = _load_settings()

class RewindConfig:
    """Configuration for the rollback engine and its default collaborators."""

    def __init__(self):
        self.model = _settings.get("default_model", "gpt-4o-mini")
        self.api_base_url = _settings.get("api_base_url", "https://api.openai.com/v1")
        self.api_key = (
            _settings.get("api_key")
            or os.environ.get("REWIND_API_KEY")
            or os.environ.get("OPENAI_API_KEY")
            or ""
        )
        self.stream = _settings.get("stream", True)
        self.extra_system_prompt = _settings.get("extra_system_prompt", "")
        self.default_handler_priority = _settings.get("default_handler_priority", DEFAULT_HANDLER_PRIORITY)
        self.store_dir = _settings.get("store_dir", STORE_DIR)

    def set_model(self, model_name: str) -> None:
        self.model = model_name
        _settings["default_model"] = model_name
        _save_settings(_settings)

    def set_api_base_url(self, url: str) -> None:
        self.api_base_url = url
        _settings["api_base_url"] = url
        _save_settings(_settings)

    def set_api_key(self, key: str) -> None:
        self.api_key = key
        _settings["api_key"] = key
        _save_settings(_settings)

    def set_stream(self, enabled: bool) -> None:
        self.stream = enabled
        _settings["stream"] = enabled
        _save_settings(_settings)

    def set_extra_system_prompt(self, prompt: str) -> None:
        self.extra_system_prompt = prompt
        _settings["extra_system_prompt"] = prompt
        _save_settings(_settings)

    def set_default_handler_priority(self, priority: int) -> None:
        self.default_handler_priority = priority
        _settings["default_handler_priority"] = priority
        _save_settings(_settings)

    def set_store_dir(self, path: str) -> None:
        self.store_dir = path
        _settings["store_dir"] = path
        _save_settings(_settings)

config = RewindConfig()
