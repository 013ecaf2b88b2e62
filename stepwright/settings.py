"""Persistent recorder and player settings helpers."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from platformdirs import user_data_dir

from stepwright.contracts import SETTINGS_SCHEMA_V1

HOME_ENV_VAR = "STEPWRIGHT_HOME"


def stepwright_home() -> Path:
    override = os.environ.get(HOME_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".stepwright"


def data_dir() -> Path:
    """Directory for run history and failure screenshots."""
    override = os.environ.get(HOME_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser() / "data"
    return Path(user_data_dir("stepwright"))


def default_settings_path() -> Path:
    return stepwright_home() / "settings.json"


RECORDER_INT_FIELDS = {
    "idle_threshold_ms": 2000,
    "min_idle_duration_ms": 800,
    "stability_threshold_ms": 1500,
    "max_api_assertions": 2,
    "max_mutation_assertions": 3,
    "input_debounce_ms": 300,
    "scroll_debounce_ms": 150,
}
RECORDER_BOOL_FIELDS = {
    "capture_clicks": True,
    "capture_inputs": True,
    "capture_keyboard": True,
    "capture_scroll": True,
    "capture_navigation": True,
}
PLAYER_INT_FIELDS = {
    "default_timeout_ms": 30000,
    "step_delay_ms": 0,
    "max_retries": 0,
}
PLAYER_BOOL_FIELDS = {
    "screenshot_on_failure": True,
    "continue_on_failure": False,
    "pause_on_failure": False,
    "headless": True,
}
MAX_RETRIES_LIMIT = 10


def default_settings() -> dict[str, Any]:
    recorder: dict[str, Any] = dict(RECORDER_INT_FIELDS)
    recorder.update(RECORDER_BOOL_FIELDS)
    recorder["ignore_selectors"] = []
    recorder["test_id_attribute"] = "data-testid"
    recorder["api_exclude_patterns"] = []
    player: dict[str, Any] = dict(PLAYER_INT_FIELDS)
    player.update(PLAYER_BOOL_FIELDS)
    player["speed"] = 1.0
    player["base_url"] = ""
    return {
        "schema_version": SETTINGS_SCHEMA_V1,
        "recorder": recorder,
        "player": player,
    }


def _coerce_non_negative_int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{section}.{key} must be an integer") from exc
    if number < 0:
        raise ValueError(f"{section}.{key} must be >= 0")
    return number


def _coerce_bool(section: str, key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "1", "yes", "on"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "0", "no", "off"}:
        return False
    raise ValueError(f"{section}.{key} must be a boolean")


def _coerce_string_list(section: str, key: str, value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{section}.{key} must be a list")
    items: list[str] = []
    for item in value:
        text = str(item).strip()
        if text and text not in items:
            items.append(text)
    return items


def _validate_recorder(raw: Any) -> dict[str, Any]:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("recorder must be object")
    recorder = default_settings()["recorder"]
    for key, default in RECORDER_INT_FIELDS.items():
        recorder[key] = _coerce_non_negative_int("recorder", key, raw.get(key, default))
    for key, default in RECORDER_BOOL_FIELDS.items():
        recorder[key] = _coerce_bool("recorder", key, raw.get(key, default))
    if recorder["idle_threshold_ms"] <= 0:
        raise ValueError("recorder.idle_threshold_ms must be > 0")
    if recorder["stability_threshold_ms"] <= 0:
        raise ValueError("recorder.stability_threshold_ms must be > 0")
    recorder["ignore_selectors"] = _coerce_string_list(
        "recorder", "ignore_selectors", raw.get("ignore_selectors", [])
    )
    patterns = _coerce_string_list("recorder", "api_exclude_patterns", raw.get("api_exclude_patterns", []))
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"invalid api_exclude_patterns entry: {pattern}") from exc
    recorder["api_exclude_patterns"] = patterns
    test_id_attribute = str(raw.get("test_id_attribute", "data-testid")).strip()
    if not test_id_attribute:
        raise ValueError("recorder.test_id_attribute must be non-empty")
    recorder["test_id_attribute"] = test_id_attribute
    return recorder


def _validate_player(raw: Any) -> dict[str, Any]:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("player must be object")
    player = default_settings()["player"]
    for key, default in PLAYER_INT_FIELDS.items():
        player[key] = _coerce_non_negative_int("player", key, raw.get(key, default))
    for key, default in PLAYER_BOOL_FIELDS.items():
        player[key] = _coerce_bool("player", key, raw.get(key, default))
    if player["default_timeout_ms"] <= 0:
        raise ValueError("player.default_timeout_ms must be > 0")
    if player["max_retries"] > MAX_RETRIES_LIMIT:
        raise ValueError(f"player.max_retries exceeds max {MAX_RETRIES_LIMIT}")
    try:
        speed = float(raw.get("speed", 1.0))
    except (TypeError, ValueError) as exc:
        raise ValueError("player.speed must be a number") from exc
    if speed <= 0:
        raise ValueError("player.speed must be > 0")
    player["speed"] = speed
    base_url = str(raw.get("base_url", "") or "").strip()
    if base_url and not base_url.startswith(("http://", "https://")):
        raise ValueError("player.base_url must start with http:// or https://")
    player["base_url"] = base_url
    return player


def validate_settings(settings: dict[str, Any]) -> dict[str, Any]:
    """Validate settings schema and normalize every section."""
    if not isinstance(settings, dict):
        raise ValueError("settings must be object")
    schema_version = settings.get("schema_version", SETTINGS_SCHEMA_V1)
    if schema_version != SETTINGS_SCHEMA_V1:
        raise ValueError("unsupported settings schema_version")
    return {
        "schema_version": SETTINGS_SCHEMA_V1,
        "recorder": _validate_recorder(settings.get("recorder")),
        "player": _validate_player(settings.get("player")),
    }


def load_settings(path: Path | None = None) -> dict[str, Any]:
    """Load settings from disk or return defaults."""
    path = path or default_settings_path()
    if not path.exists():
        return default_settings()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        return default_settings()
    if not isinstance(raw, dict):
        return default_settings()
    try:
        return validate_settings(raw)
    except ValueError:
        return default_settings()


def save_settings(settings: dict[str, Any], path: Path | None = None) -> dict[str, Any]:
    """Validate and persist settings to disk."""
    path = path or default_settings_path()
    validated = validate_settings(settings)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(validated, indent=2), encoding="utf-8")
    return validated


def set_setting(settings: dict[str, Any], dotted_key: str, raw_value: str) -> dict[str, Any]:
    """Return validated settings with `section.key` replaced by a parsed CLI value."""
    section, _, key = dotted_key.partition(".")
    if section not in {"recorder", "player"} or not key:
        raise ValueError("key must look like recorder.<name> or player.<name>")
    current = validate_settings(settings)
    if key not in current[section]:
        raise ValueError(f"unknown setting: {dotted_key}")
    try:
        value: Any = json.loads(raw_value)
    except json.JSONDecodeError:
        value = raw_value
    updated = {
        "schema_version": current["schema_version"],
        "recorder": dict(current["recorder"]),
        "player": dict(current["player"]),
    }
    updated[section][key] = value
    return validate_settings(updated)


@dataclass(frozen=True)
class RecorderSettings:
    idle_threshold_ms: int = 2000
    min_idle_duration_ms: int = 800
    stability_threshold_ms: int = 1500
    max_api_assertions: int = 2
    max_mutation_assertions: int = 3
    ignore_selectors: tuple[str, ...] = ()
    test_id_attribute: str = "data-testid"
    capture_clicks: bool = True
    capture_inputs: bool = True
    capture_keyboard: bool = True
    capture_scroll: bool = True
    capture_navigation: bool = True
    input_debounce_ms: int = 300
    scroll_debounce_ms: int = 150
    api_exclude_patterns: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> "RecorderSettings":
        recorder = validate_settings(settings)["recorder"]
        values = dict(recorder)
        values["ignore_selectors"] = tuple(recorder["ignore_selectors"])
        values["api_exclude_patterns"] = tuple(recorder["api_exclude_patterns"])
        return cls(**values)


@dataclass(frozen=True)
class PlayerOptions:
    default_timeout_ms: int = 30000
    step_delay_ms: int = 0
    speed: float = 1.0
    screenshot_on_failure: bool = True
    continue_on_failure: bool = False
    pause_on_failure: bool = False
    max_retries: int = 0
    base_url: str = ""
    headless: bool = True
    screenshot_dir: Path | None = field(default=None, compare=False)

    @classmethod
    def from_settings(cls, settings: dict[str, Any], **overrides: Any) -> "PlayerOptions":
        values = dict(validate_settings(settings)["player"])
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
