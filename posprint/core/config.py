"""
Config utilities for posprint.

Responsibilities:
- Resolve config/data paths with environment and XDG support
- Provide JSON load/save helpers for the settings store
- Validate stored values into PrintSettings, the plain-value snapshot handed to
  the dispatcher at submit time
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


def default_config_path() -> str:
    """
    Resolve the default config path using:
    1) $XDG_CONFIG_HOME/posprint/config.json
    2) ~/.config/posprint/config.json
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return str(Path(xdg) / "posprint" / "config.json")
    return str(Path.home() / ".config" / "posprint" / "config.json")


def default_export_path() -> str:
    """
    Resolve the default PDF export directory using:
    1) $XDG_DATA_HOME/posprint/exports
    2) ~/.local/share/posprint/exports
    """
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return str(Path(xdg) / "posprint" / "exports")
    return str(Path.home() / ".local" / "share" / "posprint" / "exports")


def get_config_path() -> str:
    """
    Return the config path honoring POSPRINT_CONFIG_PATH override.
    """
    return os.environ.get("POSPRINT_CONFIG_PATH", default_config_path())


def ensure_dir(path: str) -> str:
    Path(path).mkdir(parents=True, exist_ok=True)
    return path


def load_config(path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Load the JSON config if it exists; return None if missing.

    Raises:
        json.JSONDecodeError if the file exists but contains invalid JSON.
        OSError for I/O errors other than missing file.
    """
    cfg_path = Path(path or get_config_path())
    if not cfg_path.exists():
        return None
    with cfg_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def save_config(data: Dict[str, Any], path: Optional[str] = None) -> None:
    """
    Save the JSON config, creating parent directories as needed.

    Writes atomically by using a temporary file and os.replace().
    Raises OSError on I/O failures.
    """
    cfg_path = Path(path or get_config_path())
    cfg_path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = cfg_path.with_suffix(cfg_path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, cfg_path)


class PrintSettings(BaseModel):
    """Settings owned by the external store and read by the core as plain values."""

    default_receipt_device: Optional[str] = Field(default=None, description="Device used for receipts and drawer pulses")
    default_label_device: Optional[str] = Field(default=None, description="Device used for labels and barcodes")
    auto_cut: bool = True
    auto_open_drawer: bool = False

    thermal_overrides: Dict[str, bool] = Field(default_factory=dict)

    receipt_columns: int = Field(default=42, ge=16, le=96)
    label_columns: int = Field(default=32, ge=16, le=96)
    device_columns: Dict[str, int] = Field(default_factory=dict)

    code_page: str = "cp437"
    device_code_pages: Dict[str, str] = Field(default_factory=dict)

    attempt_timeout_seconds: float = 10.0
    max_attempts_per_transport: int = Field(default=2, ge=1, le=5)
    retry_backoff_seconds: float = Field(default=0.3, ge=0.0, le=5.0)

    drawer_pin: int = 2
    drawer_on_ms: int = Field(default=50, ge=0, le=510)
    drawer_off_ms: int = Field(default=100, ge=0, le=510)

    pdf_export_dir: str = Field(default_factory=default_export_path)
    serial_baudrate: int = 19200

    @field_validator("default_receipt_device", "default_label_device")
    @classmethod
    def _blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        v = (v or "").strip()
        return v or None

    @field_validator("attempt_timeout_seconds")
    @classmethod
    def _clamp_timeout(cls, v: float) -> float:
        return max(1.0, min(60.0, float(v)))

    @field_validator("drawer_pin")
    @classmethod
    def _pin(cls, v: int) -> int:
        if v not in (2, 5):
            raise ValueError("drawer_pin must be 2 or 5")
        return v

    @field_validator("drawer_on_ms", "drawer_off_ms")
    @classmethod
    def _pulse_unit(cls, v: int) -> int:
        return v - v % 2

    @field_validator("code_page")
    @classmethod
    def _code_page(cls, v: str) -> str:
        return (v or "cp437").strip().lower()

    def columns_for(self, device_name: Optional[str], label: bool = False) -> int:
        if device_name and device_name in self.device_columns:
            return int(self.device_columns[device_name])
        return self.label_columns if label else self.receipt_columns

    def code_page_for(self, device_name: Optional[str]) -> str:
        if device_name and device_name in self.device_code_pages:
            return self.device_code_pages[device_name].strip().lower()
        return self.code_page


def load_settings(path: Optional[str] = None) -> PrintSettings:
    """
    Load and validate settings. A missing file yields the defaults.
    """
    data = load_config(path) or {}
    return PrintSettings.model_validate(data)


def save_settings(settings: PrintSettings, path: Optional[str] = None) -> None:
    save_config(settings.model_dump(), path)


__all__ = [
    "PrintSettings",
    "default_config_path",
    "default_export_path",
    "ensure_dir",
    "get_config_path",
    "load_config",
    "load_settings",
    "save_config",
    "save_settings",
]
