import json
import logging
import os

import pytest
from pydantic import ValidationError

from posprint.core.config import (
    PrintSettings,
    default_config_path,
    default_export_path,
    get_config_path,
    load_config,
    load_settings,
    save_config,
    save_settings,
)
from posprint.core.logging import JsonFormatter, RequestIdFilter, configure_logging


def test_missing_config_yields_defaults():
    assert load_config() is None
    settings = load_settings()
    assert settings.default_receipt_device is None
    assert settings.auto_cut is True
    assert settings.receipt_columns == 42
    assert settings.max_attempts_per_transport == 2


def test_save_and_load_settings(tmp_path):
    settings = PrintSettings(
        default_receipt_device=" POS-80 ",
        thermal_overrides={"Office Laser": False},
        device_columns={"POS-58": 32},
        device_code_pages={"POS-58": "CP858"},
    )
    save_settings(settings)
    assert not os.path.exists(get_config_path() + ".tmp")

    loaded = load_settings()
    assert loaded == settings
    assert loaded.default_receipt_device == "POS-80"
    assert loaded.columns_for("POS-58") == 32
    assert loaded.columns_for("POS-80") == 42
    assert loaded.columns_for(None, label=True) == 32
    assert loaded.code_page_for("POS-58") == "cp858"
    assert loaded.code_page_for("POS-80") == "cp437"


def test_config_path_resolution(monkeypatch, tmp_path):
    assert get_config_path() == os.environ["POSPRINT_CONFIG_PATH"]
    monkeypatch.delenv("POSPRINT_CONFIG_PATH")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    assert get_config_path() == str(tmp_path / "cfg" / "posprint" / "config.json")
    assert default_config_path() == get_config_path()
    assert default_export_path() == os.path.join(os.environ["XDG_DATA_HOME"], "posprint", "exports")


def test_save_config_creates_parents(tmp_path):
    path = tmp_path / "nested" / "dir" / "config.json"
    save_config({"auto_cut": False}, str(path))
    assert json.loads(path.read_text()) == {"auto_cut": False}
    assert load_settings(str(path)).auto_cut is False


def test_invalid_json_raises(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_value_rules():
    assert PrintSettings(attempt_timeout_seconds=0.01).attempt_timeout_seconds == 1.0
    assert PrintSettings(attempt_timeout_seconds=600).attempt_timeout_seconds == 60.0
    assert PrintSettings(default_label_device="   ").default_label_device is None
    assert PrintSettings(code_page=" CP1252 ").code_page == "cp1252"
    assert PrintSettings(drawer_on_ms=25, drawer_off_ms=101).drawer_on_ms == 24
    assert PrintSettings(drawer_off_ms=101).drawer_off_ms == 100
    with pytest.raises(ValidationError):
        PrintSettings(drawer_pin=3)
    with pytest.raises(ValidationError):
        PrintSettings(receipt_columns=8)
    with pytest.raises(ValidationError):
        PrintSettings(max_attempts_per_transport=0)


# Logging


def _record(msg="hello"):
    return logging.LogRecord("posprint.test", logging.INFO, __file__, 1, msg, (), None)


def test_request_id_filter_outside_request():
    record = _record()
    assert RequestIdFilter().filter(record) is True
    assert record.request_id == "-" and record.path == "-"


def test_json_formatter():
    record = _record("printed %s")
    record.args = ("job-1",)
    RequestIdFilter().filter(record)
    data = json.loads(JsonFormatter().format(record))
    assert data["msg"] == "printed job-1"
    assert data["level"] == "INFO"
    assert data["logger"] == "posprint.test"
    assert data["request_id"] == "-"


def test_configure_logging_replaces_handlers(monkeypatch):
    monkeypatch.setenv("POSPRINT_JSON_LOGS", "true")
    root = configure_logging()
    root = configure_logging()
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JsonFormatter)
    monkeypatch.setenv("POSPRINT_JSON_LOGS", "false")
    assert not isinstance(configure_logging().handlers[0].formatter, JsonFormatter)
