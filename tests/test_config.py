from pathlib import Path

import pytest

from config import load_config

_KEYS = (
    "ALARM_STORAGE_PATH",
    "ALARM_SNOOZE_MIN",
    "ALARM_PURGE_PAST_DUE",
    "ALARM_READY_TIMEOUT_MS",
    "ALARM_SUPPORTS_IDLE_EXACT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    # setenv first so values written by load_dotenv are undone after each test
    for key in _KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


def test_defaults(tmp_path):
    config = load_config(tmp_path / "missing.env")
    assert config.alarms_path == Path("data/alarm_prefs.json")
    assert config.alarm_store_key == "stored_alarms"
    assert config.snooze_minutes == 5
    assert config.trigger_wake_ms == 60_000
    assert config.session_wake_ms == 600_000
    assert config.purge_past_due is False


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("ALARM_SNOOZE_MIN", "9")
    monkeypatch.setenv("ALARM_PURGE_PAST_DUE", "yes")
    monkeypatch.setenv("ALARM_READY_TIMEOUT_MS", "1500")
    monkeypatch.setenv("ALARM_SUPPORTS_IDLE_EXACT", "0")
    config = load_config(tmp_path / "missing.env")
    assert config.snooze_minutes == 9
    assert config.purge_past_due is True
    assert config.ready_timeout_s == 1.5
    assert config.supports_idle_exact is False


def test_dotenv_file_is_loaded(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("ALARM_STORAGE_PATH=custom/alarms.json\n", encoding="utf-8")
    config = load_config(env_file)
    assert config.alarms_path == Path("custom/alarms.json")


def test_bad_integer_names_variable(tmp_path, monkeypatch):
    monkeypatch.setenv("ALARM_SNOOZE_MIN", "soon")
    with pytest.raises(ValueError, match="ALARM_SNOOZE_MIN"):
        load_config(tmp_path / "missing.env")
