import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _get_env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _get_env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return float(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


@dataclass
class Config:
    alarms_path: Path
    alarm_store_key: str
    alarm_sound_path: Path
    default_alarm_sound_path: Path
    notification_sound_path: Path
    snooze_minutes: int
    trigger_wake_ms: int
    session_wake_ms: int
    ready_timeout_s: float
    purge_past_due: bool
    exact_alarms_allowed: bool
    supports_idle_exact: bool
    supports_exact: bool
    has_vibrator: bool
    max_horizon_days: int
    output_device_index: Optional[int]
    log_level: str


def load_config(env_path: Optional[Path] = None) -> Config:
    if env_path is None:
        env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    alarms_path = Path(os.getenv("ALARM_STORAGE_PATH", "data/alarm_prefs.json"))
    alarm_store_key = os.getenv("ALARM_STORE_KEY", "stored_alarms")
    alarm_sound_path = Path(os.getenv("ALARM_SOUND_PATH", "data/alarm_default.wav"))
    default_alarm_sound_path = Path(os.getenv("ALARM_DEFAULT_SOUND_PATH", "data/system_alarm.wav"))
    notification_sound_path = Path(os.getenv("ALARM_NOTIFICATION_SOUND_PATH", "data/system_notification.wav"))
    snooze_minutes = _get_env_int("ALARM_SNOOZE_MIN", 5)
    if snooze_minutes < 1:
        raise ValueError("ALARM_SNOOZE_MIN must be at least 1")
    trigger_wake_ms = _get_env_int("ALARM_TRIGGER_WAKE_MS", 60_000)
    session_wake_ms = _get_env_int("ALARM_SESSION_WAKE_MS", 10 * 60_000)
    ready_timeout_s = _get_env_float("ALARM_READY_TIMEOUT_MS", 5000.0) / 1000.0
    purge_past_due = _get_env_bool("ALARM_PURGE_PAST_DUE", False)
    exact_alarms_allowed = _get_env_bool("ALARM_EXACT_ALLOWED", True)
    supports_idle_exact = _get_env_bool("ALARM_SUPPORTS_IDLE_EXACT", True)
    supports_exact = _get_env_bool("ALARM_SUPPORTS_EXACT", True)
    has_vibrator = _get_env_bool("ALARM_HAS_VIBRATOR", False)
    max_horizon_days = _get_env_int("ALARM_MAX_HORIZON_DAYS", 365)
    output_device_env = os.getenv("OUTPUT_DEVICE_INDEX")
    output_device_index = int(output_device_env) if output_device_env else None
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    return Config(
        alarms_path=alarms_path,
        alarm_store_key=alarm_store_key,
        alarm_sound_path=alarm_sound_path,
        default_alarm_sound_path=default_alarm_sound_path,
        notification_sound_path=notification_sound_path,
        snooze_minutes=snooze_minutes,
        trigger_wake_ms=trigger_wake_ms,
        session_wake_ms=session_wake_ms,
        ready_timeout_s=ready_timeout_s,
        purge_past_due=purge_past_due,
        exact_alarms_allowed=exact_alarms_allowed,
        supports_idle_exact=supports_idle_exact,
        supports_exact=supports_exact,
        has_vibrator=has_vibrator,
        max_horizon_days=max_horizon_days,
        output_device_index=output_device_index,
        log_level=log_level,
    )


def setup_logging(log_level: str = "INFO") -> None:
    logs_dir = Path("logs")
    logs_dir.mkdir(exist_ok=True)

    log_path = logs_dir / "autorise.log"
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        handlers=[file_handler, console_handler],
    )
