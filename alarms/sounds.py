from __future__ import annotations

import logging
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import List

import numpy as np

from .errors import PlaybackSourceUnavailable

logger = logging.getLogger(__name__)

SAMPLE_RATE = 24000


@dataclass(frozen=True)
class SoundSource:
    name: str
    path: Path

    def validate(self) -> None:
        if not self.path.exists():
            raise PlaybackSourceUnavailable(f"{self.name} sound missing at {self.path}")
        if not self.path.is_file() or self.path.stat().st_size == 0:
            raise PlaybackSourceUnavailable(f"{self.name} sound at {self.path} is empty")


def ensure_tone(
    path: Path,
    freq: float = 880.0,
    duration_seconds: float = 1.5,
    amplitude: float = 0.4,
    pulse_hz: float = 0.0,
) -> None:
    """Writes a mono 16-bit sine tone if the file is not there yet."""
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    t = np.arange(int(duration_seconds * SAMPLE_RATE)) / SAMPLE_RATE
    wave_data = amplitude * np.sin(2 * np.pi * freq * t)
    if pulse_hz > 0:
        # square gate gives the classic beep-beep alarm cadence
        wave_data = wave_data * (np.sin(2 * np.pi * pulse_hz * t) >= 0)
    frames = (wave_data * 32767).astype("<i2").tobytes()
    with wave.open(str(path), "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(SAMPLE_RATE)
        wav.writeframes(frames)
    logger.info("Generated tone at %s (%.0f Hz)", path, freq)


def ensure_platform_sounds(default_alarm_path: Path, notification_path: Path) -> None:
    ensure_tone(default_alarm_path, freq=880.0, duration_seconds=2.0, pulse_hz=2.0)
    ensure_tone(notification_path, freq=660.0, duration_seconds=0.6)


def build_sound_chain(custom_path: Path, default_alarm_path: Path, notification_path: Path) -> List[SoundSource]:
    """Configured sound first, then the platform alarm tone, then the notification tone."""
    return [
        SoundSource("configured", Path(custom_path)),
        SoundSource("default_alarm", Path(default_alarm_path)),
        SoundSource("default_notification", Path(notification_path)),
    ]
