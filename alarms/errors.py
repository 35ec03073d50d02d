from __future__ import annotations


class AlarmError(Exception):
    """Base class for alarm subsystem failures."""


class InvalidTime(AlarmError):
    """Trigger time is not in the future (or too far ahead)."""


class PermissionDenied(AlarmError):
    """The host withheld the exact-alarm capability."""


class StoreCorrupt(AlarmError):
    """Persisted alarm data could not be decoded."""


class PlaybackSourceUnavailable(AlarmError):
    """A sound source is missing or cannot be played."""


class RegistrationFailed(AlarmError):
    """The timer authority rejected a registration.

    The record stays persisted but unarmed, so a retry or the next restart
    recovery can arm it again.
    """

    def __init__(self, alarm_id: str, reason: str):
        super().__init__(f"Failed to arm alarm {alarm_id}: {reason}")
        self.alarm_id = alarm_id
        self.reason = reason
