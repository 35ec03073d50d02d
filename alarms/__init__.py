"""Alarm scheduling, trigger delivery and ringing sessions."""

from .errors import AlarmError, InvalidTime, PermissionDenied, PlaybackSourceUnavailable, RegistrationFailed, StoreCorrupt
from .listener import EventKind, TriggerEvent, TriggerListener
from .manager import AlarmManager, ScheduleOutcome
from .registrar import TimerRegistrar, WakeStrategy, registration_token
from .session import PlaybackSession, SessionState
from .storage import AlarmRecord, ScheduleStore
