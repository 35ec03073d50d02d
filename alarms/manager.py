from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from threading import Lock
from typing import Dict, Iterator, List, Optional, Tuple

from time_utils import DAY_MS, Clock, format_millis, next_occurrence_millis, now_millis

from .errors import InvalidTime, PermissionDenied
from .host import ExactAlarmGate
from .registrar import TimerRegistrar
from .session import PlaybackSession
from .storage import DEFAULT_LABEL, AlarmRecord, ScheduleStore

logger = logging.getLogger(__name__)

TEST_ALARM_DELAY_MS = 10_000


class ScheduleOutcome(Enum):
    SCHEDULED = "scheduled"
    DISABLED = "disabled"


class AlarmManager:
    """Public scheduling surface: persist first, then arm."""

    def __init__(
        self,
        store: ScheduleStore,
        registrar: TimerRegistrar,
        gate: ExactAlarmGate,
        session: Optional[PlaybackSession] = None,
        clock: Clock = now_millis,
        max_horizon_days: int = 365,
        tzinfo=None,
    ):
        self.store = store
        self.registrar = registrar
        self.gate = gate
        self.session = session
        self.clock = clock
        self.max_horizon_ms = max(1, max_horizon_days) * DAY_MS
        self.tzinfo = tzinfo

        self._locks_guard = Lock()
        # alarm id -> (lock, number of callers holding or waiting on it)
        self._id_locks: Dict[str, Tuple[Lock, int]] = {}

    @contextmanager
    def _serialized(self, alarm_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock, users = self._id_locks.get(alarm_id, (None, 0))
            if lock is None:
                lock = Lock()
            self._id_locks[alarm_id] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                lock, users = self._id_locks[alarm_id]
                if users <= 1:
                    del self._id_locks[alarm_id]
                else:
                    self._id_locks[alarm_id] = (lock, users - 1)

    def schedule(self, record: AlarmRecord) -> ScheduleOutcome:
        if not record.id:
            raise ValueError("Alarm id is required")
        now = self.clock()
        if record.trigger_time_millis <= now:
            raise InvalidTime("Alarm time must be in the future")
        if record.trigger_time_millis > now + self.max_horizon_ms:
            raise InvalidTime("Alarm time is too far in the future")

        with self._serialized(record.id):
            if not record.enabled:
                self.store.put(record)
                self.registrar.cancel(record.id)
                logger.info("Alarm %s saved disabled", record.id)
                return ScheduleOutcome.DISABLED

            if not self.gate.can_schedule_exact():
                logger.error("Cannot schedule alarm %s: exact alarm capability denied", record.id)
                raise PermissionDenied("Exact alarms are not permitted")

            previous = self.store.get(record.id)
            self.store.put(record)
            try:
                self.registrar.arm(record)
            except PermissionDenied:
                # capability revoked after the gate check; undo the write
                if previous is None:
                    self.store.remove(record.id)
                else:
                    self.store.put(previous)
                raise
        logger.info(
            "Alarm %s scheduled for %s (label=%s)",
            record.id,
            format_millis(record.trigger_time_millis, self.tzinfo),
            record.label,
        )
        return ScheduleOutcome.SCHEDULED

    def schedule_for_time(self, alarm_id: str, hour: int, minute: int, label: str = DEFAULT_LABEL) -> AlarmRecord:
        trigger = next_occurrence_millis(hour, minute, self.clock(), self.tzinfo)
        record = AlarmRecord(id=alarm_id, trigger_time_millis=trigger, label=label or DEFAULT_LABEL)
        self.schedule(record)
        return record

    def test_alarm(self) -> AlarmRecord:
        now = self.clock()
        record = AlarmRecord(
            id=f"test_alarm_{now}",
            trigger_time_millis=now + TEST_ALARM_DELAY_MS,
            label="Test Alarm",
        )
        self.schedule(record)
        logger.info("Test alarm scheduled in %ss", TEST_ALARM_DELAY_MS // 1000)
        return record

    def cancel(self, alarm_id: str) -> None:
        with self._serialized(alarm_id):
            self.registrar.cancel(alarm_id)
            removed = self.store.remove(alarm_id)
        if removed:
            logger.info("Alarm %s cancelled", alarm_id)

    def list_all(self) -> List[AlarmRecord]:
        return self.store.list_all()

    def next_alarm(self) -> Optional[AlarmRecord]:
        for alarm_id, _ in self.registrar.armed():
            record = self.store.get(alarm_id)
            if record is not None:
                return record
        return None

    def can_schedule_exact(self) -> bool:
        return self.gate.can_schedule_exact()

    def request_exact_alarm_capability(self) -> None:
        self.gate.request()

    def dismiss(self) -> Optional[str]:
        if not self.session:
            return None
        return self.session.dismiss()

    def snooze(self) -> Optional[AlarmRecord]:
        if not self.session:
            return None
        return self.session.snooze()

    @property
    def is_ringing(self) -> bool:
        return self.ringing_alarm_id is not None

    @property
    def ringing_alarm_id(self) -> Optional[str]:
        if not self.session:
            return None
        return self.session.active_alarm_id
