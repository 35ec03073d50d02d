from __future__ import annotations

import hashlib
import logging
from enum import Enum
from typing import Callable, List, Optional, Tuple

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

from time_utils import datetime_to_millis, format_millis, millis_to_datetime

from .errors import PermissionDenied, RegistrationFailed
from .host import ExactAlarmGate, TimerCapabilities
from .storage import AlarmRecord

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "alarm-"


class WakeStrategy(Enum):
    EXACT_ALLOW_WHILE_IDLE = "exact_allow_while_idle"
    EXACT = "exact"
    INEXACT = "inexact"


# Strategies whose timers can fire late while the host is idle.
DEGRADED_STRATEGIES = frozenset({WakeStrategy.EXACT, WakeStrategy.INEXACT})


def select_strategy(capabilities: TimerCapabilities) -> WakeStrategy:
    if capabilities.supports_idle_exact:
        return WakeStrategy.EXACT_ALLOW_WHILE_IDLE
    if capabilities.supports_exact:
        return WakeStrategy.EXACT
    return WakeStrategy.INEXACT


def registration_token(alarm_id: str) -> str:
    """Stable across processes: same id always maps to the same timer slot."""
    digest = hashlib.sha256(alarm_id.encode("utf-8")).hexdigest()
    return f"{TOKEN_PREFIX}{digest[:16]}"


class TimerRegistrar:
    """Arms and cancels one scheduler job per alarm id.

    Never touches the schedule store; callers sequence store and timer work.
    """

    def __init__(
        self,
        scheduler: BaseScheduler,
        gate: ExactAlarmGate,
        capabilities: Optional[TimerCapabilities] = None,
        dispatch: Optional[Callable[[dict], None]] = None,
    ):
        self.scheduler = scheduler
        self.gate = gate
        self.capabilities = capabilities or TimerCapabilities()
        self._dispatch = dispatch

    def set_dispatch(self, dispatch: Callable[[dict], None]) -> None:
        self._dispatch = dispatch

    def arm(self, record: AlarmRecord) -> WakeStrategy:
        if not self.gate.can_schedule_exact():
            logger.error("Cannot arm alarm %s: exact alarm capability denied", record.id)
            raise PermissionDenied(f"Exact alarms are not permitted (alarm {record.id})")

        token = registration_token(record.id)
        strategy = select_strategy(self.capabilities)
        payload = {"eventKind": "fire", "id": record.id, "label": record.label}
        if not self.scheduler.running:
            # pending jobs are not deduplicated until the scheduler starts
            self.cancel(record.id)
        try:
            self.scheduler.add_job(
                self._fire,
                trigger=DateTrigger(run_date=millis_to_datetime(record.trigger_time_millis)),
                kwargs={"payload": payload},
                id=token,
                name=record.id,
                replace_existing=True,
                coalesce=True,
                misfire_grace_time=None,
            )
        except Exception as exc:
            logger.error("Scheduler rejected alarm %s", record.id, exc_info=True)
            raise RegistrationFailed(record.id, str(exc)) from exc
        if strategy in DEGRADED_STRATEGIES:
            logger.warning("Alarm %s armed with %s timer, it may fire late while the host is idle", record.id, strategy.value)
        logger.info(
            "Armed alarm %s for %s (strategy=%s, token=%s)",
            record.id,
            format_millis(record.trigger_time_millis),
            strategy.value,
            token,
        )
        return strategy

    def cancel(self, alarm_id: str) -> bool:
        token = registration_token(alarm_id)
        try:
            self.scheduler.remove_job(token)
        except JobLookupError:
            logger.debug("No armed timer for alarm %s", alarm_id)
            return False
        logger.info("Cancelled timer for alarm %s", alarm_id)
        return True

    def is_armed(self, alarm_id: str) -> bool:
        return self.scheduler.get_job(registration_token(alarm_id)) is not None

    def armed(self) -> List[Tuple[str, Optional[int]]]:
        """(alarm id, next fire millis) for every armed timer, soonest first."""
        entries = []
        for job in self.scheduler.get_jobs():
            if not job.id.startswith(TOKEN_PREFIX):
                continue
            run_time = getattr(job, "next_run_time", None)
            if run_time is None:
                run_time = job.trigger.run_date
            entries.append((job.name, datetime_to_millis(run_time)))
        return sorted(entries, key=lambda e: e[1])

    def _fire(self, payload: dict) -> None:
        if not self._dispatch:
            logger.error("Alarm %s fired with no listener attached", payload.get("id"))
            return
        self._dispatch(payload)
