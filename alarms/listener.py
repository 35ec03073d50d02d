from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from time_utils import Clock, format_millis, now_millis

from .errors import AlarmError
from .host import PowerManager, RingingScreen, WakeReservation
from .registrar import TimerRegistrar
from .session import PlaybackSession
from .storage import DEFAULT_LABEL, ScheduleStore

logger = logging.getLogger(__name__)

TRIGGER_WAKE_TAG = "autorise:trigger"


class EventKind(Enum):
    FIRE = "fire"
    RESTART = "restart"


# Host boot and app-upgrade notifications are handled like a restart.
_KIND_ALIASES = {
    "fire": EventKind.FIRE,
    "alarm_trigger": EventKind.FIRE,
    "restart": EventKind.RESTART,
    "boot_completed": EventKind.RESTART,
    "package_replaced": EventKind.RESTART,
}


@dataclass(frozen=True)
class TriggerEvent:
    kind: EventKind
    alarm_id: Optional[str] = None
    label: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "TriggerEvent":
        raw_kind = str(payload.get("eventKind") or "").strip().lower()
        kind = _KIND_ALIASES.get(raw_kind)
        if kind is None:
            raise ValueError(f"Unknown event kind: {raw_kind!r}")
        alarm_id = payload.get("id")
        label = payload.get("label")
        return cls(
            kind=kind,
            alarm_id=str(alarm_id) if alarm_id else None,
            label=str(label) if label else None,
        )


class TriggerListener:
    """Entry point for timer fires and host restart notifications.

    Nothing raised here escapes, and the trigger wake reservation is
    released on every path.
    """

    def __init__(
        self,
        store: ScheduleStore,
        registrar: TimerRegistrar,
        session: PlaybackSession,
        power: PowerManager,
        ringing_screen: Optional[RingingScreen] = None,
        clock: Clock = now_millis,
        trigger_wake_ms: int = 60_000,
        purge_past_due: bool = False,
    ):
        self.store = store
        self.registrar = registrar
        self.session = session
        self.power = power
        self.ringing_screen = ringing_screen
        self.clock = clock
        self.trigger_wake_ms = trigger_wake_ms
        self.purge_past_due = purge_past_due

    def handle(self, event: Union[TriggerEvent, dict]) -> None:
        """Holds the trigger wake reservation from before decoding until the event is handled."""
        wake = self._acquire_trigger_wake()
        try:
            try:
                if isinstance(event, dict):
                    event = TriggerEvent.from_payload(event)
            except (TypeError, ValueError, AttributeError) as exc:
                logger.warning("Ignoring trigger payload %r: %s", event, exc)
                return

            if event.kind is EventKind.FIRE:
                self._deliver_fire(event)
            else:
                try:
                    self.on_restart()
                except Exception:
                    logger.error("Restart recovery failed", exc_info=True)
        finally:
            wake.release()

    def on_fire(self, event: TriggerEvent) -> None:
        wake = self._acquire_trigger_wake()
        try:
            self._deliver_fire(event)
        finally:
            wake.release()

    def _acquire_trigger_wake(self) -> WakeReservation:
        wake = self.power.new_wake_reservation(TRIGGER_WAKE_TAG)
        wake.acquire(self.trigger_wake_ms)
        return wake

    def _deliver_fire(self, event: TriggerEvent) -> None:
        try:
            alarm_id = event.alarm_id
            if not alarm_id:
                raise ValueError("fire event without an alarm id")
            label = event.label or DEFAULT_LABEL
            logger.info("Alarm %s fired (%s)", alarm_id, label)
            self.session.start(alarm_id, label)
            if self.ringing_screen is not None:
                self.ringing_screen.show(alarm_id, label)
        except Exception:
            logger.error("Failed to handle alarm fire %s", event.alarm_id, exc_info=True)

    def on_restart(self) -> int:
        logger.info("Host restarted, restoring alarms...")
        now = self.clock()
        restored = 0
        past_due = []
        for record in self.store.list_all():
            if not record.enabled:
                continue
            if record.trigger_time_millis <= now:
                past_due.append(record)
                continue
            try:
                self.registrar.arm(record)
            except AlarmError as exc:
                logger.error("Could not restore alarm %s: %s", record.id, exc)
                continue
            restored += 1
            logger.debug("Restored alarm %s for %s", record.id, format_millis(record.trigger_time_millis))

        for record in past_due:
            if self.purge_past_due:
                self.store.remove(record.id)
                logger.info("Purged past-due alarm %s (%s)", record.id, format_millis(record.trigger_time_millis))
            else:
                logger.info("Skipping past-due alarm %s (%s)", record.id, format_millis(record.trigger_time_millis))

        logger.info("Restored %s alarms after restart", restored)
        return restored
