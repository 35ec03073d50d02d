"""Host platform primitives used by the alarm subsystem.

These stand in for the services an operating system brokers to an alarm
app: the exact-alarm capability gate, CPU wake reservations with a hard
platform timeout, audio focus, the vibrator, the notification shade and the
ringing screen. Each is a small in-process object so the daemon can run on a
desktop host and tests can inspect the state directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Event, Lock, Thread, Timer
from typing import Callable, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimerCapabilities:
    supports_idle_exact: bool = True
    supports_exact: bool = True


class ExactAlarmGate:
    """May this process schedule exact, idle-bypassing wake-ups right now?"""

    def __init__(self, allowed: bool = True, on_request: Optional[Callable[["ExactAlarmGate"], None]] = None):
        self._allowed = allowed
        self._on_request = on_request
        self._lock = Lock()

    def can_schedule_exact(self) -> bool:
        with self._lock:
            return self._allowed

    def set_allowed(self, allowed: bool) -> None:
        with self._lock:
            changed = self._allowed != allowed
            self._allowed = allowed
        if changed:
            logger.info("Exact alarm capability %s", "granted" if allowed else "revoked")

    def request(self) -> None:
        """Fire-and-forget; the outcome is observed through can_schedule_exact()."""
        if self.can_schedule_exact():
            logger.debug("Exact alarm capability already granted")
            return
        logger.info("Requesting exact alarm capability")
        if self._on_request:
            try:
                self._on_request(self)
            except Exception:
                logger.error("Exact alarm capability request failed", exc_info=True)


class WakeReservation:
    """Exclusive hold that keeps the process awake for a bounded time.

    The timer enforces the platform's hard timeout; callers are expected to
    release well before it fires.
    """

    def __init__(self, tag: str, owner: "PowerManager"):
        self.tag = tag
        self._owner = owner
        self._lock = Lock()
        self._held = False
        self._expired = False
        self._timer: Optional[Timer] = None

    def acquire(self, timeout_ms: int) -> None:
        with self._lock:
            if self._held:
                return
            self._held = True
            self._expired = False
            self._timer = Timer(timeout_ms / 1000.0, self._expire)
            self._timer.daemon = True
            self._timer.start()
        self._owner._track(self)
        logger.debug("Wake reservation %s acquired (timeout=%sms)", self.tag, timeout_ms)

    def release(self) -> None:
        with self._lock:
            if not self._held:
                return
            self._held = False
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        self._owner._untrack(self)
        logger.debug("Wake reservation %s released", self.tag)

    def _expire(self) -> None:
        with self._lock:
            if not self._held:
                return
            self._held = False
            self._expired = True
            self._timer = None
        self._owner._untrack(self)
        logger.warning("Wake reservation %s hit its platform timeout", self.tag)

    @property
    def is_held(self) -> bool:
        with self._lock:
            return self._held

    @property
    def expired(self) -> bool:
        with self._lock:
            return self._expired


class PowerManager:
    def __init__(self) -> None:
        self._lock = Lock()
        self._active: List[WakeReservation] = []

    def new_wake_reservation(self, tag: str) -> WakeReservation:
        return WakeReservation(tag, self)

    def held_tags(self) -> List[str]:
        with self._lock:
            return [r.tag for r in self._active]

    def _track(self, reservation: WakeReservation) -> None:
        with self._lock:
            self._active.append(reservation)

    def _untrack(self, reservation: WakeReservation) -> None:
        with self._lock:
            if reservation in self._active:
                self._active.remove(reservation)


class AudioFocusManager:
    """Single-holder arbiter for audio output priority."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._holder: Optional[str] = None
        self._blocked = False

    def set_blocked(self, blocked: bool) -> None:
        """Simulates a higher-priority holder such as an active call."""
        with self._lock:
            self._blocked = blocked

    def request(self, owner: str, usage: str = "alarm") -> bool:
        with self._lock:
            if self._blocked:
                logger.info("Audio focus denied to %s (usage=%s)", owner, usage)
                return False
            if self._holder and self._holder != owner:
                logger.info("Audio focus moves from %s to %s", self._holder, owner)
            self._holder = owner
            return True

    def abandon(self, owner: str) -> None:
        with self._lock:
            if self._holder == owner:
                self._holder = None

    @property
    def holder(self) -> Optional[str]:
        with self._lock:
            return self._holder


class Vibrator:
    """Plays an on/off waveform (milliseconds) until cancelled."""

    def __init__(self, available: bool = False, actuator: Optional[Callable[[bool], None]] = None):
        self.available = available
        self._actuator = actuator
        self._stop_event = Event()
        self._thread: Optional[Thread] = None
        self.pattern: Tuple[int, ...] = ()

    @property
    def has_vibrator(self) -> bool:
        return self.available

    @property
    def is_vibrating(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def vibrate(self, pattern: Sequence[int], repeat: int = -1) -> None:
        if not self.available:
            return
        self.cancel()
        self.pattern = tuple(pattern)
        self._stop_event.clear()
        self._thread = Thread(target=self._run, args=(self.pattern, repeat), name="alarm-vibrate", daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=1)
        self._set(False)

    def _run(self, pattern: Tuple[int, ...], repeat: int) -> None:
        index = 0
        while index < len(pattern) and not self._stop_event.is_set():
            # even slots are off-time, odd slots are on-time
            self._set(index % 2 == 1)
            if self._stop_event.wait(pattern[index] / 1000.0):
                break
            index += 1
            if index >= len(pattern) and repeat >= 0:
                index = repeat
        self._set(False)

    def _set(self, on: bool) -> None:
        if self._actuator:
            self._actuator(on)


@dataclass(frozen=True)
class Notification:
    notification_id: int
    title: str
    text: str
    category: str = "alarm"
    priority: str = "max"
    ongoing: bool = True
    actions: Tuple[str, ...] = ()
    full_screen: Dict[str, str] = field(default_factory=dict)


class NotificationCenter:
    def __init__(self) -> None:
        self._lock = Lock()
        self._posted: Dict[int, Notification] = {}

    def post(self, notification: Notification) -> None:
        with self._lock:
            self._posted[notification.notification_id] = notification
        logger.info("Notification posted: %s - %s", notification.title, notification.text)

    def cancel(self, notification_id: int) -> None:
        with self._lock:
            removed = self._posted.pop(notification_id, None)
        if removed:
            logger.debug("Notification %s cleared", notification_id)

    def active(self) -> List[Notification]:
        with self._lock:
            return list(self._posted.values())


class RingingScreen:
    """Presentation collaborator; the default just records and logs the request."""

    def __init__(self) -> None:
        self.last_shown: Optional[Tuple[str, str]] = None

    def show(self, alarm_id: str, label: str) -> None:
        self.last_shown = (alarm_id, label)
        logger.info("Ringing screen requested for %s (%s)", alarm_id, label)
