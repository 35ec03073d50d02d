"""Playback session: the single owner of ringing resources.

States run Idle -> Starting -> Ringing -> Stopping -> Idle. A start for a
different alarm while one is active tears the old one down synchronously
first, so two sets of resources are never held at once.
"""

from __future__ import annotations

import logging
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from threading import RLock, Thread
from typing import Callable, List, Optional, Sequence, Tuple

from time_utils import MINUTE_MS, Clock, now_millis

from .errors import PlaybackSourceUnavailable
from .host import AudioFocusManager, Notification, NotificationCenter, PowerManager, Vibrator, WakeReservation
from .sounds import SoundSource
from .storage import DEFAULT_LABEL, AlarmRecord

logger = logging.getLogger(__name__)

NOTIFICATION_ID = 1001
NOTIFICATION_TITLE = "AutoRise Alarm"
VIBRATION_PATTERN = (0, 1000, 500, 1000, 500, 1000)
SNOOZE_ID_MARKER = "_snooze_"
SNOOZE_LABEL_MARKER = " (Snoozed)"


class SessionState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RINGING = "ringing"
    STOPPING = "stopping"


@dataclass
class _ActiveSession:
    """Resource handle for the one alarm currently owning playback."""

    generation: int
    alarm_id: str
    label: str
    wake: WakeReservation
    engine: object = None
    focus_owner: Optional[str] = None
    source_index: int = -1
    vibrating: bool = False
    notified: bool = False


def snooze_record(alarm_id: str, label: str, now_ms: int, snooze_minutes: int) -> AlarmRecord:
    if not label.endswith(SNOOZE_LABEL_MARKER):
        label = label + SNOOZE_LABEL_MARKER
    return AlarmRecord(
        id=f"{alarm_id}{SNOOZE_ID_MARKER}{now_ms}",
        trigger_time_millis=now_ms + snooze_minutes * MINUTE_MS,
        label=label,
        enabled=True,
    )


class PlaybackSession:
    def __init__(
        self,
        power: PowerManager,
        audio_focus: AudioFocusManager,
        vibrator: Vibrator,
        notifications: NotificationCenter,
        engine_factory: Callable[[], object],
        sound_sources: Sequence[SoundSource],
        session_wake_ms: int = 10 * MINUTE_MS,
        ready_timeout_s: float = 5.0,
        snooze_minutes: int = 5,
        clock: Clock = now_millis,
        rescheduler: Optional[Callable[[AlarmRecord], object]] = None,
    ):
        self.power = power
        self.audio_focus = audio_focus
        self.vibrator = vibrator
        self.notifications = notifications
        self.engine_factory = engine_factory
        self.sound_sources = list(sound_sources)
        self.session_wake_ms = session_wake_ms
        self.ready_timeout_s = ready_timeout_s
        self.snooze_minutes = max(1, snooze_minutes)
        self.clock = clock
        self._rescheduler = rescheduler

        self._lock = RLock()
        self._state = SessionState.IDLE
        self._active: Optional[_ActiveSession] = None
        self._generation = 0

    def set_rescheduler(self, rescheduler: Callable[[AlarmRecord], object]) -> None:
        self._rescheduler = rescheduler

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def active_alarm_id(self) -> Optional[str]:
        with self._lock:
            return self._active.alarm_id if self._active else None

    @property
    def active_label(self) -> Optional[str]:
        with self._lock:
            return self._active.label if self._active else None

    @property
    def active_source(self) -> Optional[str]:
        with self._lock:
            if not self._active or self._active.source_index < 0:
                return None
            return self.sound_sources[self._active.source_index].name

    def start(self, alarm_id: str, label: Optional[str] = None) -> SessionState:
        label = label or DEFAULT_LABEL
        with self._lock:
            if self._active is not None:
                if self._active.alarm_id == alarm_id and self._state in (SessionState.STARTING, SessionState.RINGING):
                    logger.info("Alarm %s is already %s", alarm_id, self._state.value)
                    return self._state
                logger.info("Alarm %s supersedes ringing alarm %s", alarm_id, self._active.alarm_id)
                self._teardown_locked("superseded")

            self._generation += 1
            session = _ActiveSession(
                generation=self._generation,
                alarm_id=alarm_id,
                label=label,
                wake=self.power.new_wake_reservation(f"autorise:session:{alarm_id}"),
            )
            self._active = session
            self._state = SessionState.STARTING
            logger.info("Session starting for alarm %s (%s)", alarm_id, label)

            session.wake.acquire(self.session_wake_ms)
            session.focus_owner = f"alarm:{alarm_id}"
            if not self.audio_focus.request(session.focus_owner, usage="alarm"):
                logger.warning("Audio focus not granted, playing anyway (alarm priority)")
            try:
                session.engine = self.engine_factory()
                session.engine.set_error_listener(lambda exc, gen=session.generation: self._on_engine_error(gen, exc))
            except Exception:
                logger.error("Could not create audio engine for alarm %s", alarm_id, exc_info=True)
                session.engine = None

        audio_ok = self._bring_up_audio(session, first_index=0)

        with self._lock:
            if self._active is not session or self._state is not SessionState.STARTING:
                logger.info("Session for %s was stopped before it started ringing", alarm_id)
                return self._state
            if not audio_ok:
                logger.error("No playable sound for alarm %s, ringing without audio", alarm_id)
            self._start_vibration(session)
            self._post_notification(session)
            self._state = SessionState.RINGING
            logger.info("Alarm %s ringing (source=%s)", alarm_id, self.active_source or "none")
            return self._state

    def dismiss(self) -> Optional[str]:
        with self._lock:
            if self._active is None:
                return None
            alarm_id = self._active.alarm_id
            logger.info("Dismissing alarm %s", alarm_id)
            self._teardown_locked("dismissed")
            return alarm_id

    def snooze(self) -> Optional[AlarmRecord]:
        with self._lock:
            if self._active is None:
                return None
            record = snooze_record(self._active.alarm_id, self._active.label, self.clock(), self.snooze_minutes)
            scheduled: Optional[AlarmRecord] = None
            if self._rescheduler is None:
                logger.error("Cannot snooze alarm %s: no rescheduler attached", self._active.alarm_id)
            else:
                try:
                    self._rescheduler(record)
                    scheduled = record
                    logger.info("Alarm %s snoozed as %s for %s min", self._active.alarm_id, record.id, self.snooze_minutes)
                except Exception:
                    logger.error("Failed to schedule snooze for %s", self._active.alarm_id, exc_info=True)
            self._teardown_locked("snoozed")
            return scheduled

    def shutdown(self) -> None:
        with self._lock:
            if self._active is not None:
                self._teardown_locked("shutdown")

    def _bring_up_audio(self, session: _ActiveSession, first_index: int) -> bool:
        """Tries sources in order; the wait for the ready signal happens outside the lock."""
        if session.engine is None:
            return False
        for index in range(first_index, len(self.sound_sources)):
            source = self.sound_sources[index]
            with self._lock:
                if self._active is not session:
                    return False
            try:
                source.validate()
                future = session.engine.prepare_async(source.path)
                future.result(timeout=self.ready_timeout_s)
            except FutureTimeoutError:
                logger.warning("Sound source %s not ready within %.1fs", source.name, self.ready_timeout_s)
                self._reset_engine(session)
                continue
            except PlaybackSourceUnavailable as exc:
                logger.warning("Sound source %s unavailable: %s", source.name, exc)
                self._reset_engine(session)
                continue
            except Exception:
                logger.error("Sound source %s failed to load", source.name, exc_info=True)
                self._reset_engine(session)
                continue

            with self._lock:
                if self._active is not session:
                    return False
                try:
                    session.engine.start()
                except Exception:
                    logger.error("Sound source %s failed to start", source.name, exc_info=True)
                    self._reset_engine(session)
                    continue
                session.source_index = index
                return True
        return False

    def _reset_engine(self, session: _ActiveSession) -> None:
        try:
            session.engine.reset()
        except Exception:
            logger.error("Audio engine reset failed", exc_info=True)

    def _on_engine_error(self, generation: int, exc: Exception) -> None:
        Thread(target=self._substitute_source, args=(generation, exc), name="alarm-audio-fallback", daemon=True).start()

    def _substitute_source(self, generation: int, exc: Exception) -> None:
        with self._lock:
            session = self._active
            if session is None or session.generation != generation or self._state is SessionState.STOPPING:
                return
            failed = session.source_index
            logger.warning("Playback error on source index %s (%s), switching source", failed, exc)
            session.source_index = -1
        self._reset_engine(session)
        if not self._bring_up_audio(session, first_index=failed + 1):
            with self._lock:
                if self._active is session:
                    logger.error("Alarm %s lost all sound sources, continuing without audio", session.alarm_id)

    def _start_vibration(self, session: _ActiveSession) -> None:
        if not self.vibrator.has_vibrator:
            return
        try:
            self.vibrator.vibrate(VIBRATION_PATTERN, repeat=0)
            session.vibrating = True
        except Exception:
            logger.error("Failed to start vibration", exc_info=True)

    def _post_notification(self, session: _ActiveSession) -> None:
        try:
            self.notifications.post(
                Notification(
                    notification_id=NOTIFICATION_ID,
                    title=NOTIFICATION_TITLE,
                    text=session.label or "Alarm is ringing",
                    category="alarm",
                    priority="max",
                    ongoing=True,
                    actions=("dismiss", "snooze"),
                    full_screen={"id": session.alarm_id, "label": session.label},
                )
            )
            session.notified = True
        except Exception:
            logger.error("Failed to post alarm notification", exc_info=True)

    def _teardown_locked(self, reason: str) -> List[Tuple[str, Exception]]:
        session = self._active
        if session is None:
            return []
        self._state = SessionState.STOPPING
        logger.info("Stopping session for alarm %s (%s)", session.alarm_id, reason)

        failures: List[Tuple[str, Exception]] = []
        steps = (
            ("audio", lambda: session.engine and session.engine.release()),
            ("vibration", self.vibrator.cancel),
            ("audio focus", lambda: session.focus_owner and self.audio_focus.abandon(session.focus_owner)),
            ("wake reservation", session.wake.release),
        )
        for name, step in steps:
            try:
                step()
            except Exception as exc:
                failures.append((name, exc))
                logger.error("Failed to release %s for alarm %s", name, session.alarm_id, exc_info=True)

        try:
            self.notifications.cancel(NOTIFICATION_ID)
        except Exception as exc:
            failures.append(("notification", exc))
            logger.error("Failed to clear alarm notification", exc_info=True)

        self._active = None
        self._state = SessionState.IDLE
        return failures
