import logging
import signal
import time
from datetime import timezone

from apscheduler.schedulers.background import BackgroundScheduler

from alarms.host import (
    AudioFocusManager,
    ExactAlarmGate,
    NotificationCenter,
    PowerManager,
    RingingScreen,
    TimerCapabilities,
    Vibrator,
)
from alarms.listener import EventKind, TriggerEvent, TriggerListener
from alarms.manager import AlarmManager
from alarms.registrar import TimerRegistrar
from alarms.session import PlaybackSession
from alarms.sounds import build_sound_chain, ensure_platform_sounds
from alarms.storage import ScheduleStore
from audio_io import LoopingPlayer, create_pyaudio
from config import Config, load_config, setup_logging
from time_utils import format_millis

logger = logging.getLogger("autorise")


def graceful_exit(signum, frame) -> None:  # pragma: no cover - signal handler
    logger.info("Shutting down (signal %s)", signum)
    raise KeyboardInterrupt()


class AlarmRuntime:
    def __init__(self, config: Config, pa):
        self.config = config
        self.pa = pa
        self._tzinfo = timezone.utc

        self.scheduler = BackgroundScheduler(timezone=self._tzinfo)
        self.gate = ExactAlarmGate(allowed=config.exact_alarms_allowed, on_request=self._grant_exact_alarms)
        self.power = PowerManager()
        self.audio_focus = AudioFocusManager()
        self.vibrator = Vibrator(available=config.has_vibrator)
        self.notifications = NotificationCenter()
        self.ringing_screen = RingingScreen()

        self.store = ScheduleStore(config.alarms_path, key=config.alarm_store_key)
        self.registrar = TimerRegistrar(
            self.scheduler,
            self.gate,
            TimerCapabilities(
                supports_idle_exact=config.supports_idle_exact,
                supports_exact=config.supports_exact,
            ),
        )
        self.session = PlaybackSession(
            power=self.power,
            audio_focus=self.audio_focus,
            vibrator=self.vibrator,
            notifications=self.notifications,
            engine_factory=lambda: LoopingPlayer(self.pa, device_index=config.output_device_index),
            sound_sources=build_sound_chain(
                config.alarm_sound_path, config.default_alarm_sound_path, config.notification_sound_path
            ),
            session_wake_ms=config.session_wake_ms,
            ready_timeout_s=config.ready_timeout_s,
            snooze_minutes=config.snooze_minutes,
        )
        self.manager = AlarmManager(
            self.store,
            self.registrar,
            self.gate,
            session=self.session,
            max_horizon_days=config.max_horizon_days,
        )
        self.listener = TriggerListener(
            self.store,
            self.registrar,
            self.session,
            self.power,
            ringing_screen=self.ringing_screen,
            trigger_wake_ms=config.trigger_wake_ms,
            purge_past_due=config.purge_past_due,
        )
        self.registrar.set_dispatch(self.listener.handle)
        self.session.set_rescheduler(self.manager.schedule)

    def start(self) -> None:
        ensure_platform_sounds(self.config.default_alarm_sound_path, self.config.notification_sound_path)
        self.scheduler.start()
        self.listener.handle(TriggerEvent(EventKind.RESTART))
        upcoming = self.manager.next_alarm()
        if upcoming:
            logger.info("Next alarm: %s at %s", upcoming.id, format_millis(upcoming.trigger_time_millis))
        else:
            logger.info("No upcoming alarms")

    def shutdown(self) -> None:
        self.session.shutdown()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.pa.terminate()

    def _grant_exact_alarms(self, gate: ExactAlarmGate) -> None:
        # A desktop host has no settings screen to send the user to.
        gate.set_allowed(True)


def main() -> None:
    config = load_config()
    setup_logging(config.log_level)
    signal.signal(signal.SIGINT, graceful_exit)
    signal.signal(signal.SIGTERM, graceful_exit)
    logger.info("Starting AutoRise alarm service (store=%s)", config.alarms_path)

    runtime = AlarmRuntime(config, create_pyaudio())
    runtime.start()
    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        runtime.shutdown()


if __name__ == "__main__":
    main()
