from concurrent.futures import Future
from datetime import timezone

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from alarms.errors import PlaybackSourceUnavailable
from alarms.host import AudioFocusManager, ExactAlarmGate, NotificationCenter, PowerManager, Vibrator
from alarms.manager import AlarmManager
from alarms.registrar import TimerRegistrar
from alarms.session import PlaybackSession
from alarms.sounds import SoundSource
from alarms.storage import ScheduleStore
from time_utils import now_millis


class FakeClock:
    """Starts at real time so jobs handed to a live scheduler are in the future."""

    def __init__(self, now: int = None):
        self.now = now if now is not None else now_millis()

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeEngine:
    """Audio engine double; paths listed in ``broken`` fail to prepare."""

    def __init__(self, log, broken=(), pending=()):
        self.log = log
        self.broken = {str(p) for p in broken}
        self.pending = {str(p) for p in pending}
        self.loaded = None
        self.playing = False
        self.released = False
        self.on_error = None

    def set_error_listener(self, listener):
        self.on_error = listener

    def prepare_async(self, path):
        future = Future()
        if str(path) in self.pending:
            return future
        if str(path) in self.broken:
            future.set_exception(PlaybackSourceUnavailable(f"cannot play {path}"))
        else:
            self.loaded = str(path)
            future.set_result(None)
        return future

    def start(self):
        self.playing = True
        self.log.append(("audio_start", self.loaded))

    def stop(self):
        self.playing = False

    def reset(self):
        self.playing = False
        self.loaded = None

    def release(self):
        self.playing = False
        self.released = True
        self.log.append(("audio_release", self.loaded))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sound_files(tmp_path):
    paths = []
    for name in ("custom.wav", "system_alarm.wav", "system_notification.wav"):
        path = tmp_path / name
        path.write_bytes(b"RIFF-test")
        paths.append(path)
    return paths


@pytest.fixture
def sources(sound_files):
    names = ("configured", "default_alarm", "default_notification")
    return [SoundSource(name, path) for name, path in zip(names, sound_files)]


@pytest.fixture
def host():
    class Host:
        power = PowerManager()
        focus = AudioFocusManager()
        vibrator = Vibrator(available=False)
        notifications = NotificationCenter()
        events = []
        engines = []
        broken = []
        pending = []

        def engine_factory(self):
            engine = FakeEngine(self.events, broken=self.broken, pending=self.pending)
            self.engines.append(engine)
            return engine

    return Host()


@pytest.fixture
def session(host, sources, clock):
    s = PlaybackSession(
        power=host.power,
        audio_focus=host.focus,
        vibrator=host.vibrator,
        notifications=host.notifications,
        engine_factory=host.engine_factory,
        sound_sources=sources,
        session_wake_ms=600_000,
        ready_timeout_s=0.2,
        snooze_minutes=5,
        clock=clock,
    )
    yield s
    s.shutdown()


@pytest.fixture
def store(tmp_path):
    return ScheduleStore(tmp_path / "alarm_prefs.json")


@pytest.fixture
def scheduler():
    sched = BackgroundScheduler(timezone=timezone.utc)
    sched.start()
    yield sched
    sched.shutdown(wait=False)


@pytest.fixture
def gate():
    return ExactAlarmGate(allowed=True)


@pytest.fixture
def registrar(scheduler, gate):
    return TimerRegistrar(scheduler, gate)


@pytest.fixture
def manager(store, registrar, gate, session, clock):
    m = AlarmManager(store, registrar, gate, session=session, clock=clock)
    session.set_rescheduler(m.schedule)
    return m
