import hashlib
from threading import Event

import pytest

from alarms.errors import PermissionDenied, RegistrationFailed
from alarms.host import TimerCapabilities
from alarms.registrar import (
    TimerRegistrar,
    WakeStrategy,
    registration_token,
    select_strategy,
)
from alarms.storage import AlarmRecord
from time_utils import now_millis

HOUR_MS = 60 * 60 * 1000


def _future_record(alarm_id="a1", ahead_ms=HOUR_MS, label="Wake") -> AlarmRecord:
    return AlarmRecord(id=alarm_id, trigger_time_millis=now_millis() + ahead_ms, label=label)


def test_token_is_stable_and_distinct():
    assert registration_token("a1") == registration_token("a1")
    assert registration_token("a1") != registration_token("a2")
    # derived from a content hash, not from per-process object identity
    expected = "alarm-" + hashlib.sha256(b"a1").hexdigest()[:16]
    assert registration_token("a1") == expected
    assert len(registration_token("anything")) == len("alarm-") + 16


def test_strategy_fallback_order():
    assert select_strategy(TimerCapabilities(True, True)) is WakeStrategy.EXACT_ALLOW_WHILE_IDLE
    assert select_strategy(TimerCapabilities(True, False)) is WakeStrategy.EXACT_ALLOW_WHILE_IDLE
    assert select_strategy(TimerCapabilities(False, True)) is WakeStrategy.EXACT
    assert select_strategy(TimerCapabilities(False, False)) is WakeStrategy.INEXACT


def test_arm_registers_job_under_token(registrar, scheduler):
    record = _future_record()
    assert registrar.arm(record) is WakeStrategy.EXACT_ALLOW_WHILE_IDLE
    job = scheduler.get_job(registration_token("a1"))
    assert job is not None
    assert job.name == "a1"
    assert job.misfire_grace_time is None
    assert registrar.armed() == [("a1", record.trigger_time_millis)]


def test_rearm_overwrites_same_slot(registrar, scheduler):
    registrar.arm(_future_record(ahead_ms=HOUR_MS))
    later = _future_record(ahead_ms=2 * HOUR_MS)
    registrar.arm(later)
    assert len(scheduler.get_jobs()) == 1
    assert registrar.armed() == [("a1", later.trigger_time_millis)]


def test_cancel_is_idempotent(registrar):
    registrar.arm(_future_record())
    assert registrar.cancel("a1") is True
    assert registrar.cancel("a1") is False
    assert registrar.cancel("never-armed") is False
    assert not registrar.is_armed("a1")


def test_cancel_from_fresh_registrar_hits_same_slot(scheduler, gate, registrar):
    registrar.arm(_future_record())
    other = TimerRegistrar(scheduler, gate)
    assert other.cancel("a1") is True
    assert scheduler.get_jobs() == []


def test_permission_denied_does_not_arm(registrar, gate, scheduler):
    gate.set_allowed(False)
    with pytest.raises(PermissionDenied):
        registrar.arm(_future_record())
    assert scheduler.get_jobs() == []


def test_exact_strategy_never_drops_late_runs(scheduler, gate):
    registrar = TimerRegistrar(scheduler, gate, TimerCapabilities(supports_idle_exact=False, supports_exact=True))
    assert registrar.arm(_future_record()) is WakeStrategy.EXACT
    job = scheduler.get_job(registration_token("a1"))
    assert job.misfire_grace_time is None
    assert job.coalesce is True


def test_scheduler_rejection_raises_registration_failed(gate):
    class BrokenScheduler:
        running = True

        def add_job(self, *args, **kwargs):
            raise ValueError("job store unavailable")

    registrar = TimerRegistrar(BrokenScheduler(), gate)
    with pytest.raises(RegistrationFailed) as info:
        registrar.arm(_future_record())
    assert info.value.alarm_id == "a1"


def test_fire_dispatches_payload(registrar):
    fired = Event()
    received = []

    def dispatch(payload):
        received.append(payload)
        fired.set()

    registrar.set_dispatch(dispatch)
    registrar.arm(_future_record(ahead_ms=200, label="Soon"))
    assert fired.wait(5)
    assert received == [{"eventKind": "fire", "id": "a1", "label": "Soon"}]


@pytest.mark.parametrize(
    "capabilities, late_ms",
    [
        (TimerCapabilities(True, True), 5_000),
        (TimerCapabilities(False, True), 2 * 60 * 1000),
        (TimerCapabilities(False, False), 20 * 60 * 1000),
    ],
)
def test_past_time_fires_immediately(scheduler, gate, capabilities, late_ms):
    registrar = TimerRegistrar(scheduler, gate, capabilities)
    fired = Event()
    registrar.set_dispatch(lambda payload: fired.set())
    registrar.arm(_future_record(alarm_id="late", ahead_ms=-late_ms))
    assert fired.wait(5)
