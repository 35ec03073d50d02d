import time

from alarms.host import AudioFocusManager, ExactAlarmGate, Notification, NotificationCenter, PowerManager


def test_wake_reservation_release_untracks():
    power = PowerManager()
    reservation = power.new_wake_reservation("autorise:trigger")
    reservation.acquire(60_000)
    reservation.acquire(60_000)
    assert power.held_tags() == ["autorise:trigger"]
    reservation.release()
    reservation.release()
    assert power.held_tags() == []
    assert not reservation.expired


def test_wake_reservation_hard_timeout():
    power = PowerManager()
    reservation = power.new_wake_reservation("short")
    reservation.acquire(20)
    deadline = time.time() + 2
    while reservation.is_held and time.time() < deadline:
        time.sleep(0.01)
    assert reservation.expired
    assert power.held_tags() == []
    reservation.release()


def test_audio_focus_single_holder():
    focus = AudioFocusManager()
    assert focus.request("alarm:A")
    assert focus.request("alarm:B")
    focus.abandon("alarm:A")
    assert focus.holder == "alarm:B"
    focus.set_blocked(True)
    assert not focus.request("alarm:C")
    assert focus.holder == "alarm:B"


def test_gate_request_handler_errors_are_contained():
    def explode(gate):
        raise RuntimeError("settings screen unavailable")

    gate = ExactAlarmGate(allowed=False, on_request=explode)
    gate.request()
    assert not gate.can_schedule_exact()


def test_notifications_replace_by_id():
    center = NotificationCenter()
    center.post(Notification(1001, "AutoRise Alarm", "First"))
    center.post(Notification(1001, "AutoRise Alarm", "Second"))
    assert [n.text for n in center.active()] == ["Second"]
    center.cancel(1001)
    center.cancel(1001)
    assert center.active() == []
