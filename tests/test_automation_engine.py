"""
Тести запуску задач віджетів та перевірки стану LED.
"""

import time

import pytest

from controllers.automation_engine import AutomationEngine, WidgetTask
from controllers.errors import NotFound
from controllers.widgets import WidgetBehavior, LedControlBehavior
from tests.conftest import OWNER
from tests.mock_esp32 import DUMMY_MAC


class CountingBehavior(WidgetBehavior):
    """Поведінка, що рахує такти з фіксованим інтервалом."""

    def __init__(self, widget, interval=0.01):
        self.widget = widget
        self.interval = interval
        self.ticks = 0
        self.started = False
        self.on_schedule_change = None
        self._next = None

    def start(self, now):
        self.started = True
        self._next = now

    def next_due(self, now):
        return self._next

    def tick(self, now):
        if self._next is not None and now >= self._next:
            self._next = now + self.interval
            self.ticks += 1


def wait_until(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture()
def widget(db):
    return db.create_widget(OWNER, DUMMY_MAC, 'sensor', 'moisture', 'Soil', pin=34,
                            configuration={'refresh_rate': 10})


def test_task_ticks_until_stopped(widget):
    behavior = CountingBehavior(widget)
    task = WidgetTask(behavior)
    task.start()

    assert wait_until(lambda: behavior.ticks >= 3)
    task.stop()
    assert not task.is_alive

    ticks = behavior.ticks
    time.sleep(0.05)
    assert behavior.ticks == ticks


def test_idle_task_wakes_on_schedule_change(widget):
    behavior = CountingBehavior(widget, interval=3600)
    task = WidgetTask(behavior)
    task.start()
    assert wait_until(lambda: behavior.ticks == 1)

    behavior._next = time.time()
    behavior.on_schedule_change()
    assert wait_until(lambda: behavior.ticks == 2)
    task.stop()


def test_attach_starts_active_widgets(db, engine, dummy_record):
    device = dummy_record
    db.create_widget(OWNER, device.mac_address, 'sensor', 'light', 'Light', pin=32,
                     configuration={'refresh_rate': 5})
    db.create_widget(OWNER, device.mac_address, 'control', 'water_pump', 'Pump', pin=5,
                     configuration={'autoMode': False}, is_active=False)

    started = engine.attach_device(device)
    assert len(started) == 1
    assert engine.widget_statuses(device.id)[0]['kind'] == 'light'

    engine.detach_device(device.id)
    assert engine.behaviors == {}
    assert engine.tasks == {}


def test_get_behavior_for_inactive_widget_raises(engine):
    with pytest.raises(NotFound):
        engine.get_behavior('missing')


def test_add_widget_ignored_for_detached_device(db, engine, dummy_record):
    widget = db.create_widget(OWNER, dummy_record.mac_address, 'sensor', 'light', 'Light', pin=32)
    assert engine.add_widget(widget, dummy_record) is None

    engine.attach_device(dummy_record)
    assert engine.add_widget(widget, dummy_record) is not None
    engine.remove_widget(widget.id)
    with pytest.raises(NotFound):
        engine.get_behavior(widget.id)


def test_led_status_sweep_updates_led_widgets(db, engine, dummy_record, mock_device):
    led = db.create_widget(OWNER, dummy_record.mac_address, 'control', 'led_control', 'LED', pin=2,
                           configuration={'state': False})
    engine.attach_device(dummy_record)
    mock_device.led_state = True

    assert engine.check_led_status(dummy_record) == {led.id: True}
    behavior = engine.get_behavior(led.id)
    assert isinstance(behavior, LedControlBehavior)
    assert behavior.state.actuator_on is True


def test_led_status_sweep_tolerates_offline_device(db, engine, dummy_record, mock_device):
    db.create_widget(OWNER, dummy_record.mac_address, 'control', 'led_control', 'LED', pin=2)
    engine.attach_device(dummy_record)
    mock_device.offline = True
    assert engine.check_led_status() == {}


def test_engine_threads_poll_sensor(db, transport, config, dummy_record, mock_device):
    db.create_widget(OWNER, dummy_record.mac_address, 'sensor', 'light', 'Light', pin=32,
                     configuration={'refresh_rate': 10})
    engine = AutomationEngine(db, transport, config)
    try:
        engine.attach_device(dummy_record)
        assert wait_until(lambda: any(
            entry['endpoint'] == 'sensors' for entry in mock_device.get_command_history()
        ))
    finally:
        engine.stop_all()
    assert all(not task.is_alive for task in engine.tasks.values())
