"""
Тести поведінки віджетів: гістерезис, таймери, двофазне збереження налаштувань.
"""

import pytest

from controllers.device_transport import SensorKind
from controllers.widgets import (
    WidgetKind, WIDGET_TEMPLATES, BEHAVIOR_CLASSES, create_behavior, hysteresis_decision,
    WaterPumpBehavior, LightControlBehavior, MoistureSensorBehavior
)
from tests.conftest import OWNER
from tests.mock_esp32 import DUMMY_IP, DUMMY_MAC


@pytest.fixture()
def make_behavior(db, transport, config, clock):
    def factory(kind, configuration=None, pin=None, device_ip=DUMMY_IP):
        template = WIDGET_TEMPLATES[kind]
        widget_configuration = template.new_configuration()
        widget_configuration.update(configuration or {})
        widget = db.create_widget(
            OWNER, DUMMY_MAC, template.widget_type, kind.value, template.default_name,
            pin=template.default_pin if pin is None else pin, configuration=widget_configuration
        )
        return create_behavior(widget, device_ip, db, transport, config, clock)
    return factory


def test_every_kind_has_behavior_and_defaults():
    assert set(BEHAVIOR_CLASSES) == set(WidgetKind)
    assert set(WIDGET_TEMPLATES) == set(WidgetKind)


def test_unknown_widget_kind_is_rejected(db, transport, config):
    widget = db.create_widget(OWNER, DUMMY_MAC, 'sensor', 'barometer', 'Pressure')
    with pytest.raises(ValueError):
        create_behavior(widget, DUMMY_IP, db, transport, config)


@pytest.mark.parametrize('reading,currently_on,expected', [
    (25, False, True),
    (25, True, None),
    (35, True, None),
    (40, True, None),
    (41, True, False),
    (45, False, None),
    (30, False, None),
])
def test_hysteresis_decision(reading, currently_on, expected):
    assert hysteresis_decision(reading, 30, currently_on, band=10) is expected


@pytest.mark.parametrize('kind,attribute', [
    (WidgetKind.WATER_PUMP, 'soil_moisture'),
    (WidgetKind.LIGHT_CONTROL, 'light_level'),
])
def test_closed_loop_follows_hysteresis_sequence(make_behavior, mock_device, clock, kind, attribute):
    behavior = make_behavior(kind, {'autoMode': True})
    states = []
    for level in [40, 25, 20, 35, 42]:
        setattr(mock_device, attribute, level)
        behavior.check_and_control(clock())
        states.append(mock_device.relay_state)

    assert states == [False, True, True, True, False]
    assert behavior.auto_state is False


def test_check_schedules_next_run_from_clock(make_behavior, mock_device, clock):
    behavior = make_behavior(WidgetKind.WATER_PUMP, {'autoMode': True, 'checkInterval': 15})
    mock_device.soil_moisture = 50
    behavior.start(clock())
    assert behavior.next_due(clock()) == clock()

    behavior.tick(clock())
    assert behavior.state.next_check_at == clock() + 15 * 60
    assert behavior.get_status()['seconds_until_next_check'] == 900

    clock.advance(300)
    assert behavior.get_status()['seconds_until_next_check'] == 600


def test_missing_sensor_skips_check(make_behavior, mock_device, clock):
    behavior = make_behavior(WidgetKind.WATER_PUMP, {'autoMode': True})
    mock_device.sensors_payload = lambda: {'sensors': []}

    assert behavior.check_and_control(clock()) is None
    assert mock_device.relay_state is False
    assert 'moisture' in behavior.error


def test_pump_auto_shutoff(make_behavior, mock_device, clock):
    behavior = make_behavior(WidgetKind.WATER_PUMP, {'autoMode': True, 'pumpDuration': 30})
    assert isinstance(behavior, WaterPumpBehavior)
    mock_device.soil_moisture = 20

    behavior.start(clock())
    behavior.tick(clock())
    assert mock_device.relay_state is True
    assert behavior.next_due(clock()) == clock() + 30

    clock.advance(29)
    behavior.tick(clock())
    assert mock_device.relay_state is True
    assert behavior.get_status()['runtime'] == 29

    clock.advance(1)
    behavior.tick(clock())
    assert mock_device.relay_state is False
    assert behavior.state.shutoff_at is None
    assert behavior.get_status()['runtime'] == 0


def test_failed_shutoff_is_retried_later(make_behavior, mock_device, clock):
    behavior = make_behavior(WidgetKind.WATER_PUMP, {'autoMode': True, 'pumpDuration': 30})
    mock_device.soil_moisture = 20
    behavior.check_and_control(clock())

    clock.advance(30)
    mock_device.offline = True
    behavior.tick(clock())
    assert behavior.auto_state is True
    assert behavior.state.shutoff_at > clock()

    mock_device.offline = False
    clock.advance(10)
    behavior.tick(clock())
    assert mock_device.relay_state is False


def test_refresh_interval_kept_when_device_rejects(make_behavior, mock_device, db):
    behavior = make_behavior(WidgetKind.MOISTURE, {'refresh_rate': 1})
    assert isinstance(behavior, MoistureSensorBehavior)
    mock_device.failing_endpoints.add('set-moisture-interval')

    assert behavior.set_refresh_interval(5) is False
    assert db.get_widget(behavior.widget.id).configuration['refresh_rate'] == 1
    assert behavior.error is not None

    mock_device.failing_endpoints.clear()
    assert behavior.set_refresh_interval(5) is True
    assert db.get_widget(behavior.widget.id).configuration['refresh_rate'] == 5
    assert mock_device.intervals['set-moisture-interval'] == 5000


def test_refresh_interval_validation(make_behavior):
    behavior = make_behavior(WidgetKind.LIGHT)
    with pytest.raises(ValueError):
        behavior.set_refresh_interval(0)


def test_pump_check_interval_goes_to_device_first(make_behavior, mock_device, db):
    behavior = make_behavior(WidgetKind.WATER_PUMP)
    mock_device.failing_endpoints.add('set-pump-check-interval')
    assert behavior.update_settings(check_interval=5) is False
    assert db.get_widget(behavior.widget.id).configuration['checkInterval'] == 15

    mock_device.failing_endpoints.clear()
    assert behavior.update_settings(threshold=40, check_interval=5, pump_duration=60) is True
    configuration = db.get_widget(behavior.widget.id).configuration
    assert configuration['checkInterval'] == 5
    assert configuration['minMoistureLevel'] == 40
    assert configuration['pumpDuration'] == 60
    assert mock_device.intervals['set-pump-check-interval'] == 5 * 60 * 1000


def test_light_threshold_has_no_device_endpoint(make_behavior, mock_device, db):
    behavior = make_behavior(WidgetKind.LIGHT_CONTROL)
    assert isinstance(behavior, LightControlBehavior)
    assert behavior.update_settings(threshold=55) is True
    assert db.get_widget(behavior.widget.id).configuration['lightThreshold'] == 55
    assert mock_device.intervals == {}


@pytest.mark.parametrize('settings', [
    {'threshold': 120},
    {'threshold': -1},
    {'check_interval': 0},
])
def test_invalid_settings_raise(make_behavior, settings):
    behavior = make_behavior(WidgetKind.WATER_PUMP)
    with pytest.raises(ValueError):
        behavior.update_settings(**settings)


def test_manual_state_is_persisted_after_confirmation(make_behavior, mock_device, db):
    behavior = make_behavior(WidgetKind.WATER_PUMP)
    assert behavior.set_manual_state(True) is True
    assert mock_device.relay_state is True
    assert db.get_widget(behavior.widget.id).configuration['state'] is True

    mock_device.failing_endpoints.add('relay')
    assert behavior.set_manual_state(False) is False
    assert behavior.manual_state is True
    assert db.get_widget(behavior.widget.id).configuration['state'] is True


def test_entering_auto_mode_turns_manual_relay_off(make_behavior, mock_device, db, clock):
    behavior = make_behavior(WidgetKind.WATER_PUMP)
    behavior.set_manual_state(True)

    assert behavior.set_auto_mode(True) is True
    assert mock_device.relay_state is False
    assert behavior.manual_state is False
    assert behavior.auto_mode is True
    assert behavior.next_due(clock()) == clock()
    assert db.get_widget(behavior.widget.id).configuration['autoMode'] is True


def test_mode_switch_aborted_when_device_fails(make_behavior, mock_device):
    behavior = make_behavior(WidgetKind.WATER_PUMP)
    behavior.set_manual_state(True)
    mock_device.failing_endpoints.add('relay')

    assert behavior.set_auto_mode(True) is False
    assert behavior.auto_mode is False
    assert behavior.manual_state is True


def test_leaving_auto_mode_turns_automatic_relay_off(make_behavior, mock_device, clock):
    behavior = make_behavior(WidgetKind.WATER_PUMP, {'autoMode': True})
    mock_device.soil_moisture = 10
    behavior.check_and_control(clock())
    assert mock_device.relay_state is True

    assert behavior.set_auto_mode(False) is True
    assert mock_device.relay_state is False
    assert behavior.state.shutoff_at is None
    assert behavior.next_due(clock()) is None


def test_manual_toggle_rejected_in_auto_mode(make_behavior):
    behavior = make_behavior(WidgetKind.LIGHT_CONTROL, {'autoMode': True})
    with pytest.raises(ValueError):
        behavior.set_manual_state(True)


def test_sensor_refresh_reads_all_kinds(make_behavior, mock_device, clock):
    mock_device.temperature = 22.0
    mock_device.humidity = 55.0
    behavior = make_behavior(WidgetKind.TEMPERATURE_HUMIDITY)

    behavior.start(clock())
    behavior.tick(clock())
    assert behavior.readings[SensorKind.TEMPERATURE].value == 22.0
    assert behavior.readings[SensorKind.HUMIDITY].value == 55.0
    assert behavior.error is None
    assert behavior.next_due(clock()) == clock() + 10


def test_sensor_failure_keeps_polling(make_behavior, mock_device, clock):
    behavior = make_behavior(WidgetKind.LIGHT)
    mock_device.offline = True
    behavior.start(clock())
    behavior.tick(clock())

    assert behavior.error is not None
    assert behavior.next_due(clock()) == clock() + 5

    mock_device.offline = False
    clock.advance(5)
    behavior.tick(clock())
    assert behavior.error is None
    assert behavior.readings[SensorKind.LIGHT].level == pytest.approx(mock_device.light_level)


def test_led_toggle_sends_pin(make_behavior, mock_device, db):
    behavior = make_behavior(WidgetKind.LED_CONTROL)
    assert behavior.toggle() is True
    assert mock_device.led_state is True
    assert mock_device.command_history[-1]['body'] == {'state': True, 'pin': 2}
    assert db.get_widget(behavior.widget.id).configuration['state'] is True


def test_update_pin_is_two_phase(make_behavior, mock_device, db):
    behavior = make_behavior(WidgetKind.MOISTURE)
    mock_device.failing_endpoints.add('set-moisture-pin')
    assert behavior.update_pin(35) is False
    assert db.get_widget(behavior.widget.id).pin == 34

    mock_device.failing_endpoints.clear()
    assert behavior.update_pin(35) is True
    assert db.get_widget(behavior.widget.id).pin == 35
    assert mock_device.pins['set-moisture-pin'] == 35

    with pytest.raises(ValueError):
        behavior.update_pin(99)


def test_webcam_inference_only_while_streaming(make_behavior, mock_device, clock):
    behavior = make_behavior(WidgetKind.WEBCAM)
    mock_device.inference_boxes = [{'label': 'cat', 'x': 1, 'y': 2, 'width': 3, 'height': 4}]
    assert behavior.next_due(clock()) is None

    behavior.set_ml_enabled(True)
    assert behavior.next_due(clock()) is None

    behavior.set_streaming(True)
    assert behavior.next_due(clock()) == clock()
    behavior.tick(clock())
    assert behavior.bounding_boxes[0]['label'] == 'cat'
    assert behavior.next_due(clock()) == clock() + 0.25

    behavior.set_streaming(False)
    assert behavior.ml_enabled is False
    assert behavior.bounding_boxes == []
    assert behavior.next_due(clock()) is None
    assert behavior.stream_url() == f"http://{DUMMY_IP}/stream"
