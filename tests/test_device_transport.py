"""
Тести HTTP транспорту та пошуку показників датчиків.
"""

import pytest
import requests

from controllers.device_transport import (
    DeviceTransport, SensorKind, find_reading, moisture_percentage, is_valid_ipv4
)
from controllers.errors import DeviceUnreachable, DeviceProtocolError


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self._text = text

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code}", response=self)

    def json(self):
        if self._text is not None:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    """Підміна requests.Session, що записує запити."""

    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(payload={})
        self.error = error
        self.calls = []

    def request(self, method, url, json=None, timeout=None):
        self.calls.append({'method': method, 'url': url, 'json': json, 'timeout': timeout})
        if self.error:
            raise self.error
        return self.response


def make_transport(session, timeout=None):
    transport = DeviceTransport(session=session)
    if timeout is not None:
        transport.timeout = timeout
    return transport


def test_get_info_builds_url_and_uses_timeout():
    session = FakeSession(FakeResponse(payload={'mac': 'AA:BB', 'status': 'online'}))
    info = make_transport(session).get_info('10.0.0.5')

    assert info['mac'] == 'AA:BB'
    assert session.calls[0]['method'] == 'GET'
    assert session.calls[0]['url'] == 'http://10.0.0.5/info'
    assert session.calls[0]['timeout'] == 5.0


def test_timeout_is_clamped(config):
    config.config['devices']['request_timeout'] = 120
    assert DeviceTransport(config, session=FakeSession()).timeout == 30.0
    config.config['devices']['request_timeout'] = 0.1
    assert DeviceTransport(config, session=FakeSession()).timeout == 1.0


@pytest.mark.parametrize('error', [
    requests.exceptions.Timeout(),
    requests.exceptions.ConnectionError(),
])
def test_network_errors_become_unreachable(error):
    with pytest.raises(DeviceUnreachable):
        make_transport(FakeSession(error=error)).get_info('10.0.0.5')


def test_http_error_status_becomes_unreachable():
    with pytest.raises(DeviceUnreachable) as exc_info:
        make_transport(FakeSession(FakeResponse(status_code=500))).get_sensors('10.0.0.5')
    assert 'HTTP 500' in str(exc_info.value)


def test_non_json_body_is_protocol_error():
    with pytest.raises(DeviceProtocolError):
        make_transport(FakeSession(FakeResponse(text='<html>'))).get_info('10.0.0.5')


def test_command_without_success_is_protocol_error():
    session = FakeSession(FakeResponse(payload={'success': False, 'error': 'bad pin'}))
    with pytest.raises(DeviceProtocolError) as exc_info:
        make_transport(session).configure_pin('10.0.0.5', 'set-led-pin', 2)
    assert 'bad pin' in str(exc_info.value)
    assert session.calls[0]['json'] == {'pin': 2}


def test_set_actuator_returns_confirmed_state():
    session = FakeSession(FakeResponse(payload={'success': True, 'state': True}))
    assert make_transport(session).set_actuator('10.0.0.5', 'relay', {'state': True, 'pin': 5}) is True
    assert session.calls[0]['url'] == 'http://10.0.0.5/relay'
    assert session.calls[0]['method'] == 'POST'


def test_set_interval_sends_milliseconds():
    session = FakeSession(FakeResponse(payload={'success': True}))
    make_transport(session).set_interval('10.0.0.5', 'set-moisture-interval', 5000)
    assert session.calls[0]['json'] == {'interval': 5000}


def test_reset_uses_get():
    session = FakeSession(FakeResponse(payload={'success': True, 'message': 'ok'}))
    make_transport(session).reset('10.0.0.5', 'hard-reset')
    assert session.calls[0]['method'] == 'GET'
    assert session.calls[0]['url'] == 'http://10.0.0.5/hard-reset'


def test_find_reading_prefers_array_entry():
    payload = {
        'sensors': [
            {'id': 'soil_moisture', 'type': 'soil', 'value': 2000, 'percentage': 51.2},
        ],
        'soil_moisture': 10,
    }
    reading = find_reading(payload, SensorKind.MOISTURE)
    assert reading.percentage == 51.2
    assert reading.level == 51.2


def test_find_reading_matches_by_name():
    payload = [{'name': 'Garden Soil Moisture', 'value': 4095}]
    reading = find_reading(payload, SensorKind.MOISTURE)
    assert reading.value == 4095
    assert reading.percentage == 0.0


def test_find_reading_falls_back_to_top_level_field():
    assert find_reading({'temperature': 21.5}, SensorKind.TEMPERATURE).value == 21.5
    light = find_reading({'light': {'value': 4095, 'percentage': 100}}, SensorKind.LIGHT)
    assert light.level == 100


def test_find_reading_missing_returns_none():
    assert find_reading({'sensors': []}, SensorKind.HUMIDITY) is None
    assert find_reading('garbage', SensorKind.LIGHT) is None


def test_moisture_percentage_is_inverted_and_clamped():
    assert moisture_percentage(0) == 100.0
    assert moisture_percentage(4095) == 0.0
    assert moisture_percentage(5000) == 0.0


@pytest.mark.parametrize('address,valid', [
    ('192.168.1.10', True),
    ('10.0.0.1', True),
    ('256.1.1.1', False),
    ('192.168.1', False),
    ('esp32.local', False),
    ('', False),
    (None, False),
])
def test_is_valid_ipv4(address, valid):
    assert is_valid_ipv4(address) is valid
