"""
Спільні фікстури тестів.
"""

import logging

import pytest
import yaml

from controllers.session_manager import ConnectionSessionManager
from controllers.automation_engine import AutomationEngine
from database.client_storage import ClientStorage
from database.db import Database
from tests.mock_esp32 import MockESP32Device, MockTransport, DUMMY_IP, DUMMY_MAC
from utils.config_manager import ConfigManager
from utils.logger import Logger

OWNER = 'user-1'


class FakeClock:
    """Керований годинник для тестів таймерів."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture(autouse=True)
def quiet_logger():
    Logger().setup(log_file=None, log_level=logging.DEBUG, enable_console=False)
    yield


@pytest.fixture()
def config_data(tmp_path):
    return {
        'auth': {'default_user_id': OWNER},
        'devices': {'request_timeout': 2.0},
        'automation': {
            'hysteresis_band': 10,
            'inference_interval': 0.25,
            'default_refresh_rates': {'moisture': 10, 'temperature_humidity': 10, 'light': 5},
        },
        'storage': {'client_storage_file': str(tmp_path / 'client_storage.json')},
        'database': {'db_file': str(tmp_path / 'dashboard.db')},
        'dummy_device': {'enabled': True, 'ip_address': DUMMY_IP, 'mac_address': DUMMY_MAC, 'latency': 0},
        'api': {'enabled': True, 'host': '127.0.0.1', 'port': 8080, 'debug': False},
        'logging': {'log_file': None},
    }


@pytest.fixture()
def config(tmp_path, config_data):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(config_data), encoding='utf-8')
    return ConfigManager(str(path))


@pytest.fixture()
def db(tmp_path):
    return Database(str(tmp_path / 'dashboard.db'))


@pytest.fixture()
def storage(tmp_path):
    return ClientStorage(str(tmp_path / 'client_storage.json'))


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def mock_device():
    return MockESP32Device(seed=42, random_walk=False)


@pytest.fixture()
def transport(mock_device, config):
    return MockTransport(mock_device, config)


@pytest.fixture()
def engine(db, transport, config, clock):
    engine = AutomationEngine(db, transport, config, clock=clock, start_tasks=False)
    yield engine
    engine.stop_all()


@pytest.fixture()
def session(db, transport, storage, engine):
    return ConnectionSessionManager(
        db, transport, storage,
        on_connect=engine.attach_device,
        on_disconnect=engine.detach_device
    )


@pytest.fixture()
def dummy_record(db):
    """Пристрій у реєстрі за адресою симульованого ESP32."""
    return db.create_device(OWNER, 'Dummy ESP32', 'DUMMY-ABC123', DUMMY_IP)
