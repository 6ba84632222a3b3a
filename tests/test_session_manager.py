"""
Тести менеджера сесії підключень.
"""

import pytest
import requests

from controllers.errors import InvalidAddress, ConnectionFailed, NotFound
from controllers.session_manager import ConnectionSessionManager, ConnectionState
from database.client_storage import connected_devices_key, manual_disconnect_key
from tests.conftest import OWNER
from tests.mock_esp32 import DUMMY_IP

OTHER_OWNER = 'user-2'
CONNECTED_KEY = connected_devices_key(OWNER)
MANUAL_KEY = manual_disconnect_key(OWNER)


def _refuse_connection(method, url, json=None, timeout=None):
    raise requests.exceptions.ConnectionError("refused")


def test_connect_adopts_reported_mac_and_persists_id(session, db, storage, dummy_record, mock_device):
    assert session.connect(dummy_record) is True

    device = db.get_device(OWNER, dummy_record.id)
    assert device.mac_address == mock_device.mac_address
    assert device.last_connected_at is not None
    assert session.is_connected(dummy_record.id)
    assert session.get_state(dummy_record.id) == ConnectionState.CONNECTED
    assert storage.get_item(CONNECTED_KEY) == [dummy_record.id]


def test_connect_rejects_invalid_address_without_network(session, db, mock_device):
    device = db.create_device(OWNER, 'Broken', 'ESP32-000001', 'not-an-ip')
    with pytest.raises(InvalidAddress):
        session.connect(device)
    assert mock_device.command_history == []


def test_failed_connect_raises_connection_failed(session, dummy_record, mock_device, storage):
    mock_device.offline = True
    with pytest.raises(ConnectionFailed):
        session.connect(dummy_record)
    assert not session.is_connected(dummy_record.id)
    assert storage.get_item(CONNECTED_KEY, []) == []


def test_connect_clears_manual_disconnect_flag(session, dummy_record, storage):
    storage.set_item(MANUAL_KEY, 'true')
    session.restore(OWNER)
    assert session.is_manual_disconnect(OWNER) is True

    session.connect(dummy_record)
    assert session.is_manual_disconnect(OWNER) is False
    assert storage.get_item(MANUAL_KEY) is None


def test_manual_disconnect_of_last_device_sets_flag(session, dummy_record, storage):
    session.connect(dummy_record)
    session.disconnect(OWNER, dummy_record.id)

    assert session.connected_ids(OWNER) == []
    assert storage.get_item(CONNECTED_KEY) == []
    assert storage.get_item(MANUAL_KEY) == 'true'


def test_disconnecting_idle_device_leaves_flag_unset(session, db, dummy_record, storage):
    session.disconnect(OWNER, dummy_record.id)

    assert session.is_manual_disconnect(OWNER) is False
    assert storage.get_item(MANUAL_KEY) is None


def test_automatic_disconnect_does_not_set_flag(session, dummy_record, storage):
    session.connect(dummy_record)
    session.disconnect(OWNER, dummy_record.id, manual=False)
    assert storage.get_item(MANUAL_KEY) is None


def test_reconcile_drops_deleted_devices_and_is_idempotent(session, db, storage, dummy_record):
    session.connect(dummy_record)
    storage.set_item(CONNECTED_KEY, [dummy_record.id, 'ghost'])
    db.delete_device(dummy_record.id)

    assert session.reconcile(OWNER, db.get_devices(OWNER)) == []
    assert storage.get_item(CONNECTED_KEY) == []

    assert session.reconcile(OWNER, db.get_devices(OWNER)) == []
    assert storage.get_item(CONNECTED_KEY) == []


def test_reconcile_stops_widget_tasks_of_removed_device(session, db, engine, dummy_record, mock_device):
    session.connect(dummy_record)
    device = db.get_device(OWNER, dummy_record.id)
    db.create_widget(OWNER, device.mac_address, 'sensor', 'moisture', 'Soil', pin=34,
                     configuration={'refresh_rate': 10})
    engine.attach_device(device)
    assert len(engine.behaviors) == 1

    db.delete_device(dummy_record.id)
    session.reconcile(OWNER, db.get_devices(OWNER))
    assert engine.behaviors == {}


def test_users_keep_separate_connected_sets(session, db, storage, engine, dummy_record, mock_device):
    session.connect(dummy_record)
    device = db.get_device(OWNER, dummy_record.id)
    db.create_widget(OWNER, device.mac_address, 'sensor', 'light', 'Light', pin=32,
                     configuration={'refresh_rate': 5})
    engine.attach_device(device)
    other = db.create_device(OTHER_OWNER, 'Other dummy', 'DUMMY-OTHER1', DUMMY_IP)
    session.connect(other)

    assert session.reconcile(OTHER_OWNER, db.get_devices(OTHER_OWNER)) == [other.id]
    assert session.is_connected(dummy_record.id)
    assert storage.get_item(CONNECTED_KEY) == [dummy_record.id]
    assert len(engine.behaviors) == 1

    assert session.disconnect_all(OTHER_OWNER) == [other.id]
    assert session.connected_ids(OWNER) == [dummy_record.id]
    assert session.is_manual_disconnect(OTHER_OWNER) is True
    assert session.is_manual_disconnect(OWNER) is False
    assert storage.get_item(MANUAL_KEY) is None


def test_reconnect_all_is_suppressed_after_manual_disconnect(db, transport, storage, dummy_record, mock_device):
    storage.set_item(CONNECTED_KEY, [dummy_record.id])
    storage.set_item(MANUAL_KEY, 'true')
    session = ConnectionSessionManager(db, transport, storage)

    assert session.reconnect_all(OWNER) == {}
    assert mock_device.command_history == []


def test_reconnect_all_requires_user(db, transport, storage, dummy_record, mock_device):
    storage.set_item(CONNECTED_KEY, [dummy_record.id])
    session = ConnectionSessionManager(db, transport, storage)
    assert session.reconnect_all(None) == {}
    assert mock_device.command_history == []


def test_reconnect_all_restores_reachable_and_drops_failed(db, transport, storage, dummy_record, mock_device):
    unreachable = db.create_device(OWNER, 'Offline', 'ESP32-000002', '192.168.1.201')
    no_ip = db.create_device(OWNER, 'No IP', 'ESP32-000003')
    storage.set_item(CONNECTED_KEY, [dummy_record.id, unreachable.id, no_ip.id, 'deleted-id'])
    transport.timeout = 1.0
    transport.session.request = _refuse_connection

    session = ConnectionSessionManager(db, transport, storage)
    results = session.reconnect_all(OWNER)

    assert results[dummy_record.id] is True
    assert results[unreachable.id] is False
    assert results[no_ip.id] is False
    assert 'deleted-id' not in results
    assert session.connected_ids(OWNER) == [dummy_record.id]
    assert storage.get_item(CONNECTED_KEY) == [dummy_record.id]
    assert session.is_reconnecting is False


def _delete_during_get_info(transport, db, device_id):
    get_info = transport.get_info

    def wrapped(ip):
        info = get_info(ip)
        db.delete_device(device_id)
        return info

    transport.get_info = wrapped


def test_reconnect_all_skips_device_deleted_while_connecting(db, transport, storage, dummy_record, mock_device):
    second = db.create_device(OWNER, 'Second dummy', 'DUMMY-SECOND', DUMMY_IP)
    storage.set_item(CONNECTED_KEY, [dummy_record.id, second.id])
    get_info = transport.get_info
    calls = []

    def delete_first_device(ip):
        info = get_info(ip)
        calls.append(ip)
        if len(calls) == 1:
            db.delete_device(dummy_record.id)
        return info

    transport.get_info = delete_first_device
    session = ConnectionSessionManager(db, transport, storage)
    results = session.reconnect_all(OWNER)

    assert results == {dummy_record.id: False, second.id: True}
    assert session.get_state(dummy_record.id) == ConnectionState.DISCONNECTED
    assert session.connected_ids(OWNER) == [second.id]
    assert storage.get_item(CONNECTED_KEY) == [second.id]


def test_explicit_connect_to_deleted_device_raises_not_found(session, db, storage, dummy_record):
    _delete_during_get_info(session.transport, db, dummy_record.id)

    with pytest.raises(NotFound):
        session.connect(dummy_record)
    assert session.get_state(dummy_record.id) == ConnectionState.DISCONNECTED
    assert not session.is_connected(dummy_record.id)
    assert storage.get_item(CONNECTED_KEY, []) == []


def test_connect_all_skips_connected_and_reports_errors(session, db, dummy_record, mock_device, transport):
    other = db.create_device(OWNER, 'Other', 'ESP32-000004', '192.168.1.202')
    transport.session.request = _refuse_connection
    session.connect(dummy_record)

    results = session.connect_all(db.get_devices(OWNER))
    assert dummy_record.id not in results
    assert results[other.id] is not None
