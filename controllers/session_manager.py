"""
Модуль для керування сесією підключень до пристроїв.

"Підключений" пристрій - поняття клієнтської сесії, а не постійне мережеве
з'єднання. Набір підключених ID кожного користувача дублюється в локальне
сховище клієнта під окремим ключем, щоб після перезавантаження можна було
спробувати відновити підключення.
"""

import threading
from enum import Enum
from typing import Optional, Dict, List, Callable, Iterable, Set

from controllers.device_transport import DeviceTransport, is_valid_ipv4
from controllers.errors import (
    InvalidAddress, DeviceError, ConnectionFailed, RegistryError, NotFound
)
from database.client_storage import ClientStorage, connected_devices_key, manual_disconnect_key
from database.db import Database
from database.models import Device
from utils.logger import get_logger


class ConnectionState(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    DISCONNECTING = 'disconnecting'


class ConnectionSessionManager:
    """Клас для підключення, відключення та відновлення сесії пристроїв."""

    def __init__(
        self,
        registry: Database,
        transport: DeviceTransport,
        storage: ClientStorage,
        on_connect: Optional[Callable[[Device], None]] = None,
        on_disconnect: Optional[Callable[[str], None]] = None
    ):
        """
        Ініціалізація менеджера сесії.

        Args:
            registry: Сховище пристроїв
            transport: Транспорт до пристроїв
            storage: Локальне сховище клієнта
            on_connect: Викликається з оновленим пристроєм після підключення
            on_disconnect: Викликається з ID пристрою після відключення
        """
        self.registry = registry
        self.transport = transport
        self.storage = storage
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.logger = get_logger()

        self._lock = threading.RLock()
        # owner_id -> підключені ID у порядку підключення
        self._connected: Dict[str, List[str]] = {}
        self._states: Dict[str, ConnectionState] = {}
        self._manual_disconnect: Dict[str, bool] = {}
        self.is_reconnecting = False

    # Локальне сховище: завжди читаємо та записуємо весь набір

    def _read_persisted_ids(self, owner_id: str) -> List[str]:
        stored = self.storage.get_item(connected_devices_key(owner_id), [])
        if not isinstance(stored, list):
            self.logger.warning("Збережений список підключених пристроїв пошкоджено, ігнорую")
            return []
        result = []
        for device_id in stored:
            if isinstance(device_id, str) and device_id not in result:
                result.append(device_id)
        return result

    def _write_persisted_ids(self, owner_id: str, ids: Iterable[str]) -> None:
        self.storage.set_item(connected_devices_key(owner_id), list(ids))

    def _persist_add(self, owner_id: str, device_id: str) -> None:
        ids = self._read_persisted_ids(owner_id)
        if device_id not in ids:
            ids.append(device_id)
        self._write_persisted_ids(owner_id, ids)

    def _persist_remove(self, owner_id: str, device_ids: Set[str]) -> None:
        ids = self._read_persisted_ids(owner_id)
        self._write_persisted_ids(owner_id, [i for i in ids if i not in device_ids])

    def _set_manual_disconnect(self, owner_id: str, value: bool) -> None:
        self._manual_disconnect[owner_id] = value
        if value:
            self.storage.set_item(manual_disconnect_key(owner_id), 'true')
        else:
            self.storage.remove_item(manual_disconnect_key(owner_id))

    def _forget(self, owner_id: str, device_id: str) -> bool:
        """Прибрати ID з пам'яті та сховища. Повертає True якщо він був підключений."""
        connected = self._connected.get(owner_id, [])
        was_connected = device_id in connected
        if was_connected:
            connected.remove(device_id)
        self._persist_remove(owner_id, {device_id})
        self._states[device_id] = ConnectionState.DISCONNECTED
        return was_connected

    def clear_manual_disconnect(self, owner_id: str) -> None:
        with self._lock:
            self._set_manual_disconnect(owner_id, False)

    # Стан

    def connected_ids(self, owner_id: Optional[str] = None) -> List[str]:
        """Підключені ID користувача (або всіх користувачів, якщо owner_id не задано)."""
        with self._lock:
            if owner_id is not None:
                return list(self._connected.get(owner_id, []))
            return [i for ids in self._connected.values() for i in ids]

    def is_connected(self, device_id: str) -> bool:
        with self._lock:
            return any(device_id in ids for ids in self._connected.values())

    def is_manual_disconnect(self, owner_id: str) -> bool:
        with self._lock:
            return self._manual_disconnect.get(owner_id, False)

    def get_state(self, device_id: str) -> ConnectionState:
        with self._lock:
            return self._states.get(device_id, ConnectionState.DISCONNECTED)

    def get_session_state(self, owner_id: str) -> dict:
        """Поточний стан сесії користувача для API."""
        with self._lock:
            connected = list(self._connected.get(owner_id, []))
            return {
                'connected_device_ids': connected,
                'states': dict((device_id, self._states[device_id].value)
                               for device_id in connected if device_id in self._states),
                'manual_disconnect': self._manual_disconnect.get(owner_id, False),
                'is_reconnecting': self.is_reconnecting,
            }

    # Операції

    def connect(self, device: Device, reconnect: bool = False) -> bool:
        """
        Підключитися до пристрою.

        Args:
            device: Пристрій з реєстру
            reconnect: Режим автоматичного відновлення (помилки не піднімаються)

        Returns:
            True якщо пристрій підключено

        Raises:
            InvalidAddress: відсутня або некоректна IP адреса (не в режимі reconnect)
            ConnectionFailed: пристрій не відповів (не в режимі reconnect)
            NotFound: пристрій видалили під час підключення (не в режимі reconnect)
            RegistryError: не вдалося зберегти дані підключення (не в режимі reconnect)
        """
        if not is_valid_ipv4(device.ip_address):
            if reconnect:
                self.logger.info(f"Пропускаю {device.name}: немає коректної IP адреси")
                return False
            raise InvalidAddress(device.ip_address)

        owner_id = device.owner_id
        with self._lock:
            previous_state = self._states.get(device.id, ConnectionState.DISCONNECTED)
            self._states[device.id] = ConnectionState.CONNECTING

        try:
            info = self.transport.get_info(device.ip_address)
            self.registry.update_device_connection(device.id, info.get('mac') or device.mac_address)
            refreshed = self.registry.get_device(owner_id, device.id)
            if refreshed is None:
                raise NotFound('Пристрій', device.id)
        except NotFound:
            with self._lock:
                was_connected = self._forget(owner_id, device.id)
            self.logger.info(f"Пристрій {device.name} видалено під час підключення")
            if was_connected and self.on_disconnect:
                self.on_disconnect(device.id)
            if reconnect:
                return False
            raise
        except (DeviceError, RegistryError) as e:
            with self._lock:
                self._states[device.id] = (
                    ConnectionState.CONNECTED if previous_state == ConnectionState.CONNECTED
                    and device.id in self._connected.get(owner_id, []) else ConnectionState.DISCONNECTED
                )
            if reconnect:
                self.logger.warning(f"Автоматичне підключення до {device.name} не вдалося: {e}")
                return False
            self.logger.error(f"Не вдалося підключитися до {device.name} ({device.ip_address}): {e}")
            if isinstance(e, RegistryError):
                raise
            raise ConnectionFailed(device.name) from e

        with self._lock:
            connected = self._connected.setdefault(owner_id, [])
            if device.id not in connected:
                connected.append(device.id)
            self._persist_add(owner_id, device.id)
            self._set_manual_disconnect(owner_id, False)
            self._states[device.id] = ConnectionState.CONNECTED

        self.logger.info(f"Підключено до {refreshed.name} ({refreshed.ip_address}, {refreshed.mac_address})")
        if self.on_connect:
            self.on_connect(refreshed)
        return True

    def disconnect(self, owner_id: str, device_id: str, manual: bool = True) -> None:
        """
        Відключити пристрій користувача.

        Ручне відключення останнього підключеного пристрою встановлює прапорець,
        що блокує автоматичне відновлення до наступного явного підключення.
        """
        with self._lock:
            self._states[device_id] = ConnectionState.DISCONNECTING
            was_connected = self._forget(owner_id, device_id)
            if manual and was_connected and not self._connected.get(owner_id):
                self._set_manual_disconnect(owner_id, True)

        mode = "ручне" if manual else "автоматичне"
        self.logger.info(f"Відключено пристрій {device_id} ({mode} відключення)")
        if self.on_disconnect:
            self.on_disconnect(device_id)

    def reconcile(self, owner_id: str, devices: Iterable[Device]) -> List[str]:
        """
        Прибрати з набору підключених ID користувача пристрої, яких більше немає в реєстрі.

        Args:
            owner_id: Власник, чий набір узгоджується
            devices: Щойно завантажений список пристроїв цього власника

        Returns:
            Підключені ID користувача після узгодження
        """
        existing = set(device.id for device in devices)
        with self._lock:
            connected = self._connected.get(owner_id, [])
            stale = set(i for i in connected if i not in existing)
            stale.update(i for i in self._read_persisted_ids(owner_id) if i not in existing)
            if not stale:
                return list(connected)
            self._connected[owner_id] = [i for i in connected if i in existing]
            self._persist_remove(owner_id, stale)
            for device_id in stale:
                self._states.pop(device_id, None)
            result = list(self._connected[owner_id])

        for device_id in stale:
            self.logger.info(f"Пристрій {device_id} більше не існує, прибираю з підключених")
            if self.on_disconnect:
                self.on_disconnect(device_id)
        return result

    def restore(self, owner_id: str) -> List[str]:
        """
        Прочитати збережений стан сесії користувача (при завантаженні сторінки).

        Returns:
            Збережені ID пристроїв
        """
        stored_flag = self.storage.get_item(manual_disconnect_key(owner_id))
        with self._lock:
            self._manual_disconnect[owner_id] = stored_flag == 'true'
        return self._read_persisted_ids(owner_id)

    def reconnect_all(self, owner_id: Optional[str]) -> Dict[str, bool]:
        """
        Спробувати відновити підключення до всіх збережених пристроїв.

        Нічого не робить без автентифікованого користувача або якщо
        встановлено прапорець ручного відключення.

        Returns:
            Словник {device_id: чи підключено} для кожної спроби
        """
        if not owner_id:
            return {}

        stored_ids = self.restore(owner_id)
        if self.is_manual_disconnect(owner_id):
            self.logger.info("Автоматичне відновлення пропущено: пристрої відключено вручну")
            return {}
        if not stored_ids:
            return {}

        results: Dict[str, bool] = {}
        self.is_reconnecting = True
        self.logger.info(f"Відновлення підключення до {len(stored_ids)} пристрою(їв)...")
        try:
            for device_id in stored_ids:
                try:
                    device = self.registry.get_device(owner_id, device_id)
                except RegistryError as e:
                    self.logger.warning(f"Не вдалося перевірити пристрій {device_id}: {e}")
                    continue

                if device is None:
                    self.logger.info(f"Пристрій {device_id} більше не існує")
                    connected = False
                else:
                    connected = self.connect(device, reconnect=True)
                    results[device_id] = connected

                if not connected:
                    with self._lock:
                        self._forget(owner_id, device_id)
        finally:
            self.is_reconnecting = False

        return results

    def connect_all(self, devices: Iterable[Device]) -> Dict[str, Optional[str]]:
        """
        Підключити всі ще не підключені пристрої з IP адресою, по черзі.

        Returns:
            Словник {device_id: текст помилки або None}
        """
        results: Dict[str, Optional[str]] = {}
        for device in devices:
            if self.is_connected(device.id) or not device.ip_address:
                continue
            try:
                self.connect(device)
                results[device.id] = None
            except (InvalidAddress, ConnectionFailed, NotFound, RegistryError) as e:
                results[device.id] = str(e)
        return results

    def disconnect_all(self, owner_id: str) -> List[str]:
        """Вручну відключити всі підключені пристрої користувача."""
        device_ids = self.connected_ids(owner_id)
        for device_id in device_ids:
            self.disconnect(owner_id, device_id, manual=True)
        return device_ids
