"""
Модуль для керування реєстром пристроїв користувача.
"""

import re
import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any

from controllers.device_transport import DeviceTransport, is_valid_ipv4
from controllers.errors import InvalidAddress, NotFound
from controllers.session_manager import ConnectionSessionManager
from database.db import Database
from database.models import Device, ApiKey
from utils.config_manager import ConfigManager
from utils.logger import get_logger

DEFAULT_DUMMY_IP = '192.168.1.200'
DUMMY_DEVICE_NAME = 'Dummy ESP32'
MIN_UPLOAD_INTERVAL_MS = 60 * 60 * 1000
MIN_SUPABASE_KEY_LENGTH = 32
UPLOAD_INTERVAL_KEYS = ('upload_interval', 'sensor_upload_interval', 'image_upload_interval')

RESET_ENDPOINTS = {
    'camera': 'reset-camera',
    'hard': 'hard-reset',
    'streams': 'reset-streams',
}


def generate_mac(prefix: str) -> str:
    """Тимчасова MAC адреса, яку замінить MAC з першого підключення."""
    return f"{prefix}-{uuid.uuid4().hex[:6].upper()}"


def parse_ip_list(ip_text: str) -> List[str]:
    """Розбити текст на IP адреси (по рядках або комах)."""
    return [part.strip() for part in re.split(r'[\n,]', ip_text or '') if part.strip()]


def validate_supabase_config(config: Dict[str, Any]) -> None:
    """
    Перевірити налаштування хмарного вивантаження перед відправкою на пристрій.

    Raises:
        ValueError: некоректне значення
    """
    url = config.get('supabase_url') or config.get('url')
    if not isinstance(url, str) or not url.startswith('https://'):
        raise ValueError("URL Supabase повинен починатися з https://")

    key = config.get('supabase_key') or config.get('api_key')
    if not isinstance(key, str) or len(key) < MIN_SUPABASE_KEY_LENGTH:
        raise ValueError(f"API ключ повинен містити щонайменше {MIN_SUPABASE_KEY_LENGTH} символи")

    for interval_key in UPLOAD_INTERVAL_KEYS:
        if interval_key not in config:
            continue
        value = config[interval_key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < MIN_UPLOAD_INTERVAL_MS:
            raise ValueError(f"{interval_key} повинен бути не менше 1 години ({MIN_UPLOAD_INTERVAL_MS} мс)")


class DeviceManager:
    """Клас для додавання, зміни та видалення пристроїв."""

    def __init__(
        self,
        registry: Database,
        session: ConnectionSessionManager,
        transport: DeviceTransport,
        config: ConfigManager
    ):
        self.registry = registry
        self.session = session
        self.transport = transport
        self.config = config
        self.logger = get_logger()
        self.dummy_ip = config.get('dummy_device.ip_address', DEFAULT_DUMMY_IP)

    def list_devices(self, owner_id: str) -> List[Device]:
        """Отримати пристрої та прибрати з сесії ті, яких більше немає."""
        devices = self.registry.get_devices(owner_id)
        self.session.reconcile(owner_id, devices)
        return devices

    def get_device(self, owner_id: str, device_id: str) -> Device:
        device = self.registry.get_device(owner_id, device_id)
        if device is None:
            raise NotFound('Пристрій', device_id)
        return device

    def _default_name(self, owner_id: str) -> str:
        return f"ESP32 Device {len(self.registry.get_devices(owner_id)) + 1}"

    def add_device(self, owner_id: str, ip_address: str, name: Optional[str] = None) -> Device:
        """
        Зареєструвати пристрій за IP адресою (без підключення).

        Raises:
            InvalidAddress: некоректна IP адреса
        """
        ip_address = (ip_address or '').strip()
        if not is_valid_ipv4(ip_address):
            raise InvalidAddress(ip_address)
        name = (name or '').strip() or self._default_name(owner_id)
        return self.registry.create_device(owner_id, name, generate_mac('ESP32'), ip_address)

    def add_devices(self, owner_id: str, ip_text: str, base_name: Optional[str] = None) -> List[Device]:
        """
        Додати кілька пристроїв одразу.

        Спочатку перевіряються всі адреси; якщо хоч одна некоректна,
        не створюється жоден пристрій.
        """
        addresses = parse_ip_list(ip_text)
        if not addresses:
            raise ValueError("Не вказано жодної IP адреси")
        invalid = [address for address in addresses if not is_valid_ipv4(address)]
        if invalid:
            raise InvalidAddress(', '.join(invalid))

        base_name = (base_name or '').strip()
        start_index = len(self.registry.get_devices(owner_id)) + 1
        created = []
        for i, address in enumerate(addresses):
            name = f"{base_name} {i + 1}" if base_name else f"ESP32 Device {start_index + i}"
            created.append(self.registry.create_device(owner_id, name, generate_mac('ESP32'), address))
        self.logger.info(f"Додано {len(created)} пристрій(ів)")
        return created

    def add_dummy_device(self, owner_id: str) -> Device:
        """
        Додати симульований пристрій (або використати наявний) та підключитися до нього.
        """
        device = self.registry.find_device_by_ip(owner_id, self.dummy_ip)
        if device is not None:
            self.registry.update_device(device.id, last_connected_at=datetime.now())
        else:
            device = self.registry.create_device(
                owner_id, DUMMY_DEVICE_NAME, generate_mac('DUMMY'), self.dummy_ip,
                last_connected_at=datetime.now()
            )
        self.session.clear_manual_disconnect(owner_id)
        self.session.connect(device)
        return self.get_device(owner_id, device.id)

    def update_device(self, owner_id: str, device_id: str, name: Optional[str] = None,
                      ip_address: Optional[str] = None) -> Device:
        """
        Змінити назву або IP адресу. Підключений пристрій перепідключається з новими даними.
        """
        device = self.get_device(owner_id, device_id)
        updates: Dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                raise ValueError("Назва пристрою не може бути порожньою")
            updates['name'] = name.strip()
        if ip_address is not None:
            ip_address = ip_address.strip()
            if not is_valid_ipv4(ip_address):
                raise InvalidAddress(ip_address)
            updates['ip_address'] = ip_address
        if not updates:
            return device

        self.registry.update_device(device_id, **updates)
        updated = self.get_device(owner_id, device_id)

        if self.session.is_connected(device_id):
            self.logger.info(f"Перепідключення {updated.name} з новими даними")
            self.session.disconnect(owner_id, device_id, manual=False)
            self.session.connect(updated)
        return updated

    def delete_device(self, owner_id: str, device_id: str) -> None:
        """Видалити пристрій, попередньо відключивши його."""
        self.get_device(owner_id, device_id)
        if self.session.is_connected(device_id):
            self.session.disconnect(owner_id, device_id, manual=True)
        self.registry.delete_device(device_id)

    def toggle_favorite(self, owner_id: str, device_id: str) -> Device:
        device = self.get_device(owner_id, device_id)
        self.registry.update_device(device_id, is_favorite=not device.is_favorite)
        return self.get_device(owner_id, device_id)

    def connect(self, owner_id: str, device_id: str) -> Device:
        self.session.connect(self.get_device(owner_id, device_id))
        return self.get_device(owner_id, device_id)

    def disconnect(self, owner_id: str, device_id: str) -> None:
        self.get_device(owner_id, device_id)
        self.session.disconnect(owner_id, device_id, manual=True)

    def connect_all(self, owner_id: str) -> Dict[str, Optional[str]]:
        return self.session.connect_all(self.list_devices(owner_id))

    def resume_session(self, owner_id: Optional[str]) -> Dict[str, bool]:
        """
        Відновити сесію після перезапуску: прочитати збережений стан,
        узгодити з реєстром, спробувати перепідключитися.
        """
        if not owner_id:
            return {}
        self.session.restore(owner_id)
        self.list_devices(owner_id)
        return self.session.reconnect_all(owner_id)

    # Обслуговування пристрою

    def _device_ip(self, owner_id: str, device_id: str) -> str:
        device = self.get_device(owner_id, device_id)
        if not is_valid_ipv4(device.ip_address):
            raise InvalidAddress(device.ip_address)
        return device.ip_address

    def reset(self, owner_id: str, device_id: str, action: str) -> Dict[str, Any]:
        """
        Виконати скидання на пристрої.

        Args:
            action: 'camera', 'hard' або 'streams'
        """
        endpoint = RESET_ENDPOINTS.get(action)
        if endpoint is None:
            raise ValueError(f"Невідома дія скидання: {action}")
        ip = self._device_ip(owner_id, device_id)
        self.logger.info(f"Скидання ({action}) пристрою {ip}")
        return self.transport.reset(ip, endpoint)

    def reset_camera(self, owner_id: str, device_id: str) -> Dict[str, Any]:
        return self.reset(owner_id, device_id, 'camera')

    def hard_reset(self, owner_id: str, device_id: str) -> Dict[str, Any]:
        return self.reset(owner_id, device_id, 'hard')

    def reset_streams(self, owner_id: str, device_id: str) -> Dict[str, Any]:
        return self.reset(owner_id, device_id, 'streams')

    def get_supabase_config(self, owner_id: str, device_id: str) -> Dict[str, Any]:
        return self.transport.get_supabase_config(self._device_ip(owner_id, device_id))

    def set_supabase_config(self, owner_id: str, device_id: str, config: Dict[str, Any]) -> Dict[str, Any]:
        validate_supabase_config(config)
        return self.transport.set_supabase_config(self._device_ip(owner_id, device_id), config)

    def clear_supabase_config(self, owner_id: str, device_id: str) -> Dict[str, Any]:
        return self.transport.clear_supabase_config(self._device_ip(owner_id, device_id))

    # API ключ

    def get_api_key(self, owner_id: str, device_id: str) -> Optional[ApiKey]:
        device = self.get_device(owner_id, device_id)
        return self.registry.get_api_key_for_device(owner_id, device.mac_address)

    def save_api_key(self, owner_id: str, device_id: str, key: str) -> ApiKey:
        if not isinstance(key, str) or not key.strip():
            raise ValueError("API ключ не може бути порожнім")
        device = self.get_device(owner_id, device_id)
        return self.registry.save_api_key_for_device(owner_id, device.mac_address, key.strip())
