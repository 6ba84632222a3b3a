"""
Модуль для роботи з базою даних SQLite: пристрої, віджети, API ключі, профілі.
"""

import json
import sqlite3
import uuid
from typing import List, Optional, Dict, Any
from datetime import datetime
from pathlib import Path

from controllers.errors import RegistryError, NotFound
from database.models import Device, Widget, ApiKey, Profile
from utils.logger import get_logger

DEVICE_FIELDS = {'name', 'mac_address', 'ip_address', 'is_favorite', 'last_connected_at'}
WIDGET_FIELDS = {'name', 'pin', 'is_active', 'position', 'configuration'}
PROFILE_FIELDS = {'email', 'name', 'avatar_url'}

API_KEY_SERVICE = 'amazon'


def _now() -> str:
    return datetime.now().isoformat()


def _to_column(key: str, value: Any) -> Any:
    """Підготувати значення поля для запису в базу."""
    if key in ('configuration', 'position'):
        return json.dumps(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


class Database:
    """Клас для роботи з базою даних SQLite."""

    def __init__(self, db_file: str = "data/dashboard.db"):
        """
        Ініціалізація бази даних.

        Args:
            db_file: Шлях до файлу бази даних
        """
        self.db_file = Path(db_file)
        self.db_file.parent.mkdir(parents=True, exist_ok=True)
        self.logger = get_logger()
        self._initialize_database()

    def _get_connection(self) -> sqlite3.Connection:
        """Отримати з'єднання з базою даних."""
        conn = sqlite3.connect(self.db_file)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize_database(self) -> None:
        """Ініціалізувати структуру бази даних."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()

            # MAC адреса унікальна в межах власника
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS devices (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    mac_address TEXT NOT NULL,
                    ip_address TEXT,
                    last_connected_at TEXT,
                    is_favorite INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (owner_id, mac_address)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS widgets (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    device_mac TEXT NOT NULL,
                    widget_type TEXT NOT NULL,
                    sensor_type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    pin INTEGER,
                    configuration TEXT NOT NULL DEFAULT '{}',
                    position TEXT NOT NULL DEFAULT '{"x": 0, "y": 0}',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS api_keys (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    device_mac TEXT NOT NULL,
                    name TEXT NOT NULL,
                    key TEXT NOT NULL,
                    service TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (owner_id, device_mac, service)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL UNIQUE,
                    email TEXT,
                    name TEXT,
                    avatar_url TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_devices_owner
                ON devices(owner_id)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_widgets_device
                ON widgets(owner_id, device_mac)
            """)

            conn.commit()
        finally:
            conn.close()
        self.logger.info(f"База даних ініціалізована: {self.db_file}")

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        """Виконати SELECT та повернути всі рядки."""
        try:
            conn = self._get_connection()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            self.logger.error(f"Помилка читання з бази даних: {e}")
            raise RegistryError(f"Помилка читання з бази даних: {e}") from e

    def _execute(self, sql: str, params: tuple = ()) -> int:
        """
        Виконати запит на зміну даних.

        Returns:
            Кількість змінених рядків
        """
        try:
            conn = self._get_connection()
            try:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor.rowcount
            finally:
                conn.close()
        except sqlite3.IntegrityError as e:
            self.logger.error(f"Порушення унікальності в базі даних: {e}")
            raise RegistryError(
                "Пристрій з такою MAC адресою вже існує", conflict=True
            ) from e
        except sqlite3.Error as e:
            self.logger.error(f"Помилка запису в базу даних: {e}")
            raise RegistryError(f"Помилка запису в базу даних: {e}") from e

    def _update(self, table: str, allowed: set, row_id: str, updates: Dict[str, Any], kind: str) -> None:
        """Оновити дозволені поля рядка та час оновлення."""
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Невідомі поля для оновлення: {', '.join(sorted(unknown))}")

        columns = dict((key, _to_column(key, value)) for key, value in updates.items())
        columns['updated_at'] = _now()
        assignments = ', '.join(f"{key} = ?" for key in columns)

        changed = self._execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            tuple(columns.values()) + (row_id,)
        )
        if changed == 0:
            raise NotFound(kind, row_id)

    # ПРИСТРОЇ

    def get_devices(self, owner_id: str) -> List[Device]:
        """
        Отримати всі пристрої користувача.

        Спочатку обрані, потім найновіші.
        """
        rows = self._query("""
            SELECT * FROM devices
            WHERE owner_id = ?
            ORDER BY is_favorite DESC, created_at DESC, rowid DESC
        """, (owner_id,))
        return [Device.from_row(row) for row in rows]

    def get_device(self, owner_id: str, device_id: str) -> Optional[Device]:
        """Отримати пристрій за ID або None, якщо його немає."""
        rows = self._query(
            "SELECT * FROM devices WHERE owner_id = ? AND id = ?",
            (owner_id, device_id)
        )
        return Device.from_row(rows[0]) if rows else None

    def find_device_by_ip(self, owner_id: str, ip_address: str) -> Optional[Device]:
        """Знайти перший пристрій користувача з вказаною IP адресою."""
        rows = self._query(
            "SELECT * FROM devices WHERE owner_id = ? AND ip_address = ? ORDER BY created_at LIMIT 1",
            (owner_id, ip_address)
        )
        return Device.from_row(rows[0]) if rows else None

    def create_device(
        self,
        owner_id: str,
        name: str,
        mac_address: str,
        ip_address: Optional[str] = None,
        last_connected_at: Optional[datetime] = None
    ) -> Device:
        """
        Створити пристрій.

        Raises:
            RegistryError: conflict=True якщо MAC адреса вже зареєстрована
        """
        device_id = str(uuid.uuid4())
        timestamp = _now()
        self._execute("""
            INSERT INTO devices (id, owner_id, name, mac_address, ip_address,
                                 last_connected_at, is_favorite, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
        """, (device_id, owner_id, name, mac_address, ip_address,
              _to_column('last_connected_at', last_connected_at), timestamp, timestamp))

        self.logger.info(f"Пристрій створено: {name} ({mac_address}, {ip_address})")
        return self.get_device(owner_id, device_id)

    def update_device(self, device_id: str, **updates) -> None:
        """Оновити поля пристрою (name, ip_address, is_favorite, ...)."""
        self._update('devices', DEVICE_FIELDS, device_id, updates, 'Пристрій')

    def update_device_connection(self, device_id: str, mac_address: Optional[str] = None) -> None:
        """
        Зафіксувати успішне підключення та, за наявності, MAC адресу.

        Віджети, прив'язані до попередньої MAC адреси, переходять на нову.
        """
        updates: Dict[str, Any] = {'last_connected_at': datetime.now()}
        if mac_address:
            updates['mac_address'] = mac_address
        previous = self._query("SELECT owner_id, mac_address FROM devices WHERE id = ?", (device_id,))
        self.update_device(device_id, **updates)

        if mac_address and previous and previous[0]['mac_address'] != mac_address:
            owner_id, old_mac = previous[0]['owner_id'], previous[0]['mac_address']
            moved = self._execute(
                "UPDATE widgets SET device_mac = ?, updated_at = ? WHERE owner_id = ? AND device_mac = ?",
                (mac_address, _now(), owner_id, old_mac)
            )
            self.logger.info(f"MAC пристрою {device_id} змінено: {old_mac} -> {mac_address} (віджетів: {moved})")

    def delete_device(self, device_id: str) -> None:
        """Видалити пристрій."""
        if self._execute("DELETE FROM devices WHERE id = ?", (device_id,)) == 0:
            raise NotFound('Пристрій', device_id)
        self.logger.info(f"Пристрій видалено: {device_id}")

    # ВІДЖЕТИ

    def get_widgets_for_device(self, owner_id: str, device_mac: str) -> List[Widget]:
        """Отримати віджети пристрою за його MAC адресою."""
        rows = self._query("""
            SELECT * FROM widgets
            WHERE owner_id = ? AND device_mac = ?
            ORDER BY created_at DESC, rowid DESC
        """, (owner_id, device_mac))
        return [Widget.from_row(row) for row in rows]

    def get_widget(self, widget_id: str) -> Optional[Widget]:
        rows = self._query("SELECT * FROM widgets WHERE id = ?", (widget_id,))
        return Widget.from_row(rows[0]) if rows else None

    def create_widget(
        self,
        owner_id: str,
        device_mac: str,
        widget_type: str,
        sensor_type: str,
        name: str,
        pin: Optional[int] = None,
        configuration: Optional[Dict[str, Any]] = None,
        position: Optional[Dict[str, Any]] = None,
        is_active: bool = True
    ) -> Widget:
        """Створити віджет."""
        widget_id = str(uuid.uuid4())
        timestamp = _now()
        self._execute("""
            INSERT INTO widgets (id, owner_id, device_mac, widget_type, sensor_type, name,
                                 pin, configuration, position, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (widget_id, owner_id, device_mac, widget_type, sensor_type, name, pin,
              json.dumps(configuration or {}), json.dumps(position or {'x': 0, 'y': 0}),
              int(is_active), timestamp, timestamp))

        self.logger.info(f"Віджет створено: {name} ({sensor_type}) для {device_mac}")
        return self.get_widget(widget_id)

    def update_widget(self, widget_id: str, **updates) -> None:
        """Оновити поля віджета (pin, name, is_active, position)."""
        self._update('widgets', WIDGET_FIELDS, widget_id, updates, 'Віджет')

    def update_widget_configuration(self, widget_id: str, configuration: Dict[str, Any]) -> None:
        """Замінити конфігурацію віджета повністю."""
        self.update_widget(widget_id, configuration=configuration)

    def delete_widget(self, widget_id: str) -> None:
        if self._execute("DELETE FROM widgets WHERE id = ?", (widget_id,)) == 0:
            raise NotFound('Віджет', widget_id)
        self.logger.info(f"Віджет видалено: {widget_id}")

    # API КЛЮЧІ

    def get_api_key_for_device(self, owner_id: str, device_mac: str) -> Optional[ApiKey]:
        rows = self._query("""
            SELECT * FROM api_keys
            WHERE owner_id = ? AND device_mac = ? AND service = ?
        """, (owner_id, device_mac, API_KEY_SERVICE))
        return ApiKey.from_row(rows[0]) if rows else None

    def save_api_key_for_device(self, owner_id: str, device_mac: str, key: str) -> ApiKey:
        """Оновити ключ пристрою або створити новий."""
        existing = self.get_api_key_for_device(owner_id, device_mac)
        if existing:
            self._execute(
                "UPDATE api_keys SET key = ?, updated_at = ? WHERE id = ?",
                (key, _now(), existing.id)
            )
        else:
            timestamp = _now()
            self._execute("""
                INSERT INTO api_keys (id, owner_id, device_mac, name, key, service, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (str(uuid.uuid4()), owner_id, device_mac, f"API Key for {device_mac}",
                  key, API_KEY_SERVICE, timestamp, timestamp))
        return self.get_api_key_for_device(owner_id, device_mac)

    def delete_api_key(self, key_id: str) -> None:
        if self._execute("DELETE FROM api_keys WHERE id = ?", (key_id,)) == 0:
            raise NotFound('API ключ', key_id)

    # ПРОФІЛІ

    def get_user_profile(self, user_id: str) -> Optional[Profile]:
        rows = self._query("SELECT * FROM profiles WHERE user_id = ?", (user_id,))
        return Profile.from_row(rows[0]) if rows else None

    def update_user_profile(self, user_id: str, **updates) -> Profile:
        """Оновити профіль, створивши його при першому зверненні."""
        unknown = set(updates) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Невідомі поля профілю: {', '.join(sorted(unknown))}")

        if self.get_user_profile(user_id) is None:
            self._execute(
                "INSERT INTO profiles (id, user_id, created_at) VALUES (?, ?, ?)",
                (str(uuid.uuid4()), user_id, _now())
            )
        if updates:
            assignments = ', '.join(f"{key} = ?" for key in updates)
            self._execute(
                f"UPDATE profiles SET {assignments} WHERE user_id = ?",
                tuple(updates.values()) + (user_id,)
            )
        return self.get_user_profile(user_id)
