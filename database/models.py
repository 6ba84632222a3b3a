"""
Моделі даних для сховища пристроїв та віджетів.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Перетворити ISO рядок з бази на datetime."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _load_json(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default


@dataclass
class Device:
    """Зареєстрований пристрій ESP32."""
    id: str
    owner_id: str
    name: str
    mac_address: str
    ip_address: Optional[str] = None
    last_connected_at: Optional[datetime] = None
    is_favorite: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> 'Device':
        """Створити модель з рядка sqlite3.Row."""
        return cls(
            id=row['id'],
            owner_id=row['owner_id'],
            name=row['name'],
            mac_address=row['mac_address'],
            ip_address=row['ip_address'],
            last_connected_at=_parse_timestamp(row['last_connected_at']),
            is_favorite=bool(row['is_favorite']),
            created_at=_parse_timestamp(row['created_at']),
            updated_at=_parse_timestamp(row['updated_at'])
        )

    def to_dict(self) -> dict:
        """Конвертувати в словник."""
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'name': self.name,
            'mac_address': self.mac_address,
            'ip_address': self.ip_address,
            'last_connected_at': _format_timestamp(self.last_connected_at),
            'is_favorite': self.is_favorite,
            'created_at': _format_timestamp(self.created_at),
            'updated_at': _format_timestamp(self.updated_at)
        }


@dataclass
class Widget:
    """Віджет, прив'язаний до пристрою через MAC адресу."""
    id: str
    owner_id: str
    device_mac: str
    widget_type: str  # 'sensor' або 'control'
    sensor_type: str
    name: str
    pin: Optional[int] = None
    configuration: Dict[str, Any] = field(default_factory=dict)
    position: Dict[str, Any] = field(default_factory=lambda: {'x': 0, 'y': 0})
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> 'Widget':
        """Створити модель з рядка sqlite3.Row."""
        return cls(
            id=row['id'],
            owner_id=row['owner_id'],
            device_mac=row['device_mac'],
            widget_type=row['widget_type'],
            sensor_type=row['sensor_type'],
            name=row['name'],
            pin=row['pin'],
            configuration=_load_json(row['configuration'], {}),
            position=_load_json(row['position'], {'x': 0, 'y': 0}),
            is_active=bool(row['is_active']),
            created_at=_parse_timestamp(row['created_at']),
            updated_at=_parse_timestamp(row['updated_at'])
        )

    def to_dict(self) -> dict:
        """Конвертувати в словник."""
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'device_mac': self.device_mac,
            'widget_type': self.widget_type,
            'sensor_type': self.sensor_type,
            'name': self.name,
            'pin': self.pin,
            'configuration': dict(self.configuration),
            'position': dict(self.position),
            'is_active': self.is_active,
            'created_at': _format_timestamp(self.created_at),
            'updated_at': _format_timestamp(self.updated_at)
        }


@dataclass
class ApiKey:
    """API ключ стороннього сервісу для пристрою."""
    id: str
    owner_id: str
    device_mac: str
    name: str
    key: str
    service: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> 'ApiKey':
        return cls(
            id=row['id'],
            owner_id=row['owner_id'],
            device_mac=row['device_mac'],
            name=row['name'],
            key=row['key'],
            service=row['service'],
            created_at=_parse_timestamp(row['created_at'])
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'device_mac': self.device_mac,
            'name': self.name,
            'key': self.key,
            'service': self.service,
            'created_at': _format_timestamp(self.created_at)
        }


@dataclass
class Profile:
    """Профіль користувача."""
    id: str
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> 'Profile':
        return cls(
            id=row['id'],
            user_id=row['user_id'],
            email=row['email'],
            name=row['name'],
            avatar_url=row['avatar_url'],
            created_at=_parse_timestamp(row['created_at'])
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'email': self.email,
            'name': self.name,
            'avatar_url': self.avatar_url,
            'created_at': _format_timestamp(self.created_at)
        }
