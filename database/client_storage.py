"""
Локальне сховище клієнта (аналог localStorage браузера).

Зберігає невеликі значення за рядковими ключами в одному JSON файлі.
Це кеш, а не джерело істини: існування пристроїв визначає база даних.
"""

import json
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from utils.logger import get_logger

CONNECTED_DEVICES_KEY = 'connectedDeviceIds'
MANUAL_DISCONNECT_KEY = 'manualDisconnect'


def connected_devices_key(owner_id: str) -> str:
    """Ключ списку підключених пристроїв користувача."""
    return f"{CONNECTED_DEVICES_KEY}:{owner_id}"


def manual_disconnect_key(owner_id: str) -> str:
    return f"{MANUAL_DISCONNECT_KEY}:{owner_id}"


class ClientStorage:
    """Сховище ключ-значення з файлом JSON (або лише в пам'яті)."""

    def __init__(self, path: Optional[str] = None):
        """
        Args:
            path: Шлях до JSON файлу; None - зберігати тільки в пам'яті
        """
        self.path = Path(path) if path else None
        self.logger = get_logger()
        self._lock = threading.Lock()
        self._items: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Не вдалося прочитати локальне сховище {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            self.logger.warning(f"Локальне сховище {self.path} пошкоджене, ігнорую")
            return {}
        return data

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(self._items, f)
        tmp_path.replace(self.path)

    def get_item(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._items.get(key, default)

    def set_item(self, key: str, value: Any) -> None:
        with self._lock:
            self._items[key] = value
            self._flush()

    def remove_item(self, key: str) -> None:
        with self._lock:
            if self._items.pop(key, None) is not None:
                self._flush()
