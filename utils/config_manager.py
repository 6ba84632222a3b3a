"""
Модуль для управління конфігурацією панелі керування ESP32.
"""

import ipaddress
import yaml
from typing import Dict, Any
from pathlib import Path


class ConfigManager:
    """Клас для завантаження та управління конфігурацією."""

    REQUIRED_SECTIONS = ['devices', 'storage', 'database', 'api']

    def __init__(self, config_path: str = "config.yaml"):
        """
        Ініціалізація ConfigManager.

        Args:
            config_path: Шлях до файлу конфігурації
        """
        self.config_path = Path(config_path)
        self.config: Dict[str, Any] = {}
        self.load_config()

    def load_config(self) -> None:
        """Завантажити конфігурацію з файлу."""
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Файл конфігурації не знайдено: {self.config_path}\n"
                f"Скопіюйте config.example.yaml як config.yaml та налаштуйте його."
            )

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self.config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Помилка парсингу YAML: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Отримати значення з конфігурації за ключем.

        Args:
            key: Ключ у форматі 'section.subsection.key' або просто 'key'
            default: Значення за замовчуванням, якщо ключ не знайдено

        Returns:
            Значення з конфігурації або default
        """
        keys = key.split('.')
        value = self.config

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Отримати всю секцію конфігурації.

        Args:
            section: Назва секції

        Returns:
            Словник з налаштуваннями секції або порожній словник
        """
        return self.config.get(section) or {}

    def is_dummy_enabled(self) -> bool:
        """Перевірити, чи увімкнено симульований пристрій."""
        return bool(self.get_section('dummy_device').get('enabled', False))

    def get_default_user_id(self):
        """Користувач, чия сесія відновлюється під час запуску."""
        return self.get_section('auth').get('default_user_id')

    def validate(self) -> bool:
        """
        Валідація конфігурації.

        Returns:
            True якщо конфігурація валідна
        """
        for section in self.REQUIRED_SECTIONS:
            if section not in self.config:
                raise ValueError(f"Відсутня обов'язкова секція: {section}")

        timeout = self.get('devices.request_timeout', 5.0)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError("devices.request_timeout повинен бути додатним числом")

        if self.is_dummy_enabled():
            dummy_ip = self.get('dummy_device.ip_address', '192.168.1.200')
            try:
                ipaddress.IPv4Address(str(dummy_ip))
            except ValueError:
                raise ValueError(f"Некоректна IP адреса симульованого пристрою: {dummy_ip}")

        return True

    def reload(self) -> None:
        """Перезавантажити конфігурацію з файлу."""
        self.load_config()
