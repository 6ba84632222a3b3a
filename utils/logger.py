"""
Модуль для логування подій панелі керування.
"""

import logging
from pathlib import Path
from typing import Optional

LOGGER_NAME = 'esp32_dashboard'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class Logger:
    """Клас для налаштування та використання логування."""

    _instance: Optional['Logger'] = None
    _initialized = False

    def __new__(cls):
        """Singleton pattern для Logger."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Ініціалізація Logger (виконується тільки один раз)."""
        if not Logger._initialized:
            self.logger: Optional[logging.Logger] = None
            Logger._initialized = True

    def setup(
        self,
        log_file: Optional[str] = "logs/dashboard.log",
        log_level: int = logging.INFO,
        enable_console: bool = True
    ) -> None:
        """
        Налаштувати логування.

        Args:
            log_file: Шлях до файлу логів (None - без файлу)
            log_level: Рівень логування
            enable_console: Чи виводити логи в консоль
        """
        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(log_level)

        # Закрити та очистити існуючі обробники
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

    def get_logger(self) -> logging.Logger:
        """
        Отримати об'єкт logger.

        Returns:
            Logger об'єкт
        """
        if self.logger is None:
            # Якщо logger не налаштований, створити базовий
            self.setup()
        return self.logger


# Глобальна функція для зручності
def get_logger() -> logging.Logger:
    """Отримати глобальний logger."""
    return Logger().get_logger()
