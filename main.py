"""
Головний файл панелі керування пристроями ESP32.
"""

import argparse
import signal
import sys
from threading import Event

from utils.config_manager import ConfigManager
from utils.logger import Logger
from controllers.device_transport import DeviceTransport
from controllers.session_manager import ConnectionSessionManager
from controllers.automation_engine import AutomationEngine
from controllers.device_manager import DeviceManager
from controllers.widget_manager import WidgetManager
from tests.mock_esp32 import MockESP32Device, MockTransport, DUMMY_IP, DUMMY_MAC
from database.db import Database
from database.client_storage import ClientStorage
from api.server import APIServer


class DashboardApp:
    """Головний клас програми."""

    def __init__(self, config_path: str = "config.yaml", dummy: bool = False):
        """
        Ініціалізація програми.

        Args:
            config_path: Шлях до файлу конфігурації
            dummy: Увімкнути симульований пристрій незалежно від конфігурації
        """
        # Завантаження конфігурації
        self.config = ConfigManager(config_path)

        if dummy:
            dummy_config = self.config.config.setdefault('dummy_device', {})
            dummy_config['enabled'] = True

        # Налаштування логування
        log_config = self.config.get_section('logging')
        logger = Logger()
        logger.setup(
            log_file=log_config.get('log_file', 'logs/dashboard.log'),
            log_level=10 if self.config.get('api.debug', False) else 20,
            enable_console=True
        )
        self.logger = logger.get_logger()

        # Валідація конфігурації
        try:
            self.config.validate()
        except ValueError as e:
            self.logger.error(f"Помилка валідації конфігурації: {e}")
            sys.exit(1)

        self.logger.info("Ініціалізація компонентів...")

        # Сховища
        self.database = Database(self.config.get('database.db_file', 'data/dashboard.db'))
        self.storage = ClientStorage(self.config.get('storage.client_storage_file', 'data/client_storage.json'))

        # Транспорт до пристроїв
        if self.config.is_dummy_enabled():
            dummy_config = self.config.get_section('dummy_device')
            self.dummy_device = MockESP32Device(
                ip_address=dummy_config.get('ip_address', DUMMY_IP),
                mac_address=dummy_config.get('mac_address', DUMMY_MAC)
            )
            self.transport = MockTransport(
                self.dummy_device, self.config, latency=float(dummy_config.get('latency', 0.3))
            )
            self.logger.info(f"Симульований пристрій доступний за адресою {self.dummy_device.ip_address}")
        else:
            self.dummy_device = None
            self.transport = DeviceTransport(self.config)

        # Автоматика та сесія
        self.engine = AutomationEngine(self.database, self.transport, self.config)
        self.session = ConnectionSessionManager(
            self.database,
            self.transport,
            self.storage,
            on_connect=self.engine.attach_device,
            on_disconnect=self.engine.detach_device
        )
        self.device_manager = DeviceManager(self.database, self.session, self.transport, self.config)
        self.widget_manager = WidgetManager(self.database, self.transport, self.engine)

        # API сервер
        api_config = self.config.get_section('api')
        if api_config.get('enabled', True):
            self.api_server = APIServer(
                self.device_manager,
                self.widget_manager,
                self.engine,
                self.session,
                self.database,
                self.config
            )
        else:
            self.api_server = None

        # Прапорець для завершення
        self.shutdown_event = Event()

        # Обробка сигналів
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.logger.info("Ініціалізація завершена")

    def _signal_handler(self, signum, frame):
        """Обробник сигналів для коректного завершення."""
        self.logger.info(f"Отримано сигнал {signum}, завершення роботи...")
        self.shutdown_event.set()

    def resume_session(self) -> None:
        """Відновити підключення користувача за замовчуванням."""
        user_id = self.config.get_default_user_id()
        if not user_id:
            self.logger.info("Користувача за замовчуванням не вказано, відновлення сесії пропущено")
            return
        results = self.device_manager.resume_session(user_id)
        if results:
            connected = sum(1 for ok in results.values() if ok)
            self.logger.info(f"Відновлено підключення: {connected} з {len(results)}")

    def run(self) -> None:
        """Запустити програму та чекати сигналу завершення."""
        self.logger.info("Запуск панелі керування ESP32")

        try:
            self.resume_session()

            if self.api_server:
                self.api_server.start()

            self.shutdown_event.wait()

        except KeyboardInterrupt:
            self.logger.info("Отримано сигнал переривання")
        except Exception as e:
            self.logger.critical(f"Критична помилка: {e}", exc_info=True)
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """Коректне завершення програми."""
        self.logger.info("Завершення роботи програми...")

        if self.api_server:
            self.api_server.stop()

        self.engine.stop_all()

        self.logger.info("Програма завершена")


def main():
    """Головна функція."""
    parser = argparse.ArgumentParser(description='Панель керування пристроями ESP32')
    parser.add_argument('--config', '-c', default='config.yaml', help='Шлях до файлу конфігурації')
    parser.add_argument('--dummy', action='store_true', help='Увімкнути симульований пристрій ESP32')

    args = parser.parse_args()

    app = DashboardApp(config_path=args.config, dummy=args.dummy)
    app.run()


if __name__ == '__main__':
    main()
