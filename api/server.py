"""
REST API сервер панелі керування пристроями ESP32.
"""

from flask import Flask, jsonify, request
from flask_cors import CORS
from typing import Optional, Dict, Any, Type
import threading

from controllers.automation_engine import AutomationEngine
from controllers.device_manager import DeviceManager
from controllers.errors import (
    DashboardError, InvalidAddress, NotFound, RegistryError, ConnectionFailed, DeviceError
)
from controllers.session_manager import ConnectionSessionManager
from controllers.widget_manager import WidgetManager
from controllers.widgets import (
    WidgetBehavior, LedControlBehavior, ClosedLoopBehavior, SensorPollBehavior, WebcamBehavior
)
from database.db import Database
from database.models import Widget
from utils.config_manager import ConfigManager
from utils.logger import get_logger

USER_HEADER = 'X-User-Id'


class MissingUser(DashboardError):
    """Запит без ідентифікатора користувача."""


class APIServer:
    """Клас для REST API сервера."""

    def __init__(
        self,
        device_manager: DeviceManager,
        widget_manager: WidgetManager,
        engine: AutomationEngine,
        session: ConnectionSessionManager,
        database: Database,
        config: ConfigManager
    ):
        """
        Ініціалізація API сервера.

        Args:
            device_manager: Менеджер пристроїв
            widget_manager: Менеджер віджетів
            engine: Рушій автоматики віджетів
            session: Менеджер сесії підключень
            database: База даних
            config: Конфігурація
        """
        self.device_manager = device_manager
        self.widget_manager = widget_manager
        self.engine = engine
        self.session = session
        self.database = database
        self.config = config
        self.logger = get_logger()

        # Налаштування Flask
        api_config = config.get_section('api')
        self.host = api_config.get('host', '0.0.0.0')
        self.port = api_config.get('port', 8080)
        self.debug = api_config.get('debug', False)

        self.app = Flask(__name__)
        CORS(self.app)

        self._register_error_handlers()
        self._register_routes()

        self.server_thread: Optional[threading.Thread] = None
        self.is_running = False

    # Допоміжні методи

    def _user_id(self) -> str:
        user_id = request.headers.get(USER_HEADER, '').strip()
        if not user_id:
            raise MissingUser("Потрібна автентифікація")
        return user_id

    @staticmethod
    def _body() -> Dict[str, Any]:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    def _owned_widget(self, user_id: str, widget_id: str) -> Widget:
        widget = self.widget_manager.get_widget(widget_id)
        if widget.owner_id != user_id:
            raise NotFound('Віджет', widget_id)
        return widget

    def _behavior(self, user_id: str, widget_id: str,
                  expected: Type[WidgetBehavior] = WidgetBehavior) -> WidgetBehavior:
        """Поведінка віджета підключеного пристрою потрібного типу."""
        self._owned_widget(user_id, widget_id)
        behavior = self.engine.get_behavior(widget_id)
        if not isinstance(behavior, expected):
            raise ValueError(f"Команда не підтримується віджетом типу {behavior.kind.value}")
        return behavior

    @staticmethod
    def _command_result(ok: bool, behavior: WidgetBehavior):
        if ok:
            return jsonify(behavior.get_status())
        return jsonify({'error': behavior.error or "Пристрій не підтвердив команду"}), 502

    def _register_error_handlers(self) -> None:
        """Відображення помилок панелі на HTTP статуси."""

        @self.app.errorhandler(MissingUser)
        def handle_missing_user(e):
            return jsonify({'error': str(e)}), 401

        @self.app.errorhandler(InvalidAddress)
        @self.app.errorhandler(ValueError)
        def handle_bad_request(e):
            return jsonify({'error': str(e)}), 400

        @self.app.errorhandler(NotFound)
        def handle_not_found(e):
            return jsonify({'error': str(e)}), 404

        @self.app.errorhandler(RegistryError)
        def handle_registry_error(e):
            return jsonify({'error': str(e)}), 409 if e.conflict else 500

        @self.app.errorhandler(ConnectionFailed)
        @self.app.errorhandler(DeviceError)
        def handle_device_error(e):
            return jsonify({'error': str(e)}), 502

    def _register_routes(self) -> None:
        """Зареєструвати всі маршрути API."""

        @self.app.route('/api/status')
        def api_status():
            """Загальний статус сервісу."""
            return jsonify({
                'status': 'running',
                'dummy_enabled': self.config.is_dummy_enabled(),
                'connected_devices': len(self.session.connected_ids()),
                'active_widgets': len(self.engine.behaviors)
            })

        # Сесія

        @self.app.route('/api/session')
        def api_session():
            return jsonify(self.session.get_session_state(self._user_id()))

        @self.app.route('/api/session/resume', methods=['POST'])
        def api_session_resume():
            """Відновити підключення до збережених пристроїв."""
            user_id = self._user_id()
            results = self.device_manager.resume_session(user_id)
            return jsonify({'results': results, 'session': self.session.get_session_state(user_id)})

        # Пристрої

        @self.app.route('/api/devices', methods=['GET'])
        def api_devices():
            user_id = self._user_id()
            devices = self.device_manager.list_devices(user_id)
            connected = set(self.session.connected_ids(user_id))
            return jsonify({'devices': [
                dict(device.to_dict(), connected=device.id in connected) for device in devices
            ]})

        @self.app.route('/api/devices', methods=['POST'])
        def api_add_device():
            body = self._body()
            device = self.device_manager.add_device(self._user_id(), body.get('ip_address'), body.get('name'))
            return jsonify(device.to_dict()), 201

        @self.app.route('/api/devices/batch', methods=['POST'])
        def api_add_devices():
            body = self._body()
            ip_text = body.get('ip_addresses') or ''
            if isinstance(ip_text, list):
                ip_text = '\n'.join(str(ip) for ip in ip_text)
            devices = self.device_manager.add_devices(self._user_id(), ip_text, body.get('base_name'))
            return jsonify({'devices': [device.to_dict() for device in devices]}), 201

        @self.app.route('/api/devices/dummy', methods=['POST'])
        def api_add_dummy():
            device = self.device_manager.add_dummy_device(self._user_id())
            return jsonify(device.to_dict()), 201

        @self.app.route('/api/devices/connect-all', methods=['POST'])
        def api_connect_all():
            return jsonify({'results': self.device_manager.connect_all(self._user_id())})

        @self.app.route('/api/devices/disconnect-all', methods=['POST'])
        def api_disconnect_all():
            return jsonify({'disconnected': self.session.disconnect_all(self._user_id())})

        @self.app.route('/api/devices/<device_id>', methods=['GET'])
        def api_device(device_id: str):
            device = self.device_manager.get_device(self._user_id(), device_id)
            return jsonify(dict(device.to_dict(), connected=self.session.is_connected(device_id)))

        @self.app.route('/api/devices/<device_id>', methods=['PATCH'])
        def api_update_device(device_id: str):
            body = self._body()
            device = self.device_manager.update_device(
                self._user_id(), device_id, name=body.get('name'), ip_address=body.get('ip_address')
            )
            return jsonify(device.to_dict())

        @self.app.route('/api/devices/<device_id>', methods=['DELETE'])
        def api_delete_device(device_id: str):
            self.device_manager.delete_device(self._user_id(), device_id)
            return '', 204

        @self.app.route('/api/devices/<device_id>/favorite', methods=['POST'])
        def api_toggle_favorite(device_id: str):
            return jsonify(self.device_manager.toggle_favorite(self._user_id(), device_id).to_dict())

        @self.app.route('/api/devices/<device_id>/connect', methods=['POST'])
        def api_connect(device_id: str):
            device = self.device_manager.connect(self._user_id(), device_id)
            return jsonify(dict(device.to_dict(), connected=True))

        @self.app.route('/api/devices/<device_id>/disconnect', methods=['POST'])
        def api_disconnect(device_id: str):
            self.device_manager.disconnect(self._user_id(), device_id)
            return jsonify({'connected': False})

        @self.app.route('/api/devices/<device_id>/reset/<action>', methods=['POST'])
        def api_reset(device_id: str, action: str):
            return jsonify(self.device_manager.reset(self._user_id(), device_id, action))

        @self.app.route('/api/devices/<device_id>/cloud-config', methods=['GET'])
        def api_get_cloud_config(device_id: str):
            return jsonify(self.device_manager.get_supabase_config(self._user_id(), device_id))

        @self.app.route('/api/devices/<device_id>/cloud-config', methods=['POST'])
        def api_set_cloud_config(device_id: str):
            return jsonify(self.device_manager.set_supabase_config(self._user_id(), device_id, self._body()))

        @self.app.route('/api/devices/<device_id>/cloud-config', methods=['DELETE'])
        def api_clear_cloud_config(device_id: str):
            return jsonify(self.device_manager.clear_supabase_config(self._user_id(), device_id))

        @self.app.route('/api/devices/<device_id>/api-key', methods=['GET'])
        def api_get_api_key(device_id: str):
            api_key = self.device_manager.get_api_key(self._user_id(), device_id)
            return jsonify({'api_key': api_key.to_dict() if api_key else None})

        @self.app.route('/api/devices/<device_id>/api-key', methods=['PUT'])
        def api_save_api_key(device_id: str):
            api_key = self.device_manager.save_api_key(self._user_id(), device_id, self._body().get('key'))
            return jsonify({'api_key': api_key.to_dict()})

        # Віджети

        @self.app.route('/api/devices/<device_id>/widgets', methods=['GET'])
        def api_device_widgets(device_id: str):
            user_id = self._user_id()
            device = self.device_manager.get_device(user_id, device_id)
            widgets = self.widget_manager.list_widgets(user_id, [device])
            statuses = dict((status['widget_id'], status) for status in self.engine.widget_statuses(device_id))
            return jsonify({'widgets': [
                dict(widget.to_dict(), status=statuses.get(widget.id)) for widget in widgets
            ]})

        @self.app.route('/api/devices/<device_id>/widgets', methods=['POST'])
        def api_create_widget(device_id: str):
            user_id = self._user_id()
            body = self._body()
            device = self.device_manager.get_device(user_id, device_id)
            widget = self.widget_manager.create_widget(
                user_id, device, body.get('kind'), name=body.get('name'), pin=body.get('pin')
            )
            return jsonify(widget.to_dict()), 201

        @self.app.route('/api/widgets/<widget_id>', methods=['GET'])
        def api_widget(widget_id: str):
            widget = self._owned_widget(self._user_id(), widget_id)
            behavior = self.engine.behaviors.get(widget_id)
            return jsonify(dict(widget.to_dict(), status=behavior.get_status() if behavior else None))

        @self.app.route('/api/widgets/<widget_id>', methods=['DELETE'])
        def api_delete_widget(widget_id: str):
            self._owned_widget(self._user_id(), widget_id)
            self.widget_manager.delete_widget(widget_id)
            return '', 204

        @self.app.route('/api/widgets/<widget_id>/state', methods=['POST'])
        def api_widget_state(widget_id: str):
            """Ручне керування LED або реле."""
            behavior = self._behavior(self._user_id(), widget_id)
            state = self._body().get('state')
            if isinstance(behavior, LedControlBehavior):
                ok = behavior.toggle(None if state is None else bool(state))
            elif isinstance(behavior, ClosedLoopBehavior):
                ok = behavior.toggle() if state is None else behavior.set_manual_state(bool(state))
            else:
                raise ValueError(f"Віджет типу {behavior.kind.value} не має перемикача")
            return self._command_result(ok, behavior)

        @self.app.route('/api/widgets/<widget_id>/mode', methods=['POST'])
        def api_widget_mode(widget_id: str):
            behavior = self._behavior(self._user_id(), widget_id, ClosedLoopBehavior)
            ok = behavior.set_auto_mode(bool(self._body().get('auto')))
            return self._command_result(ok, behavior)

        @self.app.route('/api/widgets/<widget_id>/settings', methods=['PATCH'])
        def api_widget_settings(widget_id: str):
            behavior = self._behavior(self._user_id(), widget_id, ClosedLoopBehavior)
            body = self._body()
            settings = {
                'threshold': body.get('threshold'),
                'check_interval': body.get('check_interval'),
            }
            if 'pump_duration' in body:
                settings['pump_duration'] = body['pump_duration']
            return self._command_result(behavior.update_settings(**settings), behavior)

        @self.app.route('/api/widgets/<widget_id>/pin', methods=['POST'])
        def api_widget_pin(widget_id: str):
            behavior = self._behavior(self._user_id(), widget_id)
            return self._command_result(behavior.update_pin(self._body().get('pin')), behavior)

        @self.app.route('/api/widgets/<widget_id>/refresh-interval', methods=['POST'])
        def api_widget_refresh_interval(widget_id: str):
            behavior = self._behavior(self._user_id(), widget_id, SensorPollBehavior)
            return self._command_result(behavior.set_refresh_interval(self._body().get('seconds')), behavior)

        @self.app.route('/api/widgets/<widget_id>/refresh', methods=['POST'])
        def api_widget_refresh(widget_id: str):
            behavior = self._behavior(self._user_id(), widget_id, SensorPollBehavior)
            behavior.refresh()
            return jsonify(behavior.get_status())

        @self.app.route('/api/widgets/<widget_id>/streaming', methods=['POST'])
        def api_widget_streaming(widget_id: str):
            behavior = self._behavior(self._user_id(), widget_id, WebcamBehavior)
            behavior.set_streaming(bool(self._body().get('enabled')))
            return jsonify(behavior.get_status())

        @self.app.route('/api/widgets/<widget_id>/inference', methods=['POST'])
        def api_widget_inference(widget_id: str):
            behavior = self._behavior(self._user_id(), widget_id, WebcamBehavior)
            behavior.set_ml_enabled(bool(self._body().get('enabled')))
            return jsonify(behavior.get_status())

        @self.app.route('/api/led-status', methods=['POST'])
        def api_led_status():
            """Перевірити стан LED на всіх підключених пристроях."""
            self._user_id()
            return jsonify({'states': self.engine.check_led_status()})

        # Профіль

        @self.app.route('/api/profile', methods=['GET'])
        def api_profile():
            profile = self.database.get_user_profile(self._user_id())
            return jsonify({'profile': profile.to_dict() if profile else None})

        @self.app.route('/api/profile', methods=['PATCH'])
        def api_update_profile():
            body = self._body()
            updates = dict((key, body[key]) for key in ('email', 'name', 'avatar_url') if key in body)
            profile = self.database.update_user_profile(self._user_id(), **updates)
            return jsonify({'profile': profile.to_dict()})

    def start(self) -> None:
        """Запустити API сервер в окремому потоці."""
        if self.is_running:
            self.logger.warning("API сервер вже запущений")
            return

        def run_server():
            self.logger.info(f"Запуск API сервера на {self.host}:{self.port}")
            self.app.run(host=self.host, port=self.port, debug=self.debug, use_reloader=False)

        self.server_thread = threading.Thread(target=run_server, daemon=True)
        self.server_thread.start()
        self.is_running = True
        self.logger.info("API сервер запущено")

    def stop(self) -> None:
        """Зупинити API сервер."""
        # Flask не має прямого способу зупинки, тому просто позначаємо як зупинений
        self.is_running = False
        self.logger.info("API сервер зупинено")
