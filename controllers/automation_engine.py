"""
Модуль запуску та зупинки задач віджетів підключених пристроїв.
"""

import threading
import time
from typing import Optional, Dict, List, Callable, Any

from controllers.device_transport import DeviceTransport
from controllers.errors import DeviceError, NotFound
from controllers.widgets import WidgetBehavior, LedControlBehavior, create_behavior
from database.db import Database
from database.models import Device, Widget
from utils.config_manager import ConfigManager
from utils.logger import get_logger


class WidgetTask:
    """Фоновий потік одного віджета."""

    def __init__(self, behavior: WidgetBehavior, clock: Callable[[], float] = time.time):
        self.behavior = behavior
        self.clock = clock
        self.logger = get_logger()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        behavior.on_schedule_change = self.wake

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_alive:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"widget-{self.behavior.widget.id}",
            daemon=True
        )
        self._thread.start()

    def wake(self) -> None:
        """Перерахувати час наступного такту (змінились налаштування)."""
        self._wake_event.set()

    def stop(self, timeout: float = 5.0) -> None:
        """Скасувати задачу та дочекатися завершення потоку."""
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        widget = self.behavior.widget
        self.logger.debug(f"Задача віджета {widget.name} ({widget.id}) запущена")
        self.behavior.start(self.clock())

        while not self._stop_event.is_set():
            try:
                self.behavior.tick(self.clock())
            except Exception as e:
                self.logger.error(f"Помилка в задачі віджета {widget.name}: {e}", exc_info=True)

            if self._stop_event.is_set():
                break
            due = self.behavior.next_due(self.clock())
            timeout = None if due is None else max(0.0, due - self.clock())
            self._wake_event.wait(timeout)
            self._wake_event.clear()

        self.logger.debug(f"Задача віджета {widget.name} ({widget.id}) зупинена")


class AutomationEngine:
    """Клас, що тримає поведінку та задачі віджетів підключених пристроїв."""

    def __init__(
        self,
        registry: Database,
        transport: DeviceTransport,
        config: ConfigManager,
        clock: Callable[[], float] = time.time,
        start_tasks: bool = True
    ):
        """
        Ініціалізація рушія автоматики.

        Args:
            registry: Сховище віджетів
            transport: Транспорт до пристроїв
            config: Конфігурація (секція automation)
            clock: Джерело поточного часу
            start_tasks: Запускати потоки (False у тестах, що викликають tick напряму)
        """
        self.registry = registry
        self.transport = transport
        self.config = config
        self.clock = clock
        self.start_tasks = start_tasks
        self.logger = get_logger()

        self._lock = threading.RLock()
        self.devices: Dict[str, Device] = {}
        self.behaviors: Dict[str, WidgetBehavior] = {}
        self.tasks: Dict[str, WidgetTask] = {}
        self._device_widgets: Dict[str, List[str]] = {}

    def attach_device(self, device: Device) -> List[WidgetBehavior]:
        """
        Запустити задачі всіх активних віджетів підключеного пристрою.

        Повторний виклик (наприклад, після зміни IP) перезапускає задачі.
        """
        self.detach_device(device.id)
        widgets = self.registry.get_widgets_for_device(device.owner_id, device.mac_address)

        with self._lock:
            self.devices[device.id] = device
            self._device_widgets[device.id] = []
            started = [self._start_widget(widget, device) for widget in widgets if widget.is_active]

        self.logger.info(f"Автоматика {device.name}: запущено {len(started)} віджет(ів)")
        if self.start_tasks and any(isinstance(behavior, LedControlBehavior) for behavior in started):
            threading.Thread(
                target=self.check_led_status, args=(device,),
                name=f"led-sweep-{device.id}", daemon=True
            ).start()
        return started

    def detach_device(self, device_id: str) -> None:
        """Зупинити всі задачі пристрою."""
        with self._lock:
            widget_ids = self._device_widgets.pop(device_id, [])
            self.devices.pop(device_id, None)
            tasks = [self.tasks.pop(widget_id, None) for widget_id in widget_ids]
            for widget_id in widget_ids:
                self.behaviors.pop(widget_id, None)

        for task in tasks:
            if task is not None:
                task.stop()
        if widget_ids:
            self.logger.info(f"Автоматику пристрою {device_id} зупинено ({len(widget_ids)} віджет(ів))")

    def _start_widget(self, widget: Widget, device: Device) -> WidgetBehavior:
        behavior = create_behavior(
            widget, device.ip_address, self.registry, self.transport, self.config, self.clock
        )
        task = WidgetTask(behavior, self.clock)
        self.behaviors[widget.id] = behavior
        self.tasks[widget.id] = task
        self._device_widgets.setdefault(device.id, []).append(widget.id)
        if self.start_tasks and device.ip_address:
            task.start()
        return behavior

    def add_widget(self, widget: Widget, device: Device) -> Optional[WidgetBehavior]:
        """Запустити задачу нового віджета, якщо його пристрій підключено."""
        with self._lock:
            if device.id not in self.devices:
                return None
            if widget.id in self.behaviors:
                self.remove_widget(widget.id)
            return self._start_widget(widget, self.devices[device.id])

    def remove_widget(self, widget_id: str) -> None:
        with self._lock:
            task = self.tasks.pop(widget_id, None)
            self.behaviors.pop(widget_id, None)
            for widget_ids in self._device_widgets.values():
                if widget_id in widget_ids:
                    widget_ids.remove(widget_id)
        if task is not None:
            task.stop()

    def get_behavior(self, widget_id: str) -> WidgetBehavior:
        """
        Raises:
            NotFound: віджет не запущено (пристрій не підключено)
        """
        with self._lock:
            behavior = self.behaviors.get(widget_id)
        if behavior is None:
            raise NotFound('Активний віджет', widget_id)
        return behavior

    def check_led_status(self, device: Optional[Device] = None) -> Dict[str, bool]:
        """
        Прочитати стан LED з пристроїв та оновити LED віджети.

        Returns:
            Словник {widget_id: стан}
        """
        with self._lock:
            devices = [device] if device is not None else list(self.devices.values())
            led_behaviors = dict(
                (d.id, [self.behaviors[w] for w in self._device_widgets.get(d.id, [])
                        if isinstance(self.behaviors.get(w), LedControlBehavior)])
                for d in devices
            )

        results: Dict[str, bool] = {}
        for d in devices:
            behaviors = led_behaviors.get(d.id) or []
            if not behaviors or not d.ip_address:
                continue
            try:
                state = self.transport.get_actuator(d.ip_address, 'led')
            except DeviceError as e:
                self.logger.warning(f"Не вдалося перевірити стан LED {d.name}: {e}")
                continue
            for behavior in behaviors:
                behavior.sync_state(state)
                results[behavior.widget.id] = state
        return results

    def widget_statuses(self, device_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            if device_id is None:
                behaviors = list(self.behaviors.values())
            else:
                behaviors = [self.behaviors[w] for w in self._device_widgets.get(device_id, [])]
        return [behavior.get_status() for behavior in behaviors]

    def stop_all(self) -> None:
        """Зупинити задачі всіх пристроїв."""
        with self._lock:
            device_ids = list(self._device_widgets)
        for device_id in device_ids:
            self.detach_device(device_id)
        self.logger.info("Усі задачі віджетів зупинено")
