"""
Модуль для створення та видалення віджетів.
"""

from typing import Optional, List, Union, Iterable

from controllers.automation_engine import AutomationEngine
from controllers.device_transport import DeviceTransport
from controllers.errors import DeviceError, NotFound
from controllers.widgets import WidgetKind, WIDGET_TEMPLATES, validate_pin
from database.db import Database
from database.models import Device, Widget
from utils.logger import get_logger


class WidgetManager:
    """Клас для керування віджетами пристроїв."""

    def __init__(self, registry: Database, transport: DeviceTransport, engine: AutomationEngine):
        self.registry = registry
        self.transport = transport
        self.engine = engine
        self.logger = get_logger()

    def create_widget(
        self,
        owner_id: str,
        device: Device,
        kind: Union[WidgetKind, str],
        name: Optional[str] = None,
        pin: Optional[int] = None
    ) -> Widget:
        """
        Створити віджет з параметрами за замовчуванням для його виду.

        Пін надсилається на пристрій після збереження; помилка лише
        записується в лог, віджет залишається.

        Raises:
            ValueError: невідомий вид, порожня назва або некоректний пін
        """
        try:
            kind = WidgetKind(kind)
        except ValueError:
            raise ValueError(f"Невідомий тип віджета: {kind}")
        template = WIDGET_TEMPLATES[kind]

        name = template.default_name if name is None else name.strip()
        if not name:
            raise ValueError("Назва віджета не може бути порожньою")
        pin = template.default_pin if pin is None else validate_pin(pin)

        widget = self.registry.create_widget(
            owner_id, device.mac_address, template.widget_type, kind.value, name,
            pin=pin, configuration=template.new_configuration()
        )

        if template.pin_endpoint and pin is not None and device.ip_address:
            try:
                self.transport.configure_pin(device.ip_address, template.pin_endpoint, pin)
            except DeviceError as e:
                self.logger.warning(f"Віджет {name} створено, але пін не налаштовано на пристрої: {e}")

        self.engine.add_widget(widget, device)
        return widget

    def get_widget(self, widget_id: str) -> Widget:
        widget = self.registry.get_widget(widget_id)
        if widget is None:
            raise NotFound('Віджет', widget_id)
        return widget

    def delete_widget(self, widget_id: str) -> None:
        """Зупинити задачу віджета та видалити запис."""
        self.engine.remove_widget(widget_id)
        self.registry.delete_widget(widget_id)

    def list_widgets(self, owner_id: str, devices: Iterable[Device]) -> List[Widget]:
        widgets: List[Widget] = []
        for device in devices:
            if device.mac_address:
                widgets.extend(self.registry.get_widgets_for_device(owner_id, device.mac_address))
        return widgets
