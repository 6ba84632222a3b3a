"""
Поведінка віджетів: опитування датчиків та замкнені контури керування.

Кожен вид віджета (WidgetKind) має власну схему конфігурації та власний
клас поведінки. Стан таймерів зберігається явно (AutomationTimerState) і
перераховується від поточного часу на кожному такті.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, Callable, Tuple, List

from controllers.device_transport import DeviceTransport, SensorKind, SensorReading
from controllers.errors import DeviceError
from database.db import Database
from database.models import Widget
from utils.config_manager import ConfigManager
from utils.logger import get_logger

DEFAULT_HYSTERESIS_BAND = 10.0
DEFAULT_INFERENCE_INTERVAL = 0.25
DEFAULT_REFRESH_RATES = {'moisture': 10, 'temperature_humidity': 10, 'light': 5}
SHUTOFF_RETRY_DELAY = 5.0
MAX_GPIO_PIN = 39


class WidgetKind(Enum):
    """Значення поля sensor_type віджета."""
    LED_CONTROL = 'led_control'
    MOISTURE = 'moisture'
    TEMPERATURE_HUMIDITY = 'temperature_humidity'
    WATER_PUMP = 'water_pump'
    LIGHT = 'light'
    LIGHT_CONTROL = 'light_control'
    WEBCAM = 'webcam'


@dataclass
class WidgetTemplate:
    """Параметри створення віджета певного виду."""
    widget_type: str
    default_name: str
    default_pin: Optional[int]
    pin_endpoint: Optional[str]
    default_configuration: Dict[str, Any]

    def new_configuration(self) -> Dict[str, Any]:
        return dict(self.default_configuration)


WIDGET_TEMPLATES = {
    WidgetKind.LED_CONTROL: WidgetTemplate(
        'control', 'LED Control', 2, 'set-led-pin', {'state': False}),
    WidgetKind.MOISTURE: WidgetTemplate(
        'sensor', 'Soil Moisture', 34, 'set-moisture-pin',
        {'refresh_rate': DEFAULT_REFRESH_RATES['moisture']}),
    WidgetKind.TEMPERATURE_HUMIDITY: WidgetTemplate(
        'sensor', 'Temperature & Humidity', 4, 'set-dht-pin',
        {'refresh_rate': DEFAULT_REFRESH_RATES['temperature_humidity']}),
    WidgetKind.WATER_PUMP: WidgetTemplate(
        'control', 'Water Pump', 5, 'set-relay-pin',
        {'state': False, 'autoMode': False, 'minMoistureLevel': 30, 'checkInterval': 15, 'pumpDuration': 30}),
    WidgetKind.LIGHT: WidgetTemplate(
        'sensor', 'Light Sensor', 32, 'set-light-pin',
        {'refresh_rate': DEFAULT_REFRESH_RATES['light']}),
    WidgetKind.LIGHT_CONTROL: WidgetTemplate(
        'control', 'Light Control', 0, 'set-relay-pin',
        {'state': False, 'autoMode': False, 'lightThreshold': 30, 'checkInterval': 15}),
    WidgetKind.WEBCAM: WidgetTemplate(
        'sensor', 'ESP32 Camera', None, None,
        {'resolution': 'VGA', 'quality': 10, 'brightness': 0, 'contrast': 0, 'recognitionEnabled': False}),
}


def hysteresis_decision(reading: float, threshold: float, currently_on: bool,
                        band: float = DEFAULT_HYSTERESIS_BAND) -> Optional[bool]:
    """
    Рішення контуру з гістерезисом.

    Returns:
        True - увімкнути, False - вимкнути, None - без змін
    """
    if reading < threshold and not currently_on:
        return True
    if reading > threshold + band and currently_on:
        return False
    return None


def validate_pin(pin: Any) -> int:
    if isinstance(pin, bool) or not isinstance(pin, int) or not 0 <= pin <= MAX_GPIO_PIN:
        raise ValueError(f"Пін повинен бути номером GPIO (0-{MAX_GPIO_PIN})")
    return pin


@dataclass
class AutomationTimerState:
    """Стан таймерів віджета (тільки в пам'яті)."""
    last_reading: Any = None
    last_check_at: Optional[float] = None
    next_check_at: Optional[float] = None
    actuator_on: bool = False
    actuator_started_at: Optional[float] = None
    shutoff_at: Optional[float] = None

    def seconds_until_next_check(self, now: float) -> Optional[int]:
        if self.next_check_at is None:
            return None
        return int(max(0.0, self.next_check_at - now))

    def runtime(self, now: float) -> int:
        """Скільки секунд виконавчий пристрій працює."""
        if not self.actuator_on or self.actuator_started_at is None:
            return 0
        return int(max(0.0, now - self.actuator_started_at))


class WidgetBehavior:
    """Базова поведінка віджета, прив'язаного до IP пристрою."""

    kind: WidgetKind = None

    def __init__(
        self,
        widget: Widget,
        device_ip: Optional[str],
        registry: Database,
        transport: DeviceTransport,
        config: ConfigManager,
        clock: Callable[[], float] = time.time
    ):
        self.widget = widget
        self.device_ip = device_ip
        self.registry = registry
        self.transport = transport
        self.config = config
        self.clock = clock
        self.logger = get_logger()
        self.lock = threading.RLock()
        self.state = AutomationTimerState()
        self.error: Optional[str] = None
        self.on_schedule_change: Optional[Callable[[], None]] = None

    @property
    def template(self) -> WidgetTemplate:
        return WIDGET_TEMPLATES[self.kind]

    @property
    def configuration(self) -> Dict[str, Any]:
        return self.widget.configuration

    def _notify_schedule_change(self) -> None:
        if self.on_schedule_change:
            self.on_schedule_change()

    def _fail(self, message: str, error: Exception, quiet: bool = False) -> None:
        self.error = f"{message}: {error}"
        log = self.logger.debug if quiet else self.logger.warning
        log(f"{self.widget.name} ({self.widget.id}): {self.error}")

    def _persist_configuration(self, **changes) -> None:
        """Записати зміни конфігурації в реєстр (весь словник)."""
        configuration = dict(self.widget.configuration)
        configuration.update(changes)
        self.registry.update_widget_configuration(self.widget.id, configuration)
        self.widget.configuration = configuration

    def _require_ip(self) -> str:
        if not self.device_ip:
            raise ValueError("Немає IP адреси пристрою")
        return self.device_ip

    def start(self, now: float) -> None:
        """Викликається задачею перед першим тактом."""

    def next_due(self, now: float) -> Optional[float]:
        """Момент наступного такту або None, якщо чекати нічого."""
        return None

    def tick(self, now: float) -> None:
        """Виконати роботу, час якої настав."""

    def update_pin(self, pin: int) -> bool:
        """
        Змінити пін: спочатку на пристрої, потім у реєстрі.

        Returns:
            True якщо пристрій підтвердив і значення збережено
        """
        pin = validate_pin(pin)
        with self.lock:
            endpoint = self.template.pin_endpoint
            if endpoint:
                try:
                    self.transport.configure_pin(self._require_ip(), endpoint, pin)
                except DeviceError as e:
                    self._fail("Не вдалося змінити пін", e)
                    return False
            self.registry.update_widget(self.widget.id, pin=pin)
            self.widget.pin = pin
            self.error = None
            self.logger.info(f"{self.widget.name}: пін змінено на {pin}")
            return True

    def get_status(self) -> Dict[str, Any]:
        now = self.clock()
        with self.lock:
            return {
                'widget_id': self.widget.id,
                'kind': self.kind.value,
                'name': self.widget.name,
                'pin': self.widget.pin,
                'device_ip': self.device_ip,
                'error': self.error,
                'last_check_at': self.state.last_check_at,
                'seconds_until_next_check': self.state.seconds_until_next_check(now),
            }


class SensorPollBehavior(WidgetBehavior):
    """Віджет-датчик: зчитування при старті, далі з інтервалом оновлення."""

    sensor_kinds: Tuple[SensorKind, ...] = ()
    interval_endpoint: Optional[str] = None

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.readings: Dict[SensorKind, SensorReading] = {}

    @property
    def refresh_interval(self) -> float:
        """Інтервал оновлення в секундах."""
        value = self.configuration.get('refresh_rate')
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            return float(value)
        defaults = self.config.get('automation.default_refresh_rates') or DEFAULT_REFRESH_RATES
        return float(defaults.get(self.kind.value, DEFAULT_REFRESH_RATES[self.kind.value]))

    def start(self, now: float) -> None:
        with self.lock:
            self.state.next_check_at = now

    def next_due(self, now: float) -> Optional[float]:
        return self.state.next_check_at

    def tick(self, now: float) -> None:
        if self.state.next_check_at is not None and now >= self.state.next_check_at:
            self.refresh(now)

    def refresh(self, now: Optional[float] = None) -> Dict[SensorKind, SensorReading]:
        """Зчитати показники; помилка не зупиняє наступні такти."""
        now = self.clock() if now is None else now
        with self.lock:
            try:
                snapshot = self.transport.get_sensors(self._require_ip())
            except DeviceError as e:
                self._fail("Не вдалося зчитати датчик", e)
            else:
                missing = []
                for kind in self.sensor_kinds:
                    reading = snapshot.reading(kind)
                    if reading is None:
                        missing.append(kind.value)
                    else:
                        self.readings[kind] = reading
                if missing:
                    self.error = f"Не знайдено дані датчика: {', '.join(missing)}"
                else:
                    self.error = None
                self.state.last_reading = dict(
                    (kind.value, reading.level) for kind, reading in self.readings.items()
                )
            finally:
                self.state.last_check_at = now
                self.state.next_check_at = now + self.refresh_interval
            return dict(self.readings)

    def set_refresh_interval(self, seconds: float) -> bool:
        """
        Змінити інтервал оновлення: пристрій, потім реєстр.

        Якщо пристрій відхилив нове значення, збережене значення не змінюється.
        """
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or seconds < 1:
            raise ValueError("Інтервал оновлення повинен бути не менше 1 секунди")
        with self.lock:
            if self.interval_endpoint:
                try:
                    self.transport.set_interval(self._require_ip(), self.interval_endpoint, int(seconds * 1000))
                except DeviceError as e:
                    self._fail("Не вдалося змінити інтервал", e)
                    return False
            self._persist_configuration(refresh_rate=seconds)
            self.error = None
            self.state.next_check_at = self.clock() + self.refresh_interval
        self._notify_schedule_change()
        return True

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        with self.lock:
            status['readings'] = dict((kind.value, reading.to_dict()) for kind, reading in self.readings.items())
            status['refresh_interval'] = self.refresh_interval
        return status


class MoistureSensorBehavior(SensorPollBehavior):
    kind = WidgetKind.MOISTURE
    sensor_kinds = (SensorKind.MOISTURE,)
    interval_endpoint = 'set-moisture-interval'


class TemperatureHumidityBehavior(SensorPollBehavior):
    kind = WidgetKind.TEMPERATURE_HUMIDITY
    sensor_kinds = (SensorKind.TEMPERATURE, SensorKind.HUMIDITY)


class LightSensorBehavior(SensorPollBehavior):
    kind = WidgetKind.LIGHT
    sensor_kinds = (SensorKind.LIGHT,)


class LedControlBehavior(WidgetBehavior):
    """Ручне керування світлодіодом."""

    kind = WidgetKind.LED_CONTROL

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.state.actuator_on = bool(self.configuration.get('state', False))

    def toggle(self, state: Optional[bool] = None) -> bool:
        """Перемкнути LED; стан змінюється лише після підтвердження пристроєм."""
        with self.lock:
            new_state = (not self.state.actuator_on) if state is None else bool(state)
            try:
                confirmed = self.transport.set_actuator(
                    self._require_ip(), 'led', {'state': new_state, 'pin': self.widget.pin}
                )
            except DeviceError as e:
                self._fail("Не вдалося керувати LED", e)
                return False
            self.state.actuator_on = confirmed
            self.error = None
            self._persist_configuration(state=confirmed)
            self.logger.info(f"{self.widget.name}: LED {'увімкнено' if confirmed else 'вимкнено'}")
            return True

    def sync_state(self, device_state: bool) -> None:
        """Прийняти стан, прочитаний з пристрою під час перевірки LED."""
        with self.lock:
            self.state.actuator_on = bool(device_state)

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status['state'] = self.state.actuator_on
        return status


class WebcamBehavior(WidgetBehavior):
    """Камера: потік та накладання результатів розпізнавання."""

    kind = WidgetKind.WEBCAM

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.streaming = False
        self.ml_enabled = False
        self.bounding_boxes: List[Dict[str, Any]] = []
        self.raw_inference: Optional[Dict[str, Any]] = None

    @property
    def inference_interval(self) -> float:
        return float(self.config.get('automation.inference_interval', DEFAULT_INFERENCE_INTERVAL))

    def _clear_inference(self) -> None:
        self.bounding_boxes = []
        self.raw_inference = None

    def set_streaming(self, enabled: bool) -> None:
        with self.lock:
            self.streaming = bool(enabled)
            if not self.streaming:
                self.ml_enabled = False
                self._clear_inference()
                self.state.next_check_at = None
            elif self.ml_enabled:
                self.state.next_check_at = self.clock()
        self._notify_schedule_change()

    def set_ml_enabled(self, enabled: bool) -> None:
        with self.lock:
            self.ml_enabled = bool(enabled)
            self._clear_inference()
            if self.ml_enabled and self.streaming:
                self.state.next_check_at = self.clock()
            else:
                self.state.next_check_at = None
        self._notify_schedule_change()

    def next_due(self, now: float) -> Optional[float]:
        if self.streaming and self.ml_enabled:
            return self.state.next_check_at
        return None

    def tick(self, now: float) -> None:
        due = self.next_due(now)
        if due is not None and now >= due:
            self.poll_inference(now)

    def poll_inference(self, now: Optional[float] = None) -> List[Dict[str, Any]]:
        now = self.clock() if now is None else now
        with self.lock:
            try:
                data = self.transport.get_inference(self._require_ip())
            except DeviceError as e:
                self._fail("Не вдалося отримати результати розпізнавання", e, quiet=True)
            else:
                self.raw_inference = data
                boxes = data.get('bounding_boxes')
                self.bounding_boxes = list(boxes) if data.get('has_results') and isinstance(boxes, list) else []
                self.error = None
            finally:
                self.state.last_check_at = now
                self.state.next_check_at = now + self.inference_interval
            return list(self.bounding_boxes)

    def stream_url(self) -> str:
        return self.transport.stream_url(self._require_ip())

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        with self.lock:
            status.update({
                'streaming': self.streaming,
                'ml_enabled': self.ml_enabled,
                'bounding_boxes': list(self.bounding_boxes),
                'stream_url': self.transport.stream_url(self.device_ip) if self.device_ip else None,
            })
        return status


class ClosedLoopBehavior(WidgetBehavior):
    """
    Керування реле за показником датчика з гістерезисом.

    Ручний та автоматичний режими мають окремі запам'ятовані стани реле;
    видимий стан - той, що належить активному режиму.
    """

    sensor_kind: SensorKind = None
    threshold_key: str = None
    interval_endpoint: Optional[str] = None
    relay_endpoint = 'relay'
    default_threshold = 30.0
    default_check_interval = 15

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.band = float(self.config.get('automation.hysteresis_band', DEFAULT_HYSTERESIS_BAND))
        self.auto_mode = bool(self.configuration.get('autoMode', False))
        saved_state = bool(self.configuration.get('state', False))
        self.auto_state = saved_state if self.auto_mode else False
        self.manual_state = saved_state if not self.auto_mode else False
        self.state.actuator_on = self.actuator_state

    @property
    def actuator_state(self) -> bool:
        return self.auto_state if self.auto_mode else self.manual_state

    @property
    def threshold(self) -> float:
        return float(self.configuration.get(self.threshold_key, self.default_threshold))

    @property
    def check_interval(self) -> float:
        """Інтервал перевірки у хвилинах."""
        return float(self.configuration.get('checkInterval', self.default_check_interval))

    def start(self, now: float) -> None:
        with self.lock:
            if self.auto_mode:
                self.state.next_check_at = now

    def next_due(self, now: float) -> Optional[float]:
        candidates = [self.state.shutoff_at]
        if self.auto_mode:
            candidates.append(self.state.next_check_at)
        candidates = [c for c in candidates if c is not None]
        return min(candidates) if candidates else None

    def tick(self, now: float) -> None:
        with self.lock:
            if self.state.shutoff_at is not None and now >= self.state.shutoff_at:
                self._auto_shutoff(now)
            if self.auto_mode and self.state.next_check_at is not None and now >= self.state.next_check_at:
                self.check_and_control(now)

    def _auto_shutoff(self, now: float) -> None:
        """Примусове вимкнення за таймером, незалежно від показників."""

    def _on_actuator_change(self, confirmed: bool, automatic: bool, now: float) -> None:
        if confirmed:
            self.state.actuator_started_at = now
        else:
            self.state.actuator_started_at = None

    def check_and_control(self, now: Optional[float] = None) -> Optional[bool]:
        """
        Одна перевірка автоматики.

        Returns:
            Новий стан реле, якщо його змінено, інакше None
        """
        now = self.clock() if now is None else now
        with self.lock:
            self.state.last_check_at = now
            self.state.next_check_at = now + self.check_interval * 60

            try:
                reading = self.transport.read_sensor(self._require_ip(), self.sensor_kind)
            except DeviceError as e:
                self._fail("Не вдалося зчитати датчик для автоматики", e)
                return None

            if reading is None or reading.level is None:
                self.error = f"Не знайдено дані датчика: {self.sensor_kind.value}"
                self.logger.info(f"{self.widget.name}: немає показника, перевірку пропущено")
                return None

            level = reading.level
            self.state.last_reading = level
            decision = hysteresis_decision(level, self.threshold, self.auto_state, self.band)
            self.logger.debug(
                f"{self.widget.name}: показник {level:.1f}%, поріг {self.threshold:.1f}%, рішення {decision}"
            )
            if decision is None:
                return None
            if self._drive(decision, automatic=True, now=now):
                return decision
            return None

    def _drive(self, new_state: bool, automatic: bool, now: float) -> bool:
        """Надіслати стан на реле та оновити стан лише після підтвердження."""
        try:
            confirmed = self.transport.set_actuator(
                self._require_ip(), self.relay_endpoint, {'state': new_state, 'pin': self.widget.pin}
            )
        except DeviceError as e:
            self._fail("Не вдалося керувати реле", e)
            return False

        self.error = None
        if automatic:
            self.auto_state = confirmed
        else:
            self.manual_state = confirmed
        self.state.actuator_on = self.actuator_state
        self._on_actuator_change(confirmed, automatic, now)

        mode = "автоматично" if automatic else "вручну"
        self.logger.info(f"{self.widget.name}: реле {'увімкнено' if confirmed else 'вимкнено'} ({mode})")
        self._persist_configuration(state=confirmed, autoMode=self.auto_mode)
        return True

    def set_manual_state(self, state: bool) -> bool:
        """Перемикач ручного режиму."""
        with self.lock:
            if self.auto_mode:
                raise ValueError("Віджет в автоматичному режимі; спочатку перейдіть у ручний")
            return self._drive(bool(state), automatic=False, now=self.clock())

    def toggle(self) -> bool:
        with self.lock:
            return self.set_manual_state(not self.manual_state)

    def set_auto_mode(self, enabled: bool) -> bool:
        """
        Перемкнути режим. Вхід в автоматичний режим вимикає ручне реле,
        вихід з нього вимикає автоматичне.
        """
        enabled = bool(enabled)
        with self.lock:
            if enabled == self.auto_mode:
                return True
            now = self.clock()
            if enabled:
                if self.manual_state and not self._drive(False, automatic=False, now=now):
                    return False
                self.manual_state = False
            else:
                if self.auto_state and not self._drive(False, automatic=True, now=now):
                    return False
                self.auto_state = False
                self.state.shutoff_at = None

            self.auto_mode = enabled
            self.state.actuator_on = self.actuator_state
            self.state.next_check_at = now if enabled else None
            self._persist_configuration(autoMode=enabled, state=self.actuator_state)
            self.logger.info(f"{self.widget.name}: {'автоматичний' if enabled else 'ручний'} режим")
        self._notify_schedule_change()
        return True

    def _validate_settings(self, threshold: Optional[float], check_interval: Optional[float]) -> None:
        if threshold is not None and (isinstance(threshold, bool) or not isinstance(threshold, (int, float))
                                      or not 0 <= threshold <= 100):
            raise ValueError("Поріг повинен бути в межах 0-100%")
        if check_interval is not None and (isinstance(check_interval, bool)
                                           or not isinstance(check_interval, (int, float))
                                           or check_interval < 1):
            raise ValueError("Інтервал перевірки повинен бути не менше 1 хвилини")

    def update_settings(self, threshold: Optional[float] = None, check_interval: Optional[float] = None,
                        **extra) -> bool:
        """
        Змінити параметри автоматики.

        Інтервал, який підтримує пристрій, спочатку надсилається на пристрій;
        без підтвердження нічого не зберігається.
        """
        self._validate_settings(threshold, check_interval)
        with self.lock:
            if check_interval is not None and self.interval_endpoint:
                try:
                    self.transport.set_interval(
                        self._require_ip(), self.interval_endpoint, int(check_interval * 60 * 1000)
                    )
                except DeviceError as e:
                    self._fail("Не вдалося змінити інтервал перевірки", e)
                    return False

            changes = dict(extra)
            if threshold is not None:
                changes[self.threshold_key] = threshold
            if check_interval is not None:
                changes['checkInterval'] = check_interval
            if changes:
                self._persist_configuration(**changes)
            self.error = None
            if self.auto_mode:
                self.state.next_check_at = self.clock()
        self._notify_schedule_change()
        return True

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        with self.lock:
            status.update({
                'state': self.actuator_state,
                'auto_mode': self.auto_mode,
                'manual_state': self.manual_state,
                'auto_state': self.auto_state,
                'threshold': self.threshold,
                'check_interval': self.check_interval,
                'last_reading': self.state.last_reading,
            })
        return status


class LightControlBehavior(ClosedLoopBehavior):
    """Автоматичне освітлення: вмикає світло, коли темно."""

    kind = WidgetKind.LIGHT_CONTROL
    sensor_kind = SensorKind.LIGHT
    threshold_key = 'lightThreshold'


class WaterPumpBehavior(ClosedLoopBehavior):
    """Автоматичний полив з обмеженням тривалості роботи насоса."""

    kind = WidgetKind.WATER_PUMP
    sensor_kind = SensorKind.MOISTURE
    threshold_key = 'minMoistureLevel'
    interval_endpoint = 'set-pump-check-interval'

    @property
    def pump_duration(self) -> float:
        """Тривалість автоматичного поливу в секундах."""
        return float(self.configuration.get('pumpDuration', 30))

    def _on_actuator_change(self, confirmed: bool, automatic: bool, now: float) -> None:
        super()._on_actuator_change(confirmed, automatic, now)
        if confirmed and automatic:
            self.state.shutoff_at = now + self.pump_duration
        elif not confirmed:
            self.state.shutoff_at = None

    def _auto_shutoff(self, now: float) -> None:
        self.logger.info(f"{self.widget.name}: час поливу ({self.pump_duration:.0f}с) вичерпано")
        if not self._drive(False, automatic=True, now=now):
            self.state.shutoff_at = now + SHUTOFF_RETRY_DELAY

    def update_settings(self, threshold: Optional[float] = None, check_interval: Optional[float] = None,
                        pump_duration: Optional[float] = None, **extra) -> bool:
        if pump_duration is not None:
            if isinstance(pump_duration, bool) or not isinstance(pump_duration, (int, float)) or pump_duration < 1:
                raise ValueError("Тривалість поливу повинна бути не менше 1 секунди")
            extra['pumpDuration'] = pump_duration
        return super().update_settings(threshold=threshold, check_interval=check_interval, **extra)

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        now = self.clock()
        with self.lock:
            status['pump_duration'] = self.pump_duration
            status['runtime'] = self.state.runtime(now)
            status['seconds_until_shutoff'] = (
                int(max(0.0, self.state.shutoff_at - now)) if self.state.shutoff_at is not None else None
            )
        return status


BEHAVIOR_CLASSES = {
    WidgetKind.LED_CONTROL: LedControlBehavior,
    WidgetKind.MOISTURE: MoistureSensorBehavior,
    WidgetKind.TEMPERATURE_HUMIDITY: TemperatureHumidityBehavior,
    WidgetKind.WATER_PUMP: WaterPumpBehavior,
    WidgetKind.LIGHT: LightSensorBehavior,
    WidgetKind.LIGHT_CONTROL: LightControlBehavior,
    WidgetKind.WEBCAM: WebcamBehavior,
}


def create_behavior(
    widget: Widget,
    device_ip: Optional[str],
    registry: Database,
    transport: DeviceTransport,
    config: ConfigManager,
    clock: Callable[[], float] = time.time
) -> WidgetBehavior:
    """
    Створити поведінку за видом віджета.

    Raises:
        ValueError: невідомий sensor_type
    """
    try:
        kind = WidgetKind(widget.sensor_type)
    except ValueError:
        raise ValueError(f"Невідомий тип віджета: {widget.sensor_type}")
    return BEHAVIOR_CLASSES[kind](widget, device_ip, registry, transport, config, clock)
