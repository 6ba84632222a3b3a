"""
Модуль для HTTP взаємодії з пристроями ESP32.

Кожен виклик - один HTTP запит з обмеженим таймаутом до http://{ip}/{endpoint}.
Повторних спроб на цьому рівні немає: політика повторів належить викликачам.
"""

import ipaddress
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, List

import requests

from controllers.errors import DeviceUnreachable, DeviceProtocolError
from utils.config_manager import ConfigManager
from utils.logger import get_logger

ADC_MAX = 4095.0


def is_valid_ipv4(address: Optional[str]) -> bool:
    """Перевірити, що рядок є коректною IPv4 адресою у крапковому записі."""
    if not address or not isinstance(address, str):
        return False
    try:
        ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return True


def clamp_percentage(value: float) -> float:
    return max(0.0, min(100.0, value))


def moisture_percentage(raw: float) -> float:
    """Вологість ґрунту: шкала інвертована (вологий ґрунт дає менше значення АЦП)."""
    return clamp_percentage(100.0 - raw / ADC_MAX * 100.0)


def light_percentage(raw: float) -> float:
    """Освітленість: пряма шкала АЦП."""
    return clamp_percentage(raw / ADC_MAX * 100.0)


class SensorKind(Enum):
    """Види показників, які можна знайти у відповіді /sensors."""
    TEMPERATURE = 'temperature'
    HUMIDITY = 'humidity'
    MOISTURE = 'moisture'
    LIGHT = 'light'


# (типи/ідентифікатори, підрядки в назві, поля верхнього рівня)
SENSOR_SYNONYMS = {
    SensorKind.TEMPERATURE: ({'temperature', 'temp'}, ('temperature',), ('temperature', 'temp')),
    SensorKind.HUMIDITY: ({'humidity'}, ('humidity',), ('humidity',)),
    SensorKind.MOISTURE: ({'moisture', 'soil_moisture', 'soil'}, ('moisture', 'soil'), ('soil_moisture', 'moisture')),
    SensorKind.LIGHT: ({'light', 'light_level'}, ('light',), ('light', 'light_level')),
}

PERCENTAGE_FROM_RAW = {
    SensorKind.MOISTURE: moisture_percentage,
    SensorKind.LIGHT: light_percentage,
}


@dataclass
class SensorReading:
    """Нормалізований показник датчика."""
    kind: SensorKind
    value: Optional[float]
    percentage: Optional[float] = None
    unit: Optional[str] = None

    @property
    def level(self) -> Optional[float]:
        """Відсоток для аналогових датчиків, інакше саме значення."""
        return self.percentage if self.percentage is not None else self.value

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'value': self.value,
            'percentage': self.percentage,
            'unit': self.unit
        }


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _matches(entry: Dict[str, Any], kind: SensorKind) -> bool:
    identifiers, name_parts, _ = SENSOR_SYNONYMS[kind]
    if entry.get('type') in identifiers or entry.get('id') in identifiers:
        return True
    name = entry.get('name')
    if isinstance(name, str):
        lowered = name.lower()
        return any(part in lowered for part in name_parts)
    return False


def _build_reading(kind: SensorKind, value: Any, percentage: Any = None, unit: Any = None) -> Optional[SensorReading]:
    raw = _number(value)
    pct = _number(percentage)
    if raw is None and pct is None:
        return None
    if pct is None and kind in PERCENTAGE_FROM_RAW:
        pct = PERCENTAGE_FROM_RAW[kind](raw)
    return SensorReading(kind=kind, value=raw, percentage=pct, unit=unit)


def find_reading(payload: Any, kind: SensorKind) -> Optional[SensorReading]:
    """
    Знайти показник потрібного виду у різнорідній відповіді пристрою.

    Порядок пошуку: запис масиву (sensors або сам масив), чий type/id/name
    відповідає синонімам виду; поле верхнього рівня з відомою назвою
    (число або пара {value, percentage}); інакше None.
    """
    entries: List[Any] = []
    if isinstance(payload, dict) and isinstance(payload.get('sensors'), list):
        entries = payload['sensors']
    elif isinstance(payload, list):
        entries = payload

    for entry in entries:
        if isinstance(entry, dict) and _matches(entry, kind):
            reading = _build_reading(kind, entry.get('value'), entry.get('percentage'), entry.get('unit'))
            if reading is not None:
                return reading

    if isinstance(payload, dict):
        for field_name in SENSOR_SYNONYMS[kind][2]:
            if field_name not in payload:
                continue
            field_value = payload[field_name]
            if isinstance(field_value, dict):
                reading = _build_reading(kind, field_value.get('value'),
                                         field_value.get('percentage'), field_value.get('unit'))
            else:
                reading = _build_reading(kind, field_value)
            if reading is not None:
                return reading

    return None


@dataclass
class SensorSnapshot:
    """Відповідь /sensors з пошуком показників за видом."""
    payload: Any

    def reading(self, kind: SensorKind) -> Optional[SensorReading]:
        return find_reading(self.payload, kind)


class DeviceTransport:
    """HTTP клієнт для REST-подібного API пристроїв ESP32."""

    def __init__(self, config: Optional[ConfigManager] = None, session: Optional[requests.Session] = None):
        """
        Ініціалізація транспорту.

        Args:
            config: Об'єкт ConfigManager (секція devices)
            session: Сесія requests (підміняється в тестах)
        """
        self.logger = get_logger()
        self.session = session or requests.Session()
        devices_config = config.get_section('devices') if config else {}
        self.timeout = max(1.0, min(30.0, float(devices_config.get('request_timeout', 5.0))))

    def _build_url(self, ip: str, endpoint: str) -> str:
        return f"http://{ip}/{endpoint.lstrip('/')}"

    def _request(self, method: str, ip: str, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Any:
        """
        Виконати запит та повернути розібраний JSON.

        Raises:
            DeviceUnreachable: мережа, таймаут або не-2xx статус
            DeviceProtocolError: тіло відповіді не є JSON
        """
        url = self._build_url(ip, endpoint)
        self.logger.debug(f"{method} {url} {body if body is not None else ''}")

        try:
            response = self.session.request(method, url, json=body, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise DeviceUnreachable(ip, f"таймаут {self.timeout}с") from e
        except requests.exceptions.ConnectionError as e:
            raise DeviceUnreachable(ip, "помилка з'єднання") from e
        except requests.exceptions.HTTPError as e:
            raise DeviceUnreachable(ip, f"HTTP {e.response.status_code if e.response is not None else '?'}") from e
        except requests.exceptions.RequestException as e:
            raise DeviceUnreachable(ip, str(e)) from e

        try:
            return response.json()
        except ValueError as e:
            raise DeviceProtocolError(ip, endpoint, "відповідь не є JSON") from e

    def _command(self, method: str, ip: str, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Виконати команду, що повинна повернути {success: true, ...}."""
        data = self._request(method, ip, endpoint, body)
        if not isinstance(data, dict):
            raise DeviceProtocolError(ip, endpoint, "очікувався JSON об'єкт")
        if not data.get('success'):
            raise DeviceProtocolError(ip, endpoint, str(data.get('error') or "відсутня ознака success"))
        return data

    def get_info(self, ip: str) -> Dict[str, Any]:
        """GET /info -> {mac, status, ip, device, uptime, free_heap}."""
        data = self._request('GET', ip, 'info')
        if not isinstance(data, dict):
            raise DeviceProtocolError(ip, 'info', "очікувався JSON об'єкт")
        return data

    def get_sensors(self, ip: str) -> SensorSnapshot:
        """GET /sensors у вигляді знімка з пошуком показників."""
        return SensorSnapshot(self._request('GET', ip, 'sensors'))

    def read_sensor(self, ip: str, kind: SensorKind) -> Optional[SensorReading]:
        return self.get_sensors(ip).reading(kind)

    def get_actuator(self, ip: str, endpoint: str) -> bool:
        """GET /led або /relay -> поточний стан."""
        data = self._request('GET', ip, endpoint)
        if not isinstance(data, dict) or 'state' not in data:
            raise DeviceProtocolError(ip, endpoint, "відсутнє поле state")
        return bool(data['state'])

    def set_actuator(self, ip: str, endpoint: str, body: Dict[str, Any]) -> bool:
        """
        POST /led або /relay.

        Returns:
            Стан, підтверджений пристроєм
        """
        data = self._command('POST', ip, endpoint, body)
        return bool(data.get('state', body.get('state')))

    def configure_pin(self, ip: str, endpoint: str, pin: int) -> bool:
        """POST /set-*-pin {pin}."""
        self._command('POST', ip, endpoint, {'pin': pin})
        return True

    def set_interval(self, ip: str, endpoint: str, interval_ms: int) -> bool:
        """POST /set-moisture-interval або /set-pump-check-interval {interval}."""
        self._command('POST', ip, endpoint, {'interval': int(interval_ms)})
        return True

    def get_inference(self, ip: str) -> Dict[str, Any]:
        """GET /inference -> {has_results, bounding_boxes}."""
        data = self._request('GET', ip, 'inference')
        if not isinstance(data, dict):
            raise DeviceProtocolError(ip, 'inference', "очікувався JSON об'єкт")
        return data

    def stream_url(self, ip: str) -> str:
        """Адреса MJPEG потоку для використання як джерела зображення."""
        return self._build_url(ip, 'stream')

    def reset(self, ip: str, endpoint: str) -> Dict[str, Any]:
        """GET /reset-camera, /hard-reset або /reset-streams."""
        return self._command('GET', ip, endpoint)

    def get_supabase_config(self, ip: str) -> Dict[str, Any]:
        data = self._request('GET', ip, 'get-supabase-config')
        if not isinstance(data, dict):
            raise DeviceProtocolError(ip, 'get-supabase-config', "очікувався JSON об'єкт")
        return data

    def set_supabase_config(self, ip: str, config: Dict[str, Any]) -> Dict[str, Any]:
        return self._command('POST', ip, 'set-supabase-config', config)

    def clear_supabase_config(self, ip: str) -> Dict[str, Any]:
        return self._command('POST', ip, 'clear-supabase-config', {})
