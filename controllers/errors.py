"""
Ієрархія помилок панелі керування.
"""

from typing import Optional


class DashboardError(Exception):
    """Базовий клас для всіх помилок панелі."""


class InvalidAddress(DashboardError):
    """Некоректна IP адреса (перевіряється локально, до мережі не доходить)."""

    def __init__(self, address: Optional[str]):
        self.address = address
        super().__init__(f"Некоректна IP адреса: {address!r}")


class DeviceError(DashboardError):
    """Помилка на стороні пристрою ESP32."""

    def __init__(self, ip: str, message: str):
        self.ip = ip
        super().__init__(message)


class DeviceUnreachable(DeviceError):
    """Пристрій недоступний: мережа, таймаут або не-2xx відповідь."""

    def __init__(self, ip: str, reason: str):
        self.reason = reason
        super().__init__(ip, f"Пристрій {ip} недоступний: {reason}")


class DeviceProtocolError(DeviceError):
    """Відповідь 2xx без ознаки успіху або з некоректним JSON."""

    def __init__(self, ip: str, endpoint: str, reason: str):
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(ip, f"Некоректна відповідь від {ip}/{endpoint}: {reason}")


class ConnectionFailed(DashboardError):
    """Підключення, ініційоване користувачем, не вдалося."""

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(
            f"Не вдалося підключитися до {device_name}. "
            f"Перевірте IP адресу та чи увімкнений пристрій."
        )


class RegistryError(DashboardError):
    """Помилка сховища пристроїв та віджетів."""

    def __init__(self, message: str, conflict: bool = False):
        self.conflict = conflict
        super().__init__(message)


class NotFound(DashboardError):
    """Запис більше не існує в сховищі."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} не знайдено: {identifier}")
