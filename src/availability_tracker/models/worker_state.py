"""
Модель состояния воркера, которое публикуется в трекер.
"""

from enum import Enum
from typing import Any, Dict
from dataclasses import dataclass

from ..exceptions import ValidationError


class BusyStatus(Enum):
    """Статус занятости воркера."""
    IDLE = "IDLE"
    BUSY = "BUSY"


class HealthStatus(Enum):
    """Статус здоровья воркера."""
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"


def _parse_enum(enum_cls, value: Any, field_name: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.upper())
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field_name}: {value!r}")


@dataclass(frozen=True)
class WorkerState:
    """
    Состояние воркера на момент отчета.

    Не хранится трекером: из него выводится только запись о простое
    в общем хранилище.
    """

    worker_id: str
    busy: BusyStatus = BusyStatus.IDLE
    health: HealthStatus = HealthStatus.HEALTHY

    def validate(self) -> bool:
        """Проверка корректности состояния."""
        if not isinstance(self.worker_id, str) or not self.worker_id:
            raise ValidationError("worker_id must be a non-empty string")
        return True

    def is_available(self) -> bool:
        """Воркер свободен и здоров."""
        return self.busy == BusyStatus.IDLE and self.health == HealthStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в формат отчета воркера."""
        return {
            'jibriId': self.worker_id,
            'status': {
                'busyStatus': self.busy.value,
                'health': {'healthStatus': self.health.value},
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkerState':
        """
        Создание из словаря.

        Поддерживаются плоская форма ``{"worker_id", "busy", "health"}``
        и вложенный отчет воркера ``{"jibriId", "status": {...}}``.

        Args:
            data: Словарь с состоянием

        Returns:
            Состояние воркера

        Raises:
            ValidationError: Если поля отсутствуют или некорректны
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Worker state must be a mapping, got {type(data).__name__}")

        if 'status' in data:
            worker_id = data.get('jibriId', data.get('worker_id'))
            status = data['status'] or {}
            busy = status.get('busyStatus')
            health = (status.get('health') or {}).get('healthStatus')
        else:
            worker_id = data.get('worker_id')
            busy = data.get('busy')
            health = data.get('health')

        if busy is None or health is None:
            raise ValidationError(f"Worker state is missing busy or health status: {data!r}")

        state = cls(
            worker_id=worker_id,
            busy=_parse_enum(BusyStatus, busy, 'busy status'),
            health=_parse_enum(HealthStatus, health, 'health status'),
        )
        state.validate()
        return state
