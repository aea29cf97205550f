"""
Модели данных трекера доступности воркеров.
"""

from .worker_state import WorkerState, BusyStatus, HealthStatus

__all__ = [
    "WorkerState",
    "BusyStatus",
    "HealthStatus"
]
