"""
Трекер доступности пула взаимозаменяемых воркеров.

Основные компоненты:
- WorkerTracker: публикация состояния воркеров и захват свободного воркера
- IdleChannel: канал уведомлений о переходе воркеров в простой
- ClaimArbiter: захват воркера через распределенную блокировку
- IdleRelay: ретрансляция уведомлений между инстансами через Redis Pub/Sub
"""

from .core.tracker import WorkerTracker
from .core.idle_channel import IdleChannel, IdleEvent, Subscription
from .core.claim_arbiter import ClaimArbiter
from .core.idle_relay import IdleRelay
from .core.retry_manager import RetryConfig, BackoffStrategy
from .models.worker_state import WorkerState, BusyStatus, HealthStatus
from .utils.config import TrackerConfig, RelayConfig, load_config, load_config_from_env
from .utils.logger import get_logger, setup_logging
from .exceptions import (
    TrackerError,
    StoreError,
    ScanError,
    ValidationError,
    ConfigurationError,
    RelayError
)

__version__ = "1.0.0"
__author__ = "Worker Pool Team"

__all__ = [
    "WorkerTracker",
    "IdleChannel",
    "IdleEvent",
    "Subscription",
    "ClaimArbiter",
    "IdleRelay",
    "RetryConfig",
    "BackoffStrategy",
    "WorkerState",
    "BusyStatus",
    "HealthStatus",
    "TrackerConfig",
    "RelayConfig",
    "load_config",
    "load_config_from_env",
    "get_logger",
    "setup_logging",
    "TrackerError",
    "StoreError",
    "ScanError",
    "ValidationError",
    "ConfigurationError",
    "RelayError"
]
