"""
Основные компоненты трекера доступности.
"""

from .tracker import WorkerTracker
from .idle_channel import IdleChannel, IdleEvent, IdleListener, Subscription
from .state_publisher import StatePublisher
from .availability_scanner import AvailabilityScanner
from .claim_arbiter import ClaimArbiter
from .idle_relay import IdleRelay
from .retry_manager import RetryManager, RetryConfig, BackoffStrategy

__all__ = [
    "WorkerTracker",
    "IdleChannel",
    "IdleEvent",
    "IdleListener",
    "Subscription",
    "StatePublisher",
    "AvailabilityScanner",
    "ClaimArbiter",
    "IdleRelay",
    "RetryManager",
    "RetryConfig",
    "BackoffStrategy"
]
