"""
Трекер доступности воркеров: публикация состояния, поиск и захват свободного воркера.
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis

from .idle_channel import IdleCallback, IdleChannel, IdleListener, Subscription
from .state_publisher import StatePublisher
from .availability_scanner import AvailabilityScanner
from .claim_arbiter import ClaimArbiter
from .idle_relay import IdleRelay
from ..models.worker_state import WorkerState
from ..utils.config import TrackerConfig
from ..utils.logger import get_logger, set_package_level


logger = get_logger(__name__)


class WorkerTracker:
    """
    Отслеживает свободные воркеры в общем хранилище и выдает их по одному.

    Несколько экземпляров трекера могут работать с одним Redis
    одновременно: единственность владельца воркера обеспечивает
    блокировка pending, а не синхронизация внутри процесса.

    Example::

        tracker = WorkerTracker.from_config(load_config("tracker.yaml"))
        async with tracker:
            await tracker.publish(WorkerState("jibri-1"))
            worker_id = await tracker.claim_next_available(timeout=30)
    """

    def __init__(
        self,
        redis_client: Any,
        config: Optional[TrackerConfig] = None,
        instance_id: Optional[str] = None
    ):
        self.config = config or TrackerConfig()
        self.config.validate()

        self.instance_id = instance_id or uuid.uuid4().hex
        self._redis = redis_client
        self._owns_client = False

        self._channel = IdleChannel()
        self._publisher = StatePublisher(
            redis_client, self._channel, self.config.idle_prefix, self.config.idle_ttl
        )
        self._scanner = AvailabilityScanner(
            redis_client, self.config.idle_prefix, self.config.scan_count
        )
        self._arbiter = ClaimArbiter(
            redis_client, self.config.pending_prefix, self.config.pending_ttl, self.config.lock_retry
        )
        self._relay: Optional[IdleRelay] = None
        if self.config.relay.enabled:
            self._relay = IdleRelay(redis_client, self._channel, self.config.relay, self.instance_id)

        self._stats = {
            'claims_from_scan': 0,
            'claims_from_wait': 0,
            'waits': 0,
            'wait_timeouts': 0,
            'wait_cancellations': 0
        }

        logger.info(f"WorkerTracker {self.instance_id} initialized with config: {self.config}")

    @classmethod
    def from_config(cls, config: TrackerConfig, instance_id: Optional[str] = None) -> 'WorkerTracker':
        """
        Создание трекера с собственным клиентом redis по config.redis_url.

        Уровень логгеров пакета берется из config.log_level; обработчики
        настраивает приложение через setup_logging.
        """
        config.validate()
        set_package_level(config.log_level)
        client = aioredis.from_url(config.redis_url, decode_responses=True)
        tracker = cls(client, config, instance_id=instance_id)
        tracker._owns_client = True
        return tracker

    @property
    def channel(self) -> IdleChannel:
        return self._channel

    async def start(self):
        """Запуск ретрансляции между инстансами, если она включена."""
        if self._relay is not None:
            await self._relay.start()

    async def stop(self):
        """Остановка ретрансляции и отписка всех слушателей."""
        if self._relay is not None:
            await self._relay.stop()
        self._channel.close()
        if self._owns_client:
            await self._redis.aclose()
        logger.info(f"WorkerTracker {self.instance_id} stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def publish(self, state: WorkerState) -> bool:
        """
        Публикация состояния воркера.

        Returns:
            True если воркер теперь считается свободным

        Raises:
            ValidationError: Если worker_id пуст
            StoreError: Если хранилище недоступно или отклонило запись
        """
        return await self._publisher.publish(state)

    async def attempt_claim(self, worker_id: str) -> bool:
        """Попытка захватить конкретный воркер."""
        return await self._arbiter.attempt_claim(worker_id)

    async def idle_workers(self) -> List[str]:
        """ID всех воркеров с действующей записью о простое."""
        return await self._scanner.scan()

    async def claim_next_available(
        self,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Optional[str]:
        """
        Захват первого доступного воркера.

        Сначала перебираются текущие записи о простое; если ни один
        кандидат не захвачен, вызов ждет уведомлений о новых свободных
        воркерах и пробует захватить каждый из них.

        Args:
            timeout: Максимальное время ожидания в секундах, None без ограничения
            cancel_event: Событие, по которому ожидание прекращается

        Returns:
            ID захваченного воркера или None, если истек timeout или
            сработал cancel_event

        Raises:
            ScanError: Если перебор записей завершился ошибкой
        """
        # Подписка до перебора, чтобы не пропустить публикацию во время SCAN
        with self._channel.listen() as listener:
            try:
                worker_id = await asyncio.wait_for(self._claim(listener, cancel_event), timeout)
            except asyncio.TimeoutError:
                self._stats['wait_timeouts'] += 1
                logger.info(f"No worker became available within {timeout}s")
                return None

            if worker_id is None:
                self._stats['wait_cancellations'] += 1
                logger.info("Waiting for an available worker was cancelled")
            return worker_id

    async def _claim(
        self,
        listener: IdleListener,
        cancel_event: Optional[asyncio.Event]
    ) -> Optional[str]:
        for worker_id in await self._scanner.scan():
            if cancel_event is not None and cancel_event.is_set():
                return None
            if await self._arbiter.attempt_claim(worker_id):
                self._stats['claims_from_scan'] += 1
                logger.debug(f"{worker_id} is now pending")
                return worker_id

        logger.debug("No idle worker could be claimed, waiting for idle notifications")
        self._stats['waits'] += 1
        return await self._wait_for_claim(listener, cancel_event)

    async def _wait_for_claim(
        self,
        listener: IdleListener,
        cancel_event: Optional[asyncio.Event]
    ) -> Optional[str]:
        while True:
            event = await listener.get(cancel_event)
            if event is None:
                return None

            if await self._arbiter.attempt_claim(event.worker_id):
                self._stats['claims_from_wait'] += 1
                logger.debug(f"{event.worker_id} is pending")
                return event.worker_id

    def subscribe(self, callback: IdleCallback) -> Subscription:
        """Подписка на уведомления о переходе воркеров в простой."""
        return self._channel.subscribe(callback)

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Отписка от уведомлений."""
        return self._channel.unsubscribe(subscription)

    def get_stats(self) -> Dict[str, Any]:
        """Получение статистики трекера."""
        stats = self._stats.copy()
        stats['arbiter'] = self._arbiter.get_stats()
        stats['channel'] = self._channel.get_metrics()
        if self._relay is not None:
            stats['relay'] = self._relay.get_metrics()
        return stats

    def __repr__(self) -> str:
        return f"WorkerTracker(instance_id={self.instance_id}, subscribers={len(self._channel)})"
