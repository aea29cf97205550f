"""
Захват воркера через распределенную блокировку "pending".
"""

import asyncio
from typing import Any, Dict, Optional, Set

from redis.exceptions import RedisError

from .retry_manager import RetryManager, RetryConfig
from ..utils.logger import get_logger


logger = get_logger(__name__)


class ClaimArbiter:
    """
    Резервирует воркер за одним вызывающим на pending_ttl секунд.

    Взаимоисключение обеспечивает SET NX PX в общем хранилище, поэтому
    гарантия действует между всеми экземплярами трекера. Явного
    освобождения нет: блокировка снимается только по истечении TTL.
    Исключение: блокировка, полученная уже после отмены вызывающего,
    снимается сразу, потому что ее некому использовать.
    """

    def __init__(
        self,
        redis: Any,
        pending_prefix: str,
        pending_ttl: int,
        retry_config: Optional[RetryConfig] = None
    ):
        self._redis = redis
        self._pending_prefix = pending_prefix
        self._pending_ttl = pending_ttl
        self._retry = RetryManager(retry_config)

        self._stats = {
            'claim_attempts': 0,
            'claims': 0,
            'contended': 0,
            'errors': 0,
            'orphans_released': 0
        }
        self._orphan_tasks: Set[asyncio.Task] = set()

    def pending_key(self, worker_id: str) -> str:
        return f"{self._pending_prefix}{worker_id}"

    async def attempt_claim(self, worker_id: str) -> bool:
        """
        Попытка захватить воркер.

        Args:
            worker_id: ID воркера, предположительно свободного

        Returns:
            True если блокировка получена, False если она занята другим
            вызывающим или хранилище вернуло ошибку
        """
        key = self.pending_key(worker_id)
        self._stats['claim_attempts'] += 1
        errors_before = self._stats['errors']

        logger.debug(f"attempting lock of {key}")
        locked = await self._retry.run(lambda: self._try_lock(key), label=key)

        if locked:
            self._stats['claims'] += 1
            logger.debug(f"{key} lock obtained")
            return True

        if self._stats['errors'] == errors_before:
            self._stats['contended'] += 1
        logger.warning(f"unable to obtain lock for {key}")
        return False

    async def _try_lock(self, key: str) -> bool:
        lock = self._redis.lock(key, timeout=self._pending_ttl, blocking=False)
        acquire = asyncio.ensure_future(lock.acquire())
        try:
            return bool(await asyncio.shield(acquire))
        except asyncio.CancelledError:
            # SET NX уже отправлен: дожидаемся ответа в фоне
            task = asyncio.ensure_future(self._release_orphaned(key, lock, acquire))
            self._orphan_tasks.add(task)
            task.add_done_callback(self._orphan_tasks.discard)
            raise
        except RedisError as e:
            self._stats['errors'] += 1
            logger.error(f"A redis error has occurred while locking {key}: {e}")
            return False

    async def _release_orphaned(self, key: str, lock: Any, acquire: asyncio.Future):
        try:
            acquired = await acquire
        except RedisError as e:
            logger.debug(f"abandoned lock attempt on {key} failed: {e}")
            return

        if not acquired:
            return

        try:
            await lock.release()
        except RedisError as e:
            self._stats['errors'] += 1
            logger.error(f"unable to release abandoned lock {key}, it expires in {self._pending_ttl}s: {e}")
            return

        self._stats['orphans_released'] += 1
        logger.warning(f"released {key} obtained after its claim was cancelled")

    def get_stats(self) -> Dict[str, Any]:
        """Получение статистики захватов."""
        stats = self._stats.copy()
        stats['retry'] = self._retry.get_stats()
        return stats
