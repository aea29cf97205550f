"""
Публикация состояния воркера в общее хранилище.
"""

from typing import Any

from redis.exceptions import RedisError

from .idle_channel import IdleChannel
from ..models.worker_state import WorkerState
from ..utils.logger import get_logger
from ..exceptions import StoreError


logger = get_logger(__name__)


class StatePublisher:
    """
    Ведет запись о простое воркера с истечением через idle_ttl.

    Запись существует только пока последнее опубликованное состояние
    было "свободен и здоров"; при переходе в любое другое состояние она
    удаляется сразу, не дожидаясь TTL.
    """

    def __init__(self, redis: Any, channel: IdleChannel, idle_prefix: str, idle_ttl: int):
        self._redis = redis
        self._channel = channel
        self._idle_prefix = idle_prefix
        self._idle_ttl = idle_ttl

    def idle_key(self, worker_id: str) -> str:
        return f"{self._idle_prefix}{worker_id}"

    async def publish(self, state: WorkerState) -> bool:
        """
        Публикация состояния воркера.

        Args:
            state: Текущее состояние воркера

        Returns:
            True если воркер отмечен свободным, False если запись снята

        Raises:
            ValidationError: Если worker_id пуст
            StoreError: Если хранилище не приняло запись или удаление
        """
        state.validate()
        key = self.idle_key(state.worker_id)

        if state.is_available():
            try:
                # EX выставляется той же командой, что и значение
                result = await self._redis.set(key, 1, ex=self._idle_ttl)
            except RedisError as e:
                raise StoreError(f"unable to set {key}: {e}") from e

            if not result:
                raise StoreError(f"unable to set {key}")

            logger.debug(f"{state.worker_id} marked idle for {self._idle_ttl}s")
            self._channel.emit(state.worker_id)
            return True

        try:
            await self._redis.delete(key)
        except RedisError as e:
            raise StoreError(f"unable to delete {key}: {e}") from e

        logger.debug(
            f"{state.worker_id} is not available "
            f"({state.busy.value}/{state.health.value}), idle record removed"
        )
        return False
