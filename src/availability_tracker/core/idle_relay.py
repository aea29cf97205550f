"""
Ретрансляция уведомлений о простое между экземплярами трекера через Redis Pub/Sub.
"""

import asyncio
import json
from typing import Any, Optional

from redis.exceptions import RedisError

from .idle_channel import IdleChannel, IdleEvent, Subscription
from ..utils.config import RelayConfig
from ..utils.logger import get_logger
from ..exceptions import RelayError


logger = get_logger(__name__)


class IdleRelay:
    """
    Мост между локальным каналом и каналом Redis Pub/Sub.

    Локальные события публикуются в Redis, события других инстансов
    попадают в локальный канал с source="relay". Собственные сообщения,
    вернувшиеся из Redis, отбрасываются по instance_id.
    """

    def __init__(self, redis: Any, channel: IdleChannel, config: RelayConfig, instance_id: str):
        self._redis = redis
        self._channel = channel
        self._config = config
        self._instance_id = instance_id
        self._pubsub: Any = None
        self._listener_task: Optional[asyncio.Task] = None
        self._subscription: Optional[Subscription] = None

        self._metrics = {
            'forwarded': 0,
            'received': 0,
            'dropped': 0,
            'errors': 0
        }

    @property
    def running(self) -> bool:
        return self._listener_task is not None and not self._listener_task.done()

    async def start(self):
        """Подписка на канал Redis и запуск фонового слушателя."""
        if self.running:
            return

        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self._config.channel)
        self._listener_task = asyncio.create_task(self._listen(), name="idle-relay")
        self._subscription = self._channel.subscribe(self._forward)

        logger.info(f"Idle relay started on {self._config.channel} as {self._instance_id}")

    async def stop(self):
        """Остановка слушателя и закрытие соединения Pub/Sub."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

        if self._listener_task is not None:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None

        if self._pubsub is not None:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None

        logger.info("Idle relay stopped")

    async def publish(self, event: IdleEvent):
        """Отправка локального события другим инстансам."""
        if not self.running:
            raise RelayError("Idle relay is not running. Call start() first.")

        message = json.dumps({
            'worker_id': event.worker_id,
            'instance_id': self._instance_id,
            'published_at': event.published_at.isoformat(),
        })
        await self._redis.publish(self._config.channel, message)
        self._metrics['forwarded'] += 1

    async def _forward(self, event: IdleEvent):
        # Пересылаются только собственные события инстанса
        if event.source != "local":
            return
        try:
            await self.publish(event)
        except RedisError as e:
            self._metrics['errors'] += 1
            logger.error(f"Failed to relay idle event for {event.worker_id}: {e}")

    async def _listen(self):
        try:
            async for message in self._pubsub.listen():
                if message.get('type') != 'message':
                    continue
                self._handle_message(message.get('data'))
        except asyncio.CancelledError:
            raise
        except RedisError as e:
            self._metrics['errors'] += 1
            logger.error(f"Idle relay listener stopped: {e}")

    def _handle_message(self, raw: Any):
        try:
            if isinstance(raw, bytes):
                raw = raw.decode('utf-8')
            data = json.loads(raw)
            worker_id = data['worker_id']
            instance_id = data['instance_id']
        except (ValueError, KeyError, TypeError) as e:
            self._metrics['dropped'] += 1
            logger.warning(f"Dropping malformed idle relay message {raw!r}: {e}")
            return

        if instance_id == self._instance_id:
            return

        self._metrics['received'] += 1
        logger.debug(f"Relayed idle event for {worker_id} from {instance_id}")
        self._channel.emit(worker_id, source="relay")

    def get_metrics(self) -> dict:
        """Получение метрик ретранслятора."""
        metrics = self._metrics.copy()
        metrics['running'] = self.running
        return metrics
