"""
Канал уведомлений о переходе воркеров в состояние простоя.
"""

import asyncio
import inspect
import uuid
from typing import Any, Callable, Dict, Optional, Set
from dataclasses import dataclass, field
from datetime import datetime

from ..utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class IdleEvent:
    """Уведомление о том, что воркер свободен и здоров."""
    worker_id: str
    published_at: datetime = field(default_factory=datetime.now)
    source: str = "local"  # "local" или "relay"


IdleCallback = Callable[[IdleEvent], Any]


class Subscription:
    """Дескриптор подписки на канал; закрывается явно или через with."""

    def __init__(self, channel: 'IdleChannel', callback: IdleCallback):
        self.id = f"idle_sub_{uuid.uuid4().hex[:12]}"
        self._channel = channel
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self):
        """Отписка от канала. Повторный вызов ничего не делает."""
        self._channel.unsubscribe(self)

    def _deactivate(self):
        self._active = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, active={self._active})"


class IdleListener:
    """
    Подписка с очередью для ожидающих вызовов.

    События копятся в asyncio.Queue и читаются по одному, поэтому
    ожидающий никогда не обрабатывает два события одновременно.
    """

    def __init__(self, channel: 'IdleChannel'):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.subscription = channel.subscribe(self._queue.put_nowait)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self, cancel_event: Optional[asyncio.Event] = None) -> Optional[IdleEvent]:
        """
        Ожидание следующего события.

        Args:
            cancel_event: Событие отмены ожидания

        Returns:
            Событие или None если ожидание отменено
        """
        if cancel_event is None:
            return await self._queue.get()

        if cancel_event.is_set():
            return None

        get_task = asyncio.ensure_future(self._queue.get())
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {get_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (get_task, cancel_task):
                if not task.done():
                    task.cancel()

        if get_task in done:
            return get_task.result()
        return None

    def close(self):
        self.subscription.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __aiter__(self):
        return self

    async def __anext__(self) -> IdleEvent:
        if not self.subscription.active and self._queue.empty():
            raise StopAsyncIteration
        return await self.get()


class IdleChannel:
    """Канал publish/subscribe, принадлежащий одному экземпляру трекера."""

    def __init__(self):
        self._subscriptions: Dict[str, Subscription] = {}
        self._callback_tasks: Set[asyncio.Task] = set()

        self._metrics = {
            'events_emitted': 0,
            'deliveries': 0,
            'callback_errors': 0
        }

    def subscribe(self, callback: IdleCallback) -> Subscription:
        """
        Подписка на уведомления.

        Обычные функции вызываются сразу при публикации, корутин-функции
        запускаются отдельной задачей.

        Args:
            callback: Обработчик события

        Returns:
            Дескриптор подписки
        """
        subscription = Subscription(self, callback)
        self._subscriptions[subscription.id] = subscription
        logger.debug(f"Subscription {subscription.id} added, {len(self._subscriptions)} active")
        return subscription

    def listen(self) -> IdleListener:
        """Создание подписки с очередью событий."""
        return IdleListener(self)

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Отписка.

        Returns:
            True если подписка была активна
        """
        removed = self._subscriptions.pop(subscription.id, None) is not None
        subscription._deactivate()
        if removed:
            logger.debug(f"Subscription {subscription.id} removed, {len(self._subscriptions)} active")
        return removed

    def emit(self, worker_id: str, source: str = "local") -> IdleEvent:
        """
        Публикация уведомления всем текущим подписчикам.

        Args:
            worker_id: ID освободившегося воркера
            source: Источник события

        Returns:
            Отправленное событие
        """
        event = IdleEvent(worker_id=worker_id, source=source)
        self._metrics['events_emitted'] += 1

        for subscription in list(self._subscriptions.values()):
            self._deliver(subscription, event)

        return event

    def _deliver(self, subscription: Subscription, event: IdleEvent):
        self._metrics['deliveries'] += 1
        try:
            result = subscription._callback(event)
        except Exception as e:
            self._metrics['callback_errors'] += 1
            logger.error(f"Idle subscriber {subscription.id} failed for {event.worker_id}: {e}", exc_info=True)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callback_tasks.add(task)
            task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Task):
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._metrics['callback_errors'] += 1
            logger.error(f"Async idle subscriber failed: {error}", exc_info=error)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def get_metrics(self) -> dict:
        """Получение метрик канала."""
        metrics = self._metrics.copy()
        metrics['subscribers'] = len(self._subscriptions)
        metrics['pending_callbacks'] = len(self._callback_tasks)
        return metrics

    def close(self):
        """Удаление всех подписчиков и отмена незавершенных обработчиков."""
        for subscription in list(self._subscriptions.values()):
            self.unsubscribe(subscription)

        for task in list(self._callback_tasks):
            task.cancel()

        logger.info("Idle channel closed")

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __repr__(self) -> str:
        return f"IdleChannel(subscribers={len(self)})"
