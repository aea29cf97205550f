"""
Базовый пример использования трекера доступности воркеров.

Требуется запущенный Redis на redis://localhost:6379/0.
"""

import asyncio
import random

from availability_tracker import (
    WorkerTracker, WorkerState, BusyStatus, TrackerConfig, setup_logging
)


async def report_states(tracker: WorkerTracker, worker_ids):
    """Имитация периодических отчетов воркеров."""
    for _ in range(5):
        for worker_id in worker_ids:
            busy = BusyStatus.BUSY if random.random() < 0.5 else BusyStatus.IDLE
            idle = await tracker.publish(WorkerState(worker_id, busy=busy))
            print(f"   {worker_id}: {'свободен' if idle else 'занят'}")
        await asyncio.sleep(1.0)


async def main():
    """Основная функция с примерами использования."""
    config = TrackerConfig(idle_ttl=10, pending_ttl=30)
    setup_logging(level=config.log_level)
    print("=== Базовый пример использования трекера доступности ===\n")

    tracker = WorkerTracker.from_config(config)
    async with tracker:
        # Пример 1: Подписка на уведомления
        subscription = tracker.subscribe(
            lambda event: print(f"   -> {event.worker_id} освободился")
        )

        # Пример 2: Отчеты воркеров
        print("1. Отчеты воркеров:")
        await tracker.publish(WorkerState("jibri-1"))
        await tracker.publish(WorkerState("jibri-2", busy=BusyStatus.BUSY))
        print(f"   Свободны: {await tracker.idle_workers()}")

        # Пример 3: Захват из текущих свободных
        print("\n2. Захват свободного воркера:")
        worker_id = await tracker.claim_next_available()
        print(f"   Захвачен {worker_id}")

        # Пример 4: Ожидание с таймаутом, пока воркеры отчитываются
        print("\n3. Ожидание освобождения:")
        reporter = asyncio.create_task(report_states(tracker, ["jibri-2", "jibri-3"]))
        worker_id = await tracker.claim_next_available(timeout=5.0)
        print(f"   Результат ожидания: {worker_id or 'нет свободных воркеров'}")
        await reporter

        subscription.close()
        print(f"\nСтатистика: {tracker.get_stats()}")


if __name__ == "__main__":
    asyncio.run(main())
