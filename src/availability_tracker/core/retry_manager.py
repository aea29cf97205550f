"""
Политика повторных попыток захвата блокировки с джиттером.
"""

import asyncio
import random
from typing import Awaitable, Callable, Dict, Any, Optional
from dataclasses import dataclass
from enum import Enum

from ..utils.logger import get_logger


logger = get_logger(__name__)


class BackoffStrategy(Enum):
    """Стратегии backoff."""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass
class RetryConfig:
    """Конфигурация повторных попыток захвата блокировки."""
    max_attempts: int = 3  # Всего попыток, включая первую
    delay: float = 0.2  # Базовая задержка между попытками в секундах
    jitter: float = 0.2  # Верхняя граница случайной добавки к задержке в секундах
    max_delay: float = 5.0  # Максимальная задержка в секундах
    exponential_base: float = 2.0  # База для экспоненциального роста
    strategy: BackoffStrategy = BackoffStrategy.FIXED

    def __post_init__(self):
        if isinstance(self.strategy, str):
            self.strategy = BackoffStrategy(self.strategy.lower())


class RetryManager:
    """
    Выполняет асинхронную попытку до успеха или исчерпания лимита.

    Попытка возвращает True/False; исключения попытки не перехватываются,
    их обработка остается на вызывающей стороне.
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()

        # Статистика
        self._stats = {
            'runs': 0,
            'attempts': 0,
            'succeeded': 0,
            'exhausted': 0,
            'total_delay': 0.0
        }

    def calculate_delay(self, attempt_number: int) -> float:
        """
        Расчет задержки перед следующей попыткой.

        Args:
            attempt_number: Номер неудачной попытки (начиная с 1)

        Returns:
            Задержка в секундах
        """
        if attempt_number <= 0 or self.config.strategy == BackoffStrategy.FIXED:
            delay = self.config.delay
        elif self.config.strategy == BackoffStrategy.LINEAR:
            delay = self.config.delay * attempt_number
        else:
            delay = self.config.delay * (self.config.exponential_base ** (attempt_number - 1))

        delay = min(delay, self.config.max_delay)

        # Джиттер только добавляется, чтобы конкурирующие клиенты расходились
        if self.config.jitter > 0:
            delay += random.uniform(0, self.config.jitter)

        return delay

    async def run(self, attempt: Callable[[], Awaitable[bool]], label: str = "") -> bool:
        """
        Выполнение попытки с повторами.

        Args:
            attempt: Асинхронная функция попытки
            label: Метка для логов

        Returns:
            True если одна из попыток удалась, False иначе
        """
        self._stats['runs'] += 1

        for attempt_number in range(1, self.config.max_attempts + 1):
            self._stats['attempts'] += 1

            if await attempt():
                self._stats['succeeded'] += 1
                return True

            if attempt_number < self.config.max_attempts:
                delay = self.calculate_delay(attempt_number)
                self._stats['total_delay'] += delay
                logger.debug(
                    f"Attempt {attempt_number}/{self.config.max_attempts} for {label} failed, "
                    f"retrying in {delay:.3f}s"
                )
                await asyncio.sleep(delay)

        self._stats['exhausted'] += 1
        return False

    def get_stats(self) -> Dict[str, Any]:
        """Получение статистики повторов."""
        return self._stats.copy()

    def __repr__(self) -> str:
        return f"RetryManager(attempts={self.config.max_attempts}, strategy={self.config.strategy.value})"
