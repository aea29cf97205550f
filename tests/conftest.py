"""
Общие фикстуры тестов трекера.
"""

import asyncio
import time

import pytest
import fakeredis

from availability_tracker import WorkerTracker, TrackerConfig, RetryConfig


@pytest.fixture
def server():
    """Общий сервер fakeredis, как один Redis для нескольких инстансов."""
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(server):
    return fakeredis.FakeAsyncRedis(server=server, decode_responses=True)


@pytest.fixture
def fast_config():
    """Конфигурация без задержек между попытками захвата."""
    return TrackerConfig(lock_retry=RetryConfig(max_attempts=1, delay=0.0, jitter=0.0))


@pytest.fixture
def tracker(redis_client, fast_config):
    return WorkerTracker(redis_client, fast_config)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Ожидание выполнения условия с таймаутом."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition was not met in time")
        await asyncio.sleep(interval)


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: test waits for a TTL to expire")
