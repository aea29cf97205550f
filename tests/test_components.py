"""
Тесты для отдельных компонентов трекера.
"""

import asyncio
import json
import logging
import pytest
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from availability_tracker.core.retry_manager import RetryManager, RetryConfig, BackoffStrategy
from availability_tracker.core.idle_channel import IdleChannel, IdleEvent
from availability_tracker.core.state_publisher import StatePublisher
from availability_tracker.core.availability_scanner import AvailabilityScanner
from availability_tracker.core.claim_arbiter import ClaimArbiter
from availability_tracker.core.idle_relay import IdleRelay
from availability_tracker.models.worker_state import WorkerState, BusyStatus, HealthStatus
from availability_tracker.utils.config import (
    TrackerConfig, RelayConfig, load_config, save_config, load_config_from_env
)
from availability_tracker.utils.logger import setup_logging, get_logger
from availability_tracker.exceptions import (
    StoreError, ScanError, ValidationError, ConfigurationError, RelayError
)

from conftest import wait_until


class TestWorkerState:
    """Тесты для модели состояния воркера."""

    def test_available_only_when_idle_and_healthy(self):
        assert WorkerState("w1").is_available()
        assert not WorkerState("w1", busy=BusyStatus.BUSY).is_available()
        assert not WorkerState("w1", health=HealthStatus.UNHEALTHY).is_available()

    def test_empty_worker_id_is_rejected(self):
        with pytest.raises(ValidationError):
            WorkerState("").validate()

    def test_from_nested_report(self):
        """Тест разбора отчета воркера во вложенном формате."""
        state = WorkerState.from_dict({
            "jibriId": "jibri-7",
            "status": {"busyStatus": "IDLE", "health": {"healthStatus": "HEALTHY"}},
        })

        assert state.worker_id == "jibri-7"
        assert state.busy == BusyStatus.IDLE
        assert state.health == HealthStatus.HEALTHY
        assert WorkerState.from_dict(state.to_dict()) == state

    def test_from_flat_dict_is_case_insensitive(self):
        state = WorkerState.from_dict({"worker_id": "w2", "busy": "busy", "health": "unhealthy"})
        assert state.busy == BusyStatus.BUSY
        assert state.health == HealthStatus.UNHEALTHY

    def test_from_dict_rejects_unknown_status(self):
        with pytest.raises(ValidationError):
            WorkerState.from_dict({"worker_id": "w3", "busy": "SLEEPING", "health": "HEALTHY"})

    def test_from_dict_rejects_missing_fields(self):
        with pytest.raises(ValidationError):
            WorkerState.from_dict({"worker_id": "w4"})
        with pytest.raises(ValidationError):
            WorkerState.from_dict({"busy": "IDLE", "health": "HEALTHY"})


class TestRetryManager:
    """Тесты для политики повторов."""

    def test_default_policy(self):
        manager = RetryManager()
        assert manager.config.max_attempts == 3
        assert manager.config.delay == 0.2
        assert manager.config.jitter == 0.2

    def test_fixed_delay_with_jitter_bounds(self):
        manager = RetryManager(RetryConfig(delay=0.2, jitter=0.2))
        for attempt in range(1, 10):
            delay = manager.calculate_delay(attempt)
            assert 0.2 <= delay <= 0.4

    def test_exponential_backoff_without_jitter(self):
        config = RetryConfig(delay=0.1, jitter=0.0, strategy=BackoffStrategy.EXPONENTIAL, max_delay=0.3)
        manager = RetryManager(config)

        assert manager.calculate_delay(1) == pytest.approx(0.1)
        assert manager.calculate_delay(2) == pytest.approx(0.2)
        assert manager.calculate_delay(3) == pytest.approx(0.3)  # ограничено max_delay

    def test_strategy_from_string(self):
        assert RetryConfig(strategy="linear").strategy == BackoffStrategy.LINEAR

    @pytest.mark.asyncio
    async def test_run_until_success(self):
        manager = RetryManager(RetryConfig(max_attempts=3, delay=0.0, jitter=0.0))
        attempt = AsyncMock(side_effect=[False, False, True])

        assert await manager.run(attempt, label="test")
        assert attempt.await_count == 3
        assert manager.get_stats()['succeeded'] == 1

    @pytest.mark.asyncio
    async def test_run_exhausted(self):
        manager = RetryManager(RetryConfig(max_attempts=2, delay=0.0, jitter=0.0))
        attempt = AsyncMock(return_value=False)

        assert not await manager.run(attempt)
        assert attempt.await_count == 2
        assert manager.get_stats()['exhausted'] == 1


class TestIdleChannel:
    """Тесты для канала уведомлений."""

    def test_sync_subscriber_receives_events(self):
        channel = IdleChannel()
        received = []
        channel.subscribe(received.append)

        event = channel.emit("w1")

        assert received == [event]
        assert event.worker_id == "w1"
        assert event.source == "local"

    def test_unsubscribe_is_idempotent(self):
        channel = IdleChannel()
        received = []
        subscription = channel.subscribe(received.append)

        assert channel.unsubscribe(subscription)
        assert not channel.unsubscribe(subscription)
        subscription.close()

        channel.emit("w1")
        assert received == []
        assert not subscription.active
        assert channel.subscriber_count == 0

    def test_subscription_context_manager(self):
        channel = IdleChannel()
        with channel.subscribe(lambda event: None):
            assert channel.subscriber_count == 1
        assert channel.subscriber_count == 0

    def test_failing_subscriber_does_not_affect_others(self):
        channel = IdleChannel()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        channel.subscribe(broken)
        channel.subscribe(received.append)
        channel.emit("w1")

        assert [e.worker_id for e in received] == ["w1"]
        assert channel.get_metrics()['callback_errors'] == 1

    @pytest.mark.asyncio
    async def test_async_subscriber_is_scheduled(self):
        channel = IdleChannel()
        received = asyncio.Event()
        seen = []

        async def handler(event: IdleEvent):
            seen.append(event.worker_id)
            received.set()

        channel.subscribe(handler)
        channel.emit("w2")

        await asyncio.wait_for(received.wait(), 1.0)
        assert seen == ["w2"]

    @pytest.mark.asyncio
    async def test_listener_queues_events(self):
        channel = IdleChannel()
        with channel.listen() as listener:
            channel.emit("a")
            channel.emit("b")
            assert listener.pending == 2

            first = await listener.get()
            second = await listener.get()

        assert [first.worker_id, second.worker_id] == ["a", "b"]
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_listener_get_returns_none_on_cancel(self):
        channel = IdleChannel()
        cancel = asyncio.Event()
        with channel.listen() as listener:
            getter = asyncio.ensure_future(listener.get(cancel))
            await asyncio.sleep(0)
            cancel.set()
            assert await asyncio.wait_for(getter, 1.0) is None

    def test_close_removes_all_subscribers(self):
        channel = IdleChannel()
        subscriptions = [channel.subscribe(lambda event: None) for _ in range(3)]

        channel.close()

        assert len(channel) == 0
        assert not any(s.active for s in subscriptions)


class TestStatePublisher:
    """Тесты публикации состояния."""

    @pytest.mark.asyncio
    async def test_idle_record_written_with_ttl(self, redis_client):
        channel = IdleChannel()
        events = []
        channel.subscribe(events.append)
        publisher = StatePublisher(redis_client, channel, "jibri:idle:", 90)

        assert await publisher.publish(WorkerState("w1"))

        assert await redis_client.get("jibri:idle:w1") == "1"
        assert 0 < await redis_client.ttl("jibri:idle:w1") <= 90
        assert [e.worker_id for e in events] == ["w1"]

    @pytest.mark.asyncio
    async def test_non_idle_deletes_record_without_event(self, redis_client):
        channel = IdleChannel()
        events = []
        channel.subscribe(events.append)
        publisher = StatePublisher(redis_client, channel, "jibri:idle:", 90)

        await publisher.publish(WorkerState("w1"))
        assert not await publisher.publish(WorkerState("w1", busy=BusyStatus.BUSY))
        assert not await publisher.publish(WorkerState("w1", busy=BusyStatus.BUSY))

        assert await redis_client.exists("jibri:idle:w1") == 0
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_write_rejected_raises_store_error(self):
        redis = AsyncMock()
        redis.set.return_value = None
        channel = IdleChannel()
        publisher = StatePublisher(redis, channel, "jibri:idle:", 90)

        with pytest.raises(StoreError, match="unable to set jibri:idle:w1"):
            await publisher.publish(WorkerState("w1"))
        assert channel.get_metrics()['events_emitted'] == 0

    @pytest.mark.asyncio
    async def test_store_unreachable_raises_store_error(self):
        redis = AsyncMock()
        redis.set.side_effect = RedisConnectionError("connection refused")
        redis.delete.side_effect = RedisConnectionError("connection refused")
        publisher = StatePublisher(redis, IdleChannel(), "jibri:idle:", 90)

        with pytest.raises(StoreError):
            await publisher.publish(WorkerState("w1"))
        with pytest.raises(StoreError):
            await publisher.publish(WorkerState("w1", health=HealthStatus.UNHEALTHY))

    @pytest.mark.asyncio
    async def test_empty_worker_id_rejected_before_store(self):
        redis = AsyncMock()
        publisher = StatePublisher(redis, IdleChannel(), "jibri:idle:", 90)

        with pytest.raises(ValidationError):
            await publisher.publish(WorkerState(""))
        redis.set.assert_not_called()


class TestAvailabilityScanner:
    """Тесты перебора свободных воркеров."""

    @pytest.mark.asyncio
    async def test_scan_spans_multiple_pages(self, redis_client):
        for i in range(10):
            await redis_client.set(f"jibri:idle:w{i}", 1)
        await redis_client.set("jibri:pending:w0", "token")

        scanner = AvailabilityScanner(redis_client, "jibri:idle:", scan_count=2)
        candidates = await scanner.scan()

        assert sorted(candidates) == sorted(f"w{i}" for i in range(10))

    @pytest.mark.asyncio
    async def test_duplicates_across_pages_are_dropped(self):
        redis = AsyncMock()
        redis.scan.side_effect = [
            (7, [b"jibri:idle:a", "jibri:idle:b"]),
            (0, ["jibri:idle:b", "jibri:idle:c"]),
        ]
        scanner = AvailabilityScanner(redis, "jibri:idle:")

        assert await scanner.scan() == ["a", "b", "c"]
        assert redis.scan.await_count == 2
        assert redis.scan.call_args_list[0].kwargs['match'] == "jibri:idle:*"

    @pytest.mark.asyncio
    async def test_worker_ids_may_contain_separators(self, redis_client):
        await redis_client.set("jibri:idle:pool:7", 1)
        scanner = AvailabilityScanner(redis_client, "jibri:idle:")
        assert await scanner.scan() == ["pool:7"]

    @pytest.mark.asyncio
    async def test_scan_error_is_propagated(self):
        redis = AsyncMock()
        redis.scan.side_effect = [(3, ["jibri:idle:a"]), RedisConnectionError("reset")]
        scanner = AvailabilityScanner(redis, "jibri:idle:")

        with pytest.raises(ScanError):
            await scanner.scan()


class TestClaimArbiter:
    """Тесты захвата блокировки pending."""

    @pytest.mark.asyncio
    async def test_only_first_claim_succeeds(self, redis_client):
        arbiter = ClaimArbiter(redis_client, "jibri:pending:", 10000, RetryConfig(max_attempts=1))

        assert await arbiter.attempt_claim("w1")
        assert not await arbiter.attempt_claim("w1")
        assert await arbiter.attempt_claim("w2")

        ttl = await redis_client.pttl("jibri:pending:w1")
        assert 9_000_000 < ttl <= 10_000_000
        stats = arbiter.get_stats()
        assert stats['claims'] == 2
        assert stats['contended'] == 1

    @pytest.mark.asyncio
    async def test_retries_before_giving_up(self, redis_client):
        config = RetryConfig(max_attempts=3, delay=0.0, jitter=0.0)
        arbiter = ClaimArbiter(redis_client, "jibri:pending:", 10000, config)
        await redis_client.set("jibri:pending:w1", "other")

        assert not await arbiter.attempt_claim("w1")
        assert arbiter.get_stats()['retry']['attempts'] == 3

    @pytest.mark.asyncio
    async def test_transport_error_is_a_failed_claim(self):
        redis = MagicMock()
        redis.lock.return_value.acquire = AsyncMock(side_effect=RedisConnectionError("down"))
        config = RetryConfig(max_attempts=2, delay=0.0, jitter=0.0)
        arbiter = ClaimArbiter(redis, "jibri:pending:", 10000, config)

        assert not await arbiter.attempt_claim("w1")

        redis.lock.assert_called_with("jibri:pending:w1", timeout=10000, blocking=False)
        stats = arbiter.get_stats()
        assert stats['errors'] == 2
        assert stats['contended'] == 0

    @pytest.mark.asyncio
    async def test_lock_obtained_after_cancellation_is_released(self):
        redis = MagicMock()
        reply = asyncio.Event()

        async def slow_acquire():
            await reply.wait()
            return True

        lock = redis.lock.return_value
        lock.acquire = AsyncMock(side_effect=slow_acquire)
        lock.release = AsyncMock()
        arbiter = ClaimArbiter(redis, "jibri:pending:", 10000, RetryConfig(max_attempts=1))

        claim = asyncio.ensure_future(arbiter.attempt_claim("w1"))
        await wait_until(lambda: lock.acquire.await_count == 1)
        claim.cancel()
        with pytest.raises(asyncio.CancelledError):
            await claim

        reply.set()
        await wait_until(lambda: arbiter.get_stats()['orphans_released'] == 1)
        lock.release.assert_awaited_once()
        assert arbiter.get_stats()['claims'] == 0

    @pytest.mark.asyncio
    async def test_refused_lock_after_cancellation_is_left_alone(self, redis_client):
        await redis_client.set("jibri:pending:w1", "other")
        arbiter = ClaimArbiter(redis_client, "jibri:pending:", 10000, RetryConfig(max_attempts=1))

        claim = asyncio.ensure_future(arbiter.attempt_claim("w1"))
        await asyncio.sleep(0)
        claim.cancel()
        with pytest.raises(asyncio.CancelledError):
            await claim

        await asyncio.sleep(0.05)
        assert await redis_client.get("jibri:pending:w1") == "other"
        assert arbiter.get_stats()['orphans_released'] == 0


class TestIdleRelayMessages:
    """Тесты разбора сообщений ретранслятора."""

    def _relay(self, channel):
        return IdleRelay(MagicMock(), channel, RelayConfig(enabled=True), "instance-a")

    def test_foreign_message_is_emitted_locally(self):
        channel = IdleChannel()
        events = []
        channel.subscribe(events.append)
        relay = self._relay(channel)

        relay._handle_message(json.dumps({
            "worker_id": "w1", "instance_id": "instance-b", "published_at": "2026-01-01T00:00:00"
        }))

        assert [(e.worker_id, e.source) for e in events] == [("w1", "relay")]

    def test_own_and_malformed_messages_are_ignored(self):
        channel = IdleChannel()
        events = []
        channel.subscribe(events.append)
        relay = self._relay(channel)

        relay._handle_message(json.dumps({
            "worker_id": "w1", "instance_id": "instance-a", "published_at": "2026-01-01T00:00:00"
        }))
        relay._handle_message(b"not json")
        relay._handle_message(json.dumps({"worker_id": "w2"}))

        assert events == []
        assert relay.get_metrics()['dropped'] == 2

    @pytest.mark.asyncio
    async def test_publish_requires_start(self):
        relay = self._relay(IdleChannel())
        with pytest.raises(RelayError):
            await relay.publish(IdleEvent("w1"))


class TestConfig:
    """Тесты конфигурации."""

    def test_defaults(self):
        config = TrackerConfig()
        assert config.validate()
        assert config.idle_ttl == 90
        assert config.pending_ttl == 10000
        assert config.lock_retry.max_attempts == 3
        assert not config.relay.enabled

    def test_pending_ttl_must_exceed_idle_ttl(self):
        with pytest.raises(ConfigurationError, match="pending_ttl"):
            TrackerConfig(idle_ttl=90, pending_ttl=60).validate()

    def test_prefixes_must_differ(self):
        with pytest.raises(ConfigurationError, match="must differ"):
            TrackerConfig(idle_prefix="x:", pending_prefix="x:").validate()

    def test_unknown_log_level_is_rejected(self):
        with pytest.raises(ConfigurationError, match="log_level"):
            TrackerConfig(log_level="VERBOSE").validate()

    def test_unknown_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            TrackerConfig.from_dict({"idle_tll": 5})

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "tracker.yaml"
        path.write_text(
            "idle_ttl: 30\n"
            "pending_ttl: 600\n"
            "lock_retry:\n"
            "  max_attempts: 5\n"
            "  strategy: exponential\n"
            "relay:\n"
            "  enabled: true\n",
            encoding="utf-8",
        )

        config = load_config(path)

        assert config.idle_ttl == 30
        assert config.lock_retry.max_attempts == 5
        assert config.lock_retry.strategy == BackoffStrategy.EXPONENTIAL
        assert config.relay.enabled
        assert config.relay.channel == "jibri:idle-events"

    def test_save_and_load_json(self, tmp_path):
        path = tmp_path / "tracker.json"
        save_config(TrackerConfig(idle_ttl=45), path, format="json")
        assert load_config(path).idle_ttl == 45

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "tracker.toml"
        path.write_text("idle_ttl = 1", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_load_from_env(self, monkeypatch):
        monkeypatch.setenv("TRACKER_REDIS_URL", "redis://cache:6379/2")
        monkeypatch.setenv("TRACKER_IDLE_TTL", "15")
        monkeypatch.setenv("LOCK_RETRY_COUNT", "4")
        monkeypatch.setenv("RELAY_ENABLED", "true")

        config = load_config_from_env()

        assert config.redis_url == "redis://cache:6379/2"
        assert config.idle_ttl == 15
        assert config.lock_retry.max_attempts == 4
        assert config.relay.enabled


class TestLogging:
    """Тесты настройки логирования."""

    def test_log_file_contains_task_name(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        log_file = tmp_path / "logs" / "tracker.log"

        try:
            setup_logging(level="DEBUG", log_file=str(log_file), enable_console=False)

            async def log_from_task():
                get_logger("availability_tracker.test").debug("lock obtained")

            asyncio.run(asyncio.wait_for(log_from_task(), 1.0))
            get_logger("availability_tracker.test").info("outside of a task")
            for handler in root.handlers:
                handler.flush()
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        lines = log_file.read_text(encoding="utf-8").splitlines()
        in_task = [line for line in lines if line.endswith("lock obtained")]
        outside = [line for line in lines if line.endswith("outside of a task")]
        assert len(in_task) == 1 and "| DEBUG" in in_task[0]
        assert "Task-" in in_task[0]
        assert "| -" in outside[0]
