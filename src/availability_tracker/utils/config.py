"""
Система конфигурации для трекера доступности.
"""

import json
import yaml
import os
from typing import Any, Dict, Union
from dataclasses import dataclass, asdict, field
from pathlib import Path

from ..core.retry_manager import RetryConfig
from ..exceptions import ConfigurationError


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class RelayConfig:
    """Конфигурация ретрансляции уведомлений между инстансами."""
    enabled: bool = False
    channel: str = "jibri:idle-events"


@dataclass
class TrackerConfig:
    """Основная конфигурация трекера."""

    redis_url: str = "redis://localhost:6379/0"
    idle_ttl: int = 90  # секунды
    pending_ttl: int = 10000  # секунды
    idle_prefix: str = "jibri:idle:"
    pending_prefix: str = "jibri:pending:"
    scan_count: int = 100
    log_level: str = "INFO"

    # Конфигурации компонентов
    lock_retry: RetryConfig = field(default_factory=RetryConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь."""
        config_dict = asdict(self)
        config_dict['lock_retry']['strategy'] = self.lock_retry.strategy.value
        return config_dict

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrackerConfig':
        """Создание из словаря."""
        data = dict(data or {})
        lock_retry_data = data.pop('lock_retry', None) or {}
        relay_data = data.pop('relay', None) or {}

        try:
            config = cls(**data)
            config.lock_retry = RetryConfig(**lock_retry_data)
            config.relay = RelayConfig(**relay_data)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        return config

    def validate(self) -> bool:
        """Валидация конфигурации."""
        errors = []

        if not self.redis_url:
            errors.append("redis_url must not be empty")

        if not isinstance(self.idle_ttl, int) or self.idle_ttl < 1:
            errors.append("idle_ttl must be a positive integer")

        if not isinstance(self.pending_ttl, int) or self.pending_ttl < 1:
            errors.append("pending_ttl must be a positive integer")
        elif isinstance(self.idle_ttl, int) and self.pending_ttl <= self.idle_ttl:
            errors.append("pending_ttl must be greater than idle_ttl")

        if not self.idle_prefix or not self.pending_prefix:
            errors.append("key prefixes must not be empty")
        elif self.idle_prefix == self.pending_prefix:
            errors.append("idle_prefix and pending_prefix must differ")

        if self.scan_count < 1:
            errors.append("scan_count must be >= 1")

        if str(self.log_level).upper() not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")

        # Проверка повторов блокировки
        if self.lock_retry.max_attempts < 1:
            errors.append("lock_retry.max_attempts must be >= 1")

        if self.lock_retry.delay < 0 or self.lock_retry.jitter < 0:
            errors.append("lock_retry.delay and lock_retry.jitter must be >= 0")

        if self.relay.enabled and not self.relay.channel:
            errors.append("relay.channel must not be empty when relay is enabled")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

        return True

    def update(self, **kwargs) -> 'TrackerConfig':
        """Обновление конфигурации с новыми значениями."""
        new_config = self.to_dict()
        new_config.update(kwargs)
        return TrackerConfig.from_dict(new_config)


def load_config(file_path: Union[str, Path]) -> TrackerConfig:
    """
    Загрузка конфигурации из файла.

    Args:
        file_path: Путь к файлу конфигурации (.yaml, .yml или .json)

    Returns:
        Объект конфигурации
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with open(file_path, 'r', encoding='utf-8') as f:
        if file_path.suffix.lower() in ['.yaml', '.yml']:
            data = yaml.safe_load(f)
        elif file_path.suffix.lower() == '.json':
            data = json.load(f)
        else:
            raise ConfigurationError(f"Unsupported configuration file format: {file_path.suffix}")

    config = TrackerConfig.from_dict(data)
    config.validate()

    return config


def save_config(config: TrackerConfig, file_path: Union[str, Path], format: str = 'yaml'):
    """
    Сохранение конфигурации в файл.

    Args:
        config: Объект конфигурации
        file_path: Путь к файлу
        format: Формат файла ('yaml' или 'json')
    """
    file_path = Path(file_path)
    data = config.to_dict()

    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'w', encoding='utf-8') as f:
        if format.lower() == 'yaml':
            yaml.safe_dump(data, f, default_flow_style=False, indent=2)
        elif format.lower() == 'json':
            json.dump(data, f, indent=2, ensure_ascii=False)
        else:
            raise ConfigurationError(f"Unsupported format: {format}")


def load_config_from_env() -> TrackerConfig:
    """
    Загрузка конфигурации из переменных окружения.

    Returns:
        Объект конфигурации
    """
    config_data: Dict[str, Any] = {}

    if os.getenv('TRACKER_REDIS_URL'):
        config_data['redis_url'] = os.getenv('TRACKER_REDIS_URL')

    if os.getenv('TRACKER_IDLE_TTL'):
        config_data['idle_ttl'] = int(os.getenv('TRACKER_IDLE_TTL'))

    if os.getenv('TRACKER_PENDING_TTL'):
        config_data['pending_ttl'] = int(os.getenv('TRACKER_PENDING_TTL'))

    if os.getenv('TRACKER_IDLE_PREFIX'):
        config_data['idle_prefix'] = os.getenv('TRACKER_IDLE_PREFIX')

    if os.getenv('TRACKER_PENDING_PREFIX'):
        config_data['pending_prefix'] = os.getenv('TRACKER_PENDING_PREFIX')

    if os.getenv('TRACKER_LOG_LEVEL'):
        config_data['log_level'] = os.getenv('TRACKER_LOG_LEVEL')

    # Повторы захвата блокировки
    lock_retry_data = {}
    if os.getenv('LOCK_RETRY_COUNT'):
        lock_retry_data['max_attempts'] = int(os.getenv('LOCK_RETRY_COUNT'))

    if os.getenv('LOCK_RETRY_DELAY'):
        lock_retry_data['delay'] = float(os.getenv('LOCK_RETRY_DELAY'))

    if os.getenv('LOCK_RETRY_JITTER'):
        lock_retry_data['jitter'] = float(os.getenv('LOCK_RETRY_JITTER'))

    if lock_retry_data:
        config_data['lock_retry'] = lock_retry_data

    # Ретрансляция между инстансами
    relay_data = {}
    if os.getenv('RELAY_ENABLED'):
        relay_data['enabled'] = os.getenv('RELAY_ENABLED').lower() == 'true'

    if os.getenv('RELAY_CHANNEL'):
        relay_data['channel'] = os.getenv('RELAY_CHANNEL')

    if relay_data:
        config_data['relay'] = relay_data

    return TrackerConfig.from_dict(config_data)
