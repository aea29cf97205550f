"""
Исключения трекера доступности воркеров.
"""


class TrackerError(Exception):
    """Базовое исключение трекера."""
    pass


class StoreError(TrackerError):
    """Ошибка записи или удаления в общем хранилище."""
    pass


class ScanError(TrackerError):
    """Ошибка перебора записей о свободных воркерах."""
    pass


class ValidationError(TrackerError):
    """Ошибка валидации состояния воркера."""
    pass


class ConfigurationError(TrackerError):
    """Ошибка конфигурации."""
    pass


class RelayError(TrackerError):
    """Ошибка ретранслятора событий между инстансами."""
    pass
