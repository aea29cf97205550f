"""
Система логирования для трекера доступности.
"""

import asyncio
import logging
import sys
from typing import Optional
from pathlib import Path


class TrackerFormatter(logging.Formatter):
    """Кастомный форматтер с именем asyncio-задачи."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-32s | %(task)-15s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record):
        # Имя задачи, в которой было записано сообщение
        if not hasattr(record, 'task'):
            record.task = _current_task_name()

        return super().format(record)


def _current_task_name() -> str:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        return "-"
    if task is None:
        return "-"
    return task.get_name()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
    log_format: Optional[str] = None
):
    """
    Настройка системы логирования.

    Args:
        level: Уровень логирования
        log_file: Путь к файлу логов
        enable_console: Включить вывод в консоль
        log_format: Кастомный формат логов
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Очистка существующих обработчиков
    root_logger.handlers.clear()

    if log_format:
        formatter = logging.Formatter(log_format)
    else:
        formatter = TrackerFormatter()

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Клиент redis слишком разговорчив на DEBUG
    logging.getLogger('redis').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Получение логгера для модуля.

    Args:
        name: Имя модуля

    Returns:
        Объект логгера
    """
    return logging.getLogger(name)


def set_package_level(level: str, name: str = "availability_tracker"):
    """
    Установка уровня логгеров пакета без изменения обработчиков приложения.

    Args:
        level: Уровень логирования
        name: Корневой логгер пакета
    """
    logging.getLogger(name).setLevel(getattr(logging, level.upper(), logging.INFO))
