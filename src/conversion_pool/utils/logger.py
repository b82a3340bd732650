"""
Система логирования для пула конвертации.

Сообщения о конкретной задаче пишутся через ``get_task_logger`` и несут
короткий идентификатор задачи в поле ``task_id`` записи.
"""

import logging
import sys
from pathlib import Path
from typing import Any, MutableMapping, Optional, Sequence, Tuple


DEFAULT_FORMAT = '%(asctime)s | %(levelname)-8s | %(threadName)-22s | %(name)s [%(task_id)s] | %(message)s'

# Библиотеки, которые шумят на уровне INFO
NOISY_LOGGERS = ('urllib3', 'requests')


class TaskContextFilter(logging.Filter):
    """Подставляет ``task_id`` в записи, сделанные без контекста задачи."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'task_id'):
            record.task_id = '-'
        return True


class ConversionPoolFormatter(logging.Formatter):
    """Кастомный форматтер для логов пула конвертации."""

    def __init__(self, fmt: Optional[str] = None):
        super().__init__(fmt=fmt or DEFAULT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')


class TaskLoggerAdapter(logging.LoggerAdapter):
    """Логгер с привязкой к задаче конвертации."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get('extra') or {})
        extra.setdefault('task_id', self.extra['task_id'])
        kwargs['extra'] = extra
        return msg, kwargs


def _make_handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(TaskContextFilter())
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
    log_format: Optional[str] = None,
    quiet_loggers: Sequence[str] = NOISY_LOGGERS
):
    """
    Настройка системы логирования.

    Args:
        level: Уровень логирования
        log_file: Путь к файлу логов
        enable_console: Вывод в stderr
        log_format: Кастомный формат логов, может использовать %(task_id)s
        quiet_loggers: Логгеры библиотек, ограниченные уровнем WARNING
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    formatter = ConversionPoolFormatter(log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if enable_console:
        root_logger.addHandler(_make_handler(logging.StreamHandler(sys.stderr), numeric_level, formatter))

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(
            _make_handler(logging.FileHandler(log_path, encoding='utf-8'), numeric_level, formatter)
        )

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Получение логгера для модуля."""
    return logging.getLogger(name)


def get_task_logger(name: str, task_id: str) -> TaskLoggerAdapter:
    """
    Получение логгера для сообщений о задаче.

    Args:
        name: Имя модуля
        task_id: Идентификатор задачи, в записи попадают первые 8 символов

    Returns:
        Адаптер логгера модуля
    """
    return TaskLoggerAdapter(logging.getLogger(name), {'task_id': task_id[:8]})
