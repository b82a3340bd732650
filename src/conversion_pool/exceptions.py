"""
Исключения для пула конвертации документов.
"""

from typing import Optional


class ConversionPoolError(Exception):
    """Базовое исключение для пула конвертации."""
    pass


class IllegalStateError(ConversionPoolError):
    """Операция недопустима в текущем состоянии жизненного цикла пула."""
    pass


class ConfigurationError(ConversionPoolError):
    """Ошибка конфигурации."""
    pass


class QueueFullError(ConversionPoolError):
    """Очередь задач заполнена и место не освободилось вовремя."""
    pass


class BackendError(ConversionPoolError):
    """Ошибка бэкенда конвертации (по умолчанию считается временной)."""
    pass


class BackendUnusable(ConversionPoolError):
    """Бэкенд не удалось восстановить после таймаута, воркер исключен из пула."""

    def __init__(self, message: str, worker_id: Optional[str] = None):
        super().__init__(message)
        self.worker_id = worker_id


class TaskError(ConversionPoolError):
    """Базовое исключение для терминальных ошибок отдельной задачи."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id


class TaskQueueTimeout(TaskError):
    """Задача не дождалась свободного воркера за отведенное время."""
    pass


# Короткое имя для совместимости
QueueTimeout = TaskQueueTimeout


class TaskExecutionTimeout(TaskError):
    """Бэкенд не завершил конвертацию за отведенное время."""
    pass


class PermanentFailure(TaskError):
    """Бэкенд отклонил задачу без возможности повтора."""
    pass


class RetriesExhausted(TaskError):
    """Временные ошибки повторялись дольше допустимого числа попыток."""

    def __init__(
        self,
        message: str,
        task_id: Optional[str] = None,
        attempts: int = 0,
        last_error: Optional[BaseException] = None
    ):
        super().__init__(message, task_id)
        self.attempts = attempts
        self.last_error = last_error
