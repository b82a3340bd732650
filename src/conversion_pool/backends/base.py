"""
Базовый контракт бэкенда конвертации.
"""

from abc import ABC, abstractmethod

from ..models.outcome import ExecutionOutcome
from ..models.task import ConversionTask


class Backend(ABC):
    """
    Исполнитель одной задачи конвертации.

    Пул вызывает ``acquire()`` при старте, ``release()`` при остановке и
    ``execute()`` не более чем для одной задачи одновременно. Если вызов
    ``execute()`` превысил таймаут, пул бросает его и вызывает ``restore()``:
    бэкенд должен прервать операцию и вернуть True, если готов к новой задаче.
    """

    name: str = "backend"

    @abstractmethod
    def acquire(self):
        """Запуск или подключение бэкенда."""

    @abstractmethod
    def release(self):
        """Освобождение ресурсов бэкенда."""

    @abstractmethod
    def execute(self, task: ConversionTask) -> ExecutionOutcome:
        """Выполнение конвертации. Ошибки возвращаются в исходе с классификацией."""

    def restore(self) -> bool:
        """Восстановление после брошенной операции."""
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name})"
