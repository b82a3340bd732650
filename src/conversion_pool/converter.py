"""
Фасад конвертации поверх пула: convert(source).to(target).execute().
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

from .core.pool_manager import ConversionPoolManager
from .models.task import ConversionTask, TaskHandle
from .utils.logger import get_logger


logger = get_logger(__name__)

PathLike = Union[str, Path]


class DocumentConverter:
    """Построитель запросов конвертации для запущенного пула."""

    def __init__(self, pool: ConversionPoolManager):
        self._pool = pool

    @property
    def pool(self) -> ConversionPoolManager:
        return self._pool

    def convert(self, source: PathLike) -> 'ConversionJob':
        """Начало описания конвертации исходного документа."""
        return ConversionJob(self._pool, source)


class ConversionJob:
    """Одна конвертация: источник, цель и параметры задачи."""

    def __init__(self, pool: ConversionPoolManager, source: PathLike):
        self._pool = pool
        self._source = source
        self._target: Optional[PathLike] = None
        self._target_format: Optional[str] = None
        self._task_kwargs: Dict[str, Any] = {}

    def to(self, target: PathLike, target_format: Optional[str] = None) -> 'ConversionJob':
        """
        Задание выходного документа.

        Args:
            target: Путь выходного файла
            target_format: Формат конвертации, по умолчанию расширение target
        """
        self._target = target
        self._target_format = target_format
        return self

    def with_timeouts(
        self,
        queue_timeout: Optional[float] = None,
        execution_timeout: Optional[float] = None
    ) -> 'ConversionJob':
        """Переопределение таймаутов пула для этой задачи."""
        self._task_kwargs['queue_timeout'] = queue_timeout
        self._task_kwargs['execution_timeout'] = execution_timeout
        return self

    def _build_task(self) -> ConversionTask:
        if self._target is None:
            raise ValueError("Conversion target is not set, call to() first")
        return ConversionTask(
            source=self._source,
            target=self._target,
            target_format=self._target_format,
            **self._task_kwargs
        )

    def execute_async(self) -> TaskHandle:
        """Отправка задачи без ожидания результата."""
        task = self._build_task()
        logger.debug(f"Converting {task.source} to {task.target} ({task.target_format})")
        return self._pool.submit(task)

    def execute(self, timeout: Optional[float] = None) -> Any:
        """
        Отправка задачи и ожидание результата.

        Raises:
            TaskError: Терминальная ошибка задачи
        """
        return self.execute_async().result(timeout=timeout)
