"""
Результат одного выполнения задачи на бэкенде.
"""

from enum import Enum
from typing import Any, Optional
from dataclasses import dataclass


class FailureKind(Enum):
    """Классификация ошибок."""
    PERMANENT = "permanent"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class ExecutionOutcome:
    """
    Исход одной попытки выполнения.

    Успех несет значение ``result``, неудача несет ``error`` и ``kind``.
    Решение о повторе принимается по этим данным, а не по типу исключения.
    """

    result: Any = None
    error: Optional[BaseException] = None
    kind: Optional[FailureKind] = None
    execution_time: float = 0.0

    @classmethod
    def success(cls, result: Any = None, execution_time: float = 0.0) -> 'ExecutionOutcome':
        return cls(result=result, execution_time=execution_time)

    @classmethod
    def permanent(cls, error: BaseException, execution_time: float = 0.0) -> 'ExecutionOutcome':
        return cls(error=error, kind=FailureKind.PERMANENT, execution_time=execution_time)

    @classmethod
    def transient(cls, error: BaseException, execution_time: float = 0.0) -> 'ExecutionOutcome':
        return cls(error=error, kind=FailureKind.TRANSIENT, execution_time=execution_time)

    def is_success(self) -> bool:
        """Проверка успешности выполнения."""
        return self.error is None

    def is_transient(self) -> bool:
        return self.kind == FailureKind.TRANSIENT

    def is_permanent(self) -> bool:
        return self.kind == FailureKind.PERMANENT
