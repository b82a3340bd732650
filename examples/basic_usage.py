"""
Базовый пример использования пула конвертации.

Для запуска без офисного пакета используется имитирующий бэкенд.
Реальный сервис подключается так:

    config = PoolConfig.from_dict({'pool_size': 2, 'online': {'url_connection': URL}})
    pool = ConversionPoolManager.from_config(config)
"""

import random
import tempfile
import time
from pathlib import Path

from conversion_pool import (
    Backend,
    ConversionPoolManager,
    DocumentConverter,
    ExecutionOutcome,
    PoolConfig,
    BackendError,
    PermanentFailure,
    TaskError,
    setup_logging
)


class SimulatedBackend(Backend):
    """Бэкенд, который иногда отвечает временной ошибкой."""

    def __init__(self, name: str):
        self.name = name

    def acquire(self):
        print(f"   {self.name}: запущен")

    def release(self):
        print(f"   {self.name}: остановлен")

    def execute(self, task):
        time.sleep(random.uniform(0.1, 0.4))  # Имитация работы

        if task.source_path.suffix == ".bin":
            return ExecutionOutcome.permanent(PermanentFailure(f"Unsupported document {task.source}", task.id))
        if random.random() < 0.3:  # 30% вероятность временной ошибки
            return ExecutionOutcome.transient(BackendError(f"{self.name} is overloaded"))

        task.target_path.write_text(f"converted from {task.source_path.name}")
        return ExecutionOutcome.success(task.target_path)


def main():
    """Основная функция с примерами использования."""
    print("=== Базовый пример использования пула конвертации ===\n")
    setup_logging(level="WARNING")

    work_dir = Path(tempfile.mkdtemp(prefix="conversion_example_"))
    config = PoolConfig(pool_size=2, queue_timeout=10.0, execution_timeout=5.0, max_retries=3)
    backends = [SimulatedBackend(f"backend-{i + 1}") for i in range(config.pool_size)]

    with ConversionPoolManager(backends, config) as pool:
        print(f"Пул запущен с {pool.pool_size} воркерами")
        converter = DocumentConverter(pool)

        # Пример 1: Синхронная конвертация
        print("\n1. Синхронная конвертация:")
        result = converter.convert(work_dir / "letter.odt").to(work_dir / "letter.pdf").execute(timeout=30.0)
        print(f"   Готово: {result}")

        # Пример 2: Пакет документов
        print("\n2. Пакет документов:")
        handles = [
            pool.submit_conversion(work_dir / f"report_{i}.docx", work_dir / f"report_{i}.pdf")
            for i in range(6)
        ]
        handles.append(pool.submit_conversion(work_dir / "archive.bin", work_dir / "archive.pdf"))

        for handle in handles:
            try:
                handle.result(timeout=30.0)
                print(f"   {handle.task.source_path.name}: готово за {handle.attempts} попыток")
            except TaskError as e:
                print(f"   {handle.task.source_path.name}: {type(e).__name__}: {e}")

        # Вывод метрик
        print("\n=== Метрики пула ===")
        metrics = pool.get_metrics()
        print(f"Всего задач отправлено: {metrics['total_tasks_submitted']}")
        print(f"Задач завершено: {metrics['total_tasks_succeeded']}")
        print(f"Задач с ошибками: {metrics['total_tasks_failed']}")
        print(f"Повторов: {metrics['total_retries']}")
        print(f"Процент успеха: {metrics['success_rate']:.1f}%")
        print(f"Среднее время выполнения: {metrics['average_execution_time']:.3f}s")

        worker_metrics = metrics['worker_metrics']
        print(f"\nВоркеры:")
        print(f"  Всего: {worker_metrics['total_workers']}")
        print(f"  Свободных: {worker_metrics['free_workers']}")
        print(f"  Исключенных: {worker_metrics['unusable_workers']}")

    print("\nПул конвертации остановлен")


if __name__ == "__main__":
    main()
