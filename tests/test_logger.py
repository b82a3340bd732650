"""
Тесты системы логирования.
"""

import logging
import pytest

from conversion_pool.utils.logger import get_logger, get_task_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLogging:
    """Тесты настройки логирования."""

    def test_task_logger_sets_task_id(self, caplog):
        """Сообщения о задаче несут короткий идентификатор."""
        with caplog.at_level(logging.DEBUG, logger="conversion_pool.tests"):
            get_task_logger("conversion_pool.tests", "1234567890abcdef").info("converted")

        assert caplog.records[0].task_id == "12345678"
        assert caplog.records[0].getMessage() == "converted"

    def test_log_file(self, tmp_path, restore_root_logger):
        """Запись в файл с контекстом задачи и без него."""
        log_file = tmp_path / "logs" / "pool.log"
        setup_logging(level="debug", log_file=str(log_file), enable_console=False)

        get_logger("conversion_pool.tests").info("pool started")
        get_task_logger("conversion_pool.tests", "abcdef0123456789").warning("retrying")
        for handler in restore_root_logger.handlers:
            handler.flush()

        lines = log_file.read_text(encoding='utf-8').splitlines()
        assert "[-] | pool started" in lines[0]
        assert "[abcdef01] | retrying" in lines[1]
        assert restore_root_logger.level == logging.DEBUG

    def test_quiet_libraries(self, restore_root_logger):
        setup_logging(level="DEBUG", enable_console=False)

        assert logging.getLogger("urllib3").level == logging.WARNING
