"""
Бэкенд локального офисного пакета.
"""

import shutil
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import List, Optional

import psutil

from .base import Backend
from ..models.outcome import ExecutionOutcome
from ..models.task import ConversionTask
from ..utils.config import LocalOfficeConfig
from ..utils.logger import get_logger, get_task_logger
from ..exceptions import BackendError, PermanentFailure


logger = get_logger(__name__)


class LocalOfficeBackend(Backend):
    """
    Конвертация через headless процесс офисного пакета.

    У каждого экземпляра свой профиль пользователя в рабочем каталоге, поэтому
    несколько воркеров не мешают друг другу. Процесс текущей задачи
    отслеживается, и ``restore()`` завершает все его дерево через psutil.
    """

    def __init__(self, config: LocalOfficeConfig, working_dir: Path, name: str = "local"):
        self.config = config
        self.working_dir = Path(working_dir)
        self.name = name
        self._office_path: Optional[str] = None
        self._profile_dir: Optional[Path] = None
        self._process: Optional[subprocess.Popen] = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def profile_dir(self) -> Optional[Path]:
        return self._profile_dir

    def acquire(self):
        """Поиск исполняемого файла и создание профиля."""
        office_path = shutil.which(self.config.office_home)
        if office_path is None:
            raise BackendError(f"Office executable not found: {self.config.office_home}")

        self.working_dir.mkdir(parents=True, exist_ok=True)
        self._office_path = office_path
        self._profile_dir = Path(tempfile.mkdtemp(prefix=f"office_profile_{self.name}_", dir=self.working_dir))
        logger.info(f"Backend {self.name} uses {office_path} with profile {self._profile_dir}")

    def release(self):
        """Завершение процесса и удаление профиля."""
        if not self.restore():
            raise BackendError(f"Office process of backend {self.name} did not terminate")

        if self._profile_dir is not None:
            shutil.rmtree(self._profile_dir, ignore_errors=True)
            self._profile_dir = None
        logger.info(f"Backend {self.name} released")

    def build_command(self, task: ConversionTask, output_dir: Path) -> List[str]:
        return [
            self._office_path,
            "--headless",
            "--invisible",
            "--nologo",
            "--norestore",
            f"-env:UserInstallation={self._profile_dir.resolve().as_uri()}",
            *self.config.extra_args,
            "--convert-to", task.target_format,
            "--outdir", str(output_dir),
            str(task.source_path)
        ]

    def execute(self, task: ConversionTask) -> ExecutionOutcome:
        start_time = time.time()

        if self._office_path is None:
            return ExecutionOutcome.transient(BackendError(f"Backend {self.name} is not acquired"))

        if not task.target_format:
            return ExecutionOutcome.permanent(
                PermanentFailure(f"Target format of task {task.id} is unknown", task.id)
            )

        if not task.source_path.is_file():
            return ExecutionOutcome.permanent(
                PermanentFailure(f"Source file not found: {task.source}", task.id)
            )

        output_dir = Path(tempfile.mkdtemp(prefix="out_", dir=self._profile_dir))
        try:
            command = self.build_command(task, output_dir)
            get_task_logger(__name__, task.id).debug(f"Running {' '.join(command)}")

            with self._lock:
                generation = self._generation
                self._process = subprocess.Popen(
                    command,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE
                )
                process = self._process
            try:
                _, stderr = process.communicate()
            finally:
                with self._lock:
                    if self._process is process:
                        self._process = None

            execution_time = time.time() - start_time

            if process.returncode != 0:
                message = stderr.decode(errors='replace').strip()
                return ExecutionOutcome.transient(
                    BackendError(f"Office process exited with code {process.returncode}: {message}"),
                    execution_time
                )

            # "pdf:writer_pdf_Export" -> "pdf"
            extension = task.target_format.split(':', 1)[0]
            produced = output_dir / f"{task.source_path.stem}.{extension}"
            if not produced.exists():
                return ExecutionOutcome.permanent(
                    PermanentFailure(f"Office produced no {extension} output for {task.source}", task.id),
                    execution_time
                )

            target = task.target_path
            target.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                if generation == self._generation:
                    shutil.move(str(produced), str(target))
                    return ExecutionOutcome.success(target, execution_time)
            return ExecutionOutcome.transient(
                BackendError(f"Call on backend {self.name} was abandoned before it finished"),
                execution_time
            )
        finally:
            shutil.rmtree(output_dir, ignore_errors=True)

    def restore(self) -> bool:
        """Завершение дерева процессов брошенной конвертации."""
        with self._lock:
            process = self._process
            self._generation += 1

        if process is None or process.poll() is not None:
            return True

        try:
            parent = psutil.Process(process.pid)
            procs = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return True

        for proc in procs:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

        _, alive = psutil.wait_procs(procs, timeout=self.config.kill_timeout)
        if alive:
            logger.error(f"Backend {self.name}: processes {[p.pid for p in alive]} survived kill")
            return False

        logger.warning(f"Backend {self.name}: killed office process {process.pid}")
        return True
