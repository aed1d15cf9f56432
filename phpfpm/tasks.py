"""Background install tasks.

Package manager runs can take many minutes, so the HTTP layer submits them
here and returns a task id. Installs run on a single worker thread and queue
behind each other; two package manager invocations would fight over the
package database. Asking for an install that is already queued or running
returns the existing task instead of queuing a second one.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .errors import FPMError

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_FINISHED = (TaskStatus.COMPLETED, TaskStatus.FAILED)


@dataclass
class Task:
    """A queued runtime install.

    Attributes:
        id: Short task identifier
        operation: Operation name (e.g. "install_runtime")
        provider: Provider performing the install
        params: Keyword arguments for the install function
        status: Current task status
        message: Progress or result message
        error: Error message if failed
        submitted_at: Unix timestamp when the task was queued
        started_at: Unix timestamp when the worker picked it up
        completed_at: Unix timestamp when it completed or failed
    """
    id: str
    operation: str
    provider: str
    params: dict = field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    message: str = ""
    error: str | None = None
    submitted_at: float = field(default_factory=time.time)
    started_at: float | None = None
    completed_at: float | None = None

    @property
    def key(self) -> tuple:
        return (self.operation, self.provider, tuple(sorted(self.params.items())))

    @property
    def finished(self) -> bool:
        return self.status in _FINISHED


class TaskManager:
    """Queues installs onto one worker and keeps a bounded task history."""

    def __init__(self, keep_finished: int = 50):
        self.keep_finished = keep_finished
        self._tasks: dict[str, Task] = {}
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="install-")
        self._callbacks: list[Callable[[Task], None]] = []
        self._lock = threading.Lock()  # guards _tasks and _callbacks

    def submit(
        self,
        operation: str,
        provider: str,
        func: Callable[..., str],
        params: dict | None = None,
    ) -> Task:
        """Queue `func(**params)`, which returns a message or raises on failure.

        An unfinished task with the same operation, provider and params is
        returned as is.
        """
        task = Task(id=uuid.uuid4().hex[:8], operation=operation, provider=provider, params=params or {})
        with self._lock:
            for existing in self._tasks.values():
                if not existing.finished and existing.key == task.key:
                    logger.info(f"Task {existing.id} already covers {operation} {params} on {provider}")
                    return existing
            self._tasks[task.id] = task
            queued = sum(1 for t in self._tasks.values() if t.status == TaskStatus.PENDING)

        logger.info(f"Task {task.id} queued: {operation} on {provider} ({queued} pending)")
        self._executor.submit(self._run_task, task, func)
        return task

    def _run_task(self, task: Task, func: Callable[..., str]):
        task.status = TaskStatus.RUNNING
        task.started_at = time.time()
        task.message = f"Running {task.operation}..."
        self._notify(task)

        try:
            task.message = func(**task.params)
            task.status = TaskStatus.COMPLETED
        except FPMError as e:
            task.status = TaskStatus.FAILED
            task.error = str(e)
            logger.warning(f"Task {task.id}: {e}")
        except Exception as e:
            task.status = TaskStatus.FAILED
            task.error = str(e)
            logger.exception(f"Task {task.id}: unexpected error")
        task.completed_at = time.time()

        if task.status == TaskStatus.COMPLETED:
            logger.info(f"Task {task.id}: done in {task.completed_at - task.started_at:.1f}s - {task.message}")
        self._notify(task)
        self._prune()

    def _prune(self):
        with self._lock:
            finished = sorted(
                (t for t in self._tasks.values() if t.finished),
                key=lambda t: t.completed_at,
            )
            excess = finished[: max(0, len(finished) - self.keep_finished)]
            for t in excess:
                del self._tasks[t.id]
        if excess:
            logger.debug(f"Dropped {len(excess)} finished task(s)")

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            return self._tasks.get(task_id)

    def on_task_update(self, callback: Callable[[Task], None]):
        """Register a callback run whenever a task changes state."""
        with self._lock:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[Task], None]):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def _notify(self, task: Task):
        with self._lock:
            callbacks = list(self._callbacks)

        for cb in callbacks:
            try:
                cb(task)
            except Exception as e:
                logger.warning(f"Task callback error: {e}")

    def shutdown(self, wait: bool = True, cancel_futures: bool = False):
        logger.info(f"Install queue shutting down (wait={wait}, cancel={cancel_futures})")
        self._executor.shutdown(wait=wait, cancel_futures=cancel_futures)


_manager: TaskManager | None = None


def get_task_manager() -> TaskManager:
    """Get the global task manager."""
    global _manager
    if _manager is None:
        _manager = TaskManager()
    return _manager
