"""Background task execution with progress reporting."""

from __future__ import annotations

import queue
import threading
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import duckdb

from ..utils.concurrency import create_thread_pool
from ..utils.logging_utils import get_logger

LOGGER = get_logger("runtime.tasks")


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class TaskPhase(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskStatus:
    progress: float = 0.0
    message: Optional[str] = None
    phase: TaskPhase = TaskPhase.RUNNING
    result: Any = None
    started_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["phase"] = self.phase.value
        return payload


# (progress, message, phase, result); ``None`` leaves the field unchanged.
Update = Tuple[Optional[float], Optional[str], Optional[TaskPhase], Any]

_CLOSED = object()


@dataclass
class ExecuteContext:
    """Handle a running task uses to report progress."""

    task_id: str
    channel: "queue.Queue[object]"
    connection: Optional[duckdb.DuckDBPyConnection] = None
    param: Any = None

    def update_progress(self, value: float, message: Optional[str] = None) -> None:
        if not 0.0 <= value <= 100.0:
            LOGGER.error("Illegal progress value %s for task %s", value, self.task_id)
            value = min(max(value, 0.0), 100.0)
        LOGGER.info("Task %s progress %.0f%%: %s", self.task_id, value, message)
        self.channel.put((float(value), message, None, None))

    def fail(self, message: Optional[str] = None) -> None:
        self.channel.put((None, message, TaskPhase.FAILED, None))

    def complete(self, message: Optional[str] = None, result: Any = None) -> None:
        self.channel.put((100.0, message, TaskPhase.COMPLETED, result))


Task = Callable[[ExecuteContext], Any]


class _TaskHandle:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.status = TaskStatus()
        self.done = threading.Event()

    def apply(self, update: Update) -> None:
        progress, message, phase, result = update
        with self.lock:
            if progress is not None:
                self.status.progress = progress
            if message is not None:
                self.status.message = message
            if phase is not None:
                self.status.phase = phase
            if result is not None:
                self.status.result = result
            self.status.updated_at = _now_iso()

    def snapshot(self) -> TaskStatus:
        with self.lock:
            return replace(self.status)


class TaskExecutor:
    """Run tasks on the shared pool and track their :class:`TaskStatus`."""

    def __init__(
        self,
        connection: Optional[duckdb.DuckDBPyConnection] = None,
        *,
        max_workers: Optional[int] = None,
    ) -> None:
        self.connection = connection
        self._pool = create_thread_pool(max_workers, prefix="task")
        self._lock = threading.Lock()
        self._tasks: Dict[str, _TaskHandle] = {}

    def submit_task(
        self,
        task: Task,
        *,
        task_id: Optional[str] = None,
        param: Any = None,
    ) -> str:
        task_id = task_id or uuid.uuid4().hex
        handle = _TaskHandle()
        with self._lock:
            self._tasks[task_id] = handle

        channel: "queue.Queue[object]" = queue.Queue()
        context = ExecuteContext(
            task_id=task_id,
            channel=channel,
            connection=self.connection,
            param=param,
        )

        drain = threading.Thread(
            target=self._drain,
            args=(channel, handle),
            name=f"task-status-{task_id[:8]}",
            daemon=True,
        )
        drain.start()
        self._pool.submit(self._run, task, context)
        LOGGER.info("Submitted task %s", task_id)
        return task_id

    @staticmethod
    def _drain(channel: "queue.Queue[object]", handle: _TaskHandle) -> None:
        while True:
            update = channel.get()
            if update is _CLOSED:
                break
            handle.apply(update)  # type: ignore[arg-type]
        handle.done.set()

    @staticmethod
    def _run(task: Task, context: ExecuteContext) -> None:
        try:
            result = task(context)
        except Exception as exc:
            LOGGER.exception("Task %s failed", context.task_id)
            context.fail(str(exc))
        else:
            context.complete(None, result)
        finally:
            context.channel.put(_CLOSED)

    def get_task_status(self, task_id: str) -> Optional[TaskStatus]:
        with self._lock:
            handle = self._tasks.get(task_id)
        if handle is None:
            return None
        return handle.snapshot()

    def wait(self, task_id: str, timeout: Optional[float] = None) -> Optional[TaskStatus]:
        """Block until *task_id* has finished and its updates are applied."""

        with self._lock:
            handle = self._tasks.get(task_id)
        if handle is None:
            return None
        handle.done.wait(timeout)
        return handle.snapshot()

    def remove_task(self, task_id: str) -> Optional[TaskStatus]:
        with self._lock:
            handle = self._tasks.pop(task_id, None)
        return handle.snapshot() if handle is not None else None

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
