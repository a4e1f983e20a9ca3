"""Background task runtime."""

from .tasks import ExecuteContext, TaskExecutor, TaskPhase, TaskStatus

__all__ = ["ExecuteContext", "TaskExecutor", "TaskPhase", "TaskStatus"]
