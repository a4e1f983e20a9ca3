from __future__ import annotations

import queue
import threading

import pytest

from dump_analyzer.runtime.tasks import ExecuteContext, TaskExecutor, TaskPhase


@pytest.fixture
def executor():
    tasks = TaskExecutor(max_workers=2)
    yield tasks
    tasks.shutdown()


def test_completed_task_reports_result(executor):
    def work(context: ExecuteContext):
        context.update_progress(40, "halfway")
        return {"answer": 42, "param": context.param}

    task_id = executor.submit_task(work, param="dump.txt")
    status = executor.wait(task_id, timeout=10)

    assert status.phase is TaskPhase.COMPLETED
    assert status.progress == 100
    assert status.result == {"answer": 42, "param": "dump.txt"}
    assert status.message == "halfway"
    assert status.as_dict()["phase"] == "completed"


def test_failed_task_reports_error(executor):
    def work(context: ExecuteContext):
        context.update_progress(10, "starting")
        raise ValueError("boom")

    task_id = executor.submit_task(work)
    status = executor.wait(task_id, timeout=10)

    assert status.phase is TaskPhase.FAILED
    assert status.message == "boom"
    assert status.progress == 10


def test_running_status_is_visible(executor):
    release = threading.Event()
    reached = threading.Event()

    def work(context: ExecuteContext):
        context.update_progress(25, "parsing")
        reached.set()
        release.wait(10)
        return "ok"

    task_id = executor.submit_task(work, task_id="fixed-id")
    assert task_id == "fixed-id"
    assert reached.wait(10)
    status = executor.get_task_status(task_id)
    assert status.phase is TaskPhase.RUNNING
    release.set()
    assert executor.wait(task_id, timeout=10).phase is TaskPhase.COMPLETED


def test_progress_is_clamped():
    channel: "queue.Queue[object]" = queue.Queue()
    context = ExecuteContext(task_id="t", channel=channel)
    context.update_progress(150, "too far")
    context.update_progress(-5)
    assert channel.get()[0] == 100.0
    assert channel.get()[0] == 0.0


def test_unknown_and_removed_tasks(executor):
    assert executor.get_task_status("missing") is None
    assert executor.wait("missing") is None

    task_id = executor.submit_task(lambda context: None)
    executor.wait(task_id, timeout=10)
    assert executor.remove_task(task_id) is not None
    assert executor.get_task_status(task_id) is None
    assert executor.remove_task(task_id) is None
