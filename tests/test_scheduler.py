import asyncio

import pytest

from docsite.errors import FaultKind, NotFound, StoreFault
from docsite.services.tasks import AnalysisTask, LoadModuleTask, TaskScheduler


def test_tasks_run_one_at_a_time_in_submission_order():
    events = []

    async def dispatch(task_id, task):
        events.append(("start", task_id))
        await asyncio.sleep(0)
        events.append(("end", task_id))

    async def run():
        scheduler = TaskScheduler(dispatch)
        ids = [scheduler.enqueue(LoadModuleTask(name)) for name in ("a", "b", "c")]
        # enqueue never runs the task itself
        assert events == []
        assert scheduler.state == "draining"
        assert scheduler.pending == 3
        await scheduler.wait_idle()
        return scheduler, ids

    scheduler, ids = asyncio.run(run())
    assert ids == [1, 2, 3]
    assert events == [
        ("start", 1), ("end", 1),
        ("start", 2), ("end", 2),
        ("start", 3), ("end", 3),
    ]
    assert scheduler.status() == {"state": "idle", "pending": 0, "processed": 3, "failed": 0}


def test_tasks_enqueued_while_draining_run_after_the_current_one():
    seen = []

    async def dispatch(task_id, task):
        seen.append(task.module)
        if task.module == "first":
            scheduler.enqueue(AnalysisTask("second", "1.0.0"))

    scheduler = TaskScheduler(dispatch)

    async def run():
        scheduler.enqueue(LoadModuleTask("first"))
        scheduler.enqueue(LoadModuleTask("third"))
        await scheduler.wait_idle()

    asyncio.run(run())
    assert seen == ["first", "third", "second"]


def test_a_failing_task_does_not_stop_the_queue(caplog):
    seen = []

    async def dispatch(task_id, task):
        seen.append(task_id)
        if task_id == 1:
            raise NotFound("gone")
        if task_id == 2:
            raise StoreFault("write failed", status="503", detail={"reason": "busy"})
        if task_id == 3:
            raise RuntimeError("boom")

    async def run():
        scheduler = TaskScheduler(dispatch)
        for name in ("a", "b", "c", "d"):
            scheduler.enqueue(LoadModuleTask(name))
        await scheduler.wait_idle()
        return scheduler

    with caplog.at_level("INFO"):
        scheduler = asyncio.run(run())
    assert seen == [1, 2, 3, 4]
    assert scheduler.processed == 4
    assert scheduler.failed == 3
    assert scheduler.faults == {
        FaultKind.NOT_FOUND: 1,
        FaultKind.STORE_FAULT: 1,
        FaultKind.UNEXPECTED: 1,
    }
    assert any("status=503" in r.getMessage() for r in caplog.records)
    assert any(r.getMessage().startswith('[4]: Finished task "load"') for r in caplog.records)


def test_a_task_cancelled_from_inside_does_not_stop_the_queue():
    seen = []

    async def dispatch(task_id, task):
        seen.append(task_id)
        if task_id == 1:
            inner = asyncio.ensure_future(asyncio.sleep(10))
            inner.cancel()
            await inner

    async def run():
        scheduler = TaskScheduler(dispatch)
        scheduler.enqueue(LoadModuleTask("a"))
        scheduler.enqueue(LoadModuleTask("b"))
        await scheduler.wait_idle()
        return scheduler

    scheduler = asyncio.run(run())
    assert seen == [1, 2]
    assert scheduler.status() == {"state": "idle", "pending": 0, "processed": 2, "failed": 1}
    assert scheduler.faults == {FaultKind.UNEXPECTED: 1}


def test_cancelling_the_drain_leaves_the_queue_restartable():
    seen = []
    started = None

    async def dispatch(task_id, task):
        seen.append(task_id)
        if task_id == 1:
            started.set()
            await asyncio.Event().wait()

    async def run():
        nonlocal started
        started = asyncio.Event()
        scheduler = TaskScheduler(dispatch)
        scheduler.enqueue(LoadModuleTask("a"))
        scheduler.enqueue(LoadModuleTask("b"))
        await started.wait()
        step = scheduler._step_task
        step.cancel()
        with pytest.raises(asyncio.CancelledError):
            await step
        assert scheduler.state == "idle"
        assert scheduler.pending == 1
        scheduler.enqueue(LoadModuleTask("c"))
        await scheduler.wait_idle()
        return scheduler

    scheduler = asyncio.run(run())
    assert seen == [1, 2, 3]
    assert scheduler.pending == 0


def test_enqueue_requires_a_running_loop():
    async def dispatch(task_id, task):
        return None

    scheduler = TaskScheduler(dispatch)
    with pytest.raises(RuntimeError):
        scheduler.enqueue(LoadModuleTask("oak"))
