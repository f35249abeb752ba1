"""Tests for the TaskServiceImpl."""

import asyncio
import logging
import pytest
from typing import Any

from syncloop.task import task_service_context, get_task_service
from syncloop.task.service import TaskServiceImpl

_LOGGER = logging.getLogger(__name__)


@pytest.fixture
def task_service() -> TaskServiceImpl:
    """Fixture for creating a TaskServiceImpl instance."""
    return TaskServiceImpl()


async def test_create_and_complete_task(task_service: TaskServiceImpl) -> None:
    """Test creating and completing a task."""

    async def test_task() -> Any:
        await asyncio.sleep(0.01)
        return "done"

    task = task_service.create_task(test_task(), name="example")
    assert task.get_name() == "example"
    assert task_service.get_num_active_tasks() == 1

    result = await task
    assert result == "done"
    await asyncio.sleep(0)
    assert task_service.get_num_active_tasks() == 0


async def test_block_till_done(task_service: TaskServiceImpl) -> None:
    """Test blocking until all tasks are done, including tasks they create."""
    finished = []

    async def child() -> None:
        await asyncio.sleep(0.01)
        finished.append("child")

    async def parent() -> None:
        await asyncio.sleep(0.01)
        task_service.create_task(child())
        finished.append("parent")

    tasks = [task_service.create_task(parent()) for _ in range(3)]
    assert task_service.get_num_active_tasks() == 3

    await task_service.block_till_done()

    assert task_service.get_num_active_tasks() == 0
    assert all(task.done() for task in tasks)
    assert finished.count("child") == 3


async def test_task_failure(task_service: TaskServiceImpl) -> None:
    """Test a failed task is removed from the active tasks."""

    async def failing_task() -> Any:
        await asyncio.sleep(0.01)
        raise ValueError("Test error")

    task = task_service.create_task(failing_task())

    with pytest.raises(ValueError, match="Test error"):
        await task
    await asyncio.sleep(0)
    assert task_service.get_num_active_tasks() == 0

    # block_till_done does not raise task errors
    task_service.create_task(failing_task())
    await task_service.block_till_done()


async def test_task_cancellation(task_service: TaskServiceImpl) -> None:
    """Test task cancellation."""

    async def cancellable_task() -> Any:
        await asyncio.sleep(10)

    task = task_service.create_task(cancellable_task())
    task.cancel()
    await asyncio.sleep(0.01)

    assert task.cancelled()
    assert task_service.get_num_active_tasks() == 0


async def test_background_task_not_awaited(task_service: TaskServiceImpl) -> None:
    """Test block_till_done does not wait for background tasks."""
    task = task_service.create_background_task(asyncio.sleep(10))
    await asyncio.wait_for(task_service.block_till_done(), timeout=1)
    assert not task.done()
    await task_service.cancel_all()
    assert task.cancelled()


async def test_periodic_task(task_service: TaskServiceImpl) -> None:
    """Test a periodic task keeps running after a failure."""
    calls = 0

    async def tick() -> None:
        nonlocal calls
        calls += 1
        if calls == 2:
            raise RuntimeError("flaky")

    task = task_service.create_periodic_task(tick, 0.01, name="tick")
    while calls < 4:
        await asyncio.sleep(0.01)
    assert not task.done()

    await task_service.cancel_all()
    assert task.cancelled()


async def test_periodic_task_invalid_interval(task_service: TaskServiceImpl) -> None:
    """Test the interval of a periodic task must be positive."""

    async def tick() -> None:
        pass

    with pytest.raises(ValueError, match="must be positive"):
        task_service.create_periodic_task(tick, 0)


async def test_cancel_all(task_service: TaskServiceImpl) -> None:
    """Test cancelling every task."""
    tasks = [
        task_service.create_task(asyncio.sleep(10)),
        task_service.create_background_task(asyncio.sleep(10)),
    ]
    await task_service.cancel_all()
    assert all(task.cancelled() for task in tasks)
    assert task_service.get_num_active_tasks() == 0


def test_singleton_behavior() -> None:
    """Test singleton behavior of TaskServiceImpl."""
    with task_service_context() as task_service:
        service1 = get_task_service()
        assert isinstance(service1, TaskServiceImpl)

        service2 = get_task_service()
        assert service1 is service2

    with task_service_context() as task_service:
        service3 = get_task_service()
        assert service1 is not service3
        assert task_service is service3
