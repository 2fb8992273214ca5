import uuid

import pytest

from followup_engine.core.events import AsyncEventBus, EngineMetrics, TaskCreated, TaskStarted


@pytest.mark.asyncio
async def test_typed_and_global_handlers():
    bus = AsyncEventBus()
    seen = []

    async def on_created(event):
        seen.append(("typed", type(event).__name__))

    bus.subscribe(TaskCreated, on_created)
    bus.subscribe_all(lambda event: seen.append(("global", type(event).__name__)))

    await bus.publish(TaskCreated(task_id=uuid.uuid4()))
    await bus.publish(TaskStarted(task_id=uuid.uuid4()))

    assert seen == [
        ("global", "TaskCreated"),
        ("typed", "TaskCreated"),
        ("global", "TaskStarted"),
    ]
    assert bus.handler_count(TaskCreated) == 1
    assert bus.handler_count() == 2


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others():
    bus = AsyncEventBus()
    metrics = EngineMetrics()

    def broken(event):
        raise RuntimeError("subscriber bug")

    bus.subscribe(TaskCreated, broken)
    bus.subscribe(TaskCreated, metrics)

    await bus.publish(TaskCreated())

    assert metrics.snapshot() == {"TaskCreated": 1}


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = AsyncEventBus()
    metrics = EngineMetrics()
    bus.subscribe(TaskCreated, metrics)

    assert bus.unsubscribe(TaskCreated, metrics) is True
    assert bus.unsubscribe(TaskCreated, metrics) is False
    await bus.publish(TaskCreated())
    assert metrics.snapshot() == {}
