import asyncio

import pytest

from src.bot.errors import MappingError, RemoteAPIError
from src.gateway.tasks import TaskSupervisor


class TestTaskSupervisor:
    def test_rejects_empty_pool(self):
        with pytest.raises(ValueError):
            TaskSupervisor(max_concurrent=0)

    @pytest.mark.asyncio
    async def test_runs_task_and_forgets_it(self):
        supervisor = TaskSupervisor()
        done = []

        async def work():
            done.append(True)

        await supervisor.spawn("work", work())

        assert done == [True]
        assert supervisor.pending == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [MappingError("unmapped"), RemoteAPIError("boom", status_code=500), RuntimeError("bug")],
    )
    async def test_errors_are_logged_and_dropped(self, error):
        supervisor = TaskSupervisor()

        async def failing():
            raise error

        # Does not raise
        await supervisor.spawn("failing", failing())

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        supervisor = TaskSupervisor(max_concurrent=2)
        running = 0
        peak = 0
        release = asyncio.Event()

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await release.wait()
            running -= 1

        tasks = [supervisor.spawn(f"work-{i}", work()) for i in range(5)]
        await asyncio.sleep(0.01)
        assert running == 2

        release.set()
        await asyncio.gather(*tasks)
        assert peak == 2

    @pytest.mark.asyncio
    async def test_drain_cancels_stragglers(self):
        supervisor = TaskSupervisor()

        async def forever():
            await asyncio.Event().wait()

        task = supervisor.spawn("forever", forever())
        await asyncio.sleep(0)

        await supervisor.drain(timeout=0.01)

        assert task.cancelled()
        assert supervisor.pending == 0

    @pytest.mark.asyncio
    async def test_drain_without_tasks_returns(self):
        await TaskSupervisor().drain(timeout=0)
