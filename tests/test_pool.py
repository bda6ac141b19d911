import asyncio

import pytest

from chatrelay.errors import PoolClosed
from chatrelay.pool.pool import PoolTask, TaskPool


class CountingTask:
    def __init__(self, counter: dict[str, int], delay: float = 0) -> None:
        self.counter = counter
        self.delay = delay

    async def run(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.counter["runs"] += 1


class GatedTask:
    def __init__(self, gate: asyncio.Event, log: list[str], name: str) -> None:
        self.gate = gate
        self.log = log
        self.name = name

    async def run(self) -> None:
        await self.gate.wait()
        self.log.append(self.name)


class ConcurrencyTracker:
    def __init__(self, state: dict[str, int]) -> None:
        self.state = state

    async def run(self) -> None:
        self.state["active"] += 1
        self.state["peak"] = max(self.state["peak"], self.state["active"])
        await asyncio.sleep(0.01)
        self.state["active"] -= 1


class BrokenTask:
    async def run(self) -> None:
        raise RuntimeError("boom")


# 测试 K 个任务在 shutdown 返回前都恰好执行一次的情况
@pytest.mark.parametrize("workers,count", [(1, 0), (1, 1), (3, 10), (5, 50), (2, 7)])
async def test_shutdown_runs_every_submitted_task(workers: int, count: int) -> None:
    counter = {"runs": 0}
    pool = TaskPool(workers=workers)
    for _ in range(count):
        await pool.submit(CountingTask(counter, delay=0.002))
    await pool.shutdown()
    assert counter["runs"] == count
    assert pool.stats()["completed"] == count


# 测试单个工作者下 10 个并发调用方提交递增任务的情况
async def test_single_worker_concurrent_submitters() -> None:
    counter = {"runs": 0}
    pool = TaskPool(workers=1)
    await asyncio.gather(*(pool.submit(CountingTask(counter)) for _ in range(10)))
    await pool.shutdown()
    assert counter["runs"] == 10


# 测试同时执行的任务数不超过工作者数量的情况
async def test_concurrency_never_exceeds_worker_count() -> None:
    state = {"active": 0, "peak": 0}
    pool = TaskPool(workers=3)
    await asyncio.gather(*(pool.submit(ConcurrencyTracker(state)) for _ in range(20)))
    await pool.shutdown()
    assert state["peak"] <= 3
    assert state["active"] == 0


# 测试队列容量为工作者数量两倍的情况
def test_capacity_is_twice_worker_count() -> None:
    assert TaskPool(workers=4).capacity == 8


# 测试无效工作者数量的情况
def test_rejects_zero_workers() -> None:
    with pytest.raises(ValueError):
        TaskPool(workers=0)


# 测试队列已满时 submit 阻塞调用方的情况
async def test_submit_blocks_when_queue_full() -> None:
    gate = asyncio.Event()
    log: list[str] = []
    pool = TaskPool(workers=1)

    await pool.submit(GatedTask(gate, log, "running"))
    await asyncio.sleep(0.01)  # 让工作者取走第一个任务
    await pool.submit(GatedTask(gate, log, "queued-1"))
    await pool.submit(GatedTask(gate, log, "queued-2"))
    assert pool.qsize == 2

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(pool.submit(GatedTask(gate, log, "rejected")), timeout=0.05)

    gate.set()
    await pool.shutdown()
    assert log == ["running", "queued-1", "queued-2"]


# 测试 shutdown 开始前已阻塞的提交者仍然完成入队的情况
async def test_shutdown_waits_for_blocked_submitters() -> None:
    gate = asyncio.Event()
    log: list[str] = []
    pool = TaskPool(workers=1)

    await pool.submit(GatedTask(gate, log, "a"))
    await asyncio.sleep(0.01)
    await pool.submit(GatedTask(gate, log, "b"))
    await pool.submit(GatedTask(gate, log, "c"))
    blocked = asyncio.create_task(pool.submit(GatedTask(gate, log, "d")))
    await asyncio.sleep(0.01)
    assert not blocked.done()

    shutdown = asyncio.create_task(pool.shutdown())
    await asyncio.sleep(0.01)
    gate.set()
    await asyncio.gather(blocked, shutdown)

    assert sorted(log) == ["a", "b", "c", "d"]


# 测试关闭后提交任务的情况
async def test_submit_after_shutdown_raises() -> None:
    counter = {"runs": 0}
    pool = TaskPool(workers=2)
    await pool.submit(CountingTask(counter))
    await pool.shutdown()

    with pytest.raises(PoolClosed):
        await pool.submit(CountingTask(counter))
    assert counter["runs"] == 1
    assert pool.is_closed


# 测试从未启动的任务池关闭的情况
async def test_shutdown_without_start_is_noop() -> None:
    pool = TaskPool(workers=2)
    await pool.shutdown()
    await pool.shutdown()
    assert pool.stats()["submitted"] == 0
    with pytest.raises(PoolClosed):
        await pool.submit(CountingTask({"runs": 0}))


# 测试未启动的任务池在首次提交时自动启动的情况
async def test_submit_starts_pool_lazily() -> None:
    counter = {"runs": 0}
    pool = TaskPool(workers=2)
    assert not pool.is_running

    await pool.submit(CountingTask(counter))
    assert pool.is_running

    await pool.shutdown()
    assert counter["runs"] == 1

# 测试任务抛出异常不影响任务池的情况
async def test_failing_task_does_not_stop_pool() -> None:
    counter = {"runs": 0}
    pool = TaskPool(workers=1)
    await pool.submit(BrokenTask())
    await pool.submit(CountingTask(counter))
    await pool.submit(CountingTask(counter))
    await pool.shutdown()

    stats = pool.stats()
    assert counter["runs"] == 2
    assert stats["failed"] == 1
    assert stats["completed"] == 2


# 测试任务满足 PoolTask 协议的情况
def test_tasks_satisfy_protocol() -> None:
    assert isinstance(CountingTask({"runs": 0}), PoolTask)
