"""有界并发任务池。"""

import asyncio
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from chatrelay.errors import PoolClosed


@runtime_checkable
class PoolTask(Protocol):
    """可以提交给任务池的工作单元。"""

    async def run(self) -> None: ...


class TaskPool:
    """
    固定数量的工作协程，从一个有界队列中取出任务执行。

    队列容量为工作者数量的两倍。队列满时 submit 会阻塞调用方，
    使过载的中继减慢事件接收，而不是无限增长内存。

    用法：
        pool = TaskPool(workers=4)
        await pool.submit(task)
        ...
        await pool.shutdown()
    """

    def __init__(self, workers: int):
        if workers < 1:
            raise ValueError(f"workers 必须 >= 1，当前为 {workers}")
        self.workers = workers
        self._queue: asyncio.Queue[PoolTask | None] | None = None
        self._worker_tasks: list[asyncio.Task[None]] = []
        self._closed = False
        self._shutdown_task: asyncio.Future[None] | None = None
        self._pending_submits = 0
        self._submits_drained: asyncio.Event | None = None
        self._active = 0
        self._submitted = 0
        self._completed = 0
        self._failed = 0

    @property
    def capacity(self) -> int:
        """内部队列容量。"""
        return self.workers * 2

    def start(self) -> None:
        """启动工作协程。必须在运行中的事件循环内调用。"""
        if self._closed:
            raise PoolClosed()
        if self._worker_tasks:
            return

        self._queue = asyncio.Queue(maxsize=self.capacity)
        self._submits_drained = asyncio.Event()
        self._submits_drained.set()
        self._worker_tasks = [
            asyncio.create_task(self._worker(i), name=f"chatrelay-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"任务池已启动（{self.workers} 个工作者，队列容量 {self.capacity}）")

    async def submit(self, task: PoolTask) -> None:
        """
        将任务放入队列。

        仅在队列已满时阻塞；不会等待任务完成。

        参数:
            task: 要执行的任务。

        引发:
            PoolClosed: 如果 shutdown 已经开始。
        """
        if self._closed:
            raise PoolClosed()
        if not self._worker_tasks:
            self.start()

        assert self._queue is not None and self._submits_drained is not None
        self._pending_submits += 1
        self._submits_drained.clear()
        try:
            await self._queue.put(task)
            self._submitted += 1
        finally:
            self._pending_submits -= 1
            if self._pending_submits == 0:
                self._submits_drained.set()

    async def shutdown(self) -> None:
        """
        关闭任务池。

        拒绝新的提交，等待所有已排队的任务执行完毕后停止工作者。
        已接受的任务不会被丢弃。
        """
        self._closed = True
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._drain())
        await asyncio.shield(self._shutdown_task)

    async def _drain(self) -> None:
        if not self._worker_tasks:
            logger.info("任务池已关闭（从未启动）")
            return

        assert self._queue is not None and self._submits_drained is not None

        # 关闭开始前已经阻塞的提交者仍然会完成入队
        await self._submits_drained.wait()
        await self._queue.join()

        for _ in self._worker_tasks:
            self._queue.put_nowait(None)
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks = []

        logger.info(
            f"任务池已关闭（完成 {self._completed}，失败 {self._failed}）"
        )

    async def _worker(self, worker_id: int) -> None:
        """工作循环：一次取一个任务并运行到完成。"""
        assert self._queue is not None
        while True:
            task = await self._queue.get()
            if task is None:
                self._queue.task_done()
                break

            self._active += 1
            try:
                await task.run()
                self._completed += 1
            except Exception:
                self._failed += 1
                logger.exception(f"工作者 {worker_id} 执行任务时出错")
            finally:
                self._active -= 1
                self._queue.task_done()

    @property
    def qsize(self) -> int:
        """等待执行的任务数量。"""
        return self._queue.qsize() if self._queue else 0

    @property
    def is_running(self) -> bool:
        return bool(self._worker_tasks) and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    def stats(self) -> dict[str, Any]:
        """获取任务池计数器。"""
        return {
            "workers": self.workers,
            "running": self.is_running,
            "queued": self.qsize,
            "active": self._active,
            "submitted": self._submitted,
            "completed": self._completed,
            "failed": self._failed,
        }
