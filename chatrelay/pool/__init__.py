"""有界并发任务池。"""

from chatrelay.pool.pool import PoolTask, TaskPool

__all__ = ["PoolTask", "TaskPool"]
