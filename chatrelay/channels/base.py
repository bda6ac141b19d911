"""聊天平台的基类通道接口。"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from chatrelay.bus.events import InboundEvent

EventHandler = Callable[[InboundEvent], Awaitable[Any]]


@runtime_checkable
class Sink(Protocol):
    """出站消息的接收端。必须支持并发调用。"""

    async def send(self, channel_id: str, text: str) -> None: ...


class BaseChannel(ABC):
    """
    聊天通道实现的抽象基类。

    通道既是入站事件源，也是出站 Sink：它把平台事件转换为
    InboundEvent 交给处理器（通常是 EventDispatcher.dispatch），
    并通过 send() 发送回复。
    """

    name: str = "base"

    def __init__(self, config: Any, handler: EventHandler | None = None):
        """
        初始化通道。

        参数:
            config: 通道特定的配置。
            handler: 接收入站事件的协程函数。
        """
        self.config = config
        self.handler = handler
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """
        启动通道并开始监听事件。

        这应该是一个长时间运行的异步任务，需要：
        1. 连接到聊天平台
        2. 监听传入事件
        3. 通过 _handle_event() 将事件交给处理器
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """停止通道并清理资源。"""
        pass

    @abstractmethod
    async def send(self, channel_id: str, text: str) -> None:
        """
        通过此通道发送一条消息。

        引发:
            SinkSendFailure: 平台拒绝或无法投递消息。
        """
        pass

    def is_allowed(self, sender_id: str) -> bool:
        """
        检查发送者是否被允许使用此机器人。

        参数:
            sender_id: 发送者的标识符。

        返回:
            如果允许则返回 True，否则返回 False。
        """
        allow_list = getattr(self.config, "allow_from", [])

        # 如果没有允许列表，允许所有人
        if not allow_list:
            return True

        return str(sender_id) in allow_list

    async def _handle_event(self, event: InboundEvent) -> None:
        """检查权限并将事件交给处理器。"""
        if not self.is_allowed(event.user_id):
            logger.warning(
                f"拒绝发送者 {event.user_id} 在通道 {self.name} 上的访问。"
                f"将其添加到配置中的 allowFrom 列表以授予访问权限。"
            )
            return

        if self.handler is None:
            logger.warning(f"通道 {self.name} 未设置事件处理器，丢弃事件")
            return

        await self.handler(event)

    @property
    def is_running(self) -> bool:
        """检查通道是否正在运行。"""
        return self._running
