"""聊天通道实现。"""

from chatrelay.channels.base import BaseChannel, Sink

__all__ = ["BaseChannel", "Sink"]
