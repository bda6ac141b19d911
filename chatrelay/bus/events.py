"""中继管道的事件类型。"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class OriginKind(str, Enum):
    """入站事件的来源类型。"""

    MENTION = "mention"  # 在共享通道中 @ 机器人
    DIRECT_MESSAGE = "direct_message"  # 一对一私聊


@dataclass
class InboundEvent:
    """从聊天平台接收的事件。"""

    user_id: str  # 发送者标识符
    channel_id: str  # 通道/会话标识符
    text: str  # 原始消息文本
    origin_kind: OriginKind
    bot_identifier: str | None = None  # 机器人自身 ID，仅用于提及事件
    channel_type: str | None = None  # 平台通道类型，"im" 表示一对一会话
    sender_is_bot: bool = False  # 发送者是否为机器人
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)  # 平台特定的数据

    @property
    def mention_token(self) -> str | None:
        """机器人自身的提及标记，例如 <@U123>。"""
        if not self.bot_identifier:
            return None
        return f"<@{self.bot_identifier}>"


@dataclass(frozen=True)
class Query:
    """从入站事件中提取的查询，text 保证非空。"""

    user_id: str
    channel_id: str
    text: str


@dataclass(frozen=True)
class OutboundFragment:
    """要发送到通道的一段文本，对应一次发送调用。"""

    channel_id: str
    text: str
