"""入站事件与出站片段的数据类型。"""

from chatrelay.bus.events import InboundEvent, OriginKind, OutboundFragment, Query

__all__ = ["InboundEvent", "OriginKind", "OutboundFragment", "Query"]
