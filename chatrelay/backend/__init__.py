"""后端客户端与线路协议。"""

from chatrelay.backend.base import BackendResponse, SingleResponse, StreamResponse
from chatrelay.backend.client import BackendClient
from chatrelay.backend.protocol import BackendRequest, StreamEvent, StreamEventKind

__all__ = [
    "BackendClient",
    "BackendRequest",
    "BackendResponse",
    "SingleResponse",
    "StreamEvent",
    "StreamEventKind",
    "StreamResponse",
]
