"""后端线路协议：请求体、单文档响应与流式记录。"""

import json
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chatrelay.bus.events import Query
from chatrelay.errors import MalformedStreamRecord

EVENT_STREAM_CONTENT_TYPE = "text/event-stream"
JSON_CONTENT_TYPE = "application/json"
DATA_PREFIX = "data: "


class BackendRequest(BaseModel):
    """发送到后端的查询。与 Query 一一对应。"""

    user_id: str
    query: str
    channel_id: str

    @classmethod
    def from_query(cls, query: Query) -> "BackendRequest":
        return cls(user_id=query.user_id, query=query.text, channel_id=query.channel_id)


class SingleDocument(BaseModel):
    """单个 JSON 文档形式的完整响应。"""

    full_response: str = ""
    error: str | None = None


class StreamEventKind(str, Enum):
    """流式记录的类型。"""

    FRAGMENT = "message_part"
    TERMINAL = "stream_end"


class StreamEvent(BaseModel):
    """流式响应中的一条数据记录。线路上的字段名为 id/event/text_chunk/status。"""

    model_config = ConfigDict(populate_by_name=True)

    sequence_id: int | None = Field(default=None, alias="id")
    kind: StreamEventKind = Field(alias="event")
    text: str | None = Field(default=None, alias="text_chunk")
    status: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind is StreamEventKind.TERMINAL


def is_event_stream(content_type: str | None) -> bool:
    """检查 Content-Type 是否声明了流式传输（忽略 charset 等参数）。"""
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == EVENT_STREAM_CONTENT_TYPE


def parse_stream_line(line: str) -> StreamEvent | None:
    """
    解析一行传输数据。

    参数:
        line: 不含换行符的一行。

    返回:
        数据记录对应的 StreamEvent；非数据行（id:、event:、空行）返回 None。

    引发:
        MalformedStreamRecord: 数据行无法解码或校验。
    """
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    try:
        return StreamEvent.model_validate_json(payload)
    except ValidationError as e:
        errors = e.errors()
        reason = errors[0]["msg"] if errors else str(e)
        raise MalformedStreamRecord(line, reason) from e


def format_stream_event(event: StreamEvent) -> str:
    """将 StreamEvent 编码为 `id: <seq>\\nevent: <kind>\\ndata: <json>\\n\\n`。"""
    data = json.dumps(event.model_dump(by_alias=True, exclude_none=True, mode="json"))
    return f"id: {event.sequence_id}\nevent: {event.kind.value}\ndata: {data}\n\n"
