"""事件分发器：校验入站事件、提取查询并提交到任务池。"""

from enum import Enum

from loguru import logger
from opentelemetry import context as otel_context
from opentelemetry import trace

from chatrelay.bus.events import InboundEvent, OriginKind, Query
from chatrelay.errors import InvalidEvent
from chatrelay.pool.pool import TaskPool
from chatrelay.relay.task import Relay, RelayTask
from chatrelay.tracing import get_tracer, log_with_trace

DIRECT_CHANNEL_TYPE = "im"


class DispatchOutcome(str, Enum):
    ENQUEUED = "enqueued"
    DROPPED = "dropped"


def extract_query(event: InboundEvent) -> Query:
    """
    从入站事件中提取查询。

    提及事件：移除机器人自身的提及标记并去除空白。
    私信事件：要求通道类型为一对一会话且发送者不是机器人。

    引发:
        InvalidEvent: 事件应被丢弃。
    """
    if event.origin_kind is OriginKind.MENTION:
        token = event.mention_token
        if token is None:
            raise InvalidEvent("提及事件缺少机器人标识")
        text = event.text.replace(token, "").strip()
    elif event.origin_kind is OriginKind.DIRECT_MESSAGE:
        if event.sender_is_bot:
            raise InvalidEvent("忽略机器人发送的消息")
        if event.channel_type != DIRECT_CHANNEL_TYPE:
            raise InvalidEvent(f"通道类型 {event.channel_type!r} 不是私信")
        text = event.text.strip()
    else:
        raise InvalidEvent(f"未知的事件来源 {event.origin_kind!r}")

    if not text:
        raise InvalidEvent("查询为空")
    return Query(user_id=event.user_id, channel_id=event.channel_id, text=text)


class EventDispatcher:
    """
    将入站事件转换为中继任务。

    dispatch 只等待任务进入队列（队列满时才会阻塞），
    从不等待任务完成。每次分发都会产生一个 span，无论接受还是丢弃。
    """

    def __init__(self, pool: TaskPool, relay: Relay, tracer: trace.Tracer | None = None):
        self.pool = pool
        self.relay = relay
        self.tracer = tracer or get_tracer("chatrelay.dispatcher")

    async def dispatch(self, event: InboundEvent) -> DispatchOutcome:
        """
        处理一个入站事件。

        引发:
            PoolClosed: 任务池已经关闭。
        """
        span_name = (
            "process_mention" if event.origin_kind is OriginKind.MENTION else "process_direct_message"
        )
        with self.tracer.start_as_current_span(span_name) as span:
            span.set_attributes({
                "user.id": event.user_id,
                "channel.id": event.channel_id,
            })

            try:
                query = extract_query(event)
            except InvalidEvent as e:
                span.set_attributes({
                    "error.invalid_input": True,
                    "drop.reason": e.reason,
                })
                logger.debug(f"丢弃来自 {event.user_id} 的事件：{e.reason}")
                return DispatchOutcome.DROPPED

            span.set_attribute("query", query.text)
            kind = "提及" if event.origin_kind is OriginKind.MENTION else "私信"
            log_with_trace(f"收到{kind}：{query.text}")

            task = RelayTask(query=query, relay=self.relay, trace_context=otel_context.get_current())
            await self.pool.submit(task)
            return DispatchOutcome.ENQUEUED
