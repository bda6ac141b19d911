"""中继任务：请求后端、切分响应，并按节奏发送到通道。"""

import asyncio
from dataclasses import dataclass, field

import httpx
from loguru import logger
from opentelemetry import context as otel_context
from opentelemetry import trace

from chatrelay.backend.client import BackendClient
from chatrelay.backend.protocol import BackendRequest
from chatrelay.bus.events import OutboundFragment, Query
from chatrelay.channels.base import Sink
from chatrelay.config.schema import RelayConfig
from chatrelay.errors import BackendCancelled, BackendRejected, BackendUnreachable
from chatrelay.relay.normalizer import normalize
from chatrelay.tracing import get_tracer, log_with_trace


class Relay:
    """
    一个查询从后端到通道的完整处理流程。

    由所有任务共享；本身不保存任何单个查询的状态。
    """

    def __init__(
        self,
        backend: BackendClient,
        sink: Sink,
        config: RelayConfig | None = None,
        cancel: asyncio.Event | None = None,
        tracer: trace.Tracer | None = None,
    ):
        self.backend = backend
        self.sink = sink
        self.config = config or RelayConfig()
        self.cancel = cancel
        self.tracer = tracer or get_tracer("chatrelay.relay")

    async def process(self, query: Query, parent: otel_context.Context | None = None) -> int:
        """
        处理一个查询。

        后端调用返回响应之后，即使取消事件被触发，也会发送完所有片段。

        返回:
            成功发送的片段数量。
        """
        with self.tracer.start_as_current_span("backend_request", context=parent) as span:
            span.set_attributes({
                "user.id": query.user_id,
                "channel.id": query.channel_id,
                "query": query.text,
            })

            try:
                response = await self.backend.send(BackendRequest.from_query(query), cancel=self.cancel)
            except BackendUnreachable as e:
                span.record_exception(e)
                log_with_trace("无法连接后端", level="ERROR")
                return await self._emit(OutboundFragment(query.channel_id, self.config.unavailable_message))
            except BackendRejected as e:
                span.record_exception(e)
                span.set_attribute("http.status_code", e.status_code)
                log_with_trace(f"后端拒绝了请求（HTTP {e.status_code}）", level="WARNING")
                return await self._emit(OutboundFragment(query.channel_id, self.config.rejected_message))
            except BackendCancelled:
                log_with_trace("后端调用已取消，放弃查询", level="WARNING")
                return 0

            sent = 0
            try:
                async for fragment in normalize(response, query.channel_id):
                    sent += await self._emit(fragment)
            except httpx.HTTPError as e:
                span.record_exception(e)
                log_with_trace(f"读取后端响应时中断：{e!r}", level="WARNING")

            span.set_attribute("fragments.sent", sent)
            log_with_trace(f"已向 {query.channel_id} 发送 {sent} 条消息")
            return sent

    async def _emit(self, fragment: OutboundFragment) -> int:
        """发送一个片段并等待节奏间隔。发送失败只记录日志。"""
        sent = 1
        try:
            await self.sink.send(fragment.channel_id, fragment.text)
        except Exception as e:
            sent = 0
            logger.error(f"发送到 {fragment.channel_id} 时出错：{e}")

        if self.config.pacing_delay > 0:
            await asyncio.sleep(self.config.pacing_delay)
        return sent


@dataclass
class RelayTask:
    """提交给任务池的工作单元：一个查询及其目标通道。"""

    query: Query
    relay: Relay
    trace_context: otel_context.Context | None = field(default=None, repr=False)

    @property
    def channel_id(self) -> str:
        return self.query.channel_id

    async def run(self) -> None:
        await self.relay.process(self.query, self.trace_context)
