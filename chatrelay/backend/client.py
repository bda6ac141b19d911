"""基于 httpx 的后端客户端，带连接重试和取消。"""

import asyncio
from collections.abc import Awaitable

import httpx
from loguru import logger
from pydantic import ValidationError

from chatrelay.backend.base import BackendResponse, SingleResponse, StreamResponse
from chatrelay.backend.protocol import (
    EVENT_STREAM_CONTENT_TYPE,
    BackendRequest,
    SingleDocument,
    is_event_stream,
)
from chatrelay.config.schema import BackendConfig
from chatrelay.errors import BackendCancelled, BackendRejected, BackendUnreachable


class BackendClient:
    """
    向后端发送查询并解码响应。

    请求时声明偏好流式传输，但根据实际响应的 Content-Type
    决定按单文档还是流式处理。只有连接级失败会重试，
    非 2xx 状态码直接作为 BackendRejected 抛出。

    一个实例可以被所有工作者并发使用。
    """

    def __init__(
        self,
        config: BackendConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._http = httpx.AsyncClient(timeout=config.timeout, transport=transport)

    async def send(
        self,
        request: BackendRequest,
        cancel: asyncio.Event | None = None,
    ) -> BackendResponse:
        """
        发送请求，连接失败时按线性退避重试。

        参数:
            request: 要发送的请求。
            cancel: 共享的取消事件。触发后立即放弃，不再重试。

        返回:
            SingleResponse 或尚未读取的 StreamResponse。

        引发:
            BackendUnreachable: 所有尝试都无法建立连接或读取完整响应。
            BackendRejected: 后端返回非 2xx 状态码。
            BackendCancelled: 取消事件在调用期间被触发。
        """
        body = request.model_dump_json()
        attempts = self.config.max_attempts
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            if cancel is not None and cancel.is_set():
                raise BackendCancelled()

            try:
                return await self._until_cancelled(self._attempt(body), cancel)
            except httpx.TransportError as e:
                last_error = e
                logger.warning(f"连接后端失败（第 {attempt}/{attempts} 次尝试）：{e!r}")
                if attempt < attempts:
                    await self._backoff(attempt * self.config.backoff_seconds, cancel)

        logger.error(f"后端不可达，已放弃 {request.channel_id} 上的查询")
        raise BackendUnreachable(attempts, last_error)

    async def _attempt(self, body: str) -> BackendResponse:
        """一次完整的尝试：发送请求并读取单文档响应体。"""
        response = await self._post(body)
        return await self._decode(response)

    async def _post(self, body: str) -> httpx.Response:
        req = self._http.build_request(
            "POST",
            self.config.url,
            content=body,
            headers={
                "Content-Type": "application/json",
                "Accept": EVENT_STREAM_CONTENT_TYPE,
            },
        )
        return await self._http.send(req, stream=True)

    async def _until_cancelled(
        self,
        operation: Awaitable[BackendResponse],
        cancel: asyncio.Event | None,
    ) -> BackendResponse:
        """在操作和取消事件之间竞争；取消先发生时放弃该操作。"""
        if cancel is None:
            return await operation

        op = asyncio.ensure_future(operation)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({op, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            op.cancel()
            raise
        finally:
            waiter.cancel()

        if op in done:
            return op.result()

        op.cancel()
        await asyncio.wait({op})
        if not op.cancelled() and op.exception() is None:
            result = op.result()
            if isinstance(result, StreamResponse):
                await result.aclose()
        raise BackendCancelled()

    async def _backoff(self, delay: float, cancel: asyncio.Event | None) -> None:
        """退避等待；期间取消事件被触发则抛出 BackendCancelled。"""
        if cancel is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise BackendCancelled()

    async def _decode(self, response: httpx.Response) -> BackendResponse:
        """按状态码和 Content-Type 解码响应。"""
        if not response.is_success:
            try:
                await response.aread()
            finally:
                await response.aclose()
            logger.warning(f"后端返回 HTTP {response.status_code}")
            raise BackendRejected(response.status_code, response.text[:500])

        if is_event_stream(response.headers.get("content-type")):
            return StreamResponse(response.aiter_lines(), close=response.aclose)

        try:
            await response.aread()
        finally:
            await response.aclose()

        try:
            document = SingleDocument.model_validate_json(response.content)
        except ValidationError as e:
            logger.error(f"无法解码后端响应：{e}")
            return SingleResponse(full_text="")
        return SingleResponse(full_text=document.full_response)

    async def aclose(self) -> None:
        """关闭底层 HTTP 客户端。"""
        await self._http.aclose()
