"""使用 Slack Socket Mode websocket 的 Slack 通道实现。"""

import asyncio
import json
from typing import Any

import httpx
import websockets
from loguru import logger

from chatrelay.bus.events import InboundEvent, OriginKind
from chatrelay.channels.base import BaseChannel, EventHandler
from chatrelay.config.schema import SlackConfig
from chatrelay.errors import SinkSendFailure


SLACK_API_BASE = "https://slack.com/api"
RECONNECT_DELAY_S = 5
IGNORED_MESSAGE_SUBTYPES = {"message_changed", "message_deleted", "channel_join", "channel_leave"}


class SlackChannel(BaseChannel):
    """使用 Socket Mode 的 Slack 通道。"""

    name = "slack"

    def __init__(
        self,
        config: SlackConfig,
        handler: EventHandler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(config, handler)
        self.config: SlackConfig = config
        self._transport = transport
        self._ws: Any = None
        self._http: httpx.AsyncClient | None = None
        self._bot_user_id: str | None = None
        self._closed = False

    @property
    def bot_user_id(self) -> str | None:
        return self._bot_user_id

    def _ensure_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=SLACK_API_BASE, timeout=30.0, transport=self._transport
            )
        return self._http

    async def start(self) -> None:
        """启动 Socket Mode 连接。"""
        if not self.config.bot_token or not self.config.app_token:
            logger.error("未配置 Slack bot 令牌或 app 令牌")
            return

        self._running = True
        self._ensure_http()

        while self._running:
            try:
                if self._bot_user_id is None:
                    self._bot_user_id = await self._auth_test()
                url = await self._open_connection()
                logger.info("正在连接到 Slack Socket Mode...")
                async with websockets.connect(url) as ws:
                    self._ws = ws
                    await self._socket_loop()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Slack Socket Mode 错误：{e}")
            finally:
                self._ws = None

            if self._running:
                logger.info(f"{RECONNECT_DELAY_S} 秒后重新连接到 Slack...")
                await asyncio.sleep(RECONNECT_DELAY_S)

    async def stop_listening(self) -> None:
        """断开 websocket，不再接收新事件。已接收事件的回复仍可发送。"""
        self._running = False
        if self._ws:
            await self._ws.close()
            self._ws = None

    async def stop(self) -> None:
        """停止 Slack 通道并关闭 HTTP 客户端。之后的 send 调用会失败。"""
        await self.stop_listening()
        self._closed = True
        if self._http:
            await self._http.aclose()
            self._http = None

    async def send(self, channel_id: str, text: str) -> None:
        """通过 chat.postMessage 发送消息。"""
        if self._closed:
            raise SinkSendFailure(channel_id, "通道已关闭")
        http = self._ensure_http()
        try:
            response = await http.post(
                "/chat.postMessage",
                headers={"Authorization": f"Bearer {self.config.bot_token}"},
                json={"channel": channel_id, "text": text},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SinkSendFailure(channel_id, str(e)) from e

        if not data.get("ok"):
            raise SinkSendFailure(channel_id, data.get("error", "unknown_error"))

    async def _auth_test(self) -> str:
        """获取机器人自身的用户 ID，用于识别提及标记。"""
        data = await self._api_call("auth.test", self.config.bot_token)
        user_id = data.get("user_id", "")
        logger.info(f"Slack 机器人用户 ID：{user_id}")
        return user_id

    async def _open_connection(self) -> str:
        """请求一个 Socket Mode websocket URL。"""
        data = await self._api_call("apps.connections.open", self.config.app_token)
        return data["url"]

    async def _api_call(self, method: str, token: str) -> dict[str, Any]:
        http = self._ensure_http()
        response = await http.post(f"/{method}", headers={"Authorization": f"Bearer {token}"})
        response.raise_for_status()
        data = response.json()
        if not data.get("ok"):
            raise RuntimeError(f"Slack {method} 失败：{data.get('error')}")
        return data

    async def _socket_loop(self) -> None:
        """主循环：确认信封并分发事件。"""
        if not self._ws:
            return

        async for raw in self._ws:
            try:
                envelope = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"来自 Slack 的无效 JSON：{raw[:100]}")
                continue

            if not await self._handle_envelope(envelope):
                break

    async def _handle_envelope(self, envelope: dict[str, Any]) -> bool:
        """
        处理一个 Socket Mode 信封。

        返回:
            False 表示应断开并重新连接。
        """
        envelope_id = envelope.get("envelope_id")
        if envelope_id and self._ws:
            await self._ws.send(json.dumps({"envelope_id": envelope_id}))

        kind = envelope.get("type")
        if kind == "hello":
            logger.info("Slack Socket Mode 就绪")
        elif kind == "disconnect":
            logger.info(f"Slack 请求重新连接（{envelope.get('reason')}）")
            return False
        elif kind == "events_api":
            payload = envelope.get("payload") or {}
            event = self._to_inbound_event(payload.get("event") or {})
            if event is not None:
                await self._handle_event(event)
        return True

    def _to_inbound_event(self, event: dict[str, Any]) -> InboundEvent | None:
        """将 Slack 事件转换为 InboundEvent。不关心的事件返回 None。"""
        event_type = event.get("type")
        user_id = str(event.get("user", ""))
        channel_id = str(event.get("channel", ""))
        metadata = {"ts": event.get("ts"), "thread_ts": event.get("thread_ts")}

        if event_type == "app_mention":
            return InboundEvent(
                user_id=user_id,
                channel_id=channel_id,
                text=event.get("text") or "",
                origin_kind=OriginKind.MENTION,
                bot_identifier=self._bot_user_id,
                channel_type=event.get("channel_type"),
                sender_is_bot=bool(event.get("bot_id")),
                metadata=metadata,
            )

        if event_type == "message":
            subtype = event.get("subtype")
            if subtype in IGNORED_MESSAGE_SUBTYPES:
                return None
            return InboundEvent(
                user_id=user_id,
                channel_id=channel_id,
                text=event.get("text") or "",
                origin_kind=OriginKind.DIRECT_MESSAGE,
                channel_type=event.get("channel_type"),
                sender_is_bot=bool(event.get("bot_id")) or subtype == "bot_message",
                metadata=metadata,
            )

        return None
