import asyncio
from collections.abc import Callable

import httpx
import pytest

from chatrelay.backend.client import BackendClient
from chatrelay.config.schema import BackendConfig, RelayConfig
from chatrelay.errors import SinkSendFailure

BACKEND_URL = "http://backend.test/v1/chat/stream"


class RecordingSink:
    """记录每次发送的 Sink。"""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, channel_id: str, text: str) -> None:
        self.sent.append((channel_id, text))

    @property
    def texts(self) -> list[str]:
        return [text for _, text in self.sent]


class FlakySink(RecordingSink):
    """前 n 次发送失败的 Sink。"""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def send(self, channel_id: str, text: str) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise SinkSendFailure(channel_id, "channel_not_found")
        await super().send(channel_id, text)


class BrokenStream(httpx.AsyncByteStream):
    """先输出部分响应体，随后连接被重置的响应流。"""

    def __init__(self, head: bytes = b'{"full_resp', stall: asyncio.Event | None = None) -> None:
        self.head = head
        self.stall = stall
        self.closed = False

    async def __aiter__(self):
        yield self.head
        if self.stall is not None:
            await self.stall.wait()
        raise httpx.ReadError("connection reset")

    async def aclose(self) -> None:
        self.closed = True


def sse_body(*records: str) -> str:
    return "".join(f"data: {r}\n\n" for r in records)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def relay_config() -> RelayConfig:
    return RelayConfig(pacing_delay=0)


@pytest.fixture
def backend_config() -> BackendConfig:
    return BackendConfig(url=BACKEND_URL, backoff_seconds=0.01)


@pytest.fixture
async def make_backend(backend_config: BackendConfig):
    """用给定的处理函数构造基于 MockTransport 的 BackendClient。"""
    clients: list[BackendClient] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response], **overrides) -> BackendClient:
        config = backend_config.model_copy(update=overrides)
        client = BackendClient(config, transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
