"""后端响应类型。"""

from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass


@dataclass
class SingleResponse:
    """一次性返回的完整文本。"""

    full_text: str


class StreamResponse:
    """
    按行读取的流式响应。

    只能迭代一次：迭代会消耗底层传输。迭代结束后调用 aclose()
    释放连接。
    """

    def __init__(
        self,
        lines: AsyncIterator[str],
        close: Callable[[], Awaitable[None]] | None = None,
    ):
        self._lines = lines
        self._close = close
        self._consumed = False
        self._closed = False

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "StreamResponse":
        """从内存中的行构建流式响应。"""

        async def _gen() -> AsyncIterator[str]:
            for line in lines:
                yield line

        return cls(_gen())

    def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            raise RuntimeError("流式响应只能迭代一次")
        self._consumed = True
        return self._lines

    async def aclose(self) -> None:
        """关闭底层传输。可以重复调用。"""
        if self._closed:
            return
        self._closed = True
        if self._close:
            await self._close()

    @property
    def closed(self) -> bool:
        return self._closed


BackendResponse = SingleResponse | StreamResponse
