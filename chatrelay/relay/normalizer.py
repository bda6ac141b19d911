"""将两种后端响应统一为有序的出站片段序列。"""

from collections.abc import AsyncIterator

from loguru import logger

from chatrelay.backend.base import BackendResponse, SingleResponse, StreamResponse
from chatrelay.backend.protocol import StreamEventKind, parse_stream_line
from chatrelay.bus.events import OutboundFragment
from chatrelay.errors import MalformedStreamRecord

SENTENCE_DELIMITER = ". "


def split_sentences(text: str) -> list[str]:
    """
    在每个 ". " 之后切分文本，去除空白并丢弃空块。

    这是启发式切分，不是完整的句子边界检测。
    """
    chunks: list[str] = []
    start = 0
    while True:
        idx = text.find(SENTENCE_DELIMITER, start)
        if idx < 0:
            chunks.append(text[start:])
            break
        end = idx + len(SENTENCE_DELIMITER)
        chunks.append(text[start:end])
        start = end
    return [c.strip() for c in chunks if c.strip()]


async def normalize(response: BackendResponse, channel_id: str) -> AsyncIterator[OutboundFragment]:
    """
    将后端响应转换为片段。

    单次迭代、不可重启：流式响应在迭代过程中被消耗，
    迭代结束（包括提前退出）时关闭底层传输。

    参数:
        response: 后端响应。
        channel_id: 片段的目标通道。

    生成:
        按顺序排列的 OutboundFragment。
    """
    if isinstance(response, SingleResponse):
        for chunk in split_sentences(response.full_text):
            yield OutboundFragment(channel_id=channel_id, text=chunk)
        return

    if isinstance(response, StreamResponse):
        try:
            async for fragment in _normalize_stream(response, channel_id):
                yield fragment
        finally:
            await response.aclose()
        return

    raise TypeError(f"未知的响应类型：{type(response).__name__}")


async def _normalize_stream(response: StreamResponse, channel_id: str) -> AsyncIterator[OutboundFragment]:
    async for line in response:
        try:
            event = parse_stream_line(line)
        except MalformedStreamRecord as e:
            logger.warning(f"跳过{e}")
            continue

        if event is None:
            continue
        if event.kind is StreamEventKind.TERMINAL:
            logger.debug(f"流在记录 {event.sequence_id} 处结束（状态：{event.status}）")
            return
        if event.text:
            yield OutboundFragment(channel_id=channel_id, text=event.text)

    logger.debug("传输在没有终止记录的情况下关闭")
