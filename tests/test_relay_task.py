import asyncio

import httpx

from chatrelay.bus.events import Query
from chatrelay.config.schema import RelayConfig
from chatrelay.relay.task import Relay, RelayTask

from conftest import BrokenStream, FlakySink, sse_body

QUERY = Query(user_id="U1", channel_id="C1", text="foo")


def stream_handler(*chunks: str):
    records = [
        f'{{"id": {i}, "event": "message_part", "text_chunk": "{c}"}}' for i, c in enumerate(chunks, 1)
    ]
    records.append(f'{{"id": {len(chunks) + 1}, "event": "stream_end", "status": "done"}}')
    body = sse_body(*records)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})
    return handler


def down(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


# 测试 JSON 响应按句子发送的情况
async def test_json_response_sends_each_sentence(make_backend, sink, relay_config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"full_response": "Sentence one. Sentence two."})

    relay = Relay(make_backend(handler), sink, config=relay_config)
    sent = await relay.process(QUERY)

    assert sent == 2
    assert sink.sent == [("C1", "Sentence one."), ("C1", "Sentence two.")]


# 测试流式响应按顺序发送片段的情况
async def test_stream_response_sends_parts_in_order(make_backend, sink, relay_config) -> None:
    relay = Relay(make_backend(stream_handler("part1", "part2", "part3")), sink, config=relay_config)
    await RelayTask(query=QUERY, relay=relay).run()
    assert sink.texts == ["part1", "part2", "part3"]


# 测试后端不可达时只发送一条回退消息的情况
async def test_unreachable_backend_sends_one_fallback(make_backend, sink, relay_config) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return down(request)

    relay = Relay(make_backend(handler), sink, config=relay_config)
    await relay.process(QUERY)

    assert calls["n"] == 3
    assert sink.sent == [("C1", "Service unavailable, please try later")]


# 测试读取响应体时连接中断只发送一条回退消息的情况
async def test_body_read_error_sends_one_fallback(make_backend, sink, relay_config) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200, headers={"content-type": "application/json"}, stream=BrokenStream())

    relay = Relay(make_backend(handler), sink, config=relay_config)
    assert await relay.process(QUERY) == 1

    assert calls["n"] == 3
    assert sink.sent == [("C1", "Service unavailable, please try later")]

# 测试后端拒绝请求时发送一条错误消息的情况
async def test_rejected_request_sends_one_message(make_backend, sink) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(500)

    config = RelayConfig(pacing_delay=0, rejected_message="rejected")
    relay = Relay(make_backend(handler), sink, config=config)
    await relay.process(QUERY)

    assert calls["n"] == 1
    assert sink.texts == ["rejected"]


# 测试取消后不发送任何消息的情况
async def test_cancelled_call_sends_nothing(make_backend, sink, relay_config) -> None:
    cancel = asyncio.Event()
    cancel.set()
    relay = Relay(make_backend(stream_handler("x")), sink, config=relay_config, cancel=cancel)
    assert await relay.process(QUERY) == 0
    assert sink.sent == []


# 测试发送失败时继续发送后续片段的情况
async def test_sink_failure_does_not_stop_task(make_backend, relay_config) -> None:
    sink = FlakySink(failures=1)
    relay = Relay(make_backend(stream_handler("lost", "kept")), sink, config=relay_config)
    sent = await relay.process(QUERY)

    assert sink.attempts == 2
    assert sink.texts == ["kept"]
    assert sent == 1


# 测试每条消息之后的节奏间隔的情况
async def test_pacing_delay_between_fragments(make_backend, sink) -> None:
    relay = Relay(make_backend(stream_handler("a", "b")), sink, config=RelayConfig(pacing_delay=0.05))
    loop = asyncio.get_running_loop()
    started = loop.time()
    await relay.process(QUERY)
    assert loop.time() - started >= 0.1
    assert sink.texts == ["a", "b"]


# 测试在发送片段期间触发取消仍然发送完毕的情况
async def test_cancel_after_response_drains_fragments(make_backend, sink) -> None:
    cancel = asyncio.Event()

    class CancellingSink:
        async def send(self, channel_id: str, text: str) -> None:
            cancel.set()
            await sink.send(channel_id, text)

    relay = Relay(
        make_backend(stream_handler("a", "b", "c")),
        CancellingSink(),
        config=RelayConfig(pacing_delay=0.01),
        cancel=cancel,
    )
    await relay.process(QUERY)
    assert sink.texts == ["a", "b", "c"]
