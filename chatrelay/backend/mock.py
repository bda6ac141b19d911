"""用于本地运行和测试的模拟后端，同时支持单文档和流式两种响应。"""

import asyncio
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from loguru import logger
from pydantic import ValidationError

from chatrelay.backend.protocol import (
    EVENT_STREAM_CONTENT_TYPE,
    BackendRequest,
    SingleDocument,
    StreamEvent,
    StreamEventKind,
    format_stream_event,
)
from chatrelay.tracing import get_tracer, log_with_trace

BACKEND_PATH = "/v1/chat/stream"


def mock_stream_events(query: str) -> list[StreamEvent]:
    """模拟后端对一个查询返回的流式记录。"""
    return [
        StreamEvent(sequence_id=1, kind=StreamEventKind.FRAGMENT, text=f"Processing: {query}"),
        StreamEvent(sequence_id=2, kind=StreamEventKind.FRAGMENT, text="Coroutines are lightweight tasks"),
        StreamEvent(sequence_id=3, kind=StreamEventKind.FRAGMENT, text="They enable concurrent execution"),
        StreamEvent(sequence_id=4, kind=StreamEventKind.TERMINAL, status="done"),
    ]


def mock_full_response(query: str) -> str:
    return f"Complete response to '{query}': Coroutines enable concurrency in Python"


def create_mock_app(stream_delay: float = 0.3) -> FastAPI:
    """
    创建模拟后端应用。

    参数:
        stream_delay: 流式记录之间的间隔（秒）。
    """
    app = FastAPI(title="chatrelay mock backend")
    tracer = get_tracer("chatrelay.mock_backend")

    @app.post(BACKEND_PATH)
    async def chat(request: Request) -> Response:
        with tracer.start_as_current_span("handle_request") as span:
            log_with_trace("后端收到请求")

            try:
                body = BackendRequest.model_validate_json(await request.body())
            except ValidationError as e:
                span.record_exception(e)
                return Response(status_code=400)

            span.set_attributes({
                "user.id": body.user_id,
                "channel.id": body.channel_id,
                "query": body.query,
            })

            if request.headers.get("accept") == EVENT_STREAM_CONTENT_TYPE:
                return StreamingResponse(
                    _stream(body.query, stream_delay),
                    media_type=EVENT_STREAM_CONTENT_TYPE,
                )

            document = SingleDocument(full_response=mock_full_response(body.query))
            return JSONResponse(document.model_dump(exclude_none=True))

    return app


async def _stream(query: str, delay: float) -> AsyncIterator[str]:
    for event in mock_stream_events(query):
        yield format_stream_event(event)
        if delay > 0:
            await asyncio.sleep(delay)


async def serve_mock_backend(host: str, port: int, stream_delay: float = 0.3) -> None:
    """使用 uvicorn 运行模拟后端，直到被取消。"""
    import uvicorn

    config = uvicorn.Config(
        create_mock_app(stream_delay),
        host=host,
        port=port,
        log_level="warning",
    )
    server = uvicorn.Server(config)
    logger.info(f"模拟后端运行于 http://{host}:{port}{BACKEND_PATH}")
    await server.serve()
