"""
OpenTelemetry 追踪设置与带追踪上下文的日志。

span 导出到控制台（ConsoleSpanExporter + BatchSpanProcessor）。
未调用 setup_tracing 时，trace.get_tracer 返回空操作 tracer，
各组件无需特殊处理。
"""

from loguru import logger
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from chatrelay.config.schema import TracingConfig

_tracer_provider: TracerProvider | None = None


def setup_tracing(config: TracingConfig) -> TracerProvider | None:
    """
    安装全局 TracerProvider。

    参数:
        config: 追踪配置。

    返回:
        已安装的 TracerProvider；追踪被禁用时返回 None。
    """
    global _tracer_provider

    if not config.enabled:
        logger.info("追踪已禁用")
        return None

    resource = Resource.create({
        "service.name": config.service_name,
        "service.version": config.service_version,
        "deployment.environment": config.environment,
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    _tracer_provider = provider

    logger.info(f"追踪已启用（服务 {config.service_name}）")
    return provider


def shutdown_tracing() -> None:
    """刷新并关闭 TracerProvider。"""
    global _tracer_provider

    if _tracer_provider is None:
        return
    try:
        _tracer_provider.shutdown()
    except Exception as e:
        logger.error(f"关闭追踪时出错：{e}")
    _tracer_provider = None


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def log_with_trace(message: str, level: str = "INFO") -> None:
    """记录日志，并在存在活动 span 时附带 trace_id 和 span_id。"""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        message = f"[trace_id={ctx.trace_id:032x} span_id={ctx.span_id:016x}] {message}"
    logger.opt(depth=1).log(level, message)
