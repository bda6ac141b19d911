"""chatrelay 的 CLI 命令。"""

import asyncio
import signal
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from chatrelay import __logo__, __version__

app = typer.Typer(
    name="chatrelay",
    help=f"{__logo__} chatrelay - 聊天事件中继机器人",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} chatrelay v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """chatrelay - 聊天事件中继机器人。"""
    pass


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """初始化 chatrelay 配置。"""
    from chatrelay.config.loader import get_config_path, save_config
    from chatrelay.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]配置已存在于 {config_path}[/yellow]")
        if not typer.confirm("覆盖？"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] 已在 {config_path} 创建配置")

    console.print(f"\n{__logo__} chatrelay 已就绪！")
    console.print("\n后续步骤：")
    console.print("  1. 将 Slack 令牌添加到 [cyan]~/.chatrelay/config.json[/cyan] 的 slack 部分")
    console.print("  2. 设置 backend.url，或使用 [cyan]chatrelay gateway --mock-backend[/cyan]")
    console.print("  3. 试一试：[cyan]chatrelay ask \"你好\"[/cyan]")


# ============================================================================
# Gateway
# ============================================================================


@app.command()
def gateway(
    mock_backend: bool = typer.Option(False, "--mock-backend", help="在进程内启动模拟后端"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="详细输出"),
):
    """启动 chatrelay 网关（Slack Socket Mode）。"""
    from chatrelay.backend.client import BackendClient
    from chatrelay.backend.mock import serve_mock_backend
    from chatrelay.channels.slack import SlackChannel
    from chatrelay.config.loader import load_config
    from chatrelay.pool.pool import TaskPool
    from chatrelay.relay.dispatcher import EventDispatcher
    from chatrelay.relay.task import Relay
    from chatrelay.tracing import setup_tracing, shutdown_tracing

    _configure_logging(verbose)
    config = load_config()

    if not config.slack.enabled:
        console.print("[red]错误：Slack 通道未启用。[/red]")
        console.print("在 ~/.chatrelay/config.json 中设置 slack.enabled、botToken 和 appToken")
        raise typer.Exit(1)

    console.print(f"{__logo__} 正在启动 chatrelay 网关...")
    setup_tracing(config.tracing)

    async def run():
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, cancel.set)

        pool = TaskPool(workers=config.pool.workers)
        pool.start()
        backend = BackendClient(config.backend)
        channel = SlackChannel(config.slack)
        relay = Relay(backend, channel, config=config.relay, cancel=cancel)
        dispatcher = EventDispatcher(pool, relay)
        channel.handler = dispatcher.dispatch

        background: list[asyncio.Task] = []
        if mock_backend:
            mb = config.mock_backend
            background.append(asyncio.create_task(serve_mock_backend(mb.host, mb.port, mb.stream_delay)))
        background.append(asyncio.create_task(channel.start()))

        console.print(f"[green]✓[/green] 任务池：{config.pool.workers} 个工作者")
        console.print(f"[green]✓[/green] 后端：{config.backend.url}")

        await cancel.wait()
        console.print("\n正在关闭...")

        await _shutdown_gateway(channel, pool, backend, background)

    try:
        asyncio.run(run())
    finally:
        shutdown_tracing()


async def _shutdown_gateway(channel, pool, backend, background: list[asyncio.Task]) -> None:
    """按顺序关闭网关：先停止接收事件，等任务池排空后再关闭出站客户端。"""
    await channel.stop_listening()
    await pool.shutdown()
    await channel.stop()
    for task in background:
        task.cancel()
    await asyncio.gather(*background, return_exceptions=True)
    await backend.aclose()


# ============================================================================
# Ask
# ============================================================================


@app.command()
def ask(
    text: str = typer.Argument(..., help="要发送给后端的查询"),
    user: str = typer.Option("cli-user", "--user", "-u", help="用户 ID"),
    channel: str = typer.Option("cli", "--channel", "-c", help="通道 ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="详细输出"),
):
    """通过完整的中继流程发送一个查询，并将回复打印到终端。"""
    from chatrelay.backend.client import BackendClient
    from chatrelay.bus.events import InboundEvent, OriginKind
    from chatrelay.channels.console import ConsoleSink
    from chatrelay.config.loader import load_config
    from chatrelay.pool.pool import TaskPool
    from chatrelay.relay.dispatcher import DispatchOutcome, EventDispatcher
    from chatrelay.relay.task import Relay

    _configure_logging(verbose)
    config = load_config()

    async def run_once() -> DispatchOutcome:
        pool = TaskPool(workers=1)
        backend = BackendClient(config.backend)
        relay = Relay(backend, ConsoleSink(console), config=config.relay)
        dispatcher = EventDispatcher(pool, relay)
        try:
            outcome = await dispatcher.dispatch(InboundEvent(
                user_id=user,
                channel_id=channel,
                text=text,
                origin_kind=OriginKind.DIRECT_MESSAGE,
                channel_type="im",
            ))
            await pool.shutdown()
        finally:
            await backend.aclose()
        return outcome

    if asyncio.run(run_once()) is DispatchOutcome.DROPPED:
        console.print("[yellow]查询为空，已丢弃[/yellow]")
        raise typer.Exit(1)


# ============================================================================
# Mock Backend
# ============================================================================


@app.command("mock-backend")
def mock_backend_cmd(
    host: str = typer.Option(None, "--host", help="监听地址"),
    port: int = typer.Option(None, "--port", "-p", help="监听端口"),
):
    """运行模拟后端。"""
    from chatrelay.backend.mock import serve_mock_backend
    from chatrelay.config.loader import load_config

    mb = load_config().mock_backend
    host = host or mb.host
    port = port or mb.port
    console.print(f"{__logo__} 模拟后端运行于 http://{host}:{port}")
    try:
        asyncio.run(serve_mock_backend(host, port, mb.stream_delay))
    except KeyboardInterrupt:
        console.print("\n再见！")


# ============================================================================
# Status Commands
# ============================================================================


@app.command()
def status():
    """显示 chatrelay 状态。"""
    from chatrelay.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} chatrelay 状态\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")

    table = Table(title="Relay")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")
    table.add_row("Backend", config.backend.url)
    table.add_row("Attempts", str(config.backend.max_attempts))
    table.add_row("Workers", str(config.pool.workers))
    table.add_row("Pacing", f"{config.relay.pacing_delay}s")
    table.add_row("Slack", "✓" if config.slack.enabled else "✗")
    table.add_row("Bot token", "[green]✓[/green]" if config.slack.bot_token else "[dim]not set[/dim]")
    table.add_row("App token", "[green]✓[/green]" if config.slack.app_token else "[dim]not set[/dim]")
    table.add_row("Tracing", "✓" if config.tracing.enabled else "✗")
    console.print(table)


if __name__ == "__main__":
    app()
