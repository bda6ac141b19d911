"""将片段打印到终端的 Sink，用于本地调试。"""

from rich.console import Console

from chatrelay import __logo__


class ConsoleSink:
    """使用 rich 打印每个出站片段。"""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    async def send(self, channel_id: str, text: str) -> None:
        self.console.print(f"{__logo__} [dim]{channel_id}[/dim] {text}")
