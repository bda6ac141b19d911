"""中继管道的异常类型。"""


class RelayError(Exception):
    """所有 chatrelay 错误的基类。"""


class InvalidEvent(RelayError):
    """入站事件无法提取出有效查询，将被丢弃。"""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"无效事件：{reason}")


class BackendError(RelayError):
    """后端调用失败的基类。"""


class BackendUnreachable(BackendError):
    """所有尝试都未能建立到后端的连接。"""

    def __init__(self, attempts: int, last_error: Exception | None = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"经过 {attempts} 次尝试后仍无法连接后端：{last_error}")


class BackendRejected(BackendError):
    """后端返回了非 2xx 状态码。不会重试。"""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"后端拒绝了请求（HTTP {status_code}）")


class BackendCancelled(BackendError):
    """共享的取消事件在后端调用期间被触发。"""

    def __init__(self) -> None:
        super().__init__("后端调用已取消")


class MalformedStreamRecord(RelayError):
    """流式响应中无法解码的数据记录。"""

    def __init__(self, line: str, reason: str = ""):
        self.line = line
        self.reason = reason
        super().__init__(f"格式错误的流记录：{line[:100]}（{reason}）")


class SinkSendFailure(RelayError):
    """向通道发送消息失败。"""

    def __init__(self, channel_id: str, reason: str):
        self.channel_id = channel_id
        self.reason = reason
        super().__init__(f"发送到 {channel_id} 失败：{reason}")


class PoolClosed(RelayError):
    """在任务池开始关闭后提交任务。"""

    def __init__(self) -> None:
        super().__init__("任务池已关闭，不再接受新任务")
