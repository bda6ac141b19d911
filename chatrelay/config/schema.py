"""使用 Pydantic 的配置模式。"""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class BackendConfig(BaseModel):
    """后端服务配置。"""
    url: str = "http://localhost:8080/v1/chat/stream"
    timeout: float = 30.0  # 单次请求超时（秒）
    max_attempts: int = 3  # 连接失败时的总尝试次数
    backoff_seconds: float = 1.0  # 第 n 次失败后等待 n * backoff_seconds


class PoolConfig(BaseModel):
    """任务池配置。"""
    workers: int = 100  # 队列容量为 workers * 2


class RelayConfig(BaseModel):
    """中继行为配置。"""
    pacing_delay: float = 0.5  # 每条出站消息之后的最小间隔（秒）
    unavailable_message: str = "Service unavailable, please try later"
    rejected_message: str = "Sorry, the backend could not process your request"


class SlackConfig(BaseModel):
    """使用 Socket Mode 的 Slack 通道配置。"""
    enabled: bool = False
    bot_token: str = ""  # xoxb- 开头的机器人令牌
    app_token: str = ""  # xapp- 开头的应用级令牌，用于 Socket Mode
    allow_from: list[str] = Field(default_factory=list)  # 允许的用户 ID


class TracingConfig(BaseModel):
    """OpenTelemetry 追踪配置。"""
    enabled: bool = True
    service_name: str = "chatrelay-bot"
    service_version: str = "1.0.0"
    environment: str = "production"


class MockBackendConfig(BaseModel):
    """模拟后端配置。"""
    host: str = "127.0.0.1"
    port: int = 8080
    stream_delay: float = 0.3  # 流式记录之间的间隔（秒）


class Config(BaseSettings):
    """chatrelay 的根配置。"""
    backend: BackendConfig = Field(default_factory=BackendConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    slack: SlackConfig = Field(default_factory=SlackConfig)
    tracing: TracingConfig = Field(default_factory=TracingConfig)
    mock_backend: MockBackendConfig = Field(default_factory=MockBackendConfig)

    class Config:
        env_prefix = "CHATRELAY_"
        env_nested_delimiter = "__"
