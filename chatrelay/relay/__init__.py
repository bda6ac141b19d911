"""中继核心：分发、任务执行与响应切分。"""

from chatrelay.relay.dispatcher import DispatchOutcome, EventDispatcher, extract_query
from chatrelay.relay.normalizer import normalize, split_sentences
from chatrelay.relay.task import Relay, RelayTask

__all__ = [
    "DispatchOutcome",
    "EventDispatcher",
    "Relay",
    "RelayTask",
    "extract_query",
    "normalize",
    "split_sentences",
]
