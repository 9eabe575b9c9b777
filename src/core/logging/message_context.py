"""Queue message context variables for structured logging."""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

_message_topic: ContextVar[str] = ContextVar("message_topic", default="")
_message_partition: ContextVar[int] = ContextVar("message_partition", default=-1)
_message_offset: ContextVar[int] = ContextVar("message_offset", default=-1)
_message_key: ContextVar[str] = ContextVar("message_key", default="")

_VARS = {
    "topic": _message_topic,
    "partition": _message_partition,
    "offset": _message_offset,
    "key": _message_key,
}


def get_message_context() -> Dict[str, Any]:
    """
    Get current queue message logging context.

    Offsets and partitions are only reported once set; the key is omitted
    when empty.
    """
    context: Dict[str, Any] = {}
    topic = _message_topic.get()
    if topic:
        context["message_topic"] = topic
    if _message_partition.get() >= 0:
        context["message_partition"] = _message_partition.get()
    if _message_offset.get() >= 0:
        context["message_offset"] = _message_offset.get()
    key = _message_key.get()
    if key:
        context["message_key"] = key
    return context


class MessageLogContext:
    """
    Context manager that tags every log record with the message being handled.

    Usage:
        with MessageLogContext(topic="content.changes", partition=0, offset=12):
            await consumer.apply(message)

    Values are reset with contextvar tokens on exit, so nested contexts and
    concurrent tasks do not leak into each other.
    """

    def __init__(
        self,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
        key: Optional[str] = None,
    ):
        self._values = {
            "topic": topic,
            "partition": partition,
            "offset": offset,
            "key": key,
        }
        self._tokens: list[tuple[ContextVar, Token]] = []

    def __enter__(self) -> "MessageLogContext":
        for name, value in self._values.items():
            if value is not None:
                var = _VARS[name]
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
        return False
