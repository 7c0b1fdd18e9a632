"""Data records shared across Ery services."""

from .batch import MessageBatch, MessageQueue, TriggerType
from .config import BotSettings, load_settings
from .thread import TaskThread, ThreadStatus

__all__ = [
    "BotSettings",
    "MessageBatch",
    "MessageQueue",
    "TaskThread",
    "ThreadStatus",
    "TriggerType",
    "load_settings",
]
