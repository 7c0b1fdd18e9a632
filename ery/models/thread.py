"""Task thread records."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .batch import MessageBatch


class ThreadStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ThreadStatus.ACTIVE


@dataclass
class TaskThread:
    """One batch's processing lifecycle. The store row is the durable copy."""

    channel_id: int
    guild_id: Optional[int]
    batch_id: str
    context: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: ThreadStatus = ThreadStatus.ACTIVE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    # Only present for threads spawned by this process.
    batch: Optional[MessageBatch] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_batch(cls, batch: MessageBatch) -> "TaskThread":
        return cls(
            channel_id=batch.channel_id,
            guild_id=batch.guild_id,
            batch_id=batch.id,
            context=batch.to_payload(),
            batch=batch,
        )

    @property
    def is_active(self) -> bool:
        return self.status is ThreadStatus.ACTIVE
