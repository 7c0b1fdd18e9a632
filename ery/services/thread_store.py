"""Durable task-thread rows with an in-memory fallback when no database is configured."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..db import Database
from ..models.thread import TaskThread, ThreadStatus

logger = logging.getLogger(__name__)


def _thread_from_row(row: Dict[str, Any]) -> TaskThread:
    return TaskThread(
        id=row["id"],
        batch_id=row["batch_id"],
        channel_id=row["channel_id"],
        guild_id=row.get("guild_id"),
        status=ThreadStatus(row["status"]),
        context=row.get("context") or {},
        created_at=row["created_at"],
        completed_at=row.get("completed_at"),
        result=row.get("result"),
        error=row.get("error"),
    )


class ThreadStore:
    """The authoritative record of task threads.

    Terminal writes are conditional on the row still being ``active``, so a
    thread's outcome is written at most once.
    """

    def __init__(self, database: Optional[Database] = None):
        self._db = database
        self._rows: Dict[str, Dict[str, Any]] = {}

    @property
    def _uses_db(self) -> bool:
        return self._db is not None and self._db.is_connected

    @property
    def storage(self) -> str:
        return "database" if self._uses_db else "in-memory"

    async def insert(self, thread: TaskThread) -> None:
        if self._uses_db:
            await self._db.insert_task_thread(
                thread_id=thread.id,
                batch_id=thread.batch_id,
                channel_id=thread.channel_id,
                guild_id=thread.guild_id,
                status=thread.status.value,
                created_at=thread.created_at,
                context=thread.context,
            )
            return
        self._rows[thread.id] = {
            "id": thread.id,
            "batch_id": thread.batch_id,
            "channel_id": thread.channel_id,
            "guild_id": thread.guild_id,
            "status": thread.status.value,
            "created_at": thread.created_at,
            "completed_at": None,
            "context": copy.deepcopy(thread.context),
            "result": None,
            "error": None,
        }

    async def mark_finished(
        self,
        thread_id: str,
        status: ThreadStatus,
        *,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """Move an active thread to ``status``. Returns False if it was not active."""

        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        completed_at = completed_at or datetime.now(timezone.utc)

        if self._uses_db:
            return await self._db.finish_task_thread(
                thread_id,
                status=status.value,
                completed_at=completed_at,
                result=result,
                error=error,
                expected_status=ThreadStatus.ACTIVE.value,
            )

        row = self._rows.get(thread_id)
        if row is None or row["status"] != ThreadStatus.ACTIVE.value:
            return False
        row.update(
            status=status.value,
            completed_at=completed_at,
            result=copy.deepcopy(result),
            error=error,
        )
        return True

    async def get(self, thread_id: str) -> Optional[TaskThread]:
        if self._uses_db:
            row = await self._db.fetch_task_thread(thread_id)
        else:
            row = self._rows.get(thread_id)
        return _thread_from_row(row) if row else None

    async def fetch_active(self, channel_id: Optional[int] = None) -> List[TaskThread]:
        return await self._fetch_active(channel_id=channel_id)

    async def fetch_expired(self, cutoff: datetime) -> List[TaskThread]:
        """Active threads created before ``cutoff``."""
        return await self._fetch_active(created_before=cutoff)

    async def count_active(self, guild_id: Optional[int]) -> int:
        if self._uses_db:
            return await self._db.count_task_threads(
                guild_id=guild_id, status=ThreadStatus.ACTIVE.value
            )
        return sum(
            1
            for row in self._rows.values()
            if row["status"] == ThreadStatus.ACTIVE.value and row["guild_id"] == guild_id
        )

    async def _fetch_active(
        self,
        *,
        channel_id: Optional[int] = None,
        created_before: Optional[datetime] = None,
    ) -> List[TaskThread]:
        if self._uses_db:
            rows = await self._db.fetch_task_threads(
                status=ThreadStatus.ACTIVE.value,
                channel_id=channel_id,
                created_before=created_before,
            )
        else:
            rows = [
                row
                for row in self._rows.values()
                if row["status"] == ThreadStatus.ACTIVE.value
                and (channel_id is None or row["channel_id"] == channel_id)
                and (created_before is None or row["created_at"] < created_before)
            ]
            rows.sort(key=lambda row: row["created_at"])
        return [_thread_from_row(row) for row in rows]
