"""Append-only audit trail of agent and tool activity."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from ..db import AgentLogRecord, Database

logger = logging.getLogger(__name__)

AGENT_START = "agent_start"
TOOL_EXECUTION = "tool_execution"
AI_RESPONSE = "ai_response"
AGENT_COMPLETE = "agent_complete"
ERROR = "error"


class AgentLogger:
    """Writes audit rows to the database when connected and keeps a recent in-memory window."""

    def __init__(self, database: Optional[Database] = None, *, max_recent: int = 500):
        self._db = database
        self._recent: Deque[AgentLogRecord] = deque(maxlen=max_recent)

    @property
    def _uses_db(self) -> bool:
        return self._db is not None and self._db.is_connected

    async def log(self, record: AgentLogRecord) -> None:
        if record.timestamp is None:
            record.timestamp = datetime.now(timezone.utc)
        self._recent.append(record)
        if not self._uses_db:
            return
        try:
            await self._db.record_agent_log(record)
        except Exception:
            logger.exception(
                "Failed to persist %s log for thread %s", record.log_type, record.task_thread_id
            )

    def recent(self, thread_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            asdict(record)
            for record in self._recent
            if thread_id is None or record.task_thread_id == thread_id
        ]

    async def log_agent_start(
        self,
        thread_id: str,
        *,
        channel_id: int,
        guild_id: Optional[int],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.log(
            AgentLogRecord(
                task_thread_id=thread_id,
                log_type=AGENT_START,
                channel_id=channel_id,
                guild_id=guild_id,
                metadata=metadata,
            )
        )

    async def log_tool_execution(
        self,
        thread_id: str,
        *,
        channel_id: int,
        guild_id: Optional[int],
        tool_name: str,
        parameters: Dict[str, Any],
        result: Dict[str, Any],
        success: bool,
        execution_time_ms: int,
        error_message: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> None:
        await self.log(
            AgentLogRecord(
                task_thread_id=thread_id,
                log_type=TOOL_EXECUTION,
                channel_id=channel_id,
                guild_id=guild_id,
                user_id=user_id,
                tool_name=tool_name,
                tool_parameters=parameters,
                tool_result=result,
                execution_time_ms=execution_time_ms,
                success=success,
                error_message=error_message,
            )
        )

    async def log_ai_response(
        self,
        thread_id: str,
        *,
        channel_id: int,
        guild_id: Optional[int],
        model: str,
        usage: Dict[str, int],
        execution_time_ms: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.log(
            AgentLogRecord(
                task_thread_id=thread_id,
                log_type=AI_RESPONSE,
                channel_id=channel_id,
                guild_id=guild_id,
                ai_model_used=model,
                ai_tokens_used=usage,
                execution_time_ms=execution_time_ms,
                success=True,
                metadata=metadata,
            )
        )

    async def log_agent_complete(
        self,
        thread_id: str,
        *,
        channel_id: int,
        guild_id: Optional[int],
        success: bool,
        execution_time_ms: int,
        usage: Optional[Dict[str, int]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.log(
            AgentLogRecord(
                task_thread_id=thread_id,
                log_type=AGENT_COMPLETE,
                channel_id=channel_id,
                guild_id=guild_id,
                ai_tokens_used=usage,
                execution_time_ms=execution_time_ms,
                success=success,
                metadata=metadata,
            )
        )

    async def log_error(
        self,
        thread_id: str,
        *,
        channel_id: int,
        guild_id: Optional[int],
        error_message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.log(
            AgentLogRecord(
                task_thread_id=thread_id,
                log_type=ERROR,
                channel_id=channel_id,
                guild_id=guild_id,
                success=False,
                error_message=error_message,
                metadata=metadata,
            )
        )
