"""Database integration for task threads, agent audit logs and info documents."""

from __future__ import annotations

import json
import logging
import ssl
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg
import certifi

logger = logging.getLogger(__name__)

_SCHEMA_STATEMENTS = (
    """
    create table if not exists task_threads (
        id text primary key,
        batch_id text not null,
        channel_id bigint not null,
        guild_id bigint,
        status text not null default 'active',
        created_at timestamptz not null default now(),
        completed_at timestamptz,
        context jsonb not null,
        result jsonb,
        error text
    );
    """,
    "create index if not exists idx_task_threads_channel on task_threads(channel_id);",
    "create index if not exists idx_task_threads_status on task_threads(status);",
    """
    create index if not exists idx_task_threads_guild_active
    on task_threads(guild_id) where status = 'active';
    """,
    """
    create table if not exists agent_logs (
        id bigserial primary key,
        task_thread_id text not null references task_threads(id) on delete cascade,
        log_type text not null,
        timestamp timestamptz not null default now(),
        channel_id bigint not null,
        guild_id bigint,
        user_id bigint,
        tool_name text,
        tool_parameters jsonb,
        tool_result jsonb,
        ai_model_used text,
        ai_tokens_used jsonb,
        execution_time_ms integer,
        success boolean,
        error_message text,
        metadata jsonb
    );
    """,
    "create index if not exists idx_agent_logs_task_thread on agent_logs(task_thread_id);",
    "create index if not exists idx_agent_logs_log_type on agent_logs(log_type);",
    "create index if not exists idx_agent_logs_timestamp on agent_logs(timestamp);",
    "create index if not exists idx_agent_logs_channel on agent_logs(channel_id);",
    "create index if not exists idx_agent_logs_guild on agent_logs(guild_id);",
    """
    create table if not exists info_documents (
        id text primary key,
        guild_id bigint not null,
        name text not null,
        description text not null,
        content text not null,
        created_by bigint not null,
        created_at timestamptz not null default now(),
        updated_at timestamptz not null default now(),
        constraint unique_info_document_name unique (guild_id, name)
    );
    """,
)


@dataclass
class AgentLogRecord:
    """One append-only audit row describing agent or tool activity."""

    task_thread_id: str
    log_type: str
    channel_id: int
    guild_id: Optional[int] = None
    user_id: Optional[int] = None
    tool_name: Optional[str] = None
    tool_parameters: Optional[Dict[str, Any]] = None
    tool_result: Optional[Dict[str, Any]] = None
    ai_model_used: Optional[str] = None
    ai_tokens_used: Optional[Dict[str, int]] = None
    execution_time_ms: Optional[int] = None
    success: Optional[bool] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None


def _dumps(value: Optional[Any]) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _loads(value: Optional[Any]) -> Optional[Any]:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


class Database:
    """Thin asyncpg wrapper that initialises tables and writes/reads persistent data."""

    def __init__(self, database_url: Optional[str]):
        self._url = database_url
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        if not self._url:
            logger.info("Database URL not configured; task threads will be kept in memory.")
            return

        try:
            ssl_context = None
            if "supabase.co" in self._url:
                ssl_context = ssl.create_default_context(cafile=certifi.where())
            self._pool = await asyncpg.create_pool(
                self._url, min_size=1, max_size=5, ssl=ssl_context
            )
            async with self._pool.acquire() as conn:
                for statement in _SCHEMA_STATEMENTS:
                    await conn.execute(statement)
        except Exception:
            logger.exception("Failed to initialise database connection; falling back to memory.")
            if self._pool:
                await self._pool.close()
            self._pool = None

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None

    # Task threads -----------------------------------------------------

    async def insert_task_thread(
        self,
        *,
        thread_id: str,
        batch_id: str,
        channel_id: int,
        guild_id: Optional[int],
        status: str,
        created_at: datetime,
        context: Dict[str, Any],
    ) -> None:
        if not self._pool:
            return
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                insert into task_threads (id, batch_id, channel_id, guild_id, status, created_at, context)
                values ($1, $2, $3, $4, $5, $6, $7::jsonb);
                """,
                thread_id,
                batch_id,
                channel_id,
                guild_id,
                status,
                created_at,
                _dumps(context),
            )

    async def finish_task_thread(
        self,
        thread_id: str,
        *,
        status: str,
        completed_at: datetime,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        expected_status: str = "active",
    ) -> bool:
        """Move a thread out of ``expected_status``. Returns False when no row matched."""
        if not self._pool:
            return False
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                update task_threads
                set status = $2, completed_at = $3, result = $4::jsonb, error = $5
                where id = $1 and status = $6
                returning id;
                """,
                thread_id,
                status,
                completed_at,
                _dumps(result),
                error,
                expected_status,
            )
        return row is not None

    async def fetch_task_thread(self, thread_id: str) -> Optional[Dict[str, Any]]:
        if not self._pool:
            return None
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("select * from task_threads where id = $1;", thread_id)
        return self._thread_row(row) if row else None

    async def fetch_task_threads(
        self,
        *,
        status: str,
        channel_id: Optional[int] = None,
        created_before: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        if not self._pool:
            return []
        clauses = ["status = $1"]
        params: List[Any] = [status]
        if channel_id is not None:
            params.append(channel_id)
            clauses.append(f"channel_id = ${len(params)}")
        if created_before is not None:
            params.append(created_before)
            clauses.append(f"created_at < ${len(params)}")
        query = f"""
            select *
            from task_threads
            where {' and '.join(clauses)}
            order by created_at asc;
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
        return [self._thread_row(row) for row in rows]

    async def count_task_threads(self, *, guild_id: Optional[int], status: str) -> int:
        if not self._pool:
            return 0
        async with self._pool.acquire() as conn:
            count = await conn.fetchval(
                """
                select count(*)
                from task_threads
                where guild_id is not distinct from $1 and status = $2;
                """,
                guild_id,
                status,
            )
        return int(count or 0)

    @staticmethod
    def _thread_row(row: asyncpg.Record) -> Dict[str, Any]:
        data = dict(row)
        data["context"] = _loads(data.get("context")) or {}
        data["result"] = _loads(data.get("result"))
        return data

    # Agent audit log --------------------------------------------------

    async def record_agent_log(self, record: AgentLogRecord) -> None:
        if not self._pool:
            return
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                insert into agent_logs (
                    task_thread_id,
                    log_type,
                    timestamp,
                    channel_id,
                    guild_id,
                    user_id,
                    tool_name,
                    tool_parameters,
                    tool_result,
                    ai_model_used,
                    ai_tokens_used,
                    execution_time_ms,
                    success,
                    error_message,
                    metadata
                )
                values ($1, $2, coalesce($3, now()), $4, $5, $6, $7, $8::jsonb, $9::jsonb,
                        $10, $11::jsonb, $12, $13, $14, $15::jsonb);
                """,
                record.task_thread_id,
                record.log_type,
                record.timestamp,
                record.channel_id,
                record.guild_id,
                record.user_id,
                record.tool_name,
                _dumps(record.tool_parameters),
                _dumps(record.tool_result),
                record.ai_model_used,
                _dumps(record.ai_tokens_used),
                record.execution_time_ms,
                record.success,
                record.error_message,
                _dumps(record.metadata),
            )

    # Info documents ---------------------------------------------------

    async def fetch_info_document(self, guild_id: int, name: str) -> Optional[Dict[str, Any]]:
        if not self._pool:
            return None
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                select name, description, content, created_by, created_at, updated_at
                from info_documents
                where guild_id = $1 and name = $2;
                """,
                guild_id,
                name,
            )
        return dict(row) if row else None

    async def list_info_documents(self, guild_id: int) -> List[Dict[str, Any]]:
        if not self._pool:
            return []
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                select name, description, created_by, created_at
                from info_documents
                where guild_id = $1
                order by created_at asc;
                """,
                guild_id,
            )
        return [dict(row) for row in rows]

