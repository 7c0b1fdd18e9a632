"""Lightweight HTTP health endpoint for deployment platforms."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional

from .db import Database
from .services.agent import Agent
from .services.message_manager import MessageManager
from .tools.registry import ToolRegistry


def build_health_payload(
    manager: MessageManager,
    agent: Agent,
    database: Optional[Database],
    registry: ToolRegistry,
) -> Dict[str, Any]:
    stats = manager.get_stats()
    return {
        "status": "ok",
        "llm_configured": agent.is_ready(),
        "database_connected": database.is_connected if database else False,
        "queues": stats["queues"],
        "active_threads": stats["cached_active_threads"],
        "spawned_threads": stats["spawned_threads"],
        "dropped_batches": stats["dropped_batches"],
        "tools": registry.names(),
    }


async def _handle_client(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    manager: MessageManager,
    agent: Agent,
    database: Optional[Database],
    registry: ToolRegistry,
) -> None:
    try:
        data = await reader.readuntil(b"\r\n\r\n")
    except (asyncio.IncompleteReadError, asyncio.LimitOverrunError):
        writer.close()
        await writer.wait_closed()
        return

    request_line = data.decode(errors="ignore").split("\r\n", 1)[0]
    method, path, *_ = request_line.split(" ") + ["", ""]
    if method.upper() != "GET" or path not in {"/", "/health", "/healthz"}:
        response = "HTTP/1.1 404 Not Found\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"
        writer.write(response.encode())
        await writer.drain()
        writer.close()
        await writer.wait_closed()
        return

    payload = build_health_payload(manager, agent, database, registry)
    body = json.dumps(payload).encode()
    response = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    ).encode() + body
    writer.write(response)
    await writer.drain()
    writer.close()
    await writer.wait_closed()


async def start_health_server(
    host: str,
    port: int,
    manager: MessageManager,
    agent: Agent,
    database: Optional[Database],
    registry: ToolRegistry,
) -> asyncio.AbstractServer:
    server = await asyncio.start_server(
        lambda r, w: _handle_client(r, w, manager, agent, database, registry),
        host,
        port,
    )
    return server
