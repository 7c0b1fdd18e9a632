"""Uniform validation, timing and result shaping around tool invocations."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .base import Tool, ToolContext
from .registry import ToolRegistry

if TYPE_CHECKING:
    from ..services.agent_logger import AgentLogger

logger = logging.getLogger(__name__)


@dataclass
class ToolExecutionRequest:
    tool_name: str
    parameters: Dict[str, Any]
    context: ToolContext
    call_id: Optional[str] = None


@dataclass(frozen=True)
class ToolExecutionResult:
    """Outcome of one tool invocation, successful or not."""

    tool_name: str
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    message: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None
    execution_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    executed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    execution_time_ms: int = 0

    @classmethod
    def failure(
        cls,
        tool_name: str,
        error: str,
        *,
        parameters: Optional[Dict[str, Any]] = None,
        call_id: Optional[str] = None,
        execution_time_ms: int = 0,
    ) -> "ToolExecutionResult":
        return cls(
            tool_name=tool_name,
            success=False,
            error=error,
            parameters=parameters or {},
            call_id=call_id,
            execution_time_ms=execution_time_ms,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "tool_name": self.tool_name,
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "message": self.message,
            "executed_at": self.executed_at.isoformat(),
            "execution_time_ms": self.execution_time_ms,
        }


class ToolExecutor:
    """Runs tools from a :class:`ToolRegistry` and records every outcome."""

    def __init__(self, registry: ToolRegistry, agent_logger: Optional["AgentLogger"] = None):
        self._registry = registry
        self._agent_logger = agent_logger

    async def execute(self, request: ToolExecutionRequest) -> ToolExecutionResult:
        result = await self._run(request)
        if result.success:
            logger.info(
                "Tool %s succeeded in %dms (thread %s)",
                result.tool_name,
                result.execution_time_ms,
                request.context.thread_id,
            )
        else:
            logger.info(
                "Tool %s failed in thread %s: %s",
                result.tool_name,
                request.context.thread_id,
                result.error,
            )
        await self.record(request, result)
        return result

    async def _run(self, request: ToolExecutionRequest) -> ToolExecutionResult:
        name = request.tool_name
        tool = self._registry.get(name)
        if tool is None:
            return ToolExecutionResult.failure(
                name,
                f"Unknown tool: {name}",
                parameters=request.parameters,
                call_id=request.call_id,
            )

        context_error = tool.validate_context(request.context)
        if context_error:
            return ToolExecutionResult.failure(
                name, context_error, parameters=request.parameters, call_id=request.call_id
            )

        parameter_error, params = tool.validate_parameters(request.parameters)
        if parameter_error:
            return ToolExecutionResult.failure(
                name, parameter_error, parameters=request.parameters, call_id=request.call_id
            )

        started = time.perf_counter()
        try:
            outcome = await tool.execute(request.context, params)
        except Exception as exc:
            elapsed = int((time.perf_counter() - started) * 1000)
            logger.exception("Tool %s raised during execution", name)
            return ToolExecutionResult.failure(
                name,
                str(exc) or exc.__class__.__name__,
                parameters=params,
                call_id=request.call_id,
                execution_time_ms=elapsed,
            )
        elapsed = int((time.perf_counter() - started) * 1000)

        return ToolExecutionResult(
            tool_name=name,
            success=outcome.success,
            data=outcome.data,
            error=outcome.error,
            message=outcome.message,
            parameters=params,
            call_id=request.call_id,
            execution_time_ms=elapsed,
        )

    async def record(self, request: ToolExecutionRequest, result: ToolExecutionResult) -> None:
        if self._agent_logger is None:
            return
        context = request.context
        await self._agent_logger.log_tool_execution(
            context.thread_id,
            channel_id=context.channel_id,
            guild_id=context.guild_id,
            tool_name=result.tool_name,
            parameters=result.parameters,
            result=result.to_dict(),
            success=result.success,
            execution_time_ms=result.execution_time_ms,
            error_message=result.error,
        )

    def available_tools(self, context: ToolContext) -> List[Tool]:
        """Tools whose context checks pass for ``context``."""
        return [tool for tool in self._registry.list() if tool.validate_context(context) is None]

    def available_function_schemas(self, context: ToolContext) -> List[Dict[str, Any]]:
        return [tool.function_schema() for tool in self.available_tools(context)]
