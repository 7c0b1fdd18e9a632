"""Bounded tool-use conversation between the language model and the tool executor."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..db import Database
from ..models.config import BotSettings
from ..models.thread import TaskThread
from ..tools.base import ToolContext
from ..tools.executor import ToolExecutionRequest, ToolExecutionResult, ToolExecutor
from ..utils.prompts import build_conversation, build_system_prompt
from .agent_logger import AgentLogger
from .llm import LLMClient, LLMError, LLMResponse, LLMUnavailable, ToolCall, TokenUsage

logger = logging.getLogger(__name__)

NOT_CONFIGURED_ERROR = "AI provider not configured"


@dataclass
class AgentResult:
    success: bool
    batch_id: Optional[str] = None
    message_count: int = 0
    tool_executions: List[ToolExecutionResult] = field(default_factory=list)
    iterations: int = 0
    conversation_length: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    termination: Optional[str] = None
    processing_time_ms: int = 0
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """The ``result`` stored on a completed task thread."""
        succeeded = sum(1 for execution in self.tool_executions if execution.success)
        return {
            "summary": (
                f"Processed {self.message_count} messages in {self.iterations} iteration(s); "
                f"{succeeded}/{len(self.tool_executions)} tool executions succeeded"
            ),
            "actions": [
                {
                    "execution_id": execution.execution_id,
                    "tool_name": execution.tool_name,
                    "success": execution.success,
                    "message": execution.message,
                    "error": execution.error,
                    "execution_time_ms": execution.execution_time_ms,
                }
                for execution in self.tool_executions
            ],
            "usage": self.usage.to_dict(),
            "iterations": self.iterations,
            "termination": self.termination,
            "conversation_length": self.conversation_length,
            "processing_time_ms": self.processing_time_ms,
            "batch_id": self.batch_id,
            "message_count": self.message_count,
        }


def _tool_turn_content(result: ToolExecutionResult) -> str:
    payload = {"success": result.success}
    if result.message:
        payload["message"] = result.message
    if result.data is not None:
        payload["data"] = result.data
    if result.error:
        payload["error"] = result.error
    return json.dumps(payload, default=str)


class Agent:
    """Drives one task thread's conversation until the model stops calling tools."""

    def __init__(
        self,
        llm: LLMClient,
        executor: ToolExecutor,
        settings: BotSettings,
        client: Any,
        *,
        agent_logger: Optional[AgentLogger] = None,
        database: Optional[Database] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._llm = llm
        self._executor = executor
        self._settings = settings
        self._client = client
        self._agent_logger = agent_logger or AgentLogger()
        self._database = database
        self._clock = clock

    def is_ready(self) -> bool:
        return self._llm.is_configured()

    @property
    def bot_user_id(self) -> Optional[int]:
        user = getattr(self._client, "user", None)
        return user.id if user is not None else None

    async def process_task_thread(self, thread: TaskThread) -> AgentResult:
        """Run the agent loop for ``thread``.

        Returns a failed result without calling the model when the provider is
        not configured or the batch cannot be used. Raises :class:`LLMError`
        when both the primary and fallback model fail.
        """

        started = self._clock()
        batch = thread.batch
        result = AgentResult(
            success=False,
            batch_id=thread.batch_id,
            message_count=len(batch.messages) if batch is not None else 0,
        )
        log_scope = {"channel_id": thread.channel_id, "guild_id": thread.guild_id}

        await self._agent_logger.log_agent_start(
            thread.id,
            **log_scope,
            metadata={
                "batch_id": thread.batch_id,
                "message_count": result.message_count,
                "trigger_type": thread.context.get("trigger_type"),
            },
        )

        error = self._precondition_error(thread)
        if error:
            logger.warning("Task thread %s cannot be processed: %s", thread.id, error)
            result.error = error
            result.termination = "error"
            result.processing_time_ms = self._elapsed_ms(started)
            await self._agent_logger.log_error(thread.id, **log_scope, error_message=error)
            return result

        channel = batch.channel
        guild = batch.guild
        context = ToolContext(
            channel=channel,
            guild=guild,
            bot_member=guild.me if guild is not None else None,
            thread_id=thread.id,
            batch=batch,
            database=self._database,
        )

        system_prompt = build_system_prompt(self._settings, batch)
        conversation = build_conversation(batch, system_prompt, self.bot_user_id, self._settings)
        tools = self._executor.available_function_schemas(context)
        max_iterations = self._settings.agent_max_iterations
        max_ms = self._settings.agent_max_processing_ms

        logger.info(
            "Agent processing thread %s: %d messages, %d tools available",
            thread.id,
            result.message_count,
            len(tools),
        )

        while True:
            if result.iterations >= max_iterations:
                result.termination = "max_iterations"
                logger.info("Thread %s reached the iteration cap (%d)", thread.id, max_iterations)
                break
            if self._elapsed_ms(started) >= max_ms:
                result.termination = "timeout"
                logger.info("Thread %s reached the processing time cap (%dms)", thread.id, max_ms)
                break

            result.iterations += 1
            call_started = self._clock()
            try:
                response = await self._llm.complete(conversation, tools or None)
            except (LLMError, LLMUnavailable) as exc:
                await self._agent_logger.log_error(
                    thread.id,
                    **log_scope,
                    error_message=str(exc),
                    metadata={"iteration": result.iterations},
                )
                raise

            result.usage.add(response.usage)
            await self._agent_logger.log_ai_response(
                thread.id,
                **log_scope,
                model=response.model,
                usage=response.usage.to_dict(),
                execution_time_ms=self._elapsed_ms(call_started),
                metadata={
                    "iteration": result.iterations,
                    "finish_reason": response.finish_reason,
                    "tool_calls": len(response.tool_calls),
                    "used_fallback": response.used_fallback,
                },
            )

            if response.content:
                logger.debug("Discarding free-text model output for thread %s", thread.id)

            if not response.tool_calls:
                result.termination = "completed"
                break

            conversation.append(self._assistant_turn(response))
            for call in response.tool_calls:
                execution = await self._execute_call(call, context)
                result.tool_executions.append(execution)
                conversation.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": _tool_turn_content(execution),
                    }
                )

        result.success = True
        result.conversation_length = len(conversation)
        result.processing_time_ms = self._elapsed_ms(started)
        await self._agent_logger.log_agent_complete(
            thread.id,
            **log_scope,
            success=True,
            execution_time_ms=result.processing_time_ms,
            usage=result.usage.to_dict(),
            metadata={
                "iterations": result.iterations,
                "termination": result.termination,
                "tool_executions": len(result.tool_executions),
            },
        )
        logger.info(
            "Agent finished thread %s after %d iteration(s) (%s, %d tool executions, %d tokens)",
            thread.id,
            result.iterations,
            result.termination,
            len(result.tool_executions),
            result.usage.total_tokens,
        )
        return result

    def _precondition_error(self, thread: TaskThread) -> Optional[str]:
        if not self.is_ready():
            return NOT_CONFIGURED_ERROR
        batch = thread.batch
        if batch is None or not batch.messages:
            return "No messages to process"
        channel = batch.channel
        if channel is None or not hasattr(channel, "send"):
            return "Unsupported channel type"
        return None

    @staticmethod
    def _assistant_turn(response: LLMResponse) -> Dict[str, Any]:
        return {
            "role": "assistant",
            "content": response.content,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in response.tool_calls
            ],
        }

    async def _execute_call(self, call: ToolCall, context: ToolContext) -> ToolExecutionResult:
        try:
            parameters = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as exc:
            parameters = None
            error = f"Invalid JSON arguments for {call.name or 'tool'}: {exc.msg}"
        else:
            error = None if isinstance(parameters, dict) else "Tool arguments must be a JSON object"

        request = ToolExecutionRequest(
            tool_name=call.name,
            parameters=parameters if isinstance(parameters, dict) else {},
            context=context,
            call_id=call.id,
        )
        if not call.name:
            error = "Tool call is missing a tool name"
        if error:
            logger.warning("Rejected tool call %s in thread %s: %s", call.id, context.thread_id, error)
            failed = ToolExecutionResult.failure(call.name or "unknown", error, call_id=call.id)
            await self._executor.record(request, failed)
            return failed
        return await self._executor.execute(request)

    def _elapsed_ms(self, since: float) -> int:
        return int((self._clock() - since) * 1000)
