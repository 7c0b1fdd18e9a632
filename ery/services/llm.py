"""LLM interaction helpers for Ery."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class LLMUnavailable(RuntimeError):
    """Raised when an LLM request is made without configuration."""


class LLMError(RuntimeError):
    """Raised when neither the primary nor the fallback model produced a reply."""


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "TokenUsage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class LLMResponse:
    """Normalised single completion returned by :class:`LLMClient`."""

    content: Optional[str]
    model: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    used_fallback: bool = False


class LLMClient:
    """Wrapper around OpenAI's async client with a one-shot fallback model."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        base_url: Optional[str] = None,
        *,
        fallback_model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        fallback_max_tokens: int = 1000,
        site_url: Optional[str] = None,
        site_name: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        self._model = model
        self._base_url = base_url
        self._fallback_model = fallback_model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._fallback_max_tokens = min(fallback_max_tokens, max_tokens)
        self._client = client
        if self._client is None and api_key:
            headers: Dict[str, str] = {}
            if site_url:
                headers["HTTP-Referer"] = site_url
            if site_name:
                headers["X-Title"] = site_name
            self._client = AsyncOpenAI(
                api_key=api_key, base_url=base_url, default_headers=headers or None
            )

    def is_configured(self) -> bool:
        return self._client is not None

    def model_info(self) -> Dict[str, Any]:
        return {
            "model": self._model,
            "fallback_model": self._fallback_model,
            "base_url": self._base_url or "default",
            "max_tokens": self._max_tokens,
            "fallback_max_tokens": self._fallback_max_tokens,
        }

    async def complete(
        self,
        messages: Iterable[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> LLMResponse:
        """Execute a chat completion, retrying once on the fallback model if configured."""

        if self._client is None:
            raise LLMUnavailable("AI provider not configured")

        payload = list(messages)
        try:
            return await self._request(self._model, payload, tools, self._max_tokens)
        except Exception as primary_error:
            if not self._fallback_model or self._fallback_model == self._model:
                raise LLMError(f"Model {self._model} failed: {primary_error}") from primary_error
            logger.warning(
                "Primary model %s failed (%s); retrying with fallback %s",
                self._model,
                primary_error,
                self._fallback_model,
            )

        try:
            response = await self._request(
                self._fallback_model, payload, tools, self._fallback_max_tokens
            )
        except Exception as fallback_error:
            logger.error("Fallback model %s failed: %s", self._fallback_model, fallback_error)
            raise LLMError("Both primary and fallback models failed") from fallback_error
        response.used_fallback = True
        return response

    async def _request(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        max_tokens: int,
    ) -> LLMResponse:
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": self._temperature,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        response = await self._client.chat.completions.create(**kwargs)
        if not response.choices:
            raise LLMError(f"Model {model} returned no choices")

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content,
            model=model,
            tool_calls=self.extract_tool_calls(choice.message),
            finish_reason=choice.finish_reason,
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
        )

    @staticmethod
    def extract_tool_calls(message: Any) -> List[ToolCall]:
        """Normalize tool call payloads from OpenAI responses."""

        tool_calls = getattr(message, "tool_calls", None) or []
        normalized: List[ToolCall] = []
        for call in tool_calls:
            if isinstance(call, dict):
                function = call.get("function") or {}
                normalized.append(
                    ToolCall(
                        id=call.get("id") or "",
                        name=function.get("name") or "",
                        arguments=function.get("arguments") or "{}",
                    )
                )
            else:
                normalized.append(
                    ToolCall(
                        id=call.id,
                        name=call.function.name,
                        arguments=call.function.arguments or "{}",
                    )
                )
        return normalized
