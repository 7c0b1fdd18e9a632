"""Name-keyed catalog of the tools the agent may call."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .base import Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Explicitly constructed tool catalog shared by the executor and the agent."""

    def __init__(self) -> None:
        self._tools: Dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register ``tool``; a later registration under the same name replaces the earlier one."""
        if tool.name in self._tools:
            logger.warning("Tool %s is already registered; overriding", tool.name)
        self._tools[tool.name] = tool
        logger.debug("Registered tool %s", tool.name)

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            return True
        return False

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list(self) -> List[Tool]:
        return list(self._tools.values())

    def names(self) -> List[str]:
        return list(self._tools)

    def clear(self) -> None:
        self._tools.clear()

    def function_schemas(self) -> List[Dict[str, Any]]:
        return [tool.function_schema() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)
