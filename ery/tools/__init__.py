"""Tool catalog available to the agent."""

from .base import (
    ParameterType,
    Tool,
    ToolContext,
    ToolParameter,
    ToolPermissions,
    ToolResult,
)
from .communication import SendMessageTool
from .executor import ToolExecutionRequest, ToolExecutionResult, ToolExecutor
from .information import (
    FetchMessagesTool,
    GetMemberInfoTool,
    GetServerInfoTool,
    ListInfoDocumentsTool,
    ReadInfoDocumentTool,
)
from .moderation import BanMemberTool, DeleteMessageTool, KickMemberTool, TimeoutMemberTool
from .registry import ToolRegistry

BUILTIN_TOOLS = (
    SendMessageTool,
    FetchMessagesTool,
    GetServerInfoTool,
    GetMemberInfoTool,
    ListInfoDocumentsTool,
    ReadInfoDocumentTool,
    BanMemberTool,
    KickMemberTool,
    TimeoutMemberTool,
    DeleteMessageTool,
)


def build_tool_registry() -> ToolRegistry:
    """Construct the catalog of built-in tools. Called once at startup."""

    registry = ToolRegistry()
    for tool_cls in BUILTIN_TOOLS:
        registry.register(tool_cls())
    return registry


__all__ = [
    "BUILTIN_TOOLS",
    "ParameterType",
    "Tool",
    "ToolContext",
    "ToolExecutionRequest",
    "ToolExecutionResult",
    "ToolExecutor",
    "ToolParameter",
    "ToolPermissions",
    "ToolRegistry",
    "ToolResult",
    "build_tool_registry",
]
