"""Tool descriptors, execution context and parameter validation."""

from __future__ import annotations

import abc
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

import discord

from ..utils.discord import is_snowflake

if TYPE_CHECKING:
    from ..db import Database
    from ..models.batch import MessageBatch


class ParameterType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    USER = "user"
    CHANNEL = "channel"
    ROLE = "role"

    @property
    def is_id(self) -> bool:
        return self in (ParameterType.USER, ParameterType.CHANNEL, ParameterType.ROLE)


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: ParameterType
    description: str
    required: bool = False
    choices: Optional[Sequence[Any]] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    integer: bool = False


@dataclass(frozen=True)
class ToolPermissions:
    """Permissions the bot must hold, named after ``discord.Permissions`` flags."""

    bot_permissions: Tuple[str, ...] = ()
    allow_in_dms: bool = False


@dataclass
class ToolContext:
    """Where a tool runs: the batch's channel and guild plus shared services."""

    channel: Any
    guild: Optional[discord.Guild]
    bot_member: Optional[discord.Member]
    thread_id: str
    batch: Optional["MessageBatch"] = None
    database: Optional["Database"] = None

    @property
    def channel_id(self) -> int:
        return self.channel.id

    @property
    def guild_id(self) -> Optional[int]:
        return self.guild.id if self.guild is not None else None


@dataclass
class ToolResult:
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, message: Optional[str] = None, **data: Any) -> "ToolResult":
        return cls(success=True, data=data or None, message=message)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)


def _coerce(parameter: ToolParameter, value: Any) -> Tuple[Optional[str], Any]:
    kind = parameter.type
    name = parameter.name

    if kind is ParameterType.STRING:
        if not isinstance(value, str):
            return f"Parameter '{name}' must be a string", None
        return None, value

    if kind is ParameterType.NUMBER:
        if isinstance(value, bool):
            return f"Parameter '{name}' must be a number", None
        if isinstance(value, (int, float)):
            number = value
        elif isinstance(value, str):
            text = value.strip()
            try:
                number = int(text)
            except ValueError:
                try:
                    number = float(text)
                except ValueError:
                    return f"Parameter '{name}' must be a number", None
        else:
            return f"Parameter '{name}' must be a number", None
        if isinstance(number, float) and not math.isfinite(number):
            return f"Parameter '{name}' must be a number", None
        if parameter.integer:
            if number != int(number):
                return f"Parameter '{name}' must be a whole number", None
            number = int(number)
        if parameter.minimum is not None and number < parameter.minimum:
            return f"Parameter '{name}' must be at least {parameter.minimum:g}", None
        if parameter.maximum is not None and number > parameter.maximum:
            return f"Parameter '{name}' must be at most {parameter.maximum:g}", None
        return None, number

    if kind is ParameterType.BOOLEAN:
        if isinstance(value, bool):
            return None, value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return None, value.lower() == "true"
        return f"Parameter '{name}' must be a boolean", None

    if not is_snowflake(value):
        return f"Parameter '{name}' must be a valid {kind.value} ID", None
    return None, str(value)


def missing_channel_permissions(channel: Any, member: Any, required: Sequence[str]) -> List[str]:
    permissions_for = getattr(channel, "permissions_for", None)
    if permissions_for is None or member is None:
        return []
    granted = permissions_for(member)
    return [perm for perm in required if not getattr(granted, perm, False)]


class Tool(abc.ABC):
    """Base class for capabilities the agent can invoke."""

    name: str = ""
    description: str = ""
    parameters: Tuple[ToolParameter, ...] = ()
    permissions: ToolPermissions = ToolPermissions()

    def validate_context(self, context: ToolContext) -> Optional[str]:
        """Return a reason the tool cannot run in ``context``, or None when it can."""

        if context.guild is None:
            if not self.permissions.allow_in_dms:
                return f"Tool '{self.name}' cannot be used in direct messages"
            return None

        required = self.permissions.bot_permissions
        if not required:
            return None

        member = context.bot_member
        if member is None:
            return f"Tool '{self.name}' requires the bot to be a member of the guild"

        guild_permissions = member.guild_permissions
        missing = [perm for perm in required if not getattr(guild_permissions, perm, False)]
        if missing:
            return f"Bot is missing guild permissions: {', '.join(missing)}"

        missing = missing_channel_permissions(context.channel, member, required)
        if missing:
            return f"Bot is missing channel permissions: {', '.join(missing)}"
        return None

    def validate_parameters(
        self, params: Dict[str, Any]
    ) -> Tuple[Optional[str], Dict[str, Any]]:
        """Check ``params`` against the declared parameters.

        Returns ``(error, coerced)``. ``coerced`` holds values converted to their
        declared kind (numeric strings become numbers, ``"true"``/``"false"``
        become booleans, ids become strings) and is only meaningful when
        ``error`` is None.
        """

        declared = {parameter.name: parameter for parameter in self.parameters}

        missing = [
            parameter.name
            for parameter in self.parameters
            if parameter.required and params.get(parameter.name) is None
        ]
        if missing:
            return f"Missing required parameter(s): {', '.join(missing)}", {}

        unknown = [name for name in params if name not in declared]
        if unknown:
            return f"Unknown parameter(s): {', '.join(unknown)}", {}

        coerced: Dict[str, Any] = {}
        for name, value in params.items():
            if value is None:
                continue
            parameter = declared[name]
            error, converted = _coerce(parameter, value)
            if error:
                return error, {}
            if parameter.choices is not None:
                allowed = [str(choice) for choice in parameter.choices]
                if str(converted) not in allowed:
                    return (
                        f"Parameter '{name}' must be one of: {', '.join(allowed)}",
                        {},
                    )
            coerced[name] = converted
        return None, coerced

    def function_schema(self) -> Dict[str, Any]:
        properties: Dict[str, Any] = {}
        required: List[str] = []
        for parameter in self.parameters:
            if parameter.type.is_id:
                schema: Dict[str, Any] = {
                    "type": "string",
                    "description": f"{parameter.description} (Discord {parameter.type.value} ID)",
                }
            elif parameter.integer:
                schema = {"type": "integer", "description": parameter.description}
            else:
                schema = {"type": parameter.type.value, "description": parameter.description}
            if parameter.choices is not None:
                schema["enum"] = list(parameter.choices)
            if parameter.minimum is not None:
                schema["minimum"] = parameter.minimum
            if parameter.maximum is not None:
                schema["maximum"] = parameter.maximum
            properties[parameter.name] = schema
            if parameter.required:
                required.append(parameter.name)

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }

    @abc.abstractmethod
    async def execute(self, context: ToolContext, params: Dict[str, Any]) -> ToolResult:
        """Perform the tool's side effect."""
