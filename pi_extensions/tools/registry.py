"""
Tool Registry - the catalog of tools and slash-commands an extension exposes.

A host agent receives ToolDefinition and CommandDefinition values through its
registration API. The ToolRegistry here is the in-process catalog the local
CLI host (and the tests) use to hold and dispatch them.

Tool descriptions are prompts: they tell the calling model not only what a
tool does but which models it may ask for.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

from pi_extensions.host import ExtensionContext
from pi_extensions.orchestration.models import ToolResult

logger = structlog.get_logger(__name__)

ToolUpdateCallback = Callable[[ToolResult], None]
ToolHandler = Callable[..., Awaitable[ToolResult]]
CommandHandler = Callable[[str, ExtensionContext], Awaitable[None]]


@dataclass
class ToolDefinition:
    """
    A registered tool with its schema, description and handler.

    The handler is awaited as
    ``handler(params, ctx, signal=signal, on_update=on_update)`` and must
    return a ToolResult; failures are reported through ``is_error``.
    """
    name: str
    label: str
    description: str
    input_schema: dict[str, Any]                # JSON Schema for tool parameters
    handler: Optional[ToolHandler] = None
    category: str = "general"
    enabled: bool = True

    def to_api_format(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass
class CommandDefinition:
    """A slash-command; the handler receives the raw argument string."""
    name: str
    description: str
    handler: CommandHandler


class ToolRegistry:
    """In-process registry of tools and commands, with collision checks."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}
        self._commands: dict[str, CommandDefinition] = {}

    def register(self, tool: ToolDefinition, *, allow_override: bool = False) -> None:
        """Register a tool, blocking accidental name collisions by default."""
        if tool.name in self._tools and not allow_override:
            logger.warning("tool_registry.name_collision", name=tool.name)
            raise ValueError(
                f"Tool '{tool.name}' is already registered. "
                "Use allow_override=True for an explicit replacement."
            )
        self._tools[tool.name] = tool
        logger.debug("tool_registry.registered", name=tool.name, category=tool.category)

    def register_command(self, command: CommandDefinition, *, allow_override: bool = False) -> None:
        if command.name in self._commands and not allow_override:
            logger.warning("tool_registry.command_collision", name=command.name)
            raise ValueError(f"Command '/{command.name}' is already registered.")
        self._commands[command.name] = command
        logger.debug("tool_registry.command_registered", name=command.name)

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            return True
        return False

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def get_command(self, name: str) -> Optional[CommandDefinition]:
        return self._commands.get(name.lstrip("/"))

    def get_api_tools(self) -> list[dict[str, Any]]:
        return [tool.to_api_format() for tool in self._tools.values() if tool.enabled]

    def list_tools(self) -> list[dict[str, Any]]:
        """List all registered tools with metadata."""
        return [
            {"name": t.name, "label": t.label, "category": t.category, "enabled": t.enabled}
            for t in self._tools.values()
        ]

    def list_commands(self) -> list[str]:
        return sorted(self._commands)

    async def call(
        self,
        name: str,
        params: dict[str, Any],
        ctx: ExtensionContext,
        *,
        signal: Optional[asyncio.Event] = None,
        on_update: Optional[ToolUpdateCallback] = None,
    ) -> ToolResult:
        """Dispatch a tool call by name."""
        tool = self._tools.get(name)
        if tool is None or tool.handler is None or not tool.enabled:
            return ToolResult.error(f"Unknown tool: {name}")
        return await tool.handler(params, ctx, signal=signal, on_update=on_update)

    async def run_command(self, name: str, args: str, ctx: ExtensionContext) -> bool:
        """Run a slash-command. Returns False if no such command exists."""
        command = self.get_command(name)
        if command is None:
            return False
        await command.handler(args, ctx)
        return True

    @property
    def count(self) -> int:
        return len(self._tools)
