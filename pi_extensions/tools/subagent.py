"""
The ``subagent`` tool and the ``/subagent`` slash-command.

The tool accepts either a single ``model``+``task`` or a ``tasks`` array and
hands the request to the SubagentOrchestrator. Pre-flight rejections (bad
shape, too many tasks, unknown model) come back as an error ToolResult; the
host never sees an exception.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

import structlog

from pi_extensions.host import ExtensionAPI, ExtensionContext
from pi_extensions.orchestration.models import SubagentDetails, ToolResult
from pi_extensions.orchestration.orchestrator import SubagentOrchestrator
from pi_extensions.orchestration.resolver import ModelResolver, OrchestrationError
from pi_extensions.tools.registry import CommandDefinition, ToolDefinition, ToolUpdateCallback

logger = structlog.get_logger(__name__)

TOOL_NAME = "subagent"


def model_listing(enabled_models: Sequence[str]) -> str:
    return ", ".join(enabled_models) if enabled_models else "(all models with API keys)"


def build_description(enabled_models: Sequence[str], max_tasks: int = 8) -> str:
    return (
        "Spawn a subagent with isolated context: the same agent, run non-interactively "
        "with its own model and a narrowed task. Either pass model (full provider/id) and "
        "task, with optional context (XML) and tools (array of tool names), or pass tasks, "
        f"an array of up to {max_tasks} {{model, task, context?, tools?}} entries to run in "
        "parallel. Every model is checked before anything is started. "
        f"Available models: {model_listing(enabled_models)}"
    )


def build_input_schema(enabled_models: Sequence[str], max_tasks: int = 8) -> dict[str, Any]:
    listing = model_listing(enabled_models)
    task_properties: dict[str, Any] = {
        "model": {"type": "string", "description": f"Model ID. Available: {listing}"},
        "task": {"type": "string", "description": "The task instruction for the subagent"},
        "context": {"type": "string", "description": "Optional XML-structured context to pass"},
        "tools": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Tool names to enable (default: all)",
        },
    }
    return {
        "type": "object",
        "properties": {
            **task_properties,
            "tasks": {
                "type": "array",
                "description": "Tasks to run in parallel (instead of model+task)",
                "minItems": 1,
                "maxItems": max_tasks,
                "items": {
                    "type": "object",
                    "properties": task_properties,
                    "required": ["model", "task"],
                    "additionalProperties": False,
                },
            },
        },
    }


def make_resolver(ctx: ExtensionContext, enabled_models: Sequence[str]) -> ModelResolver:
    return ModelResolver(ctx.model_registry.get_available(), enabled_models)


def make_subagent_tool(
    orchestrator: SubagentOrchestrator,
    enabled_models: Sequence[str],
    max_tasks: int = 8,
) -> ToolDefinition:
    """Build the ``subagent`` tool bound to *orchestrator*."""
    enabled = list(enabled_models)

    async def execute(
        params: dict[str, Any],
        ctx: ExtensionContext,
        *,
        signal: Optional[asyncio.Event] = None,
        on_update: Optional[ToolUpdateCallback] = None,
    ) -> ToolResult:
        resolver = make_resolver(ctx, enabled)
        try:
            return await orchestrator.execute(
                params,
                resolver,
                cwd=ctx.cwd,
                signal=signal,
                on_update=on_update,
            )
        except OrchestrationError as e:
            mode = "parallel" if isinstance(params, dict) and "tasks" in params else "single"
            return ToolResult.error(
                str(e),
                details=SubagentDetails(mode=mode, available_models=resolver.available),
            )

    return ToolDefinition(
        name=TOOL_NAME,
        label="Subagent",
        description=build_description(enabled, max_tasks),
        input_schema=build_input_schema(enabled, max_tasks),
        handler=execute,
        category="orchestration",
    )


def make_subagent_command(api: ExtensionAPI, enabled_models: Sequence[str]) -> CommandDefinition:
    """``/subagent <model> <task>``: hands the request to the calling model."""
    enabled = list(enabled_models)

    async def handler(args: str, ctx: ExtensionContext) -> None:
        if not args or not args.strip():
            available = make_resolver(ctx, enabled).available
            ctx.ui.notify(
                f"Usage: /subagent <model> <task>\nModels: {', '.join(available)}",
                "info",
            )
            return
        api.send_user_message(f"Use a subagent: {args.strip()}")

    return CommandDefinition(
        name=TOOL_NAME,
        description="Delegate to a subagent: /subagent <model> <task>",
        handler=handler,
    )
