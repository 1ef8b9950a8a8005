"""
Extension entry point - wires the subagent tool and the compaction hook into a host.

The host calls ``register(api)`` once at load time. Configuration is read here,
exactly once, and passed down as plain values.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog

from pi_extensions.api.claude import CompletionClient
from pi_extensions.compaction.handoff import HandoffCompactor, SessionBeforeCompactEvent
from pi_extensions.config import ExtensionsConfig
from pi_extensions.events import EventBus
from pi_extensions.host import ExtensionAPI, ExtensionContext
from pi_extensions.orchestration.orchestrator import SubagentOrchestrator
from pi_extensions.orchestration.runners import SubagentRunnerBase
from pi_extensions.tools.subagent import make_subagent_command, make_subagent_tool

logger = structlog.get_logger(__name__)

COMPACT_EVENT = "session_before_compact"


def register_subagent(
    api: ExtensionAPI,
    config: ExtensionsConfig,
    *,
    runner: Optional[SubagentRunnerBase] = None,
    event_bus: Optional[EventBus] = None,
) -> SubagentOrchestrator:
    orchestrator = SubagentOrchestrator.from_config(config.subagent, runner=runner, event_bus=event_bus)
    api.register_tool(make_subagent_tool(orchestrator, config.enabled_models, config.subagent.max_tasks))
    api.register_command(make_subagent_command(api, config.enabled_models))
    return orchestrator


def register_compaction(
    api: ExtensionAPI,
    config: ExtensionsConfig,
    *,
    client: Optional[CompletionClient] = None,
    event_bus: Optional[EventBus] = None,
) -> HandoffCompactor:
    compactor = HandoffCompactor(config.compaction, client=client, event_bus=event_bus)

    async def on_before_compact(event: Any, ctx: ExtensionContext) -> Any:
        if not isinstance(event, SessionBeforeCompactEvent):
            event = SessionBeforeCompactEvent.model_validate(event)
        return await compactor(event, ctx)

    api.on(COMPACT_EVENT, on_before_compact)
    return compactor


def register(
    api: ExtensionAPI,
    config: Optional[ExtensionsConfig] = None,
    *,
    runner: Optional[SubagentRunnerBase] = None,
    client: Optional[CompletionClient] = None,
    event_bus: Optional[EventBus] = None,
) -> None:
    """Register every extension in this package with *api*."""
    config = config or ExtensionsConfig()
    register_subagent(api, config, runner=runner, event_bus=event_bus)
    register_compaction(api, config, client=client, event_bus=event_bus)
    logger.info(
        "extension.registered",
        enabled_models=len(config.enabled_models),
        max_tasks=config.subagent.max_tasks,
        max_concurrency=config.subagent.max_concurrency,
    )
