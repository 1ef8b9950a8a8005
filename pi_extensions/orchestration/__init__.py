"""
Subagent Orchestration - delegating work to isolated child agents.

A subagent is the same agent binary, launched non-interactively with its own
model and a narrowed task. Its stdout is a newline-delimited JSON event stream
that the runner folds into a live result; a scheduler bounds how many run at
once and a reporter turns the slots into snapshots and a final summary.
"""

from __future__ import annotations

from pi_extensions.orchestration.models import (
    FleetSnapshot,
    SubagentResult,
    SubagentTask,
    ToolResult,
    UsageStats,
)
from pi_extensions.orchestration.orchestrator import RequestValidationError, SubagentOrchestrator
from pi_extensions.orchestration.resolver import ModelResolver, OrchestrationError, UnknownModelError
from pi_extensions.orchestration.runners import ProcessSubagentRunner, SubagentRunnerBase
from pi_extensions.orchestration.scheduler import FleetScheduler, FleetSizeError

__all__ = [
    "FleetScheduler",
    "FleetSizeError",
    "FleetSnapshot",
    "ModelResolver",
    "OrchestrationError",
    "ProcessSubagentRunner",
    "RequestValidationError",
    "SubagentOrchestrator",
    "SubagentResult",
    "SubagentRunnerBase",
    "SubagentTask",
    "ToolResult",
    "UnknownModelError",
    "UsageStats",
]
