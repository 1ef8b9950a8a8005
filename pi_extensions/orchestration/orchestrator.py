"""
Orchestrator - validates a subagent request and drives it to a ToolResult.

A request is either one ``model``+``task`` pair (single mode) or a ``tasks``
array (parallel mode). Everything that can be rejected up front is rejected
before the first process is spawned: the request shape, the fleet size and
every model name. After that, both modes run through the same runner, the
same reporter and the same scheduler; single mode is simply a fleet of one.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Literal, Mapping, Optional

import structlog
from pydantic import ValidationError

from pi_extensions.config import SubagentConfig
from pi_extensions.events import EventBus
from pi_extensions.orchestration.models import (
    FleetSnapshot,
    SubagentDetails,
    SubagentRequest,
    SubagentResult,
    SubagentTask,
    TaskSpec,
    TextContent,
    ToolResult,
)
from pi_extensions.orchestration.reporter import FleetReporter, progress_text
from pi_extensions.orchestration.resolver import ModelResolver, OrchestrationError
from pi_extensions.orchestration.runners import ProcessSubagentRunner, SubagentRunnerBase, mark_aborted
from pi_extensions.orchestration.scheduler import FleetScheduler

logger = structlog.get_logger(__name__)

Mode = Literal["single", "parallel"]
ToolUpdateCallback = Callable[[ToolResult], None]


class RequestValidationError(OrchestrationError):
    """The request is neither a valid single nor a valid parallel shape."""


def parse_request(params: Mapping[str, Any] | SubagentRequest) -> SubagentRequest:
    if isinstance(params, SubagentRequest):
        return params
    try:
        return SubagentRequest.model_validate(dict(params))
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ())) or "request"
        raise RequestValidationError(f"Invalid parameters: {where}: {first.get('msg', 'invalid')}") from e


class SubagentOrchestrator:
    """Runs single and parallel subagent requests behind one runner."""

    def __init__(
        self,
        runner: SubagentRunnerBase,
        scheduler: Optional[FleetScheduler] = None,
        event_bus: Optional[EventBus] = None,
        preview_chars: int = 100,
    ):
        self._runner = runner
        self._scheduler = scheduler or FleetScheduler()
        self._event_bus = event_bus
        self._preview_chars = preview_chars

    @classmethod
    def from_config(
        cls,
        config: SubagentConfig,
        runner: Optional[SubagentRunnerBase] = None,
        event_bus: Optional[EventBus] = None,
    ) -> "SubagentOrchestrator":
        return cls(
            runner=runner or ProcessSubagentRunner.from_config(config),
            scheduler=FleetScheduler(config.max_tasks, config.max_concurrency),
            event_bus=event_bus,
            preview_chars=config.preview_chars,
        )

    def plan(self, request: SubagentRequest, resolver: ModelResolver) -> tuple[Mode, list[SubagentTask]]:
        """Validate *request* and resolve it into tasks; raises OrchestrationError."""
        try:
            mode, specs = self._select_shape(request)
            tasks = [
                SubagentTask(
                    model=resolver.require(spec.model),
                    task=spec.task,
                    context=spec.context or None,
                    tools=tuple(spec.tools) if spec.tools else None,
                )
                for spec in specs
            ]
        except OrchestrationError as e:
            logger.info("subagent.orchestrator.rejected", reason=type(e).__name__, error=str(e))
            raise
        return mode, tasks

    def _select_shape(self, request: SubagentRequest) -> tuple[Mode, list[TaskSpec]]:
        has_single = request.model is not None or request.task is not None
        has_fleet = request.tasks is not None
        if has_single and has_fleet:
            raise RequestValidationError("Provide either model+task or tasks, not both.")
        if not has_single and not has_fleet:
            raise RequestValidationError(
                "Provide either model+task for a single subagent or tasks for parallel execution."
            )
        if has_single:
            if not request.model or not request.task:
                raise RequestValidationError("Single mode requires both model and task.")
            spec = TaskSpec(model=request.model, task=request.task, context=request.context, tools=request.tools)
            return "single", [spec]
        tasks = list(request.tasks or ())
        if not tasks:
            raise RequestValidationError("tasks must contain at least one entry.")
        self._scheduler.check_size(len(tasks))
        return "parallel", tasks

    async def execute(
        self,
        params: Mapping[str, Any] | SubagentRequest,
        resolver: ModelResolver,
        *,
        cwd: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
        on_update: Optional[ToolUpdateCallback] = None,
    ) -> ToolResult:
        """Validate, run and summarise one request.

        Raises OrchestrationError for anything rejected before spawning.
        Per-task failures never raise; they show up in the returned result.
        """
        request = parse_request(params)
        mode, tasks = self.plan(request, resolver)
        available = resolver.available

        reporter = FleetReporter(tasks, mode, event_bus=self._event_bus)
        if on_update is not None:
            reporter.subscribe(lambda snap: on_update(self._progress_result(snap)))

        async def run_one(task: SubagentTask, index: int) -> SubagentResult:
            try:
                result = await self._runner.run(
                    task,
                    cwd=cwd,
                    signal=signal,
                    on_update=lambda r: reporter.update(index, r),
                )
            except Exception as exc:
                logger.error(
                    "subagent.orchestrator.runner_raised",
                    index=index,
                    model=task.model,
                    error=str(exc),
                    exc_info=True,
                )
                result = SubagentResult.running(task).model_copy(update={"exit_code": 1, "error_message": str(exc)})
                if signal is not None and signal.is_set():
                    result = mark_aborted(result)
            reporter.update(index, result)
            return result

        await self._scheduler.run(tasks, run_one)
        final = reporter.complete()
        details = SubagentDetails(mode=mode, results=list(final.results), available_models=available)

        if mode == "single":
            result = final.results[0]
            text = result.output or result.error_message or "(no output)"
            return ToolResult(content=[TextContent(text=text)], details=details, is_error=result.is_error)

        return ToolResult(
            content=[TextContent(text=reporter.summary_text(self._preview_chars))],
            details=details,
            is_error=reporter.is_error,
        )

    @staticmethod
    def _progress_result(snap: FleetSnapshot) -> ToolResult:
        if snap.mode == "single":
            text = snap.results[0].output or "(running...)"
        else:
            text = progress_text(snap)
        return ToolResult(
            content=[TextContent(text=text)],
            details=SubagentDetails(mode=snap.mode, results=list(snap.results)),
        )
