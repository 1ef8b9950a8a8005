"""
Subagent Runners - The Execution Backend.

A runner takes one SubagentTask, launches the agent binary for it as a child
process, and translates the child's newline-delimited JSON stream into a live
SubagentResult. Every state change produces a new frozen result which is
handed to the caller's on-update callback; the value returned from run() is
the authoritative terminal state.

run() never raises for a per-task failure. Spawn errors, non-zero exits and
unexpected stream errors all end up as fields on the returned result. The one
exception is asyncio task cancellation of the runner itself: the child is
terminated and CancelledError propagates.
"""

from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from typing import Callable, Mapping, Optional, Sequence

import structlog

from pi_extensions.config import SubagentConfig
from pi_extensions.orchestration.models import (
    MessageEndEvent,
    StopReason,
    StreamEvent,
    SubagentResult,
    SubagentTask,
    ToolResultEndEvent,
    final_output,
)
from pi_extensions.orchestration.stream import NdjsonLineBuffer, decode_event

logger = structlog.get_logger(__name__)

OnUpdate = Callable[[SubagentResult], None]

ABORTED_MESSAGE = "Aborted by user"
_READ_CHUNK = 65536


def build_prompt(task: str, context: Optional[str] = None) -> str:
    """Compose the single prompt argument: optional context block, then the task."""
    prompt = ""
    if context:
        prompt += f"<context>\n{context}\n</context>\n\n"
    return prompt + f"Task: {task}"


def build_agent_args(command: Sequence[str], task: SubagentTask) -> list[str]:
    """Argument vector for a non-interactive, JSON-mode, sessionless run."""
    args = [*command, "--mode", "json", "-p", "--no-session", "--model", task.model]
    if task.tools:
        args += ["--tools", ",".join(task.tools)]
    args.append(build_prompt(task.task, task.context))
    return args


def normalize_exit_code(returncode: Optional[int]) -> int:
    """Map a process return code onto the result's exit_code field.

    Signal deaths (``-N`` in asyncio) become ``128 + N`` so that a finished
    process never reports the running sentinel or another negative value.
    """
    if returncode is None:
        return 0
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


def apply_event(result: SubagentResult, event: StreamEvent) -> SubagentResult:
    """Fold one decoded stream event into a new result value."""
    if isinstance(event, MessageEndEvent):
        message = event.message
        messages = result.messages + (message,)
        if not message.is_assistant:
            return result.model_copy(update={"messages": messages})
        update: dict = {
            "messages": messages,
            "output": final_output(messages),
            "usage": result.usage.add_message(message.usage),
        }
        if message.stop_reason:
            update["stop_reason"] = message.stop_reason
        if message.error_message:
            update["error_message"] = message.error_message
        return result.model_copy(update=update)
    if isinstance(event, ToolResultEndEvent):
        return result.model_copy(update={"messages": result.messages + (event.message,)})
    return result


def mark_aborted(result: SubagentResult) -> SubagentResult:
    return result.model_copy(
        update={"stop_reason": StopReason.ABORTED.value, "error_message": ABORTED_MESSAGE}
    )


class SubagentRunnerBase(ABC):
    """Abstract base for subagent execution backends."""

    @abstractmethod
    async def run(
        self,
        task: SubagentTask,
        *,
        cwd: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
        on_update: Optional[OnUpdate] = None,
    ) -> SubagentResult:
        """Execute one task and return its terminal result."""


class ProcessSubagentRunner(SubagentRunnerBase):
    """Run a subagent as a child process of the agent binary.

    Each run owns its own termination timer, so a child that is slow to die
    never delays the termination of its siblings.
    """

    def __init__(
        self,
        command: Sequence[str] = ("pi",),
        kill_grace_seconds: float = 3.0,
        env: Optional[Mapping[str, str]] = None,
    ):
        self._command = list(command) or ["pi"]
        self._kill_grace = kill_grace_seconds
        self._env = dict(env) if env is not None else None

    @classmethod
    def from_config(cls, config: SubagentConfig) -> "ProcessSubagentRunner":
        return cls(command=config.agent_command, kill_grace_seconds=config.kill_grace_seconds)

    def _child_env(self) -> dict[str, str]:
        env = dict(os.environ if self._env is None else self._env)
        env["FORCE_COLOR"] = "0"
        env["NO_COLOR"] = "1"
        return env

    async def run(
        self,
        task: SubagentTask,
        *,
        cwd: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
        on_update: Optional[OnUpdate] = None,
    ) -> SubagentResult:
        result = SubagentResult.running(task)
        args = build_agent_args(self._command, task)

        logger.info(
            "subagent.runner.start",
            model=task.model,
            task=task.task,
            tools=list(task.tools) if task.tools else None,
            cwd=cwd,
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._child_env(),
            )
        except (OSError, ValueError) as exc:
            logger.warning("subagent.runner.spawn_failed", model=task.model, error=str(exc))
            result = result.model_copy(update={"exit_code": 1, "error_message": str(exc)})
            if signal is not None and signal.is_set():
                result = mark_aborted(result)
            return result

        stderr_task = asyncio.create_task(proc.stderr.read())
        abort_task = (
            asyncio.create_task(self._terminate_on_abort(proc, signal, task.model))
            if signal is not None
            else None
        )

        try:
            result = await self._consume_stdout(proc, result, on_update)
            returncode = await proc.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
        except asyncio.CancelledError:
            logger.info("subagent.runner.cancelled", model=task.model, pid=proc.pid)
            stderr_task.cancel()
            await self._terminate(proc, task.model)
            raise
        except Exception as exc:
            logger.error("subagent.runner.error", model=task.model, error=str(exc), exc_info=True)
            stderr_task.cancel()
            await self._terminate(proc, task.model)
            result = result.model_copy(update={"exit_code": 1, "error_message": str(exc)})
            if signal is not None and signal.is_set():
                result = mark_aborted(result)
            return result
        finally:
            if abort_task is not None and not abort_task.done():
                abort_task.cancel()

        exit_code = normalize_exit_code(returncode)
        update: dict = {"exit_code": exit_code}
        if exit_code != 0 and not result.error_message:
            update["error_message"] = stderr.strip() or f"Exit code {exit_code}"
        result = result.model_copy(update=update)
        if signal is not None and signal.is_set():
            result = mark_aborted(result)

        logger.info(
            "subagent.runner.complete",
            model=task.model,
            exit_code=result.exit_code,
            stop_reason=result.stop_reason,
            turns=result.usage.turns,
            cost=round(result.usage.cost, 6),
        )
        return result

    async def _consume_stdout(
        self,
        proc: asyncio.subprocess.Process,
        result: SubagentResult,
        on_update: Optional[OnUpdate],
    ) -> SubagentResult:
        buffer = NdjsonLineBuffer()

        def handle(line: str) -> None:
            nonlocal result
            event = decode_event(line)
            if event is None or not isinstance(event, (MessageEndEvent, ToolResultEndEvent)):
                return
            result = apply_event(result, event)
            _notify(on_update, result)

        while True:
            chunk = await proc.stdout.read(_READ_CHUNK)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                handle(line)
        tail = buffer.flush()
        if tail is not None:
            handle(tail)
        return result

    async def _terminate_on_abort(
        self, proc: asyncio.subprocess.Process, signal: asyncio.Event, model: str
    ) -> None:
        await signal.wait()
        logger.info("subagent.runner.abort", model=model, pid=proc.pid)
        await self._terminate(proc, model)

    async def _terminate(self, proc: asyncio.subprocess.Process, model: str) -> None:
        """SIGTERM, then SIGKILL if the child outlives the grace period."""
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace)
        except asyncio.TimeoutError:
            logger.warning("subagent.runner.kill", model=model, pid=proc.pid, grace=self._kill_grace)
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()


def _notify(on_update: Optional[OnUpdate], result: SubagentResult) -> None:
    if on_update is None:
        return
    try:
        on_update(result)
    except Exception:
        logger.error("subagent.runner.update_callback_failed", model=result.model, exc_info=True)
