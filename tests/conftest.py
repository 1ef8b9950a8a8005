"""
Shared fixtures for the pi extensions test suite.

Provides an in-memory stand-in for an asyncio subprocess, stream-event
builders, a host model registry double and a test runner that records
concurrency, so individual test modules can focus on behavior rather than
setup.
"""

from __future__ import annotations

import asyncio
import json
import sys
import textwrap
from pathlib import Path
from typing import Any, Optional

import pytest

from pi_extensions.host import ExtensionContext, ModelInfo
from pi_extensions.orchestration.models import SubagentResult, SubagentTask, UsageStats
from pi_extensions.orchestration.runners import SubagentRunnerBase


# ---------------------------------------------------------------------------
# Stream event builders
# ---------------------------------------------------------------------------

def assistant_message(
    text: Optional[str] = None,
    *,
    tool_calls: Optional[list[dict[str, Any]]] = None,
    usage: Optional[dict[str, Any]] = None,
    stop_reason: Optional[str] = None,
    error_message: Optional[str] = None,
) -> dict[str, Any]:
    content: list[dict[str, Any]] = []
    if text is not None:
        content.append({"type": "text", "text": text})
    for call in tool_calls or []:
        content.append({"type": "toolCall", **call})
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if usage is not None:
        message["usage"] = usage
    if stop_reason is not None:
        message["stopReason"] = stop_reason
    if error_message is not None:
        message["errorMessage"] = error_message
    return message


def message_end_line(message: dict[str, Any]) -> str:
    return json.dumps({"type": "message_end", "message": message}) + "\n"


def tool_result_line(text: str = "ok", tool_name: str = "bash") -> str:
    return json.dumps({
        "type": "tool_result_end",
        "message": {"role": "toolResult", "toolName": tool_name, "content": [{"type": "text", "text": text}]},
    }) + "\n"


# ---------------------------------------------------------------------------
# Fake subprocess
# ---------------------------------------------------------------------------

class FakeProcess:
    """Quacks like asyncio.subprocess.Process, fed from memory.

    Must be built inside a running event loop (StreamReader needs one).
    With ``hang=True`` the process stays alive until terminate()/kill();
    with ``ignore_term=True`` terminate() is ignored and only kill() ends it.
    """

    def __init__(
        self,
        stdout_chunks: Optional[list[bytes]] = None,
        *,
        returncode: int = 0,
        stderr: bytes = b"",
        hang: bool = False,
        ignore_term: bool = False,
    ):
        self.pid = 4242
        self.returncode: Optional[int] = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.terminate_calls = 0
        self.kill_calls = 0
        self._ignore_term = ignore_term
        self._exited = asyncio.Event()
        for chunk in stdout_chunks or []:
            self.stdout.feed_data(chunk)
        self.stderr.feed_data(stderr)
        if not hang:
            self.finish(returncode)

    def finish(self, returncode: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = returncode
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode  # type: ignore[return-value]

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self._ignore_term:
            self.finish(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self.finish(-9)


# ---------------------------------------------------------------------------
# Host doubles
# ---------------------------------------------------------------------------

class FakeModelRegistry:
    def __init__(self, models: list[ModelInfo], keys: Optional[dict[str, str]] = None):
        self.models = list(models)
        self.keys = dict(keys or {})

    def get_available(self) -> list[ModelInfo]:
        return list(self.models)

    async def get_api_key(self, model: ModelInfo) -> Optional[str]:
        return self.keys.get(model.provider)


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, message: str, level: str = "info") -> None:
        self.messages.append((message, level))


class RecordingAPI:
    """Collects whatever an extension registers."""

    def __init__(self) -> None:
        self.tools: dict[str, Any] = {}
        self.commands: dict[str, Any] = {}
        self.handlers: dict[str, list[Any]] = {}
        self.sent: list[str] = []

    def register_tool(self, tool: Any) -> None:
        self.tools[tool.name] = tool

    def register_command(self, command: Any) -> None:
        self.commands[command.name] = command

    def on(self, event_name: str, handler: Any) -> None:
        self.handlers.setdefault(event_name, []).append(handler)

    def send_user_message(self, text: str) -> None:
        self.sent.append(text)


@pytest.fixture()
def models() -> list[ModelInfo]:
    return [
        ModelInfo("anthropic", "claude-sonnet-4-5"),
        ModelInfo("anthropic", "claude-haiku-4-5"),
        ModelInfo("openai", "gpt-5"),
    ]


@pytest.fixture()
def model_registry(models: list[ModelInfo]) -> FakeModelRegistry:
    return FakeModelRegistry(models, keys={"anthropic": "sk-test"})


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def extension_context(tmp_path: Path, model_registry: FakeModelRegistry, notifier: RecordingNotifier) -> ExtensionContext:
    return ExtensionContext(cwd=str(tmp_path), model_registry=model_registry, ui=notifier)


# ---------------------------------------------------------------------------
# Test runner that records concurrency
# ---------------------------------------------------------------------------

class RecordingRunner(SubagentRunnerBase):
    """Runner double: sleeps, tracks how many runs overlap, returns success."""

    def __init__(self, delays: Optional[dict[str, float]] = None, default_delay: float = 0.01):
        self.delays = delays or {}
        self.default_delay = default_delay
        self.calls: list[SubagentTask] = []
        self.active = 0
        self.max_active = 0
        self.fail_tasks: set[str] = set()
        self.usage = UsageStats(input=10, output=5, turns=1, cost=0.001)

    async def run(self, task, *, cwd=None, signal=None, on_update=None) -> SubagentResult:
        self.calls.append(task)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            running = SubagentResult.running(task).model_copy(update={"output": "working"})
            if on_update is not None:
                on_update(running)
            delay = self.delays.get(task.task, self.default_delay)
            if signal is not None:
                try:
                    await asyncio.wait_for(signal.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(delay)
            if signal is not None and signal.is_set():
                return running.model_copy(update={
                    "exit_code": 143, "stop_reason": "aborted", "error_message": "Aborted by user",
                })
            if task.task in self.fail_tasks:
                return running.model_copy(update={
                    "exit_code": 2, "output": "", "error_message": f"{task.task} failed",
                })
            return running.model_copy(update={
                "exit_code": 0, "output": f"done: {task.task}", "usage": self.usage,
            })
        finally:
            self.active -= 1


@pytest.fixture()
def recording_runner() -> RecordingRunner:
    return RecordingRunner()


# ---------------------------------------------------------------------------
# A real child process speaking the JSON event protocol
# ---------------------------------------------------------------------------

_FAKE_AGENT = textwrap.dedent(
    """
    import json
    import os
    import sys
    import time

    prompt = sys.argv[-1]
    mode = os.environ.get("FAKE_AGENT_MODE", "ok")
    if "sleep" in prompt or mode == "sleep":
        time.sleep(30)
    if "fail" in prompt or mode == "fail":
        sys.stderr.write("model unavailable\\n")
        sys.exit(2)

    sys.stdout.write("not json at all\\n")
    event = {
        "type": "message_end",
        "message": {
            "role": "assistant",
            "content": [{"type": "text", "text": "echo: " + prompt.splitlines()[-1]}],
            "usage": {"input": 10, "output": 2, "cacheRead": 0, "cacheWrite": 0, "cost": {"total": 0.0005}},
            "stopReason": "stop",
        },
    }
    line = json.dumps(event)
    # Split one record across two writes to exercise line reassembly
    sys.stdout.write(line[:15])
    sys.stdout.flush()
    sys.stdout.write(line[15:] + "\\n")
    sys.stdout.flush()
    """
)


@pytest.fixture()
def fake_agent(tmp_path: Path) -> list[str]:
    """Command vector that runs a tiny Python stand-in for the agent binary."""
    script = tmp_path / "fake_agent.py"
    script.write_text(_FAKE_AGENT, encoding="utf-8")
    return [sys.executable, str(script)]
