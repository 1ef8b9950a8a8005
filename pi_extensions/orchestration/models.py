"""
Orchestration Data Models - The Language of Delegation.

These Pydantic models define the contract between the orchestrating agent and
its subagent processes. SubagentTask describes *what* to do. SubagentResult
describes *what happened* so far. Stream events describe what a subagent
process told us, decoded once at the stream boundary into a closed set of
variants.

Results and usage counters are frozen: every update produces a new value that
replaces the old one wholesale, so a reader holding a snapshot never sees a
half-applied update.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

RUNNING_EXIT_CODE = -1


class StopReason(str, Enum):
    """Terminal classification reported for a subagent run."""

    STOP = "stop"
    LENGTH = "length"
    TOOL_USE = "toolUse"
    ERROR = "error"
    ABORTED = "aborted"


class TaskStatus(str, Enum):
    """Per-task state machine: PENDING -> RUNNING -> terminal."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


# ---------------------------------------------------------------------------
# Streamed message shapes
# ---------------------------------------------------------------------------


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolCallContent(BaseModel):
    type: Literal["toolCall"] = "toolCall"
    id: str = ""
    name: str = ""
    arguments: dict[str, Any] = Field(default_factory=dict)


class OtherContent(BaseModel):
    """Any content part we do not interpret (thinking, images, ...)."""

    model_config = ConfigDict(extra="allow")

    type: str = "unknown"


ContentPart = Union[TextContent, ToolCallContent, OtherContent]


def _coerce_content_part(part: Any) -> ContentPart:
    if isinstance(part, BaseModel):
        return part  # type: ignore[return-value]
    if isinstance(part, str):
        return TextContent(text=part)
    if isinstance(part, dict):
        kind = part.get("type")
        if kind == "text":
            return TextContent.model_validate(part)
        if kind == "toolCall":
            return ToolCallContent.model_validate(part)
        return OtherContent.model_validate(part)
    return OtherContent()


class CostBreakdown(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total: float = 0.0

    @field_validator("total", mode="before")
    @classmethod
    def _non_negative_total(cls, value: Any) -> float:
        try:
            return max(0.0, float(value or 0))
        except (TypeError, ValueError):
            return 0.0


class MessageUsage(BaseModel):
    """Usage deltas reported on one completed message."""

    model_config = ConfigDict(extra="ignore")

    input: int = 0
    output: int = 0
    cache_read: int = Field(0, alias="cacheRead")
    cache_write: int = Field(0, alias="cacheWrite")
    cost: CostBreakdown = Field(default_factory=CostBreakdown)

    @field_validator("input", "output", "cache_read", "cache_write", mode="before")
    @classmethod
    def _non_negative_count(cls, value: Any) -> int:
        try:
            return max(0, int(value or 0))
        except (TypeError, ValueError):
            return 0

    @field_validator("cost", mode="before")
    @classmethod
    def _cost_breakdown(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, (int, float)):
            return {"total": value}
        if isinstance(value, (dict, BaseModel)):
            return value
        return {}


class AgentMessage(BaseModel):
    """One message as emitted by a subagent process (assistant, user or tool result)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    role: str
    content: list[ContentPart] = Field(default_factory=list)
    usage: Optional[MessageUsage] = None
    stop_reason: Optional[str] = Field(None, alias="stopReason")
    error_message: Optional[str] = Field(None, alias="errorMessage")

    @field_validator("usage", mode="before")
    @classmethod
    def _usage_object(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, BaseModel)) else None

    @field_validator("content", mode="before")
    @classmethod
    def _normalize_content(cls, value: Any) -> list[ContentPart]:
        if value is None:
            return []
        if isinstance(value, str):
            return [TextContent(text=value)]
        if isinstance(value, list):
            return [_coerce_content_part(part) for part in value]
        return []

    @property
    def is_assistant(self) -> bool:
        return self.role == "assistant"

    def first_text(self) -> Optional[str]:
        for part in self.content:
            if isinstance(part, TextContent):
                return part.text
        return None

    def tool_calls(self) -> list[ToolCallContent]:
        return [part for part in self.content if isinstance(part, ToolCallContent)]


# ---------------------------------------------------------------------------
# Stream events (tagged union with an explicit fallback variant)
# ---------------------------------------------------------------------------


class MessageEndEvent(BaseModel):
    """A message finished streaming."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["message_end"] = "message_end"
    message: AgentMessage


class ToolResultEndEvent(BaseModel):
    """A tool result finished; kept for the transcript only."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["tool_result_end"] = "tool_result_end"
    message: AgentMessage


class UnrecognizedEvent(BaseModel):
    """Any well-formed record we do not act on."""

    model_config = ConfigDict(extra="allow")

    type: str = ""


StreamEvent = Union[MessageEndEvent, ToolResultEndEvent, UnrecognizedEvent]


# ---------------------------------------------------------------------------
# Tasks, usage and results
# ---------------------------------------------------------------------------


class SubagentTask(BaseModel):
    """Immutable description of one unit of delegated work."""

    model_config = ConfigDict(frozen=True)

    model: str
    task: str
    context: Optional[str] = None
    tools: Optional[tuple[str, ...]] = None


class UsageStats(BaseModel):
    """Accumulated token/cost usage for one run.

    Values are immutable; ``add`` and ``+`` return new instances so the
    accumulator can be summed in any order with identical results.
    """

    model_config = ConfigDict(frozen=True)

    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    cost: float = 0.0
    turns: int = 0

    def add_message(self, usage: Optional[MessageUsage]) -> "UsageStats":
        """Count one assistant turn and fold in its usage deltas."""
        if usage is None:
            return self.model_copy(update={"turns": self.turns + 1})
        return UsageStats(
            input=self.input + usage.input,
            output=self.output + usage.output,
            cache_read=self.cache_read + usage.cache_read,
            cache_write=self.cache_write + usage.cache_write,
            cost=self.cost + max(0.0, float(usage.cost.total or 0.0)),
            turns=self.turns + 1,
        )

    def __add__(self, other: "UsageStats") -> "UsageStats":
        if not isinstance(other, UsageStats):
            return NotImplemented
        return UsageStats(
            input=self.input + other.input,
            output=self.output + other.output,
            cache_read=self.cache_read + other.cache_read,
            cache_write=self.cache_write + other.cache_write,
            cost=self.cost + other.cost,
            turns=self.turns + other.turns,
        )

    @classmethod
    def total(cls, stats: "list[UsageStats] | tuple[UsageStats, ...]") -> "UsageStats":
        result = cls()
        for item in stats:
            result = result + item
        return result


def final_output(messages: "tuple[AgentMessage, ...] | list[AgentMessage]") -> str:
    """Latest assistant text, looking back past tool-call-only turns."""
    for message in reversed(messages):
        if message.is_assistant:
            text = message.first_text()
            if text is not None:
                return text
    return ""


class SubagentResult(BaseModel):
    """Live, then final, state of one task's execution."""

    model_config = ConfigDict(frozen=True)

    model: str
    task: str
    context: Optional[str] = None
    exit_code: int = RUNNING_EXIT_CODE
    output: str = ""
    messages: tuple[AgentMessage, ...] = ()
    usage: UsageStats = Field(default_factory=UsageStats)
    stop_reason: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def running(cls, task: SubagentTask) -> "SubagentResult":
        return cls(model=task.model, task=task.task, context=task.context)

    @property
    def is_done(self) -> bool:
        return self.exit_code != RUNNING_EXIT_CODE

    @property
    def is_error(self) -> bool:
        if not self.is_done:
            return False
        return self.exit_code != 0 or self.stop_reason in (
            StopReason.ERROR.value,
            StopReason.ABORTED.value,
        )

    @property
    def status(self) -> TaskStatus:
        if not self.is_done:
            return TaskStatus.RUNNING
        if self.stop_reason == StopReason.ABORTED.value:
            return TaskStatus.ABORTED
        if self.is_error:
            return TaskStatus.FAILED
        return TaskStatus.SUCCEEDED


class FleetSnapshot(BaseModel):
    """Point-in-time view over every result in one run set."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["single", "parallel"]
    results: tuple[SubagentResult, ...]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def done(self) -> int:
        return sum(1 for r in self.results if r.is_done)

    @property
    def running(self) -> int:
        return self.total - self.done

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.is_done and r.exit_code == 0)

    @property
    def usage(self) -> UsageStats:
        return UsageStats.total([r.usage for r in self.results])

    @property
    def is_complete(self) -> bool:
        return self.done == self.total


# ---------------------------------------------------------------------------
# Tool surface shapes
# ---------------------------------------------------------------------------


class TaskSpec(BaseModel):
    """One entry of a parallel request, as supplied by the caller."""

    model_config = ConfigDict(extra="forbid")

    model: str
    task: str
    context: Optional[str] = None
    tools: Optional[list[str]] = None


class SubagentRequest(BaseModel):
    """Raw tool parameters: single ``model``+``task`` XOR a ``tasks`` array."""

    model_config = ConfigDict(extra="ignore")

    model: Optional[str] = None
    task: Optional[str] = None
    context: Optional[str] = None
    tools: Optional[list[str]] = None
    tasks: Optional[list[TaskSpec]] = None


class SubagentDetails(BaseModel):
    """Structured payload attached to every tool result and update."""

    mode: Literal["single", "parallel"]
    results: list[SubagentResult] = Field(default_factory=list)
    available_models: list[str] = Field(default_factory=list)


class ToolResult(BaseModel):
    """What the tool hands back to the host: text content plus details."""

    content: list[TextContent] = Field(default_factory=list)
    details: Optional[SubagentDetails] = None
    is_error: bool = False

    @property
    def text(self) -> str:
        return "\n".join(part.text for part in self.content)

    @classmethod
    def error(cls, message: str, details: Optional[SubagentDetails] = None) -> "ToolResult":
        return cls(content=[TextContent(text=message)], details=details, is_error=True)
