"""
Handoff Compaction - summarise a long session in the taskman handoff format.

Hooked to the host's ``session_before_compact`` event. Instead of the host's
default summary, the conversation being compacted is rendered to plain text and
sent, together with the handoff skill and any taskman status files, to the
current model. The reply replaces the compacted history.

Every failure path returns None, which tells the host to fall back to its own
compaction; the user is told why through the UI notifier.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pi_extensions.api.claude import CompletionClient
from pi_extensions.config import CompactionConfig
from pi_extensions.events import CompactionCompletedEvent, EventBus
from pi_extensions.host import ExtensionContext, ModelInfo
from pi_extensions.orchestration.models import AgentMessage, TextContent, ToolCallContent

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = """\
You are a context summarization assistant creating a handoff document. Your task is to \
read a conversation between a user and an AI coding assistant, then produce a structured \
handoff following the skill instructions.

Do NOT continue the conversation. Do NOT respond to any questions in the conversation. \
ONLY output the handoff document."""

PROMPT_TEMPLATE = """\
You are creating a compaction summary (automatic context checkpoint) for a coding session.

Use the handoff skill format below to create the summary. The goal is to preserve context \
efficiently using breadcrumbs (pointers to recoverable information) rather than copying \
content verbatim.

<handoff-skill>
{skill}
</handoff-skill>
{taskman_context}{previous_summary}
<conversation>
{conversation}
</conversation>

Create a handoff-style summary. Key points:
- Use breadcrumbs (file:line, commands to run) instead of copying content
- Focus on WHAT was being done and WHY, not full details
- Preserve exact file paths, function names, error messages as references
- Include next steps and any blockers
- Keep it concise - this replaces the conversation history

Output the summary directly, no preamble."""


class CompactionPreparation(BaseModel):
    """What the host has already decided about the compaction."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    messages_to_summarize: list[dict[str, Any]] = Field(default_factory=list, alias="messagesToSummarize")
    turn_prefix_messages: list[dict[str, Any]] = Field(default_factory=list, alias="turnPrefixMessages")
    tokens_before: int = Field(0, alias="tokensBefore")
    first_kept_entry_id: Optional[str] = Field(None, alias="firstKeptEntryId")
    previous_summary: Optional[str] = Field(None, alias="previousSummary")


class SessionBeforeCompactEvent(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    preparation: CompactionPreparation
    signal: Optional[asyncio.Event] = None

    @property
    def aborted(self) -> bool:
        return self.signal is not None and self.signal.is_set()


class CompactionResult(BaseModel):
    summary: str
    first_kept_entry_id: Optional[str] = None
    tokens_before: int = 0


def serialize_conversation(messages: list[dict[str, Any]]) -> str:
    """Render host messages as a plain ``[Role]: text`` transcript."""
    blocks: list[str] = []
    for raw in messages:
        if not isinstance(raw, dict) or not isinstance(raw.get("role"), str):
            continue
        try:
            message = AgentMessage.model_validate(raw)
        except ValidationError as e:
            logger.debug("compaction.handoff.message_skipped", role=raw["role"], error=str(e))
            continue
        texts = [p.text for p in message.content if isinstance(p, TextContent) and p.text.strip()]
        if message.role == "user":
            if texts:
                blocks.append("[User]: " + "\n".join(texts))
        elif message.role == "assistant":
            if texts:
                blocks.append("[Assistant]: " + "\n".join(texts))
            calls = [_format_call(c) for c in message.content if isinstance(c, ToolCallContent)]
            if calls:
                blocks.append("[Assistant tool calls]: " + "; ".join(calls))
        elif message.role in ("toolResult", "tool"):
            if texts:
                blocks.append("[Tool result]: " + "\n".join(texts))
    return "\n\n".join(blocks)


def _format_call(call: ToolCallContent) -> str:
    args = ", ".join(f"{k}={json.dumps(v, ensure_ascii=False)}" for k, v in call.arguments.items())
    return f"{call.name}({args})"


def _read_optional(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.debug("compaction.handoff.read_failed", path=str(path), error=str(e))
        return None


def read_taskman_context(cwd: str, agent_files_dir: str = ".agent-files") -> str:
    base = Path(cwd) / agent_files_dir
    parts = []
    status = _read_optional(base / "STATUS.md")
    if status is not None:
        parts.append(f"<current-status>\n{status}\n</current-status>")
    memory = _read_optional(base / "MEDIUMTERM_MEM.md")
    if memory is not None:
        parts.append(f"<memory-index>\n{memory}\n</memory-index>")
    return "\n\n".join(parts)


def build_prompt(
    skill: str,
    conversation: str,
    taskman_context: str = "",
    previous_summary: Optional[str] = None,
) -> str:
    return PROMPT_TEMPLATE.format(
        skill=skill,
        taskman_context=f"\n{taskman_context}\n" if taskman_context else "",
        previous_summary=(
            f"\n<previous-summary>\n{previous_summary}\n</previous-summary>\n" if previous_summary else ""
        ),
        conversation=conversation,
    )


class HandoffCompactor:
    """``session_before_compact`` handler producing a handoff summary."""

    def __init__(
        self,
        config: CompactionConfig,
        client: Optional[CompletionClient] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self._config = config
        self._client = client or CompletionClient()
        self._event_bus = event_bus

    def _fallback_model(self) -> Optional[ModelInfo]:
        if self._config.fallback_provider and self._config.fallback_model:
            return ModelInfo(self._config.fallback_provider, self._config.fallback_model)
        return None

    async def __call__(
        self, event: SessionBeforeCompactEvent, ctx: ExtensionContext
    ) -> Optional[CompactionResult]:
        prep = event.preparation

        skill = _read_optional(self._config.skill_path)
        if not skill:
            logger.info("compaction.handoff.skipped", reason="skill_missing", path=str(self._config.skill_path))
            ctx.ui.notify("Handoff skill not found, using default compaction", "warning")
            return None

        model = ctx.model or self._fallback_model()
        if model is None:
            ctx.ui.notify("No model available for compaction", "warning")
            return None

        api_key = await ctx.model_registry.get_api_key(model)
        if not api_key:
            logger.info("compaction.handoff.skipped", reason="no_api_key", provider=model.provider)
            ctx.ui.notify(f"No API key for {model.provider}, using default compaction", "warning")
            return None

        messages = [*prep.messages_to_summarize, *prep.turn_prefix_messages]
        ctx.ui.notify(
            f"Taskman compaction: summarizing {len(messages)} messages with handoff format...",
            "info",
        )

        try:
            prompt = build_prompt(
                skill=skill,
                conversation=serialize_conversation(messages),
                taskman_context=read_taskman_context(ctx.cwd, self._config.agent_files_dir),
                previous_summary=prep.previous_summary,
            )
            summary = await self._client.complete(
                model,
                api_key=api_key,
                system_prompt=SYSTEM_PROMPT,
                prompt=prompt,
                max_tokens=self._config.max_tokens,
                signal=event.signal,
            )
        except Exception as e:
            if event.aborted:
                logger.info("compaction.handoff.aborted")
                return None
            logger.warning("compaction.handoff.failed", model=model.id, error=str(e))
            ctx.ui.notify(f"Taskman compaction failed: {e}", "error")
            return None

        if not summary.strip():
            if not event.aborted:
                ctx.ui.notify("Compaction summary was empty, using default compaction", "warning")
            return None

        logger.info(
            "compaction.handoff.complete",
            messages=len(messages),
            tokens_before=prep.tokens_before,
            summary_chars=len(summary),
        )
        if self._event_bus is not None:
            self._event_bus.emit(
                CompactionCompletedEvent(
                    messages_summarized=len(messages),
                    tokens_before=prep.tokens_before,
                    summary_chars=len(summary),
                )
            )
        return CompactionResult(
            summary=summary,
            first_kept_entry_id=prep.first_kept_entry_id,
            tokens_before=prep.tokens_before,
        )
