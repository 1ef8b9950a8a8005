"""CLI formatters - token/usage formatting and rich renderings of subagent results."""

from __future__ import annotations

import json
import os
from typing import Any, Optional

from rich.console import Console, Group, RenderableType
from rich.markdown import Markdown
from rich.table import Table
from rich.text import Text

from pi_extensions.orchestration.models import (
    FleetSnapshot,
    SubagentResult,
    TaskStatus,
    ToolCallContent,
    UsageStats,
)

COLLAPSED_LINES = 5


def get_console(no_color: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color)


def status_indicator(status: TaskStatus) -> Text:
    """Map a task status to a colored glyph."""
    mapping = {
        TaskStatus.PENDING: Text("· ", style="dim"),
        TaskStatus.RUNNING: Text("> ", style="yellow"),
        TaskStatus.SUCCEEDED: Text("✓ ", style="green"),
        TaskStatus.FAILED: Text("✗ ", style="red"),
        TaskStatus.ABORTED: Text("✗ ", style="red"),
    }
    return mapping.get(status, Text("? ", style="dim"))


def format_tokens(n: int) -> str:
    """``999``, ``1.2k``, ``12k``."""
    if n < 1000:
        return str(n)
    if n < 10000:
        return f"{n / 1000:.1f}k"
    return f"{int(n / 1000 + 0.5)}k"


def format_usage(usage: UsageStats, model: str) -> str:
    parts = []
    if usage.turns:
        parts.append(f"{usage.turns} turn{'s' if usage.turns > 1 else ''}")
    if usage.input:
        parts.append(f"↑{format_tokens(usage.input)}")
    if usage.output:
        parts.append(f"↓{format_tokens(usage.output)}")
    if usage.cache_read:
        parts.append(f"R{format_tokens(usage.cache_read)}")
    if usage.cache_write:
        parts.append(f"W{format_tokens(usage.cache_write)}")
    if usage.cost:
        parts.append(f"${usage.cost:.4f}")
    parts.append(model)
    return " ".join(parts)


def shorten_path(path: str, home: Optional[str] = None) -> str:
    home = home if home is not None else os.path.expanduser("~")
    if home and path.startswith(home):
        return "~" + path[len(home):]
    return path


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def format_tool_call(name: str, args: dict[str, Any]) -> Text:
    kind = name.lower()
    if kind == "bash":
        command = str(args.get("command") or "...")
        return Text.assemble(("$ ", "dim"), (_truncate(command, 60), "default"))
    if kind in ("read", "write", "edit"):
        path = shorten_path(str(args.get("path") or args.get("file_path") or "..."))
        return Text.assemble((f"{kind} ", "dim"), (path, "cyan"))
    encoded = json.dumps(args, separators=(",", ":"), ensure_ascii=False)
    return Text.assemble((name, "cyan"), (f" {_truncate(encoded, 50)}", "dim"))


def tool_calls(result: SubagentResult) -> list[ToolCallContent]:
    calls: list[ToolCallContent] = []
    for message in result.messages:
        if message.is_assistant:
            calls.extend(message.tool_calls())
    return calls


def render_call(model: str, task: str, context: Optional[str] = None, tools: Optional[list[str]] = None) -> Text:
    """One-glance header for a tool invocation."""
    text = Text.assemble(("subagent ", "bold"), (model or "?", "cyan"))
    if tools:
        text.append(f" [{', '.join(tools)}]", style="dim")
    text.append("\n" + _truncate(task or "...", 60), style="dim")
    if context:
        text.append(f"\n(+{len(context.splitlines())} lines context)", style="dim")
    return text


def render_collapsed(result: SubagentResult) -> Text:
    text = Text.assemble(status_indicator(result.status), (result.model, "cyan"))
    if result.is_error and result.error_message:
        text.append(f" {result.error_message}", style="red")
    elif result.output:
        lines = result.output.split("\n")
        text.append("\n" + "\n".join(lines[:COLLAPSED_LINES]))
        if len(lines) > COLLAPSED_LINES:
            text.append("\n... (use --expanded to see everything)", style="dim")
    else:
        text.append(" (no output)", style="dim")
    text.append("\n" + format_usage(result.usage, result.model), style="dim")
    return text


def _section(title: str) -> Text:
    return Text(f"─── {title} ───", style="dim")


def render_expanded(result: SubagentResult) -> RenderableType:
    header = Text.assemble(status_indicator(result.status), ("subagent ", "bold"), (result.model, "cyan"))
    if result.is_error and result.stop_reason:
        header.append(f" [{result.stop_reason}]", style="red")
    parts: list[RenderableType] = [header]
    if result.error_message:
        parts.append(Text(result.error_message, style="red"))

    parts += [Text(""), _section("Task"), Text(result.task, style="dim")]
    if result.context:
        parts += [Text(""), _section("Context"), Text(result.context, style="dim")]

    calls = tool_calls(result)
    if calls:
        parts += [Text(""), _section("Tool Calls")]
        parts += [Text.assemble(("→ ", "dim"), format_tool_call(c.name, c.arguments)) for c in calls]

    parts += [Text(""), _section("Output")]
    parts.append(Markdown(result.output.strip()) if result.output else Text("(no output)", style="dim"))
    parts += [Text(""), Text(format_usage(result.usage, result.model), style="dim")]
    return Group(*parts)


def render_fleet(snapshot: FleetSnapshot) -> Table:
    """Per-task table for a parallel run."""
    table = Table(
        title=f"{snapshot.succeeded}/{snapshot.total} succeeded",
        show_header=True,
        header_style="bold",
    )
    for column in ("", "Model", "Output", "Usage"):
        table.add_column(column)
    for result in snapshot.results:
        body = result.output or result.error_message or "(no output)"
        table.add_row(
            status_indicator(result.status),
            result.model,
            _truncate(" ".join(body.split()), 100),
            format_usage(result.usage, "").strip(),
        )
    table.caption = format_usage(snapshot.usage, "total")
    return table


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(str(v) for v in row))
    return table
