"""CLI application - Click-based commands for running subagents from a terminal.

Every command builds a LocalExtensionHost, registers the extensions with it and
then drives them exactly as the agent would: through the registered tool.
"""

from __future__ import annotations

import asyncio
import functools
import json
from typing import Any, Optional

import click
from rich.console import Console

from pi_extensions.cli.formatters import get_console, render_collapsed, render_expanded, render_fleet
from pi_extensions.cli.host import LocalExtensionHost, LocalModelRegistry, abort_on_interrupt, parse_model_specs
from pi_extensions.config import ExtensionsConfig
from pi_extensions.events import EventBus, ExtensionEvent, FleetCompletedEvent, SubagentCompletedEvent
from pi_extensions.extension import register
from pi_extensions.orchestration.models import FleetSnapshot, ToolResult
from pi_extensions.tools.subagent import TOOL_NAME, make_resolver


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


def build_host(
    config: ExtensionsConfig,
    no_color: bool = False,
    event_bus: Optional[EventBus] = None,
) -> LocalExtensionHost:
    """Local host whose registry knows the configured models (or the allow-list)."""
    specs = config.subagent.known_models or config.enabled_models
    host = LocalExtensionHost(LocalModelRegistry(parse_model_specs(specs)), get_console(no_color))
    register(host, config, event_bus=event_bus)
    return host


def _summarize_event(event: ExtensionEvent) -> str:
    """One-line summary of a bus event for the verbose activity feed."""
    if isinstance(event, SubagentCompletedEvent):
        if event.stop_reason == "aborted":
            outcome = "aborted"
        else:
            outcome = "failed" if event.is_error else "ok"
        return f"#{event.index + 1} {event.model} exit={event.exit_code} {outcome}"
    if isinstance(event, FleetCompletedEvent):
        return f"{event.succeeded}/{event.total} succeeded, {event.failed} failed, cost ${event.cost:.4f}"
    return ""


def _feed_events(bus: EventBus, console: Console) -> None:
    def show(event: ExtensionEvent) -> None:
        console.print(f"  [{event.event_type}] {_summarize_event(event)}", markup=False, highlight=False)

    bus.subscribe("subagent.completed", show)
    bus.subscribe("fleet.*", show)


@click.group()
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging and a subagent activity feed")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, verbose: bool, no_color: bool) -> None:
    """pi extensions - run subagents outside the agent."""
    from pi_extensions.main import configure_logging

    configure_logging(verbose=verbose)
    ctx.ensure_object(dict)
    ctx.obj["json"] = json_output
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color
    ctx.obj.setdefault("config", None)


def _config(ctx: click.Context) -> ExtensionsConfig:
    config = ctx.obj.get("config")
    if config is None:
        config = ExtensionsConfig()
        ctx.obj["config"] = config
    return config


def _activity_bus(ctx: click.Context) -> Optional[EventBus]:
    """Verbose text mode prints subagent activity; JSON output stays clean."""
    if ctx.obj["verbose"] and not ctx.obj["json"]:
        return EventBus()
    return None


def _echo_json(result: ToolResult) -> None:
    payload = {
        "is_error": result.is_error,
        "text": result.text,
        "details": result.details.model_dump(mode="json") if result.details else None,
    }
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


async def _call_subagent(
    host: LocalExtensionHost,
    params: dict[str, Any],
    cwd: Optional[str],
    json_output: bool,
    event_bus: Optional[EventBus] = None,
) -> ToolResult:
    if event_bus is None:
        return await _invoke_tool(host, params, cwd, json_output)
    _feed_events(event_bus, host.console)
    async with event_bus:
        return await _invoke_tool(host, params, cwd, json_output)


async def _invoke_tool(
    host: LocalExtensionHost,
    params: dict[str, Any],
    cwd: Optional[str],
    json_output: bool,
) -> ToolResult:
    abort = asyncio.Event()
    with abort_on_interrupt(abort):
        if json_output:
            return await host.registry.call(TOOL_NAME, params, host.context(cwd), signal=abort)
        with host.console.status("Starting subagent...") as status:

            def on_update(update: ToolResult) -> None:
                line = update.text.splitlines()[-1] if update.text.strip() else "(running...)"
                status.update(line[:120])

            return await host.registry.call(
                TOOL_NAME, params, host.context(cwd), signal=abort, on_update=on_update
            )


@cli.command("models")
@click.pass_context
def models_cmd(ctx: click.Context) -> None:
    """List the models subagents may use."""
    config = _config(ctx)
    host = build_host(config, ctx.obj["no_color"])
    available = make_resolver(host.context(), config.enabled_models).available
    if ctx.obj["json"]:
        click.echo(json.dumps(available))
        return
    if not available:
        host.ui.notify("No models available. Set PI_SUBAGENT_KNOWN_MODELS or enabledModels.", "warning")
        return
    for name in available:
        host.console.print(name, highlight=False)


@cli.command("run")
@click.argument("model")
@click.argument("task")
@click.option("--context", "context_text", default=None, help="Context block passed before the task")
@click.option("--tool", "tools", multiple=True, help="Restrict the subagent to this tool (repeatable)")
@click.option("--cwd", type=click.Path(exists=True, file_okay=False), default=None, help="Working directory")
@click.option("--expanded", is_flag=True, help="Show task, tool calls and full output")
@click.pass_context
@async_cmd
async def run_cmd(
    ctx: click.Context,
    model: str,
    task: str,
    context_text: Optional[str],
    tools: tuple[str, ...],
    cwd: Optional[str],
    expanded: bool,
) -> None:
    """Run TASK on one subagent using MODEL."""
    bus = _activity_bus(ctx)
    host = build_host(_config(ctx), ctx.obj["no_color"], event_bus=bus)
    params: dict[str, Any] = {"model": model, "task": task}
    if context_text:
        params["context"] = context_text
    if tools:
        params["tools"] = list(tools)

    result = await _call_subagent(host, params, cwd, ctx.obj["json"], event_bus=bus)
    if ctx.obj["json"]:
        _echo_json(result)
    elif result.details is None or not result.details.results:
        host.ui.notify(result.text, "error")
    else:
        single = result.details.results[0]
        host.console.print(render_expanded(single) if expanded else render_collapsed(single))
    if result.is_error:
        ctx.exit(1)


@cli.command("fleet")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--cwd", type=click.Path(exists=True, file_okay=False), default=None, help="Working directory")
@click.pass_context
@async_cmd
async def fleet_cmd(ctx: click.Context, file: str, cwd: Optional[str]) -> None:
    """Run the tasks listed in FILE in parallel.

    FILE is JSON: either {"tasks": [...]} or a bare list of
    {"model", "task", "context"?, "tools"?} objects.
    """
    try:
        with open(file, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot read fleet file: {e}") from e
    tasks = data.get("tasks") if isinstance(data, dict) else data
    if not isinstance(tasks, list):
        raise click.ClickException('Fleet file must be a list or an object with a "tasks" list')

    bus = _activity_bus(ctx)
    host = build_host(_config(ctx), ctx.obj["no_color"], event_bus=bus)
    result = await _call_subagent(host, {"tasks": tasks}, cwd, ctx.obj["json"], event_bus=bus)
    if ctx.obj["json"]:
        _echo_json(result)
    elif result.details is None or not result.details.results:
        host.ui.notify(result.text, "error")
    else:
        snapshot = FleetSnapshot(mode="parallel", results=tuple(result.details.results))
        host.console.print(render_fleet(snapshot))
    if result.is_error:
        ctx.exit(1)
