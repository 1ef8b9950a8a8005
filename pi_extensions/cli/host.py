"""Local host harness - lets the extensions run from a terminal without the agent.

LocalExtensionHost implements the registration surface a real host exposes:
tools and commands land in a ToolRegistry, event handlers in a dict, and
messages the extension asks to send are collected (and printed) instead of
being injected into a conversation.
"""

from __future__ import annotations

import asyncio
import os
import signal as signal_module
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Mapping, Optional

import structlog
from rich.console import Console

from pi_extensions.host import EventHandler, ExtensionContext, ModelInfo, NotifyLevel
from pi_extensions.tools.registry import CommandDefinition, ToolDefinition, ToolRegistry

logger = structlog.get_logger(__name__)

_NOTIFY_STYLES = {"info": "cyan", "warning": "yellow", "error": "red"}


def parse_model_specs(specs: Iterable[str]) -> list[ModelInfo]:
    """Turn ``provider/id`` strings into ModelInfo values, skipping malformed ones."""
    models: list[ModelInfo] = []
    for spec in specs:
        provider, sep, model_id = spec.strip().partition("/")
        if not sep or not provider or not model_id:
            logger.warning("cli.host.bad_model_spec", spec=spec)
            continue
        models.append(ModelInfo(provider=provider, id=model_id))
    return models


def api_key_env_var(provider: str) -> str:
    return provider.upper().replace("-", "_") + "_API_KEY"


class LocalModelRegistry:
    """Model registry backed by a fixed model list and ``<PROVIDER>_API_KEY`` env vars."""

    def __init__(self, models: Iterable[ModelInfo], env: Optional[Mapping[str, str]] = None):
        self._models = list(models)
        self._env = env if env is not None else os.environ

    def get_available(self) -> list[ModelInfo]:
        return list(self._models)

    async def get_api_key(self, model: ModelInfo) -> Optional[str]:
        return self._env.get(api_key_env_var(model.provider)) or None


class ConsoleNotifier:
    def __init__(self, console: Console):
        self._console = console

    def notify(self, message: str, level: NotifyLevel = "info") -> None:
        self._console.print(message, style=_NOTIFY_STYLES.get(level, "default"), highlight=False)


class LocalExtensionHost:
    """In-process stand-in for the agent runtime."""

    def __init__(self, model_registry: LocalModelRegistry, console: Optional[Console] = None):
        self.registry = ToolRegistry()
        self.model_registry = model_registry
        self.console = console or Console()
        self.ui = ConsoleNotifier(self.console)
        self.handlers: dict[str, list[EventHandler]] = {}
        self.sent_messages: list[str] = []

    def register_tool(self, tool: ToolDefinition) -> None:
        self.registry.register(tool)

    def register_command(self, command: CommandDefinition) -> None:
        self.registry.register_command(command)

    def on(self, event_name: str, handler: EventHandler) -> None:
        self.handlers.setdefault(event_name, []).append(handler)

    def send_user_message(self, text: str) -> None:
        self.sent_messages.append(text)
        self.ui.notify(f"→ {text}")

    def context(self, cwd: Optional[str] = None, model: Optional[ModelInfo] = None) -> ExtensionContext:
        return ExtensionContext(
            cwd=cwd or os.getcwd(),
            model_registry=self.model_registry,
            ui=self.ui,
            model=model,
        )

    async def emit(self, event_name: str, event: Any, ctx: ExtensionContext) -> Any:
        """Run handlers for *event_name* in order; the first non-None result wins."""
        for handler in self.handlers.get(event_name, []):
            result = await handler(event, ctx)
            if result is not None:
                return result
        return None


@contextmanager
def abort_on_interrupt(abort: asyncio.Event) -> Iterator[asyncio.Event]:
    """Set *abort* on SIGINT for the duration of the block.

    Must be entered from inside a running event loop.
    """
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal_module.SIGINT, abort.set)
        installed = True
    except (NotImplementedError, RuntimeError):
        # No signal handler support (e.g. not on the main thread)
        installed = False
    try:
        yield abort
    finally:
        if installed:
            loop.remove_signal_handler(signal_module.SIGINT)
