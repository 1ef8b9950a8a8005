"""
Host protocols - what the agent runtime provides to these extensions.

The extensions run inside a host agent that owns the model registry, the UI
and the tool/command registries. These protocols describe exactly the surface
the extensions consume; the host (or the local CLI harness in
``pi_extensions.cli.host``) supplies the implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Literal, Optional, Protocol, runtime_checkable

NotifyLevel = Literal["info", "warning", "error"]


@dataclass(frozen=True)
class ModelInfo:
    """A model known to the host registry."""

    provider: str
    id: str


@runtime_checkable
class ModelRegistry(Protocol):
    """Resolves models and their credentials."""

    def get_available(self) -> Iterable[ModelInfo]:
        """Models that currently have credentials configured."""

    async def get_api_key(self, model: ModelInfo) -> Optional[str]:
        """API key for the model's provider, or None."""


@runtime_checkable
class UINotifier(Protocol):
    """Sink for short user-facing notifications."""

    def notify(self, message: str, level: NotifyLevel = "info") -> None: ...


@dataclass
class ExtensionContext:
    """Per-invocation context handed to tool and command handlers."""

    cwd: str
    model_registry: ModelRegistry
    ui: UINotifier
    model: Optional[ModelInfo] = None


EventHandler = Callable[[Any, ExtensionContext], Awaitable[Any]]


@runtime_checkable
class ExtensionAPI(Protocol):
    """Registration surface the host exposes to an extension at load time."""

    def register_tool(self, tool: Any) -> None: ...

    def register_command(self, command: Any) -> None: ...

    def on(self, event_name: str, handler: EventHandler) -> None: ...

    def send_user_message(self, text: str) -> None: ...
