"""
Model Resolver - maps a caller's model name to a canonical ``provider/id``.

Matching is an exact, case-insensitive lookup on the ``provider/id`` key.
When an allow-list is configured only those exact keys are eligible; with no
allow-list every model the host registry knows about is. Unknown names fail
closed: there is no fallback to a default model.
"""

from __future__ import annotations

from typing import Iterable, Optional

import structlog

from pi_extensions.host import ModelInfo

logger = structlog.get_logger(__name__)


class OrchestrationError(Exception):
    """Base class for failures detected before any subagent is spawned."""


class UnknownModelError(OrchestrationError):
    """Raised when a requested model is not among the available ones."""

    def __init__(self, requested: str, available: list[str]):
        self.requested = requested
        self.available = available
        listing = ", ".join(available) if available else "(none)"
        super().__init__(f'Unknown model "{requested}". Available: {listing}')


def model_key(provider: str, model_id: str) -> str:
    return f"{provider}/{model_id}".lower()


class ModelResolver:
    """Exact-match lookup over the available models."""

    def __init__(self, models: Iterable[ModelInfo], enabled_models: Optional[Iterable[str]] = None):
        enabled = {m.strip().lower() for m in (enabled_models or []) if m and m.strip()}
        self._models: dict[str, str] = {}
        for info in models:
            key = model_key(info.provider, info.id)
            if enabled and key not in enabled:
                continue
            self._models[key] = f"{info.provider}/{info.id}"

    @property
    def available(self) -> list[str]:
        """Lowercase lookup keys of every eligible model, sorted."""
        return sorted(self._models)

    def resolve(self, name: str) -> Optional[str]:
        """Return the canonical ``provider/id`` for *name*, or None."""
        return self._models.get(name.strip().lower())

    def require(self, name: str) -> str:
        """Like resolve(), but raises UnknownModelError instead of returning None."""
        resolved = self.resolve(name)
        if resolved is None:
            logger.info("subagent.resolver.unknown_model", requested=name, available=len(self._models))
            raise UnknownModelError(name, self.available)
        return resolved
