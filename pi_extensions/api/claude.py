"""
Claude API Client - one-shot completions for the compaction hook.

This module wraps the Anthropic SDK. The client is built per call from the API
key the host's model registry hands us, so nothing here holds credentials.
A completion can be abandoned through the same asyncio.Event abort signal the
host uses for everything else.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional

import anthropic
import structlog

from pi_extensions.host import ModelInfo

logger = structlog.get_logger(__name__)


class UnsupportedProviderError(RuntimeError):
    """Raised when asked to complete with a model from a provider we cannot call."""


class CompletionAbortedError(RuntimeError):
    """Raised when the abort signal fires before the completion returns."""


class CompletionClient:
    """Thin async wrapper over ``anthropic.AsyncAnthropic().messages.create``."""

    SUPPORTED_PROVIDERS = frozenset({"anthropic"})

    def __init__(
        self,
        client_factory: Callable[..., Any] = anthropic.AsyncAnthropic,
        request_timeout_seconds: float = 300.0,
    ):
        self._client_factory = client_factory
        self._request_timeout_seconds = float(request_timeout_seconds)

    async def complete(
        self,
        model: ModelInfo,
        *,
        api_key: str,
        system_prompt: str,
        prompt: str,
        max_tokens: int = 8192,
        signal: Optional[asyncio.Event] = None,
    ) -> str:
        """Send one user prompt and return the joined text of the reply."""
        if model.provider not in self.SUPPORTED_PROVIDERS:
            raise UnsupportedProviderError(
                f"Provider '{model.provider}' is not supported for compaction"
            )

        client = self._client_factory(api_key=api_key)
        start_time = time.monotonic()
        create = asyncio.ensure_future(
            client.messages.create(
                model=model.id,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": [{"type": "text", "text": prompt}]}],
            )
        )

        try:
            response = await self._await_unless_aborted(create, signal)
        except anthropic.APIConnectionError as e:
            logger.error("completion_client.connection_error", error=str(e))
            raise
        except anthropic.RateLimitError as e:
            logger.warning("completion_client.rate_limited", error=str(e))
            raise
        except anthropic.APIError as e:
            logger.error(
                "completion_client.api_error",
                error=str(e),
                status=getattr(e, "status_code", None),
            )
            raise

        usage = getattr(response, "usage", None)
        logger.debug(
            "completion_client.complete",
            model=model.id,
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
            elapsed_seconds=round(time.monotonic() - start_time, 2),
        )
        return self.extract_text(response)

    async def _await_unless_aborted(
        self, create: "asyncio.Future[Any]", signal: Optional[asyncio.Event]
    ) -> Any:
        if signal is None:
            return await asyncio.wait_for(create, timeout=self._request_timeout_seconds)

        abort = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait(
                {create, abort},
                timeout=self._request_timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            abort.cancel()
        if create in done:
            return create.result()
        create.cancel()
        if signal.is_set():
            raise CompletionAbortedError("Completion aborted")
        raise asyncio.TimeoutError(
            f"Completion did not finish within {self._request_timeout_seconds}s"
        )

    @staticmethod
    def extract_text(response: Any) -> str:
        """Join all text blocks of a response, ignoring everything else."""
        parts = []
        for block in getattr(response, "content", None) or []:
            if getattr(block, "type", None) == "text":
                parts.append(block.text)
        return "\n".join(parts)
