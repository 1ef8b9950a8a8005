"""Tests for pi_extensions.orchestration.resolver — exact, fail-closed model lookup."""

from __future__ import annotations

import pytest

from pi_extensions.host import ModelInfo
from pi_extensions.orchestration.resolver import ModelResolver, UnknownModelError, model_key


class TestModelKey:
    def test_lowercases(self) -> None:
        assert model_key("Anthropic", "Claude-Sonnet-4-5") == "anthropic/claude-sonnet-4-5"


class TestModelResolver:
    def test_resolves_case_insensitively(self, models: list[ModelInfo]) -> None:
        resolver = ModelResolver(models)
        assert resolver.resolve("ANTHROPIC/Claude-Sonnet-4-5") == "anthropic/claude-sonnet-4-5"

    def test_preserves_canonical_casing(self) -> None:
        resolver = ModelResolver([ModelInfo("OpenRouter", "Qwen/Qwen3-Coder")])
        assert resolver.resolve("openrouter/qwen/qwen3-coder") == "OpenRouter/Qwen/Qwen3-Coder"

    def test_no_substring_matching(self, models: list[ModelInfo]) -> None:
        resolver = ModelResolver(models)
        assert resolver.resolve("claude-sonnet-4-5") is None
        assert resolver.resolve("anthropic/claude") is None

    def test_allow_list_is_exact_filter(self, models: list[ModelInfo]) -> None:
        resolver = ModelResolver(models, enabled_models=["Anthropic/claude-haiku-4-5", "anthropic/claude"])
        assert resolver.available == ["anthropic/claude-haiku-4-5"]
        assert resolver.resolve("anthropic/claude-sonnet-4-5") is None

    def test_empty_allow_list_means_everything(self, models: list[ModelInfo]) -> None:
        resolver = ModelResolver(models, enabled_models=[])
        assert len(resolver.available) == 3

    def test_available_is_sorted(self, models: list[ModelInfo]) -> None:
        assert ModelResolver(models).available == [
            "anthropic/claude-haiku-4-5",
            "anthropic/claude-sonnet-4-5",
            "openai/gpt-5",
        ]

    def test_require_raises_with_options(self, models: list[ModelInfo]) -> None:
        resolver = ModelResolver(models)
        with pytest.raises(UnknownModelError) as exc_info:
            resolver.require("gpt-4")
        err = exc_info.value
        assert err.requested == "gpt-4"
        assert err.available == resolver.available
        assert str(err).startswith('Unknown model "gpt-4". Available: anthropic/claude-haiku-4-5')

    def test_require_with_no_models(self) -> None:
        with pytest.raises(UnknownModelError, match=r"Available: \(none\)"):
            ModelResolver([]).require("anthropic/claude-sonnet-4-5")
