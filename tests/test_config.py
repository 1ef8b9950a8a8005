"""Tests for pi_extensions.config — settings, clamping and the allow-list loader."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pi_extensions.config import (
    CompactionConfig,
    ExtensionsConfig,
    SubagentConfig,
    _coerce_str_list,
    load_enabled_models,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "PI_SUBAGENT_COMMAND",
        "PI_SUBAGENT_MAX_TASKS",
        "PI_SUBAGENT_MAX_CONCURRENCY",
        "PI_SUBAGENT_KILL_GRACE",
        "PI_SUBAGENT_PREVIEW_CHARS",
        "PI_SUBAGENT_KNOWN_MODELS",
        "PI_AGENT_SETTINGS",
        "PI_COMPACTION_MAX_TOKENS",
    ):
        monkeypatch.delenv(name, raising=False)


class TestCoerceStrList:
    def test_single_value(self) -> None:
        assert _coerce_str_list("pi") == ["pi"]

    def test_comma_separated(self) -> None:
        assert _coerce_str_list("uv, run ,pi") == ["uv", "run", "pi"]

    def test_json_array(self) -> None:
        assert _coerce_str_list('["node", "cli.js"]') == ["node", "cli.js"]

    def test_list_passthrough_drops_blanks(self) -> None:
        assert _coerce_str_list(["a", " ", "b "]) == ["a", "b"]

    def test_empty_and_other_types(self) -> None:
        assert _coerce_str_list("   ") == []
        assert _coerce_str_list(None) == []


class TestSubagentConfig:
    def test_defaults(self) -> None:
        cfg = SubagentConfig()
        assert cfg.agent_command == ["pi"]
        assert cfg.max_tasks == 8
        assert cfg.max_concurrency == 4
        assert cfg.kill_grace_seconds == 3.0
        assert cfg.preview_chars == 100

    def test_env_command_bare_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PI_SUBAGENT_COMMAND", "/opt/pi/bin/pi")
        assert SubagentConfig().agent_command == ["/opt/pi/bin/pi"]

    def test_env_command_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PI_SUBAGENT_COMMAND", '["npx", "pi"]')
        assert SubagentConfig().agent_command == ["npx", "pi"]

    def test_concurrency_clamped_to_max_tasks(self) -> None:
        cfg = SubagentConfig(PI_SUBAGENT_MAX_TASKS=3, PI_SUBAGENT_MAX_CONCURRENCY=10)
        assert cfg.max_concurrency == 3

    def test_non_positive_values_clamped(self) -> None:
        cfg = SubagentConfig(
            PI_SUBAGENT_MAX_TASKS=0,
            PI_SUBAGENT_MAX_CONCURRENCY=0,
            PI_SUBAGENT_KILL_GRACE=-1,
            PI_SUBAGENT_PREVIEW_CHARS=1,
        )
        assert cfg.max_tasks == 1
        assert cfg.max_concurrency == 1
        assert cfg.kill_grace_seconds == 0.0
        assert cfg.preview_chars == 10

    def test_populate_by_field_name(self) -> None:
        cfg = SubagentConfig(max_concurrency=2)
        assert cfg.max_concurrency == 2

    def test_settings_path_expands_user(self) -> None:
        cfg = SubagentConfig(PI_AGENT_SETTINGS="~/custom/settings.json")
        assert "~" not in str(cfg.settings_path)


class TestCompactionConfig:
    def test_defaults(self) -> None:
        cfg = CompactionConfig()
        assert cfg.fallback_provider == "anthropic"
        assert cfg.fallback_model == "claude-sonnet-4-20250514"
        assert cfg.max_tokens == 8192
        assert cfg.skill_path.name == "handoff.md"

    def test_max_tokens_floor(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PI_COMPACTION_MAX_TOKENS", "10")
        assert CompactionConfig().max_tokens == 256


class TestLoadEnabledModels:
    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_enabled_models(tmp_path / "nope.json") == []

    def test_reads_list(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"enabledModels": ["anthropic/claude-sonnet-4-5", " openai/gpt-5 "]}))
        assert load_enabled_models(path) == ["anthropic/claude-sonnet-4-5", "openai/gpt-5"]

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text("{not json")
        assert load_enabled_models(path) == []

    def test_non_object_root(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]")
        assert load_enabled_models(path) == []

    def test_non_list_value(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"enabledModels": "anthropic/claude-sonnet-4-5"}))
        assert load_enabled_models(path) == []

    def test_absent_key(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"theme": "dark"}))
        assert load_enabled_models(path) == []

    def test_skips_non_strings(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"enabledModels": ["a/b", 3, None, ""]}))
        assert load_enabled_models(path) == ["a/b"]


class TestExtensionsConfig:
    def test_reads_allow_list_once(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"enabledModels": ["anthropic/claude-haiku-4-5"]}))
        cfg = ExtensionsConfig(subagent=SubagentConfig(PI_AGENT_SETTINGS=str(path)))
        assert cfg.enabled_models == ["anthropic/claude-haiku-4-5"]
        path.unlink()
        # Already loaded; the file is not consulted again
        assert cfg.enabled_models == ["anthropic/claude-haiku-4-5"]

    def test_explicit_allow_list_wins(self, tmp_path: Path) -> None:
        cfg = ExtensionsConfig(
            subagent=SubagentConfig(PI_AGENT_SETTINGS=str(tmp_path / "missing.json")),
            enabled_models=["x/y"],
        )
        assert cfg.enabled_models == ["x/y"]

    def test_repr(self, tmp_path: Path) -> None:
        cfg = ExtensionsConfig(
            subagent=SubagentConfig(PI_AGENT_SETTINGS=str(tmp_path / "missing.json")),
        )
        text = repr(cfg)
        assert "max_tasks=8" in text
        assert "enabled_models=0" in text
