# pi_extensions/config.py
"""
Configuration for the pi extensions.

All configuration flows through this module. Values are loaded from environment
variables (via an optional .env file) and validated with Pydantic. Nothing here
reads configuration at import time: the host's startup sequence builds an
ExtensionsConfig once and hands the pieces to the components that need them.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import structlog
from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings, NoDecode

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above the package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

_PI_AGENT_DIR = Path.home() / ".pi" / "agent"


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts:
      - A single str         -> ["value"]
      - Comma-separated str  -> ["a", "b"]
      - JSON array str       -> ["a", "b"]
      - An existing list     -> passthrough with str coercion
    """
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            try:
                return _coerce_str_list(json.loads(stripped))
            except ValueError:
                pass
        if "," in stripped:
            return [part.strip() for part in stripped.split(",") if part.strip()]
        return [stripped]
    return []


# Annotated type for list[str] fields that accept bare values, comma-separated,
# and JSON arrays from environment variables. NoDecode stops pydantic-settings
# from insisting on JSON before the validator runs.
StrList = Annotated[list[str], NoDecode, BeforeValidator(_coerce_str_list)]


def load_enabled_models(settings_path: Path) -> list[str]:
    """Read the ``enabledModels`` allow-list from the agent's settings.json.

    Absence or any read/parse failure means "no restriction" and yields an
    empty list; it is never fatal.
    """
    try:
        settings = json.loads(Path(settings_path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except (OSError, ValueError) as e:
        logger.debug("config.settings_unreadable", path=str(settings_path), error=str(e))
        return []

    if not isinstance(settings, dict):
        logger.debug("config.settings_not_an_object", path=str(settings_path))
        return []
    enabled = settings.get("enabledModels") or []
    if not isinstance(enabled, list):
        logger.debug("config.enabled_models_not_a_list", path=str(settings_path))
        return []
    return [str(m).strip() for m in enabled if isinstance(m, str) and m.strip()]


class SubagentConfig(BaseSettings):
    """Configuration for spawning and scheduling subagent processes."""

    agent_command: StrList = Field(default_factory=lambda: ["pi"], alias="PI_SUBAGENT_COMMAND")
    max_tasks: int = Field(8, alias="PI_SUBAGENT_MAX_TASKS")
    max_concurrency: int = Field(4, alias="PI_SUBAGENT_MAX_CONCURRENCY")
    kill_grace_seconds: float = Field(3.0, alias="PI_SUBAGENT_KILL_GRACE")
    preview_chars: int = Field(100, alias="PI_SUBAGENT_PREVIEW_CHARS")
    settings_path: Path = Field(_PI_AGENT_DIR / "settings.json", alias="PI_AGENT_SETTINGS")
    # Only consulted by the local CLI host, which has no model registry of its own.
    known_models: StrList = Field(default_factory=list, alias="PI_SUBAGENT_KNOWN_MODELS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "SubagentConfig":
        if not self.agent_command:
            self.agent_command = ["pi"]
        self.max_tasks = max(1, int(self.max_tasks))
        self.max_concurrency = max(1, min(self.max_tasks, int(self.max_concurrency)))
        self.kill_grace_seconds = max(0.0, float(self.kill_grace_seconds))
        self.preview_chars = max(10, int(self.preview_chars))
        self.settings_path = Path(self.settings_path).expanduser()
        return self


class CompactionConfig(BaseSettings):
    """Configuration for the handoff-style compaction hook."""

    skill_path: Path = Field(
        _PI_AGENT_DIR / "skills" / "taskman" / "handoff.md", alias="PI_COMPACTION_SKILL_PATH"
    )
    agent_files_dir: str = Field(".agent-files", alias="PI_COMPACTION_AGENT_FILES_DIR")
    fallback_provider: str = Field("anthropic", alias="PI_COMPACTION_FALLBACK_PROVIDER")
    fallback_model: str = Field("claude-sonnet-4-20250514", alias="PI_COMPACTION_FALLBACK_MODEL")
    max_tokens: int = Field(8192, alias="PI_COMPACTION_MAX_TOKENS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "CompactionConfig":
        self.skill_path = Path(self.skill_path).expanduser()
        self.max_tokens = max(256, int(self.max_tokens))
        return self


class ExtensionsConfig:
    """
    Master configuration that composes the subsystem configs.

    The allow-list is read exactly once here and carried as a plain value so
    the model resolver never touches the filesystem.
    """

    def __init__(
        self,
        subagent: SubagentConfig | None = None,
        compaction: CompactionConfig | None = None,
        enabled_models: list[str] | None = None,
    ):
        self.subagent = subagent or SubagentConfig()
        self.compaction = compaction or CompactionConfig()
        if enabled_models is None:
            enabled_models = load_enabled_models(self.subagent.settings_path)
        self.enabled_models: list[str] = list(enabled_models)

    def __repr__(self) -> str:
        return (
            f"ExtensionsConfig(command={self.subagent.agent_command}, "
            f"max_tasks={self.subagent.max_tasks}, "
            f"max_concurrency={self.subagent.max_concurrency}, "
            f"enabled_models={len(self.enabled_models)})"
        )
