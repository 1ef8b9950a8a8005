"""Tool and command surface exposed to the host agent."""
from pi_extensions.tools.registry import CommandDefinition, ToolDefinition, ToolRegistry

__all__ = ["CommandDefinition", "ToolDefinition", "ToolRegistry"]
