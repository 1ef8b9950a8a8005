"""Handoff-style context compaction."""
from pi_extensions.compaction.handoff import (
    CompactionPreparation,
    CompactionResult,
    HandoffCompactor,
    SessionBeforeCompactEvent,
)

__all__ = ["CompactionPreparation", "CompactionResult", "HandoffCompactor", "SessionBeforeCompactEvent"]
