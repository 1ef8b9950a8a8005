"""
Fleet Reporter - live progress and final summaries for one run set.

The reporter owns the slots of a run set. Runners never touch a slot
directly: every update replaces the slot's frozen SubagentResult with a new
one, and the slot tuple itself is rebuilt on each replacement. A snapshot is
therefore a reference to one immutable tuple and can never observe a result
half-way through an update.

Progress counters and usage totals are recomputed from the slots on every
snapshot rather than tracked incrementally.
"""

from __future__ import annotations

from typing import Callable, Literal, Optional, Sequence

import structlog

from pi_extensions.events import (
    EventBus,
    FleetCompletedEvent,
    SubagentCompletedEvent,
    SubagentUpdatedEvent,
)
from pi_extensions.orchestration.models import FleetSnapshot, SubagentResult, SubagentTask

logger = structlog.get_logger(__name__)

SnapshotObserver = Callable[[FleetSnapshot], None]

SUCCESS_GLYPH = "✓"
FAILURE_GLYPH = "✗"


def preview(text: str, limit: int = 100) -> str:
    """Single-line preview of *text*, truncated to *limit* characters."""
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "..."


def progress_text(snap: FleetSnapshot) -> str:
    return f"Parallel: {snap.done}/{snap.total} done, {snap.running} running..."


class FleetReporter:
    """Aggregates the results of one tool invocation and fans out snapshots."""

    def __init__(
        self,
        tasks: Sequence[SubagentTask],
        mode: Literal["single", "parallel"],
        event_bus: Optional[EventBus] = None,
    ):
        self.mode = mode
        self._slots: tuple[SubagentResult, ...] = tuple(SubagentResult.running(t) for t in tasks)
        self._observers: list[SnapshotObserver] = []
        self._event_bus = event_bus

    def subscribe(self, observer: SnapshotObserver) -> Callable[[], None]:
        """Register an observer called with a snapshot after every update.

        Returns a callable that removes the observer again.
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def snapshot(self) -> FleetSnapshot:
        return FleetSnapshot(mode=self.mode, results=self._slots)

    def update(self, index: int, result: SubagentResult) -> FleetSnapshot:
        """Replace slot *index* with *result* and notify observers."""
        previous = self._slots[index]
        self._slots = self._slots[:index] + (result,) + self._slots[index + 1 :]
        snap = self.snapshot()

        if self._event_bus is not None:
            if result.is_done and not previous.is_done:
                self._event_bus.emit(
                    SubagentCompletedEvent(
                        index=index,
                        model=result.model,
                        exit_code=result.exit_code,
                        stop_reason=result.stop_reason,
                        is_error=result.is_error,
                    )
                )
            elif not result.is_done:
                self._event_bus.emit(
                    SubagentUpdatedEvent(
                        index=index,
                        model=result.model,
                        turns=result.usage.turns,
                        output_preview=preview(result.output),
                    )
                )

        for observer in list(self._observers):
            try:
                observer(snap)
            except Exception:
                logger.error("subagent.reporter.observer_failed", index=index, exc_info=True)
        return snap

    def complete(self) -> FleetSnapshot:
        """Final snapshot, taken after every task has finished."""
        snap = self.snapshot()
        logger.info(
            "subagent.reporter.complete",
            mode=self.mode,
            total=snap.total,
            succeeded=snap.succeeded,
            cost=round(snap.usage.cost, 6),
        )
        if self._event_bus is not None:
            self._event_bus.emit(
                FleetCompletedEvent(
                    mode=self.mode,
                    total=snap.total,
                    succeeded=snap.succeeded,
                    failed=snap.total - snap.succeeded,
                    cost=snap.usage.cost,
                )
            )
        return snap

    @property
    def is_error(self) -> bool:
        """True iff at least one finished task exited non-zero."""
        return any(r.is_done and r.exit_code != 0 for r in self._slots)

    def progress_text(self) -> str:
        return progress_text(self.snapshot())

    def summary_text(self, preview_chars: int = 100) -> str:
        """``X/Y succeeded`` followed by one glyph-annotated line per task."""
        snap = self.snapshot()
        lines = [f"{snap.succeeded}/{snap.total} succeeded"]
        for result in snap.results:
            ok = result.exit_code == 0
            text = result.output or result.error_message or ""
            body = preview(text, preview_chars) if text.strip() else "(no output)"
            glyph = SUCCESS_GLYPH if ok else FAILURE_GLYPH
            lines.append(f"{glyph} [{result.model}] {body}")
        return "\n".join(lines)
