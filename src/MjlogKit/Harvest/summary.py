"""Stage run summaries and console reporting helpers.

Responsibilities
----------------
- Provide :class:`StageSummary`, the per-run tally every stage returns
  (fetched / skipped / failed / planned, or trusted / quarantined for the
  classifier) together with the items that failed.
- Expose :func:`emit_console_summary` to render the tally as a ``rich`` table
  so CLI output mirrors the structured payload from :meth:`StageSummary.as_dict`.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .types import ItemOutcome

__all__ = ["StageSummary", "emit_console_summary"]


@dataclass
class StageSummary:
    """Aggregated outcome counts for one stage run."""

    stage: str
    counts: Counter = field(default_factory=Counter)
    failed_items: List[str] = field(default_factory=list)
    bytes_written: int = 0
    dry_run: bool = False

    def add(self, item: str, outcome: ItemOutcome, *, bytes_written: int = 0) -> None:
        self.counts[outcome] += 1
        self.bytes_written += bytes_written
        if outcome is ItemOutcome.FAILED:
            self.failed_items.append(item)

    def count(self, outcome: ItemOutcome) -> int:
        return self.counts.get(outcome, 0)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def fetched(self) -> int:
        return self.count(ItemOutcome.FETCHED)

    @property
    def skipped(self) -> int:
        return self.count(ItemOutcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(ItemOutcome.FAILED)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "dry_run": self.dry_run,
            "total": self.total,
            "counts": {outcome.value: self.count(outcome) for outcome in ItemOutcome},
            "bytes_written": self.bytes_written,
            "failed_items": list(self.failed_items),
        }


def emit_console_summary(summary: StageSummary, console: Optional[Console] = None) -> None:
    """Render ``summary`` as a table; zero counts are omitted."""
    console = console or Console()
    title = f"{summary.stage} summary" + (" (dry run)" if summary.dry_run else "")
    table = Table(title=title)
    table.add_column("Outcome", style="cyan")
    table.add_column("Count", justify="right", style="green")
    for outcome in ItemOutcome:
        count = summary.count(outcome)
        if count:
            table.add_row(outcome.value, str(count))
    table.add_row("total", str(summary.total))
    if summary.bytes_written:
        table.add_row("bytes written", str(summary.bytes_written))
    console.print(table)

    if summary.failed_items:
        shown = ", ".join(summary.failed_items[:10])
        more = len(summary.failed_items) - 10
        suffix = f" (+{more} more)" if more > 0 else ""
        console.print(f"[yellow]Failed items: {shown}{suffix}[/yellow]")
