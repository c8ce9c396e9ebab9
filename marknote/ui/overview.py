"""A Rich-powered console summary of the notes, images and share links on disk."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from ..services.naming import epoch_millis
from ..services.notes import NoteRecord, extract_image_references
from ..services.shares import ShareRecord
from ..services.workspace import NoteWorkspace


@dataclass
class ShareOverview:
    share_id: str
    record: ShareRecord
    expired: bool


@dataclass
class OverviewSnapshot:
    notes: List[NoteRecord]
    shares: List[ShareOverview]
    image_count: int
    orphaned_images: List[str]

    @property
    def active_share_count(self) -> int:
        return sum(1 for share in self.shares if not share.expired)


def collect_overview(
    workspace: NoteWorkspace, *, clock: Callable[[], float] = time.time
) -> OverviewSnapshot:
    """Aggregate workspace data into a snapshot for console rendering.

    Images that no note references are reported as orphaned. Reading the
    share registry here never evicts expired links.
    """

    notes = workspace.notes.iter_notes()
    referenced = set()
    for record in notes:
        referenced.update(extract_image_references(workspace.notes.read(record.filename)))

    images = workspace.images.iter_images()
    now = epoch_millis(clock)
    shares = [
        ShareOverview(share_id=share_id, record=record, expired=record.is_expired(now))
        for share_id, record in sorted(
            workspace.shares.records().items(), key=lambda item: item[1].created_at
        )
    ]
    return OverviewSnapshot(
        notes=notes,
        shares=shares,
        image_count=len(images),
        orphaned_images=[name for name in images if name not in referenced],
    )


def _format_millis(value: Optional[int]) -> str:
    if value is None:
        return "never"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M")


class OverviewUI:
    """Render the workspace overview using Rich widgets."""

    def __init__(
        self,
        workspace: NoteWorkspace,
        *,
        console: Optional[Console] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._workspace = workspace
        self._console = console or Console()
        self._clock = clock

    def run(self) -> None:
        snapshot = collect_overview(self._workspace, clock=self._clock)
        console = self._console

        console.rule("[bold magenta]MarkNote Overview")

        if not snapshot.notes:
            console.print(
                Panel(
                    "No notes have been written yet.\n"
                    "Start the server with [bold]marknote serve[/bold] and create one.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        notes_panel = Panel(
            self._build_notes_table(snapshot.notes),
            title="Notes",
            border_style="cyan",
            box=box.ROUNDED,
        )
        console.print(Columns([notes_panel, self._build_stats_panel(snapshot)], expand=True))
        if snapshot.shares:
            console.print(self._build_shares_table(snapshot.shares))

    @staticmethod
    def _build_notes_table(notes: List[NoteRecord]) -> Table:
        table = Table(box=box.SIMPLE, expand=True)
        table.add_column("Title", style="bold")
        table.add_column("Size", justify="right")
        table.add_column("Modified", style="dim")
        for record in notes:
            table.add_row(record.title, str(record.size), _format_millis(record.last_modified))
        return table

    @staticmethod
    def _build_shares_table(shares: List[ShareOverview]) -> Panel:
        table = Table(box=box.SIMPLE, expand=True)
        table.add_column("Link")
        table.add_column("Note", style="bold")
        table.add_column("Expires")
        for share in shares:
            expires = Text(_format_millis(share.record.expires_at))
            if share.expired:
                expires.stylize("red")
            table.add_row(share.share_id, share.record.filename, expires)
        return Panel(table, title="Share links", border_style="green", box=box.ROUNDED)

    @staticmethod
    def _build_stats_panel(snapshot: OverviewSnapshot) -> Panel:
        metrics = Table.grid(expand=True, padding=(0, 1))
        metrics.add_column(style="dim")
        metrics.add_column(justify="right", style="bold")
        metrics.add_row("Notes", str(len(snapshot.notes)))
        metrics.add_row("Images", str(snapshot.image_count))
        metrics.add_row("Orphaned images", str(len(snapshot.orphaned_images)))

        share_table = Table.grid(expand=True, padding=(0, 1))
        share_table.add_column(style="dim")
        share_table.add_column(justify="right", style="bold")
        share_table.add_row("Active links", str(snapshot.active_share_count))
        share_table.add_row("Expired links", str(len(snapshot.shares) - snapshot.active_share_count))

        body = Group(metrics, Rule(style="magenta"), share_table)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)


__all__ = ["OverviewSnapshot", "OverviewUI", "ShareOverview", "collect_overview"]
