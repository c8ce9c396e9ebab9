from __future__ import annotations

import io

from rich.console import Console

from marknote.services.workspace import NoteWorkspace
from marknote.ui.overview import OverviewUI, collect_overview

DAY = 24 * 60 * 60


def _populated_workspace(config, clock) -> NoteWorkspace:
    workspace = NoteWorkspace(config, clock=clock)
    kept = workspace.images.save("kept.png", b"png")
    workspace.images.save("stray.gif", b"gif")
    workspace.notes.save("gallery.md", f"![kept](/image/{kept})")
    workspace.notes.save("plain.md", "text")
    workspace.shares.create("plain.md", 1, host="localhost")
    workspace.shares.create("gallery.md", None, host="localhost")
    return workspace


def test_collect_overview_counts_orphans_and_expired_links(temp_config, clock) -> None:
    workspace = _populated_workspace(temp_config, clock)
    clock.advance(2 * DAY)

    snapshot = collect_overview(workspace, clock=clock)

    assert {record.filename for record in snapshot.notes} == {"gallery.md", "plain.md"}
    assert snapshot.image_count == 2
    assert len(snapshot.orphaned_images) == 1
    assert snapshot.orphaned_images[0].endswith(".gif")
    assert len(snapshot.shares) == 2
    assert snapshot.active_share_count == 1
    assert len(workspace.shares.records()) == 2


def test_overview_renders_notes_and_links(temp_config, clock) -> None:
    workspace = _populated_workspace(temp_config, clock)
    buffer = io.StringIO()

    OverviewUI(workspace, console=Console(file=buffer, width=160), clock=clock).run()

    output = buffer.getvalue()
    assert "gallery" in output
    assert "Share links" in output
    assert "never" in output


def test_overview_without_notes_shows_hint(temp_config) -> None:
    buffer = io.StringIO()

    OverviewUI(NoteWorkspace(temp_config), console=Console(file=buffer, width=120)).run()

    assert "No notes have been written yet" in buffer.getvalue()
