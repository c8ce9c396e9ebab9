"""File-backed note repository."""

from __future__ import annotations

import contextlib
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional

from ..errors import BadRequestError, ConflictError, NotFoundError
from .events import FILE_EVENT
from .images import ImageStore, resolve_child
from .naming import build_disambiguated_name, epoch_millis

LOGGER = logging.getLogger(__name__)

NOTE_EXTENSION = ".md"
NOTE_URL_PREFIX = "/file/"
DEFAULT_PAGE_SIZE = 20

_IMAGE_REFERENCE = re.compile(r"!\[.*?\]\(/image/([^)]+)\)")


class NoteNotFoundError(NotFoundError):
    default_message = "File not found"


class NoteExistsError(ConflictError):
    default_message = "File already exists"


class InvalidNoteError(BadRequestError):
    default_message = "Invalid note name"


@dataclass
class NoteRecord:
    filename: str
    title: str
    path: str
    size: int
    last_modified: int
    id: Optional[str] = None


@dataclass
class NotePage:
    items: List[NoteRecord]
    total: int
    page: int
    page_size: int
    has_more: bool


def extract_image_references(content: str) -> List[str]:
    """Return the image file names embedded as ``![..](/image/<name>)`` in *content*."""

    if not content:
        return []
    return _IMAGE_REFERENCE.findall(content)


def note_filename(path: str) -> str:
    """Strip the ``/file/`` URL prefix used by clients to address notes."""

    return path.replace(NOTE_URL_PREFIX, "", 1)


def _title_of(filename: str) -> str:
    return filename[: -len(NOTE_EXTENSION)] if filename.endswith(NOTE_EXTENSION) else filename


class NoteRepository:
    """CRUD over a flat directory of Markdown files."""

    def __init__(
        self,
        root: Path,
        images: ImageStore,
        *,
        clock: Callable[[], float] = time.time,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._root = root
        self._images = images
        self._clock = clock
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    @property
    def root(self) -> Path:
        return self._root

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting file events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_file_event(self, operation: str, **context: Any) -> Iterator[None]:
        """Report *operation* with its outcome and duration to the event emitter."""

        if self._event_emitter is None:
            yield
            return

        start = time.perf_counter()
        status = "error"
        try:
            yield
            status = "ok"
        finally:
            self._event_emitter(
                FILE_EVENT,
                operation,
                context={**context, "status": status},
                duration_ms=(time.perf_counter() - start) * 1000.0,
            )

    def _resolve(self, filename: str) -> Path:
        if not filename:
            raise InvalidNoteError()
        try:
            return resolve_child(self._root, filename)
        except ValueError as error:
            raise InvalidNoteError() from error

    def _describe(self, target: Path, *, note_id: Optional[str] = None) -> NoteRecord:
        stats = target.stat()
        filename = target.name
        return NoteRecord(
            id=note_id,
            filename=filename,
            title=_title_of(filename),
            path=f"{NOTE_URL_PREFIX}{filename}",
            size=stats.st_size,
            last_modified=stats.st_mtime_ns // 1_000_000,
        )

    def exists(self, filename: str) -> bool:
        try:
            return self._resolve(filename).is_file()
        except InvalidNoteError:
            return False

    def iter_notes(self) -> List[NoteRecord]:
        """Return every note, most recently modified first."""

        if not self._root.is_dir():
            return []
        records = [
            self._describe(entry)
            for entry in self._root.iterdir()
            if entry.name.endswith(NOTE_EXTENSION) and entry.is_file()
        ]
        records.sort(key=lambda record: record.last_modified, reverse=True)
        return records

    def list(self, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> NotePage:
        records = self.iter_notes()
        total = len(records)
        start = (page - 1) * page_size
        end = start + page_size
        return NotePage(
            items=records[max(start, 0):max(end, 0)],
            total=total,
            page=page,
            page_size=page_size,
            has_more=end < total,
        )

    def read(self, filename: str) -> str:
        target = self._resolve(filename)
        if not target.is_file():
            raise NoteNotFoundError()
        return target.read_text(encoding="utf-8")

    def create(self, title: str) -> NoteRecord:
        """Create an empty note, appending a timestamp when the title is taken."""

        timestamp = epoch_millis(self._clock)
        filename = f"{title}{NOTE_EXTENSION}"
        target = self._resolve(filename)
        if target.exists():
            filename = build_disambiguated_name(title, NOTE_EXTENSION, timestamp=timestamp)
            target = self._resolve(filename)

        with self._track_file_event("create_note", filename=filename):
            target.write_text("", encoding="utf-8")
        record = self._describe(target, note_id=str(timestamp))
        record.title = title
        return record

    def save(self, path: str, content: str) -> None:
        filename = note_filename(path)
        target = self._resolve(filename)
        with self._track_file_event("save_note", filename=filename, length=len(content)):
            target.write_text(content, encoding="utf-8")

    def delete(self, path: str) -> List[str]:
        """Delete a note and the images its content references.

        Returns the names of the images that were removed. A missing note
        raises :class:`NoteNotFoundError` only after the image scan, when the
        final unlink fails.
        """

        filename = note_filename(path)
        target = self._resolve(filename)
        content = ""
        if target.is_file():
            content = target.read_text(encoding="utf-8")

        removed = [name for name in extract_image_references(content) if self._images.remove(name)]

        with self._track_file_event("delete_note", filename=filename, images=removed):
            try:
                target.unlink()
            except FileNotFoundError as error:
                raise NoteNotFoundError() from error
        return removed

    def rename(self, path: str, new_title: str) -> NoteRecord:
        """Rename a note, appending a timestamp when the new title is taken."""

        filename = note_filename(path)
        source = self._resolve(filename)
        if not source.is_file():
            raise NoteNotFoundError()

        new_filename = f"{new_title}{NOTE_EXTENSION}"
        destination = self._resolve(new_filename)
        if destination.exists():
            new_filename = build_disambiguated_name(
                new_title, NOTE_EXTENSION, timestamp=epoch_millis(self._clock)
            )
            destination = self._resolve(new_filename)

        with self._track_file_event("rename_note", source=filename, target=new_filename):
            source.rename(destination)
        record = self._describe(destination)
        record.id = str(record.last_modified)
        record.title = new_title
        return record

    def create_from_upload(self, filename: str, content: str) -> NoteRecord:
        """Store an uploaded note; unlike :meth:`create` a taken name is an error."""

        if not filename.endswith(NOTE_EXTENSION):
            raise InvalidNoteError(f"Only {NOTE_EXTENSION} files are supported")
        target = self._resolve(filename)
        if target.exists():
            raise NoteExistsError()

        with self._track_file_event("upload_note", filename=filename, length=len(content)):
            target.write_text(content, encoding="utf-8")
        record = self._describe(target)
        record.id = str(record.last_modified)
        return record


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "InvalidNoteError",
    "NOTE_EXTENSION",
    "NOTE_URL_PREFIX",
    "NotePage",
    "NoteExistsError",
    "NoteNotFoundError",
    "NoteRecord",
    "NoteRepository",
    "extract_image_references",
    "note_filename",
]
