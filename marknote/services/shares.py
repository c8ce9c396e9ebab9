"""Durable registry of public, optionally expiring, note share links."""

from __future__ import annotations

import json
import logging
import math
import os
import random
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Callable, Dict, Optional

from ..errors import NotFoundError
from .naming import build_token, epoch_millis
from .notes import InvalidNoteError, NoteNotFoundError, NoteRepository

LOGGER = logging.getLogger(__name__)

_DAY_MILLIS = 24 * 60 * 60 * 1000


class ShareNotFoundError(NotFoundError):
    """Raised for unknown, expired, or dangling share ids alike."""

    default_message = "Share link does not exist or has expired"


@dataclass(frozen=True)
class ShareRecord:
    filename: str
    created_at: int
    expires_at: Optional[int] = None

    def is_expired(self, now_millis: int) -> bool:
        return bool(self.expires_at) and now_millis > self.expires_at

    def to_json(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "ShareRecord":
        return cls(
            filename=str(payload.get("filename", "")),
            created_at=int(payload.get("createdAt") or 0),
            expires_at=payload.get("expiresAt") or None,
        )


@dataclass(frozen=True)
class ShareLink:
    share_id: str
    share_url: str
    record: ShareRecord


@dataclass(frozen=True)
class SharedNote:
    content: str
    filename: str


def atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = None
    try:
        tmp = NamedTemporaryFile("w", encoding="utf-8", dir=str(path.parent), delete=False)
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp.close()
        os.replace(tmp.name, path)
    finally:
        if tmp is not None and os.path.exists(tmp.name):
            os.unlink(tmp.name)


def _expiry_millis(now: int, expire_days: Optional[float]) -> Optional[int]:
    """Return when a link created at *now* expires, or ``None`` if it never does.

    Falsy durations never expire, and neither do durations whose product
    overflows a float.
    """

    if not expire_days:
        return None
    expires_at = now + expire_days * _DAY_MILLIS
    return int(expires_at) if math.isfinite(expires_at) else None


class ShareRegistry:
    """Share links persisted as one JSON object keyed by share id.

    The whole document is read and rewritten on each mutation. All
    read-modify-write cycles run under one lock, so concurrent requests in
    this process cannot drop each other's updates.
    """

    def __init__(
        self,
        path: Path,
        notes: NoteRepository,
        *,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._path = path
        self._notes = notes
        self._clock = clock
        self._rng = rng
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, ShareRecord]:
        if not self._path.exists():
            atomic_write_text(self._path, "{}")
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            LOGGER.warning("Share registry %s is not valid JSON; treating it as empty", self._path)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {
            str(share_id): ShareRecord.from_json(entry)
            for share_id, entry in raw.items()
            if isinstance(entry, dict)
        }

    def _store(self, shares: Dict[str, ShareRecord]) -> None:
        document = {share_id: record.to_json() for share_id, record in shares.items()}
        atomic_write_text(self._path, json.dumps(document, indent=2, ensure_ascii=False))

    def get(self, share_id: str) -> Optional[ShareRecord]:
        with self._lock:
            return self._load().get(share_id)

    def records(self) -> Dict[str, ShareRecord]:
        """Return a snapshot of every stored link, expired ones included."""

        with self._lock:
            return self._load()

    def sweep_expired(self) -> int:
        """Remove expired links, rewriting the document only when something changed."""

        now = epoch_millis(self._clock)
        with self._lock:
            shares = self._load()
            expired = [share_id for share_id, record in shares.items() if record.is_expired(now)]
            for share_id in expired:
                del shares[share_id]
            if expired:
                self._store(shares)
        if expired:
            LOGGER.info("Removed %s expired share link(s)", len(expired))
        return len(expired)

    def create(
        self,
        filename: str,
        expire_days: Optional[float] = None,
        *,
        host: str,
    ) -> ShareLink:
        """Register a link to *filename*, expiring after *expire_days* when truthy."""

        self.sweep_expired()
        if not self._notes.exists(filename):
            raise NoteNotFoundError()

        now = epoch_millis(self._clock)
        expires_at = _expiry_millis(now, expire_days)
        record = ShareRecord(filename=filename, created_at=now, expires_at=expires_at)
        share_id = build_token(clock=self._clock, rng=self._rng)
        with self._lock:
            shares = self._load()
            shares[share_id] = record
            self._store(shares)

        LOGGER.info("Created share %s for %s (expires_at=%s)", share_id, filename, expires_at)
        return ShareLink(
            share_id=share_id,
            share_url=f"http://{host}/share/{share_id}",
            record=record,
        )

    def resolve(self, share_id: str) -> SharedNote:
        """Return the live content behind *share_id*, evicting it if expired."""

        with self._lock:
            shares = self._load()
            record = shares.get(share_id)
            if record is None:
                raise ShareNotFoundError()
            if record.is_expired(epoch_millis(self._clock)):
                del shares[share_id]
                self._store(shares)
                LOGGER.info("Share %s expired on access", share_id)
                raise ShareNotFoundError()

        try:
            content = self._notes.read(record.filename)
        except (NoteNotFoundError, InvalidNoteError) as error:
            raise ShareNotFoundError() from error
        return SharedNote(content=content, filename=record.filename)


__all__ = [
    "ShareLink",
    "ShareNotFoundError",
    "ShareRecord",
    "ShareRegistry",
    "SharedNote",
    "atomic_write_text",
]
