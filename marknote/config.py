"""Configuration loading utilities for the MarkNote application."""

from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict


LOGGER = logging.getLogger(__name__)

_DIRECTORY_DEFAULTS = (
    ("notes_root", "notes", "file"),
    ("images_root", "images", "image"),
    ("log_root", "log", "log"),
)


def directory_is_writable(path: Path) -> bool:
    """Create *path* if needed and report whether a file can be written inside it."""

    try:
        path.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryFile(dir=path):
            pass
    except OSError:
        return False
    return True


def _pick_directory(preferred: Path, fallback: Path, *, label: str) -> Path:
    """Return *preferred* when usable, else *fallback* when that one is.

    A directory that cannot be prepared either way is still returned as
    *preferred*; :class:`~marknote.bootstrap.Bootstrapper` reports it.
    """

    if directory_is_writable(preferred):
        return preferred
    fallback = fallback.resolve()
    if fallback != preferred and directory_is_writable(fallback):
        LOGGER.warning("The %s directory '%s' is unusable; storing %s in '%s'.", label, preferred, label, fallback)
        return fallback
    LOGGER.warning("The %s directory '%s' is unusable and '%s' is too.", label, preferred, fallback)
    return preferred


@dataclass(frozen=True)
class AppConfig:
    """Runtime locations for notes, images, logs and the built front end."""

    notes_root: Path
    images_root: Path
    log_root: Path
    frontend_root: Path

    @property
    def shares_file(self) -> Path:
        """JSON document holding the share-link registry."""

        return self.log_root / "shares.json"

    @property
    def credentials_file(self) -> Path:
        """Single-line ``[user]:[pass]`` credential file."""

        return self.log_root / "login"

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        fallback_root = Path.home() / ".marknote"
        directories = {
            key: _pick_directory(
                (base_path / mapping.get(key, default)).resolve(),
                fallback_root / default,
                label=label,
            )
            for key, label, default in _DIRECTORY_DEFAULTS
        }
        return cls(
            frontend_root=(base_path / mapping.get("frontend_root", "dist")).resolve(),
            **directories,
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "directory_is_writable", "load_config"]
