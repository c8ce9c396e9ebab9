"""Storage for images embedded in notes."""

from __future__ import annotations

import logging
import random
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import BadRequestError, NotFoundError
from .naming import build_image_name

LOGGER = logging.getLogger(__name__)

IMAGE_CONTENT_TYPES: Dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}
_DEFAULT_CONTENT_TYPE = "image/jpeg"


class ImageNotFoundError(NotFoundError):
    default_message = "Image not found"


class UnsupportedImageError(BadRequestError):
    default_message = "Unsupported image format"


def resolve_child(root: Path, name: str) -> Path:
    """Return ``root / name`` resolved, raising ``ValueError`` unless it is a direct child."""

    if not name or "/" in name or "\\" in name or name in {".", ".."}:
        raise ValueError(f"invalid file name: {name!r}")
    root_path = root.resolve()
    candidate = (root_path / name).resolve()
    candidate.relative_to(root_path)
    if candidate == root_path:
        raise ValueError("name does not point at a file")
    return candidate


class ImageStore:
    """Flat directory of uploaded images keyed by generated file names."""

    def __init__(
        self,
        root: Path,
        *,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._root = root
        self._clock = clock
        self._rng = rng

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, filename: str) -> Path:
        try:
            return resolve_child(self._root, filename)
        except ValueError as error:
            raise ImageNotFoundError() from error

    def save(self, original_name: str, data: bytes) -> str:
        """Store *data* under a generated name derived from *original_name*."""

        extension = Path(original_name).suffix.lower()
        if extension not in IMAGE_CONTENT_TYPES:
            raise UnsupportedImageError()
        self._root.mkdir(parents=True, exist_ok=True)
        filename = build_image_name(extension, clock=self._clock, rng=self._rng)
        (self._root / filename).write_bytes(data)
        LOGGER.info("Stored image %s (%s bytes)", filename, len(data))
        return filename

    def read(self, filename: str) -> Tuple[bytes, str]:
        target = self.path_for(filename)
        if not target.is_file():
            raise ImageNotFoundError()
        content_type = IMAGE_CONTENT_TYPES.get(target.suffix.lower(), _DEFAULT_CONTENT_TYPE)
        return target.read_bytes(), content_type

    def iter_images(self) -> List[str]:
        if not self._root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self._root.iterdir()
            if entry.is_file() and entry.suffix.lower() in IMAGE_CONTENT_TYPES
        )

    def remove(self, filename: str) -> bool:
        """Delete *filename* if it exists; return whether a file was removed."""

        try:
            target = resolve_child(self._root, filename)
        except ValueError:
            LOGGER.warning("Ignoring image reference outside the image directory: %s", filename)
            return False
        if not target.is_file():
            return False
        target.unlink()
        LOGGER.info("Removed image %s", filename)
        return True


__all__ = [
    "IMAGE_CONTENT_TYPES",
    "ImageNotFoundError",
    "ImageStore",
    "UnsupportedImageError",
    "resolve_child",
]
